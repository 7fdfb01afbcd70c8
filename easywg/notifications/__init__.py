"""
Notification sinks for users and administrators.
"""

from easywg.notifications.telegram import (
    LoggingNotifier,
    TelegramNotifier,
    build_notifier,
)

__all__ = ["LoggingNotifier", "TelegramNotifier", "build_notifier"]
