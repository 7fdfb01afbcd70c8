"""
Message bodies for subscription lifecycle notifications.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

    from easywg.common.models import Subscription, SubscriptionPlan, User

DATE_FORMAT = "%d.%m.%Y"
# Characters with meaning in Telegram legacy Markdown
MARKDOWN_SPECIAL = "_*`["


def format_date(value: datetime) -> str:
    return value.strftime(DATE_FORMAT)


def escape_markdown(text: str) -> str:
    """Escape user supplied text for a Markdown message."""
    return "".join(f"\\{char}" if char in MARKDOWN_SPECIAL else char for char in text)


def expired_message(subscription: Subscription, plan: SubscriptionPlan) -> str:
    return (
        "❗️ *Your subscription has expired* ❗️\n\n"
        f"Subscription: #{subscription.id}\n"
        f"Plan: {escape_markdown(plan.name)}\n"
        f"Start date: {format_date(subscription.start_date)}\n"
        f"End date: {format_date(subscription.end_date)}\n\n"
        "Your VPN connection has been disabled automatically.\n"
        "To keep using the VPN, please buy a new subscription with /buy."
    )


def expiry_warning_message(
    subscription: Subscription, plan: SubscriptionPlan, days_left: int
) -> str:
    return (
        "⚠️ *Your subscription expires soon* ⚠️\n\n"
        f"Subscription: #{subscription.id}\n"
        f"Plan: {escape_markdown(plan.name)}\n"
        f"End date: {format_date(subscription.end_date)}\n\n"
        f"Days left: *{days_left}*\n\n"
        "Use /buy to extend it. Otherwise the VPN connection will be disabled "
        "automatically when the subscription ends."
    )


def report_header(count: int) -> str:
    return (
        "📊 *Expired subscriptions report*\n\n"
        f"Expired subscriptions processed: {count}\n\n"
        "*Processed subscriptions:*\n"
    )


def report_line(
    position: int, subscription: Subscription, user: User, plan: SubscriptionPlan
) -> str:
    username = escape_markdown(user.display_name)
    plan_name = escape_markdown(plan.name)
    return (
        f"{position}. Subscription #{subscription.id} - User: {username} - "
        f"Plan: {plan_name} - End date: {format_date(subscription.end_date)}\n"
    )


REPORT_FOOTER = (
    "\nAll listed subscriptions were marked as expired and their VPN "
    "configurations were revoked."
)

BLOCKED_MESSAGE = (
    "⛔️ Your VPN access for subscription #{id} has been suspended by an "
    "administrator."
)
UNBLOCKED_MESSAGE = "✅ Your VPN access for subscription #{id} has been restored."
REVOKED_MESSAGE = (
    "❌ Your subscription #{id} has been revoked by an administrator and its VPN "
    "configuration removed."
)
