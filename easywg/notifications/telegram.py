"""
Notification sinks: Telegram Bot API and a log-only fallback.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

import requests

from easywg.common.config import Config
from easywg.common.exceptions import NotificationError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})
MAX_MESSAGE_LENGTH = 4096


class TelegramNotifier:
    """Sends Markdown messages through the Bot API ``sendMessage`` method."""

    def __init__(
        self,
        token: str | None = None,
        api_url: str | None = None,
        max_retries: int = 3,
        backoff: float = 1.0,
        timeout: float = 10.0,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        config = Config()
        self.token = token or config.TELEGRAM_BOT_TOKEN
        if not self.token:
            msg = "Telegram bot token is not configured"
            raise ValueError(msg)
        self.api_url = (api_url or config.TELEGRAM_API_URL).rstrip("/")
        self.max_retries = max_retries
        self.backoff = backoff
        self.timeout = timeout
        self.session = session or requests.Session()
        self._sleep = sleep

    @property
    def send_url(self) -> str:
        return f"{self.api_url}/bot{self.token}/sendMessage"

    def notify(self, destination_id: int, text: str) -> None:
        payload = {
            "chat_id": destination_id,
            "text": text[:MAX_MESSAGE_LENGTH],
            "parse_mode": "Markdown",
        }
        for attempt in range(self.max_retries + 1):
            delay = self.backoff * (2**attempt)
            try:
                r = self.session.post(self.send_url, json=payload, timeout=self.timeout)
            except requests.RequestException as e:
                if attempt == self.max_retries:
                    msg = f"Telegram unreachable sending to {destination_id}: {e}"
                    raise NotificationError(msg) from e
                logger.warning("Telegram request failed (%s), retrying in %.1fs", e, delay)
                self._sleep(delay)
                continue

            if r.status_code == 200:  # noqa: PLR2004
                logger.debug("Sent message to %s", destination_id)
                return
            description = self._description(r)
            if r.status_code not in RETRYABLE_STATUS or attempt == self.max_retries:
                msg = (
                    f"Telegram rejected message to {destination_id} "
                    f"({r.status_code}): {description}"
                )
                raise NotificationError(msg)
            if r.status_code == 429:  # noqa: PLR2004
                delay = max(delay, self._retry_after(r))
            logger.warning(
                "Telegram returned %s, retrying in %.1fs", r.status_code, delay
            )
            self._sleep(delay)

    @staticmethod
    def _json(r: requests.Response) -> dict:
        try:
            body = r.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    def _description(self, r: requests.Response) -> str:
        return str(self._json(r).get("description") or r.text)

    def _retry_after(self, r: requests.Response) -> float:
        parameters = self._json(r).get("parameters") or {}
        return float(parameters.get("retry_after", 0))


class LoggingNotifier:
    """Writes notifications to the log for deployments without a bot."""

    def __init__(self) -> None:
        self.logger = logging.getLogger(__name__)

    def notify(self, destination_id: int, text: str) -> None:
        self.logger.info("Notification for %s:\n%s", destination_id, text)


def build_notifier(config: Config | None = None) -> TelegramNotifier | LoggingNotifier:
    """Telegram when a bot token is configured, otherwise the log."""
    config = config or Config()
    if config.TELEGRAM_BOT_TOKEN:
        return TelegramNotifier(config.TELEGRAM_BOT_TOKEN, config.TELEGRAM_API_URL)
    logger.info("No Telegram bot token configured, notifications go to the log")
    return LoggingNotifier()
