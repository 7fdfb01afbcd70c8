"""
Periodic reconciliation of subscription status against wall-clock time.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Callable

from easywg.common.config import Config
from easywg.common.exceptions import (
    NotificationError,
    ProvisioningError,
    ValidationError,
)
from easywg.common.models import Subscription, SubscriptionStatus, utcnow
from easywg.scheduler import messages

if TYPE_CHECKING:
    from easywg.common.interfaces import INotifier, ISubscriptionRepository
    from easywg.vpn.engine import ProvisioningEngine

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400


@dataclass
class SweepResult:
    """Outcome of one sweep."""

    started_at: datetime = field(default_factory=utcnow)
    checked: int = 0
    expired: list[int] = field(default_factory=list)
    warned: list[int] = field(default_factory=list)
    revoke_failures: list[int] = field(default_factory=list)
    notification_failures: list[int] = field(default_factory=list)
    report_sent: bool = False
    skipped: bool = False
    error: str | None = None


def days_left(subscription: Subscription, now: datetime) -> int:
    """Whole days from now until the subscription ends."""
    return int((subscription.end_date - now).total_seconds() // SECONDS_PER_DAY)


class SubscriptionReconciler:
    """Expires subscriptions, warns users and reports to administrators.

    Sweeps never overlap: the timer thread runs them inline, and a manual
    ``sweep()`` or ``trigger()`` while one is running is skipped.
    """

    def __init__(  # noqa: PLR0913
        self,
        repository: ISubscriptionRepository,
        engine: ProvisioningEngine,
        notifier: INotifier,
        interval: float | None = None,
        warning_days: int | None = None,
        config: Config | None = None,
        now_func: Callable[[], datetime] = utcnow,
        release_slot: Callable[[int], None] | None = None,
    ):
        config = config or Config()
        self.repository = repository
        self.engine = engine
        self.notifier = notifier
        # The admin service passes its own so slot updates share one lock
        self.release_slot = release_slot or self._release_slot
        self._slots_lock = threading.Lock()
        self.interval = config.CHECK_INTERVAL if interval is None else interval
        self.warning_days = config.WARNING_DAYS if warning_days is None else warning_days
        self.now_func = now_func
        self.last_result: SweepResult | None = None
        self._busy = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Run one sweep now, then one per interval until stopped."""
        if self.running:
            logger.warning("Reconciler is already running")
            return
        # A thread left draining by stop() keeps its own, already set, event
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            args=(self._stop_event,),
            name="easywg-reconciler",
            daemon=True,
        )
        self._thread.start()
        logger.info("Reconciler started, interval %ss", self.interval)

    def stop(self, drain_timeout: float | None = None) -> None:
        """Stop ticking. A sweep in progress is allowed to finish."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(drain_timeout)
            if self._thread.is_alive():
                logger.warning("Reconciler sweep still draining after stop")
            self._thread = None
        logger.info("Reconciler stopped")

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            try:
                self.sweep()
            except Exception:
                logger.exception("Sweep crashed")
            if stop_event.wait(self.interval):
                break

    def trigger(self) -> bool:
        """Dispatch a sweep in the background. Returns False if one is running."""
        if not self._busy.acquire(blocking=False):
            logger.info("Sweep already in progress, not triggering another")
            return False

        def _work() -> None:
            try:
                self.last_result = self._sweep(self.now_func())
            except Exception:
                logger.exception("Triggered sweep crashed")
            finally:
                self._busy.release()

        threading.Thread(target=_work, name="easywg-sweep", daemon=True).start()
        return True

    def sweep(self, now: datetime | None = None) -> SweepResult:
        """Run one sweep synchronously, or skip it if another is running."""
        if not self._busy.acquire(blocking=False):
            logger.warning("Previous sweep still running, skipping this one")
            return SweepResult(skipped=True)
        try:
            self.last_result = self._sweep(now or self.now_func())
            return self.last_result
        finally:
            self._busy.release()

    def _sweep(self, now: datetime) -> SweepResult:
        result = SweepResult(started_at=now)
        logger.info("Checking subscriptions")
        try:
            subscriptions = self.repository.get_active_subscriptions()
        except Exception as e:
            logger.exception("Could not load active subscriptions")
            result.error = str(e)
            return result

        result.checked = len(subscriptions)
        logger.info("Found %d active subscriptions", result.checked)

        processed: list[Subscription] = []
        for subscription in subscriptions:
            if subscription.status != SubscriptionStatus.ACTIVE:
                continue
            try:
                if now >= subscription.end_date:
                    if self._expire(subscription, result):
                        processed.append(subscription)
                else:
                    remaining = days_left(subscription, now)
                    if 0 <= remaining <= self.warning_days:
                        self._warn(subscription, remaining, result)
            except Exception:
                logger.exception("Failed to process subscription #%s", subscription.id)

        if processed:
            result.report_sent = self._report(processed)
        logger.info(
            "Sweep done: %d expired, %d warned, %d revoke failures",
            len(result.expired),
            len(result.warned),
            len(result.revoke_failures),
        )
        return result

    def _expire(self, subscription: Subscription, result: SweepResult) -> bool:
        logger.info(
            "Subscription #%s of user #%s expired on %s",
            subscription.id,
            subscription.user_id,
            messages.format_date(subscription.end_date),
        )
        try:
            subscription.transition_to(SubscriptionStatus.EXPIRED)
            self.repository.update_subscription(subscription)
        except ValidationError as e:
            logger.error("Could not mark subscription #%s expired: %s", subscription.id, e)
            return False
        result.expired.append(subscription.id)

        # The status stays expired even if the host cannot be reached now,
        # but the user and the report only hear about revoked configs
        try:
            server = self.repository.get_server_by_id(subscription.server_id)
            self.engine.revoke_client_config(server, subscription.config_file_path)
        except (ProvisioningError, ValidationError) as e:
            logger.error(
                "Could not revoke VPN config of subscription #%s: %s", subscription.id, e
            )
            result.revoke_failures.append(subscription.id)
            return False
        self.release_slot(server.id)

        try:
            plan = self.repository.get_subscription_plan_by_id(subscription.plan_id)
            self._notify_user(subscription, messages.expired_message(subscription, plan))
        except (NotificationError, ValidationError) as e:
            logger.error("Could not notify user #%s: %s", subscription.user_id, e)
            result.notification_failures.append(subscription.id)
        return True

    def _warn(self, subscription: Subscription, remaining: int, result: SweepResult) -> None:
        logger.info(
            "Subscription #%s expires in %d days", subscription.id, remaining
        )
        try:
            plan = self.repository.get_subscription_plan_by_id(subscription.plan_id)
            self._notify_user(
                subscription,
                messages.expiry_warning_message(subscription, plan, remaining),
            )
        except (NotificationError, ValidationError) as e:
            logger.error("Could not warn user #%s: %s", subscription.user_id, e)
            result.notification_failures.append(subscription.id)
            return
        result.warned.append(subscription.id)

    def _notify_user(self, subscription: Subscription, text: str) -> None:
        user = self.repository.get_user_by_id(subscription.user_id)
        self.notifier.notify(user.telegram_id, text)

    def _release_slot(self, server_id: int) -> None:
        with self._slots_lock:
            server = self.repository.get_server_by_id(server_id)
            server.current_clients = max(0, server.current_clients - 1)
            self.repository.update_server(server)

    def _report(self, processed: list[Subscription]) -> bool:
        try:
            admins = self.repository.get_all_admins()
        except ValidationError as e:
            logger.error("Could not load administrators: %s", e)
            return False
        if not admins:
            logger.info("No administrators to report to")
            return False

        text = messages.report_header(len(processed))
        position = 0
        for subscription in processed:
            try:
                user = self.repository.get_user_by_id(subscription.user_id)
                plan = self.repository.get_subscription_plan_by_id(subscription.plan_id)
            except ValidationError as e:
                logger.error(
                    "Skipping subscription #%s in report: %s", subscription.id, e
                )
                continue
            position += 1
            text += messages.report_line(position, subscription, user, plan)
        text += messages.REPORT_FOOTER

        delivered = False
        for admin in admins:
            try:
                self.notifier.notify(admin.telegram_id, text)
            except NotificationError as e:
                logger.error("Could not send report to admin %s: %s", admin.telegram_id, e)
                continue
            delivered = True
        return delivered
