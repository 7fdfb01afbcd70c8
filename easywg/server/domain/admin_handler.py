"""
Admin request handler for subscription block, unblock and revoke.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from functools import partial
from typing import TYPE_CHECKING, Any, Callable

from easywg.common.exceptions import (
    NotificationError,
    OperationTimeoutError,
    ProvisioningError,
    ValidationError,
)
from easywg.common.models import (
    ActionOutcome,
    ActionResult,
    Subscription,
    SubscriptionStatus,
)
from easywg.scheduler import messages

if TYPE_CHECKING:
    from easywg.common.interfaces import INotifier, IRepository
    from easywg.vpn.engine import ProvisioningEngine

    from .server_handler import ServerHandler

logger = logging.getLogger(__name__)


class AdminHandler:
    """Runs administrator actions against a host within a bounded wait.

    When the wait expires the caller gets a ``timeout`` outcome right away
    while the host operation keeps running; its eventual result is logged and,
    for block and unblock, the status change is applied at that point.
    """

    def __init__(
        self,
        repository: IRepository,
        engine: ProvisioningEngine,
        notifier: INotifier,
        server_handler: ServerHandler,
        action_timeout: float = 10.0,
    ):
        self.repository = repository
        self.engine = engine
        self.notifier = notifier
        self.server_handler = server_handler
        self.action_timeout = action_timeout
        self._executor = ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="easywg-admin"
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def _load(self, subscription_id: int, target: SubscriptionStatus) -> Subscription:
        subscription = self.repository.get_subscription_by_id(subscription_id)
        # Fail before touching the host if the status change is not allowed
        subscription.model_copy().transition_to(target)
        return subscription

    def _submit(self, func: Callable[..., Any], *args: Any) -> Future:
        return self._executor.submit(func, *args)

    def _apply_status(self, subscription_id: int, status: SubscriptionStatus) -> Subscription:
        subscription = self.repository.get_subscription_by_id(subscription_id)
        subscription.transition_to(status)
        self.repository.update_subscription(subscription)
        return subscription

    def _notify(self, subscription: Subscription, template: str) -> None:
        try:
            user = self.repository.get_user_by_id(subscription.user_id)
            self.notifier.notify(user.telegram_id, template.format(id=subscription.id))
        except (NotificationError, ValidationError) as e:
            logger.error("Could not notify user #%s: %s", subscription.user_id, e)

    def _late_completion(
        self,
        subscription_id: int,
        action: str,
        on_success: Callable[[], Any] | None,
        future: Future,
    ) -> None:
        error = future.exception()
        if error is not None:
            logger.error(
                "Late %s of subscription #%s failed on host: %s",
                action,
                subscription_id,
                error,
            )
            return
        logger.info("Late %s of subscription #%s finished on host", action, subscription_id)
        if on_success is None:
            return
        try:
            on_success()
        except (ProvisioningError, ValidationError) as e:
            logger.error(
                "Could not record late %s of subscription #%s: %s",
                action,
                subscription_id,
                e,
            )

    def _timeout_result(
        self,
        subscription_id: int,
        action: str,
        future: Future,
        on_success: Callable[[], Any] | None,
    ) -> ActionResult:
        future.add_done_callback(
            partial(self._late_completion, subscription_id, action, on_success)
        )
        current = self.repository.get_subscription_by_id(subscription_id)
        return ActionResult(
            subscription_id=subscription_id,
            action=action,
            outcome=ActionOutcome.TIMEOUT,
            message=(
                f"The host did not answer within {self.action_timeout:g}s. "
                f"The {action} is still running and will be applied when it finishes."
            ),
            subscription_status=current.status,
        )

    def _toggle(self, subscription_id: int, blocked: bool) -> ActionResult:  # noqa: FBT001
        action = "block" if blocked else "unblock"
        target = SubscriptionStatus.BLOCKED if blocked else SubscriptionStatus.ACTIVE
        template = messages.BLOCKED_MESSAGE if blocked else messages.UNBLOCKED_MESSAGE
        remote = self.engine.block_client if blocked else self.engine.unblock_client

        subscription = self._load(subscription_id, target)
        server = self.repository.get_server_by_id(subscription.server_id)
        future = self._submit(remote, server, subscription.config_file_path)

        def finish() -> Subscription:
            updated = self._apply_status(subscription_id, target)
            self._notify(updated, template)
            return updated

        try:
            found = future.result(timeout=self.action_timeout)
        except FutureTimeoutError:
            logger.warning("%s of subscription #%s timed out", action, subscription_id)
            return self._timeout_result(subscription_id, action, future, finish)

        updated = finish()
        outcome = ActionOutcome.OK
        message = f"Subscription #{subscription_id}: {action} done."
        if not found:
            # Local status changed but the host has nothing to match it
            logger.warning(
                "Peer of subscription #%s missing on server #%s", subscription_id, server.id
            )
            outcome = ActionOutcome.ERROR
            message += " The peer was not present on the host."
        return ActionResult(
            subscription_id=subscription_id,
            action=action,
            outcome=outcome,
            message=message,
            subscription_status=updated.status,
        )

    def block(self, subscription_id: int) -> ActionResult:
        return self._toggle(subscription_id, blocked=True)

    def unblock(self, subscription_id: int) -> ActionResult:
        return self._toggle(subscription_id, blocked=False)

    def revoke(self, subscription_id: int) -> ActionResult:
        """Revoke a subscription. The status changes even if the host fails."""
        subscription = self._load(subscription_id, SubscriptionStatus.REVOKED)
        server = self.repository.get_server_by_id(subscription.server_id)
        future = self._submit(
            self.engine.revoke_client_config, server, subscription.config_file_path
        )

        def release() -> None:
            self.server_handler.release_slot(server.id)

        try:
            future.result(timeout=self.action_timeout)
        except FutureTimeoutError:
            logger.warning("Revoke of subscription #%s timed out", subscription_id)
            future.add_done_callback(
                partial(self._late_completion, subscription_id, "revoke", release)
            )
            outcome = ActionOutcome.TIMEOUT
            message = (
                f"Subscription #{subscription_id} revoked. The host did not answer "
                f"within {self.action_timeout:g}s; peer removal is still running."
            )
        except (ProvisioningError, ValidationError) as e:
            logger.error("Revoke of subscription #%s failed on host: %s", subscription_id, e)
            outcome = ActionOutcome.ERROR
            message = (
                f"Subscription #{subscription_id} revoked, but the host was not "
                f"updated: {e}"
            )
        else:
            release()
            outcome = ActionOutcome.OK
            message = f"Subscription #{subscription_id} revoked."

        updated = self._apply_status(subscription_id, SubscriptionStatus.REVOKED)
        self._notify(updated, messages.REVOKED_MESSAGE)
        return ActionResult(
            subscription_id=subscription_id,
            action="revoke",
            outcome=outcome,
            message=message,
            subscription_status=updated.status,
        )

    def is_blocked(self, subscription_id: int) -> bool:
        subscription = self.repository.get_subscription_by_id(subscription_id)
        server = self.repository.get_server_by_id(subscription.server_id)
        future = self._submit(
            self.engine.is_client_blocked, server, subscription.config_file_path
        )
        try:
            return future.result(timeout=self.action_timeout)
        except FutureTimeoutError:
            msg = (
                f"Host of subscription #{subscription_id} did not answer "
                f"within {self.action_timeout:g}s"
            )
            raise OperationTimeoutError(msg) from None
