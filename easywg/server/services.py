"""Business logic services for the admin server.
"""

from __future__ import annotations

import logging
import time
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

from easywg.common.exceptions import NotFoundError, ProvisioningError, ValidationError
from easywg.common.models import Subscription, utcnow
from easywg.server.domain.admin_handler import AdminHandler
from easywg.server.domain.server_handler import ServerHandler

if TYPE_CHECKING:
    from easywg.common.config import Config
    from easywg.common.interfaces import INotifier, IRepository
    from easywg.common.models import (
        ActionResult,
        AddServerRequest,
        Server,
        ServerCheckReport,
    )
    from easywg.scheduler.reconciler import SubscriptionReconciler
    from easywg.vpn.engine import ProvisioningEngine

logger = logging.getLogger(__name__)


class SubscriptionService:
    """Handles business logic for servers and subscriptions."""

    def __init__(
        self,
        config: Config,
        repository: IRepository,
        engine: ProvisioningEngine,
        notifier: INotifier,
        reconciler: SubscriptionReconciler | None = None,
        server_handler: ServerHandler | None = None,
    ):
        self.config = config
        self.repository = repository
        self.engine = engine
        self.notifier = notifier
        self.reconciler = reconciler

        # Initialize handlers
        self.server_handler = server_handler or ServerHandler(
            repository=repository, engine=engine
        )
        self.admin_handler = AdminHandler(
            repository=repository,
            engine=engine,
            notifier=notifier,
            server_handler=self.server_handler,
            action_timeout=config.ADMIN_ACTION_TIMEOUT,
        )

    def close(self) -> None:
        self.admin_handler.close()

    def health(self) -> dict[str, Any]:
        """Health check endpoint."""
        return {
            "status": "ok",
            "timestamp": int(time.time()),
            "reconciler_running": bool(self.reconciler and self.reconciler.running),
        }

    def add_server(self, req: AddServerRequest) -> Server:
        return self.server_handler.add_server(req)

    def setup_server(self, server_id: int) -> Server:
        return self.server_handler.setup_server(server_id)

    def check_server(self, server_id: int) -> ServerCheckReport:
        return self.server_handler.check_server(server_id)

    def provision(self, user_id: int, plan_id: int) -> Subscription:
        """Provision a peer and record the subscription once its config exists.

        A failure at any point leaves no subscription behind and gives the
        reserved server slot back.
        """
        user = self.repository.get_user_by_id(user_id)
        plan = self.repository.get_subscription_plan_by_id(plan_id)
        if not plan.is_active:
            msg = f"Subscription plan #{plan.id} is not available"
            raise ValidationError(msg, 400)

        server = self.server_handler.reserve_slot()
        logger.info(
            "Provisioning user #%s on server #%s for plan %s", user.id, server.id, plan.name
        )
        try:
            self.engine.setup_server(server)
            config_path = self.engine.create_client_config(server, f"user_{user.id}")
        except ProvisioningError:
            logger.exception("Provisioning for user #%s failed", user.id)
            self.server_handler.release_slot(server.id)
            raise

        start = utcnow()
        subscription = Subscription(
            user_id=user.id,
            server_id=server.id,
            plan_id=plan.id,
            start_date=start,
            end_date=start + timedelta(days=plan.duration),
            config_file_path=str(config_path),
        )
        try:
            return self.repository.add_subscription(subscription)
        except (OSError, ValidationError):
            logger.exception("Could not save subscription for user #%s", user.id)
            self._compensate(server, config_path)
            raise

    def _compensate(self, server: Server, config_path: Path) -> None:
        try:
            self.engine.remove_client(server, config_path.stem)
        except ProvisioningError as e:
            logger.error("Could not remove orphaned peer %s: %s", config_path.stem, e)
        self.server_handler.release_slot(server.id)

    def config_path(self, subscription_id: int) -> Path:
        """Local client config of a subscription, for download."""
        subscription = self.repository.get_subscription_by_id(subscription_id)
        path = Path(subscription.config_file_path)
        if not subscription.config_file_path or not path.is_file():
            msg = f"No client config stored for subscription #{subscription_id}"
            raise NotFoundError(msg)
        return path

    def block(self, subscription_id: int) -> ActionResult:
        return self.admin_handler.block(subscription_id)

    def unblock(self, subscription_id: int) -> ActionResult:
        return self.admin_handler.unblock(subscription_id)

    def revoke(self, subscription_id: int) -> ActionResult:
        return self.admin_handler.revoke(subscription_id)

    def is_blocked(self, subscription_id: int) -> bool:
        return self.admin_handler.is_blocked(subscription_id)

    def trigger_sweep(self) -> bool:
        if self.reconciler is None:
            msg = "Subscription reconciler is not configured"
            raise ValidationError(msg, 503)
        return self.reconciler.trigger()
