"""
Admin server wiring the repository, engine, reconciler and HTTP routes.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from fastapi import FastAPI

from easywg.common.config import Config
from easywg.notifications import build_notifier
from easywg.scheduler import SubscriptionReconciler
from easywg.vpn import ProvisioningEngine

from .domain.server_handler import ServerHandler
from .repository import JsonRepository
from .routes import AdminRoutes
from .services import SubscriptionService

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from easywg.common.interfaces import INotifier, IRepository


class AdminServer:
    """Main admin server class.

    The reconciler runs for as long as the FastAPI app is up: it is started
    in the app lifespan and stopped on shutdown.
    """

    def __init__(  # noqa: PLR0913
        self,
        config: Config | None = None,
        repository: IRepository | None = None,
        engine: ProvisioningEngine | None = None,
        notifier: INotifier | None = None,
        database_file_path: Path | None = None,
        start_reconciler: bool = True,  # noqa: FBT001, FBT002
    ):
        self.config = config or Config()
        self.logger = logging.getLogger(__name__)
        self.server_host = self.config.SERVER_HOST
        self.server_port = self.config.SERVER_PORT
        self.start_reconciler = start_reconciler

        self.repository = repository or JsonRepository(
            database_file_path or self.config.DATABASE_FILE_PATH
        )
        self.engine = engine or ProvisioningEngine(self.config)
        self.notifier = notifier or build_notifier(self.config)
        server_handler = ServerHandler(repository=self.repository, engine=self.engine)
        self.reconciler = SubscriptionReconciler(
            self.repository,
            self.engine,
            self.notifier,
            config=self.config,
            release_slot=server_handler.release_slot,
        )
        self.service = SubscriptionService(
            self.config,
            self.repository,
            self.engine,
            self.notifier,
            reconciler=self.reconciler,
            server_handler=server_handler,
        )

        self.app = FastAPI(title="easywg admin", lifespan=self._lifespan)
        AdminRoutes(self.service, self.config.ADMIN_PASSWORD).setup_routes(self.app)

        if not self.config.ADMIN_PASSWORD:
            self.logger.warning("EASYWG_ADMIN_PASSWORD is not set, admin calls will fail")

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI) -> AsyncIterator[None]:
        if self.start_reconciler:
            self.reconciler.start()
        self.logger.info(
            "Admin server listening on http://%s:%s", self.server_host, self.server_port
        )
        try:
            yield
        finally:
            self.reconciler.stop(drain_timeout=5)
            self.service.close()
            self.engine.close()
