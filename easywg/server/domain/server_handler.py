"""
Server registration, setup, health checks and slot accounting.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from easywg.common.exceptions import NoServerAvailableError, ProvisioningError
from easywg.common.models import AddServerRequest, Server, ServerCheckReport

if TYPE_CHECKING:
    from easywg.common.interfaces import IRepository
    from easywg.vpn.engine import ProvisioningEngine

logger = logging.getLogger(__name__)


class ServerHandler:
    """Handles server records and their occupancy counters."""

    def __init__(self, repository: IRepository, engine: ProvisioningEngine):
        self.repository = repository
        self.engine = engine
        self._slots_lock = threading.Lock()

    def add_server(self, req: AddServerRequest) -> Server:
        server = self.repository.add_server(
            Server(
                ip=req.ip,
                port=req.port,
                ssh_user=req.ssh_user,
                ssh_password=req.ssh_password,
                ssh_key_path=req.ssh_key_path,
                max_clients=req.max_clients,
            )
        )
        logger.info("Added server #%s (%s)", server.id, server.address)
        if req.setup:
            self.setup_server(server.id)
        return self.repository.get_server_by_id(server.id)

    def setup_server(self, server_id: int) -> Server:
        """Run host setup; a host that fails it is taken out of rotation."""
        server = self.repository.get_server_by_id(server_id)
        try:
            self.engine.setup_server(server)
        except ProvisioningError:
            if server.is_active:
                server.is_active = False
                self.repository.update_server(server)
                logger.warning("Server #%s deactivated after failed setup", server.id)
            raise
        if not server.is_active:
            server.is_active = True
            self.repository.update_server(server)
        return server

    def check_server(self, server_id: int) -> ServerCheckReport:
        """Probe a host and resync its occupancy from the peer count."""
        server = self.repository.get_server_by_id(server_id)
        report = self.engine.check_server(server)
        if report.config_present and server.current_clients != report.peer_count:
            logger.info(
                "Server #%s occupancy %d -> %d",
                server.id,
                server.current_clients,
                report.peer_count,
            )
            with self._slots_lock:
                server = self.repository.get_server_by_id(server_id)
                server.current_clients = report.peer_count
                self.repository.update_server(server)
        return report

    def reserve_slot(self) -> Server:
        """Take one slot on the first active server that has room."""
        with self._slots_lock:
            for server in self.repository.get_all_servers():
                if server.has_capacity():
                    server.current_clients += 1
                    self.repository.update_server(server)
                    return server
        msg = "No active server has free capacity"
        raise NoServerAvailableError(msg)

    def release_slot(self, server_id: int) -> None:
        with self._slots_lock:
            server = self.repository.get_server_by_id(server_id)
            server.current_clients = max(0, server.current_clients - 1)
            self.repository.update_server(server)
