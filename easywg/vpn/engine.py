"""
Provisioning workflows for WireGuard hosts and their peers.
"""

from __future__ import annotations

import ipaddress
import logging
import shlex
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, TypeVar

from easywg.common.config import Config
from easywg.common.crypto import WireGuardKeys
from easywg.common.exceptions import (
    AuthFailedError,
    CommandFailedError,
    HostUnreachableError,
    InterfaceVerificationError,
    InvalidConfigPathError,
    PrivilegeDeniedError,
    ProvisioningError,
    ProvisioningFailedError,
    SetupTimeoutError,
    UnsupportedOSError,
)
from easywg.common.models import Server, ServerCheckReport, ServerInfo
from easywg.vpn.client_config import (
    artifact_path,
    delete_artifact,
    render_client_config,
    write_artifact,
)
from easywg.vpn.os_family import (
    GENERIC_PROBES,
    INSTALL_COMMANDS,
    OSFamily,
    classify_os,
    parse_os_release,
)
from easywg.vpn.peer_store import PEER_NAME_PATTERN, PeerConfigStore, PeerRegistry
from easywg.vpn.remote_session import RemoteHostSession

if TYPE_CHECKING:
    from easywg.common.interfaces import IRemoteSession

logger = logging.getLogger(__name__)

T = TypeVar("T")
SessionFactory = Callable[[Server, float], "IRemoteSession"]

# Errors that end a workflow as they are, without a stage wrapper
_TRANSPORT_ERRORS = (
    HostUnreachableError,
    AuthFailedError,
    PrivilegeDeniedError,
    ProvisioningFailedError,
)

PUBLIC_IP_COMMAND = (
    "curl -4 -s --max-time 5 https://ifconfig.me || "
    "curl -4 -s --max-time 5 https://icanhazip.com"
)
LOCAL_IP_COMMAND = "hostname -I | awk '{print $1}'"
DEFAULT_ROUTE_COMMAND = "ip -o -4 route show to default | awk '{print $5}' | head -1"
SYSCTL_FILE = "/etc/sysctl.d/99-wireguard.conf"


class ProvisioningEngine:
    """Drives remote hosts through setup and peer lifecycle workflows.

    Every workflow opens its own session, and all workflows against one host
    are serialized by a per-host lock, so concurrent provisioning calls never
    interleave registry rewrites or hand out the same address twice.
    """

    def __init__(
        self,
        config: Config | None = None,
        configs_dir: Path | str | None = None,
        session_factory: SessionFactory | None = None,
    ):
        self.config = config or Config()
        self.configs_dir = Path(configs_dir or self.config.CONFIGS_DIR)
        self.network = ipaddress.IPv4Network(self.config.TUNNEL_NETWORK)
        self._session_factory = session_factory or self._open_session
        self._host_locks: dict[tuple[str, int], threading.Lock] = {}
        self._host_locks_guard = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=4, thread_name_prefix="easywg-connect"
        )

    def _open_session(self, server: Server, timeout: float) -> IRemoteSession:
        return RemoteHostSession.open(
            server, connect_timeout=timeout, command_timeout=self.config.COMMAND_TIMEOUT
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    # Sessions and locking

    def _host_lock(self, server: Server) -> threading.Lock:
        key = (server.ip, server.port)
        with self._host_locks_guard:
            if key not in self._host_locks:
                self._host_locks[key] = threading.Lock()
            return self._host_locks[key]

    def _connect(self, server: Server) -> IRemoteSession:
        return self._session_factory(server, self.config.CONNECT_TIMEOUT)

    def _connect_bounded(self, server: Server, timeout: float) -> IRemoteSession:
        """Connect with a hard deadline, closing a session that arrives late."""
        future = self._executor.submit(self._session_factory, server, timeout)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            if not future.cancel():
                future.add_done_callback(self._close_late_session)
            msg = f"Connecting to {server.address} took longer than {timeout}s"
            raise SetupTimeoutError(msg) from None

    @staticmethod
    def _close_late_session(future: Future) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        session = future.result()
        logger.info("Closing session that connected after its setup deadline")
        session.close()

    def _store(self, session: IRemoteSession) -> PeerConfigStore:
        return PeerConfigStore(session, self.config.WG_CONFIG_PATH, self.network)

    @staticmethod
    def _stage(stage: str, func: Callable[..., T], *args: Any) -> T:
        try:
            return func(*args)
        except _TRANSPORT_ERRORS:
            raise
        except (ProvisioningError, ValueError, OSError) as e:
            logger.error("Stage %s failed: %s", stage, e)
            raise ProvisioningFailedError(stage, e) from e

    # Remote primitives

    @staticmethod
    def _file_exists(session: IRemoteSession, path: str) -> bool:
        output = session.run(f"test -f {shlex.quote(path)} && echo exists || true")
        return output.strip() == "exists"

    @staticmethod
    def _has_wireguard(session: IRemoteSession) -> bool:
        try:
            session.run("which wg", sudo=False)
        except CommandFailedError:
            return False
        return True

    def _restart_service(self, session: IRemoteSession) -> None:
        session.run(f"systemctl restart {self.config.SERVICE_NAME}")

    # Server setup

    def setup_server(self, server: Server) -> None:
        """Install, configure and start WireGuard on a host. Safe to re-run."""
        logger.info("Setting up server #%s (%s)", server.id, server.address)
        with self._host_lock(server):
            session = self._connect_bounded(server, self.config.SETUP_TIMEOUT)
            with session:
                self._ensure_installed(session)
                session.run(f"mkdir -p {shlex.quote(self.config.WG_CONFIG_DIR)}")
                store = self._store(session)
                private_key = self._ensure_server_keys(session, store)
                if not store.exists():
                    self._write_base_config(session, store, private_key)
                self._enable_forwarding(session)
                self._start_service(session)
                self._verify_interface(session)
        logger.info("Server #%s is ready", server.id)

    def _ensure_installed(self, session: IRemoteSession) -> None:
        if self._has_wireguard(session):
            logger.debug("WireGuard already installed")
            return
        try:
            info = parse_os_release(session.run("cat /etc/os-release", sudo=False))
        except CommandFailedError:
            info = {}
        family = classify_os(info)
        logger.info("Installing WireGuard for OS family %s", family.value)

        if family is OSFamily.UNKNOWN:
            self._install_by_probing(session)
        else:
            for step in INSTALL_COMMANDS[family]:
                try:
                    session.run(step.command)
                except CommandFailedError as e:
                    if not step.optional:
                        raise
                    logger.info("Optional install step failed: %s", e)

        if not self._has_wireguard(session):
            msg = "WireGuard tools are still missing after installation"
            raise UnsupportedOSError(msg)

    @staticmethod
    def _install_by_probing(session: IRemoteSession) -> None:
        for probe in GENERIC_PROBES:
            try:
                session.run(probe)
            except CommandFailedError:
                continue
            return
        msg = "No supported package manager found to install WireGuard"
        raise UnsupportedOSError(msg)

    def _ensure_server_keys(self, session: IRemoteSession, store: PeerConfigStore) -> str:
        """Return the server private key, generating the pair only on first run."""
        priv_path = self.config.SERVER_PRIVATE_KEY_PATH
        pub_path = self.config.SERVER_PUBLIC_KEY_PATH
        if self._file_exists(session, priv_path) and self._file_exists(session, pub_path):
            return session.run(f"cat {shlex.quote(priv_path)}").strip()

        registry_key = store.load().private_key() if store.exists() else None
        if registry_key and WireGuardKeys.is_valid(registry_key):
            # Key files were lost but the interface still has its identity
            logger.warning("Restoring server key files from %s", store.path)
            public_key = WireGuardKeys.public_key_from_private(registry_key)
            session.write_file(priv_path, registry_key + "\n")
            session.write_file(pub_path, public_key + "\n")
            session.run(f"chmod 600 {shlex.quote(priv_path)} {shlex.quote(pub_path)}")
            return registry_key

        logger.info("Generating server key pair")
        session.run(
            f"umask 077 && wg genkey | tee {shlex.quote(priv_path)} "
            f"| wg pubkey > {shlex.quote(pub_path)}"
        )
        session.run(f"chmod 600 {shlex.quote(priv_path)} {shlex.quote(pub_path)}")
        return session.run(f"cat {shlex.quote(priv_path)}").strip()

    def _write_base_config(
        self, session: IRemoteSession, store: PeerConfigStore, private_key: str
    ) -> None:
        try:
            net_interface = session.run(DEFAULT_ROUTE_COMMAND, sudo=False).strip()
        except CommandFailedError:
            net_interface = ""
        text = PeerRegistry.render_interface(
            private_key,
            self.network,
            self.config.LISTEN_PORT,
            self.config.WG_INTERFACE,
            net_interface or self.config.DEFAULT_NET_INTERFACE,
        )
        store.commit(PeerRegistry(text))
        logger.info("Wrote base interface config %s", store.path)

    @staticmethod
    def _enable_forwarding(session: IRemoteSession) -> None:
        session.run(
            f"echo 'net.ipv4.ip_forward=1' > {SYSCTL_FILE} && sysctl -p {SYSCTL_FILE}"
        )

    def _start_service(self, session: IRemoteSession) -> None:
        service = self.config.SERVICE_NAME
        session.run(f"systemctl enable {service} && systemctl start {service}")

    def _verify_interface(self, session: IRemoteSession) -> None:
        try:
            session.run(f"ip link show {self.config.WG_INTERFACE}", sudo=False)
        except CommandFailedError as e:
            msg = f"Interface {self.config.WG_INTERFACE} is not up: {e.stderr}"
            raise InterfaceVerificationError(msg) from e

    # Server info

    def _server_info(
        self, session: IRemoteSession, server: Server, store: PeerConfigStore
    ) -> ServerInfo:
        self._ensure_server_keys(session, store)
        public_key = session.run(
            f"cat {shlex.quote(self.config.SERVER_PUBLIC_KEY_PATH)}"
        ).strip()
        if not WireGuardKeys.is_valid(public_key):
            msg = "Server public key file holds an invalid key"
            raise ValueError(msg)

        listen_port = None
        if store.exists():
            listen_port = store.load().listen_port()
        return ServerInfo(
            public_key=public_key,
            public_ip=self._public_ip(session, server),
            listen_port=listen_port or self.config.LISTEN_PORT,
        )

    @staticmethod
    def _public_ip(session: IRemoteSession, server: Server) -> str:
        for command in (PUBLIC_IP_COMMAND, LOCAL_IP_COMMAND):
            try:
                candidate = session.run(command, sudo=False).strip()
                ipaddress.IPv4Address(candidate)
            except (CommandFailedError, ValueError):
                continue
            return candidate
        logger.warning("Could not discover public IP, using %s", server.ip)
        return server.ip

    # Client lifecycle

    @staticmethod
    def _generate_client_keys(session: IRemoteSession) -> tuple[str, str]:
        private_key = session.run("wg genkey", sudo=False).strip()
        public_key = session.run(
            f"echo {shlex.quote(private_key)} | wg pubkey", sudo=False, secret=True
        ).strip()
        if WireGuardKeys.public_key_from_private(private_key) != public_key:
            msg = "Remote public key does not match the generated private key"
            raise ValueError(msg)
        return private_key, public_key

    def _unique_name(self, store: PeerConfigStore, base: str) -> str:
        if not PEER_NAME_PATTERN.fullmatch(base):
            msg = f"Invalid client name: {base!r}"
            raise ValueError(msg)
        try:
            registry = store.load()
        except CommandFailedError:
            registry = PeerRegistry()
        name, counter = base, 2
        while registry.has_peer(name) or artifact_path(self.configs_dir, name).exists():
            name = f"{base}_{counter}"
            counter += 1
        if name != base:
            logger.info("Client name %s is taken, using %s", base, name)
        return name

    def create_client_config(self, server: Server, client_name: str) -> Path:
        """Add a peer on the host and write its client config locally.

        The returned path's stem is the peer name actually used, which gets a
        numeric suffix when client_name is already taken on the host.
        """
        logger.info("Creating client %s on server #%s", client_name, server.id)
        with self._host_lock(server):
            session = self._connect(server)
            with session:
                store = self._store(session)
                name = self._stage("name", self._unique_name, store, client_name)
                private_key, public_key = self._stage(
                    "keygen", self._generate_client_keys, session
                )
                info = self._stage("server_info", self._server_info, session, server, store)
                address = self._stage("allocate", store.next_free_address)
                self._stage("append_peer", store.append_peer, name, public_key, address)
                self._stage("restart", self._restart_service, session)

            content = render_client_config(
                private_key,
                address,
                info,
                dns=self.config.CLIENT_DNS,
                allowed_ips=self.config.CLIENT_ALLOWED_IPS,
                keepalive=self.config.PERSISTENT_KEEPALIVE,
            )
            path = self._stage(
                "write_artifact",
                write_artifact,
                artifact_path(self.configs_dir, name),
                content,
            )
        logger.info("Client %s provisioned at %s", name, address)
        return path

    def remove_client(self, server: Server, client_name: str) -> bool:
        """Delete a peer and its local config. Returns whether the peer existed."""
        logger.info("Removing client %s from server #%s", client_name, server.id)
        with self._host_lock(server):
            session = self._connect(server)
            with session:
                removed = self._store(session).remove_peer(client_name)
                self._restart_service(session)
        delete_artifact(artifact_path(self.configs_dir, client_name))
        return removed

    @staticmethod
    def client_name_from_path(config_path: str | Path | None) -> str:
        if not config_path or not str(config_path).strip():
            msg = "Config path is empty"
            raise InvalidConfigPathError(msg)
        name = Path(str(config_path).strip()).stem
        if not name or not PEER_NAME_PATTERN.fullmatch(name):
            msg = f"Cannot derive a client name from {config_path!r}"
            raise InvalidConfigPathError(msg)
        return name

    def revoke_client_config(self, server: Server, config_path: str | Path) -> bool:
        name = self.client_name_from_path(config_path)
        return self.remove_client(server, name)

    def _set_blocked(self, server: Server, config_path: str | Path, blocked: bool) -> bool:
        name = self.client_name_from_path(config_path)
        action = "Blocking" if blocked else "Unblocking"
        logger.info("%s client %s on server #%s", action, name, server.id)
        with self._host_lock(server):
            session = self._connect(server)
            with session:
                found = self._store(session).set_blocked(name, blocked)
                if not found:
                    logger.warning("Peer %s not found on server #%s", name, server.id)
                    return False
                self._restart_service(session)
        return True

    def block_client(self, server: Server, config_path: str | Path) -> bool:
        return self._set_blocked(server, config_path, blocked=True)

    def unblock_client(self, server: Server, config_path: str | Path) -> bool:
        return self._set_blocked(server, config_path, blocked=False)

    def is_client_blocked(self, server: Server, config_path: str | Path) -> bool:
        name = self.client_name_from_path(config_path)
        with self._host_lock(server):
            session = self._connect(server)
            with session:
                return self._store(session).is_blocked(name)

    # Health

    def check_server(self, server: Server) -> ServerCheckReport:
        """Probe a host without changing it; failures land in the report."""
        report = ServerCheckReport(server_id=server.id)
        try:
            with self._host_lock(server):
                session = self._connect(server)
                with session:
                    report.reachable = True
                    report.wireguard_installed = self._has_wireguard(session)
                    store = self._store(session)
                    report.config_present = store.exists()
                    if report.config_present:
                        report.peer_count = len(store.load().peers())
        except ProvisioningError as e:
            logger.warning("Check of server #%s failed: %s", server.id, e)
            report.error = str(e)
        return report
