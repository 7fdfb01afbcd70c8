from __future__ import annotations

import re
import threading
import time
from collections.abc import Callable
from pathlib import Path

import pytest

from easywg.common.config import Config
from easywg.common.crypto import WireGuardKeys
from easywg.common.exceptions import CommandFailedError, NotificationError
from easywg.common.models import Server, SubscriptionPlan, User
from easywg.server.repository import JsonRepository
from easywg.vpn.engine import (
    DEFAULT_ROUTE_COMMAND,
    LOCAL_IP_COMMAND,
    PUBLIC_IP_COMMAND,
    ProvisioningEngine,
)

DEBIAN_RELEASE = 'PRETTY_NAME="Ubuntu 22.04.3 LTS"\nID=ubuntu\nID_LIKE=debian\n'
PACKAGE_TOOLS = ("apt-get", "dnf", "yum", "pacman", "apk")

TEST_TAG_RE = re.compile(r"^test -f (\S+) && echo exists \|\| true$")
KEYGEN_RE = re.compile(r"^umask 077 && wg genkey \| tee (\S+) \| wg pubkey > (\S+)$")
COMMIT_RE = re.compile(r"^chmod 600 (\S+) && mv -f (\S+) (\S+)$")
PUBKEY_RE = re.compile(r"^echo (\S+) \| wg pubkey$")
CAT_RE = re.compile(r"^cat (\S+)$")


class FakeRemoteHost:
    """In-memory Linux host that understands the engine's shell commands."""

    def __init__(self) -> None:
        self.files: dict[str, str] = {}
        self.installed = False
        self.os_release: str | None = DEBIAN_RELEASE
        self.package_tools: set[str] = {"apt-get"}
        self.epel_available = True
        self.interface_comes_up = True
        self.service_running = False
        self.public_ip: str | None = "203.0.113.10"
        self.net_interface = "ens3"
        self.fail_on: dict[str, str] = {}
        self.commands: list[str] = []
        self.writes: list[str] = []
        self.keygen_count = 0
        self.restart_count = 0
        self.sessions: list[FakeSession] = []
        self.connect_error: Exception | None = None
        self.connect_gate: threading.Event | None = None
        self.lock = threading.Lock()

    @property
    def sessions_opened(self) -> int:
        return len(self.sessions)

    def configure_wireguard(self, config: Config, registry: str | None = None) -> str:
        """Pre-seed an already configured host. Returns the server private key."""
        private_key = WireGuardKeys.generate_private_key()
        self.installed = True
        self.service_running = True
        self.files[config.SERVER_PRIVATE_KEY_PATH] = private_key + "\n"
        self.files[config.SERVER_PUBLIC_KEY_PATH] = (
            WireGuardKeys.public_key_from_private(private_key) + "\n"
        )
        self.files[config.WG_CONFIG_PATH] = registry or (
            "[Interface]\n"
            f"PrivateKey = {private_key}\n"
            "Address = 10.0.0.1/24\n"
            "ListenPort = 51820\n"
        )
        return private_key

    def _fail(self, command: str, stderr: str) -> CommandFailedError:
        return CommandFailedError(command, stderr, 1)

    def _install(self, command: str) -> str:
        tool = next((t for t in PACKAGE_TOOLS if t in command.split()), None)
        if tool is None or tool not in self.package_tools:
            raise self._fail(command, f"{tool}: command not found")
        if "epel-release" in command:
            if not self.epel_available:
                raise self._fail(command, "No package epel-release available.")
            return ""
        if any(word in command for word in ("install", " add ", "-Sy")):
            self.installed = True
        return ""

    def execute(self, command: str) -> str:  # noqa: C901, PLR0911, PLR0912
        with self.lock:
            self.commands.append(command)
            for pattern, stderr in self.fail_on.items():
                if pattern in command:
                    raise self._fail(command, stderr)

            if command == "which wg":
                if not self.installed:
                    raise self._fail(command, "")
                return "/usr/bin/wg\n"
            if command == "cat /etc/os-release":
                if self.os_release is None:
                    raise self._fail(command, "No such file or directory")
                return self.os_release
            if command.startswith("mkdir -p "):
                return ""
            if match := TEST_TAG_RE.match(command):
                return "exists\n" if match.group(1) in self.files else ""
            if match := KEYGEN_RE.match(command):
                private_key = WireGuardKeys.generate_private_key()
                self.files[match.group(1)] = private_key + "\n"
                self.files[match.group(2)] = (
                    WireGuardKeys.public_key_from_private(private_key) + "\n"
                )
                self.keygen_count += 1
                return ""
            if match := COMMIT_RE.match(command):
                src, dst = match.group(2), match.group(3)
                self.files[dst] = self.files.pop(src)
                return ""
            if command.startswith("chmod 600 "):
                return ""
            if match := CAT_RE.match(command):
                path = match.group(1)
                if path not in self.files:
                    raise self._fail(command, f"cat: {path}: No such file or directory")
                return self.files[path]
            if command == DEFAULT_ROUTE_COMMAND:
                return self.net_interface + "\n"
            if command.startswith("echo 'net.ipv4.ip_forward=1'"):
                return "net.ipv4.ip_forward = 1\n"
            if command.startswith("systemctl enable "):
                if not self.installed:
                    raise self._fail(command, "Unit wg-quick@wg0.service not found.")
                self.service_running = True
                return ""
            if command.startswith("systemctl restart "):
                self.restart_count += 1
                return ""
            if command.startswith("ip link show "):
                if not (self.service_running and self.interface_comes_up):
                    raise self._fail(command, 'Device "wg0" does not exist.')
                return "4: wg0: <POINTOPOINT,NOARP,UP,LOWER_UP> mtu 1420\n"
            if command == "wg genkey":
                return WireGuardKeys.generate_private_key() + "\n"
            if match := PUBKEY_RE.match(command):
                return WireGuardKeys.public_key_from_private(match.group(1)) + "\n"
            if command == PUBLIC_IP_COMMAND:
                if self.public_ip is None:
                    raise self._fail(command, "curl: (6) Could not resolve host")
                return self.public_ip + "\n"
            if command == LOCAL_IP_COMMAND:
                return "10.1.2.3\n"
            if any(tool in command.split() for tool in PACKAGE_TOOLS):
                return self._install(command)
        msg = f"Unexpected command: {command}"
        raise AssertionError(msg)

    def write(self, path: str, content: str) -> None:
        with self.lock:
            self.writes.append(path)
            for pattern, stderr in self.fail_on.items():
                if pattern in f"write {path}":
                    raise self._fail(f"write {path}", stderr)
            self.files[path] = content


class FakeSession:
    def __init__(self, host: FakeRemoteHost):
        self.host = host
        self.closed = False
        self.commands: list[tuple[str, bool, bool]] = []

    def run(self, command: str, *, sudo: bool = True, secret: bool = False) -> str:
        assert not self.closed, "session used after close"
        self.commands.append((command, sudo, secret))
        return self.host.execute(command)

    def write_file(self, path: str, content: str) -> None:
        assert not self.closed, "session used after close"
        self.host.write(path, content)

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> FakeSession:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def session_factory_for(host: FakeRemoteHost) -> Callable[[Server, float], FakeSession]:
    def factory(server: Server, timeout: float) -> FakeSession:
        if host.connect_gate is not None:
            host.connect_gate.wait(5)
        if host.connect_error is not None:
            raise host.connect_error
        session = FakeSession(host)
        host.sessions.append(session)
        return session

    return factory


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[int, str]] = []
        self.fail_for: set[int] = set()

    def notify(self, destination_id: int, text: str) -> None:
        if destination_id in self.fail_for:
            msg = f"chat {destination_id} not found"
            raise NotificationError(msg)
        self.sent.append((destination_id, text))

    def to(self, destination_id: int) -> list[str]:
        return [text for dest, text in self.sent if dest == destination_id]


@pytest.fixture
def config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Config:
    monkeypatch.setenv("EASYWG_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("EASYWG_TELEGRAM_BOT_TOKEN", raising=False)
    cfg = Config()
    cfg.ADMIN_PASSWORD = "secret"
    cfg.SETUP_TIMEOUT = 2.0
    cfg.ADMIN_ACTION_TIMEOUT = 2.0
    return cfg


@pytest.fixture
def host() -> FakeRemoteHost:
    return FakeRemoteHost()


@pytest.fixture
def engine(config: Config, host: FakeRemoteHost):
    eng = ProvisioningEngine(config, session_factory=session_factory_for(host))
    yield eng
    eng.close()


@pytest.fixture
def server() -> Server:
    return Server(id=1, ip="198.51.100.7", ssh_password="pw", max_clients=5)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def repository(config: Config) -> JsonRepository:
    return JsonRepository(config.DATABASE_FILE_PATH)


@pytest.fixture
def seeded(repository: JsonRepository) -> dict:
    """A server, a regular user, an admin and a 30-day plan."""
    return {
        "server": repository.add_server(
            Server(ip="198.51.100.7", ssh_password="pw", max_clients=2)
        ),
        "user": repository.add_user(User(telegram_id=1001, username="alice")),
        "admin": repository.add_user(User(telegram_id=9001, is_admin=True)),
        "plan": repository.add_subscription_plan(
            SubscriptionPlan(name="Month", duration=30, price=5.0)
        ),
    }


def wait_for(predicate: Callable[[], bool], timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()
