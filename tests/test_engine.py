import stat
import threading
from pathlib import Path

import pytest

from easywg.common.config import Config
from easywg.common.crypto import WireGuardKeys
from easywg.common.exceptions import (
    AuthFailedError,
    HostUnreachableError,
    InterfaceVerificationError,
    InvalidConfigPathError,
    ProvisioningFailedError,
    SetupTimeoutError,
    UnsupportedOSError,
)
from easywg.common.models import Server
from easywg.vpn.engine import ProvisioningEngine
from tests.conftest import FakeRemoteHost, session_factory_for, wait_for

WG_CONF = "/etc/wireguard/wg0.conf"


def test_setup_server_installs_and_configures_fresh_debian_host(
    engine: ProvisioningEngine, host: FakeRemoteHost, server: Server, config: Config
) -> None:
    engine.setup_server(server)

    assert host.installed
    assert "apt-get update" in host.commands
    assert host.keygen_count == 1
    assert host.service_running

    registry = host.files[WG_CONF]
    private_key = host.files[config.SERVER_PRIVATE_KEY_PATH].strip()
    assert f"PrivateKey = {private_key}\n" in registry
    assert "Address = 10.0.0.1/24\n" in registry
    assert "ListenPort = 51820\n" in registry
    assert "POSTROUTING -o ens3 -j MASQUERADE" in registry
    assert host.sessions[-1].closed


def test_setup_server_twice_does_not_regenerate_keys(
    engine: ProvisioningEngine, host: FakeRemoteHost, server: Server, config: Config
) -> None:
    engine.setup_server(server)
    registry = host.files[WG_CONF]
    private_key = host.files[config.SERVER_PRIVATE_KEY_PATH]

    engine.setup_server(server)

    assert host.keygen_count == 1
    assert host.files[WG_CONF] == registry
    assert host.files[config.SERVER_PRIVATE_KEY_PATH] == private_key
    assert host.commands.count("apt-get update") == 1


def test_setup_server_restores_key_files_from_registry(
    engine: ProvisioningEngine, host: FakeRemoteHost, server: Server, config: Config
) -> None:
    private_key = host.configure_wireguard(config)
    del host.files[config.SERVER_PRIVATE_KEY_PATH]
    del host.files[config.SERVER_PUBLIC_KEY_PATH]

    engine.setup_server(server)

    assert host.keygen_count == 0
    assert host.files[config.SERVER_PRIVATE_KEY_PATH].strip() == private_key
    assert host.files[
        config.SERVER_PUBLIC_KEY_PATH
    ].strip() == WireGuardKeys.public_key_from_private(private_key)


def test_setup_server_rhel_tolerates_missing_epel(
    engine: ProvisioningEngine, host: FakeRemoteHost, server: Server
) -> None:
    host.os_release = 'ID="rocky"\nID_LIKE="rhel centos fedora"\n'
    host.package_tools = {"yum"}
    host.epel_available = False

    engine.setup_server(server)

    assert host.installed
    assert "yum install -y wireguard-tools" in host.commands


def test_setup_server_unknown_os_probes_package_managers(
    engine: ProvisioningEngine, host: FakeRemoteHost, server: Server
) -> None:
    host.os_release = None
    host.package_tools = {"apk"}

    engine.setup_server(server)

    assert host.installed
    assert any(cmd.startswith("command -v apk") for cmd in host.commands)


def test_setup_server_unsupported_os(
    engine: ProvisioningEngine, host: FakeRemoteHost, server: Server
) -> None:
    host.os_release = "ID=plan9\n"
    host.package_tools = set()

    with pytest.raises(UnsupportedOSError):
        engine.setup_server(server)
    assert WG_CONF not in host.files


def test_setup_server_interface_must_come_up(
    engine: ProvisioningEngine, host: FakeRemoteHost, server: Server
) -> None:
    host.interface_comes_up = False
    with pytest.raises(InterfaceVerificationError, match="wg0"):
        engine.setup_server(server)


def test_setup_server_transport_errors_pass_through(
    engine: ProvisioningEngine, host: FakeRemoteHost, server: Server
) -> None:
    host.connect_error = AuthFailedError("Authentication failed")
    with pytest.raises(AuthFailedError):
        engine.setup_server(server)
    assert host.commands == []


def test_setup_server_times_out_and_closes_late_session(
    config: Config, host: FakeRemoteHost, server: Server
) -> None:
    config.SETUP_TIMEOUT = 0.05
    host.connect_gate = threading.Event()
    engine = ProvisioningEngine(config, session_factory=session_factory_for(host))
    try:
        with pytest.raises(SetupTimeoutError):
            engine.setup_server(server)
        host.connect_gate.set()
        assert wait_for(lambda: host.sessions_opened == 1 and host.sessions[0].closed)
        assert host.commands == []
    finally:
        engine.close()


def test_create_client_config_writes_artifact(
    engine: ProvisioningEngine, host: FakeRemoteHost, server: Server, config: Config
) -> None:
    host.configure_wireguard(config)
    server_public = host.files[config.SERVER_PUBLIC_KEY_PATH].strip()

    path = engine.create_client_config(server, "user_1")

    assert path == Path(config.CONFIGS_DIR) / "user_1.conf"
    content = path.read_text()
    private_key = content.split("PrivateKey = ")[1].split("\n")[0]
    assert content == (
        "[Interface]\n"
        f"PrivateKey = {private_key}\n"
        "Address = 10.0.0.2/32\n"
        "DNS = 8.8.8.8, 1.1.1.1\n"
        "\n"
        "[Peer]\n"
        f"PublicKey = {server_public}\n"
        "AllowedIPs = 0.0.0.0/0\n"
        "Endpoint = 203.0.113.10:51820\n"
        "PersistentKeepalive = 25\n"
    )
    assert stat.S_IMODE(path.stat().st_mode) == 0o600

    client_public = WireGuardKeys.public_key_from_private(private_key)
    assert (
        f"# user_1\n[Peer]\nPublicKey = {client_public}\nAllowedIPs = 10.0.0.2/32\n"
        in host.files[WG_CONF]
    )
    assert host.restart_count == 1


def test_create_client_config_never_logs_private_key(
    engine: ProvisioningEngine, host: FakeRemoteHost, server: Server, config: Config
) -> None:
    host.configure_wireguard(config)
    engine.create_client_config(server, "user_1")
    pubkey_calls = [c for c in host.sessions[-1].commands if "wg pubkey" in c[0]]
    assert pubkey_calls and all(secret for _, _, secret in pubkey_calls)


def test_create_client_config_allocates_after_highest_address(
    engine: ProvisioningEngine, host: FakeRemoteHost, server: Server, config: Config
) -> None:
    private_key = host.configure_wireguard(config)
    host.files[WG_CONF] = (
        f"[Interface]\nPrivateKey = {private_key}\nListenPort = 51999\n"
        "\n# a\n[Peer]\nPublicKey = A\nAllowedIPs = 10.0.0.2/32\n"
        "\n# b\n[Peer]\nPublicKey = B\nAllowedIPs = 10.0.0.3/32\n"
        "\n#BLOCKED c\n#[Peer]\n#PublicKey = C\n#AllowedIPs = 10.0.0.5/32\n"
    )

    path = engine.create_client_config(server, "d")

    content = path.read_text()
    assert "Address = 10.0.0.6/32\n" in content
    assert "Endpoint = 203.0.113.10:51999\n" in content


def test_create_client_config_falls_back_to_local_address(
    engine: ProvisioningEngine, host: FakeRemoteHost, server: Server, config: Config
) -> None:
    host.configure_wireguard(config)
    host.public_ip = None
    path = engine.create_client_config(server, "user_1")
    assert "Endpoint = 10.1.2.3:51820\n" in path.read_text()


def test_duplicate_client_name_gets_suffix(
    engine: ProvisioningEngine, host: FakeRemoteHost, server: Server, config: Config
) -> None:
    host.configure_wireguard(config)
    first = engine.create_client_config(server, "alice")
    second = engine.create_client_config(server, "alice")

    assert first.stem == "alice"
    assert second.stem == "alice_2"
    assert "Address = 10.0.0.3/32" in second.read_text()
    assert "# alice_2\n" in host.files[WG_CONF]


def test_failed_restart_leaves_no_artifact(
    engine: ProvisioningEngine, host: FakeRemoteHost, server: Server, config: Config
) -> None:
    host.configure_wireguard(config)
    host.fail_on["systemctl restart"] = "Job for wg-quick@wg0.service failed"

    with pytest.raises(ProvisioningFailedError) as exc_info:
        engine.create_client_config(server, "user_1")

    assert exc_info.value.stage == "restart"
    assert "Job for wg-quick@wg0.service failed" in str(exc_info.value)
    assert not (Path(config.CONFIGS_DIR) / "user_1.conf").exists()
    # The appended peer stays; the next restart picks it up
    assert "# user_1\n" in host.files[WG_CONF]


def test_failed_append_reports_stage(
    engine: ProvisioningEngine, host: FakeRemoteHost, server: Server, config: Config
) -> None:
    host.configure_wireguard(config)
    host.fail_on["write /etc/wireguard/wg0.conf.tmp"] = "No space left on device"

    with pytest.raises(ProvisioningFailedError) as exc_info:
        engine.create_client_config(server, "user_1")

    assert exc_info.value.stage == "append_peer"
    assert host.restart_count == 0


def test_unreachable_host_is_not_wrapped(
    engine: ProvisioningEngine, host: FakeRemoteHost, server: Server
) -> None:
    host.connect_error = HostUnreachableError("timed out")
    with pytest.raises(HostUnreachableError):
        engine.create_client_config(server, "user_1")


def test_concurrent_creates_never_share_an_address(
    engine: ProvisioningEngine, host: FakeRemoteHost, config: Config
) -> None:
    host.configure_wireguard(config)
    server = Server(id=1, ip="198.51.100.7", max_clients=1)
    paths: list[Path] = []
    errors: list[Exception] = []

    def create(name: str) -> None:
        try:
            paths.append(engine.create_client_config(server, name))
        except Exception as e:  # noqa: BLE001
            errors.append(e)

    threads = [threading.Thread(target=create, args=(n,)) for n in ("alice", "bob")]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    addresses = {
        line for p in paths for line in p.read_text().splitlines() if "Address" in line
    }
    assert addresses == {"Address = 10.0.0.2/32", "Address = 10.0.0.3/32"}


def test_revoke_with_empty_path_makes_no_remote_call(
    engine: ProvisioningEngine, host: FakeRemoteHost, server: Server
) -> None:
    with pytest.raises(InvalidConfigPathError):
        engine.revoke_client_config(server, "")
    assert host.sessions_opened == 0


@pytest.mark.parametrize(
    ("path", "name"),
    [
        ("/data/vpn_configs/user_7.conf", "user_7"),
        ("user_7.conf", "user_7"),
        ("relative/dir/user_7", "user_7"),
    ],
)
def test_client_name_from_path(path: str, name: str) -> None:
    assert ProvisioningEngine.client_name_from_path(path) == name


@pytest.mark.parametrize("path", ["", "   ", "/", "/data/bad name.conf"])
def test_client_name_from_bad_path(path: str) -> None:
    with pytest.raises(InvalidConfigPathError):
        ProvisioningEngine.client_name_from_path(path)


def test_revoke_removes_peer_and_artifact(
    engine: ProvisioningEngine, host: FakeRemoteHost, server: Server, config: Config
) -> None:
    host.configure_wireguard(config)
    before = host.files[WG_CONF]
    path = engine.create_client_config(server, "user_1")

    assert engine.revoke_client_config(server, str(path)) is True

    assert host.files[WG_CONF] == before
    assert not path.exists()
    assert host.restart_count == 2


def test_remove_missing_client_is_not_an_error(
    engine: ProvisioningEngine, host: FakeRemoteHost, server: Server, config: Config
) -> None:
    host.configure_wireguard(config)
    before = host.files[WG_CONF]
    assert engine.remove_client(server, "ghost") is False
    assert host.files[WG_CONF] == before


def test_block_and_unblock_round_trip(
    engine: ProvisioningEngine, host: FakeRemoteHost, server: Server, config: Config
) -> None:
    host.configure_wireguard(config)
    path = engine.create_client_config(server, "user_1")
    before = host.files[WG_CONF]

    assert engine.is_client_blocked(server, path) is False
    assert engine.block_client(server, path) is True
    assert engine.is_client_blocked(server, path) is True
    assert "#BLOCKED user_1\n#[Peer]\n" in host.files[WG_CONF]

    # Already blocked: still fine
    assert engine.block_client(server, path) is True

    assert engine.unblock_client(server, path) is True
    assert engine.unblock_client(server, path) is True
    assert host.files[WG_CONF] == before
    assert engine.is_client_blocked(server, path) is False


def test_block_missing_peer_does_not_restart(
    engine: ProvisioningEngine, host: FakeRemoteHost, server: Server, config: Config
) -> None:
    host.configure_wireguard(config)
    assert engine.block_client(server, "/x/ghost.conf") is False
    assert host.restart_count == 0


def test_check_server_reports_peers(
    engine: ProvisioningEngine, host: FakeRemoteHost, server: Server, config: Config
) -> None:
    host.configure_wireguard(config)
    engine.create_client_config(server, "a")
    path = engine.create_client_config(server, "b")
    engine.block_client(server, path)

    report = engine.check_server(server)

    assert report.reachable
    assert report.wireguard_installed
    assert report.config_present
    assert report.peer_count == 2
    assert report.error is None


def test_check_server_records_connection_error(
    engine: ProvisioningEngine, host: FakeRemoteHost, server: Server
) -> None:
    host.connect_error = HostUnreachableError("no route to host")
    report = engine.check_server(server)
    assert report.reachable is False
    assert report.error == "no route to host"
