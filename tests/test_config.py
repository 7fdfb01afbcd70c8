import logging
from pathlib import Path

import pytest

from easywg.common.config import Config


def test_config_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "EASYWG_CHECK_INTERVAL",
        "EASYWG_WARNING_DAYS",
        "EASYWG_SETUP_TIMEOUT",
        "EASYWG_TUNNEL_NETWORK",
        "EASYWG_SERVER_HOST",
        "EASYWG_SERVER_PORT",
        "EASYWG_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)

    config = Config()
    assert config.CHECK_INTERVAL == 3600  # noqa: PLR2004
    assert config.WARNING_DAYS == 3  # noqa: PLR2004
    assert config.SETUP_TIMEOUT == 30.0  # noqa: PLR2004
    assert config.TUNNEL_NETWORK == "10.0.0.0/24"
    assert config.LISTEN_PORT == 51820  # noqa: PLR2004
    assert config.SERVER_HOST == "127.0.0.1"
    assert config.SERVER_PORT == 8000  # noqa: PLR2004
    assert config.LOG_LEVEL == logging.INFO


def test_wireguard_paths() -> None:
    config = Config()
    assert config.WG_CONFIG_PATH == "/etc/wireguard/wg0.conf"
    assert config.SERVER_PRIVATE_KEY_PATH == "/etc/wireguard/server_private.key"
    assert config.SERVER_PUBLIC_KEY_PATH == "/etc/wireguard/server_public.key"
    assert config.SERVICE_NAME == "wg-quick@wg0"


def test_env_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("EASYWG_CHECK_INTERVAL", "60")
    monkeypatch.setenv("EASYWG_WARNING_DAYS", "7")
    monkeypatch.setenv("EASYWG_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("EASYWG_LOG_LEVEL", "debug")

    config = Config()
    assert config.CHECK_INTERVAL == 60  # noqa: PLR2004
    assert config.WARNING_DAYS == 7  # noqa: PLR2004
    assert config.DATABASE_FILE_PATH == tmp_path / "easywg.json"
    assert config.CONFIGS_DIR == tmp_path / "vpn_configs"
    assert config.LOG_LEVEL == logging.DEBUG


def test_configs_dir_can_live_elsewhere(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setenv("EASYWG_CONFIGS_DIR", str(tmp_path / "artifacts"))
    assert Config().CONFIGS_DIR == tmp_path / "artifacts"


def test_unknown_log_level_falls_back_to_info(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EASYWG_LOG_LEVEL", "chatty")
    assert Config().LOG_LEVEL == logging.INFO
