"""
Configuration settings for VPN provisioning and subscription management.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path


class Config:
    """Central configuration class for all system settings."""

    def __init__(self) -> None:
        # Scheduling
        self.CHECK_INTERVAL: int = int(
            os.getenv("EASYWG_CHECK_INTERVAL", "3600")
        )  # Seconds between subscription sweeps
        self.WARNING_DAYS: int = int(
            os.getenv("EASYWG_WARNING_DAYS", "3")
        )  # Near-expiry window in days

        # Remote session timeouts (seconds)
        self.CONNECT_TIMEOUT: float = float(os.getenv("EASYWG_CONNECT_TIMEOUT", "30"))
        self.SETUP_TIMEOUT: float = float(os.getenv("EASYWG_SETUP_TIMEOUT", "30"))
        self.COMMAND_TIMEOUT: float = float(
            os.getenv("EASYWG_COMMAND_TIMEOUT", "300")
        )  # Package installs can be slow
        self.ADMIN_ACTION_TIMEOUT: float = float(
            os.getenv("EASYWG_ADMIN_ACTION_TIMEOUT", "10")
        )

        # WireGuard host layout
        self.WG_INTERFACE: str = "wg0"
        self.WG_CONFIG_DIR: str = "/etc/wireguard"
        self.TUNNEL_NETWORK: str = os.getenv("EASYWG_TUNNEL_NETWORK", "10.0.0.0/24")
        self.LISTEN_PORT: int = 51820
        self.DEFAULT_NET_INTERFACE: str = "eth0"

        # Client artifact
        self.CLIENT_DNS: str = "8.8.8.8, 1.1.1.1"
        self.CLIENT_ALLOWED_IPS: str = "0.0.0.0/0"
        self.PERSISTENT_KEEPALIVE: int = 25

        # Admin API settings
        self.ADMIN_PASSWORD: str | None = os.getenv("EASYWG_ADMIN_PASSWORD")
        self.SERVER_HOST: str = os.getenv("EASYWG_SERVER_HOST", "127.0.0.1")
        self.SERVER_PORT: int = int(os.getenv("EASYWG_SERVER_PORT", "8000"))

        # Notifications
        self.TELEGRAM_BOT_TOKEN: str | None = os.getenv("EASYWG_TELEGRAM_BOT_TOKEN")
        self.TELEGRAM_API_URL: str = "https://api.telegram.org"

        # File paths
        self.BASE_DIR: Path = Path(__file__).parent.parent
        self.DATA_DIR: Path = Path(
            os.getenv("EASYWG_DATA_DIR", str(self.BASE_DIR / "data"))
        )
        self.CONFIGS_DIR: Path = Path(
            os.getenv("EASYWG_CONFIGS_DIR", str(self.DATA_DIR / "vpn_configs"))
        )
        self.DATABASE_FILE_PATH: Path = self.DATA_DIR / "easywg.json"

        # Logging
        self.LOG_LEVEL: int = getattr(
            logging, os.getenv("EASYWG_LOG_LEVEL", "INFO").upper(), logging.INFO
        )
        self.LOG_FILE: str | None = os.getenv("EASYWG_LOG_FILE")
        self.LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @property
    def WG_CONFIG_PATH(self) -> str:  # noqa: N802
        return f"{self.WG_CONFIG_DIR}/{self.WG_INTERFACE}.conf"

    @property
    def SERVER_PRIVATE_KEY_PATH(self) -> str:  # noqa: N802
        return f"{self.WG_CONFIG_DIR}/server_private.key"

    @property
    def SERVER_PUBLIC_KEY_PATH(self) -> str:  # noqa: N802
        return f"{self.WG_CONFIG_DIR}/server_public.key"

    @property
    def SERVICE_NAME(self) -> str:  # noqa: N802
        return f"wg-quick@{self.WG_INTERFACE}"
