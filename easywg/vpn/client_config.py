"""
Client-side WireGuard configuration artifacts.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from easywg.common.models import ServerInfo

logger = logging.getLogger(__name__)


def render_client_config(
    private_key: str,
    address: str,
    server: ServerInfo,
    dns: str = "8.8.8.8, 1.1.1.1",
    allowed_ips: str = "0.0.0.0/0",
    keepalive: int = 25,
) -> str:
    return (
        "[Interface]\n"
        f"PrivateKey = {private_key}\n"
        f"Address = {address}\n"
        f"DNS = {dns}\n"
        "\n"
        "[Peer]\n"
        f"PublicKey = {server.public_key}\n"
        f"AllowedIPs = {allowed_ips}\n"
        f"Endpoint = {server.endpoint}\n"
        f"PersistentKeepalive = {keepalive}\n"
    )


def artifact_path(configs_dir: Path, client_name: str) -> Path:
    return Path(configs_dir) / f"{client_name}.conf"


def write_artifact(path: Path, content: str) -> Path:
    """Write the artifact readable by the owner only, replacing atomically."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
        os.chmod(tmp_name, 0o600)
        os.replace(tmp_name, path)
    except OSError:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    logger.info("Wrote client config %s", path)
    return path


def delete_artifact(path: Path) -> bool:
    """Remove a local artifact; a missing file is not an error."""
    try:
        path.unlink()
    except FileNotFoundError:
        logger.debug("Client config %s already absent", path)
        return False
    logger.info("Deleted client config %s", path)
    return True
