"""
Entry point for the admin server.
"""

import uvicorn

from easywg.common.config import Config
from easywg.common.logging_config import setup_logging

from .core import AdminServer


def start_server(config: Config | None = None) -> None:
    """Start the admin server."""
    if config is None:
        config = Config()
    setup_logging(config)
    server = AdminServer(config=config)
    uvicorn.run(server.app, host=server.server_host, port=server.server_port)
