# Common utilities
from easywg.common.crypto import WireGuardKeys as WireGuardKeys
from easywg.common.logging_config import setup_logger as setup_logger
from easywg.common.logging_config import setup_logging as setup_logging

__all__ = ["WireGuardKeys", "setup_logger", "setup_logging"]
