"""
Remote WireGuard host provisioning.
"""

from easywg.vpn.engine import ProvisioningEngine
from easywg.vpn.peer_store import PeerConfigStore, PeerRegistry
from easywg.vpn.remote_session import RemoteHostSession

__all__ = [
    "PeerConfigStore",
    "PeerRegistry",
    "ProvisioningEngine",
    "RemoteHostSession",
]
