# easywg: WireGuard provisioning and subscription lifecycle

from easywg.scheduler import SubscriptionReconciler, SweepResult
from easywg.vpn import PeerConfigStore, PeerRegistry, ProvisioningEngine, RemoteHostSession

__all__ = [
    "PeerConfigStore",
    "PeerRegistry",
    "ProvisioningEngine",
    "RemoteHostSession",
    "SubscriptionReconciler",
    "SweepResult",
]
