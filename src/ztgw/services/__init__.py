"""Service abstractions for the host capabilities a gateway needs."""

from ztgw.services.backup import BackupManager, Snapshot
from ztgw.services.network import InterfaceService
from ztgw.services.reconciler import Reconciler, ReconcileResult, ReconcileState
from ztgw.services.sysctl import ForwardingService
from ztgw.services.systemd import SystemdService
from ztgw.services.zerotier import ZeroTierClient

__all__ = [
    "BackupManager",
    "Snapshot",
    "InterfaceService",
    "Reconciler",
    "ReconcileResult",
    "ReconcileState",
    "ForwardingService",
    "SystemdService",
    "ZeroTierClient",
]
