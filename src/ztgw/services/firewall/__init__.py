"""Firewall backends: one adapter per firewall subsystem."""

from ztgw.services.firewall.base import (
    Backend,
    Direction,
    FirewallBackend,
    GatewayRules,
    NullBackend,
)
from ztgw.services.firewall.detect import BackendDetector, create_backend, select_backend
from ztgw.services.firewall.firewalld import FirewalldBackend
from ztgw.services.firewall.iptables import IptablesBackend
from ztgw.services.firewall.nftables import NftablesBackend
from ztgw.services.firewall.ufw import UfwBackend

__all__ = [
    "Backend",
    "Direction",
    "FirewallBackend",
    "GatewayRules",
    "NullBackend",
    "BackendDetector",
    "create_backend",
    "select_backend",
    "IptablesBackend",
    "FirewalldBackend",
    "UfwBackend",
    "NftablesBackend",
]
