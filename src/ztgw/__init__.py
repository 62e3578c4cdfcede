"""
ZeroTier gateway CLI - idempotent overlay gateway configuration.

Joins a ZeroTier network, enables IP forwarding and sets up NAT on the
active firewall backend, with dry-run previews, snapshots and monitoring.
"""

__version__ = "1.0.0"
__author__ = "ztgw maintainers"
