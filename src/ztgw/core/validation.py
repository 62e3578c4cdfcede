"""Input validation utilities.

Provides validation for:
- ZeroTier network identifiers
- Network configuration (CIDR subnets, interface names)
- Alert destinations (URLs, email addresses)

All validators return the validated (normalized) value or raise
ValidationError.
"""

import ipaddress
import re
from typing import Optional
from urllib.parse import urlparse

from ztgw.core.exceptions import ValidationError


# 16 hex digits: 10-digit controller address + 6-digit network number
NETWORK_ID_PATTERN = re.compile(r"^[0-9a-fA-F]{16}$")

# Linux IFNAMSIZ is 16 including the terminating NUL
MAX_INTERFACE_NAME_LENGTH = 15
INTERFACE_PATTERN = re.compile(r"^[A-Za-z0-9_.:@-]+\+?$")

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def is_network_id(value: str) -> bool:
    """Check whether value looks like a ZeroTier network identifier."""
    return bool(NETWORK_ID_PATTERN.match(value))


def validate_network_id(value: str) -> str:
    """Validate a ZeroTier network identifier.

    Accepts exactly 16 hexadecimal characters, case-insensitive.

    Args:
        value: Network identifier to validate

    Returns:
        The identifier, lowercased

    Raises:
        ValidationError: If the identifier is malformed
    """
    value = value.strip()

    if not value:
        raise ValidationError(
            "Network ID cannot be empty",
            hint="Find the 16-character network ID at https://my.zerotier.com",
        )

    if not is_network_id(value):
        raise ValidationError(
            f"Invalid ZeroTier network ID: '{value}'",
            hint="A network ID is exactly 16 hexadecimal characters",
            details=[f"Length: {len(value)}"],
        )

    return value.lower()


def validate_cidr(value: str) -> str:
    """Validate CIDR notation for a subnet.

    The prefix length is mandatory; host bits are allowed
    (``192.168.1.10/24`` is accepted).

    Args:
        value: CIDR string to validate (e.g., "192.168.1.0/24")

    Returns:
        The validated CIDR string

    Raises:
        ValidationError: If validation fails
    """
    value = value.strip()

    if "/" not in value:
        raise ValidationError(
            f"Subnet is missing a prefix length: {value}",
            hint="Use format like 192.168.1.0/24",
        )

    try:
        ipaddress.ip_network(value, strict=False)
    except ValueError as e:
        raise ValidationError(
            f"Invalid CIDR notation: {value}",
            hint="Use format like 10.0.0.0/24 or 192.168.1.0/24",
            details=[str(e)],
        ) from e

    return value


def validate_interface_name(value: str, allow_wildcard: bool = False) -> str:
    """Validate a network interface name.

    Args:
        value: Interface name (e.g., "eth0", "ztabcdef12")
        allow_wildcard: Accept a trailing "+" (iptables-style wildcard)

    Returns:
        The validated interface name

    Raises:
        ValidationError: If validation fails
    """
    value = value.strip()

    if not value:
        raise ValidationError("Interface name cannot be empty")

    if value.endswith("+") and not allow_wildcard:
        raise ValidationError(
            f"Wildcard interface not allowed here: {value}",
            hint="Use a concrete interface name such as eth0",
        )

    if len(value) > MAX_INTERFACE_NAME_LENGTH or not INTERFACE_PATTERN.match(value):
        raise ValidationError(
            f"Invalid interface name: '{value}'",
            hint=f"Interface names are at most {MAX_INTERFACE_NAME_LENGTH} characters without spaces or '/'",
        )

    return value


def validate_url(
    value: str,
    require_https: bool = False,
    allowed_schemes: Optional[frozenset[str]] = None,
) -> str:
    """Validate a URL.

    Args:
        value: URL to validate
        require_https: If True, only HTTPS URLs are allowed
        allowed_schemes: Set of allowed schemes (default: http, https)

    Returns:
        The validated URL

    Raises:
        ValidationError: If validation fails
    """
    value = value.strip()

    if not allowed_schemes:
        allowed_schemes = frozenset({"http", "https"})

    try:
        parsed = urlparse(value)
    except ValueError as e:
        raise ValidationError(
            f"Invalid URL format: {value}",
            hint="Provide a valid URL",
            details=[str(e)],
        ) from e

    if not parsed.scheme:
        raise ValidationError(
            f"URL must include a scheme: {value}",
            hint=f"Use https://{value}",
        )

    if parsed.scheme.lower() not in allowed_schemes:
        raise ValidationError(
            f"URL scheme '{parsed.scheme}' not allowed",
            hint=f"Use one of: {', '.join(sorted(allowed_schemes))}",
        )

    if require_https and parsed.scheme.lower() != "https":
        raise ValidationError(
            "HTTPS is required for security",
            hint=f"Change {parsed.scheme}:// to https://",
        )

    if not parsed.netloc:
        raise ValidationError(
            f"URL must include a host: {value}",
            hint="Provide a complete URL like https://hooks.example.com/alerts",
        )

    return value


def validate_email(value: str) -> str:
    """Validate an alert email address (shape only, no DNS lookup)."""
    value = value.strip()
    if not EMAIL_PATTERN.match(value):
        raise ValidationError(
            f"Invalid email address: '{value}'",
            hint="Use a form like ops@example.com",
        )
    return value
