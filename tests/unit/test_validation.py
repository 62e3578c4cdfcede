"""Unit tests for input validation."""

import pytest

from ztgw.core.exceptions import ValidationError
from ztgw.core.validation import (
    is_network_id,
    validate_cidr,
    validate_email,
    validate_interface_name,
    validate_network_id,
    validate_url,
)


class TestValidateNetworkId:
    """Tests for ZeroTier network ID validation."""

    def test_valid_ids(self):
        """16 hex characters should pass."""
        assert validate_network_id("8056c2e21c000001") == "8056c2e21c000001"
        assert validate_network_id("0123456789abcdef") == "0123456789abcdef"

    def test_uppercase_is_lowercased(self):
        """Network IDs are case-insensitive and normalized to lowercase."""
        assert validate_network_id("8056C2E21C000001") == "8056c2e21c000001"

    def test_surrounding_whitespace_stripped(self):
        assert validate_network_id("  8056c2e21c000001\n") == "8056c2e21c000001"

    def test_empty_id(self):
        """Empty ID should fail."""
        with pytest.raises(ValidationError) as exc:
            validate_network_id("")
        assert "cannot be empty" in str(exc.value)

    @pytest.mark.parametrize("value", [
        "8056c2e21c00001",      # 15 characters
        "8056c2e21c0000011",    # 17 characters
        "8056c2e21c00000g",     # non-hex
        "8056c2e2-c000001",
    ])
    def test_malformed_ids(self, value):
        with pytest.raises(ValidationError) as exc:
            validate_network_id(value)
        assert "Invalid ZeroTier network ID" in str(exc.value)

    def test_is_network_id(self):
        assert is_network_id("8056c2e21c000001")
        assert not is_network_id("nope")


class TestValidateCidr:
    """Tests for CIDR validation."""

    def test_valid_cidrs(self):
        assert validate_cidr("192.168.1.0/24") == "192.168.1.0/24"
        assert validate_cidr("10.0.0.0/8") == "10.0.0.0/8"
        assert validate_cidr("fd00::/64") == "fd00::/64"

    def test_host_bits_allowed(self):
        """A host address with prefix is accepted."""
        assert validate_cidr("192.168.1.10/24") == "192.168.1.10/24"

    def test_missing_prefix(self):
        """A bare address is rejected."""
        with pytest.raises(ValidationError) as exc:
            validate_cidr("192.168.1.0")
        assert "prefix length" in str(exc.value)

    def test_garbage(self):
        with pytest.raises(ValidationError) as exc:
            validate_cidr("192.168.300.0/24")
        assert "Invalid CIDR" in str(exc.value)


class TestValidateInterfaceName:
    """Tests for interface name validation."""

    def test_valid_names(self):
        assert validate_interface_name("eth0") == "eth0"
        assert validate_interface_name("enp3s0") == "enp3s0"
        assert validate_interface_name("ztabcdef12") == "ztabcdef12"
        assert validate_interface_name("br-lan.10") == "br-lan.10"

    def test_wildcard_only_when_allowed(self):
        assert validate_interface_name("zt+", allow_wildcard=True) == "zt+"
        with pytest.raises(ValidationError):
            validate_interface_name("zt+")

    def test_too_long(self):
        with pytest.raises(ValidationError):
            validate_interface_name("a" * 16)

    def test_invalid_characters(self):
        with pytest.raises(ValidationError):
            validate_interface_name("eth 0")
        with pytest.raises(ValidationError):
            validate_interface_name("eth/0")


class TestValidateUrl:
    """Tests for webhook URL validation."""

    def test_valid_urls(self):
        assert validate_url("https://hooks.example.com/zt") == "https://hooks.example.com/zt"
        assert validate_url("http://localhost:8080/alert") == "http://localhost:8080/alert"

    def test_missing_scheme(self):
        with pytest.raises(ValidationError) as exc:
            validate_url("hooks.example.com/zt")
        assert "scheme" in str(exc.value)

    def test_disallowed_scheme(self):
        with pytest.raises(ValidationError):
            validate_url("ftp://example.com/file")

    def test_require_https(self):
        with pytest.raises(ValidationError):
            validate_url("http://example.com", require_https=True)


class TestValidateEmail:
    def test_valid(self):
        assert validate_email("ops@example.com") == "ops@example.com"

    @pytest.mark.parametrize("value", ["ops", "ops@", "ops@example", "a b@example.com"])
    def test_invalid(self, value):
        with pytest.raises(ValidationError):
            validate_email(value)
