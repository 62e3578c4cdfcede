"""Unit tests for gateway and topology config parsing."""

from pathlib import Path

import pytest

from ztgw.core.desired_state import (
    DesiredState,
    TopologyRole,
    TopologyType,
    load,
    load_topology,
    loads,
    loads_topology,
    parse_key_values,
)
from ztgw.core.exceptions import ConfigError


GATEWAY_CONF = """\
# Office gateway
ZT_NETWORK_ID=8056C2E21C000001
export PHY_IFACE=eth0
PHY_SUBNET="192.168.1.0/24"   # LAN
ENABLE_IPV6=yes
"""


class TestParseKeyValues:
    def test_skips_comments_and_blank_lines(self):
        entries = parse_key_values("# comment\n\nA=1\n  # indented comment\nB=2\n")
        assert [(key, value) for _, key, value in entries] == [("a", "1"), ("b", "2")]

    def test_line_numbers(self):
        entries = parse_key_values("\nA=1\n\nB=2")
        assert [lineno for lineno, _, _ in entries] == [2, 4]

    def test_quotes_stripped(self):
        entries = parse_key_values("A='one'\nB=\"two\"\n")
        assert [value for _, _, value in entries] == ["one", "two"]

    def test_inline_comment_on_unquoted_value(self):
        entries = parse_key_values("A=1 # trailing\n")
        assert entries[0][2] == "1"

    def test_hash_inside_quotes_kept(self):
        entries = parse_key_values('A="x # y"\n')
        assert entries[0][2] == "x # y"

    def test_comment_after_quoted_value(self):
        entries = parse_key_values("A=\"a1b2c3d4e5f6a7b8\"  # office\nB='x'\t# tab\n")
        assert [value for _, _, value in entries] == ["a1b2c3d4e5f6a7b8", "x"]

    def test_text_after_closing_quote_kept(self):
        entries = parse_key_values('A="x" y\n')
        assert entries[0][2] == '"x" y'

    def test_export_prefix(self):
        entries = parse_key_values("export A=1\n")
        assert entries[0][1:] == ("a", "1")

    def test_line_without_equals(self):
        with pytest.raises(ConfigError) as exc:
            parse_key_values("A=1\njust text\n", "gw.conf")
        assert "line 2" in str(exc.value)


class TestLoads:
    def test_full_config(self):
        desired = loads(GATEWAY_CONF)
        assert desired == DesiredState(
            network_id="8056c2e21c000001",
            phy_iface="eth0",
            phy_subnet="192.168.1.0/24",
            ipv6=True,
        )

    def test_missing_network_id(self):
        with pytest.raises(ConfigError) as exc:
            loads("PHY_IFACE=eth0\n")
        assert "ZT_NETWORK_ID" in str(exc.value)

    def test_malformed_network_id(self):
        with pytest.raises(ConfigError) as exc:
            loads("ZT_NETWORK_ID=1234\n")
        assert exc.value.exit_code == 2

    def test_subnet_without_prefix(self):
        with pytest.raises(ConfigError) as exc:
            loads("ZT_NETWORK_ID=8056c2e21c000001\nPHY_SUBNET=192.168.1.0\n")
        assert "PHY_SUBNET" in str(exc.value)

    def test_overrides_win(self):
        desired = loads(
            GATEWAY_CONF,
            network_id="0123456789abcdef",
            phy_iface="eth1",
            phy_subnet="10.0.0.0/24",
            ipv6=False,
        )
        assert desired.network_id == "0123456789abcdef"
        assert desired.phy_iface == "eth1"
        assert desired.phy_subnet == "10.0.0.0/24"
        assert desired.ipv6 is False

    def test_overrides_alone(self):
        desired = loads("", network_id="8056c2e21c000001")
        assert desired.phy_iface is None
        assert desired.ipv6 is False
        assert desired.role == TopologyRole.STANDALONE

    def test_quoted_network_id_with_comment(self):
        desired = loads('ZT_NETWORK_ID="8056c2e21c000001"  # office\n')
        assert desired.network_id == "8056c2e21c000001"

    def test_network_id_alias(self):
        desired = loads("NETWORK_ID=8056C2E21C000001\n")
        assert desired.network_id == "8056c2e21c000001"

    def test_unknown_key_is_ignored(self):
        desired = loads("ZT_NETWORK_ID=8056c2e21c000001\nCOLOUR=blue\n")
        assert desired.network_id == "8056c2e21c000001"

    def test_invalid_boolean(self):
        with pytest.raises(ConfigError):
            loads("ZT_NETWORK_ID=8056c2e21c000001\nENABLE_IPV6=maybe\n")

    def test_role_and_overlay(self):
        desired = loads("ZT_NETWORK_ID=8056c2e21c000001\nTOPOLOGY_ROLE=Hub\nZT_IFACE=zt+\n")
        assert desired.role == TopologyRole.HUB
        assert desired.zt_iface == "zt+"

    def test_desired_state_is_immutable(self):
        desired = loads(GATEWAY_CONF)
        with pytest.raises(AttributeError):
            desired.network_id = "0123456789abcdef"

    def test_with_host_defaults_keeps_explicit_values(self):
        desired = DesiredState(network_id="8056c2e21c000001", phy_iface="eth1")
        filled = desired.with_host_defaults(phy_iface="eth0", phy_subnet="10.0.0.0/8")
        assert filled.phy_iface == "eth1"
        assert filled.phy_subnet == "10.0.0.0/8"


class TestLoad:
    def test_from_file(self, tmp_path: Path):
        path = tmp_path / "gateway.conf"
        path.write_text(GATEWAY_CONF)
        assert load(path).phy_iface == "eth0"

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigError) as exc:
            load(tmp_path / "absent.conf")
        assert "not found" in str(exc.value)

    def test_without_file(self):
        assert load(None, network_id="8056c2e21c000001").network_id == "8056c2e21c000001"


class TestTopology:
    HUB_SPOKE = """\
type=hub-spoke
network=8056c2e21c000001
network=8056c2e21c000002
network=8056c2e21c000003
"""

    def test_hub_and_spokes(self):
        topology = loads_topology(self.HUB_SPOKE)
        assert topology.type == TopologyType.HUB_SPOKE
        assert topology.hub == "8056c2e21c000001"
        assert topology.spokes == ("8056c2e21c000002", "8056c2e21c000003")

    def test_desired_states_roles(self):
        states = loads_topology(self.HUB_SPOKE).desired_states()
        assert [s.role for s in states] == [TopologyRole.HUB, TopologyRole.SPOKE, TopologyRole.SPOKE]

    def test_mesh_roles_are_standalone(self):
        topology = loads_topology("topology.type=mesh\nnetwork=8056c2e21c000001\n")
        assert topology.desired_states()[0].role == TopologyRole.STANDALONE

    def test_unknown_type(self):
        with pytest.raises(ConfigError) as exc:
            loads_topology("type=ring\n")
        assert "ring" in str(exc.value)

    def test_bad_network_line(self):
        with pytest.raises(ConfigError):
            loads_topology("type=mesh\nnetwork=xyz\n")

    def test_missing_type_is_none(self):
        assert loads_topology("network=8056c2e21c000001\n").type is None

    def test_load_topology_file(self, tmp_path: Path):
        path = tmp_path / "topology.conf"
        path.write_text(self.HUB_SPOKE)
        assert len(load_topology(path).networks) == 3
