"""Unit tests for the zerotier-cli wrapper."""

import pytest

from ztgw.core.exceptions import ExecutionError, PrerequisiteError
from ztgw.services.zerotier import (
    ZeroTierClient,
    membership_from_json,
    parse_info_text,
    parse_listnetworks_text,
    parse_listpeers_text,
)

NETWORK_ID = "8056c2e21c000001"
NODE_ADDRESS = "a1b2c3d4e5"


LISTNETWORKS = """\
200 listnetworks <nwid> <name> <mac> <status> <type> <dev> <ZT assigned ips>
200 listnetworks 8056C2E21C000001 office 5e:8a:11:22:33:44 OK PRIVATE ztabcdef12 10.147.17.5/24,fd80::1/88
200 listnetworks 8056c2e21c000002 lab 5e:8a:11:22:33:45 REQUESTING_CONFIGURATION PRIVATE - -
"""

LISTPEERS = """\
200 listpeers <ztaddr> <path> <latency> <version> <role>
200 listpeers 61d294b9cb 203.0.113.7/9993;120;80 42 1.14.0 LEAF
200 listpeers 778cde7190 - -1 - PLANET
"""


class TestTextParsers:
    """Columnar output of older clients."""

    def test_listnetworks(self):
        memberships = parse_listnetworks_text(LISTNETWORKS)

        assert [m.network_id for m in memberships] == ["8056c2e21c000001", "8056c2e21c000002"]
        office, lab = memberships
        assert office.ok
        assert office.interface == "ztabcdef12"
        assert office.assigned_addresses == ("10.147.17.5/24", "fd80::1/88")
        assert not lab.ok
        assert lab.interface is None
        assert lab.assigned_addresses == ()

    def test_listpeers(self):
        peers = parse_listpeers_text(LISTPEERS)

        assert [p.address for p in peers] == ["61d294b9cb", "778cde7190"]
        assert peers[0].latency == 42
        assert peers[0].role == "LEAF"
        assert peers[1].latency == -1
        assert peers[1].role == "PLANET"

    def test_info(self):
        info = parse_info_text("200 info a1b2c3d4e5 1.14.0 ONLINE\n")
        assert info.address == "a1b2c3d4e5"
        assert info.online

    def test_info_garbage(self):
        assert parse_info_text("zerotier-cli: missing authtoken") is None


class TestMembershipFromJson:
    def test_fields(self):
        membership = membership_from_json({
            "nwid": "8056C2E21C000001",
            "status": "ACCESS_DENIED",
            "portDeviceName": "",
            "assignedAddresses": [],
        })
        assert membership.network_id == "8056c2e21c000001"
        assert membership.interface is None
        assert not membership.ok


class TestZeroTierClient:
    @pytest.fixture
    def client(self, ctx, host):
        return ZeroTierClient(ctx, host)

    def test_info(self, client):
        info = client.info()
        assert info.address == NODE_ADDRESS
        assert info.online

    def test_service_down(self, host, client):
        host.zt_running = False
        assert client.info() is None
        assert not client.is_running()
        assert client.list_peers() == []
        with pytest.raises(ExecutionError) as exc:
            client.list_memberships()
        assert exc.value.hint

    def test_membership_lookup_is_case_insensitive(self, host, client):
        host.join_network(NETWORK_ID)
        assert client.is_member(NETWORK_ID.upper())
        assert client.membership(NETWORK_ID).interface == "ztabcdef12"

    def test_join_and_leave(self, host, client):
        client.join(NETWORK_ID)
        assert NETWORK_ID in host.memberships
        client.leave(NETWORK_ID)
        assert NETWORK_ID not in host.memberships

    def test_peers(self, client):
        assert [p.address for p in client.list_peers()] == ["61d294b9cb", "778cde7190"]

    def test_text_fallback(self, host, client):
        host._cmd_zerotier_cli = lambda args, input_text: (
            (0, "not json", "") if args[0] == "-j" else (0, LISTNETWORKS, "")
        )
        assert len(client.list_memberships()) == 2

    def test_require_installed(self, host, client):
        host.binaries.discard("zerotier-cli")
        with pytest.raises(PrerequisiteError) as exc:
            client.require_installed()
        assert exc.value.exit_code == 8

    def test_queries_run_in_dry_run(self, dry_ctx, dry_host):
        dry_host.join_network(NETWORK_ID)
        client = ZeroTierClient(dry_ctx, dry_host)
        assert client.is_member(NETWORK_ID)
        client.leave(NETWORK_ID)
        assert NETWORK_ID in dry_host.memberships
