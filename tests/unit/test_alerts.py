"""Unit tests for alert rendering and delivery."""

import json
import urllib.error
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

from ztgw.services.alerts import Alert, AlertDispatcher, AlertKind
from ztgw.services.health import HealthReport, NetworkHealth


ALERT = Alert(
    AlertKind.NETWORK_DEGRADED,
    "Network 8056c2e21c000001 is ACCESS_DENIED",
    "Membership status changed from OK to ACCESS_DENIED.",
    network_id="8056c2e21c000001",
)

REPORT = HealthReport(
    timestamp=datetime(2024, 1, 1, 12, 0, 0),
    service_up=True,
    node_address="a1b2c3d4e5",
    networks=(NetworkHealth("8056c2e21c000001", "ACCESS_DENIED", interface="ztabcdef12"),),
    peer_count=2,
)


def dispatcher(ctx, host, **kwargs) -> AlertDispatcher:
    return AlertDispatcher(ctx, host, hostname="gw1", **kwargs)


class TestRender:
    def test_subject(self, ctx, host):
        subject, _ = dispatcher(ctx, host).render(ALERT, REPORT)
        assert subject == "[ztgw] Network 8056c2e21c000001 is ACCESS_DENIED on gw1"

    def test_body(self, ctx, host):
        _, body = dispatcher(ctx, host).render(ALERT, REPORT)
        assert body.startswith("Membership status changed from OK to ACCESS_DENIED.")
        assert "Host:      gw1" in body
        assert "Network:   8056c2e21c000001" in body
        assert "Service:   up" in body
        assert "Network 8056c2e21c000001: ACCESS_DENIED (ztabcdef12)" in body

    def test_body_without_report(self, ctx, host):
        _, body = dispatcher(ctx, host).render(Alert(AlertKind.SERVICE_DOWN, "down", "gone"))
        assert "Service:" not in body
        assert "Network:" not in body


class TestSend:
    def test_console_only(self, ctx, host):
        d = dispatcher(ctx, host)
        assert not d.configured
        assert d.send(ALERT, REPORT)
        assert host.calls == []
        assert '"alert.sent"' in ctx.run_log.log_path.read_text()

    def test_email(self, ctx, host):
        received = []
        host._cmd_mail = lambda args, input_text: received.append((args, input_text)) or (0, "", "")

        assert dispatcher(ctx, host, email="ops@example.com").send(ALERT, REPORT)

        args, body = received[0]
        assert args[0] == "-s"
        assert args[1].startswith("[ztgw] Network")
        assert args[2] == "ops@example.com"
        assert "ACCESS_DENIED" in body

    def test_email_failure_is_reported_not_raised(self, ctx, host):
        host.fail("mail", stderr="send-mail: Cannot open mail:25")
        assert not dispatcher(ctx, host, email="ops@example.com").send(ALERT)
        assert "Alert delivery via email failed" in ctx.run_log.log_path.read_text()

    def test_webhook(self, ctx, host):
        response = MagicMock(status=204)
        response.__enter__.return_value = response
        with patch("ztgw.services.alerts.urllib.request.urlopen", return_value=response) as urlopen:
            assert dispatcher(ctx, host, webhook="https://hooks.example.com/zt", timeout=3).send(ALERT)

        request = urlopen.call_args.args[0]
        assert urlopen.call_args.kwargs["timeout"] == 3
        assert request.get_method() == "POST"
        payload = json.loads(request.data)
        assert payload["subject"].startswith("[ztgw]")
        assert "message" in payload

    def test_webhook_http_error_status(self, ctx, host):
        response = MagicMock(status=500)
        response.__enter__.return_value = response
        with patch("ztgw.services.alerts.urllib.request.urlopen", return_value=response):
            assert not dispatcher(ctx, host, webhook="https://hooks.example.com/zt").send(ALERT)

    def test_webhook_unreachable(self, ctx, host):
        with patch(
            "ztgw.services.alerts.urllib.request.urlopen",
            side_effect=urllib.error.URLError("Name or service not known"),
        ):
            assert not dispatcher(ctx, host, webhook="https://hooks.example.com/zt").send(ALERT)

    def test_webhook_skipped_in_dry_run(self, dry_ctx, dry_host):
        with patch("ztgw.services.alerts.urllib.request.urlopen") as urlopen:
            assert dispatcher(dry_ctx, dry_host, webhook="https://hooks.example.com/zt").send(ALERT)
        urlopen.assert_not_called()

    def test_both_channels_attempted(self, ctx, host):
        host.fail("mail")
        with patch(
            "ztgw.services.alerts.urllib.request.urlopen",
            side_effect=OSError("connection refused"),
        ) as urlopen:
            result = dispatcher(
                ctx, host, email="ops@example.com", webhook="https://hooks.example.com/zt",
            ).send(ALERT)
        assert not result
        urlopen.assert_called_once()
