"""Alert delivery for the monitor.

Alerts go to a mail address (through the local ``mail`` command) and/or a
webhook (JSON POST with ``subject`` and ``message``). A failed delivery is
logged and dropped; there is no retry.
"""

import json
import socket
import urllib.error
import urllib.request
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from jinja2 import Environment, PackageLoader, select_autoescape

from ztgw.core.context import ExecutionContext
from ztgw.core.exceptions import ZTError
from ztgw.core.executor import CommandExecutor
from ztgw.core.runlog import EventType

if TYPE_CHECKING:
    from ztgw.services.health import HealthReport


jinja_env = Environment(
    loader=PackageLoader("ztgw", "templates"),
    autoescape=select_autoescape(),
)


class AlertKind(str, Enum):
    SERVICE_DOWN = "service_down"
    SERVICE_RESTORED = "service_restored"
    NETWORK_DEGRADED = "network_degraded"
    NETWORK_RESTORED = "network_restored"
    PEERS_LOST = "peers_lost"
    PEERS_RESTORED = "peers_restored"


@dataclass(frozen=True)
class Alert:
    kind: AlertKind
    subject: str
    message: str
    network_id: Optional[str] = None


class AlertDispatcher:
    """Sends alerts to the configured channels."""

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        *,
        email: Optional[str] = None,
        webhook: Optional[str] = None,
        timeout: Optional[int] = None,
        hostname: Optional[str] = None,
    ) -> None:
        self.ctx = ctx
        self.executor = executor
        self.email = email
        self.webhook = webhook
        self.timeout = timeout or ctx.config.monitor.webhook_timeout
        self.hostname = hostname or socket.gethostname()

    @property
    def configured(self) -> bool:
        return bool(self.email or self.webhook)

    def render(self, alert: Alert, report: Optional["HealthReport"] = None) -> tuple[str, str]:
        """Subject line and body for an alert."""
        values = {
            "alert": alert,
            "report": report,
            "hostname": self.hostname,
            "timestamp": datetime.now().isoformat(timespec="seconds"),
        }
        subject = jinja_env.get_template("alerts/subject.txt.j2").render(**values)
        body = jinja_env.get_template("alerts/message.txt.j2").render(**values)
        return subject.strip(), body

    def send(self, alert: Alert, report: Optional["HealthReport"] = None) -> bool:
        """Deliver to every channel. Returns True if all deliveries succeeded."""
        self.ctx.console.warn(alert.subject)
        self.ctx.run_log.warning(
            EventType.ALERT,
            alert.subject,
            kind=alert.kind.value,
            network_id=alert.network_id,
        )
        if not self.configured:
            return True

        subject, body = self.render(alert, report)
        delivered = True
        if self.email:
            delivered = self._send_email(subject, body) and delivered
        if self.webhook:
            delivered = self._send_webhook(subject, body) and delivered
        return delivered

    def _send_email(self, subject: str, body: str) -> bool:
        try:
            self.executor.run(
                ["mail", "-s", subject, self.email],
                description=f"Mail alert to {self.email}",
                input_text=body,
            )
        except ZTError as e:
            self._delivery_failed("email", str(e))
            return False
        return True

    def _send_webhook(self, subject: str, body: str) -> bool:
        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"POST alert to {self.webhook}")
            return True

        payload = json.dumps({"subject": subject, "message": body}).encode("utf-8")
        request = urllib.request.Request(
            self.webhook,
            data=payload,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                status = response.status
        except (urllib.error.URLError, OSError, ValueError) as e:
            self._delivery_failed("webhook", str(e))
            return False

        if status >= 300:
            self._delivery_failed("webhook", f"HTTP {status}")
            return False
        return True

    def _delivery_failed(self, channel: str, reason: str) -> None:
        self.ctx.console.warn(f"Alert delivery via {channel} failed: {reason}")
        self.ctx.run_log.error(
            f"Alert delivery via {channel} failed",
            channel=channel,
            reason=reason,
        )
