"""ZeroTier client installation.

Installs missing download tools, imports the ZeroTier signing key, and
runs the official installer only after gpg has verified its signature.
"""

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from ztgw.core.context import ExecutionContext
from ztgw.core.exceptions import ExecutionError, PrerequisiteError
from ztgw.core.executor import CommandExecutor
from ztgw.core.safety import OS_RELEASE_PATH, ConfirmationPolicy, parse_os_release
from ztgw.services.zerotier import ZeroTierClient


GPG_KEY_URL = (
    "https://raw.githubusercontent.com/zerotier/ZeroTierOne/master/doc/contact%40zerotier.com.gpg"
)
INSTALLER_URL = "https://install.zerotier.com/"
REQUIRED_TOOLS = ("curl", "gpg")
INSTALLER_TIMEOUT = 600

APT_DISTROS = frozenset({"ubuntu", "debian", "raspbian", "linuxmint", "pop"})
RPM_DISTROS = frozenset({"fedora", "rhel", "centos", "rocky", "almalinux", "ol", "amzn"})
PACMAN_DISTROS = frozenset({"arch", "manjaro", "endeavouros"})


@dataclass
class InstallResult:
    installed: bool = False
    version: Optional[str] = None
    joined: Optional[str] = None
    cancelled: bool = False


def distro_family(os_release: Optional[dict[str, str]]) -> Optional[str]:
    """Package family (apt, rpm or pacman) from os-release ID and ID_LIKE."""
    if not os_release:
        return None
    ids = [os_release.get("ID", "").lower()] + os_release.get("ID_LIKE", "").lower().split()
    for distro in ids:
        if distro in APT_DISTROS:
            return "apt"
        if distro in RPM_DISTROS:
            return "rpm"
        if distro in PACMAN_DISTROS:
            return "pacman"
    return None


class Installer:
    """Installs the ZeroTier client and optionally joins a network."""

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        zerotier: ZeroTierClient,
        *,
        confirmation: Optional[ConfirmationPolicy] = None,
        os_release_path: Path = OS_RELEASE_PATH,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.ctx = ctx
        self.executor = executor
        self.zerotier = zerotier
        self.confirmation = confirmation or ConfirmationPolicy.for_context(ctx)
        self.os_release_path = os_release_path
        self._sleep = sleep

    def install(self, network_id: Optional[str] = None) -> InstallResult:
        result = InstallResult()

        if self.zerotier.is_installed():
            version = self.zerotier.version() or "unknown"
            self.ctx.console.warn(f"ZeroTier is already installed (version {version})")
            if not self.confirmation.confirm("Reinstall ZeroTier?"):
                self.ctx.console.info("Installation cancelled")
                result.cancelled = True
                return result

        self.ensure_dependencies()
        self.import_signing_key()
        self.run_installer()
        result.version = self.verify()
        result.installed = True

        if network_id:
            self.zerotier.join(network_id)
            result.joined = network_id
            self.ctx.console.success(f"Joined network {network_id}")
            self.ctx.console.hint(
                f"Authorize this node at https://my.zerotier.com/network/{network_id}"
            )
        return result

    def missing_tools(self) -> list[str]:
        return [tool for tool in REQUIRED_TOOLS if not self.executor.which(tool)]

    def ensure_dependencies(self) -> None:
        """Install curl and gpg with the distribution's package manager.

        Raises:
            PrerequisiteError: If tools are missing on an unsupported distribution
        """
        missing = self.missing_tools()
        if not missing:
            self.ctx.console.verbose("curl and gpg are available")
            return

        self.ctx.console.step(f"Installing missing tools: {', '.join(missing)}")
        family = distro_family(parse_os_release(self.os_release_path))
        if family == "apt":
            self.executor.run(["apt-get", "update"], description="Refresh package lists")
            self.executor.run(["apt-get", "install", "-y", *missing])
        elif family == "rpm":
            manager = "dnf" if self.executor.which("dnf") else "yum"
            self.executor.run([manager, "install", "-y", *missing])
        elif family == "pacman":
            self.executor.run(["pacman", "-Sy", "--noconfirm", *missing])
        else:
            raise PrerequisiteError(
                "Unsupported distribution for automatic dependency installation",
                hint=f"Install these manually: {' '.join(missing)}",
            )

    def import_signing_key(self) -> None:
        self.ctx.console.step("Importing the ZeroTier signing key")
        key = self.executor.run(
            ["curl", "-fsSL", GPG_KEY_URL],
            description="Download the ZeroTier signing key",
        )
        self.executor.run(
            ["gpg", "--batch", "--import"],
            description="Import the ZeroTier signing key",
            input_text=key.stdout,
        )

    def run_installer(self) -> None:
        """Download, verify and run the signed installer script.

        Raises:
            ExecutionError: If the download, the signature check or the
                installer fails
        """
        self.ctx.console.step("Downloading and verifying the installer")
        signed = self.executor.run(
            ["curl", "-fsSL", INSTALLER_URL],
            description="Download the ZeroTier installer",
        )
        verified = self.executor.run(
            ["gpg", "--batch", "--decrypt"],
            description="Verify the installer signature",
            input_text=signed.stdout,
        )
        if not self.ctx.dry_run and not verified.stdout.strip():
            raise ExecutionError(
                "Installer signature verification produced no script",
                command="gpg --batch --decrypt",
                hint=f"Check {INSTALLER_URL} and the imported key",
            )

        self.ctx.console.step("Running the ZeroTier installer")
        self.executor.run(
            ["bash"],
            description="Run the verified ZeroTier installer",
            input_text=verified.stdout,
            timeout=INSTALLER_TIMEOUT,
        )

    def verify(self) -> Optional[str]:
        """Wait for the service to answer; return the installed version.

        Raises:
            PrerequisiteError: If the client is missing or never answers
        """
        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg("Would verify with: zerotier-cli info")
            return None

        self.zerotier.require_installed()
        for _ in range(max(1, self.ctx.config.runner.join_wait)):
            if self.zerotier.is_running():
                break
            self._sleep(1)
        else:
            raise PrerequisiteError(
                "ZeroTier installed but the service is not responding",
                hint="Check: systemctl status zerotier-one",
            )

        version = self.zerotier.version()
        self.ctx.console.success(f"ZeroTier {version or ''} is installed and running")
        return version
