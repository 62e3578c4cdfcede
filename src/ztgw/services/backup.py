"""Snapshots of mutable host state.

A snapshot is a timestamp-named directory under the backup root holding
copies of the sysctl file and the active backend's persisted rule files,
a dump of the live rules, and a ``manifest.yaml`` describing it all.
Snapshot directories are never overwritten.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from ztgw.core.context import ExecutionContext
from ztgw.core.exceptions import BackupError, RollbackError, ZTError
from ztgw.core.executor import CommandExecutor
from ztgw.core.runlog import EventType
from ztgw.services.firewall import Backend, FirewallBackend, create_backend
from ztgw.services.sysctl import ForwardingService


MANIFEST_NAME = "manifest.yaml"
DUMP_NAME = "rules.dump"
TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


def stored_name(source: Path) -> str:
    """Flat file name for a captured path (/etc/sysctl.conf -> etc__sysctl.conf)."""
    return "__".join(source.parts[1:]) if source.is_absolute() else "__".join(source.parts)


@dataclass(frozen=True)
class CapturedFile:
    source: Path
    stored: Optional[str]  # None: the file did not exist when captured

    @property
    def existed(self) -> bool:
        return self.stored is not None


@dataclass(frozen=True)
class Snapshot:
    """Captured prior state, write-once."""
    path: Path
    created_at: datetime
    backend: Backend
    files: tuple[CapturedFile, ...] = ()
    runtime: dict[str, Optional[str]] = field(default_factory=dict)
    rule_dump: Optional[str] = None

    @property
    def name(self) -> str:
        return self.path.name

    def to_manifest(self) -> dict[str, Any]:
        return {
            "created_at": self.created_at.isoformat(timespec="seconds"),
            "backend": self.backend.value,
            "rule_dump": self.rule_dump,
            "runtime": dict(self.runtime),
            "files": [
                {"source": str(f.source), "stored": f.stored}
                for f in self.files
            ],
        }

    @classmethod
    def from_manifest(cls, path: Path, data: dict[str, Any]) -> "Snapshot":
        try:
            return cls(
                path=path,
                created_at=datetime.fromisoformat(str(data["created_at"])),
                backend=Backend(data["backend"]),
                files=tuple(
                    CapturedFile(source=Path(entry["source"]), stored=entry.get("stored"))
                    for entry in data.get("files") or []
                ),
                runtime=dict(data.get("runtime") or {}),
                rule_dump=data.get("rule_dump"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise BackupError(
                f"Invalid snapshot manifest in {path}",
                details=[str(e)],
            ) from e


class BackupManager:
    """Creates, lists and restores snapshots."""

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        *,
        backup_root: Optional[Path] = None,
    ) -> None:
        self.ctx = ctx
        self.executor = executor
        self.backup_root = backup_root or ctx.config.backup_root

    def _new_directory(self, now: datetime) -> Path:
        base = now.strftime(TIMESTAMP_FORMAT)
        candidate = self.backup_root / base
        suffix = 1
        while candidate.exists():
            candidate = self.backup_root / f"{base}-{suffix}"
            suffix += 1
        return candidate

    def snapshot(
        self,
        backend: FirewallBackend,
        forwarding: ForwardingService,
        now: Optional[datetime] = None,
    ) -> Snapshot:
        """Capture forwarding config and firewall state.

        Raises:
            BackupError: If the snapshot cannot be written
        """
        now = now or datetime.now()
        directory = self._new_directory(now)
        self.ctx.console.step(f"Creating snapshot {directory}")

        sources = [forwarding.sysctl_conf] + backend.persisted_files()
        captured = []
        try:
            for source in sources:
                content = self.executor.read_file(source)
                if content is None:
                    captured.append(CapturedFile(source=source, stored=None))
                    continue
                name = stored_name(source)
                self.executor.write_file(directory / name, content, permissions=0o600)
                captured.append(CapturedFile(source=source, stored=name))

            rule_dump = None
            dump = backend.dump()
            if dump.strip():
                rule_dump = DUMP_NAME
                self.executor.write_file(directory / DUMP_NAME, dump, permissions=0o600)

            snapshot = Snapshot(
                path=directory,
                created_at=now,
                backend=backend.kind,
                files=tuple(captured),
                runtime=forwarding.runtime_state(),
                rule_dump=rule_dump,
            )
            self.executor.write_file(
                directory / MANIFEST_NAME,
                yaml.safe_dump(snapshot.to_manifest(), default_flow_style=False, sort_keys=False),
                permissions=0o600,
            )
        except OSError as e:
            raise BackupError(
                f"Cannot write snapshot to {directory}",
                hint="Check free space and permissions on the backup root",
                details=[str(e)],
            ) from e

        self.ctx.run_log.info(
            EventType.SNAPSHOT_CREATE,
            str(directory),
            dry_run=self.ctx.dry_run,
            backend=backend.kind.value,
            files=[str(f.source) for f in captured],
        )
        return snapshot

    def list_snapshots(self) -> list[Snapshot]:
        """Existing snapshots, newest first."""
        if not self.backup_root.is_dir():
            return []

        snapshots = []
        for manifest in self.backup_root.glob(f"*/{MANIFEST_NAME}"):
            try:
                snapshots.append(self._read_manifest(manifest.parent))
            except BackupError as e:
                self.ctx.console.warn(f"Skipping {manifest.parent}: {e.message}")
        return sorted(snapshots, key=lambda s: (s.created_at, s.name), reverse=True)

    def load(self, ref: Union[str, Path]) -> Snapshot:
        """Load a snapshot by directory path or by name under the backup root.

        Raises:
            BackupError: If the snapshot does not exist or is unreadable
        """
        path = Path(ref)
        if not path.is_absolute() and not path.exists():
            path = self.backup_root / path
        if not (path / MANIFEST_NAME).exists():
            raise BackupError(
                f"Snapshot not found: {ref}",
                hint="List snapshots with: ztgw snapshot list",
            )
        return self._read_manifest(path)

    def _read_manifest(self, directory: Path) -> Snapshot:
        content = self.executor.read_file(directory / MANIFEST_NAME)
        if content is None:
            raise BackupError(f"Missing manifest in {directory}")
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise BackupError(f"Unreadable manifest in {directory}", details=[str(e)]) from e
        if not isinstance(data, dict):
            raise BackupError(f"Unreadable manifest in {directory}")
        return Snapshot.from_manifest(directory, data)

    def restore(self, snapshot: Snapshot, forwarding: ForwardingService) -> None:
        """Rewrite captured files, restore runtime flags and reload the backend.

        Every part is attempted; failures are collected and reported once.
        There is no retry.

        Raises:
            RollbackError: If any part of the restore failed
        """
        errors: list[str] = []

        for captured in snapshot.files:
            try:
                if captured.stored is None:
                    if captured.source.exists():
                        self.executor.remove_file(
                            captured.source,
                            description=f"Remove {captured.source} (absent in snapshot)",
                        )
                    continue
                content = self.executor.read_file(snapshot.path / captured.stored)
                if content is None:
                    errors.append(f"{captured.source}: copy missing from snapshot")
                    continue
                self.executor.write_file(
                    captured.source,
                    content,
                    description=f"Restore {captured.source}",
                )
            except (OSError, ZTError) as e:
                errors.append(f"{captured.source}: {e}")

        for key, value in snapshot.runtime.items():
            if value is None or not forwarding.runtime_available(key):
                continue
            try:
                forwarding.set_runtime(key, value)
            except ZTError as e:
                errors.append(f"{key}: {e}")

        backend = create_backend(snapshot.backend, self.ctx, self.executor, self.ctx.config.firewall)
        dump_file = snapshot.path / snapshot.rule_dump if snapshot.rule_dump else None
        if backend.kind in (Backend.FIREWALLD, Backend.UFW):
            # their dumps are status listings, not loadable rule sets
            dump_file = None
        try:
            backend.reload(dump_file)
        except ZTError as e:
            errors.append(f"{backend.kind.value} reload: {e}")

        self.ctx.run_log.info(
            EventType.SNAPSHOT_RESTORE,
            str(snapshot.path),
            dry_run=self.ctx.dry_run,
            errors=errors,
        )

        if errors:
            raise RollbackError(
                f"Restore from {snapshot.path} was incomplete",
                hint=f"Inspect the captured files in {snapshot.path} and restore the rest by hand",
                details=errors,
            )
