"""Command and query interfaces to the external platform.

1. ``SnapshotPlatform``  — Abstract interface to the scheduler / snapshot store.
2. ``ResourcePlatform``  — Abstract interface to the managed-resource platform.
3. ``VeleroCli``         — ``SnapshotPlatform`` backed by the ``velero`` CLI.
4. ``KubectlResources``  — ``ResourcePlatform`` backed by ``kubectl``.

The run never mutates platform state beyond create-once / restore-once
commands; everything else is a read.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod

import structlog

from cadence.clock import Timer
from cadence.commands import CommandResult, run_command
from cadence.config import CadenceSettings
from cadence.errors import CommandError
from cadence.models import ResourceLookup

log = structlog.get_logger()

# Label Velero puts on every backup created by a schedule
SCHEDULE_LABEL = "velero.io/schedule-name"
STORAGE_LOCATION_LABEL = "velero.io/storage-location"

# ``velero get backups`` columns: NAME STATUS ERRORS WARNINGS CREATED(4 tokens) ...
_CREATED_COLUMNS = slice(4, 8)


# ---------------------------------------------------------------------------
# 1. SnapshotPlatform (ABC)
# ---------------------------------------------------------------------------


class SnapshotPlatform(ABC):
    """Abstract interface to the external scheduler and snapshot store."""

    @abstractmethod
    async def create_schedule(self, name: str, args: list[str]) -> None:
        """Create the cron schedule *name*."""
        ...

    @abstractmethod
    async def get_schedule_created_at(self, name: str) -> str:
        """Return the schedule's creation timestamp as printed (may be quoted)."""
        ...

    @abstractmethod
    async def list_snapshots(self, scope: str, schedule_name: str) -> list[str]:
        """Return ``"<identifier>,<timestamp>"`` lines for the schedule."""
        ...

    @abstractmethod
    async def create_restore(self, restore_name: str, snapshot_id: str) -> None:
        """Restore from *snapshot_id*; returns once the restore is terminal."""
        ...

    @abstractmethod
    async def get_restore_phase(self, restore_name: str) -> str:
        """Return the platform-reported phase of a restore."""
        ...

    @abstractmethod
    async def collect_debug(self, output_path: str) -> None:
        """Write a diagnostic bundle to *output_path*."""
        ...


# ---------------------------------------------------------------------------
# 2. ResourcePlatform (ABC)
# ---------------------------------------------------------------------------


class ResourcePlatform(ABC):
    """Abstract interface to the platform hosting the managed resources."""

    @abstractmethod
    async def create_namespace(self, namespace: str) -> None:
        ...

    @abstractmethod
    async def create_config_map(
        self, namespace: str, name: str, data: dict[str, str]
    ) -> None:
        ...

    @abstractmethod
    async def get_config_map(self, namespace: str, name: str) -> ResourceLookup:
        """Fetch one resource; absence is reported, not raised."""
        ...

    @abstractmethod
    async def delete_namespace(self, namespace: str) -> None:
        ...

    @abstractmethod
    async def namespace_exists(self, namespace: str) -> bool:
        ...


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


class _CliAdapter:
    """Runs commands with a timeout bounded by the run deadline."""

    def __init__(self, settings: CadenceSettings, timer: Timer) -> None:
        self.settings = settings
        self.timer = timer

    async def _run(self, argv: list[str], *, check: bool = True) -> CommandResult:
        activity = " ".join(argv[:3])
        self.timer.check(activity)
        timeout = min(self.settings.command_timeout_seconds, self.timer.remaining())
        return await run_command(argv, timeout=timeout, check=check)


def _strip_quotes(value: str) -> str:
    return value.strip().replace("'", "")


def _is_not_found(result: CommandResult) -> bool:
    return "NotFound" in result.stderr or "not found" in result.stderr


def backups_table_to_lines(stdout: str) -> list[str]:
    """Reshape ``velero get backups`` table output into ledger lines.

    Rows with fewer columns than expected are passed through unchanged so that
    the ledger parser rejects them.
    """
    lines: list[str] = []
    for row in stdout.splitlines():
        if not row.strip() or row.startswith("NAME"):
            continue
        cols = row.split()
        if len(cols) < _CREATED_COLUMNS.stop:
            lines.append(row)
            continue
        lines.append(f"{cols[0]},{' '.join(cols[_CREATED_COLUMNS])}")
    return lines


# ---------------------------------------------------------------------------
# 3. VeleroCli
# ---------------------------------------------------------------------------


class VeleroCli(_CliAdapter, SnapshotPlatform):
    """Snapshot platform driven through the ``velero`` and ``kubectl`` CLIs."""

    def _velero(self, *args: str) -> list[str]:
        return [
            self.settings.velero_cli,
            "--namespace",
            self.settings.velero_namespace,
            *args,
        ]

    async def create_schedule(self, name: str, args: list[str]) -> None:
        await self._run(self._velero("schedule", "create", name, *args))
        log.info("schedule_created", schedule=name, args=args)

    async def get_schedule_created_at(self, name: str) -> str:
        result = await self._run([
            self.settings.kubectl_cli,
            "get", "schedule",
            "-n", self.settings.velero_namespace,
            name,
            "-o", "jsonpath='{.metadata.creationTimestamp}'",
        ])
        return result.stdout.strip()

    async def list_snapshots(self, scope: str, schedule_name: str) -> list[str]:
        selector = f"{SCHEDULE_LABEL}={schedule_name},{STORAGE_LOCATION_LABEL}={scope}"
        result = await self._run(self._velero("get", "backups", "--selector", selector))
        return backups_table_to_lines(result.stdout)

    async def create_restore(self, restore_name: str, snapshot_id: str) -> None:
        await self._run(self._velero(
            "restore", "create", restore_name,
            "--from-backup", snapshot_id,
            "--wait",
        ))
        log.info("restore_finished", restore=restore_name, snapshot=snapshot_id)

    async def get_restore_phase(self, restore_name: str) -> str:
        result = await self._run([
            self.settings.kubectl_cli,
            "get", "restore",
            "-n", self.settings.velero_namespace,
            restore_name,
            "-o", "jsonpath='{.status.phase}'",
        ])
        return _strip_quotes(result.stdout)

    async def collect_debug(self, output_path: str) -> None:
        await self._run(self._velero("debug", "--output", output_path))
        log.info("debug_bundle_written", path=output_path)


# ---------------------------------------------------------------------------
# 4. KubectlResources
# ---------------------------------------------------------------------------


class KubectlResources(_CliAdapter, ResourcePlatform):
    """Managed-resource platform driven through ``kubectl``."""

    async def create_namespace(self, namespace: str) -> None:
        await self._run([self.settings.kubectl_cli, "create", "namespace", namespace])

    async def create_config_map(
        self, namespace: str, name: str, data: dict[str, str]
    ) -> None:
        literals = [f"--from-literal={k}={v}" for k, v in sorted(data.items())]
        await self._run([
            self.settings.kubectl_cli,
            "create", "configmap", name,
            "-n", namespace,
            *literals,
        ])

    async def get_config_map(self, namespace: str, name: str) -> ResourceLookup:
        result = await self._run(
            [self.settings.kubectl_cli, "get", "configmap", name, "-n", namespace, "-o", "json"],
            check=False,
        )
        if result.returncode != 0:
            return ResourceLookup(
                namespace=namespace,
                name=name,
                exists=False,
                error=result.stderr.strip() or f"exit code {result.returncode}",
            )
        try:
            payload = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            return ResourceLookup(
                namespace=namespace, name=name, exists=False, error=f"invalid JSON: {exc}"
            )
        return ResourceLookup(
            namespace=namespace,
            name=name,
            exists=True,
            data=payload.get("data") or {},
        )

    async def delete_namespace(self, namespace: str) -> None:
        await self._run([
            self.settings.kubectl_cli,
            "delete", "namespace", namespace,
            "--ignore-not-found", "--wait=false",
        ])

    async def namespace_exists(self, namespace: str) -> bool:
        result = await self._run(
            [self.settings.kubectl_cli, "get", "namespace", namespace],
            check=False,
        )
        if result.returncode == 0:
            return True
        if _is_not_found(result):
            return False
        raise CommandError(list(result.argv), result.returncode, result.stderr)
