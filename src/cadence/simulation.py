"""In-memory cluster with a cron scheduler, driven by a ``VirtualClock``.

``SimulatedCluster`` implements both platform interfaces so a full run can be
exercised without a Kubernetes cluster and without real sleeps (``--simulate``
on the command line).  It fires a snapshot on every minute boundary divisible
by the schedule period that lies strictly after the schedule's creation time,
which is how the real scheduler behaves.

Faults can be injected to exercise the failure paths:

* ``drop_ticks``            — 1-based tick numbers that produce no snapshot
* ``extra_ticks``           — tick numbers that produce a duplicate snapshot
* ``immediate_snapshot``    — snapshot right at schedule creation
* ``creation_delay_seconds``— skew of the reported schedule creation time
* ``malformed_timestamps``  — ledger timestamps printed in the wrong format
* ``restore_phase``         — phase reported for restores
* ``failing_commands``      — operation names that fail with ``CommandError``
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import structlog

from cadence.clock import VirtualClock
from cadence.errors import CommandError
from cadence.models import ResourceLookup
from cadence.platform import ResourcePlatform, SnapshotPlatform
from cadence.restore import RESTORE_COMPLETED

log = structlog.get_logger()

_SCHEDULE_ARG_RE = re.compile(r"^--schedule=\*/(\d+) \* \* \* \*$")

Contents = dict[str, dict[str, dict[str, str]]]  # namespace -> name -> data


@dataclass
class SimulatedSchedule:
    name: str
    period_minutes: int
    namespaces: list[str]
    created_at: datetime
    ticks: int = 0


@dataclass
class SimulatedBackup:
    name: str
    schedule: str
    location: str
    created_at: datetime
    contents: Contents = field(default_factory=dict)


class SimulatedCluster(SnapshotPlatform, ResourcePlatform):
    """Both platforms in one process, reacting to virtual clock advances."""

    def __init__(
        self,
        clock: VirtualClock,
        *,
        location: str = "default",
        zone: str = "UTC",
        drop_ticks: set[int] | None = None,
        extra_ticks: set[int] | None = None,
        immediate_snapshot: bool = False,
        creation_delay_seconds: float = 0.0,
        malformed_timestamps: bool = False,
        restore_phase: str = RESTORE_COMPLETED,
        failing_commands: set[str] | None = None,
    ) -> None:
        self.clock = clock
        self.location = location
        self.zone = zone
        self.drop_ticks = drop_ticks or set()
        self.extra_ticks = extra_ticks or set()
        self.immediate_snapshot = immediate_snapshot
        self.creation_delay_seconds = creation_delay_seconds
        self.malformed_timestamps = malformed_timestamps
        self.restore_phase = restore_phase
        self.failing_commands = failing_commands or set()

        self.namespaces: Contents = {}
        self.schedules: dict[str, SimulatedSchedule] = {}
        self.backups: list[SimulatedBackup] = []
        self.restores: dict[str, str] = {}
        self.debug_bundles: list[str] = []
        self.calls: list[str] = []

        clock.add_listener(self._on_advance)

    # -- Scheduler ---------------------------------------------------------

    def _on_advance(self, old: datetime, new: datetime) -> None:
        boundary = old.replace(second=0, microsecond=0) + timedelta(minutes=1)
        while boundary <= new:
            for schedule in self.schedules.values():
                if boundary > schedule.created_at and boundary.minute % schedule.period_minutes == 0:
                    self._tick(schedule, boundary)
            boundary += timedelta(minutes=1)

    def _tick(self, schedule: SimulatedSchedule, at: datetime) -> None:
        schedule.ticks += 1
        if schedule.ticks in self.drop_ticks:
            log.debug("sim_tick_dropped", schedule=schedule.name, tick=schedule.ticks)
            return
        self._take_backup(schedule, at)
        if schedule.ticks in self.extra_ticks:
            self._take_backup(schedule, at, suffix="-dup")

    def _take_backup(self, schedule: SimulatedSchedule, at: datetime, suffix: str = "") -> None:
        contents = {
            ns: copy.deepcopy(self.namespaces[ns])
            for ns in schedule.namespaces
            if ns in self.namespaces
        }
        backup = SimulatedBackup(
            name=f"{schedule.name}-{at:%Y%m%d%H%M%S}{suffix}",
            schedule=schedule.name,
            location=self.location,
            created_at=at,
            contents=contents,
        )
        self.backups.append(backup)
        log.debug("sim_backup_created", backup=backup.name)

    def _format_created(self, at: datetime) -> str:
        if self.malformed_timestamps:
            return at.isoformat()
        return f"{at:%Y-%m-%d %H:%M:%S %z} {self.zone}"

    def _call(self, operation: str, *args: str) -> None:
        self.calls.append(operation)
        if operation in self.failing_commands:
            raise CommandError([operation, *args], 1, f"simulated failure of {operation}")

    # -- SnapshotPlatform --------------------------------------------------

    async def create_schedule(self, name: str, args: list[str]) -> None:
        self._call("create_schedule", name)
        if name in self.schedules:
            raise CommandError(["schedule", "create", name], 1, "schedule already exists")
        namespaces: list[str] = []
        period: int | None = None
        for i, arg in enumerate(args):
            if arg == "--include-namespaces":
                namespaces = args[i + 1].split(",")
            match = _SCHEDULE_ARG_RE.match(arg)
            if match:
                period = int(match.group(1))
        if period is None:
            raise CommandError(["schedule", "create", name, *args], 1, "invalid --schedule")

        now = self.clock.now()
        created_at = (now + timedelta(seconds=self.creation_delay_seconds)).replace(microsecond=0)
        schedule = SimulatedSchedule(
            name=name,
            period_minutes=period,
            namespaces=namespaces,
            created_at=created_at,
        )
        self.schedules[name] = schedule
        if self.immediate_snapshot:
            self._take_backup(schedule, now.replace(microsecond=0), suffix="-now")

    async def get_schedule_created_at(self, name: str) -> str:
        self._call("get_schedule", name)
        schedule = self.schedules.get(name)
        if schedule is None:
            raise CommandError(["get", "schedule", name], 1, f'schedules "{name}" NotFound')
        utc = schedule.created_at.astimezone(timezone.utc)
        return f"'{utc:%Y-%m-%dT%H:%M:%SZ}'"

    async def list_snapshots(self, scope: str, schedule_name: str) -> list[str]:
        self._call("list_snapshots", schedule_name)
        return [
            f"{b.name},{self._format_created(b.created_at)}"
            for b in self.backups
            if b.schedule == schedule_name and b.location == scope
        ]

    async def create_restore(self, restore_name: str, snapshot_id: str) -> None:
        self._call("create_restore", restore_name)
        backup = next((b for b in self.backups if b.name == snapshot_id), None)
        if backup is None:
            raise CommandError(
                ["restore", "create", restore_name, "--from-backup", snapshot_id],
                1,
                f'backups "{snapshot_id}" NotFound',
            )
        self.restores[restore_name] = self.restore_phase
        if self.restore_phase != RESTORE_COMPLETED:
            return
        for ns, objects in backup.contents.items():
            self.namespaces.setdefault(ns, {}).update(copy.deepcopy(objects))

    async def get_restore_phase(self, restore_name: str) -> str:
        self._call("get_restore", restore_name)
        if restore_name not in self.restores:
            raise CommandError(["get", "restore", restore_name], 1, "NotFound")
        return self.restores[restore_name]

    async def collect_debug(self, output_path: str) -> None:
        self._call("debug", output_path)
        self.debug_bundles.append(output_path)

    # -- ResourcePlatform --------------------------------------------------

    async def create_namespace(self, namespace: str) -> None:
        self._call("create_namespace", namespace)
        if namespace in self.namespaces:
            raise CommandError(["create", "namespace", namespace], 1, "AlreadyExists")
        self.namespaces[namespace] = {}

    async def create_config_map(
        self, namespace: str, name: str, data: dict[str, str]
    ) -> None:
        self._call("create_configmap", namespace)
        if namespace not in self.namespaces:
            raise CommandError(["create", "configmap", name], 1, f'namespaces "{namespace}" not found')
        self.namespaces[namespace][name] = dict(data)

    async def get_config_map(self, namespace: str, name: str) -> ResourceLookup:
        self._call("get_configmap", namespace)
        data = self.namespaces.get(namespace, {}).get(name)
        if data is None:
            return ResourceLookup(
                namespace=namespace,
                name=name,
                exists=False,
                error=f'configmaps "{name}" not found',
            )
        return ResourceLookup(namespace=namespace, name=name, exists=True, data=dict(data))

    async def delete_namespace(self, namespace: str) -> None:
        self._call("delete_namespace", namespace)
        self.namespaces.pop(namespace, None)

    async def namespace_exists(self, namespace: str) -> bool:
        self._call("get_namespace", namespace)
        return namespace in self.namespaces
