"""Pydantic models for the run context, platform observations and results.

All models use Pydantic v2 conventions.  Observations coming from the
external platform (``SnapshotRecord``, ``Ledger``, ``ScheduleInfo``) are
frozen: once observed they never change.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def cron_for_period(period_minutes: int) -> str:
    """Return the "every N minutes" cron expression for *period_minutes*."""
    return f"*/{period_minutes} * * * *"


# ---------------------------------------------------------------------------
# Run context
# ---------------------------------------------------------------------------


class TestRun(BaseModel):
    """Top-level context of one verification run.

    Created at Init and owned by the runner for the lifetime of the run.
    """

    __test__ = False  # not a pytest test class

    model_config = ConfigDict(frozen=True)

    run_id: str
    schedule_name: str
    restore_name: str
    namespaces: tuple[str, ...]
    resource_name: str
    resource_data: dict[str, str] = Field(default_factory=dict)
    period_minutes: int
    verify_times: int
    started_at: datetime
    deadline_at: datetime

    @property
    def cron_expression(self) -> str:
        return cron_for_period(self.period_minutes)

    @property
    def schedule_args(self) -> list[str]:
        return [
            "--include-namespaces",
            ",".join(self.namespaces),
            f"--schedule={self.cron_expression}",
        ]


# ---------------------------------------------------------------------------
# Platform observations
# ---------------------------------------------------------------------------


class ScheduleInfo(BaseModel):
    """The externally managed schedule, as observed right after activation."""

    model_config = ConfigDict(frozen=True)

    name: str
    cron_expression: str
    activated_at: datetime
    created_at: datetime

    @property
    def creation_skew_seconds(self) -> float:
        return abs((self.created_at - self.activated_at).total_seconds())


class SnapshotRecord(BaseModel):
    """One entry of the snapshot ledger."""

    model_config = ConfigDict(frozen=True)

    identifier: str
    created_at: datetime
    zone: str
    raw: str


class Ledger(BaseModel):
    """Snapshots of one schedule in discovery order, read fresh per poll."""

    model_config = ConfigDict(frozen=True)

    schedule_name: str
    records: tuple[SnapshotRecord, ...] = ()
    observed_at: datetime

    def __len__(self) -> int:
        return len(self.records)

    def identifiers(self) -> list[str]:
        return [r.identifier for r in self.records]


class ResourceLookup(BaseModel):
    """Result of fetching one managed resource by name and namespace."""

    namespace: str
    name: str
    exists: bool
    error: str | None = None
    data: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class Checkpoint(BaseModel):
    """A single ledger-length observation at a wall-clock checkpoint."""

    label: str
    observed_at: datetime
    expected: int
    observed: int

    @property
    def ok(self) -> bool:
        return self.expected == self.observed


class RestoreOutcome(BaseModel):
    """Result of restoring from the selected snapshot."""

    restore_name: str
    snapshot_id: str
    succeeded: bool
    phase: str | None = None
    lookups: list[ResourceLookup] = Field(default_factory=list)


class RunPhase(enum.Enum):
    """Phases of a run, in execution order, plus the two terminal states."""

    INIT = "INIT"
    ACTIVATE = "ACTIVATE"
    PRE_WINDOW_CHECK = "PRE_WINDOW_CHECK"
    CADENCE_LOOP = "CADENCE_LOOP"
    SELECT_AND_CLEANUP = "SELECT_AND_CLEANUP"
    RESTORE = "RESTORE"
    VERIFY = "VERIFY"
    PASSED = "PASSED"
    FAILED = "FAILED"


class PhaseResult(BaseModel):
    """Outcome of one phase."""

    phase: RunPhase
    ok: bool
    started_at: datetime
    finished_at: datetime
    detail: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    error_type: str | None = None


class RunReport(BaseModel):
    """Aggregated result of a run; ``failure`` is the first failed phase."""

    run: TestRun | None = None
    schedule: ScheduleInfo | None = None
    phases: list[PhaseResult] = Field(default_factory=list)
    checkpoints: list[Checkpoint] = Field(default_factory=list)
    selected_snapshot: SnapshotRecord | None = None
    restore: RestoreOutcome | None = None

    @property
    def passed(self) -> bool:
        return bool(self.phases) and all(p.ok for p in self.phases) and (
            self.phases[-1].phase == RunPhase.VERIFY
        )

    @property
    def failure(self) -> PhaseResult | None:
        for result in self.phases:
            if not result.ok:
                return result
        return None
