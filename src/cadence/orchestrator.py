"""Phase state machine for a verification run.

Phases run in strict order, each gated on the previous one succeeding:

    INIT -> ACTIVATE -> PRE_WINDOW_CHECK -> CADENCE_LOOP
         -> SELECT_AND_CLEANUP -> RESTORE -> VERIFY -> PASSED

Each phase is executed through ``_execute``, which turns a raised
:class:`~cadence.errors.CadenceError` into a failed :class:`PhaseResult`.
The first failure moves the machine to ``FAILED`` and the remaining phases
are not run.  There is no rollback.
"""

from __future__ import annotations

import os
import random
import uuid
from typing import Any, Awaitable, Callable

import structlog

from cadence.aligner import CadenceAligner
from cadence.clock import Timer
from cadence.config import CadenceSettings
from cadence.errors import CadenceError, CommandError
from cadence.ledger import LedgerPoller
from cadence.models import (
    Ledger,
    PhaseResult,
    RestoreOutcome,
    RunPhase,
    RunReport,
    SnapshotRecord,
    TestRun,
)
from cadence.platform import ResourcePlatform, SnapshotPlatform
from cadence.restore import RestoreDriver, select_snapshot
from cadence.verifier import WindowVerifier
from cadence.workload import Workload

log = structlog.get_logger()

PhaseStep = Callable[[], Awaitable[dict[str, Any]]]


def new_test_run(
    settings: CadenceSettings,
    timer: Timer,
    run_id: str | None = None,
) -> TestRun:
    """Build the context of a new run from *settings*."""
    run_id = run_id or str(uuid.uuid4())
    return TestRun(
        run_id=run_id,
        schedule_name=f"schedule-{run_id}",
        restore_name=f"restore-ns-mapping-{run_id}",
        namespaces=tuple(settings.namespaces),
        resource_name=settings.resource_name,
        resource_data={"run-id": run_id},
        period_minutes=settings.period_minutes,
        verify_times=settings.verify_times,
        started_at=timer.now(),
        deadline_at=timer.deadline_at,
    )


class CadenceRunner:
    """Sequences one run through all phases.

    Parameters
    ----------
    settings:
        Frozen run configuration.
    timer:
        Deadline-bounded wait primitive shared by every component.
    snapshots:
        Scheduler / snapshot store interface.
    resources:
        Managed-resource platform interface.
    rng:
        Random source for snapshot selection.  Defaults to an unseeded
        ``random.Random``.
    run_id:
        Optional fixed identifier (tests); a UUID4 otherwise.
    """

    def __init__(
        self,
        settings: CadenceSettings,
        timer: Timer,
        snapshots: SnapshotPlatform,
        resources: ResourcePlatform,
        *,
        rng: random.Random | None = None,
        run_id: str | None = None,
    ) -> None:
        self.settings = settings
        self.timer = timer
        self.snapshots = snapshots
        self.resources = resources
        self.rng = rng or random.Random()
        self._run_id = run_id

        self.state = RunPhase.INIT
        self.report = RunReport()

        self.poller = LedgerPoller(snapshots, settings.ledger_scope, timer.clock)
        self.aligner = CadenceAligner(snapshots, timer, settings)
        self.verifier = WindowVerifier(self.poller, timer, settings)
        self.workload = Workload(resources, timer, settings)
        self.restorer = RestoreDriver(snapshots, resources, settings)

        self.run_ctx: TestRun | None = None
        self._final_ledger: Ledger | None = None
        self._selected: SnapshotRecord | None = None
        self._outcome: RestoreOutcome | None = None

    # -- State management --------------------------------------------------

    def _set_state(self, new_state: RunPhase) -> None:
        old = self.state
        self.state = new_state
        structlog.contextvars.bind_contextvars(phase=new_state.value)
        log.info("state_transition", old=old.value, new=new_state.value)

    async def _execute(self, phase: RunPhase, step: PhaseStep) -> PhaseResult:
        self._set_state(phase)
        started_at = self.timer.now()
        try:
            detail = await step()
        except CadenceError as exc:
            log.error("phase_failed", error=str(exc), error_type=type(exc).__name__)
            result = PhaseResult(
                phase=phase,
                ok=False,
                started_at=started_at,
                finished_at=self.timer.now(),
                detail=dict(exc.context),
                error=str(exc),
                error_type=type(exc).__name__,
            )
        else:
            result = PhaseResult(
                phase=phase,
                ok=True,
                started_at=started_at,
                finished_at=self.timer.now(),
                detail=detail,
            )
        self.report.phases.append(result)
        return result

    # -- Phases ------------------------------------------------------------

    async def _init(self) -> dict[str, Any]:
        self.run_ctx = new_test_run(self.settings, self.timer, self._run_id)
        self.report.run = self.run_ctx
        structlog.contextvars.bind_contextvars(run_id=self.run_ctx.run_id)
        log.info(
            "run_initialized",
            schedule=self.run_ctx.schedule_name,
            namespaces=list(self.run_ctx.namespaces),
            period=self.run_ctx.period_minutes,
            verify_times=self.run_ctx.verify_times,
            deadline=self.run_ctx.deadline_at.isoformat(),
        )
        return {
            "schedule": self.run_ctx.schedule_name,
            "cron": self.run_ctx.cron_expression,
        }

    async def _activate(self) -> dict[str, Any]:
        run = self._require_run()
        await self.workload.create(run)
        try:
            info = await self.aligner.align_and_activate(run)
        except CommandError:
            await self._collect_debug(run)
            raise
        self.report.schedule = info
        if info is None:
            return {"activated": False}
        return {
            "activated": True,
            "created_at": info.created_at.isoformat(),
            "skew_seconds": round(info.creation_skew_seconds, 3),
        }

    async def _pre_window_check(self) -> dict[str, Any]:
        run = self._require_run()
        await self.verifier.check_pre_boundary(run)
        await self.verifier.settle()
        return {"polls": len(self.verifier.checkpoints)}

    async def _cadence_loop(self) -> dict[str, Any]:
        run = self._require_run()
        self._final_ledger = await self.verifier.check_cadence(run)
        return {"final_count": len(self._final_ledger)}

    async def _select_and_cleanup(self) -> dict[str, Any]:
        run = self._require_run()
        assert self._final_ledger is not None
        self._selected = select_snapshot(self._final_ledger, self.rng)
        self.report.selected_snapshot = self._selected
        log.info("snapshot_selected", snapshot=self._selected.identifier)
        await self.workload.teardown(run)
        return {"snapshot": self._selected.identifier}

    async def _restore(self) -> dict[str, Any]:
        run = self._require_run()
        assert self._selected is not None
        self._outcome = await self.restorer.restore(run, self._selected)
        self.report.restore = self._outcome
        return {"restore": self._outcome.restore_name, "phase": self._outcome.phase}

    async def _verify(self) -> dict[str, Any]:
        run = self._require_run()
        assert self._outcome is not None
        lookups = await self.restorer.verify(run, self._outcome)
        return {"restored": [lk.namespace for lk in lookups]}

    # -- Helpers -----------------------------------------------------------

    def _require_run(self) -> TestRun:
        assert self.run_ctx is not None, "INIT has not run"
        return self.run_ctx

    async def _collect_debug(self, run: TestRun) -> None:
        """Best-effort diagnostic bundle after an activation failure."""
        path = os.path.join(self.settings.debug_dir, f"{run.run_id}.tar.gz")
        try:
            os.makedirs(self.settings.debug_dir, exist_ok=True)
            await self.snapshots.collect_debug(path)
        except (CadenceError, OSError):
            log.exception("debug_collection_failed", path=path)

    # -- Main entry --------------------------------------------------------

    async def run(self) -> RunReport:
        """Execute all phases and return the report."""
        steps: list[tuple[RunPhase, PhaseStep]] = [
            (RunPhase.INIT, self._init),
            (RunPhase.ACTIVATE, self._activate),
            (RunPhase.PRE_WINDOW_CHECK, self._pre_window_check),
            (RunPhase.CADENCE_LOOP, self._cadence_loop),
            (RunPhase.SELECT_AND_CLEANUP, self._select_and_cleanup),
            (RunPhase.RESTORE, self._restore),
            (RunPhase.VERIFY, self._verify),
        ]
        try:
            for phase, step in steps:
                result = await self._execute(phase, step)
                if not result.ok:
                    self._set_state(RunPhase.FAILED)
                    break
            else:
                self._set_state(RunPhase.PASSED)
        finally:
            self.report.checkpoints = list(self.verifier.checkpoints)
            structlog.contextvars.unbind_contextvars("run_id", "phase")

        log.info("run_finished", passed=self.report.passed, state=self.state.value)
        return self.report
