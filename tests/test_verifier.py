"""Tests for the Window Verifier.

Covers:
1. Pre-boundary emptiness (last minute skipped)
2. Cadence loop: i+2 entries after each period, for several periods
3. Missed and extra ticks abort immediately
4. Checkpoint recording
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from cadence.aligner import CadenceAligner
from cadence.clock import Timer, VirtualClock
from cadence.errors import CadenceMismatch, DeadlineExceeded
from cadence.ledger import LedgerPoller, parse_ledger_line
from cadence.models import Ledger
from cadence.orchestrator import new_test_run
from cadence.simulation import SimulatedCluster
from cadence.verifier import WindowVerifier
from tests.conftest import START, make_settings


async def _activated(period: int = 3, verify_times: int = 5, **cluster_kwargs):
    """Activate a schedule on a fresh simulated cluster; return the pieces."""
    clock = VirtualClock(START)
    cluster = SimulatedCluster(clock, **cluster_kwargs)
    settings = make_settings(period_minutes=period, verify_times=verify_times)
    timer = Timer(clock, START + timedelta(hours=6))
    run = new_test_run(settings, timer, run_id="v1")
    await CadenceAligner(cluster, timer, settings).align_and_activate(run)
    verifier = WindowVerifier(LedgerPoller(cluster, "default", clock), timer, settings)
    return clock, cluster, verifier, run


# ===========================================================================
# 1. Pre-boundary Check
# ===========================================================================


class TestPreBoundary:
    @pytest.mark.parametrize("period", [2, 3, 5, 10])
    async def test_ledger_empty_before_first_boundary(self, period):
        clock, cluster, verifier, run = await _activated(period)
        await verifier.check_pre_boundary(run)
        assert len(verifier.checkpoints) == period - 1
        assert all(cp.observed == 0 for cp in verifier.checkpoints)

    async def test_last_minute_not_polled(self):
        """Period 3: polls at minutes 1 and 2 only, but three minutes elapse."""
        clock, cluster, verifier, run = await _activated(3)
        activated = clock.now()
        polls_before = cluster.calls.count("list_snapshots")
        await verifier.check_pre_boundary(run)
        assert cluster.calls.count("list_snapshots") - polls_before == 2
        assert clock.now() - activated == timedelta(minutes=3)

    async def test_immediate_snapshot_fails(self):
        clock, cluster, verifier, run = await _activated(3, immediate_snapshot=True)
        with pytest.raises(CadenceMismatch) as exc_info:
            await verifier.check_pre_boundary(run)
        assert exc_info.value.check == "no_immediate_snapshot"
        assert exc_info.value.observed == 1
        assert len(verifier.checkpoints) == 1

    async def test_settle_waits_one_minute(self):
        clock, cluster, verifier, run = await _activated(3)
        before = clock.now()
        await verifier.settle()
        assert clock.now() - before == timedelta(minutes=1)


# ===========================================================================
# 2. Cadence Loop
# ===========================================================================


class TestCadence:
    @pytest.mark.parametrize("period", [2, 3, 4, 5, 6, 10])
    async def test_grows_by_one_per_period(self, period):
        clock, cluster, verifier, run = await _activated(period, verify_times=4)
        await verifier.check_pre_boundary(run)
        await verifier.settle()
        ledger = await verifier.check_cadence(run)
        observed = [cp.observed for cp in verifier.checkpoints[period - 1:]]
        assert observed == [2, 3, 4, 5]
        assert len(ledger) == 5

    async def test_reference_scenario_counts(self):
        """Period 3, five checks: 2, 3, 4, 5, 6."""
        clock, cluster, verifier, run = await _activated(3, verify_times=5)
        await verifier.check_pre_boundary(run)
        await verifier.settle()
        ledger = await verifier.check_cadence(run)
        assert [cp.observed for cp in verifier.checkpoints[2:]] == [2, 3, 4, 5, 6]
        assert len(ledger) == 6
        created = [r.created_at.minute for r in ledger.records]
        assert created == [6, 9, 12, 15, 18, 21]

    async def test_each_iteration_sleeps_one_period(self):
        clock, cluster, verifier, run = await _activated(3, verify_times=3)
        await verifier.check_pre_boundary(run)
        await verifier.settle()
        clock.sleeps.clear()
        await verifier.check_cadence(run)
        assert clock.sleeps == [180.0, 180.0, 180.0]


# ===========================================================================
# 3. Missed / Extra Ticks
# ===========================================================================


class TestCadenceFailures:
    async def _run(self, **cluster_kwargs):
        clock, cluster, verifier, run = await _activated(3, verify_times=5, **cluster_kwargs)
        await verifier.check_pre_boundary(run)
        await verifier.settle()
        return verifier, run

    async def test_missed_tick(self):
        verifier, run = await self._run(drop_ticks={2})
        with pytest.raises(CadenceMismatch, match="missed tick") as exc_info:
            await verifier.check_cadence(run)
        assert exc_info.value.expected == 2
        assert exc_info.value.observed == 1

    async def test_extra_tick(self):
        verifier, run = await self._run(extra_ticks={3})
        with pytest.raises(CadenceMismatch, match="extra tick") as exc_info:
            await verifier.check_cadence(run)
        assert exc_info.value.expected == 3
        assert exc_info.value.observed == 4

    async def test_failure_stops_loop(self):
        """No further polls after the first mismatch."""
        verifier, run = await self._run(drop_ticks={1})
        with pytest.raises(CadenceMismatch):
            await verifier.check_cadence(run)
        cadence_checkpoints = [cp for cp in verifier.checkpoints if cp.label.startswith("cadence")]
        assert len(cadence_checkpoints) == 1
        assert not cadence_checkpoints[0].ok

    async def test_shrinking_ledger(self, clock, settings):
        poller = AsyncMock(spec=LedgerPoller)
        empty = Ledger(schedule_name="s", records=(), observed_at=clock.now())
        two = empty.model_copy(update={"records": (
            parse_ledger_line("a,2026-10-17 10:06:00 +0000 UTC"),
            parse_ledger_line("b,2026-10-17 10:09:00 +0000 UTC"),
        )})
        poller.poll.side_effect = [two, empty]
        timer = Timer(clock, START + timedelta(hours=1))
        verifier = WindowVerifier(poller, timer, settings)
        run = new_test_run(settings, timer, run_id="m1")
        with pytest.raises(CadenceMismatch) as exc_info:
            await verifier.check_cadence(run)
        assert exc_info.value.check == "ledger_monotonic"

    async def test_deadline_during_cadence(self):
        clock = VirtualClock(START)
        cluster = SimulatedCluster(clock)
        settings = make_settings()
        timer = Timer(clock, START + timedelta(minutes=2))
        run = new_test_run(settings, timer, run_id="d1")
        verifier = WindowVerifier(LedgerPoller(cluster, "default", clock), timer, settings)
        with pytest.raises(DeadlineExceeded):
            await verifier.check_cadence(run)
