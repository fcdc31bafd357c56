"""Window Verifier: ledger cardinality at fixed wall-clock checkpoints.

1. ``check_pre_boundary`` — the ledger stays empty during the first ``P-1``
   minutes after activation.  The last minute of the period is skipped to
   avoid racing the first scheduled snapshot.
2. ``settle``             — one extra minute so the first snapshot lands.
3. ``check_cadence``      — after each full period the ledger holds exactly
   one more entry: ``i + 2`` after the ``(i+1)``-th sleep.
"""

from __future__ import annotations

import structlog

from cadence.clock import Timer
from cadence.config import CadenceSettings
from cadence.errors import CadenceMismatch
from cadence.ledger import LedgerPoller
from cadence.models import Checkpoint, Ledger, TestRun

log = structlog.get_logger()


class WindowVerifier:
    """Asserts ledger length at the pre-boundary and cadence checkpoints.

    Every observation is appended to :attr:`checkpoints`, including the one
    that fails.
    """

    def __init__(
        self,
        poller: LedgerPoller,
        timer: Timer,
        settings: CadenceSettings,
    ) -> None:
        self.poller = poller
        self.timer = timer
        self.settings = settings
        self.checkpoints: list[Checkpoint] = []

    def _record(self, label: str, ledger: Ledger, expected: int) -> Checkpoint:
        checkpoint = Checkpoint(
            label=label,
            observed_at=ledger.observed_at,
            expected=expected,
            observed=len(ledger),
        )
        self.checkpoints.append(checkpoint)
        return checkpoint

    async def check_pre_boundary(self, run: TestRun) -> None:
        for minute in range(run.period_minutes):
            await self.timer.wait(self.settings.window_poll_seconds, "pre_boundary_window")
            if minute == run.period_minutes - 1:
                log.info("pre_boundary_last_minute_skipped", minute=minute)
                continue
            ledger = await self.poller.poll(run.schedule_name)
            checkpoint = self._record(f"pre-boundary minute {minute}", ledger, 0)
            if not checkpoint.ok:
                raise CadenceMismatch(
                    "no_immediate_snapshot",
                    f"snapshot created before the first period boundary (minute {minute})",
                    expected=0,
                    observed=len(ledger),
                    snapshots=ledger.identifiers(),
                )

    async def settle(self) -> None:
        log.info("settle_delay", seconds=self.settings.settle_seconds)
        await self.timer.wait(self.settings.settle_seconds, "settle_after_window")

    async def check_cadence(self, run: TestRun) -> Ledger:
        """Run the cadence loop and return the final ledger."""
        ledger: Ledger | None = None
        previous = 0
        for i in range(run.verify_times):
            log.info("cadence_sleep", iteration=i + 1, minutes=run.period_minutes)
            await self.timer.wait(run.period_minutes * 60.0, "cadence_loop")
            ledger = await self.poller.poll(run.schedule_name)
            expected = i + 2
            checkpoint = self._record(f"cadence #{i + 1}", ledger, expected)
            if len(ledger) < previous:
                raise CadenceMismatch(
                    "ledger_monotonic",
                    "ledger shrank between polls",
                    expected=f">= {previous}",
                    observed=len(ledger),
                    snapshots=ledger.identifiers(),
                )
            if not checkpoint.ok:
                reason = "missed tick" if len(ledger) < expected else "extra tick"
                raise CadenceMismatch(
                    "snapshot_cadence",
                    f"{reason} after period #{i + 1}",
                    expected=expected,
                    observed=len(ledger),
                    snapshots=ledger.identifiers(),
                )
            previous = len(ledger)
        assert ledger is not None  # verify_times >= 1
        return ledger
