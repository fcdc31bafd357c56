"""Cadence Aligner: activate the schedule on a period boundary.

Creating the schedule right at the start of a period makes the first
scheduled snapshot time predictable, so the window verifier can assert that
nothing is created before it.
"""

from __future__ import annotations

from datetime import datetime

import structlog

from cadence.clock import Timer
from cadence.config import CadenceSettings
from cadence.errors import AlignmentError, VerificationError
from cadence.models import ScheduleInfo, TestRun
from cadence.platform import SnapshotPlatform

log = structlog.get_logger()

# Creation time reported by the platform must be this close to activation
MAX_CREATION_SKEW_SECONDS = 60.0


def parse_creation_timestamp(raw: str) -> datetime:
    """Parse an RFC 3339 timestamp as printed by ``kubectl -o jsonpath='...'``.

    The jsonpath template's single quotes survive into the output and are
    stripped here.
    """
    text = raw.replace("'", "").strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise VerificationError(
            "schedule_creation_timestamp",
            "creation timestamp is not RFC 3339",
            expected="RFC 3339",
            observed=raw,
        ) from exc
    if parsed.tzinfo is None:
        raise VerificationError(
            "schedule_creation_timestamp",
            "creation timestamp has no UTC offset",
            expected="RFC 3339 with offset",
            observed=raw,
        )
    return parsed


def is_period_boundary(now: datetime, period_minutes: int) -> bool:
    return now.minute % period_minutes == 0


def align_max_checks(period_minutes: int, poll_seconds: float) -> int:
    """Number of boundary polls covering one full period."""
    return max(1, int(period_minutes * 60 // poll_seconds))


class CadenceAligner:
    """Waits for the next period boundary, then activates the schedule."""

    def __init__(
        self,
        platform: SnapshotPlatform,
        timer: Timer,
        settings: CadenceSettings,
    ) -> None:
        self.platform = platform
        self.timer = timer
        self.settings = settings

    async def align_and_activate(self, run: TestRun) -> ScheduleInfo | None:
        """Create the schedule at the first observed boundary.

        Polls every ``align_poll_seconds`` for at most one period.  Returns
        ``None`` only in lenient mode when no boundary was observed.
        """
        checks = align_max_checks(run.period_minutes, self.settings.align_poll_seconds)
        for attempt in range(checks):
            await self.timer.wait(self.settings.align_poll_seconds, "align_to_period_boundary")
            now = self.timer.now()
            if is_period_boundary(now, run.period_minutes):
                log.info(
                    "period_boundary_reached",
                    attempt=attempt + 1,
                    minute=now.minute,
                    period=run.period_minutes,
                )
                return await self._activate(run)

        if self.settings.strict_alignment:
            raise AlignmentError(
                "period_boundary",
                f"no minute divisible by {run.period_minutes} observed in {checks} checks",
                expected=f"minute % {run.period_minutes} == 0",
                observed=self.timer.now().isoformat(),
            )
        log.warning(
            "alignment_exhausted_schedule_not_created",
            schedule=run.schedule_name,
            checks=checks,
        )
        return None

    async def _activate(self, run: TestRun) -> ScheduleInfo:
        activated_at = self.timer.now()
        await self.platform.create_schedule(run.schedule_name, run.schedule_args)
        raw = await self.platform.get_schedule_created_at(run.schedule_name)
        info = ScheduleInfo(
            name=run.schedule_name,
            cron_expression=run.cron_expression,
            activated_at=activated_at,
            created_at=parse_creation_timestamp(raw),
        )
        log.info(
            "schedule_activated",
            schedule=info.name,
            cron=info.cron_expression,
            created_at=info.created_at.isoformat(),
            skew_seconds=round(info.creation_skew_seconds, 3),
        )
        if info.creation_skew_seconds >= MAX_CREATION_SKEW_SECONDS:
            raise AlignmentError(
                "schedule_created_without_delay",
                "schedule creation time is not within one minute of activation",
                expected=f"< {MAX_CREATION_SKEW_SECONDS:.0f}s",
                observed=f"{info.creation_skew_seconds:.1f}s",
                created_at=info.created_at.isoformat(),
                activated_at=info.activated_at.isoformat(),
            )
        return info
