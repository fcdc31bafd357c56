"""Time sources and the deadline-bounded wait primitive.

1. ``Clock``        — Abstract time source (``now`` + cancellable ``sleep``).
2. ``SystemClock``  — Real wall clock backed by ``asyncio``.
3. ``VirtualClock`` — Instant-advancing clock for dry runs and tests.  Listeners
   are notified on every advance so simulated collaborators can react to time.
4. ``Timer``        — Every wait in a run goes through ``Timer.wait``, which
   enforces the overall run deadline and supports cancellation.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable

import structlog

from cadence.errors import DeadlineExceeded, RunCancelled

log = structlog.get_logger()

AdvanceListener = Callable[[datetime, datetime], None]


# ---------------------------------------------------------------------------
# 1. Clock (ABC)
# ---------------------------------------------------------------------------


class Clock(ABC):
    """Abstract time source."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current time as a timezone-aware datetime."""
        ...

    @abstractmethod
    async def sleep(self, seconds: float, cancel: asyncio.Event | None = None) -> bool:
        """Sleep for *seconds*.

        Returns ``False`` when *cancel* was set before the full duration
        elapsed, ``True`` otherwise.
        """
        ...


# ---------------------------------------------------------------------------
# 2. SystemClock
# ---------------------------------------------------------------------------


class SystemClock(Clock):
    """Local wall clock; the cron schedule fires on local minute boundaries."""

    def now(self) -> datetime:
        return datetime.now().astimezone()

    async def sleep(self, seconds: float, cancel: asyncio.Event | None = None) -> bool:
        if seconds <= 0:
            return not (cancel is not None and cancel.is_set())
        if cancel is None:
            await asyncio.sleep(seconds)
            return True
        try:
            await asyncio.wait_for(cancel.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return True
        return False


# ---------------------------------------------------------------------------
# 3. VirtualClock
# ---------------------------------------------------------------------------


class VirtualClock(Clock):
    """Clock that advances instantly on ``sleep``.

    Parameters
    ----------
    start:
        Initial (timezone-aware) time.
    """

    def __init__(self, start: datetime) -> None:
        if start.tzinfo is None:
            raise ValueError("VirtualClock requires a timezone-aware start time")
        self._now = start
        self._listeners: list[AdvanceListener] = []
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self._now

    def add_listener(self, listener: AdvanceListener) -> None:
        """Register *listener(old, new)*, called after every advance."""
        self._listeners.append(listener)

    def advance(self, seconds: float) -> None:
        old = self._now
        self._now = old + timedelta(seconds=seconds)
        for listener in self._listeners:
            listener(old, self._now)

    async def sleep(self, seconds: float, cancel: asyncio.Event | None = None) -> bool:
        if cancel is not None and cancel.is_set():
            return False
        self.sleeps.append(seconds)
        if seconds > 0:
            self.advance(seconds)
        # Yield so that other tasks (signal handlers in tests) get a turn
        await asyncio.sleep(0)
        return True


# ---------------------------------------------------------------------------
# 4. Timer
# ---------------------------------------------------------------------------


class Timer:
    """Deadline-bounded, cancellable waits on top of a :class:`Clock`.

    Parameters
    ----------
    clock:
        Time source.
    deadline_at:
        Absolute time after which every wait fails with
        :class:`~cadence.errors.DeadlineExceeded`.
    """

    def __init__(self, clock: Clock, deadline_at: datetime) -> None:
        self.clock = clock
        self.deadline_at = deadline_at
        self._cancel = asyncio.Event()

    def now(self) -> datetime:
        return self.clock.now()

    def remaining(self) -> float:
        """Seconds left before the deadline (never negative)."""
        return max(0.0, (self.deadline_at - self.clock.now()).total_seconds())

    def check(self, activity: str) -> None:
        """Raise if the deadline passed or the run was cancelled."""
        if self._cancel.is_set():
            raise RunCancelled(activity)
        if self.clock.now() >= self.deadline_at:
            raise DeadlineExceeded(activity, self.deadline_at)

    def cancel(self) -> None:
        """Abort the current and every subsequent wait."""
        log.warning("run_cancel_requested")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    async def wait(self, seconds: float, activity: str) -> None:
        """Sleep *seconds* unless that would cross the deadline.

        A wait that would end after the deadline sleeps until the deadline
        and then raises :class:`DeadlineExceeded`.
        """
        self.check(activity)
        remaining = self.remaining()
        if seconds > remaining:
            log.debug("wait_truncated_by_deadline", activity=activity, seconds=seconds)
            if not await self.clock.sleep(remaining, self._cancel):
                raise RunCancelled(activity)
            raise DeadlineExceeded(activity, self.deadline_at)

        log.debug("waiting", activity=activity, seconds=seconds)
        if not await self.clock.sleep(seconds, self._cancel):
            raise RunCancelled(activity)
