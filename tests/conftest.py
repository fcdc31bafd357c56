"""Shared pytest fixtures for the cadence test suite."""

from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

import pytest

from cadence.clock import Timer, VirtualClock
from cadence.config import CadenceSettings
from cadence.orchestrator import CadenceRunner, new_test_run
from cadence.simulation import SimulatedCluster

# A launch time a little after a minute boundary (minute 1 of the hour)
START = datetime(2026, 10, 17, 10, 1, 10, tzinfo=timezone.utc)


def make_settings(**overrides) -> CadenceSettings:
    """Settings isolated from any ``.env`` file in the working directory."""
    return CadenceSettings(_env_file=None, **overrides)


@pytest.fixture()
def settings() -> CadenceSettings:
    return make_settings()


@pytest.fixture()
def clock() -> VirtualClock:
    return VirtualClock(START)


@pytest.fixture()
def timer(clock: VirtualClock, settings: CadenceSettings) -> Timer:
    return Timer(clock, clock.now() + timedelta(minutes=settings.deadline_minutes))


@pytest.fixture()
def cluster(clock: VirtualClock) -> SimulatedCluster:
    return SimulatedCluster(clock)


@pytest.fixture()
def run_ctx(settings: CadenceSettings, timer: Timer):
    return new_test_run(settings, timer, run_id="abc123")


@pytest.fixture()
def make_runner(settings: CadenceSettings, timer: Timer, cluster: SimulatedCluster):
    """Factory for a runner wired to the simulated cluster.

    Keyword overrides replace the default settings, timer or cluster.
    """

    def _make(**kwargs) -> CadenceRunner:
        return CadenceRunner(
            kwargs.pop("settings", settings),
            kwargs.pop("timer", timer),
            kwargs.pop("snapshots", cluster),
            kwargs.pop("resources", cluster),
            rng=kwargs.pop("rng", random.Random(42)),
            run_id=kwargs.pop("run_id", "abc123"),
        )

    return _make
