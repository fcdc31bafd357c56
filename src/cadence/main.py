"""CLI entry point for the schedule cadence verifier.

Usage::

    # Against the current kube context (takes ~25 minutes with defaults)
    python -m cadence --namespace ns1

    # Dry run against the in-memory simulated cluster, no real sleeps
    python -m cadence --simulate --seed 7

    # Tighter cadence, content comparison after restore, JSON report
    python -m cadence --period 2 --verify-times 3 --restore-check content \\
        --report-file reports/cadence.json

Environment variables (``CADENCE_*``) and a ``.env`` file provide the
defaults; CLI flags override them.  Exit status is 0 only when every phase
passed.
"""

from __future__ import annotations

import argparse
import asyncio
import random
import signal
import sys
from datetime import datetime, timedelta, timezone

import structlog
from dotenv import load_dotenv
from pydantic import ValidationError

from cadence.clock import Clock, SystemClock, Timer, VirtualClock
from cadence.config import CadenceSettings
from cadence.models import RunReport
from cadence.observability import configure_logging
from cadence.orchestrator import CadenceRunner
from cadence.platform import KubectlResources, ResourcePlatform, SnapshotPlatform, VeleroCli
from cadence.report import print_report, write_report
from cadence.simulation import SimulatedCluster

log = structlog.get_logger()

# Simulated runs start a little after a minute boundary, like a real launch
_SIMULATION_START = datetime(2026, 1, 1, 10, 1, 10, tzinfo=timezone.utc)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="cadence-verify",
        description="Verify that a cron-scheduled snapshot schedule fires on cadence "
        "and that its snapshots restore",
    )
    parser.add_argument("--period", type=int, default=None, help="Schedule period in minutes (must divide 60)")
    parser.add_argument("--verify-times", type=int, default=None, help="Number of cadence checks")
    parser.add_argument(
        "--namespace",
        action="append",
        dest="namespaces",
        default=None,
        help="Target namespace (repeatable)",
    )
    parser.add_argument("--deadline-minutes", type=float, default=None, help="Overall run deadline")
    parser.add_argument(
        "--restore-check",
        choices=("exists", "content"),
        default=None,
        help="Post-restore check: resource existence only, or data comparison",
    )
    parser.add_argument(
        "--lenient-alignment",
        action="store_true",
        default=False,
        help="Continue without activation if no period boundary is observed",
    )
    parser.add_argument(
        "--simulate",
        action="store_true",
        default=False,
        help="Run against an in-memory simulated cluster with a virtual clock",
    )
    parser.add_argument("--seed", type=int, default=None, help="Seed for snapshot selection")
    parser.add_argument("--report-file", default=None, help="Write the JSON report to this path")
    parser.add_argument("--log-format", choices=("json", "console"), default=None)
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> CadenceSettings:
    """Merge CLI overrides on top of env / .env settings."""
    overrides: dict = {}
    if args.period is not None:
        overrides["period_minutes"] = args.period
    if args.verify_times is not None:
        overrides["verify_times"] = args.verify_times
    if args.namespaces:
        overrides["namespaces"] = args.namespaces
    if args.deadline_minutes is not None:
        overrides["deadline_minutes"] = args.deadline_minutes
    if args.restore_check is not None:
        overrides["restore_check"] = args.restore_check
    if args.lenient_alignment:
        overrides["strict_alignment"] = False
    if args.report_file is not None:
        overrides["report_file"] = args.report_file
    if args.log_format is not None:
        overrides["log_format"] = args.log_format
    return CadenceSettings(**overrides)


def build_platforms(
    settings: CadenceSettings,
    clock: Clock,
    timer: Timer,
    simulate: bool,
) -> tuple[SnapshotPlatform, ResourcePlatform]:
    if simulate:
        assert isinstance(clock, VirtualClock)
        cluster = SimulatedCluster(clock, location=settings.ledger_scope)
        return cluster, cluster
    return VeleroCli(settings, timer), KubectlResources(settings, timer)


async def run(args: argparse.Namespace, settings: CadenceSettings) -> RunReport:
    """Wire the components together and execute one run."""
    clock: Clock = VirtualClock(_SIMULATION_START) if args.simulate else SystemClock()
    timer = Timer(clock, clock.now() + timedelta(minutes=settings.deadline_minutes))
    snapshots, resources = build_platforms(settings, clock, timer, args.simulate)

    rng = random.Random(args.seed) if args.seed is not None else random.Random()
    runner = CadenceRunner(settings, timer, snapshots, resources, rng=rng)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, timer.cancel)

    log.info(
        "cadence_verify_starting",
        mode="SIMULATED" if args.simulate else "LIVE",
        period=settings.period_minutes,
        verify_times=settings.verify_times,
        namespaces=settings.namespaces,
    )
    try:
        return await runner.run()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)


def main(argv: list[str] | None = None) -> None:
    """Synchronous entry point."""
    load_dotenv()
    args = parse_args(argv)
    try:
        settings = build_settings(args)
    except ValidationError as exc:
        print(f"Invalid configuration:\n{exc}", file=sys.stderr)
        sys.exit(2)

    configure_logging(settings.log_format)
    report = asyncio.run(run(args, settings))

    print_report(report)
    if settings.report_file:
        write_report(report, settings.report_file)
        log.info("report_written", path=settings.report_file)
    sys.exit(0 if report.passed else 1)


if __name__ == "__main__":
    main()
