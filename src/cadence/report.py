"""Run report rendering (rich) and JSON export."""

from __future__ import annotations

import os

import rich.box
from rich.console import Console
from rich.table import Table

from cadence.models import RunReport

console = Console()

_STATUS_STYLES: dict[bool, str] = {
    True: "[green]PASS[/]",
    False: "[red]FAIL[/]",
}


def _format_detail(detail: dict) -> str:
    return ", ".join(f"{k}={v}" for k, v in detail.items())


def render_phases_table(report: RunReport) -> Table:
    """Build a rich.Table with one row per executed phase."""
    title = "Schedule cadence verification"
    if report.run is not None:
        title += f" [dim]({report.run.schedule_name})[/]"
    table = Table(title=title, box=rich.box.SIMPLE_HEAVY, show_edge=False)
    table.add_column("Phase", style="bold")
    table.add_column("Status", justify="center")
    table.add_column("Duration", justify="right")
    table.add_column("Detail", overflow="fold")

    for result in report.phases:
        seconds = (result.finished_at - result.started_at).total_seconds()
        detail = result.error if result.error else _format_detail(result.detail)
        table.add_row(
            result.phase.value,
            _STATUS_STYLES[result.ok],
            f"{seconds:,.0f}s",
            detail,
        )
    return table


def render_checkpoints_table(report: RunReport) -> Table:
    """Build a rich.Table of ledger-length observations."""
    table = Table(title="Ledger checkpoints", box=rich.box.SIMPLE, show_edge=False)
    table.add_column("Checkpoint")
    table.add_column("Observed at")
    table.add_column("Expected", justify="right")
    table.add_column("Observed", justify="right")
    for cp in report.checkpoints:
        observed = str(cp.observed) if cp.ok else f"[red]{cp.observed}[/]"
        table.add_row(
            cp.label,
            cp.observed_at.strftime("%H:%M:%S"),
            str(cp.expected),
            observed,
        )
    return table


def print_report(report: RunReport, out: Console | None = None) -> None:
    out = out or console
    out.print(render_phases_table(report))
    if report.checkpoints:
        out.print(render_checkpoints_table(report))
    if report.selected_snapshot is not None:
        out.print(f"Restored from [bold]{report.selected_snapshot.identifier}[/]")
    verdict = "[bold green]PASSED[/]" if report.passed else "[bold red]FAILED[/]"
    out.print(f"Result: {verdict}")


def write_report(report: RunReport, path: str) -> None:
    """Write the report as JSON to *path*."""
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w") as f:
        f.write(report.model_dump_json(indent=2))
