"""Ledger Poller: read and parse the snapshot ledger of a schedule.

Each poll issues a fresh ``list_snapshots`` call; nothing is cached between
polls, since a stale view would corrupt the cadence arithmetic.  Every line
must parse: a malformed timestamp is fatal, never skipped.
"""

from __future__ import annotations

import re
from datetime import datetime

import structlog

from cadence.clock import Clock
from cadence.errors import LedgerParseError
from cadence.models import Ledger, SnapshotRecord
from cadence.platform import SnapshotPlatform

log = structlog.get_logger()

# YYYY-MM-DD hh:mm:ss ±hhmm ZZZ  (e.g. "2026-10-17 10:06:00 +0000 UTC")
LEDGER_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S %z"
_TIMESTAMP_RE = re.compile(
    r"^(?P<stamp>\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2} [+-]\d{4}) (?P<zone>[A-Za-z0-9+\-]+)$"
)


def parse_ledger_timestamp(text: str) -> tuple[datetime, str]:
    """Parse a ledger timestamp; returns ``(aware datetime, zone abbreviation)``.

    Raises ``ValueError`` when *text* does not match the fixed format.
    """
    match = _TIMESTAMP_RE.match(text.strip())
    if match is None:
        raise ValueError(f"timestamp {text!r} does not match 'YYYY-MM-DD hh:mm:ss ±hhmm ZZZ'")
    created_at = datetime.strptime(match.group("stamp"), LEDGER_TIMESTAMP_FORMAT)
    return created_at, match.group("zone")


def parse_ledger_line(line: str) -> SnapshotRecord:
    """Parse one ``"<identifier>,<timestamp>"`` line."""
    identifier, sep, stamp = line.partition(",")
    if not sep or not identifier.strip():
        raise LedgerParseError(line, "expected '<identifier>,<timestamp>'")
    try:
        created_at, zone = parse_ledger_timestamp(stamp)
    except ValueError as exc:
        raise LedgerParseError(line, str(exc)) from exc
    return SnapshotRecord(identifier=identifier, created_at=created_at, zone=zone, raw=line)


class LedgerPoller:
    """Fetches the current ledger of a schedule from the snapshot platform.

    Parameters
    ----------
    platform:
        Snapshot store to query.
    scope:
        Storage scope the schedule writes to.
    clock:
        Used to stamp each observation.
    """

    def __init__(self, platform: SnapshotPlatform, scope: str, clock: Clock) -> None:
        self.platform = platform
        self.scope = scope
        self.clock = clock

    async def poll(self, schedule_name: str) -> Ledger:
        lines = await self.platform.list_snapshots(self.scope, schedule_name)
        records = tuple(parse_ledger_line(line) for line in lines if line.strip())
        ledger = Ledger(
            schedule_name=schedule_name,
            records=records,
            observed_at=self.clock.now(),
        )
        for index, record in enumerate(records):
            log.debug(
                "ledger_entry",
                index=index,
                snapshot=record.identifier,
                created_at=record.created_at.isoformat(),
            )
        log.info("ledger_polled", schedule=schedule_name, count=len(ledger))
        return ledger
