"""Tests for the Ledger Poller.

Covers:
1. Timestamp parsing (fixed "YYYY-MM-DD hh:mm:ss ±hhmm ZZZ" format)
2. Line parsing and malformed input
3. Polling: fresh reads, ordering, idempotence
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from cadence.errors import LedgerParseError
from cadence.ledger import LedgerPoller, parse_ledger_line, parse_ledger_timestamp
from cadence.platform import SnapshotPlatform


# ===========================================================================
# 1. Timestamp Parsing
# ===========================================================================


class TestParseTimestamp:
    def test_utc(self):
        ts, zone = parse_ledger_timestamp("2026-10-17 10:06:00 +0000 UTC")
        assert ts == datetime(2026, 10, 17, 10, 6, 0, tzinfo=timezone.utc)
        assert zone == "UTC"

    def test_non_utc_offset_and_zone(self):
        ts, zone = parse_ledger_timestamp("2026-10-17 03:06:00 -0700 MST")
        assert ts.utcoffset() == timedelta(hours=-7)
        assert ts.astimezone(timezone.utc).hour == 10
        assert zone == "MST"

    def test_surrounding_whitespace_tolerated(self):
        ts, _ = parse_ledger_timestamp(" 2026-10-17 10:06:00 +0000 UTC ")
        assert ts.minute == 6

    @pytest.mark.parametrize(
        "text",
        [
            "2026-10-17T10:06:00+00:00",
            "2026-10-17 10:06:00 UTC",
            "2026-10-17 10:06:00 +0000",
            "17/10/2026 10:06:00 +0000 UTC",
            "2026-10-17 10:06 +0000 UTC",
            "",
        ],
    )
    def test_malformed(self, text):
        with pytest.raises(ValueError):
            parse_ledger_timestamp(text)

    def test_invalid_calendar_date(self):
        with pytest.raises(ValueError):
            parse_ledger_timestamp("2026-02-30 10:06:00 +0000 UTC")


# ===========================================================================
# 2. Line Parsing
# ===========================================================================


class TestParseLine:
    def test_valid_line(self):
        rec = parse_ledger_line("schedule-x-20261017100600,2026-10-17 10:06:00 +0000 UTC")
        assert rec.identifier == "schedule-x-20261017100600"
        assert rec.created_at.minute == 6
        assert rec.raw.startswith("schedule-x")

    def test_identifier_kept_raw(self):
        """Whitespace normalisation is left to the restore driver."""
        rec = parse_ledger_line("backup-1 ,2026-10-17 10:06:00 +0000 UTC")
        assert rec.identifier == "backup-1 "

    def test_missing_comma(self):
        with pytest.raises(LedgerParseError, match="identifier"):
            parse_ledger_line("backup-1 2026-10-17 10:06:00 +0000 UTC")

    def test_empty_identifier(self):
        with pytest.raises(LedgerParseError):
            parse_ledger_line(",2026-10-17 10:06:00 +0000 UTC")

    def test_bad_timestamp_is_parse_error(self):
        with pytest.raises(LedgerParseError) as exc_info:
            parse_ledger_line("backup-1,2026-10-17T10:06:00Z")
        assert exc_info.value.observed == "backup-1,2026-10-17T10:06:00Z"
        assert exc_info.value.check == "ledger_parse"


# ===========================================================================
# 3. Polling
# ===========================================================================


def _platform(*responses: list[str]) -> AsyncMock:
    platform = AsyncMock(spec=SnapshotPlatform)
    platform.list_snapshots.side_effect = list(responses)
    return platform


class TestLedgerPoller:
    async def test_poll_returns_records_in_order(self, clock):
        platform = _platform([
            "b-2,2026-10-17 10:09:00 +0000 UTC",
            "b-1,2026-10-17 10:06:00 +0000 UTC",
        ])
        ledger = await LedgerPoller(platform, "default", clock).poll("sched")
        assert ledger.identifiers() == ["b-2", "b-1"]
        assert len(ledger) == 2
        assert ledger.observed_at == clock.now()
        platform.list_snapshots.assert_awaited_once_with("default", "sched")

    async def test_blank_lines_ignored(self, clock):
        platform = _platform(["", "b-1,2026-10-17 10:06:00 +0000 UTC", "   "])
        ledger = await LedgerPoller(platform, "default", clock).poll("sched")
        assert len(ledger) == 1

    async def test_empty_ledger(self, clock):
        ledger = await LedgerPoller(_platform([]), "default", clock).poll("sched")
        assert len(ledger) == 0

    async def test_malformed_entry_is_fatal(self, clock):
        """One bad record fails the whole poll; it is never skipped."""
        platform = _platform([
            "b-1,2026-10-17 10:06:00 +0000 UTC",
            "b-2,not-a-time",
        ])
        with pytest.raises(LedgerParseError):
            await LedgerPoller(platform, "default", clock).poll("sched")

    async def test_each_poll_reads_fresh(self, clock):
        platform = _platform(
            [],
            ["b-1,2026-10-17 10:06:00 +0000 UTC"],
        )
        poller = LedgerPoller(platform, "default", clock)
        assert len(await poller.poll("sched")) == 0
        assert len(await poller.poll("sched")) == 1
        assert platform.list_snapshots.await_count == 2

    async def test_immediate_polls_identical(self, clock, cluster, run_ctx):
        """Two polls without a boundary in between see the same sequence."""
        await cluster.create_schedule(run_ctx.schedule_name, run_ctx.schedule_args)
        clock.advance(10 * 60)
        poller = LedgerPoller(cluster, "default", clock)
        first = await poller.poll(run_ctx.schedule_name)
        second = await poller.poll(run_ctx.schedule_name)
        assert len(first) > 0
        assert first.records == second.records
