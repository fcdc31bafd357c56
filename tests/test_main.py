"""Tests for the command-line entry point."""

from __future__ import annotations

import json
import logging

import pytest
import structlog

from cadence.main import build_settings, main, parse_args
from cadence.observability import configure_logging


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    """Run from an empty directory so no ``.env`` file is picked up."""
    monkeypatch.chdir(tmp_path)
    for var in ("CADENCE_PERIOD_MINUTES", "CADENCE_NAMESPACES", "CADENCE_VERIFY_TIMES"):
        monkeypatch.delenv(var, raising=False)
    yield
    logging.getLogger().handlers.clear()
    structlog.reset_defaults()


class TestParseArgs:
    def test_defaults(self):
        args = parse_args([])
        assert args.period is None
        assert args.namespaces is None
        assert args.simulate is False
        assert args.lenient_alignment is False

    def test_repeatable_namespace(self):
        args = parse_args(["--namespace", "a", "--namespace", "b"])
        assert args.namespaces == ["a", "b"]

    def test_restore_check_choices(self):
        with pytest.raises(SystemExit):
            parse_args(["--restore-check", "deep"])


class TestBuildSettings:
    def test_cli_overrides(self):
        args = parse_args([
            "--period", "5",
            "--verify-times", "2",
            "--namespace", "x",
            "--restore-check", "content",
            "--lenient-alignment",
        ])
        settings = build_settings(args)
        assert settings.period_minutes == 5
        assert settings.verify_times == 2
        assert settings.namespaces == ["x"]
        assert settings.restore_check == "content"
        assert settings.strict_alignment is False

    def test_env_used_when_flag_absent(self, monkeypatch):
        monkeypatch.setenv("CADENCE_PERIOD_MINUTES", "4")
        assert build_settings(parse_args([])).period_minutes == 4

    def test_flag_beats_env(self, monkeypatch):
        monkeypatch.setenv("CADENCE_PERIOD_MINUTES", "4")
        assert build_settings(parse_args(["--period", "6"])).period_minutes == 6


class TestMain:
    def test_simulated_run_passes(self, tmp_path, capsys):
        report_file = tmp_path / "out" / "report.json"
        with pytest.raises(SystemExit) as exc_info:
            main(["--simulate", "--seed", "1", "--report-file", str(report_file)])
        assert exc_info.value.code == 0
        assert "PASSED" in capsys.readouterr().out

        data = json.loads(report_file.read_text())
        assert len(data["phases"]) == 7
        assert all(p["ok"] for p in data["phases"])

    def test_simulated_short_period(self):
        with pytest.raises(SystemExit) as exc_info:
            main(["--simulate", "--period", "2", "--verify-times", "1"])
        # Simulated launch at minute 1 reaches minute 2 within one period
        assert exc_info.value.code == 0

    def test_invalid_period_exits_2(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--period", "7"])
        assert exc_info.value.code == 2
        assert "divisor" in capsys.readouterr().err


class TestLogging:
    @pytest.mark.parametrize("log_format,renderer", [
        ("json", structlog.processors.JSONRenderer),
        ("console", structlog.dev.ConsoleRenderer),
    ])
    def test_renderer_selected(self, log_format, renderer):
        configure_logging(log_format)
        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        formatter = handlers[0].formatter
        assert isinstance(formatter, structlog.stdlib.ProcessorFormatter)
        assert isinstance(formatter.processors[-1], renderer)
