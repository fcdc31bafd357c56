"""Run configuration loaded from environment variables.

Every value can be overridden with a ``CADENCE_*`` environment variable or a
``.env`` file in the working directory.  The settings object is frozen and is
handed explicitly to each component; nothing reads configuration from module
globals.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode

# Minute granularity of the cron expression: a period must divide the hour.
MINUTES_PER_HOUR = 60
MIN_PERIOD_MINUTES = 2


class CadenceSettings(BaseSettings):
    """All tunables of a verification run, overridable via CADENCE_* env vars."""

    # --- External CLIs ---
    velero_cli: str = "velero"
    kubectl_cli: str = "kubectl"
    velero_namespace: str = "velero"
    # Storage location the scheduled backups are written to
    ledger_scope: str = "default"
    command_timeout_seconds: float = 600.0

    # --- Managed workload ---
    namespaces: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["ns1"])
    resource_name: str = "schedule-test-ns"

    # --- Cadence ---
    period_minutes: int = 3
    verify_times: int = 5
    deadline_minutes: float = 60.0

    # --- Polling grain (seconds) ---
    align_poll_seconds: float = 30.0
    window_poll_seconds: float = 60.0
    settle_seconds: float = 60.0
    resource_poll_seconds: float = 5.0
    resource_poll_attempts: int = 60

    # --- Behaviour switches ---
    strict_alignment: bool = True
    restore_check: Literal["exists", "content"] = "exists"

    # --- Output ---
    debug_dir: str = "debug"
    log_format: Literal["json", "console"] = "console"
    report_file: str | None = None

    model_config = {
        "env_prefix": "CADENCE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "frozen": True,
    }

    @field_validator("namespaces", mode="before")
    @classmethod
    def _split_namespaces(cls, value):
        if isinstance(value, str):
            value = [part.strip() for part in value.split(",")]
        return value

    @field_validator("namespaces")
    @classmethod
    def _check_namespaces(cls, value: list[str]) -> list[str]:
        names = [n for n in value if n]
        if not names:
            raise ValueError("at least one target namespace is required")
        if len(set(names)) != len(names):
            raise ValueError(f"target namespaces must be unique: {names}")
        return names

    @field_validator("period_minutes")
    @classmethod
    def _check_period(cls, value: int) -> int:
        if value < 1 or MINUTES_PER_HOUR % value != 0:
            raise ValueError(
                f"period must be a positive divisor of {MINUTES_PER_HOUR} minutes, got {value}"
            )
        # The settle minute spans a whole 1-minute period, so the ledger holds
        # i + 3 entries after the (i+1)-th sleep instead of i + 2.
        if value < MIN_PERIOD_MINUTES:
            raise ValueError(
                f"period must be at least {MIN_PERIOD_MINUTES} minutes, got {value}: "
                "with a 1-minute period the settle minute adds a snapshot and the "
                "cadence count can never be i+2"
            )
        return value

    @field_validator("verify_times", "resource_poll_attempts")
    @classmethod
    def _check_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError(f"must be >= 1, got {value}")
        return value

    @field_validator(
        "deadline_minutes",
        "align_poll_seconds",
        "window_poll_seconds",
        "settle_seconds",
        "resource_poll_seconds",
        "command_timeout_seconds",
    )
    @classmethod
    def _check_duration(cls, value: float) -> float:
        if value <= 0:
            raise ValueError(f"durations must be positive, got {value}")
        return value
