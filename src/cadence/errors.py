"""Failure taxonomy for a verification run.

Three kinds of failure end a run, and all of them are fatal:

1. ``CommandError``      — an external CLI call exited non-zero.
2. ``VerificationError`` — an observed value violated an expected condition.
3. ``DeadlineExceeded``  — the overall run deadline passed while waiting.

Every error carries a ``context`` dict with the observed value and the
expected condition so that the report can show it verbatim.
"""

from __future__ import annotations

from typing import Any


class CadenceError(Exception):
    """Base class for every failure that terminates a run."""

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context = context
        super().__init__(self._render())

    def _render(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
        return f"{self.message} ({details})"


# ---------------------------------------------------------------------------
# Command failures
# ---------------------------------------------------------------------------


class CommandError(CadenceError):
    """Raised when an external command exits with a non-zero status."""

    def __init__(self, argv: list[str], returncode: int, stderr: str) -> None:
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(
            f"Command failed with exit code {returncode}",
            command=" ".join(argv),
            stderr=stderr.strip(),
        )


# ---------------------------------------------------------------------------
# Assertion failures
# ---------------------------------------------------------------------------


class VerificationError(CadenceError):
    """An observed value did not meet the expected condition."""

    def __init__(
        self,
        check: str,
        message: str,
        *,
        expected: Any = None,
        observed: Any = None,
        **context: Any,
    ) -> None:
        self.check = check
        self.expected = expected
        self.observed = observed
        super().__init__(
            f"{check}: {message}", expected=expected, observed=observed, **context
        )


class LedgerParseError(VerificationError):
    """A ledger line or its timestamp did not match the fixed format."""

    def __init__(self, line: str, reason: str) -> None:
        self.line = line
        super().__init__(
            "ledger_parse",
            reason,
            expected="<identifier>,YYYY-MM-DD hh:mm:ss ±hhmm ZZZ",
            observed=line,
        )


class AlignmentError(VerificationError):
    """The schedule could not be activated on a period boundary."""


class CadenceMismatch(VerificationError):
    """The ledger did not grow by exactly one entry per period."""


class RestoreVerificationError(VerificationError):
    """The restore did not complete or did not bring resources back."""


# ---------------------------------------------------------------------------
# Timeouts and cancellation
# ---------------------------------------------------------------------------


class DeadlineExceeded(CadenceError):
    """The overall run deadline passed before an operation finished."""

    def __init__(
        self, activity: str, deadline: Any, message: str = "Run deadline exceeded"
    ) -> None:
        self.activity = activity
        super().__init__(message, activity=activity, deadline=str(deadline))


class RunCancelled(CadenceError):
    """The run was cancelled (signal) while waiting."""

    def __init__(self, activity: str) -> None:
        self.activity = activity
        super().__init__("Run cancelled", activity=activity)
