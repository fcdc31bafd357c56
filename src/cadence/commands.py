"""Async execution of external CLI commands.

Every command runs synchronously from the run's point of view: the caller
awaits completion.  A non-zero exit status raises
:class:`~cadence.errors.CommandError`; a command still running when its
timeout (bounded by the run deadline) expires is killed and raises
:class:`~cadence.errors.DeadlineExceeded`.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import structlog

from cadence.errors import CommandError, DeadlineExceeded

log = structlog.get_logger()


@dataclass(frozen=True)
class CommandResult:
    """Captured output of a finished command."""

    argv: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def lines(self) -> list[str]:
        return [line for line in self.stdout.splitlines() if line.strip()]


async def run_command(
    argv: list[str],
    *,
    timeout: float,
    check: bool = True,
) -> CommandResult:
    """Run *argv* and return its output.

    Parameters
    ----------
    argv:
        Program and arguments; no shell is involved.
    timeout:
        Seconds to wait before killing the process.
    check:
        When ``True`` (default), a non-zero exit raises ``CommandError``.
    """
    log.debug("command_start", command=" ".join(argv))
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise CommandError(argv, 127, str(exc)) from exc
    except OSError as exc:
        # Present but not executable (126, as a shell reports it)
        raise CommandError(argv, 126, str(exc)) from exc

    try:
        out, err = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise DeadlineExceeded(
            " ".join(argv), f"{timeout:.0f}s", message="Command timed out"
        ) from None

    result = CommandResult(
        argv=tuple(argv),
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=out.decode("utf-8", errors="replace"),
        stderr=err.decode("utf-8", errors="replace"),
    )
    log.debug("command_done", command=argv[0], returncode=result.returncode)
    if check and result.returncode != 0:
        raise CommandError(argv, result.returncode, result.stderr or result.stdout)
    return result
