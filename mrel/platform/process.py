"""Subprocess execution with Result-based error handling.

Every version-control and package-manager invocation goes through ``run``
or ``run_with_retry``. A non-zero exit is an ``Err(CommandError)``; retries
are uniform and selected by the caller (there is no transient/permanent
distinction).

Usage:
    result = run(["npm", "run", "build-release"], cwd=package_path)
    match result:
        case Ok(done):
            print(done.stdout)
        case Err(error):
            print(f"Failed: {error.stderr}")
"""

from __future__ import annotations

import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from time import sleep

from mrel.core.result import Err, Ok, Result

__all__ = [
    "CommandError",
    "CommandResult",
    "FailedAttempt",
    "RetryExhausted",
    "run",
    "run_with_retry",
]

RETRY_DELAY_SECONDS = 1.0


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Output of a successful command. Streams are stripped."""

    exit_code: int
    stdout: str
    stderr: str


@dataclass(frozen=True, slots=True)
class CommandError:
    """Error from a failed subprocess execution.

    Attributes:
        command: The command that was executed.
        exit_code: The exit code of the process (-1 if it never ran or timed out).
        stdout: Standard output (may be empty).
        stderr: Standard error (contains error details).
    """

    command: tuple[str, ...]
    exit_code: int
    stdout: str
    stderr: str

    @property
    def display(self) -> str:
        return " ".join(self.command)

    def __str__(self) -> str:
        cmd_str = " ".join(self.command[:3])
        if len(self.command) > 3:
            cmd_str += " ..."
        return f"{cmd_str} failed (exit {self.exit_code})"


@dataclass(frozen=True, slots=True)
class RetryExhausted:
    """Last failure of a command after every allowed attempt failed."""

    command: tuple[str, ...]
    attempts: int
    last: CommandError

    @property
    def stderr(self) -> str:
        return self.last.stderr

    def __str__(self) -> str:
        return f"{self.last} after {self.attempts} attempts"


@dataclass(frozen=True, slots=True)
class FailedAttempt:
    """Notification sent to the observability sink after each failed attempt."""

    command: tuple[str, ...]
    attempt: int
    retries_left: int
    error: CommandError


OnFailedAttempt = Callable[[FailedAttempt], None]


def run(
    cmd: list[str],
    cwd: Path,
    env: dict[str, str] | None = None,
    *,
    timeout: float | None = None,
) -> Result[CommandResult, CommandError]:
    """Execute a command and return its output or a CommandError.

    Args:
        cmd: Command and arguments to execute.
        cwd: Working directory for the command.
        env: Environment variables (uses current env if None).
        timeout: Maximum seconds to wait (None for no limit).
    """
    try:
        proc = subprocess.run(
            cmd,
            cwd=str(cwd),
            env=env,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired:
        return Err(
            CommandError(
                command=tuple(cmd),
                exit_code=-1,
                stdout="",
                stderr=f"Command timed out after {timeout}s",
            )
        )
    except OSError as e:
        return Err(CommandError(command=tuple(cmd), exit_code=-1, stdout="", stderr=str(e)))

    stdout = (proc.stdout or "").strip()
    stderr = (proc.stderr or "").strip()
    if proc.returncode != 0:
        return Err(
            CommandError(
                command=tuple(cmd),
                exit_code=proc.returncode,
                stdout=stdout,
                stderr=stderr,
            )
        )

    return Ok(CommandResult(exit_code=0, stdout=stdout, stderr=stderr))


def run_with_retry(
    cmd: list[str],
    cwd: Path,
    *,
    max_retries: int,
    on_failed_attempt: OnFailedAttempt | None = None,
    env: dict[str, str] | None = None,
    timeout: float | None = None,
    delay_seconds: float = RETRY_DELAY_SECONDS,
) -> Result[CommandResult, RetryExhausted]:
    """Run a command, retrying it up to ``max_retries`` more times on failure.

    Each failed attempt is reported to ``on_failed_attempt`` before the next
    one starts. When every attempt fails, the last CommandError is surfaced
    inside RetryExhausted.
    """
    attempts = 1 + max(0, max_retries)
    last: CommandError | None = None

    for attempt in range(1, attempts + 1):
        result = run(cmd, cwd=cwd, env=env, timeout=timeout)
        if isinstance(result, Ok):
            return result

        last = result.error
        retries_left = attempts - attempt
        if on_failed_attempt is not None:
            on_failed_attempt(
                FailedAttempt(
                    command=tuple(cmd),
                    attempt=attempt,
                    retries_left=retries_left,
                    error=last,
                )
            )
        if retries_left > 0 and delay_seconds > 0:
            sleep(delay_seconds * attempt)

    assert last is not None
    return Err(RetryExhausted(command=tuple(cmd), attempts=attempts, last=last))
