from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from mrel.core.result import Err, Ok, Result
from mrel.platform.process import (
    CommandError,
    CommandResult,
    OnFailedAttempt,
    RetryExhausted,
    run_with_retry,
)
from mrel.platform.process import run as run_process
from mrel.services.release.model import SemverIncrement
from mrel.services.release.timeouts import NPM_INSTALL_TIMEOUT_SECONDS, NPM_SCRIPT_TIMEOUT_SECONDS

# npm prints this when the registry rejected the one-time password.
OTP_RETRY_MARKER = (
    "you already provided a one-time password then it is likely that you either typoed"
)


@dataclass(frozen=True, slots=True)
class PublishOtpRetry:
    """The registry rejected the one-time password; ask for a new one and publish again."""

    stderr: str


def install(package_path: Path) -> Result[CommandResult, CommandError]:
    return run_process(["npm", "install"], cwd=package_path, timeout=NPM_INSTALL_TIMEOUT_SECONDS)


def bump_version(package_path: Path, increment: SemverIncrement) -> Result[str, CommandError]:
    """``npm version <increment>`` without git side effects; returns the new version."""
    result = run_process(
        ["npm", "--quiet", "version", increment, "--no-git-tag-version"],
        cwd=package_path,
        timeout=NPM_SCRIPT_TIMEOUT_SECONDS,
    )
    if isinstance(result, Err):
        return result

    # npm prints `v1.2.3`.
    lines = result.value.stdout.splitlines()
    printed = lines[-1].strip() if lines else ""
    return Ok(printed[1:] if printed.startswith("v") else printed)


def run_script(
    package_path: Path,
    script: str,
    *,
    retries: int,
    on_failed_attempt: OnFailedAttempt | None = None,
) -> Result[CommandResult, RetryExhausted]:
    return run_with_retry(
        ["npm", "run", script],
        cwd=package_path,
        max_retries=retries,
        on_failed_attempt=on_failed_attempt,
        timeout=NPM_SCRIPT_TIMEOUT_SECONDS,
    )


def publish(
    package_path: Path,
    *,
    otp: str,
    access: str | None = None,
    dist_tag: str | None = None,
) -> Result[CommandResult, CommandError | PublishOtpRetry]:
    cmd = ["npm", "publish"]
    if access:
        cmd.extend(["--access", access])
    cmd.append(f"--otp={otp}")
    if dist_tag:
        cmd.extend(["--tag", dist_tag])

    result = run_process(cmd, cwd=package_path, timeout=NPM_SCRIPT_TIMEOUT_SECONDS)
    if isinstance(result, Err) and OTP_RETRY_MARKER in result.error.stderr:
        return Err(PublishOtpRetry(stderr=result.error.stderr))
    return result
