from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from mrel.git.repository import GitError
from mrel.platform.http import NetworkError
from mrel.platform.process import CommandError, RetryExhausted

ReleaseErrorKind = Literal[
    "command_failed",
    "network_failed",
    "retry_exhausted",
    "git_failed",
    "invalid_manifest",
    "invalid_input",
    "not_runnable",
    "io_failed",
    "publish_failed",
]


@dataclass(frozen=True, slots=True)
class ReleaseError:
    """Canonical release error payload.

    Every task failure is normalized to this shape so the pipeline executor
    and the CLI can report it without knowing which collaborator failed.
    """

    kind: ReleaseErrorKind
    message: str
    hint: str | None = None

    def pretty(self) -> str:
        if self.hint:
            return f"{self.message} (hint: {self.hint})"
        return self.message

    @classmethod
    def from_command(cls, error: CommandError, message: str | None = None) -> ReleaseError:
        return cls(
            kind="command_failed",
            message=message or f"`{error.display}` failed (exit {error.exit_code})",
            hint=error.stderr or error.stdout or None,
        )

    @classmethod
    def from_retry(cls, error: RetryExhausted, message: str | None = None) -> ReleaseError:
        last = error.last
        return cls(
            kind="retry_exhausted",
            message=message
            or f"`{last.display}` failed {error.attempts} times (last exit {last.exit_code})",
            hint=last.stderr or last.stdout or None,
        )

    @classmethod
    def from_network(cls, error: NetworkError, message: str | None = None) -> ReleaseError:
        return cls(kind="network_failed", message=message or str(error), hint=error.message)

    @classmethod
    def from_git(cls, error: GitError) -> ReleaseError:
        return cls(kind="git_failed", message=f"git {error.command} failed", hint=error.message)
