"""Shared fakes for release tests: a scripted command runner."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

from mrel.core.result import Err, Ok, Result
from mrel.platform.process import CommandError, CommandResult


def ok(stdout: str = "") -> Result[CommandResult, CommandError]:
    return Ok(CommandResult(exit_code=0, stdout=stdout, stderr=""))


def fail(cmd: list[str], stderr: str = "failed", exit_code: int = 1) -> Err[CommandError]:
    return Err(CommandError(command=tuple(cmd), exit_code=exit_code, stdout="", stderr=stderr))


def git_args(cmd: list[str]) -> list[str]:
    """Strip ``git -C <path>`` so rules can match on the subcommand."""
    if cmd[:2] == ["git", "-C"]:
        return cmd[3:]
    return cmd


@dataclass
class FakeRunner:
    """Stand-in for ``run_process``.

    Rules are (prefix, response) pairs checked in order against the command
    (``git -C <path>`` stripped). A response is a string (stdout of a
    success), a Result, or a callable receiving the command. Unmatched
    commands succeed with empty output.
    """

    rules: list[tuple[tuple[str, ...], object]] = field(default_factory=list)
    calls: list[list[str]] = field(default_factory=list)

    def on(self, *prefix: str, then: object = "") -> FakeRunner:
        self.rules.append((prefix, then))
        return self

    def __call__(
        self,
        cmd: list[str],
        cwd: Path,
        env: dict[str, str] | None = None,
        *,
        timeout: float | None = None,
    ) -> Result[CommandResult, CommandError]:
        del cwd, env, timeout
        self.calls.append(list(cmd))
        args = git_args(cmd)
        for prefix, response in self.rules:
            if tuple(args[: len(prefix)]) != prefix:
                continue
            if callable(response):
                response = response(args)
            if isinstance(response, (Ok, Err)):
                return response
            return ok(str(response or ""))
        return ok()

    def commands(self, *prefix: str) -> list[list[str]]:
        """Recorded commands (git prefix stripped) starting with ``prefix``."""
        return [
            git_args(c) for c in self.calls if tuple(git_args(c)[: len(prefix)]) == prefix
        ]


def make_package(root: Path, dir_name: str, manifest: dict[str, object]) -> Path:
    """Create ``packages/<dir_name>/package.json`` under ``root``."""
    path = root / "packages" / dir_name
    path.mkdir(parents=True, exist_ok=True)
    (path / "package.json").write_text(json.dumps(manifest, indent=2) + "\n", encoding="utf-8")
    return path
