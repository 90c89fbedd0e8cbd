"""Git repository abstraction.

This module provides the Repository class for the git operations a release
needs: history listing, file-at-ref reads, tags, staging/commits, push and
reset. All operations return Result types and run through the command runner.

Usage:
    repo = Repository(Path("/path/to/monorepo"))

    match repo.last_tag(match="hint-v*"):
        case Ok(tag):
            print(f"Last release: {tag}")
        case Err(e):
            print(f"Error: {e.message}")
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from mrel.core.result import Err, Ok, Result
from mrel.platform.process import CommandError, OnFailedAttempt, run_with_retry
from mrel.platform.process import run as run_process

_GIT_TIMEOUT_SECONDS = 30.0
_GIT_NETWORK_TIMEOUT_SECONDS = 3 * 60.0
_NETWORK_COMMANDS = frozenset({"fetch", "pull", "push", "clone"})

__all__ = [
    "GitError",
    "Repository",
]


@dataclass(frozen=True, slots=True)
class GitError:
    """Error from a git operation.

    Attributes:
        command: The git command that failed
        message: Error message
        returncode: Process return code
    """

    command: str
    message: str
    returncode: int = 1

    def __str__(self) -> str:
        return f"git {self.command}: {self.message}"


def _git_error(args: Sequence[str], error: CommandError, fallback: str) -> GitError:
    return GitError(
        command=" ".join(args[:2]),
        message=error.stderr or error.stdout or fallback,
        returncode=error.exit_code,
    )


class Repository:
    """Git repository abstraction.

    Attributes:
        path: Path to the repository root
        push_retries: Extra attempts for network-bound commands
    """

    def __init__(
        self,
        path: Path,
        *,
        push_retries: int = 2,
        on_failed_attempt: OnFailedAttempt | None = None,
    ) -> None:
        self.path = path
        self.push_retries = push_retries
        self._on_failed_attempt = on_failed_attempt

    def relative(self, path: Path) -> str:
        """``path`` as a repo-relative POSIX path, for pathspecs and ``ref:path`` reads."""
        try:
            return path.resolve().relative_to(self.path.resolve()).as_posix()
        except ValueError:
            return str(path)

    # -- queries --------------------------------------------------------------

    def current_branch(self) -> str | None:
        """Get current branch name; None on detached HEAD or error."""
        result = self._run(["symbolic-ref", "--short", "HEAD"])
        if isinstance(result, Err):
            return None
        return result.value or None

    def has_uncommitted_changes(self) -> Result[bool, GitError]:
        """True when the index or working tree differ from HEAD (untracked included)."""
        result = self._run(["status", "--porcelain"])
        if isinstance(result, Err):
            return result
        return Ok(result.value != "")

    def config_get(self, key: str) -> str | None:
        """Value of a git config key; None when unset (git exits 1)."""
        result = self._run(["config", "--get", key])
        if isinstance(result, Err):
            return None
        return result.value or None

    def last_tag(self, *, match: str) -> Result[str | None, GitError]:
        """Most recent tag reachable from HEAD matching a glob, None if there is none."""
        result = self._run(["describe", "--tags", "--abbrev=0", "--match", match])
        if isinstance(result, Err):
            message = result.error.message
            if "No names found" in message or "cannot describe" in message:
                return Ok(None)
            return result
        return Ok(result.value or None)

    def show_file(self, ref: str, path: str) -> Result[str, GitError]:
        """Content of ``path`` (relative to the repo root) at ``ref``."""
        return self._run(["show", f"{ref}:{path}"])

    def commits_between(
        self, since: str | None, until: str, path: str
    ) -> Result[list[str], GitError]:
        """SHAs touching ``path`` in ``since..until``, oldest first.

        With no ``since`` the whole history up to ``until`` is listed.
        """
        rev_range = f"{since}..{until}" if since else until
        result = self._run(["rev-list", "--reverse", rev_range, "--", path])
        if isinstance(result, Err):
            return result
        return Ok([line for line in result.value.splitlines() if line.strip()])

    def commit_message(self, sha: str) -> Result[str, GitError]:
        """Full message (subject and body) of a commit."""
        return self._run(["show", "--no-patch", "--format=%B", sha])

    def list_tags(self, pattern: str) -> Result[list[str], GitError]:
        result = self._run(["tag", "--list", pattern])
        if isinstance(result, Err):
            return result
        return Ok([line.strip() for line in result.value.splitlines() if line.strip()])

    def tag_exists(self, tag: str) -> Result[bool, GitError]:
        result = self.list_tags(tag)
        if isinstance(result, Err):
            return result
        return Ok(tag in result.value)

    def diff_cached(self, path: str | None = None) -> Result[str, GitError]:
        """Staged diff, optionally restricted to one path."""
        args = ["diff", "--cached"]
        if path is not None:
            args.extend(["--", path])
        return self._run(args)

    def has_staged_changes(self) -> Result[bool, GitError]:
        result = self._run(["diff", "--cached", "--name-only"])
        if isinstance(result, Err):
            return result
        return Ok(result.value != "")

    # -- mutations ------------------------------------------------------------

    def fetch_tags(self) -> Result[None, GitError]:
        result = self._run(["fetch", "--tags"], retries=self.push_retries)
        return result.map(lambda _: None)

    def add(self, paths: Sequence[str]) -> Result[None, GitError]:
        if not paths:
            return Ok(None)
        return self._run(["add", "--", *paths]).map(lambda _: None)

    def unstage_all(self) -> Result[None, GitError]:
        return self._run(["reset", "--quiet", "HEAD"]).map(lambda _: None)

    def commit(self, message: str) -> Result[None, GitError]:
        return self._run(["commit", "--quiet", "-m", message]).map(lambda _: None)

    def commit_paths(self, message: str, paths: Sequence[str]) -> Result[bool, GitError]:
        """Stage ``paths`` and commit them if that staged anything.

        Ok(False) means there was nothing to commit.
        """
        added = self.add(paths)
        if isinstance(added, Err):
            return added
        staged = self.has_staged_changes()
        if isinstance(staged, Err):
            return staged
        if not staged.value:
            return Ok(False)
        committed = self.commit(message)
        if isinstance(committed, Err):
            return committed
        return Ok(True)

    def create_tag(self, tag: str, message: str) -> Result[None, GitError]:
        return self._run(["tag", "-a", tag, "-m", message]).map(lambda _: None)

    def delete_tag(self, tag: str) -> Result[bool, GitError]:
        """Delete a local tag if it exists. Ok(True) when something was deleted."""
        exists = self.tag_exists(tag)
        if isinstance(exists, Err):
            return exists
        if not exists.value:
            return Ok(False)
        result = self._run(["tag", "-d", tag])
        if isinstance(result, Err):
            return result
        return Ok(True)

    def push(self, remote: str, branch: str, tag: str | None = None) -> Result[None, GitError]:
        args = ["push", remote, branch]
        if tag:
            args.append(tag)
        return self._run(args, retries=self.push_retries).map(lambda _: None)

    def reset_hard(self) -> Result[None, GitError]:
        """Discard staged and unstaged changes to tracked files."""
        return self._run(["reset", "--hard", "--quiet", "HEAD"]).map(lambda _: None)

    # -- internals ------------------------------------------------------------

    def _run(self, args: list[str], *, retries: int = 0) -> Result[str, GitError]:
        """Run a git command in this repository and return its stripped stdout."""
        command = args[0] if args else ""
        timeout = (
            _GIT_NETWORK_TIMEOUT_SECONDS if command in _NETWORK_COMMANDS else _GIT_TIMEOUT_SECONDS
        )
        cmd = ["git", "-C", str(self.path), *args]

        if retries > 0:
            retried = run_with_retry(
                cmd,
                cwd=self.path,
                max_retries=retries,
                on_failed_attempt=self._on_failed_attempt,
                timeout=timeout,
            )
            if isinstance(retried, Err):
                return Err(_git_error(args, retried.error.last, f"{command} failed"))
            return Ok(retried.value.stdout)

        result = run_process(cmd, cwd=self.path, timeout=timeout)
        if isinstance(result, Err):
            return Err(_git_error(args, result.error, f"{command} failed"))
        return Ok(result.value.stdout)
