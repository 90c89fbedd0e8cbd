"""Workspace detection and paths.

The workspace is the root of the monorepo being released: the git checkout
that contains the packages directory. It is identified by a ``release.toml``
file, or failing that by a ``.git`` entry next to a ``packages/`` directory.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .config import CONFIG_FILE_NAME, DEFAULT_PACKAGES_DIR
from .result import Err, Ok, Result

__all__ = [
    "Workspace",
    "WorkspaceError",
    "detect_workspace",
    "find_workspace_upward",
    "is_workspace_root",
]


@dataclass(frozen=True)
class WorkspaceError:
    """Error when workspace cannot be detected."""

    message: str
    searched_from: Path | None = None


@dataclass(frozen=True, slots=True)
class Workspace:
    """A detected monorepo checkout."""

    root: Path

    @property
    def config_path(self) -> Path:
        return self.root / CONFIG_FILE_NAME

    def packages_dir(self, name: str = DEFAULT_PACKAGES_DIR) -> Path:
        return self.root / name

    def __str__(self) -> str:
        return str(self.root)


def is_workspace_root(path: Path) -> bool:
    """Check if a path is a workspace root."""
    if (path / CONFIG_FILE_NAME).is_file():
        return True
    return (path / ".git").exists() and (path / DEFAULT_PACKAGES_DIR).is_dir()


def find_workspace_upward(start: Path) -> Path | None:
    """Search upward from start directory for a workspace root."""
    for parent in (start, *start.parents):
        if is_workspace_root(parent):
            return parent
    return None


def detect_workspace(
    *,
    explicit: Path | None = None,
    start_dir: Path | None = None,
    env_var: str = "MREL_WORKSPACE",
) -> Result[Workspace, WorkspaceError]:
    """Detect the workspace root directory.

    Detection order:
    1. Explicit path (``--workspace``)
    2. MREL_WORKSPACE environment variable
    3. Search upward from start_dir (or cwd)
    """
    candidate = explicit
    if candidate is None:
        env_value = os.environ.get(env_var)
        if env_value:
            candidate = Path(env_value)

    if candidate is not None:
        root = candidate.expanduser().resolve()
        if root.is_dir() and is_workspace_root(root):
            return Ok(Workspace(root=root))
        return Err(
            WorkspaceError(
                message=(
                    f"'{root}' is not a monorepo workspace (no {CONFIG_FILE_NAME} or packages/)"
                ),
                searched_from=root if root.is_dir() else None,
            )
        )

    search_start = (start_dir or Path.cwd()).resolve()
    found = find_workspace_upward(search_start)
    if found is None:
        return Err(
            WorkspaceError(
                message=f"Could not find workspace (no {CONFIG_FILE_NAME} or packages/ above cwd)",
                searched_from=search_start,
            )
        )
    return Ok(Workspace(root=found))
