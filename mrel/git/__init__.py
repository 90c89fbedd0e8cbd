"""Git operations module.

Usage:
    from mrel.git import Repository

    repo = Repository(Path("/path/to/monorepo"))
    if repo.current_branch() != "main":
        ...
"""

from mrel.git.repository import GitError, Repository

__all__ = [
    "GitError",
    "Repository",
]
