from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Literal

from mrel.core.structured import StrDict, get_str
from mrel.services.release.errors import ReleaseError


SemverIncrement = Literal["major", "minor", "patch"]


class DependencyKind(Enum):
    """Manifest sections that can reference another workspace package.

    Only strict runtime dependencies are breaking edges: a major release of
    the dependency forces a breaking release of the dependent.
    """

    DEPENDENCIES = "dependencies"
    DEV = "devDependencies"
    OPTIONAL = "optionalDependencies"
    PEER = "peerDependencies"

    @property
    def manifest_key(self) -> str:
        return self.value

    @property
    def is_breaking(self) -> bool:
        return self is DependencyKind.DEPENDENCIES


@dataclass(slots=True)
class Package:
    """A workspace package as read from disk at pipeline start.

    ``manifest`` is the parsed ``package.json`` and is mutated in place when
    version or dependency fields change.
    """

    name: str
    path: Path
    manifest: StrDict
    is_unpublished: bool
    last_tag: str | None = None
    current_version: str | None = None
    new_version: str | None = None

    @property
    def dir_name(self) -> str:
        return self.path.name

    @property
    def manifest_path(self) -> Path:
        return self.path / "package.json"

    @property
    def changelog_path(self) -> Path:
        return self.path / "CHANGELOG.md"

    @property
    def tag_prefix(self) -> str:
        return f"{self.dir_name}-v"

    @property
    def manifest_version(self) -> str | None:
        return get_str(self.manifest, "version")

    def dependency_range(self, kind: DependencyKind, dependency: str) -> str | None:
        section = self.manifest.get(kind.manifest_key)
        if not isinstance(section, dict):
            return None
        value = section.get(dependency)
        return value if isinstance(value, str) and value else None


@dataclass(frozen=True, slots=True)
class Commit:
    sha: str
    title: str
    tag: str
    associated_issue_ids: tuple[str, ...] = ()

    @property
    def short_sha(self) -> str:
        return self.sha[:10]


@dataclass(frozen=True, slots=True)
class CommitAuthor:
    name: str
    profile_url: str


@dataclass(frozen=True, slots=True)
class ChangelogSection:
    category_title: str
    lines: tuple[str, ...]

    def render(self) -> str:
        body = "".join(f"{line}\n" for line in self.lines)
        return f"## {self.category_title}\n\n{body}"


@dataclass(slots=True)
class ReleaseContext:
    """Mutable record threaded through one package's pipeline.

    Ownership: setup fills ``package``; history tasks fill ``commits``;
    release-data derivation fills ``increment``, ``release_notes`` and may set
    ``skip_remaining_tasks``; versioning sets ``package.new_version`` once;
    tagging sets ``new_tag``; publishing may set ``publish_error``; propagation
    fills ``breaking_dependents``. Never shared across packages.
    """

    package: Package
    is_prerelease: bool
    skip_remaining_tasks: bool = False
    commits: tuple[Commit, ...] = ()
    increment: SemverIncrement | None = None
    release_notes: str | None = None
    new_tag: str | None = None
    publish_error: ReleaseError | None = None
    breaking_dependents: tuple[str, ...] = field(default_factory=tuple)

    @property
    def title(self) -> str:
        return self.package.dir_name

    @property
    def package_path(self) -> Path | None:
        return self.package.path

    def set_new_version(self, version: str) -> None:
        """Record the version being released. Allowed once per context."""
        if self.package.new_version is not None:
            raise AssertionError(
                f"new version already set for {self.package.name}: {self.package.new_version}"
            )
        self.package.new_version = version


@dataclass(slots=True)
class WorkspaceContext:
    """Context for the run-level steps that follow all package pipelines."""

    is_prerelease: bool
    title: str = "workspace"
    skip_remaining_tasks: bool = False
    new_tag: str | None = None

    @property
    def package_path(self) -> Path | None:
        return None
