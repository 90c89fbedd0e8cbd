"""Propagate a released version to the workspace packages that depend on it.

Every dependency section is rewritten to a caret range on the new version.
A major (or premajor) release referenced from ``dependencies`` makes the
dependent require a breaking release of its own; those manifests are
committed with a ``Breaking:`` title so the changelog derivation classifies
the dependent correctly when its turn comes.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from mrel.core.result import Err, Ok, Result
from mrel.git.repository import Repository
from mrel.platform.files import write_json
from mrel.services.release.errors import ReleaseError
from mrel.services.release.model import DependencyKind, Package
from mrel.services.release.packages import MANIFEST_FILE, discover_packages, read_manifest
from mrel.services.release.semver import caret_range, is_breaking_change

NO_CI_MARKER = "***NO_CI***"


@dataclass(frozen=True, slots=True)
class DependentUpdate:
    package_dir: Path
    kinds: tuple[DependencyKind, ...]
    requires_breaking_release: bool


@dataclass(frozen=True, slots=True)
class PropagationReport:
    updates: tuple[DependentUpdate, ...]

    @property
    def breaking_dependents(self) -> tuple[Path, ...]:
        return tuple(u.package_dir for u in self.updates if u.requires_breaking_release)

    @property
    def updated_dirs(self) -> tuple[Path, ...]:
        return tuple(u.package_dir for u in self.updates)


def update_manifest_references(
    manifest: dict[str, object],
    *,
    dependency: str,
    new_range: str,
) -> tuple[DependencyKind, ...]:
    """Rewrite every reference to ``dependency`` in place; returns the kinds touched."""
    touched: list[DependencyKind] = []
    for kind in DependencyKind:
        section = manifest.get(kind.manifest_key)
        if not isinstance(section, dict):
            continue
        current = section.get(dependency)
        if not isinstance(current, str) or not current:
            continue
        section[dependency] = new_range
        touched.append(kind)
    return tuple(touched)


def rewrite_dependents(
    *,
    released: Package,
    packages_dir: Path,
) -> Result[PropagationReport, ReleaseError]:
    """Rewrite dependent manifests on disk; manifests without a reference are untouched."""
    new_version = released.new_version
    if new_version is None:
        return Err(
            ReleaseError(
                kind="invalid_input",
                message=f"no new version recorded for {released.name}",
            )
        )

    breaking = is_breaking_change(released.current_version, new_version)
    updates: list[DependentUpdate] = []

    for package_dir in discover_packages(packages_dir):
        if package_dir.resolve() == released.path.resolve():
            continue

        manifest_path = package_dir / MANIFEST_FILE
        manifest = read_manifest(manifest_path)
        if isinstance(manifest, Err):
            # Not a releasable package; nothing to rewrite.
            continue

        kinds = update_manifest_references(
            manifest.value,
            dependency=released.name,
            new_range=caret_range(new_version),
        )
        if not kinds:
            continue

        try:
            write_json(manifest_path, manifest.value)
        except OSError as e:
            return Err(
                ReleaseError(
                    kind="io_failed",
                    message=f"failed to write {manifest_path}: {e}",
                )
            )

        updates.append(
            DependentUpdate(
                package_dir=package_dir,
                kinds=kinds,
                requires_breaking_release=breaking and any(k.is_breaking for k in kinds),
            )
        )

    return Ok(PropagationReport(updates=tuple(updates)))


def commit_propagation(
    *,
    repo: Repository,
    released: Package,
    report: PropagationReport,
    packages_dir: Path,
    lockfile: Path,
) -> Result[None, ReleaseError]:
    """Commit breaking dependents first, then everything else under a chore title."""
    version = f"v{released.new_version}"

    if report.breaking_dependents:
        committed = repo.commit_paths(
            f"Breaking: Update '{released.dir_name}' to '{version}' {NO_CI_MARKER}",
            [repo.relative(p) for p in report.breaking_dependents],
        )
        if isinstance(committed, Err):
            return Err(ReleaseError.from_git(committed.error))

    paths = [repo.relative(packages_dir)]
    if lockfile.exists():
        paths.append(repo.relative(lockfile))
    committed = repo.commit_paths(
        f"Chore: Update '{released.dir_name}' to '{version}' {NO_CI_MARKER}",
        paths,
    )
    if isinstance(committed, Err):
        return Err(ReleaseError.from_git(committed.error))
    return Ok(None)


def propagate_version(
    *,
    repo: Repository,
    released: Package,
    packages_dir: Path,
    lockfile: Path,
    is_prerelease: bool,
) -> Result[PropagationReport, ReleaseError]:
    """Rewrite dependents and, outside prereleases, commit the result.

    Prereleases accumulate uncommitted manifest changes until the run's final
    commit step.
    """
    report = rewrite_dependents(released=released, packages_dir=packages_dir)
    if isinstance(report, Err):
        return report
    if is_prerelease:
        return report

    committed = commit_propagation(
        repo=repo,
        released=released,
        report=report.value,
        packages_dir=packages_dir,
        lockfile=lockfile,
    )
    if isinstance(committed, Err):
        return committed
    return report
