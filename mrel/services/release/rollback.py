"""Undo the working-tree state left by a failed pipeline.

Rollback is best effort: every step runs even when an earlier one failed,
and failures are reported on the console without replacing the error that
caused the rollback.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from mrel.core.result import Err
from mrel.git.repository import Repository
from mrel.output.console import ConsoleProtocol
from mrel.platform.files import remove_paths
from mrel.services.release.packages import discover_packages
from mrel.services.release.pipeline import PipelineContext

# Generated by install/build steps; never committed.
ARTIFACTS = ("dist", "node_modules", "npm-shrinkwrap.json", "package-lock.json", "yarn.lock")


def package_artifacts(package_path: Path) -> list[Path]:
    return [package_path / name for name in ARTIFACTS]


def remove_artifacts(package_path: Path) -> list[Path]:
    """Remove one package's generated artifacts.

    Raises:
        OSError: If an existing artifact cannot be removed.
    """
    return remove_paths(package_artifacts(package_path))


@dataclass(slots=True)
class RollbackReport:
    reset: bool = False
    deleted_tag: str | None = None
    removed: list[Path] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.errors


class RollbackController:
    """Rollback callable handed to ``run_pipelines``.

    Steps, in order: hard reset of index and working tree, deletion of the
    tag created for the failed release, removal of build/install artifacts
    for the failed package and then for every package.
    """

    def __init__(
        self,
        *,
        repo: Repository,
        packages_dir: Path,
        console: ConsoleProtocol,
    ) -> None:
        self._repo = repo
        self._packages_dir = packages_dir
        self._console = console
        self.reports: list[RollbackReport] = []

    def __call__(self, context: PipelineContext) -> RollbackReport:
        report = RollbackReport()
        self.reports.append(report)
        self._console.header(f"Rolling back {context.title}")

        reset = self._repo.reset_hard()
        if isinstance(reset, Err):
            self._fail(report, f"failed to reset working tree: {reset.error}")
        else:
            report.reset = True

        if context.new_tag:
            deleted = self._repo.delete_tag(context.new_tag)
            if isinstance(deleted, Err):
                self._fail(report, f"failed to delete tag {context.new_tag}: {deleted.error}")
            elif deleted.value:
                report.deleted_tag = context.new_tag

        targets: list[Path] = []
        if context.package_path is not None:
            targets.append(context.package_path)
        try:
            discovered = discover_packages(self._packages_dir)
        except OSError as e:
            self._fail(report, f"failed to list packages in {self._packages_dir}: {e}")
            discovered = []
        targets.extend(p for p in discovered if p not in set(targets))
        self._remove(report, targets)

        if report.clean:
            self._console.success(f"rolled back {context.title}")
        return report

    def _remove(self, report: RollbackReport, package_paths: Iterable[Path]) -> None:
        for package_path in package_paths:
            for artifact in package_artifacts(package_path):
                try:
                    report.removed.extend(remove_paths([artifact]))
                except OSError as e:
                    self._fail(report, f"failed to remove {artifact}: {e}")

    def _fail(self, report: RollbackReport, message: str) -> None:
        report.errors.append(message)
        self._console.error(message)
