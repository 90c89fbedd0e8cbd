from __future__ import annotations

from pathlib import Path

import typer

from mrel.cli.context import build_context, exit_with
from mrel.core.errors import ErrorCode
from mrel.core.result import Err
from mrel.output.console import Style
from mrel.services.release.errors import ReleaseError, ReleaseErrorKind
from mrel.services.release.pipeline import Completed, SkippedNoRelease
from mrel.services.release.service import plan_release, preview_changelog, run_release

_EXIT_CODES: dict[ReleaseErrorKind, ErrorCode] = {
    "command_failed": ErrorCode.RELEASE_ERROR,
    "retry_exhausted": ErrorCode.RELEASE_ERROR,
    "publish_failed": ErrorCode.RELEASE_ERROR,
    "git_failed": ErrorCode.RELEASE_ERROR,
    "network_failed": ErrorCode.NETWORK_ERROR,
    "invalid_manifest": ErrorCode.IO_ERROR,
    "io_failed": ErrorCode.IO_ERROR,
    "invalid_input": ErrorCode.USER_ERROR,
    "not_runnable": ErrorCode.USER_ERROR,
}


def exit_code_for(error: ReleaseError) -> ErrorCode:
    return _EXIT_CODES.get(error.kind, ErrorCode.RELEASE_ERROR)


def _fail(error: ReleaseError) -> None:
    exit_with(error.pretty(), code=exit_code_for(error))


_WORKSPACE_OPTION = typer.Option(
    None,
    "--workspace",
    help="Workspace root (overrides auto detection)",
)


def release(
    prerelease: bool = typer.Option(
        False, "--prerelease", help="Publish prereleases under the `next` dist-tag."
    ),
    workspace: Path | None = _WORKSPACE_OPTION,
) -> None:
    """Release every package with release-worthy changes."""
    ctx = build_context(workspace)
    result = run_release(
        workspace_root=ctx.workspace.root,
        config=ctx.config,
        is_prerelease=prerelease,
        console=ctx.console,
        prompt=ctx.prompt,
        http=ctx.http,
    )
    if isinstance(result, Err):
        _fail(result.error)
        return

    report = result.value
    released = [t for t in report.titles(Completed) if t != "workspace"]
    skipped = report.titles(SkippedNoRelease)
    if released:
        ctx.console.success(f"released: {', '.join(released)}")
    if skipped:
        ctx.console.print(f"nothing to release: {', '.join(skipped)}", Style.DIM)

    failure = report.failure
    if failure is not None:
        title, failed = failure
        if report.not_started:
            ctx.console.print(f"not started: {', '.join(report.not_started)}", Style.DIM)
        exit_with(
            f"{title} failed at '{failed.task}': {failed.error.pretty()}",
            code=exit_code_for(failed.error),
        )


def plan(workspace: Path | None = _WORKSPACE_OPTION) -> None:
    """Print the order in which packages would be released."""
    ctx = build_context(workspace)
    result = plan_release(workspace_root=ctx.workspace.root, config=ctx.config)
    if isinstance(result, Err):
        _fail(result.error)
        return

    if not result.value:
        ctx.console.warning("no packages found")
        return
    for index, path in enumerate(result.value, start=1):
        ctx.console.print(f"{index:>3}. {path.name}")


def changelog(
    package: str = typer.Argument(..., help="Package directory name"),
    workspace: Path | None = _WORKSPACE_OPTION,
) -> None:
    """Preview the next release notes and version bump of one package."""
    ctx = build_context(workspace)
    result = preview_changelog(
        workspace_root=ctx.workspace.root,
        config=ctx.config,
        package_dir=package,
        console=ctx.console,
        prompt=ctx.prompt,
        http=ctx.http,
    )
    if isinstance(result, Err):
        _fail(result.error)
        return

    preview = result.value
    ctx.console.header(preview.package)
    ctx.console.print(f"last tag: {preview.last_tag or '(none)'}", Style.DIM)
    ctx.console.print(f"commits: {preview.commit_count}", Style.DIM)
    if not preview.release_worthy:
        ctx.console.info("no release-worthy changes")
        return
    ctx.console.print(f"increment: {preview.data.increment}", Style.INFO)
    ctx.console.print(preview.data.release_notes)
