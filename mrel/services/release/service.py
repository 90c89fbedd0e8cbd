"""Release run driver.

Order of a run: preflight checks, tag fetch, credentials (full releases
only), one pipeline per package in release order, then the workspace
finalization pipeline. The credentials are scoped to the pipelines and are
revoked and cleared on every exit path.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from functools import partial
from pathlib import Path

from mrel.core.config import ReleaseConfig
from mrel.core.result import Err, Ok, Result
from mrel.git.repository import Repository
from mrel.output.console import ConsoleProtocol, Style
from mrel.output.prompt import PromptProtocol
from mrel.platform.http import HttpClient
from mrel.platform.process import FailedAttempt, OnFailedAttempt
from mrel.services.release.changelog import ChangelogData, derive_changelog, is_release_worthy
from mrel.services.release.errors import ReleaseError
from mrel.services.release.github import GitHubClient, github_credentials
from mrel.services.release.model import ReleaseContext
from mrel.services.release.packages import read_package, release_order
from mrel.services.release.pipeline import PipelinePlan, RunReport, run_pipelines
from mrel.services.release.rollback import RollbackController
from mrel.services.release.tasks import (
    ReleaseEnv,
    build_package_pipeline,
    build_workspace_pipeline,
    get_commits,
    get_last_tag,
)


def retry_sink(console: ConsoleProtocol) -> OnFailedAttempt:
    """Report each failed attempt of a retried command as a warning."""

    def report(attempt: FailedAttempt) -> None:
        console.warning(
            f'Failed executing "{" ".join(attempt.command)}". '
            f"Retries left: {attempt.retries_left}."
        )

    return report


def official_remote_pattern(slug: str) -> re.Pattern[str]:
    return re.compile(rf"^(https://|git@)github\.com[:/]{re.escape(slug)}\.git$", re.IGNORECASE)


def release_can_run(repo: Repository, config: ReleaseConfig) -> Result[str, ReleaseError]:
    """Check the repository is in a releasable state; returns the remote to push to."""
    branch = config.repository.branch

    current = repo.current_branch()
    if current != branch:
        return Err(
            ReleaseError(
                kind="not_runnable",
                message=f"releases run from '{branch}' only (current: {current or 'detached'})",
                hint=f"git checkout {branch}",
            )
        )

    dirty = repo.has_uncommitted_changes()
    if isinstance(dirty, Err):
        return Err(ReleaseError.from_git(dirty.error))
    if dirty.value:
        return Err(
            ReleaseError(
                kind="not_runnable",
                message="working tree has uncommitted changes",
                hint="commit or stash them first",
            )
        )

    remote = config.repository.remote or repo.config_get(f"branch.{branch}.remote")
    if remote is None:
        return Err(
            ReleaseError(
                kind="not_runnable",
                message=f"branch '{branch}' has no remote configured",
            )
        )

    url = repo.config_get(f"remote.{remote}.url")
    if url is None or official_remote_pattern(config.repository.slug).match(url) is None:
        return Err(
            ReleaseError(
                kind="not_runnable",
                message=f"remote '{remote}' is not the official repository",
                hint=f"expected {config.repository.url}.git (got {url or 'no url'})",
            )
        )

    return Ok(remote)


def plan_release(
    *, workspace_root: Path, config: ReleaseConfig
) -> Result[list[Path], ReleaseError]:
    """Package directories in the order a release would process them."""
    return release_order(workspace_root / config.packages.dir, config.packages)


@dataclass(frozen=True, slots=True)
class ChangelogPreview:
    package: str
    last_tag: str | None
    commit_count: int
    release_worthy: bool
    data: ChangelogData


def preview_changelog(
    *,
    workspace_root: Path,
    config: ReleaseConfig,
    package_dir: str,
    console: ConsoleProtocol,
    prompt: PromptProtocol,
    http: HttpClient,
) -> Result[ChangelogPreview, ReleaseError]:
    """Derive the next release notes of one package without touching anything."""
    package = read_package(workspace_root / config.packages.dir / package_dir)
    if isinstance(package, Err):
        return package

    env = ReleaseEnv(
        repo=Repository(workspace_root),
        config=config,
        console=console,
        prompt=prompt,
        http=http,
        remote="",
    )
    ctx = ReleaseContext(package=package.value, is_prerelease=False)
    for step in (get_last_tag, get_commits):
        done = step(env, ctx)
        if isinstance(done, Err):
            return done

    return Ok(
        ChangelogPreview(
            package=ctx.title,
            last_tag=ctx.package.last_tag,
            commit_count=len(ctx.commits),
            release_worthy=is_release_worthy(ctx.commits),
            data=derive_changelog(ctx.commits, repository_url=config.repository.url),
        )
    )


def _plans(env: ReleaseEnv, order: list[Path], *, is_prerelease: bool) -> list[PipelinePlan]:
    plans = [
        PipelinePlan(
            title=path.name,
            build=partial(build_package_pipeline, env, path, is_prerelease=is_prerelease),
        )
        for path in order
    ]
    plans.append(
        PipelinePlan(
            title="workspace",
            build=partial(build_workspace_pipeline, env, is_prerelease=is_prerelease),
        )
    )
    return plans


def run_release(
    *,
    workspace_root: Path,
    config: ReleaseConfig,
    is_prerelease: bool,
    console: ConsoleProtocol,
    prompt: PromptProtocol,
    http: HttpClient,
    today: Callable[[], date] = date.today,
) -> Result[RunReport, ReleaseError]:
    """Run a full release or a prerelease of every package.

    Err is returned when the run could not start. Once pipelines run, the
    outcome (including a halting failure) is in the returned report.
    """
    sink = retry_sink(console)
    repo = Repository(
        workspace_root,
        push_retries=config.packages.script_retries,
        on_failed_attempt=sink,
    )

    remote = release_can_run(repo, config)
    if isinstance(remote, Err):
        return remote

    console.print("Fetching tags", Style.DIM)
    fetched = repo.fetch_tags()
    if isinstance(fetched, Err):
        return Err(ReleaseError.from_git(fetched.error))

    packages_dir = workspace_root / config.packages.dir
    order = release_order(packages_dir, config.packages)
    if isinstance(order, Err):
        return order

    env = ReleaseEnv(
        repo=repo,
        config=config,
        console=console,
        prompt=prompt,
        http=http,
        remote=remote.value,
        on_failed_attempt=sink,
        today=today,
    )
    rollback = RollbackController(repo=repo, packages_dir=packages_dir, console=console)

    if is_prerelease:
        return Ok(
            run_pipelines(
                _plans(env, order.value, is_prerelease=True), rollback=rollback, console=console
            )
        )

    github = GitHubClient(
        http,
        api_url=config.github.api_url,
        slug=config.repository.slug,
        user_agent=config.github.user_agent,
    )
    with github_credentials(
        github, prompt=prompt, console=console, token_env=config.github.token_env
    ) as issued:
        if isinstance(issued, Err):
            return Err(ReleaseError.from_network(issued.error, "failed to create GitHub token"))

        env.github = github
        env.credentials = issued.value
        try:
            return Ok(
                run_pipelines(
                    _plans(env, order.value, is_prerelease=False),
                    rollback=rollback,
                    console=console,
                )
            )
        finally:
            env.credentials = None
