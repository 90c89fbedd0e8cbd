"""Release tasks and the task lists they are assembled into.

Each task is a plain function ``(env, context) -> Result[None, ReleaseError]``.
``env`` holds the run-wide collaborators and is bound when the task list is
built; ``context`` is the per-package record the task reads and fills.

Task lists, by package state:

- unpublished package, full release: read version, drop ``private``, write a
  fresh changelog
- published package, full release: last tag, last released version, commits,
  release data (may skip), version bump, changelog, operator review
- both continue with: install, tests, build, commit, tag, publish, push,
  GitHub release, version propagation, push
- prerelease: published packages get a ``pre<increment>`` version, install,
  tests, build, publish under ``next`` and propagation without commits;
  unpublished ones only run setup and cleanup
- always: configured asset refresh first, artifact cleanup last
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from functools import partial
from pathlib import Path

from mrel.core.config import ReleaseConfig
from mrel.core.result import Err, Ok, Result
from mrel.core.structured import as_str_dict, get_str
from mrel.git.repository import GitError, Repository
from mrel.output.console import ConsoleProtocol, Style
from mrel.output.prompt import PromptProtocol
from mrel.platform.files import atomic_write_text, write_json
from mrel.platform.http import HttpClient
from mrel.platform.process import CommandError, OnFailedAttempt
from mrel.platform.process import run as run_process
from mrel.services.release import npm
from mrel.services.release.assets import refresh_asset
from mrel.services.release.changelog import (
    FIRST_RELEASE_NOTES,
    derive_changelog,
    format_changelog_entry,
    is_release_worthy,
    latest_release_notes,
    parse_commit,
)
from mrel.services.release.errors import ReleaseError
from mrel.services.release.github import GitHubClient, GitHubCredentials
from mrel.services.release.model import CommitAuthor, ReleaseContext, WorkspaceContext
from mrel.services.release.packages import read_manifest, read_package
from mrel.services.release.pipeline import Pipeline, Task
from mrel.services.release.propagate import NO_CI_MARKER, propagate_version
from mrel.services.release.rollback import remove_artifacts
from mrel.services.release.semver import parse_version
from mrel.services.release.timeouts import LOCKFILE_TIMEOUT_SECONDS, PUBLISH_OTP_ATTEMPTS

PRERELEASE_DIST_TAG = "next"


@dataclass(slots=True)
class ReleaseEnv:
    """Run-wide collaborators shared by every task of a release run."""

    repo: Repository
    config: ReleaseConfig
    console: ConsoleProtocol
    prompt: PromptProtocol
    http: HttpClient
    remote: str
    github: GitHubClient | None = None
    credentials: GitHubCredentials | None = None
    on_failed_attempt: OnFailedAttempt | None = None
    today: Callable[[], date] = field(default=date.today)

    @property
    def root(self) -> Path:
        return self.repo.path

    @property
    def branch(self) -> str:
        return self.config.repository.branch

    @property
    def packages_dir(self) -> Path:
        return self.root / self.config.packages.dir

    @property
    def lockfile(self) -> Path:
        return self.root / self.config.lockfile.path

    def lookup_author(self, sha: str) -> CommitAuthor | None:
        if self.github is None or self.credentials is None:
            return None
        return self.github.commit_author(self.credentials, sha)


type ReleaseTask = Task[ReleaseContext]
type WorkspaceTask = Task[WorkspaceContext]

_OK: Result[None, ReleaseError] = Ok(None)


def _git(result: Result[object, GitError]) -> Result[None, ReleaseError]:
    return result.map(lambda _: None).map_err(ReleaseError.from_git)


def _needs_build(env: ReleaseEnv, ctx: ReleaseContext) -> bool:
    return not ctx.package.dir_name.startswith(env.config.packages.no_build_prefixes)


def _release_version(ctx: ReleaseContext) -> str:
    version = ctx.package.new_version
    if version is None:
        raise AssertionError(f"no version set for {ctx.package.name}")
    return version


# -- setup: unpublished packages ----------------------------------------------


def read_version(env: ReleaseEnv, ctx: ReleaseContext) -> Result[None, ReleaseError]:
    """A first publish releases the version already in the manifest."""
    del env
    version = ctx.package.manifest_version
    if version is None or parse_version(version) is None:
        return Err(
            ReleaseError(
                kind="invalid_manifest",
                message=f"{ctx.package.manifest_path} has no valid version",
            )
        )
    ctx.set_new_version(version)
    ctx.release_notes = FIRST_RELEASE_NOTES
    return _OK


def remove_private_field(env: ReleaseEnv, ctx: ReleaseContext) -> Result[None, ReleaseError]:
    del env
    ctx.package.manifest.pop("private", None)
    try:
        write_json(ctx.package.manifest_path, ctx.package.manifest)
    except OSError as e:
        return Err(ReleaseError(kind="io_failed", message=f"failed to write manifest: {e}"))
    return _OK


def write_first_changelog(env: ReleaseEnv, ctx: ReleaseContext) -> Result[None, ReleaseError]:
    entry = format_changelog_entry(
        _release_version(ctx), ctx.release_notes or FIRST_RELEASE_NOTES, env.today()
    )
    try:
        atomic_write_text(ctx.package.changelog_path, entry)
    except OSError as e:
        return Err(ReleaseError(kind="io_failed", message=f"failed to write changelog: {e}"))
    return _OK


# -- setup: published packages ------------------------------------------------


def get_last_tag(env: ReleaseEnv, ctx: ReleaseContext) -> Result[None, ReleaseError]:
    result = env.repo.last_tag(match=f"{ctx.package.tag_prefix}*")
    if isinstance(result, Err):
        return Err(ReleaseError.from_git(result.error))
    ctx.package.last_tag = result.value
    return _OK


def get_last_released_version(
    env: ReleaseEnv, ctx: ReleaseContext
) -> Result[None, ReleaseError]:
    """Read the version from the manifest as it was at the last release tag."""
    tag = ctx.package.last_tag
    if tag is None:
        return _OK

    shown = env.repo.show_file(tag, env.repo.relative(ctx.package.manifest_path))
    if isinstance(shown, Err):
        return Err(ReleaseError.from_git(shown.error))

    try:
        data: object = json.loads(shown.value)
    except json.JSONDecodeError as e:
        return Err(
            ReleaseError(kind="invalid_manifest", message=f"invalid manifest at {tag}: {e}")
        )
    manifest = as_str_dict(data)
    version = get_str(manifest, "version") if manifest is not None else None
    if version:
        ctx.package.current_version = version
    return _OK


def get_commits(env: ReleaseEnv, ctx: ReleaseContext) -> Result[None, ReleaseError]:
    shas = env.repo.commits_between(
        ctx.package.last_tag, env.branch, env.repo.relative(ctx.package.path)
    )
    if isinstance(shas, Err):
        return Err(ReleaseError.from_git(shas.error))

    commits = []
    for sha in shas.value:
        message = env.repo.commit_message(sha)
        if isinstance(message, Err):
            return Err(ReleaseError.from_git(message.error))
        commits.append(parse_commit(sha, message.value))
    ctx.commits = tuple(commits)
    return _OK


def get_release_data(env: ReleaseEnv, ctx: ReleaseContext) -> Result[None, ReleaseError]:
    """Derive notes and increment; packages with nothing to release skip the rest."""
    if not ctx.is_prerelease and not is_release_worthy(ctx.commits):
        env.console.info(f"{ctx.title}: no release-worthy changes, skipping")
        ctx.skip_remaining_tasks = True
        return _OK

    data = derive_changelog(
        ctx.commits,
        repository_url=env.config.repository.url,
        lookup_author=None if ctx.is_prerelease else env.lookup_author,
    )
    ctx.increment = data.increment
    ctx.release_notes = data.release_notes
    return _OK


def update_version(env: ReleaseEnv, ctx: ReleaseContext) -> Result[None, ReleaseError]:
    del env
    if ctx.increment is None:
        raise AssertionError("release data must be derived before the version bump")

    bumped = npm.bump_version(ctx.package.path, ctx.increment)
    if isinstance(bumped, Err):
        return Err(ReleaseError.from_command(bumped.error, "failed to bump version"))
    ctx.set_new_version(bumped.value)

    # npm rewrote the manifest on disk; keep the in-memory copy in sync.
    manifest = read_manifest(ctx.package.manifest_path)
    if isinstance(manifest, Err):
        return manifest
    ctx.package.manifest = manifest.value
    return _OK


def update_changelog(env: ReleaseEnv, ctx: ReleaseContext) -> Result[None, ReleaseError]:
    path = ctx.package.changelog_path
    try:
        previous = path.read_text(encoding="utf-8") if path.exists() else ""
        entry = format_changelog_entry(_release_version(ctx), ctx.release_notes or "", env.today())
        atomic_write_text(path, entry + previous)
    except OSError as e:
        return Err(ReleaseError(kind="io_failed", message=f"failed to update {path}: {e}"))
    return _OK


def review_changelog(env: ReleaseEnv, ctx: ReleaseContext) -> Result[None, ReleaseError]:
    env.console.print(f"{ctx.package.changelog_path}", Style.DIM)
    env.prompt.ask(f"Review the changelog of '{ctx.title}', then press Enter to continue")
    return _OK


# -- setup: prerelease --------------------------------------------------------


def update_prerelease_version(env: ReleaseEnv, ctx: ReleaseContext) -> Result[None, ReleaseError]:
    """Write ``pre<increment>`` of the manifest version, e.g. 1.2.3 -> 2.0.0-beta.0."""
    current = parse_version(ctx.package.manifest_version or "")
    if current is None:
        return Err(
            ReleaseError(
                kind="invalid_manifest",
                message=f"{ctx.package.manifest_path} has no valid version",
            )
        )

    version = str(current.bump_pre(ctx.increment or "patch", env.config.packages.prerelease_id))
    ctx.set_new_version(version)
    ctx.package.manifest["version"] = version
    try:
        write_json(ctx.package.manifest_path, ctx.package.manifest)
    except OSError as e:
        return Err(ReleaseError(kind="io_failed", message=f"failed to write manifest: {e}"))
    return _OK


# -- common -------------------------------------------------------------------


def refresh_assets(env: ReleaseEnv, ctx: ReleaseContext) -> Result[None, ReleaseError]:
    for asset in env.config.assets_for(ctx.package.dir_name):
        refreshed = refresh_asset(
            http=env.http, repo=env.repo, package_path=ctx.package.path, asset=asset
        )
        if isinstance(refreshed, Err):
            return refreshed
        if refreshed.value:
            env.console.print(f"updated {asset.path}", Style.DIM)
    return _OK


def install_dependencies(env: ReleaseEnv, ctx: ReleaseContext) -> Result[None, ReleaseError]:
    del env
    result = npm.install(ctx.package.path)
    if isinstance(result, Err):
        return Err(ReleaseError.from_command(result.error, "failed to install dependencies"))
    return _OK


def _run_script(env: ReleaseEnv, ctx: ReleaseContext, script: str) -> Result[None, ReleaseError]:
    if not _needs_build(env, ctx):
        env.console.print(f"{script} not needed for {ctx.title}", Style.DIM)
        return _OK
    result = npm.run_script(
        ctx.package.path,
        script,
        retries=env.config.packages.script_retries,
        on_failed_attempt=env.on_failed_attempt,
    )
    if isinstance(result, Err):
        return Err(ReleaseError.from_retry(result.error))
    return _OK


def run_tests(env: ReleaseEnv, ctx: ReleaseContext) -> Result[None, ReleaseError]:
    return _run_script(env, ctx, env.config.packages.test_script)


def run_build(env: ReleaseEnv, ctx: ReleaseContext) -> Result[None, ReleaseError]:
    return _run_script(env, ctx, env.config.packages.build_script)


def commit_release(env: ReleaseEnv, ctx: ReleaseContext) -> Result[None, ReleaseError]:
    message = f"🚀 {ctx.title} - v{_release_version(ctx)} {NO_CI_MARKER}"
    return _git(env.repo.commit_paths(message, [env.repo.relative(ctx.package.path)]))


def tag_release(env: ReleaseEnv, ctx: ReleaseContext) -> Result[None, ReleaseError]:
    tag = f"{ctx.package.tag_prefix}{_release_version(ctx)}"

    # A stale local tag from an earlier aborted run would block the new one.
    deleted = env.repo.delete_tag(tag)
    if isinstance(deleted, Err):
        return Err(ReleaseError.from_git(deleted.error))

    ctx.new_tag = tag
    return _git(env.repo.create_tag(tag, tag))


def publish_package(env: ReleaseEnv, ctx: ReleaseContext) -> Result[None, ReleaseError]:
    """Publish, asking for a fresh one-time password while the registry rejects it."""
    access = "public" if ctx.package.is_unpublished else None
    dist_tag = PRERELEASE_DIST_TAG if ctx.is_prerelease else None

    for _ in range(PUBLISH_OTP_ATTEMPTS):
        otp = env.prompt.ask(f"npm one-time password for {ctx.package.name}")
        result = npm.publish(ctx.package.path, otp=otp, access=access, dist_tag=dist_tag)
        if isinstance(result, Ok):
            return _OK

        error = result.error
        if isinstance(error, CommandError):
            ctx.publish_error = ReleaseError(
                kind="publish_failed",
                message=f"failed to publish {ctx.package.name}",
                hint=error.stderr or error.stdout or None,
            )
            return Err(ctx.publish_error)
        env.console.warning("one-time password rejected, try again")

    ctx.publish_error = ReleaseError(
        kind="publish_failed",
        message=f"failed to publish {ctx.package.name}",
        hint=f"one-time password rejected {PUBLISH_OTP_ATTEMPTS} times",
    )
    return Err(ctx.publish_error)


def push_changes(env: ReleaseEnv, ctx: ReleaseContext) -> Result[None, ReleaseError]:
    return _git(env.repo.push(env.remote, env.branch, ctx.new_tag))


def create_github_release(env: ReleaseEnv, ctx: ReleaseContext) -> Result[None, ReleaseError]:
    if env.github is None or env.credentials is None:
        return Err(
            ReleaseError(
                kind="not_runnable",
                message="GitHub credentials are required to create a release",
            )
        )
    if ctx.new_tag is None:
        raise AssertionError("release must be tagged before the GitHub release")

    path = ctx.package.changelog_path
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        return Err(ReleaseError(kind="io_failed", message=f"failed to read {path}: {e}"))

    # First publish: the whole (single entry) changelog.
    body = text if ctx.package.is_unpublished else latest_release_notes(text)
    if body is None:
        return Err(
            ReleaseError(
                kind="invalid_input",
                message=f"no release notes found in {path}",
            )
        )

    created = env.github.create_release(env.credentials, tag=ctx.new_tag, body=body)
    if isinstance(created, Err):
        return Err(ReleaseError.from_network(created.error, "failed to create GitHub release"))
    if created.value:
        env.console.print(created.value, Style.DIM)
    return _OK


def update_dependents(env: ReleaseEnv, ctx: ReleaseContext) -> Result[None, ReleaseError]:
    report = propagate_version(
        repo=env.repo,
        released=ctx.package,
        packages_dir=env.packages_dir,
        lockfile=env.lockfile,
        is_prerelease=ctx.is_prerelease,
    )
    if isinstance(report, Err):
        return report
    ctx.breaking_dependents = tuple(p.name for p in report.value.breaking_dependents)
    if ctx.breaking_dependents:
        env.console.warning(
            f"breaking release required for: {', '.join(ctx.breaking_dependents)}"
        )
    return _OK


def push_branch(env: ReleaseEnv, ctx: ReleaseContext) -> Result[None, ReleaseError]:
    del ctx
    return _git(env.repo.push(env.remote, env.branch))


def cleanup(env: ReleaseEnv, ctx: ReleaseContext) -> Result[None, ReleaseError]:
    del env
    try:
        remove_artifacts(ctx.package.path)
    except OSError as e:
        return Err(ReleaseError(kind="io_failed", message=f"failed to clean {ctx.title}: {e}"))
    return _OK


# -- task lists ---------------------------------------------------------------


def _task(
    title: str,
    fn: Callable[[ReleaseEnv, ReleaseContext], Result[None, ReleaseError]],
    env: ReleaseEnv,
    *,
    always_run: bool = False,
) -> ReleaseTask:
    return Task(title=title, action=partial(fn, env), always_run=always_run)


def release_tasks(env: ReleaseEnv, ctx: ReleaseContext) -> list[ReleaseTask]:
    """Full release of one package."""
    tasks = [_task("Refresh assets", refresh_assets, env)]

    if ctx.package.is_unpublished:
        tasks += [
            _task("Get version", read_version, env),
            _task("Remove `private` field", remove_private_field, env),
            _task("Write changelog", write_first_changelog, env),
        ]
    else:
        tasks += [
            _task("Get last tag", get_last_tag, env),
            _task("Get last released version", get_last_released_version, env),
            _task("Get commits since last release", get_commits, env),
            _task("Get release data", get_release_data, env),
            _task("Update version", update_version, env),
            _task("Update changelog", update_changelog, env),
            _task("Review changelog", review_changelog, env),
        ]

    tasks += [
        _task("Install dependencies", install_dependencies, env),
        _task("Run tests", run_tests, env),
        _task("Build release", run_build, env),
        _task("Commit changes", commit_release, env),
        _task("Tag new version", tag_release, env),
        _task("Publish", publish_package, env),
        _task("Push changes", push_changes, env),
        _task("Create GitHub release", create_github_release, env),
        _task("Update dependents", update_dependents, env),
        _task("Push dependent updates", push_branch, env),
        _task("Cleanup", cleanup, env, always_run=True),
    ]
    return tasks


def prerelease_tasks(env: ReleaseEnv, ctx: ReleaseContext) -> list[ReleaseTask]:
    """Prerelease of one package; never first-publishes and never tags."""
    tasks: list[ReleaseTask] = []

    if not ctx.package.is_unpublished:
        tasks += [
            _task("Get last tag", get_last_tag, env),
            _task("Get commits since last release", get_commits, env),
            _task("Get release data", get_release_data, env),
            _task("Update version", update_prerelease_version, env),
            _task("Install dependencies", install_dependencies, env),
            _task("Run tests", run_tests, env),
            _task("Build release", run_build, env),
            _task("Publish", publish_package, env),
            _task("Update dependents", update_dependents, env),
        ]

    tasks.append(_task("Cleanup", cleanup, env, always_run=True))
    return tasks


def build_package_pipeline(
    env: ReleaseEnv, package_path: Path, *, is_prerelease: bool
) -> Result[Pipeline[ReleaseContext], ReleaseError]:
    """Read the package from disk and assemble its pipeline."""
    package = read_package(package_path)
    if isinstance(package, Err):
        return package

    ctx = ReleaseContext(package=package.value, is_prerelease=is_prerelease)
    tasks = prerelease_tasks(env, ctx) if is_prerelease else release_tasks(env, ctx)
    return Ok(Pipeline(ctx, tasks, console=env.console))


# -- workspace finalization ---------------------------------------------------


def commit_prerelease(env: ReleaseEnv, ctx: WorkspaceContext) -> Result[None, ReleaseError]:
    del ctx
    committed = env.repo.commit_paths(
        f"🚀 Prerelease {NO_CI_MARKER}", [env.repo.relative(env.packages_dir)]
    )
    if isinstance(committed, Err):
        return Err(ReleaseError.from_git(committed.error))
    return _git(env.repo.push(env.remote, env.branch))


def update_lockfile(env: ReleaseEnv, ctx: WorkspaceContext) -> Result[None, ReleaseError]:
    del ctx
    refreshed = run_process(
        list(env.config.lockfile.command), cwd=env.root, timeout=LOCKFILE_TIMEOUT_SECONDS
    )
    if isinstance(refreshed, Err):
        return Err(ReleaseError.from_command(refreshed.error, "failed to update the lockfile"))

    lockfile = env.config.lockfile.path
    committed = env.repo.commit_paths(
        f"Chore: Update '{lockfile}' file", [env.repo.relative(env.lockfile)]
    )
    if isinstance(committed, Err):
        return Err(ReleaseError.from_git(committed.error))
    if not committed.value:
        return _OK
    return _git(env.repo.push(env.remote, env.branch))


def finalize_tasks(env: ReleaseEnv, ctx: WorkspaceContext) -> list[WorkspaceTask]:
    tasks: list[WorkspaceTask] = []
    if ctx.is_prerelease:
        tasks.append(Task(title="Commit prerelease", action=partial(commit_prerelease, env)))
    tasks.append(Task(title="Update lockfile", action=partial(update_lockfile, env)))
    return tasks


def build_workspace_pipeline(
    env: ReleaseEnv, *, is_prerelease: bool
) -> Result[Pipeline[WorkspaceContext], ReleaseError]:
    ctx = WorkspaceContext(is_prerelease=is_prerelease)
    return Ok(Pipeline(ctx, finalize_tasks(env, ctx), console=env.console))
