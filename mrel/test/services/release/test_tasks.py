from __future__ import annotations

import json
from datetime import date
from functools import partial
from pathlib import Path

import pytest

from mrel.core.config import PackagesConfig, ReleaseConfig
from mrel.core.result import Err, Ok
from mrel.git import repository
from mrel.git.repository import Repository
from mrel.output.console import MockConsole
from mrel.output.prompt import ScriptedPrompt
from mrel.platform.http import MockHttpClient
from mrel.services.release import npm, tasks
from mrel.services.release.changelog import parse_commit
from mrel.services.release.model import ReleaseContext
from mrel.services.release.npm import OTP_RETRY_MARKER
from mrel.services.release.packages import read_package
from mrel.services.release.pipeline import (
    Pipeline,
    PipelineContext,
    PipelinePlan,
    Task,
    run_pipelines,
)
from mrel.services.release.tasks import ReleaseEnv, prerelease_tasks, release_tasks
from mrel.test.fakes import FakeRunner, fail, make_package

PUBLISHED = {"name": "@acme/a", "version": "1.2.3"}
UNPUBLISHED = {"name": "@acme/a", "version": "1.0.0", "private": True}


@pytest.fixture
def runner(monkeypatch: pytest.MonkeyPatch) -> FakeRunner:
    fake = FakeRunner()
    monkeypatch.setattr(repository, "run_process", fake)
    monkeypatch.setattr(npm, "run_process", fake)
    monkeypatch.setattr(tasks, "run_process", fake)
    return fake


def _env(root: Path, *answers: str, config: ReleaseConfig | None = None) -> ReleaseEnv:
    return ReleaseEnv(
        repo=Repository(root),
        config=config or ReleaseConfig(),
        console=MockConsole(),
        prompt=ScriptedPrompt.of(answers),
        http=MockHttpClient(),
        remote="origin",
        today=lambda: date(2024, 3, 5),
    )


def _ctx(root: Path, manifest: dict[str, object], *, is_prerelease: bool = False) -> ReleaseContext:
    path = make_package(root, "a", manifest)
    return ReleaseContext(package=read_package(path).unwrap(), is_prerelease=is_prerelease)


class TestTaskLists:
    def test_unpublished_release(self, tmp_path: Path) -> None:
        titles = [t.title for t in release_tasks(_env(tmp_path), _ctx(tmp_path, UNPUBLISHED))]

        assert titles[:4] == [
            "Refresh assets",
            "Get version",
            "Remove `private` field",
            "Write changelog",
        ]
        assert "Get release data" not in titles
        assert titles[-1] == "Cleanup"

    def test_published_release(self, tmp_path: Path) -> None:
        titles = [t.title for t in release_tasks(_env(tmp_path), _ctx(tmp_path, PUBLISHED))]

        assert titles.index("Get release data") < titles.index("Update version")
        assert titles.index("Tag new version") < titles.index("Publish")
        assert titles.index("Publish") < titles.index("Update dependents")

    def test_prerelease_of_unpublished_package_only_cleans_up(self, tmp_path: Path) -> None:
        ctx = _ctx(tmp_path, UNPUBLISHED, is_prerelease=True)

        titles = [t.title for t in prerelease_tasks(_env(tmp_path), ctx)]

        assert titles == ["Cleanup"]

    def test_prerelease_never_tags(self, tmp_path: Path) -> None:
        ctx = _ctx(tmp_path, PUBLISHED, is_prerelease=True)

        titles = [t.title for t in prerelease_tasks(_env(tmp_path), ctx)]

        assert "Tag new version" not in titles
        assert "Create GitHub release" not in titles

    def test_only_cleanup_always_runs(self, tmp_path: Path) -> None:
        built = release_tasks(_env(tmp_path), _ctx(tmp_path, PUBLISHED))

        assert [t.title for t in built if t.always_run] == ["Cleanup"]


class TestSetup:
    def test_unpublished_setup_writes_manifest_and_changelog(self, tmp_path: Path) -> None:
        env = _env(tmp_path)
        ctx = _ctx(tmp_path, UNPUBLISHED)

        assert tasks.read_version(env, ctx) == Ok(None)
        assert tasks.remove_private_field(env, ctx) == Ok(None)
        assert tasks.write_first_changelog(env, ctx) == Ok(None)

        manifest = json.loads(ctx.package.manifest_path.read_text(encoding="utf-8"))
        assert "private" not in manifest
        assert ctx.package.new_version == "1.0.0"
        assert ctx.package.changelog_path.read_text(encoding="utf-8") == (
            "# 1.0.0 (March 5, 2024)\n\n✨\n"
        )

    def test_last_released_version_read_at_tag(self, tmp_path: Path, runner: FakeRunner) -> None:
        runner.on("show", "a-v1.2.0:packages/a/package.json", then='{"version": "1.2.0"}')
        ctx = _ctx(tmp_path, PUBLISHED)
        ctx.package.last_tag = "a-v1.2.0"

        assert tasks.get_last_released_version(_env(tmp_path), ctx) == Ok(None)
        assert ctx.package.current_version == "1.2.0"

    def test_commits_are_listed_oldest_first(self, tmp_path: Path, runner: FakeRunner) -> None:
        runner.on("rev-list", then="aaa\nbbb\n")
        runner.on("show", "--no-patch", "--format=%B", "aaa", then="Fix: one")
        runner.on("show", "--no-patch", "--format=%B", "bbb", then="New: two")
        ctx = _ctx(tmp_path, PUBLISHED)
        ctx.package.last_tag = "a-v1.2.3"

        assert tasks.get_commits(_env(tmp_path), ctx) == Ok(None)

        assert [c.title for c in ctx.commits] == ["Fix: one", "New: two"]
        assert runner.commands("rev-list") == [
            ["rev-list", "--reverse", "a-v1.2.3..main", "--", "packages/a"]
        ]

    def test_nothing_release_worthy_skips(self, tmp_path: Path) -> None:
        env = _env(tmp_path)
        ctx = _ctx(tmp_path, PUBLISHED)
        ctx.commits = (parse_commit("aaa", "Chore: bump"),)

        assert tasks.get_release_data(env, ctx) == Ok(None)

        assert ctx.skip_remaining_tasks
        assert ctx.increment is None

    def test_release_data_sets_increment(self, tmp_path: Path) -> None:
        ctx = _ctx(tmp_path, PUBLISHED)
        ctx.commits = (parse_commit("aaa", "New: feature"),)

        tasks.get_release_data(_env(tmp_path), ctx)

        assert ctx.increment == "minor"
        assert ctx.release_notes and "New features" in ctx.release_notes

    def test_prerelease_version(self, tmp_path: Path) -> None:
        config = ReleaseConfig(packages=PackagesConfig(prerelease_id="rc"))
        ctx = _ctx(tmp_path, PUBLISHED, is_prerelease=True)
        ctx.increment = "major"

        assert tasks.update_prerelease_version(_env(tmp_path, config=config), ctx) == Ok(None)

        assert ctx.package.new_version == "2.0.0-rc.0"
        manifest = json.loads(ctx.package.manifest_path.read_text(encoding="utf-8"))
        assert manifest["version"] == "2.0.0-rc.0"

    def test_changelog_entry_is_prepended(self, tmp_path: Path) -> None:
        ctx = _ctx(tmp_path, PUBLISHED)
        ctx.package.changelog_path.write_text("# 1.2.3 (old)\n\nold\n\n\n", encoding="utf-8")
        ctx.set_new_version("1.3.0")
        ctx.release_notes = "notes\n"

        tasks.update_changelog(_env(tmp_path), ctx)

        text = ctx.package.changelog_path.read_text(encoding="utf-8")
        assert text.startswith("# 1.3.0 (March 5, 2024)\n\nnotes\n\n")
        assert text.endswith("# 1.2.3 (old)\n\nold\n\n\n")


class TestPublish:
    def test_rejected_otp_prompts_again(self, tmp_path: Path, runner: FakeRunner) -> None:
        attempts: list[list[str]] = []

        def respond(cmd: list[str]) -> object:
            attempts.append(cmd)
            if len(attempts) == 1:
                return fail(cmd, f"npm ERR! {OTP_RETRY_MARKER}")
            return "+ @acme/a@1.2.4"

        runner.on("npm", "publish", then=respond)
        env = _env(tmp_path, "111111", "222222")
        ctx = _ctx(tmp_path, PUBLISHED)

        assert tasks.publish_package(env, ctx) == Ok(None)

        assert [a[-1] for a in attempts] == ["--otp=111111", "--otp=222222"]
        assert isinstance(env.console, MockConsole)
        assert env.console.find("one-time password rejected")

    def test_publish_failure_is_recorded(self, tmp_path: Path, runner: FakeRunner) -> None:
        runner.on("npm", "publish", then=fail(["npm", "publish"], "E402 payment required"))
        ctx = _ctx(tmp_path, PUBLISHED)

        result = tasks.publish_package(_env(tmp_path, "1"), ctx)

        assert isinstance(result, Err)
        assert result.error.kind == "publish_failed"
        assert ctx.publish_error == result.error

    def test_prerelease_publishes_under_next(self, tmp_path: Path, runner: FakeRunner) -> None:
        ctx = _ctx(tmp_path, PUBLISHED, is_prerelease=True)

        tasks.publish_package(_env(tmp_path, "1"), ctx)

        assert runner.calls == [["npm", "publish", "--otp=1", "--tag", "next"]]


class TestTagging:
    def test_tag_recorded_before_creation(self, tmp_path: Path, runner: FakeRunner) -> None:
        runner.on("tag", "-a", then=fail(["git", "tag"], "cannot lock ref"))
        ctx = _ctx(tmp_path, PUBLISHED)
        ctx.set_new_version("1.3.0")

        result = tasks.tag_release(_env(tmp_path), ctx)

        assert isinstance(result, Err)
        assert ctx.new_tag == "a-v1.3.0"

    def test_github_release_needs_credentials(self, tmp_path: Path) -> None:
        ctx = _ctx(tmp_path, PUBLISHED)
        ctx.new_tag = "a-v1.3.0"

        result = tasks.create_github_release(_env(tmp_path), ctx)

        assert isinstance(result, Err)
        assert result.error.kind == "not_runnable"


def test_build_skipped_for_configuration_packages(tmp_path: Path, runner: FakeRunner) -> None:
    path = make_package(tmp_path, "configuration-eslint", {"name": "c", "version": "1.0.0"})
    ctx = ReleaseContext(package=read_package(path).unwrap(), is_prerelease=False)

    assert tasks.run_build(_env(tmp_path), ctx) == Ok(None)
    assert runner.calls == []


class TestNewVersionIsSetOnce:
    def test_second_assignment_raises(self, tmp_path: Path) -> None:
        ctx = _ctx(tmp_path, PUBLISHED)
        ctx.set_new_version("1.3.0")

        with pytest.raises(AssertionError, match="already set"):
            ctx.set_new_version("1.4.0")

        assert ctx.package.new_version == "1.3.0"

    def test_bump_after_first_publish_version_raises(
        self, tmp_path: Path, runner: FakeRunner
    ) -> None:
        runner.on("npm", "--quiet", "version", then="v1.0.1")
        env = _env(tmp_path)
        ctx = _ctx(tmp_path, UNPUBLISHED)
        ctx.increment = "patch"

        assert tasks.read_version(env, ctx) == Ok(None)
        with pytest.raises(AssertionError, match="already set"):
            tasks.update_version(env, ctx)

        assert ctx.package.new_version == "1.0.0"

    def test_double_assignment_rolls_back_the_run(
        self, tmp_path: Path, runner: FakeRunner
    ) -> None:
        runner.on("npm", "--quiet", "version", then="v1.0.1")
        env = _env(tmp_path)
        ctx = _ctx(tmp_path, UNPUBLISHED)
        ctx.increment = "patch"
        rolled_back: list[str] = []

        def rollback(context: PipelineContext) -> None:
            rolled_back.append(context.title)

        def build() -> Ok[Pipeline[ReleaseContext]]:
            steps = [
                Task("Get version", partial(tasks.read_version, env)),
                Task("Update version", partial(tasks.update_version, env)),
            ]
            return Ok(Pipeline(ctx, steps, console=env.console))

        with pytest.raises(AssertionError, match="already set"):
            run_pipelines(
                [PipelinePlan(title=ctx.title, build=build)],
                rollback=rollback,
                console=MockConsole(),
            )

        assert rolled_back == [ctx.title]
