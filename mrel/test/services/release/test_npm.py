from __future__ import annotations

from pathlib import Path

import pytest

from mrel.core.result import Err, Ok
from mrel.services.release import npm
from mrel.services.release.npm import OTP_RETRY_MARKER, PublishOtpRetry
from mrel.test.fakes import FakeRunner, fail


@pytest.fixture
def runner(monkeypatch: pytest.MonkeyPatch) -> FakeRunner:
    fake = FakeRunner()
    monkeypatch.setattr(npm, "run_process", fake)
    return fake


def test_bump_version_strips_leading_v(tmp_path: Path, runner: FakeRunner) -> None:
    runner.on("npm", "--quiet", "version", then="> lifecycle\nv1.3.0\n")

    assert npm.bump_version(tmp_path, "minor") == Ok("1.3.0")
    assert runner.calls == [["npm", "--quiet", "version", "minor", "--no-git-tag-version"]]


def test_publish_first_release_is_public(tmp_path: Path, runner: FakeRunner) -> None:
    npm.publish(tmp_path, otp="123456", access="public")

    assert runner.calls == [["npm", "publish", "--access", "public", "--otp=123456"]]


def test_publish_prerelease_uses_dist_tag(tmp_path: Path, runner: FakeRunner) -> None:
    npm.publish(tmp_path, otp="1", dist_tag="next")

    assert runner.calls == [["npm", "publish", "--otp=1", "--tag", "next"]]


def test_rejected_otp_is_distinguished(tmp_path: Path, runner: FakeRunner) -> None:
    stderr = f"npm ERR! If {OTP_RETRY_MARKER} it or it expired"
    runner.on("npm", "publish", then=fail(["npm", "publish"], stderr))

    result = npm.publish(tmp_path, otp="bad")

    assert result == Err(PublishOtpRetry(stderr=stderr))


def test_other_publish_failures_pass_through(tmp_path: Path, runner: FakeRunner) -> None:
    runner.on("npm", "publish", then=fail(["npm", "publish"], "E403 forbidden"))

    result = npm.publish(tmp_path, otp="1")

    assert isinstance(result, Err)
    assert not isinstance(result.error, PublishOtpRetry)
    assert result.error.stderr == "E403 forbidden"
