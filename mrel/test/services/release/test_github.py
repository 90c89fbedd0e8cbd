"""Release host client and the scoped credential lifecycle."""

from __future__ import annotations

import pytest

from mrel.core.result import Err, Ok
from mrel.output.console import MockConsole
from mrel.output.prompt import ScriptedPrompt
from mrel.platform.http import MockHttpClient
from mrel.services.release.github import (
    GitHubClient,
    GitHubCredentials,
    github_credentials,
    prompt_credentials,
)
from mrel.services.release.model import CommitAuthor

API = "https://api.github.com"
AUTH = f"{API}/authorizations"


def _client(http: MockHttpClient) -> GitHubClient:
    return GitHubClient(http, api_url=API, slug="acme/tools", user_agent="mrel-test")


class TestClient:
    def test_issue_token(self) -> None:
        http = MockHttpClient()
        http.set_json("POST", AUTH, 201, {"token": "t0k", "id": 99})

        result = _client(http).issue_token(username="u", password="p", otp="123", note="n")

        assert result == Ok(GitHubCredentials(token="t0k", token_id=99, username="u", password="p"))
        call = http.calls[0]
        assert call.headers["X-GitHub-OTP"] == "123"
        assert call.auth is not None and call.auth.user == "u"

    def test_non_2xx_surfaces_host_message(self) -> None:
        http = MockHttpClient()
        http.set_json("POST", AUTH, 401, {"message": "Bad credentials"})

        result = _client(http).issue_token(username="u", password="p", otp="1", note="n")

        assert isinstance(result, Err)
        assert result.error.status == 401
        assert result.error.message == "Bad credentials"

    def test_create_release(self) -> None:
        http = MockHttpClient()
        url = f"{API}/repos/acme/tools/releases"
        http.set_json("POST", url, 201, {"html_url": "https://github.com/acme/tools/r/1"})
        creds = GitHubCredentials(token="t0k")

        result = _client(http).create_release(creds, tag="a-v1.0.0", body="notes")

        assert result == Ok("https://github.com/acme/tools/r/1")
        assert http.calls[0].json_body == {
            "body": "notes",
            "name": "a-v1.0.0",
            "tag_name": "a-v1.0.0",
        }
        assert http.calls[0].headers["Authorization"] == "token t0k"

    def test_commit_author_prefers_profile_name(self) -> None:
        http = MockHttpClient()
        http.set_json(
            "GET",
            f"{API}/repos/acme/tools/commits/abc",
            200,
            {"author": {"login": "ann"}, "commit": {"author": {"name": "local ann"}}},
        )
        http.set_json(
            "GET", f"{API}/users/ann", 200, {"name": "Ann A.", "html_url": "https://github.com/ann"}
        )

        author = _client(http).commit_author(GitHubCredentials(token="t"), "abc")

        assert author == CommitAuthor(name="Ann A.", profile_url="https://github.com/ann")

    def test_commit_author_unresolvable(self) -> None:
        assert _client(MockHttpClient()).commit_author(GitHubCredentials(token="t"), "abc") is None


class TestCredentials:
    def test_prompt_retries_then_gives_up(self) -> None:
        http = MockHttpClient()
        http.set_json("POST", AUTH, 401, {"message": "Bad credentials"})
        prompt = ScriptedPrompt.of(["u", "p", "1"] * 3)
        console = MockConsole()

        result = prompt_credentials(_client(http), prompt=prompt, console=console)

        assert isinstance(result, Err)
        assert len(http.urls("POST")) == 3
        assert console.has_error()

    def test_issued_token_revoked_and_cleared(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("MREL_GITHUB_TOKEN", raising=False)
        http = MockHttpClient()
        http.set_json("POST", AUTH, 201, {"token": "t0k", "id": 7})
        http.set_text("DELETE", f"{AUTH}/7", 204, "")
        prompt = ScriptedPrompt.of(["u", "p", "111", "222"])

        with github_credentials(
            _client(http), prompt=prompt, console=MockConsole(), token_env="MREL_GITHUB_TOKEN"
        ) as issued:
            assert isinstance(issued, Ok)
            creds = issued.value
            assert creds.token == "t0k"

        assert http.urls("DELETE") == [f"{AUTH}/7"]
        assert http.calls[-1].headers["X-GitHub-OTP"] == "222"
        assert creds.token == "" and creds.password == ""

    def test_cleared_even_when_body_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("MREL_GITHUB_TOKEN", raising=False)
        http = MockHttpClient()
        http.set_json("POST", AUTH, 201, {"token": "t0k", "id": 7})
        prompt = ScriptedPrompt.of(["u", "p", "111", "222"])
        console = MockConsole()
        holder: list[GitHubCredentials] = []

        with pytest.raises(RuntimeError):
            with github_credentials(
                _client(http), prompt=prompt, console=console, token_env="MREL_GITHUB_TOKEN"
            ) as issued:
                holder.append(issued.unwrap())
                raise RuntimeError("pipeline crashed")

        # The DELETE is unregistered (404), which is only a warning.
        assert console.find("failed to delete GitHub token")
        assert holder[0].token == ""

    def test_preissued_token_is_not_revoked(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MREL_GITHUB_TOKEN", "env-token")
        http = MockHttpClient()

        with github_credentials(
            _client(http),
            prompt=ScriptedPrompt(),
            console=MockConsole(),
            token_env="MREL_GITHUB_TOKEN",
        ) as issued:
            assert issued.unwrap().token == "env-token"

        assert http.calls == []
