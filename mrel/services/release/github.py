from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime

from mrel.core.result import Err, Ok, Result
from mrel.core.structured import as_str_dict, get_int, get_str, get_table
from mrel.output.console import ConsoleProtocol
from mrel.output.prompt import PromptProtocol
from mrel.platform.http import BasicAuth, HttpClient, HttpResponse, NetworkError
from mrel.services.release.model import CommitAuthor

TOKEN_ISSUE_ATTEMPTS = 3


@dataclass(slots=True)
class GitHubCredentials:
    """Short-lived credentials owned by the release driver.

    ``token_id`` is None for a pre-issued token, which is then never revoked.
    """

    token: str
    token_id: int | None = None
    username: str = ""
    password: str = ""

    @property
    def revocable(self) -> bool:
        return self.token_id is not None

    def clear(self) -> None:
        self.token = ""
        self.token_id = None
        self.username = ""
        self.password = ""


class GitHubClient:
    """Thin client for the release host endpoints the release needs."""

    def __init__(self, http: HttpClient, *, api_url: str, slug: str, user_agent: str) -> None:
        self._http = http
        self.api_url = api_url.rstrip("/")
        self.slug = slug
        self.user_agent = user_agent

    def _headers(
        self, credentials: GitHubCredentials | None = None, otp: str | None = None
    ) -> dict[str, str]:
        headers = {"User-Agent": self.user_agent, "Accept": "application/vnd.github+json"}
        if credentials is not None and credentials.token:
            headers["Authorization"] = f"token {credentials.token}"
        if otp:
            headers["X-GitHub-OTP"] = otp
        return headers

    def _expect(
        self, result: Result[HttpResponse, NetworkError], url: str, status: int
    ) -> Result[HttpResponse, NetworkError]:
        if isinstance(result, Err):
            return result
        response = result.value
        if response.status != status:
            return Err(NetworkError(url=url, status=response.status, message=response.message()))
        return result

    def issue_token(
        self, *, username: str, password: str, otp: str, note: str
    ) -> Result[GitHubCredentials, NetworkError]:
        url = f"{self.api_url}/authorizations"
        result = self._expect(
            self._http.request(
                "POST",
                url,
                headers=self._headers(otp=otp),
                json_body={"note": note, "scopes": ["repo"]},
                auth=BasicAuth(user=username, password=password),
            ),
            url,
            201,
        )
        if isinstance(result, Err):
            return result

        data = as_str_dict(result.value.json())
        token = get_str(data, "token") if data is not None else None
        token_id = get_int(data, "id") if data is not None else None
        if token is None or token_id is None:
            return Err(NetworkError(url=url, status=201, message="token missing from response"))

        return Ok(
            GitHubCredentials(token=token, token_id=token_id, username=username, password=password)
        )

    def revoke_token(
        self, credentials: GitHubCredentials, *, otp: str
    ) -> Result[None, NetworkError]:
        url = f"{self.api_url}/authorizations/{credentials.token_id}"
        result = self._expect(
            self._http.request(
                "DELETE",
                url,
                headers=self._headers(otp=otp),
                auth=BasicAuth(user=credentials.username, password=credentials.password),
            ),
            url,
            204,
        )
        return result.map(lambda _: None)

    def create_release(
        self, credentials: GitHubCredentials, *, tag: str, body: str
    ) -> Result[str, NetworkError]:
        """Create a release for ``tag``; returns its html URL (may be empty)."""
        url = f"{self.api_url}/repos/{self.slug}/releases"
        result = self._expect(
            self._http.request(
                "POST",
                url,
                headers=self._headers(credentials),
                json_body={"body": body, "name": tag, "tag_name": tag},
            ),
            url,
            201,
        )
        if isinstance(result, Err):
            return result
        data = as_str_dict(result.value.json()) or {}
        return Ok(get_str(data, "html_url") or "")

    def commit_author(self, credentials: GitHubCredentials, sha: str) -> CommitAuthor | None:
        """Display name and profile of a commit's author, None when unresolvable.

        The commit payload's author name is whatever the committer configured
        locally, so the user profile is preferred.
        """
        commit_url = f"{self.api_url}/repos/{self.slug}/commits/{sha}"
        commit = self._expect(
            self._http.request("GET", commit_url, headers=self._headers(credentials)),
            commit_url,
            200,
        )
        if isinstance(commit, Err):
            return None

        commit_data = as_str_dict(commit.value.json())
        if commit_data is None:
            return None
        author = get_table(commit_data, "author")
        login = get_str(author, "login") if author is not None else None
        if login is None:
            return None

        git_commit = get_table(commit_data, "commit") or {}
        git_author = get_table(git_commit, "author") or {}
        fallback_name = get_str(git_author, "name")

        user_url = f"{self.api_url}/users/{login}"
        user = self._expect(
            self._http.request("GET", user_url, headers=self._headers(credentials)),
            user_url,
            200,
        )
        if isinstance(user, Err):
            return None
        user_data = as_str_dict(user.value.json())
        if user_data is None:
            return None

        name = get_str(user_data, "name") or fallback_name
        profile = get_str(user_data, "html_url") or f"https://github.com/{login}"
        if name is None:
            return None
        return CommitAuthor(name=name, profile_url=profile)


def prompt_credentials(
    client: GitHubClient,
    *,
    prompt: PromptProtocol,
    console: ConsoleProtocol,
    attempts: int = TOKEN_ISSUE_ATTEMPTS,
) -> Result[GitHubCredentials, NetworkError]:
    """Ask for username/password/OTP and issue a token, re-prompting on failure."""
    console.header("Create GitHub token")
    last: NetworkError | None = None
    for _ in range(max(1, attempts)):
        username = prompt.ask("GitHub username")
        password = prompt.ask("GitHub password", secret=True)
        otp = prompt.ask("GitHub OTP")
        result = client.issue_token(
            username=username,
            password=password,
            otp=otp,
            note=f"mrel release ({datetime.now().isoformat(timespec='seconds')})",
        )
        if isinstance(result, Ok):
            return result
        last = result.error
        console.error(last.message)

    assert last is not None
    return Err(last)


@contextmanager
def github_credentials(
    client: GitHubClient,
    *,
    prompt: PromptProtocol,
    console: ConsoleProtocol,
    token_env: str,
) -> Iterator[Result[GitHubCredentials, NetworkError]]:
    """Scope credentials to a release run.

    On exit, on every path, an issued token is revoked (failure is only a
    warning) and the credentials are cleared from memory.
    """
    preissued = os.environ.get(token_env, "").strip()
    if preissued:
        issued: Result[GitHubCredentials, NetworkError] = Ok(GitHubCredentials(token=preissued))
    else:
        issued = prompt_credentials(client, prompt=prompt, console=console)

    try:
        yield issued
    finally:
        if isinstance(issued, Ok):
            credentials = issued.value
            try:
                if credentials.revocable:
                    _revoke(client, credentials, prompt=prompt, console=console)
            finally:
                credentials.clear()


def _revoke(
    client: GitHubClient,
    credentials: GitHubCredentials,
    *,
    prompt: PromptProtocol,
    console: ConsoleProtocol,
) -> None:
    console.header("Delete GitHub token")
    otp = prompt.ask("GitHub OTP")
    revoked = client.revoke_token(credentials, otp=otp)
    if isinstance(revoked, Err):
        console.warning(
            f"failed to delete GitHub token {credentials.token_id}: {revoked.error.message}"
        )
