from __future__ import annotations

from pathlib import Path

from mrel.core.config import AssetConfig
from mrel.core.result import Err, Ok, Result
from mrel.git.repository import Repository
from mrel.platform.files import atomic_write_text
from mrel.platform.http import HttpClient
from mrel.services.release.errors import ReleaseError


def download_text(http: HttpClient, url: str) -> Result[str, ReleaseError]:
    result = http.request("GET", url)
    if isinstance(result, Err):
        return Err(ReleaseError.from_network(result.error, f"failed to download {url}"))

    response = result.value
    if not response.ok:
        return Err(
            ReleaseError(
                kind="network_failed",
                message=f"failed to download {url} (HTTP {response.status})",
                hint=response.message() or None,
            )
        )
    return Ok(response.text)


def refresh_asset(
    *,
    http: HttpClient,
    repo: Repository,
    package_path: Path,
    asset: AssetConfig,
) -> Result[bool, ReleaseError]:
    """Download an asset into the package and commit it if it changed.

    Returns Ok(True) when a commit was made.
    """
    body = download_text(http, asset.url)
    if isinstance(body, Err):
        return body

    target = package_path / asset.path
    try:
        atomic_write_text(target, body.value)
    except OSError as e:
        return Err(ReleaseError(kind="io_failed", message=f"failed to write {target}: {e}"))

    relative = repo.relative(target)

    # Only the asset may end up in this commit.
    unstaged = repo.unstage_all()
    if isinstance(unstaged, Err):
        return Err(ReleaseError.from_git(unstaged.error))
    added = repo.add([relative])
    if isinstance(added, Err):
        return Err(ReleaseError.from_git(added.error))

    diff = repo.diff_cached(relative)
    if isinstance(diff, Err):
        return Err(ReleaseError.from_git(diff.error))
    if not diff.value:
        return Ok(False)

    committed = repo.commit(f"Update: `{target.name}`")
    if isinstance(committed, Err):
        return Err(ReleaseError.from_git(committed.error))
    return Ok(True)
