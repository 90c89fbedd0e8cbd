"""Tests for release.toml loading."""

from __future__ import annotations

from pathlib import Path

from mrel.core.config import (
    CONFIG_FILE_NAME,
    AssetConfig,
    ReleaseConfig,
    load_config,
    load_config_or_default,
)
from mrel.core.result import Err, Ok


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / CONFIG_FILE_NAME
    path.write_text(text, encoding="utf-8")
    return path


class TestDefaults:
    def test_missing_file_yields_defaults(self, tmp_path: Path) -> None:
        result = load_config_or_default(tmp_path)

        assert isinstance(result, Ok)
        assert result.value == ReleaseConfig()

    def test_default_values(self) -> None:
        config = ReleaseConfig()
        assert config.repository.branch == "main"
        assert config.packages.dir == "packages"
        assert config.packages.no_build_prefixes == ("configuration-",)
        assert config.packages.script_retries == 2
        assert config.packages.prerelease_id == "beta"
        assert config.lockfile.command == ("yarn",)
        assert config.repository.url == f"https://github.com/{config.repository.slug}"


class TestLoad:
    def test_full_file(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            """
[repository]
slug = "acme/tools"
branch = "release"
remote = "upstream"

[packages]
dir = "libs"
order = ["core", "utils-*"]
exclude = ["sandbox"]
no_build_prefixes = []
script_retries = 0

[github]
api_url = "https://ghe.example.com/api/v3/"
token_env = "ACME_TOKEN"

[lockfile]
path = "package-lock.json"
command = ["npm", "install"]

[[assets]]
package = "core"
url = "https://example.com/schema.json"
path = "src/schema.json"
""",
        )

        result = load_config(path)

        assert isinstance(result, Ok)
        config = result.value
        assert config.repository.slug == "acme/tools"
        assert config.repository.branch == "release"
        assert config.repository.remote == "upstream"
        assert config.packages.dir == "libs"
        assert config.packages.order == ("core", "utils-*")
        assert config.packages.exclude == ("sandbox",)
        assert config.packages.no_build_prefixes == ()
        assert config.packages.script_retries == 0
        assert config.github.api_url == "https://ghe.example.com/api/v3"
        assert config.github.token_env == "ACME_TOKEN"
        assert config.lockfile.command == ("npm", "install")
        assert config.assets_for("core") == (
            AssetConfig(
                package="core", url="https://example.com/schema.json", path="src/schema.json"
            ),
        )
        assert config.assets_for("utils-a") == ()

    def test_invalid_toml_is_error(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "[repository\n")

        result = load_config(path)

        assert isinstance(result, Err)
        assert "Invalid TOML" in result.error.message

    def test_bad_slug_is_error(self, tmp_path: Path) -> None:
        path = _write(tmp_path, '[repository]\nslug = "no-owner"\n')

        result = load_config(path)

        assert isinstance(result, Err)
        assert "owner/name" in result.error.message

    def test_negative_retries_is_error(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "[packages]\nscript_retries = -1\n")

        assert isinstance(load_config(path), Err)

    def test_incomplete_asset_is_error(self, tmp_path: Path) -> None:
        path = _write(tmp_path, '[[assets]]\npackage = "core"\n')

        assert isinstance(load_config(path), Err)

    def test_malformed_file_in_workspace_is_error(self, tmp_path: Path) -> None:
        _write(tmp_path, "not = [valid")

        assert isinstance(load_config_or_default(tmp_path), Err)
