"""Typed configuration loading and access.

This module provides dataclasses for the optional ``release.toml`` file at the
workspace root. Every field has a default so a workspace without the file
still releases with sensible settings.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .result import Err, Ok, Result
from .structured import StrDict, as_str_dict, get_int, get_list, get_str, get_str_list, get_table

__all__ = [
    "AssetConfig",
    "ConfigError",
    "GitHubConfig",
    "LockfileConfig",
    "PackagesConfig",
    "ReleaseConfig",
    "RepositoryConfig",
    "CONFIG_FILE_NAME",
    "load_config",
    "load_config_or_default",
]

CONFIG_FILE_NAME = "release.toml"

DEFAULT_REPOSITORY_SLUG = "webhintio/hint"
DEFAULT_BRANCH = "main"
DEFAULT_PACKAGES_DIR = "packages"
DEFAULT_API_URL = "https://api.github.com"
DEFAULT_USER_AGENT = "mrel-release"


@dataclass(frozen=True, slots=True)
class ConfigError:
    """Error when config cannot be loaded or parsed."""

    message: str
    path: Path | None = None


@dataclass(frozen=True, slots=True)
class RepositoryConfig:
    """Where releases are pushed and published."""

    slug: str = DEFAULT_REPOSITORY_SLUG
    branch: str = DEFAULT_BRANCH
    # Remote name override; by default the branch's configured remote is used.
    remote: str | None = None

    @property
    def url(self) -> str:
        return f"https://github.com/{self.slug}"


@dataclass(frozen=True, slots=True)
class PackagesConfig:
    """Package discovery, ordering and per-package script settings."""

    dir: str = DEFAULT_PACKAGES_DIR
    order: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()
    no_build_prefixes: tuple[str, ...] = ("configuration-",)
    test_script: str = "test-release"
    build_script: str = "build-release"
    prerelease_id: str = "beta"
    script_retries: int = 2


@dataclass(frozen=True, slots=True)
class GitHubConfig:
    api_url: str = DEFAULT_API_URL
    user_agent: str = DEFAULT_USER_AGENT
    # Name of an env var holding a pre-issued token. When it is set, no token
    # is issued or revoked during the run.
    token_env: str = "MREL_GITHUB_TOKEN"


@dataclass(frozen=True, slots=True)
class LockfileConfig:
    path: str = "yarn.lock"
    command: tuple[str, ...] = ("yarn",)


@dataclass(frozen=True, slots=True)
class AssetConfig:
    """A file inside a package refreshed from a URL before the package is released."""

    package: str
    url: str
    path: str


@dataclass(frozen=True, slots=True)
class ReleaseConfig:
    """Main configuration container."""

    repository: RepositoryConfig = field(default_factory=RepositoryConfig)
    packages: PackagesConfig = field(default_factory=PackagesConfig)
    github: GitHubConfig = field(default_factory=GitHubConfig)
    lockfile: LockfileConfig = field(default_factory=LockfileConfig)
    assets: tuple[AssetConfig, ...] = ()

    def assets_for(self, package_dir_name: str) -> tuple[AssetConfig, ...]:
        return tuple(a for a in self.assets if a.package == package_dir_name)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ReleaseConfig:
        """Create ReleaseConfig from a mapping (parsed TOML).

        Raises:
            ValueError: If a present value has the wrong shape.
        """
        repository: StrDict = get_table(data, "repository") or {}
        packages: StrDict = get_table(data, "packages") or {}
        github: StrDict = get_table(data, "github") or {}
        lockfile: StrDict = get_table(data, "lockfile") or {}

        defaults = PackagesConfig()
        retries = get_int(packages, "script_retries")
        if retries is not None and retries < 0:
            raise ValueError("packages.script_retries must be >= 0")

        return cls(
            repository=RepositoryConfig(
                slug=_slug(get_str(repository, "slug") or DEFAULT_REPOSITORY_SLUG),
                branch=get_str(repository, "branch") or DEFAULT_BRANCH,
                remote=get_str(repository, "remote"),
            ),
            packages=PackagesConfig(
                dir=get_str(packages, "dir") or DEFAULT_PACKAGES_DIR,
                order=_str_tuple(packages, "order", defaults.order),
                exclude=_str_tuple(packages, "exclude", defaults.exclude),
                no_build_prefixes=_str_tuple(
                    packages, "no_build_prefixes", defaults.no_build_prefixes
                ),
                test_script=get_str(packages, "test_script") or defaults.test_script,
                build_script=get_str(packages, "build_script") or defaults.build_script,
                prerelease_id=get_str(packages, "prerelease_id") or defaults.prerelease_id,
                script_retries=defaults.script_retries if retries is None else retries,
            ),
            github=GitHubConfig(
                api_url=(get_str(github, "api_url") or DEFAULT_API_URL).rstrip("/"),
                user_agent=get_str(github, "user_agent") or DEFAULT_USER_AGENT,
                token_env=get_str(github, "token_env") or GitHubConfig().token_env,
            ),
            lockfile=LockfileConfig(
                path=get_str(lockfile, "path") or LockfileConfig().path,
                command=_str_tuple(lockfile, "command", LockfileConfig().command),
            ),
            assets=_assets(data),
        )


def _slug(value: str) -> str:
    parts = value.split("/")
    if len(parts) != 2 or not all(parts):
        raise ValueError(f"repository.slug must be owner/name: {value}")
    return value


def _str_tuple(table: StrDict, key: str, default: tuple[str, ...]) -> tuple[str, ...]:
    if key not in table:
        return default
    items = get_str_list(table, key)
    if items is None:
        raise ValueError(f"{key} must be a list of non-empty strings")
    return tuple(items)


def _assets(data: Mapping[str, object]) -> tuple[AssetConfig, ...]:
    raw = get_list(data, "assets")
    if raw is None:
        return ()

    out: list[AssetConfig] = []
    for item in raw:
        table = as_str_dict(item)
        if table is None:
            raise ValueError("assets entries must be tables")
        package = get_str(table, "package")
        url = get_str(table, "url")
        path = get_str(table, "path")
        if package is None or url is None or path is None:
            raise ValueError("assets entries need package, url and path")
        out.append(AssetConfig(package=package, url=url, path=path))
    return tuple(out)


def _parse_toml(path: Path) -> Result[StrDict, ConfigError]:
    """Parse a TOML file, handling read and parse errors."""
    import tomllib

    try:
        content = path.read_bytes()
        data_obj: object = tomllib.loads(content.decode("utf-8"))
        data = as_str_dict(data_obj)
        if data is None:
            return Err(ConfigError("Config root must be a TOML table", path=path))
        return Ok(data)
    except FileNotFoundError:
        return Err(ConfigError(f"Config file not found: {path}", path=path))
    except PermissionError:
        return Err(ConfigError(f"Permission denied reading: {path}", path=path))
    except tomllib.TOMLDecodeError as e:
        return Err(ConfigError(f"Invalid TOML syntax: {e}", path=path))
    except UnicodeDecodeError as e:
        return Err(ConfigError(f"Error reading config: {e}", path=path))


def load_config(path: Path) -> Result[ReleaseConfig, ConfigError]:
    """Load and parse configuration from a TOML file.

    Args:
        path: Path to release.toml

    Returns:
        Ok(ReleaseConfig) on success, Err(ConfigError) on failure
    """
    result = _parse_toml(path)
    if isinstance(result, Err):
        return result

    try:
        return Ok(ReleaseConfig.from_dict(result.value))
    except (KeyError, TypeError, ValueError) as e:
        return Err(ConfigError(f"Invalid config structure: {e}", path=path))


def load_config_or_default(workspace_root: Path) -> Result[ReleaseConfig, ConfigError]:
    """Load ``release.toml`` from the workspace, or defaults when the file is absent.

    A file that exists but cannot be parsed is still an error.
    """
    path = workspace_root / CONFIG_FILE_NAME
    if not path.exists():
        return Ok(ReleaseConfig())
    return load_config(path)
