"""Workspace package discovery and release ordering.

Release order matters: a package is released only after every workspace
package it depends on, so dependents pick up the freshly published versions.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from fnmatch import fnmatchcase
from pathlib import Path

from mrel.core.config import PackagesConfig
from mrel.core.result import Err, Ok, Result
from mrel.core.structured import as_str_dict, get_bool, get_str
from mrel.services.release.errors import ReleaseError
from mrel.services.release.model import DependencyKind, Package

MANIFEST_FILE = "package.json"


def read_manifest(path: Path) -> Result[dict[str, object], ReleaseError]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        return Err(ReleaseError(kind="io_failed", message=f"failed to read {path}: {e}"))

    try:
        obj: object = json.loads(text)
    except json.JSONDecodeError as e:
        return Err(
            ReleaseError(kind="invalid_manifest", message=f"invalid JSON in {path}: {e}")
        )

    data = as_str_dict(obj)
    if data is None:
        return Err(ReleaseError(kind="invalid_manifest", message=f"{path} is not a JSON object"))
    return Ok(data)


def read_package(package_path: Path) -> Result[Package, ReleaseError]:
    manifest = read_manifest(package_path / MANIFEST_FILE)
    if isinstance(manifest, Err):
        return manifest

    data = manifest.value
    name = get_str(data, "name")
    if name is None:
        return Err(
            ReleaseError(
                kind="invalid_manifest",
                message=f"missing name in {package_path / MANIFEST_FILE}",
            )
        )

    return Ok(
        Package(
            name=name,
            path=package_path,
            manifest=data,
            is_unpublished=get_bool(data, "private") is True,
            current_version=get_str(data, "version"),
        )
    )


def discover_packages(packages_dir: Path) -> list[Path]:
    """Package directories (those holding a manifest), sorted by name."""
    if not packages_dir.is_dir():
        return []
    return sorted(
        (p for p in packages_dir.iterdir() if p.is_dir() and (p / MANIFEST_FILE).is_file()),
        key=lambda p: p.name,
    )


def _is_glob(pattern: str) -> bool:
    return any(ch in pattern for ch in "*?[")


def order_by_patterns(names: Sequence[str], order: Sequence[str]) -> list[str]:
    """Order names by a list of exact names and globs.

    Exact names keep their listed position; a glob collects, alphabetically,
    the names it matches that are not listed exactly anywhere and not already
    collected by an earlier glob. Names matching nothing are dropped.
    """
    available = sorted(set(names))
    exact = {p for p in order if not _is_glob(p)}
    taken: set[str] = set()
    out: list[str] = []

    for pattern in order:
        if not _is_glob(pattern):
            if pattern in available and pattern not in taken:
                out.append(pattern)
                taken.add(pattern)
            continue
        for name in available:
            if name in taken or name in exact:
                continue
            if fnmatchcase(name, pattern):
                out.append(name)
                taken.add(name)

    return out


def _workspace_edges(packages: Sequence[Package]) -> dict[str, set[str]]:
    """Map each package dir name to the dir names of the workspace packages it depends on."""
    by_name = {p.name: p.dir_name for p in packages}
    edges: dict[str, set[str]] = {p.dir_name: set() for p in packages}
    for pkg in packages:
        for kind in DependencyKind:
            for dep_name, dep_dir in by_name.items():
                if dep_dir != pkg.dir_name and pkg.dependency_range(kind, dep_name) is not None:
                    edges[pkg.dir_name].add(dep_dir)
    return edges


def topological_order(packages: Sequence[Package]) -> Result[list[str], ReleaseError]:
    """Dependencies first, alphabetical within a level (Kahn's algorithm)."""
    edges = _workspace_edges(packages)
    remaining = {name: set(deps) for name, deps in edges.items()}
    out: list[str] = []

    while remaining:
        ready = sorted(name for name, deps in remaining.items() if not deps)
        if not ready:
            cycle = ", ".join(sorted(remaining))
            return Err(
                ReleaseError(
                    kind="invalid_input",
                    message="dependency cycle between workspace packages",
                    hint=cycle,
                )
            )
        for name in ready:
            out.append(name)
            del remaining[name]
        for deps in remaining.values():
            deps.difference_update(ready)

    return Ok(out)


def release_order(packages_dir: Path, config: PackagesConfig) -> Result[list[Path], ReleaseError]:
    """Package directories in the order they must be released."""
    dirs = [d for d in discover_packages(packages_dir) if d.name not in set(config.exclude)]
    by_name = {d.name: d for d in dirs}

    if config.order:
        return Ok([by_name[n] for n in order_by_patterns(list(by_name), config.order)])

    packages: list[Package] = []
    for d in dirs:
        pkg = read_package(d)
        if isinstance(pkg, Err):
            return pkg
        packages.append(pkg.value)

    ordered = topological_order(packages)
    if isinstance(ordered, Err):
        return ordered
    return Ok([by_name[n] for n in ordered.value])
