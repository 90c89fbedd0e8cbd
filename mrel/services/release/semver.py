from __future__ import annotations

import re
from dataclasses import dataclass

from mrel.services.release.model import SemverIncrement


_VERSION_RE = re.compile(
    r"^v?(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+[0-9A-Za-z-.]+)?$"
)


@dataclass(frozen=True, slots=True)
class SemVer:
    major: int
    minor: int
    patch: int
    prerelease: tuple[str, ...] = ()

    def __str__(self) -> str:
        base = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            return f"{base}-{'.'.join(self.prerelease)}"
        return base

    @property
    def is_prerelease(self) -> bool:
        return bool(self.prerelease)

    def bump(self, kind: SemverIncrement) -> SemVer:
        match kind:
            case "major":
                return SemVer(self.major + 1, 0, 0)
            case "minor":
                return SemVer(self.major, self.minor + 1, 0)
            case "patch":
                return SemVer(self.major, self.minor, self.patch + 1)
            case _:
                raise AssertionError(f"unexpected bump kind: {kind}")

    def bump_pre(self, kind: SemverIncrement, identifier: str) -> SemVer:
        """``pre<kind>`` increment: bump, then start the ``<identifier>.0`` series."""
        base = self.bump(kind)
        return SemVer(base.major, base.minor, base.patch, (identifier, "0"))


def parse_version(text: str) -> SemVer | None:
    m = _VERSION_RE.match(text.strip())
    if m is None:
        return None
    pre = tuple(m.group(4).split(".")) if m.group(4) else ()
    return SemVer(int(m.group(1)), int(m.group(2)), int(m.group(3)), pre)


def version_diff(old: str, new: str) -> str | None:
    """Classify the change between two versions.

    Returns ``major``/``minor``/``patch`` (prefixed ``pre`` when the new
    version is a prerelease), ``prerelease`` when only the prerelease part
    moved, or None when the versions are equal or unparsable.
    """
    a = parse_version(old)
    b = parse_version(new)
    if a is None or b is None or a == b:
        return None

    prefix = "pre" if b.is_prerelease else ""
    if a.major != b.major:
        return f"{prefix}major"
    if a.minor != b.minor:
        return f"{prefix}minor"
    if a.patch != b.patch:
        return f"{prefix}patch"
    return "prerelease"


def is_breaking_change(old: str | None, new: str | None) -> bool:
    if old is None or new is None:
        return False
    return version_diff(old, new) in {"major", "premajor"}


def caret_range(version: str) -> str:
    return f"^{version}"
