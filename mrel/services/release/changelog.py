"""Changelog and semver-increment derivation from commit history.

Commits are classified by the token before the first colon of their title
(``Fix: handle empty config`` has tag ``Fix``). Only a fixed set of tags is
user facing; everything else is kept on the commit but left out of the notes.

Author and issue enrichment is best effort: a failed author lookup only drops
the ``by ...`` part of a line.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date

from mrel.services.release.model import ChangelogSection, Commit, CommitAuthor, SemverIncrement

__all__ = [
    "ChangelogData",
    "CommitCategory",
    "CHANGELOG_SECTIONS",
    "RELEASE_TAGS",
    "derive_changelog",
    "format_changelog_entry",
    "format_release_date",
    "is_release_worthy",
    "latest_release_notes",
    "parse_commit",
    "render_commit",
]

AuthorLookup = Callable[[str], CommitAuthor | None]


@dataclass(frozen=True, slots=True)
class CommitCategory:
    title: str
    tags: frozenset[str]


# Order is significant: it is the order of sections in the notes.
BREAKING_SECTION = CommitCategory("Breaking Changes", frozenset({"Breaking"}))
FIXES_SECTION = CommitCategory("Bug fixes / Improvements", frozenset({"Docs", "Fix"}))
FEATURES_SECTION = CommitCategory("New features", frozenset({"New", "Update"}))
CHANGELOG_SECTIONS: tuple[CommitCategory, ...] = (
    BREAKING_SECTION,
    FIXES_SECTION,
    FEATURES_SECTION,
)

# `Docs` is user facing but only ships alongside one of these.
RELEASE_TAGS = frozenset({"Breaking", "Fix", "New", "Update"})

FIRST_RELEASE_NOTES = "✨"

_ISSUE_RE = re.compile(r"(?:Fix|Close)\s+#([0-9]+)", re.IGNORECASE)

_MONTHS = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)


@dataclass(frozen=True, slots=True)
class ChangelogData:
    release_notes: str
    increment: SemverIncrement
    sections: tuple[ChangelogSection, ...]


def parse_commit(sha: str, message: str) -> Commit:
    """Build a Commit from its full message (title line, then body)."""
    lines = message.splitlines() or [""]
    title = lines[0].strip()
    tag = title.split(":", 1)[0].strip()

    issues: list[str] = []
    for line in lines[1:]:
        for m in _ISSUE_RE.finditer(line):
            if m.group(1) not in issues:
                issues.append(m.group(1))

    return Commit(sha=sha, title=title, tag=tag, associated_issue_ids=tuple(issues))


def is_release_worthy(commits: Sequence[Commit]) -> bool:
    return any(c.tag in RELEASE_TAGS for c in commits)


def _join_human(items: Sequence[str]) -> str:
    if len(items) < 2:
        return "".join(items)
    return f"{', '.join(items[:-1])}, and {items[-1]}"


def render_commit(commit: Commit, *, repository_url: str, author: CommitAuthor | None) -> str:
    """Render one changelog line.

    Example:
        * [[`0123456789`](.../commit/0123...)] - Fix: x (by [`Ann`](...) / see also: [`#7`](...)).
    """
    line = (
        f"* [[`{commit.short_sha}`]({repository_url}/commit/{commit.sha})] - {commit.title}"
    )

    extra: list[str] = []
    if author is not None:
        extra.append(f"by [`{author.name}`]({author.profile_url})")
    if commit.associated_issue_ids:
        issues = [
            f"[`#{issue}`]({repository_url}/issues/{issue})"
            for issue in commit.associated_issue_ids
        ]
        extra.append(f"see also: {_join_human(issues)}")

    if extra:
        line = f"{line} ({' / '.join(extra)})"
    return f"{line}."


def _partition(commits: Sequence[Commit]) -> list[tuple[CommitCategory, list[Commit]]]:
    return [(cat, [c for c in commits if c.tag in cat.tags]) for cat in CHANGELOG_SECTIONS]


def _increment(partitioned: list[tuple[CommitCategory, list[Commit]]]) -> SemverIncrement:
    members = {cat: items for cat, items in partitioned}
    if members[BREAKING_SECTION]:
        return "major"
    if members[FEATURES_SECTION]:
        return "minor"
    return "patch"


def derive_changelog(
    commits: Sequence[Commit],
    *,
    repository_url: str,
    lookup_author: AuthorLookup | None = None,
) -> ChangelogData:
    """Build release notes and the semver increment for a commit set.

    Sections appear in fixed order and keep the input order of commits;
    empty sections are omitted.
    """
    partitioned = _partition(commits)

    sections: list[ChangelogSection] = []
    for cat, members in partitioned:
        if not members:
            continue
        lines = tuple(
            render_commit(
                c,
                repository_url=repository_url,
                author=lookup_author(c.sha) if lookup_author is not None else None,
            )
            for c in members
        )
        sections.append(ChangelogSection(category_title=cat.title, lines=lines))

    notes = "".join(f"{section.render()}\n" for section in sections)
    return ChangelogData(
        release_notes=notes,
        increment=_increment(partitioned),
        sections=tuple(sections),
    )


def format_release_date(day: date) -> str:
    return f"{_MONTHS[day.month - 1]} {day.day}, {day.year}"


def format_changelog_entry(version: str, notes: str, day: date) -> str:
    return f"# {version} ({format_release_date(day)})\n\n{notes}\n"


_LATEST_NOTES_RE = re.compile(r"#.*\r?\n\r?\n([\s\S]*?)\r?\n\r?\n\r?\n")


def latest_release_notes(changelog_text: str) -> str | None:
    """Extract the body of the newest section of a changelog file.

    The file is a sequence of ``# <version> (<date>)``, blank line, notes,
    two blank lines.
    """
    m = _LATEST_NOTES_RE.search(changelog_text)
    if m is None:
        return None
    return m.group(1)
