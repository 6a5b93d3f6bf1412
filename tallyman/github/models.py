"""Typed domain models for GitHub pull request analysis."""

from __future__ import annotations

import dataclasses
import typing as typ

if typ.TYPE_CHECKING:
    import datetime as dt


@dataclasses.dataclass(frozen=True, slots=True)
class MergedPullRequest:
    """Candidate change-event: a pull request and its merge commit."""

    number: int
    sha: str
    author: str
    title: str
    url: str
    merged_at: dt.datetime | None
    additions: int = 0
    deletions: int = 0
    description: str | None = None
    author_avatar_url: str | None = None

    @property
    def is_merged(self) -> bool:
        """Return whether the pull request has been merged."""
        return self.merged_at is not None and bool(self.sha)


@dataclasses.dataclass(frozen=True, slots=True)
class DiffFile:
    """One file touched by a commit."""

    filename: str
    status: str
    additions: int
    deletions: int
    patch: str | None = None


@dataclasses.dataclass(frozen=True, slots=True)
class DiffStats:
    """Line-change totals for a commit."""

    additions: int
    deletions: int

    @property
    def total(self) -> int:
        """Return additions plus deletions."""
        return self.additions + self.deletions


@dataclasses.dataclass(frozen=True, slots=True)
class CommitDiff:
    """Diff content and statistics for a single commit."""

    sha: str
    message: str
    author: str
    date: str
    files: tuple[DiffFile, ...]
    stats: DiffStats


@dataclasses.dataclass(frozen=True, slots=True)
class ProjectContext:
    """Project guidance supplied to the scorer alongside a diff."""

    guidelines: str | None = None
    rules: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        """Return whether no guidance was found."""
        return self.guidelines is None and not self.rules


EMPTY_CONTEXT = ProjectContext()
