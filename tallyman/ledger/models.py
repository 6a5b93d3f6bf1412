"""Value types read from and written to the ledger."""

from __future__ import annotations

import datetime as dt  # noqa: TC003

import msgspec

from tallyman.scoring.models import QualityAssessment  # noqa: TC001


class ContributionRecord(msgspec.Struct, kw_only=True, frozen=True):
    """One scored change-event, keyed by ``(sha, repo)``.

    Attributes
    ----------
    sha
        Merge commit SHA.
    repo
        Repository slug in ``owner/name`` format.
    author
        Login of the pull request author.
    date
        UTC calendar day of the merge.
    commit_date
        Full merge timestamp.
    message
        Commit message of the merge commit.
    additions
        Lines added by the change.
    quality
        Validated assessment, when the record has been scored.

    """

    sha: str
    repo: str
    author: str
    date: dt.date
    commit_date: dt.datetime
    message: str
    additions: int
    pr_number: int | None = None
    pr_title: str | None = None
    pr_url: str | None = None
    pr_description: str | None = None
    quality: QualityAssessment | None = None
    analyzed_at: dt.datetime | None = None


class AggregateSnapshot(msgspec.Struct, kw_only=True, frozen=True):
    """State of a running aggregate after a merge."""

    total_lines: int = 0
    total_commits: int = 0
    avg_quality_score: float | None = None
    avatar_url: str | None = None


EMPTY_AGGREGATE = AggregateSnapshot()


class DailySummary(msgspec.Struct, kw_only=True, frozen=True):
    """Daily aggregate for one author."""

    date: dt.date
    author: str
    total_lines: int
    total_commits: int
    avg_quality_score: float | None = None
    avatar_url: str | None = None


class ContributorSummary(msgspec.Struct, kw_only=True, frozen=True):
    """Lifetime aggregate for one author."""

    login: str
    total_lines: int
    total_commits: int
    avg_quality_score: float | None = None
    avatar_url: str | None = None


class TeamDigest(msgspec.Struct, kw_only=True, frozen=True):
    """Team-wide view of one calendar day.

    ``avg_quality_score`` is the mean of the per-author daily averages, not
    a commit-weighted mean.
    """

    date: dt.date
    summaries: tuple[DailySummary, ...]
    top_contributions: tuple[ContributionRecord, ...]
    total_lines: int
    total_commits: int
    avg_quality_score: float | None = None
