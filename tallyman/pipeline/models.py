"""Outcome and key types shared by the batch and single-item pipelines."""

from __future__ import annotations

import collections
import dataclasses
import enum
import typing as typ

from tallyman.common.time import utc_day
from tallyman.ledger.models import AggregateSnapshot, ContributionRecord

if typ.TYPE_CHECKING:
    import datetime as dt

    from tallyman.github.models import CommitDiff, MergedPullRequest
    from tallyman.scoring.models import QualityAssessment


class OutcomeStatus(enum.StrEnum):
    """Terminal outcome of one change-event."""

    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class SkipReason(enum.StrEnum):
    """Why a change-event was not scored."""

    DUPLICATE = "duplicate"
    TOO_SMALL = "too_small"
    NOT_MERGED = "not_merged"


class PipelineStage(enum.StrEnum):
    """Last stage a change-event reached.

    Events move strictly forward:
    ``fetched -> filtered -> scored -> persisted -> aggregated``.
    """

    FETCHED = "fetched"
    FILTERED = "filtered"
    SCORED = "scored"
    PERSISTED = "persisted"
    AGGREGATED = "aggregated"


@dataclasses.dataclass(frozen=True, slots=True)
class DailyKey:
    """Aggregate key for one author on one UTC calendar day."""

    date: dt.date
    author: str


@dataclasses.dataclass(frozen=True, slots=True)
class ContributorKey:
    """Aggregate key for one author's lifetime totals."""

    author: str


type AggregateKey = DailyKey | ContributorKey


@dataclasses.dataclass(frozen=True, slots=True)
class AggregateFailure:
    """A merge that failed for one aggregate key."""

    key: AggregateKey
    error: Exception


@dataclasses.dataclass(frozen=True, slots=True)
class AggregationResult:
    """Snapshots from merging one record into both aggregates."""

    daily: AggregateSnapshot | None = None
    contributor: AggregateSnapshot | None = None
    failures: tuple[AggregateFailure, ...] = ()

    @property
    def ok(self) -> bool:
        """Return whether both merges succeeded."""
        return not self.failures


@dataclasses.dataclass(frozen=True, slots=True)
class CandidateOutcome:
    """Result of processing one candidate in a batch run.

    Attributes
    ----------
    number
        Pull request number.
    sha
        Merge commit SHA.
    author
        Pull request author login.
    status
        Terminal outcome.
    stage
        Last stage reached before the outcome was decided.
    skip_reason
        Set when ``status`` is ``SKIPPED``.
    error
        Cause of a ``FAILED`` outcome.
    score
        Quality score for completed outcomes.
    aggregation
        Merge snapshots for completed outcomes. Merge failures are recorded
        here and never flip a completed outcome to failed.

    """

    number: int
    sha: str
    author: str
    status: OutcomeStatus
    stage: PipelineStage
    skip_reason: SkipReason | None = None
    error: Exception | None = None
    score: float | None = None
    aggregation: AggregationResult | None = None


@dataclasses.dataclass(frozen=True, slots=True)
class BatchReport:
    """Per-candidate outcomes of one batch run, in feed order."""

    repo_slug: str
    outcomes: tuple[CandidateOutcome, ...] = ()
    interrupted: bool = False

    def _count(self, status: OutcomeStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status is status)

    @property
    def processed(self) -> int:
        """Number of candidates scored and recorded."""
        return self._count(OutcomeStatus.COMPLETED)

    @property
    def skipped(self) -> int:
        """Number of duplicate or undersized candidates."""
        return self._count(OutcomeStatus.SKIPPED)

    @property
    def failed(self) -> int:
        """Number of candidates that failed at any stage."""
        return self._count(OutcomeStatus.FAILED)

    @property
    def skipped_by_reason(self) -> dict[SkipReason, int]:
        """Skip counts keyed by reason."""
        return dict(
            collections.Counter(
                outcome.skip_reason
                for outcome in self.outcomes
                if outcome.skip_reason is not None
            )
        )

    @property
    def aggregate_failures(self) -> int:
        """Number of failed aggregate merges across completed candidates."""
        return sum(
            len(outcome.aggregation.failures)
            for outcome in self.outcomes
            if outcome.aggregation is not None
        )


@dataclasses.dataclass(frozen=True, slots=True)
class AnalysisOutcome:
    """Result of the single-item pipeline."""

    status: OutcomeStatus
    pull_request: MergedPullRequest
    skip_reason: SkipReason | None = None
    record: ContributionRecord | None = None
    aggregation: AggregationResult | None = None


def build_contribution_record(
    repo_slug: str,
    pull_request: MergedPullRequest,
    diff: CommitDiff,
    quality: QualityAssessment,
    analyzed_at: dt.datetime,
) -> ContributionRecord:
    """Build the record persisted for one scored pull request.

    ``date`` is the UTC day of the merge and ``commit_date`` the merge
    timestamp; both fall back to ``analyzed_at`` when the merge time is
    unknown. ``additions`` comes from the diff, which is authoritative.
    """
    committed = pull_request.merged_at or analyzed_at
    return ContributionRecord(
        sha=pull_request.sha,
        repo=repo_slug,
        author=pull_request.author,
        date=utc_day(committed),
        commit_date=committed,
        message=diff.message,
        additions=diff.stats.additions,
        pr_number=pull_request.number,
        pr_title=pull_request.title or None,
        pr_url=pull_request.url or None,
        pr_description=pull_request.description,
        quality=quality,
        analyzed_at=analyzed_at,
    )


__all__ = [
    "AggregateFailure",
    "AggregateKey",
    "AggregateSnapshot",
    "AggregationResult",
    "AnalysisOutcome",
    "BatchReport",
    "CandidateOutcome",
    "ContributionRecord",
    "ContributorKey",
    "DailyKey",
    "OutcomeStatus",
    "PipelineStage",
    "SkipReason",
    "build_contribution_record",
]
