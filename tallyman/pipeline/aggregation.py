"""Weighted-mean merging of scored events into running aggregates.

A running aggregate holds a line total, a count of scored events and the
mean of their scores. Merging one score ``s`` into an aggregate with mean
``m`` over ``n`` events yields ``(m * n + s) / (n + 1)``. The update is
associative and commutative over the multiset of scores, so the final mean
for a key does not depend on merge order.

The database applies the same formula in-place (see
:class:`tallyman.ledger.SqlContributionStore`); :func:`weighted_mean` is the
reference used for validation and tests.
"""

from __future__ import annotations

import math
import typing as typ

from tallyman.common.errors import PersistenceError
from tallyman.pipeline.models import (
    AggregateFailure,
    AggregationResult,
    ContributorKey,
    DailyKey,
)
from tallyman.pipeline.observability import PipelineEventLogger
from tallyman.scoring.models import MAX_SCORE, MIN_SCORE

if typ.TYPE_CHECKING:
    from tallyman.ledger.models import AggregateSnapshot, ContributionRecord
    from tallyman.ledger.services import ContributionStore
    from tallyman.pipeline.models import AggregateKey


def validate_score(score: float) -> float:
    """Return ``score`` as a float, rejecting values outside [1, 10]."""
    value = float(score)
    if math.isnan(value) or not MIN_SCORE <= value <= MAX_SCORE:
        msg = f"score must be between {MIN_SCORE} and {MAX_SCORE}, got {score!r}"
        raise ValueError(msg)
    return value


def weighted_mean(
    previous_avg: float | None, previous_count: int, score: float
) -> float:
    """Return the mean after merging ``score`` into ``previous_count`` events.

    >>> weighted_mean(None, 0, 6)
    6.0
    >>> weighted_mean(6.0, 2, 9)
    7.0

    """
    value = validate_score(score)
    if previous_avg is None:
        return value
    return (previous_avg * previous_count + value) / (previous_count + 1)


class AggregationEngine:
    """Merge scored events into the daily and contributor aggregates."""

    def __init__(
        self,
        store: ContributionStore,
        *,
        event_logger: PipelineEventLogger | None = None,
    ) -> None:
        """Bind the engine to the store performing the atomic merges."""
        self._store = store
        self._event_logger = event_logger or PipelineEventLogger()

    async def merge(
        self,
        key: AggregateKey,
        delta_lines: int,
        score: float,
        avatar_url: str | None = None,
    ) -> AggregateSnapshot:
        """Merge one scored event into the aggregate for ``key``.

        Raises
        ------
        ValueError
            If ``score`` is outside [1, 10] or ``delta_lines`` is negative.
        PersistenceError
            If the store cannot apply the merge.

        """
        value = validate_score(score)
        if delta_lines < 0:
            msg = f"delta_lines must be non-negative, got {delta_lines}"
            raise ValueError(msg)

        match key:
            case DailyKey(date=date, author=author):
                return await self._store.merge_daily_aggregate(
                    date, author, delta_lines, value, avatar_url
                )
            case ContributorKey(author=author):
                return await self._store.merge_contributor_aggregate(
                    author, delta_lines, value, avatar_url
                )
            case _:
                msg = f"unsupported aggregate key: {key!r}"
                raise TypeError(msg)

    async def merge_event(
        self, record: ContributionRecord, avatar_url: str | None = None
    ) -> AggregationResult:
        """Merge ``record`` into its daily and contributor aggregates.

        Both merges are attempted independently. A failed merge is logged
        and collected in the result; it neither blocks the other merge nor
        undoes the record write.
        """
        if record.quality is None:
            msg = f"record {record.sha} has no quality score to merge"
            raise ValueError(msg)

        score = record.quality.score
        snapshots: dict[type, AggregateSnapshot] = {}
        failures: list[AggregateFailure] = []
        keys: tuple[AggregateKey, ...] = (
            DailyKey(date=record.date, author=record.author),
            ContributorKey(author=record.author),
        )
        for key in keys:
            try:
                snapshots[type(key)] = await self.merge(
                    key, record.additions, score, avatar_url
                )
            except PersistenceError as exc:
                self._event_logger.log_aggregate_merge_failed(record.sha, key, exc)
                failures.append(AggregateFailure(key=key, error=exc))

        return AggregationResult(
            daily=snapshots.get(DailyKey),
            contributor=snapshots.get(ContributorKey),
            failures=tuple(failures),
        )
