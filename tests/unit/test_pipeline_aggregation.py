"""Tests for the weighted-mean aggregation engine."""

from __future__ import annotations

import datetime as dt
import itertools
import math
import typing as typ

import msgspec
import pytest

from tallyman.common.errors import PersistenceError
from tallyman.ledger.errors import AggregateMergeError
from tallyman.pipeline.aggregation import AggregationEngine, validate_score, weighted_mean
from tallyman.pipeline.models import ContributorKey, DailyKey
from tallyman.pipeline.observability import PipelineEventLogger
from tests.unit.pipeline_test_helpers import FlakyAggregateStore, make_record

if typ.TYPE_CHECKING:
    from tallyman.ledger.services import SqlContributionStore
    from tallyman.pipeline.models import AggregateKey

DAY = dt.date(2024, 5, 1)


class _RecordingEventLogger(PipelineEventLogger):
    def __init__(self) -> None:
        self.merge_failures: list[tuple[str, AggregateKey]] = []

    def log_aggregate_merge_failed(
        self, sha: str, key: AggregateKey, error: Exception
    ) -> None:
        self.merge_failures.append((sha, key))


def test_weighted_mean_examples() -> None:
    """The first score seeds the mean; later scores are weighted by count."""
    assert weighted_mean(None, 0, 6) == 6.0
    assert weighted_mean(6.0, 2, 9) == 7.0


def test_weighted_mean_fold_is_order_independent() -> None:
    """Folding any permutation of scores yields the arithmetic mean."""
    scores = (1.0, 4.5, 10.0, 7.25)
    for order in itertools.permutations(scores):
        mean: float | None = None
        for count, score in enumerate(order):
            mean = weighted_mean(mean, count, score)
        assert mean == pytest.approx(sum(scores) / len(scores))


@pytest.mark.parametrize("score", [0.0, 10.01, -3.0, math.nan])
def test_validate_score_rejects_out_of_range(score: float) -> None:
    """Scores outside [1, 10], and NaN, are rejected."""
    with pytest.raises(ValueError, match="score must be between"):
        validate_score(score)


@pytest.mark.asyncio
async def test_merge_dispatches_on_key(store: SqlContributionStore) -> None:
    """Daily and contributor keys reach their own aggregates."""
    engine = AggregationEngine(store)

    daily = await engine.merge(DailyKey(date=DAY, author="alice"), 12, 6.0)
    contributor = await engine.merge(ContributorKey(author="alice"), 5, 8.0)

    assert (daily.total_lines, daily.avg_quality_score) == (12, 6.0)
    assert (contributor.total_lines, contributor.avg_quality_score) == (5, 8.0)


@pytest.mark.asyncio
async def test_merge_rejects_invalid_input_before_writing(
    store: SqlContributionStore,
) -> None:
    """Bad scores and negative line counts never touch the store."""
    engine = AggregationEngine(store)

    with pytest.raises(ValueError, match="score"):
        await engine.merge(ContributorKey(author="alice"), 5, 11.0)
    with pytest.raises(ValueError, match="delta_lines"):
        await engine.merge(ContributorKey(author="alice"), -1, 5.0)

    assert await store.get_contributor("alice") is None


@pytest.mark.asyncio
async def test_merge_event_updates_both_aggregates(store: SqlContributionStore) -> None:
    """A scored record lands in the daily and contributor aggregates."""
    result = await AggregationEngine(store).merge_event(
        make_record("abc", score=9.0, additions=25), "https://avatar"
    )

    assert result.ok
    assert result.daily is not None
    assert result.daily.total_lines == 25
    assert result.contributor is not None
    assert result.contributor.avatar_url == "https://avatar"


@pytest.mark.asyncio
async def test_merge_event_isolates_failed_merge(store: SqlContributionStore) -> None:
    """A failed daily merge neither blocks nor undoes the contributor merge."""
    event_logger = _RecordingEventLogger()
    flaky = FlakyAggregateStore(store, fail_daily=True)
    engine = AggregationEngine(flaky, event_logger=event_logger)

    result = await engine.merge_event(make_record("abc", score=7.0))

    assert not result.ok
    assert result.daily is None
    assert result.contributor is not None
    assert result.contributor.total_commits == 1
    (failure,) = result.failures
    assert failure.key == DailyKey(date=DAY, author="alice")
    assert isinstance(failure.error, AggregateMergeError)
    assert isinstance(failure.error, PersistenceError)
    assert event_logger.merge_failures == [("abc", failure.key)]


@pytest.mark.asyncio
async def test_merge_event_requires_quality(store: SqlContributionStore) -> None:
    """Unscored records cannot be merged."""
    unscored = msgspec.structs.replace(make_record("abc"), quality=None)

    with pytest.raises(ValueError, match="no quality score"):
        await AggregationEngine(store).merge_event(unscored)
