"""Tests for BatchRunner: isolation, gates, idempotence and interruption."""

from __future__ import annotations

import asyncio
import typing as typ

import pytest

from tallyman.common.slug import InvalidRepositoryError
from tallyman.github.errors import GitHubAPIError, GitHubRateLimitError
from tallyman.ledger.errors import RecordPersistError
from tallyman.pipeline import (
    BatchRunner,
    OutcomeStatus,
    PipelineConfig,
    PipelineStage,
    SkipReason,
)
from tallyman.scoring.errors import ScoringAPIError, ScoringResponseShapeError
from tests.unit.pipeline_test_helpers import (
    MERGED_AT,
    FakeContextProvider,
    FakeDiffFetcher,
    FakeScorer,
    FakeSourceFeed,
    FlakyAggregateStore,
    build_fakes,
    make_pull_request,
    make_record,
)

if typ.TYPE_CHECKING:
    from tallyman.github.models import CommitDiff, ProjectContext
    from tallyman.ledger.services import SqlContributionStore
    from tallyman.scoring.models import QualityAssessment
    from tests.unit.pipeline_test_helpers import PipelineFakes

REPO = "octo/reef"


def _runner(fakes: PipelineFakes, **config: int) -> BatchRunner:
    return BatchRunner(fakes.collaborators(), config=PipelineConfig(**config))


@pytest.mark.asyncio
async def test_scores_and_records_every_candidate(store: SqlContributionStore) -> None:
    """Each merged candidate is scored, recorded and aggregated once."""
    pull_requests = [make_pull_request(1, avatar_url="https://a"), make_pull_request(2)]
    fakes = build_fakes(
        store, pull_requests, scorer=FakeScorer({"sha0001": 6.0, "sha0002": 9.0})
    )

    report = await _runner(fakes).run(REPO, 14)

    assert report.repo_slug == REPO
    assert [o.status for o in report.outcomes] == [OutcomeStatus.COMPLETED] * 2
    assert [o.stage for o in report.outcomes] == [PipelineStage.AGGREGATED] * 2
    assert report.processed == 2
    assert not report.interrupted
    assert fakes.feed.list_calls == [("octo", "reef", 14)]
    contributor = await store.get_contributor("alice")
    assert contributor is not None
    assert contributor.total_commits == 2
    assert contributor.avg_quality_score == pytest.approx(7.5)
    assert contributor.avatar_url == "https://a"


@pytest.mark.asyncio
async def test_lookback_defaults_to_config(store: SqlContributionStore) -> None:
    """Without an explicit window the configured lookback is used."""
    fakes = build_fakes(store, [])

    report = await _runner(fakes, lookback_days=9).run(REPO)

    assert report.outcomes == ()
    assert fakes.feed.list_calls == [("octo", "reef", 9)]


@pytest.mark.asyncio
async def test_failure_is_isolated_to_its_candidate(store: SqlContributionStore) -> None:
    """One candidate failing leaves the others processed."""
    pull_requests = [make_pull_request(n) for n in (1, 2, 3)]
    failure = ScoringResponseShapeError.invalid_json("nope")
    fakes = build_fakes(
        store, pull_requests, scorer=FakeScorer(failures={"sha0002": failure})
    )

    report = await _runner(fakes).run(REPO)

    assert [o.status for o in report.outcomes] == [
        OutcomeStatus.COMPLETED,
        OutcomeStatus.FAILED,
        OutcomeStatus.COMPLETED,
    ]
    failed = report.outcomes[1]
    assert failed.error is failure
    assert failed.stage is PipelineStage.FILTERED
    assert (failed.number, failed.sha, failed.author) == (2, "sha0002", "alice")
    assert not await store.exists("sha0002", REPO)
    assert report.failed == 1


@pytest.mark.asyncio
async def test_diff_fetch_failure_is_recorded(store: SqlContributionStore) -> None:
    """A diff that cannot be fetched fails at the fetched stage."""
    error = GitHubAPIError.http_error(500, "/repos/octo/reef/commits/sha0001")
    fakes = build_fakes(
        store,
        [make_pull_request(1)],
        diffs=FakeDiffFetcher(failures={"sha0001": error}),
    )

    report = await _runner(fakes).run(REPO)

    (outcome,) = report.outcomes
    assert outcome.status is OutcomeStatus.FAILED
    assert outcome.stage is PipelineStage.FETCHED
    assert fakes.scorer.call_count == 0


@pytest.mark.asyncio
async def test_size_gate_skips_without_scoring(store: SqlContributionStore) -> None:
    """Undersized diffs are skipped and never reach the scorer."""
    fakes = build_fakes(
        store,
        [make_pull_request(1), make_pull_request(2)],
        diffs=FakeDiffFetcher({"sha0001": 9, "sha0002": 10}),
    )

    report = await _runner(fakes, min_lines=10).run(REPO)

    assert [o.skip_reason for o in report.outcomes] == [SkipReason.TOO_SMALL, None]
    assert report.outcomes[0].stage is PipelineStage.FILTERED
    assert fakes.scorer.calls == ["sha0002"]
    assert report.skipped_by_reason == {SkipReason.TOO_SMALL: 1}


@pytest.mark.asyncio
async def test_rerun_skips_recorded_candidates(store: SqlContributionStore) -> None:
    """A second run over the same window changes nothing."""
    pull_requests = [make_pull_request(1), make_pull_request(2)]
    first = build_fakes(store, pull_requests)
    await _runner(first).run(REPO)
    before = await store.get_contributor("alice")

    second = build_fakes(store, pull_requests)
    report = await _runner(second).run(REPO)

    assert [o.skip_reason for o in report.outcomes] == [SkipReason.DUPLICATE] * 2
    assert second.scorer.call_count == 0
    assert second.diffs.calls == []
    assert await store.get_contributor("alice") == before


@pytest.mark.asyncio
async def test_failed_candidate_is_retried_on_next_run(
    store: SqlContributionStore,
) -> None:
    """Nothing is recorded for a failure, so the next run scores it."""
    pull_requests = [make_pull_request(1)]
    failing = build_fakes(
        store,
        pull_requests,
        scorer=FakeScorer(failures={"sha0001": ScoringAPIError.http_error(500)}),
    )
    await _runner(failing).run(REPO)

    report = await _runner(build_fakes(store, pull_requests)).run(REPO)

    assert report.processed == 1
    assert await store.exists("sha0001", REPO)


@pytest.mark.asyncio
async def test_context_failure_scores_without_context(
    store: SqlContributionStore,
) -> None:
    """Unavailable project guidance is not a candidate failure."""
    fakes = build_fakes(
        store,
        [make_pull_request(1)],
        context=FakeContextProvider(error=GitHubAPIError.http_error(500, "/contents")),
    )

    report = await _runner(fakes).run(REPO)

    assert report.processed == 1
    (context,) = fakes.scorer.contexts
    assert context is not None
    assert context.is_empty


@pytest.mark.asyncio
async def test_dedup_lookup_failure_rescores(store: SqlContributionStore) -> None:
    """A failing dedupe check lets the candidate through to the upsert."""
    await store.upsert_record(make_record("sha0001"))
    flaky = FlakyAggregateStore(
        store, fail_exists=RecordPersistError.for_record("sha0001", REPO)
    )
    fakes = build_fakes(flaky, [make_pull_request(1)])

    report = await _runner(fakes).run(REPO)

    assert report.processed == 1
    assert fakes.scorer.call_count == 1
    assert len(flaky.upserts) == 1
    record = await store.get_record("sha0001", REPO)
    assert record is not None
    assert record.pr_title == "Change 1"


@pytest.mark.asyncio
async def test_aggregate_failure_keeps_record(store: SqlContributionStore) -> None:
    """A failed aggregate merge is reported without failing the candidate."""
    flaky = FlakyAggregateStore(store, fail_contributor=True)
    fakes = build_fakes(flaky, [make_pull_request(1)])

    report = await _runner(fakes).run(REPO)

    (outcome,) = report.outcomes
    assert outcome.status is OutcomeStatus.COMPLETED
    assert outcome.aggregation is not None
    assert not outcome.aggregation.ok
    assert report.aggregate_failures == 1
    assert await store.exists("sha0001", REPO)
    assert await store.get_contributor("alice") is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        GitHubRateLimitError.for_path("/repos/octo/reef/commits/sha0002", 60),
        ScoringAPIError.rate_limited(30),
    ],
)
async def test_rate_limit_interrupts_run(
    store: SqlContributionStore, error: Exception
) -> None:
    """A rate limit fails its candidate and stops the remaining ones."""
    pull_requests = [make_pull_request(n) for n in (1, 2, 3)]
    fakes = build_fakes(
        store,
        pull_requests,
        diffs=FakeDiffFetcher(failures={"sha0002": error}),
    )

    report = await _runner(fakes).run(REPO)

    assert report.interrupted
    assert [o.status for o in report.outcomes] == [
        OutcomeStatus.COMPLETED,
        OutcomeStatus.FAILED,
    ]
    assert "sha0003" not in fakes.diffs.calls


@pytest.mark.asyncio
async def test_stop_event_halts_between_candidates(
    store: SqlContributionStore,
) -> None:
    """Setting the stop event ends the run after the current candidate."""
    stop = asyncio.Event()

    class _StoppingScorer(FakeScorer):
        async def score(
            self, diff: CommitDiff, context: ProjectContext | None = None
        ) -> QualityAssessment:
            stop.set()
            return await super().score(diff, context)

    fakes = build_fakes(
        store,
        [make_pull_request(n) for n in (1, 2)],
        scorer=_StoppingScorer(),
    )

    report = await _runner(fakes).run(REPO, stop_event=stop)

    assert report.interrupted
    assert report.processed == 1
    assert len(report.outcomes) == 1


@pytest.mark.asyncio
async def test_feed_failure_propagates(store: SqlContributionStore) -> None:
    """An unreachable candidate feed is a setup failure."""
    error = GitHubAPIError.network_error("/search/issues", "refused")
    fakes = build_fakes(store, [])
    fakes.feed = FakeSourceFeed([], error=error)

    with pytest.raises(GitHubAPIError, match="refused"):
        await _runner(fakes).run(REPO)


@pytest.mark.asyncio
@pytest.mark.parametrize("repository", ["octo", "octo/reef/extra", "/reef"])
async def test_malformed_repository_propagates(
    store: SqlContributionStore, repository: str
) -> None:
    """A malformed slug fails before the feed is called."""
    fakes = build_fakes(store, [])

    with pytest.raises(InvalidRepositoryError):
        await _runner(fakes).run(repository)

    assert fakes.feed.list_calls == []


@pytest.mark.asyncio
async def test_non_positive_window_is_rejected(store: SqlContributionStore) -> None:
    """A lookback of zero days is a caller error."""
    with pytest.raises(ValueError, match="lookback_days"):
        await _runner(build_fakes(store, [])).run(REPO, 0)


@pytest.mark.asyncio
async def test_record_write_failure_gets_no_aggregate_credit(
    store: SqlContributionStore,
) -> None:
    """A failed upsert fails its candidate before any merge; the run goes on."""
    flaky = FlakyAggregateStore(store, fail_upsert={"sha0001"})
    pull_requests = [make_pull_request(1), make_pull_request(2, author="bob")]
    fakes = build_fakes(flaky, pull_requests)

    report = await _runner(fakes).run(REPO)

    failed, completed = report.outcomes
    assert failed.status is OutcomeStatus.FAILED
    assert failed.stage is PipelineStage.SCORED
    assert isinstance(failed.error, RecordPersistError)
    assert completed.status is OutcomeStatus.COMPLETED
    assert await store.get_contributor("alice") is None
    assert await store.get_daily_summary(MERGED_AT.date(), "alice") is None
    assert await store.get_contributor("bob") is not None
    assert report.failed == 1
    assert report.processed == 1


@pytest.mark.asyncio
async def test_context_rate_limit_interrupts_run(store: SqlContributionStore) -> None:
    """A rate limit while reading guidance stops the run like any other."""
    error = GitHubRateLimitError.for_path("/repos/octo/reef/contents/AGENTS.md", 60)
    fakes = build_fakes(
        store,
        [make_pull_request(1), make_pull_request(2)],
        context=FakeContextProvider(error=error),
    )

    report = await _runner(fakes).run(REPO)

    assert report.interrupted
    (outcome,) = report.outcomes
    assert outcome.status is OutcomeStatus.FAILED
    assert outcome.stage is PipelineStage.FILTERED
    assert outcome.error is error
    assert fakes.scorer.call_count == 0
