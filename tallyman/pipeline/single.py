"""Single pull request analysis where every failure reaches the caller."""

from __future__ import annotations

import typing as typ

from tallyman.common.slug import parse_repo_slug, repo_slug
from tallyman.common.time import utcnow
from tallyman.ledger.errors import AggregateMergeError
from tallyman.pipeline.aggregation import AggregationEngine
from tallyman.pipeline.config import PipelineConfig
from tallyman.pipeline.gates import SizeFilter
from tallyman.pipeline.models import (
    AnalysisOutcome,
    DailyKey,
    OutcomeStatus,
    SkipReason,
    build_contribution_record,
)
from tallyman.pipeline.observability import PipelineEventLogger
from tallyman.pipeline.steps import fetch_context_or_empty

if typ.TYPE_CHECKING:
    from tallyman.pipeline.models import AggregateKey
    from tallyman.pipeline.steps import PipelineCollaborators


def _merge_error_for(key: AggregateKey) -> AggregateMergeError:
    if isinstance(key, DailyKey):
        return AggregateMergeError.for_daily(key.date, key.author)
    return AggregateMergeError.for_contributor(key.author)


class SingleItemPipeline:
    """Score one known pull request.

    Unlike :class:`~tallyman.pipeline.batch.BatchRunner` there is no dedupe
    gate: the record write is an upsert keyed by ``(sha, repo)``. Transport,
    scoring and persistence errors propagate unchanged. Both aggregate merges
    are always attempted; if either fails the first failure is raised as an
    :class:`AggregateMergeError` once the other has run.
    """

    def __init__(
        self,
        collaborators: PipelineCollaborators,
        *,
        config: PipelineConfig | None = None,
        event_logger: PipelineEventLogger | None = None,
    ) -> None:
        """Wire the size filter and aggregation engine to the collaborators."""
        self._collaborators = collaborators
        self._config = config or PipelineConfig()
        self._event_logger = event_logger or PipelineEventLogger()
        self._size_filter = SizeFilter(self._config.min_lines)
        self._aggregation = AggregationEngine(
            collaborators.store, event_logger=self._event_logger
        )

    async def run(self, owner: str, repo: str, number: int) -> AnalysisOutcome:
        """Fetch, score, record and aggregate pull request ``number``.

        Returns
        -------
        AnalysisOutcome
            ``COMPLETED`` with the persisted record, or ``SKIPPED`` when the
            pull request is not merged or adds fewer lines than the minimum.

        Raises
        ------
        InvalidRepositoryError
            If ``owner``/``repo`` do not form a valid slug.
        TransportError
            If the pull request or its diff cannot be fetched.
        ScoringError
            If the scorer fails or returns a non-conforming payload.
        PersistenceError
            If the record write or either aggregate merge fails.

        """
        owner, repo = parse_repo_slug(repo_slug(owner, repo))
        slug = repo_slug(owner, repo)
        self._event_logger.log_single_started(slug, number)
        try:
            outcome = await self._analyze(owner, repo, slug, number)
        except Exception as exc:
            self._event_logger.log_single_failed(slug, number, exc)
            raise
        self._event_logger.log_single_completed(slug, outcome)
        return outcome

    async def _analyze(
        self, owner: str, repo: str, slug: str, number: int
    ) -> AnalysisOutcome:
        collaborators = self._collaborators
        pull_request = await collaborators.source_feed.fetch_pull_request(
            owner, repo, number
        )
        if not pull_request.is_merged:
            return AnalysisOutcome(
                status=OutcomeStatus.SKIPPED,
                pull_request=pull_request,
                skip_reason=SkipReason.NOT_MERGED,
            )

        diff = await collaborators.diff_fetcher.fetch_diff(
            owner, repo, pull_request.sha
        )
        if not self._size_filter.passes(diff.stats.additions):
            return AnalysisOutcome(
                status=OutcomeStatus.SKIPPED,
                pull_request=pull_request,
                skip_reason=SkipReason.TOO_SMALL,
            )

        context = await fetch_context_or_empty(
            collaborators.context_provider, owner, repo, pull_request.sha
        )
        assessment = await collaborators.scorer.score(diff, context)
        record = build_contribution_record(
            slug, pull_request, diff, assessment, analyzed_at=utcnow()
        )
        await collaborators.store.upsert_record(record)

        aggregation = await self._aggregation.merge_event(
            record, pull_request.author_avatar_url
        )
        if aggregation.failures:
            first = aggregation.failures[0]
            if isinstance(first.error, AggregateMergeError):
                raise first.error
            raise _merge_error_for(first.key) from first.error

        return AnalysisOutcome(
            status=OutcomeStatus.COMPLETED,
            pull_request=pull_request,
            record=record,
            aggregation=aggregation,
        )
