"""Backfill runner that scores every merged pull request in a window.

Each candidate is processed in feed order and produces exactly one
:class:`CandidateOutcome`. Failures are captured on the outcome and the loop
moves on; only setup failures (a malformed repository slug or an unreachable
feed) escape :meth:`BatchRunner.run`.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
import time
import typing as typ

from tallyman.common.errors import RateLimitError
from tallyman.common.slug import parse_repo_slug, repo_slug
from tallyman.common.time import utcnow
from tallyman.pipeline.aggregation import AggregationEngine
from tallyman.pipeline.config import PipelineConfig
from tallyman.pipeline.gates import DedupGate, SizeFilter
from tallyman.pipeline.models import (
    BatchReport,
    CandidateOutcome,
    OutcomeStatus,
    PipelineStage,
    SkipReason,
    build_contribution_record,
)
from tallyman.pipeline.observability import PipelineEventLogger
from tallyman.pipeline.steps import fetch_context_or_empty

if typ.TYPE_CHECKING:
    import asyncio

    from tallyman.github.models import MergedPullRequest
    from tallyman.pipeline.steps import PipelineCollaborators

_REASON_STOP_REQUESTED = "stop_requested"
_REASON_RATE_LIMITED = "rate_limited"


@dataclasses.dataclass(slots=True)
class _Progress:
    """Last stage a candidate reached, readable after a failure."""

    stage: PipelineStage = PipelineStage.FETCHED


class BatchRunner:
    """Score merged pull requests for a repository with per-item isolation.

    Parameters
    ----------
    collaborators
        Feed, diff, context, scorer and store implementations.
    config
        Size threshold and default lookback window.
    event_logger
        Structured event sink; a default femtologging logger when omitted.

    """

    def __init__(
        self,
        collaborators: PipelineCollaborators,
        *,
        config: PipelineConfig | None = None,
        event_logger: PipelineEventLogger | None = None,
    ) -> None:
        """Wire the gates and aggregation engine to the injected store."""
        self._collaborators = collaborators
        self._config = config or PipelineConfig()
        self._event_logger = event_logger or PipelineEventLogger()
        self._size_filter = SizeFilter(self._config.min_lines)
        self._dedup_gate = DedupGate(
            collaborators.store, event_logger=self._event_logger
        )
        self._aggregation = AggregationEngine(
            collaborators.store, event_logger=self._event_logger
        )

    async def run(
        self,
        repository: str,
        lookback_days: int | None = None,
        *,
        stop_event: asyncio.Event | None = None,
    ) -> BatchReport:
        """Process every candidate merged in the last ``lookback_days`` days.

        Parameters
        ----------
        repository
            Repository slug in ``owner/name`` format.
        lookback_days
            Window size; defaults to the configured lookback.
        stop_event
            Checked between candidates; when set, the run stops and returns
            the partial report with ``interrupted=True``.

        Returns
        -------
        BatchReport
            One outcome per candidate processed, in feed order. A rate-limit
            error from any collaborator fails that candidate and interrupts
            the run.

        Raises
        ------
        InvalidRepositoryError
            If ``repository`` is not an ``owner/name`` slug.
        TransportError
            If the candidate feed cannot be read.

        """
        owner, name = parse_repo_slug(repository)
        slug = repo_slug(owner, name)
        days = self._config.lookback_days if lookback_days is None else lookback_days
        if days < 1:
            msg = f"lookback_days must be positive, got {days}"
            raise ValueError(msg)

        started_at = time.monotonic()
        candidates = await self._collaborators.source_feed.list_candidates(
            owner, name, days
        )
        self._event_logger.log_batch_started(
            repo_slug=slug, lookback_days=days, candidate_count=len(candidates)
        )

        outcomes: list[CandidateOutcome] = []
        stop_reason: str | None = None
        for candidate in candidates:
            if stop_event is not None and stop_event.is_set():
                stop_reason = _REASON_STOP_REQUESTED
                break
            outcome = await self._process_candidate(owner, name, slug, candidate)
            outcomes.append(outcome)
            if isinstance(outcome.error, RateLimitError):
                stop_reason = _REASON_RATE_LIMITED
                break

        report = BatchReport(
            repo_slug=slug,
            outcomes=tuple(outcomes),
            interrupted=stop_reason is not None,
        )
        duration = dt.timedelta(seconds=time.monotonic() - started_at)
        if stop_reason is None:
            self._event_logger.log_batch_completed(report, duration)
        else:
            self._event_logger.log_batch_interrupted(
                report,
                duration,
                remaining=len(candidates) - len(outcomes),
                reason=stop_reason,
            )
        return report

    async def _process_candidate(
        self, owner: str, name: str, slug: str, candidate: MergedPullRequest
    ) -> CandidateOutcome:
        progress = _Progress()
        try:
            outcome = await self._score_candidate(
                owner, name, slug, candidate, progress
            )
        except Exception as exc:  # noqa: BLE001 - recorded on the outcome
            outcome = CandidateOutcome(
                number=candidate.number,
                sha=candidate.sha,
                author=candidate.author,
                status=OutcomeStatus.FAILED,
                stage=progress.stage,
                error=exc,
            )
            self._event_logger.log_candidate_failed(slug, outcome, exc)
            return outcome

        if outcome.status is OutcomeStatus.SKIPPED:
            self._event_logger.log_candidate_skipped(slug, outcome)
        else:
            self._event_logger.log_candidate_completed(slug, outcome)
        return outcome

    async def _score_candidate(  # noqa: PLR0913
        self,
        owner: str,
        name: str,
        slug: str,
        candidate: MergedPullRequest,
        progress: _Progress,
    ) -> CandidateOutcome:
        def skipped(stage: PipelineStage, reason: SkipReason) -> CandidateOutcome:
            return CandidateOutcome(
                number=candidate.number,
                sha=candidate.sha,
                author=candidate.author,
                status=OutcomeStatus.SKIPPED,
                stage=stage,
                skip_reason=reason,
            )

        if await self._dedup_gate.exists(candidate.sha, slug):
            return skipped(PipelineStage.FETCHED, SkipReason.DUPLICATE)

        collaborators = self._collaborators
        diff = await collaborators.diff_fetcher.fetch_diff(owner, name, candidate.sha)
        if not self._size_filter.passes(diff.stats.additions):
            return skipped(PipelineStage.FILTERED, SkipReason.TOO_SMALL)
        progress.stage = PipelineStage.FILTERED

        context = await fetch_context_or_empty(
            collaborators.context_provider, owner, name, candidate.sha
        )
        assessment = await collaborators.scorer.score(diff, context)
        progress.stage = PipelineStage.SCORED
        record = build_contribution_record(
            slug, candidate, diff, assessment, analyzed_at=utcnow()
        )
        await collaborators.store.upsert_record(record)
        progress.stage = PipelineStage.PERSISTED
        aggregation = await self._aggregation.merge_event(
            record, candidate.author_avatar_url
        )
        return CandidateOutcome(
            number=candidate.number,
            sha=candidate.sha,
            author=candidate.author,
            status=OutcomeStatus.COMPLETED,
            stage=PipelineStage.AGGREGATED,
            score=assessment.score,
            aggregation=aggregation,
        )
