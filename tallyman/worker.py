"""Dramatiq actors for queued analysis and repository backfills.

Usage
-----
Queue a single pull request:

>>> analyze_pull_request_job.send(
...     database_url="postgresql+asyncpg://...",
...     reference="octo/reef#42",
... )

Queue a backfill over the configured lookback window:

>>> sync_repository_job.send(
...     database_url="postgresql+asyncpg://...",
...     repository="octo/reef",
... )

"""

from __future__ import annotations

import asyncio
import typing as typ

import dramatiq

from tallyman._broker import ensure_broker_configured
from tallyman.common.slug import parse_pull_request_ref
from tallyman.logging import get_logger, log_info
from tallyman.pipeline.batch import BatchRunner
from tallyman.pipeline.single import SingleItemPipeline
from tallyman.runtime import open_pipeline

if typ.TYPE_CHECKING:
    from tallyman.pipeline.models import AnalysisOutcome, BatchReport
    from tallyman.runtime import PipelineRuntime

logger = get_logger(__name__)


def summarize_analysis(outcome: AnalysisOutcome) -> dict[str, object]:
    """Return a JSON-serialisable summary of a single-item outcome."""
    quality = outcome.record.quality if outcome.record else None
    return {
        "number": outcome.pull_request.number,
        "status": outcome.status.value,
        "skip_reason": outcome.skip_reason.value if outcome.skip_reason else None,
        "score": quality.score if quality else None,
    }


def summarize_batch(report: BatchReport) -> dict[str, object]:
    """Return a JSON-serialisable summary of a batch report."""
    return {
        "repo_slug": report.repo_slug,
        "processed": report.processed,
        "skipped": report.skipped,
        "failed": report.failed,
        "interrupted": report.interrupted,
    }


async def analyze_with_runtime(
    runtime: PipelineRuntime, reference: str
) -> dict[str, object]:
    """Analyse ``owner/name#number`` with already-open collaborators."""
    owner, repo, number = parse_pull_request_ref(reference)
    pipeline = SingleItemPipeline(runtime.collaborators, config=runtime.config)
    return summarize_analysis(await pipeline.run(owner, repo, number))


async def sync_with_runtime(
    runtime: PipelineRuntime, repository: str, lookback_days: int | None = None
) -> dict[str, object]:
    """Backfill ``repository`` with already-open collaborators."""
    runner = BatchRunner(runtime.collaborators, config=runtime.config)
    return summarize_batch(await runner.run(repository, lookback_days))


async def _analyze_async(database_url: str, reference: str) -> dict[str, object]:
    async with open_pipeline(database_url) as runtime:
        return await analyze_with_runtime(runtime, reference)


async def _sync_async(
    database_url: str, repository: str, lookback_days: int | None
) -> dict[str, object]:
    async with open_pipeline(database_url) as runtime:
        return await sync_with_runtime(runtime, repository, lookback_days)


@dramatiq.actor
def analyze_pull_request_job(database_url: str, reference: str) -> dict[str, object]:
    """Dramatiq actor scoring one pull request.

    Parameters
    ----------
    database_url
        SQLAlchemy async URL for the ledger database.
    reference
        Pull request in ``owner/name#number`` format.

    Returns
    -------
    dict[str, object]
        Outcome status, skip reason and score.

    """
    ensure_broker_configured()
    summary = asyncio.run(_analyze_async(database_url, reference))
    log_info(logger, "Analysed %s: %s", reference, summary["status"])
    return summary


@dramatiq.actor
def sync_repository_job(
    database_url: str,
    repository: str,
    *,
    lookback_days: int | None = None,
) -> dict[str, object]:
    """Dramatiq actor backfilling a repository window.

    Per-item failures are reported in the returned counts; only setup
    failures raise and are retried by dramatiq.
    """
    ensure_broker_configured()
    summary = asyncio.run(_sync_async(database_url, repository, lookback_days))
    log_info(
        logger,
        "Synced %s: processed=%s skipped=%s failed=%s",
        repository,
        summary["processed"],
        summary["skipped"],
        summary["failed"],
    )
    return summary
