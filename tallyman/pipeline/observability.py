"""Structured pipeline events and error categorisation.

Every event is a single ``[event.type] key=value ...`` line emitted through
femtologging so runs can be followed in log aggregators. Successes log at
INFO, skips and dedupe fallbacks at INFO or WARNING, and failures at ERROR
with an ``error_category`` suitable for alert routing.

>>> event_logger = PipelineEventLogger()
>>> event_logger.log_batch_started(
...     repo_slug="octo/reef", lookback_days=30, candidate_count=4
... )

"""

from __future__ import annotations

import enum
import typing as typ

from sqlalchemy.exc import (
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)

from tallyman.common.errors import ConfigError, PersistenceError, RateLimitError
from tallyman.github.errors import GitHubAPIError, GitHubResponseShapeError
from tallyman.logging import get_logger, log_error, log_info, log_warning
from tallyman.pipeline.models import DailyKey, SkipReason
from tallyman.scoring.errors import ScoringAPIError, ScoringResponseShapeError

if typ.TYPE_CHECKING:
    import datetime as dt

    from tallyman.pipeline.models import (
        AggregateKey,
        AnalysisOutcome,
        BatchReport,
        CandidateOutcome,
    )

logger = get_logger(__name__)

_HTTP_SERVER_ERROR_THRESHOLD = 500


class PipelineEventType(enum.StrEnum):
    """Structured log event types for pipeline runs."""

    BATCH_STARTED = "pipeline.batch.started"
    BATCH_COMPLETED = "pipeline.batch.completed"
    BATCH_INTERRUPTED = "pipeline.batch.interrupted"
    CANDIDATE_COMPLETED = "pipeline.candidate.completed"
    CANDIDATE_SKIPPED = "pipeline.candidate.skipped"
    CANDIDATE_FAILED = "pipeline.candidate.failed"
    DEDUP_CHECK_FAILED = "pipeline.dedup.check_failed"
    AGGREGATE_MERGE_FAILED = "pipeline.aggregate.merge_failed"
    SINGLE_STARTED = "pipeline.single.started"
    SINGLE_COMPLETED = "pipeline.single.completed"
    SINGLE_FAILED = "pipeline.single.failed"


class ErrorCategory(enum.StrEnum):
    """Categories for error classification in alerts."""

    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    CLIENT_ERROR = "client_error"
    SCHEMA_DRIFT = "schema_drift"
    CONFIGURATION = "configuration"
    DATABASE_CONNECTIVITY = "database_connectivity"
    DATA_INTEGRITY = "data_integrity"
    DATABASE_ERROR = "database_error"
    UNKNOWN = "unknown"


_EXCEPTION_CATEGORY_MAP: tuple[tuple[type[BaseException], ErrorCategory], ...] = (
    (RateLimitError, ErrorCategory.RATE_LIMITED),
    (GitHubResponseShapeError, ErrorCategory.SCHEMA_DRIFT),
    (ScoringResponseShapeError, ErrorCategory.SCHEMA_DRIFT),
    (ConfigError, ErrorCategory.CONFIGURATION),
    (OperationalError, ErrorCategory.DATABASE_CONNECTIVITY),
    (InterfaceError, ErrorCategory.DATABASE_CONNECTIVITY),
    (IntegrityError, ErrorCategory.DATA_INTEGRITY),
    (SQLAlchemyError, ErrorCategory.DATABASE_ERROR),
)


def _categorize_http_error(status_code: int | None) -> ErrorCategory:
    # No status code means the request never completed.
    if status_code is None or status_code >= _HTTP_SERVER_ERROR_THRESHOLD:
        return ErrorCategory.TRANSIENT
    return ErrorCategory.CLIENT_ERROR


def categorize_error(exc: BaseException) -> ErrorCategory:
    """Categorize an exception for alerting purposes.

    Persistence errors are categorised by their chained SQLAlchemy cause
    when one is present.
    """
    for exc_type, category in _EXCEPTION_CATEGORY_MAP:
        if isinstance(exc, exc_type):
            return category

    if isinstance(exc, GitHubAPIError | ScoringAPIError):
        return _categorize_http_error(exc.status_code)

    if isinstance(exc, PersistenceError):
        cause = exc.__cause__
        if isinstance(cause, SQLAlchemyError):
            return categorize_error(cause)
        return ErrorCategory.DATABASE_ERROR

    return ErrorCategory.UNKNOWN


def _describe_key(key: AggregateKey) -> str:
    if isinstance(key, DailyKey):
        return f"daily:{key.date.isoformat()}:{key.author}"
    return f"contributor:{key.author}"


class PipelineEventLogger:
    """Emit structured pipeline events via femtologging."""

    def log_batch_started(
        self, *, repo_slug: str, lookback_days: int, candidate_count: int
    ) -> None:
        """Log the start of a batch run once candidates are known."""
        log_info(
            logger,
            "[%s] repo_slug=%s lookback_days=%d candidate_count=%d",
            PipelineEventType.BATCH_STARTED,
            repo_slug,
            lookback_days,
            candidate_count,
        )

    def log_batch_completed(self, report: BatchReport, duration: dt.timedelta) -> None:
        """Log batch completion with outcome counts."""
        skips = report.skipped_by_reason
        log_info(
            logger,
            "[%s] repo_slug=%s duration_seconds=%.3f processed=%d skipped=%d "
            "failed=%d skipped_duplicate=%d skipped_too_small=%d "
            "aggregate_failures=%d",
            PipelineEventType.BATCH_COMPLETED,
            report.repo_slug,
            duration.total_seconds(),
            report.processed,
            report.skipped,
            report.failed,
            skips.get(SkipReason.DUPLICATE, 0),
            skips.get(SkipReason.TOO_SMALL, 0),
            report.aggregate_failures,
        )

    def log_batch_interrupted(
        self,
        report: BatchReport,
        duration: dt.timedelta,
        *,
        remaining: int,
        reason: str,
    ) -> None:
        """Log a batch run stopped before its last candidate."""
        log_warning(
            logger,
            "[%s] repo_slug=%s duration_seconds=%.3f processed=%d skipped=%d "
            "failed=%d remaining=%d reason=%s",
            PipelineEventType.BATCH_INTERRUPTED,
            report.repo_slug,
            duration.total_seconds(),
            report.processed,
            report.skipped,
            report.failed,
            remaining,
            reason,
        )

    def log_candidate_completed(self, repo_slug: str, outcome: CandidateOutcome) -> None:
        """Log a candidate scored, recorded and merged."""
        log_info(
            logger,
            "[%s] repo_slug=%s number=%d sha=%s author=%s score=%s stage=%s",
            PipelineEventType.CANDIDATE_COMPLETED,
            repo_slug,
            outcome.number,
            outcome.sha,
            outcome.author,
            outcome.score,
            outcome.stage,
        )

    def log_candidate_skipped(self, repo_slug: str, outcome: CandidateOutcome) -> None:
        """Log a candidate skipped as duplicate or too small."""
        log_info(
            logger,
            "[%s] repo_slug=%s number=%d sha=%s author=%s reason=%s",
            PipelineEventType.CANDIDATE_SKIPPED,
            repo_slug,
            outcome.number,
            outcome.sha,
            outcome.author,
            outcome.skip_reason,
        )

    def log_candidate_failed(
        self, repo_slug: str, outcome: CandidateOutcome, error: Exception
    ) -> None:
        """Log a candidate that failed, with the originating identity."""
        log_error(
            logger,
            "[%s] repo_slug=%s number=%d sha=%s author=%s stage=%s "
            "error_type=%s error_category=%s error_message=%s",
            PipelineEventType.CANDIDATE_FAILED,
            repo_slug,
            outcome.number,
            outcome.sha,
            outcome.author,
            outcome.stage,
            type(error).__name__,
            categorize_error(error),
            str(error),
            exc_info=error,
        )

    def log_dedup_check_failed(self, sha: str, repo_slug: str, error: Exception) -> None:
        """Log a dedupe lookup failure that is treated as "not recorded"."""
        log_warning(
            logger,
            "[%s] repo_slug=%s sha=%s error_type=%s error_category=%s "
            "error_message=%s",
            PipelineEventType.DEDUP_CHECK_FAILED,
            repo_slug,
            sha,
            type(error).__name__,
            categorize_error(error),
            str(error),
        )

    def log_aggregate_merge_failed(
        self, sha: str, key: AggregateKey, error: Exception
    ) -> None:
        """Log a failed aggregate merge; the record write stands."""
        log_error(
            logger,
            "[%s] sha=%s key=%s error_type=%s error_category=%s error_message=%s",
            PipelineEventType.AGGREGATE_MERGE_FAILED,
            sha,
            _describe_key(key),
            type(error).__name__,
            categorize_error(error),
            str(error),
            exc_info=error,
        )

    def log_single_started(self, repo_slug: str, number: int) -> None:
        """Log the start of a single-item analysis."""
        log_info(
            logger,
            "[%s] repo_slug=%s number=%d",
            PipelineEventType.SINGLE_STARTED,
            repo_slug,
            number,
        )

    def log_single_completed(self, repo_slug: str, outcome: AnalysisOutcome) -> None:
        """Log a finished single-item analysis, completed or skipped."""
        quality = outcome.record.quality if outcome.record else None
        score = quality.score if quality else None
        log_info(
            logger,
            "[%s] repo_slug=%s number=%d status=%s reason=%s score=%s",
            PipelineEventType.SINGLE_COMPLETED,
            repo_slug,
            outcome.pull_request.number,
            outcome.status,
            outcome.skip_reason,
            score,
        )

    def log_single_failed(self, repo_slug: str, number: int, error: Exception) -> None:
        """Log a failed single-item analysis before the error propagates."""
        log_error(
            logger,
            "[%s] repo_slug=%s number=%d error_type=%s error_category=%s "
            "error_message=%s",
            PipelineEventType.SINGLE_FAILED,
            repo_slug,
            number,
            type(error).__name__,
            categorize_error(error),
            str(error),
            exc_info=error,
        )
