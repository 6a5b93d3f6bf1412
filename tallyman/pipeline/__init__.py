"""Contribution aggregation pipeline.

``BatchRunner`` backfills a repository window with per-candidate failure
isolation; ``SingleItemPipeline`` analyses one pull request and lets every
failure reach the caller. Both share the dedupe and size gates, the
weighted-mean ``AggregationEngine`` and the structured event logger.
"""

from __future__ import annotations

from tallyman.pipeline.aggregation import (
    AggregationEngine,
    validate_score,
    weighted_mean,
)
from tallyman.pipeline.batch import BatchRunner
from tallyman.pipeline.config import PipelineConfig, PipelineConfigError
from tallyman.pipeline.gates import DEFAULT_MIN_LINES, DedupGate, SizeFilter, passes
from tallyman.pipeline.models import (
    AggregateFailure,
    AggregateKey,
    AggregateSnapshot,
    AggregationResult,
    AnalysisOutcome,
    BatchReport,
    CandidateOutcome,
    ContributionRecord,
    ContributorKey,
    DailyKey,
    OutcomeStatus,
    PipelineStage,
    SkipReason,
    build_contribution_record,
)
from tallyman.pipeline.observability import (
    ErrorCategory,
    PipelineEventLogger,
    PipelineEventType,
    categorize_error,
)
from tallyman.pipeline.single import SingleItemPipeline
from tallyman.pipeline.steps import PipelineCollaborators, fetch_context_or_empty

__all__ = [
    "DEFAULT_MIN_LINES",
    "AggregateFailure",
    "AggregateKey",
    "AggregateSnapshot",
    "AggregationEngine",
    "AggregationResult",
    "AnalysisOutcome",
    "BatchReport",
    "BatchRunner",
    "CandidateOutcome",
    "ContributionRecord",
    "ContributorKey",
    "DailyKey",
    "DedupGate",
    "ErrorCategory",
    "OutcomeStatus",
    "PipelineCollaborators",
    "PipelineConfig",
    "PipelineConfigError",
    "PipelineEventLogger",
    "PipelineEventType",
    "PipelineStage",
    "SingleItemPipeline",
    "SizeFilter",
    "SkipReason",
    "build_contribution_record",
    "categorize_error",
    "fetch_context_or_empty",
    "passes",
    "validate_score",
    "weighted_mean",
]
