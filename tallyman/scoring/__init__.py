"""Quality scoring for merged changes.

The :class:`QualityScorer` protocol turns a diff plus optional project
guidance into a validated :class:`QualityAssessment`. ``OpenAIQualityScorer``
calls a chat completions endpoint; ``MockQualityScorer`` is deterministic and
needs no network.
"""

from __future__ import annotations

from tallyman.scoring.config import OpenAIScorerConfig
from tallyman.scoring.errors import (
    OpenAIConfigError,
    ScorerConfigError,
    ScoringAPIError,
    ScoringRateLimitError,
    ScoringResponseShapeError,
)
from tallyman.scoring.factory import create_quality_scorer
from tallyman.scoring.metrics import ModelInvocationMetrics
from tallyman.scoring.mock import MockQualityScorer
from tallyman.scoring.models import MAX_SCORE, MIN_SCORE, QualityAssessment
from tallyman.scoring.openai_client import OpenAIQualityScorer
from tallyman.scoring.protocol import QualityScorer
from tallyman.scoring.validation import (
    ScoreAccepted,
    ScorePayloadResult,
    ScoreRejected,
    parse_quality_payload,
    require_assessment,
)

__all__ = [
    "MAX_SCORE",
    "MIN_SCORE",
    "MockQualityScorer",
    "ModelInvocationMetrics",
    "OpenAIConfigError",
    "OpenAIQualityScorer",
    "OpenAIScorerConfig",
    "QualityAssessment",
    "QualityScorer",
    "ScoreAccepted",
    "ScorePayloadResult",
    "ScoreRejected",
    "ScorerConfigError",
    "ScoringAPIError",
    "ScoringRateLimitError",
    "ScoringResponseShapeError",
    "create_quality_scorer",
    "parse_quality_payload",
    "require_assessment",
]
