"""Quality assessment structures returned by scorers."""

from __future__ import annotations

import typing as typ

import msgspec

MIN_SCORE: float = 1.0
MAX_SCORE: float = 10.0

Score = typ.Annotated[float, msgspec.Meta(ge=MIN_SCORE, le=MAX_SCORE)]


class QualityAssessment(msgspec.Struct, kw_only=True, frozen=True):
    """Score and rationale produced for one change.

    Attributes
    ----------
    score
        Code quality score between 1 and 10 inclusive.
    summary
        One-sentence summary of the change.
    analysis
        Detailed technical rationale for the score.

    """

    score: Score
    summary: str
    analysis: str
