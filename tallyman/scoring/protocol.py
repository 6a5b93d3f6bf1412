"""QualityScorer protocol for LLM-backed code review."""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    from tallyman.github.models import CommitDiff, ProjectContext
    from tallyman.scoring.models import QualityAssessment


@typ.runtime_checkable
class QualityScorer(typ.Protocol):
    """Protocol for scoring a diff.

    Implementations receive the diff of a merged change and any project
    guidance, and return a validated :class:`QualityAssessment`. They raise
    a :class:`~tallyman.common.errors.ScoringError` subclass when the backend
    cannot be reached or returns a payload that fails validation; they never
    return an unvalidated score.

    Examples
    --------
    >>> from tallyman.scoring import MockQualityScorer, QualityScorer
    >>> isinstance(MockQualityScorer(), QualityScorer)
    True

    """

    async def score(
        self,
        diff: CommitDiff,
        context: ProjectContext | None = None,
    ) -> QualityAssessment:
        """Score ``diff`` in light of ``context``."""
        ...
