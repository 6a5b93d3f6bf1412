"""Mock implementation of QualityScorer for testing and development."""

from __future__ import annotations

import typing as typ

from tallyman.scoring.metrics import ModelInvocationMetrics
from tallyman.scoring.models import MAX_SCORE, MIN_SCORE, QualityAssessment

if typ.TYPE_CHECKING:
    from tallyman.github.models import CommitDiff, ProjectContext

_BASELINE_SCORE = 5.0
_LARGE_CHANGE_LINES = 500


class MockQualityScorer:
    """Deterministic mock implementation of QualityScorer.

    Scores a diff with simple heuristics instead of calling a model, so the
    same diff always yields the same assessment.

    Heuristics
    ----------
    Starting from a baseline of 5:

    1. Diffs that touch test files gain a point.
    2. Diffs accompanied by project guidance gain half a point.
    3. Diffs adding more than 500 lines lose a point.

    The result is clamped to the 1-10 range.

    """

    def __init__(self) -> None:
        """Initialize invocation metrics storage."""
        self._last_invocation_metrics: ModelInvocationMetrics | None = None

    @property
    def last_invocation_metrics(self) -> ModelInvocationMetrics | None:
        """Return metrics captured from the latest invocation."""
        return self._last_invocation_metrics

    async def score(
        self,
        diff: CommitDiff,
        context: ProjectContext | None = None,
    ) -> QualityAssessment:
        """Return a heuristic assessment of ``diff``."""
        self._last_invocation_metrics = ModelInvocationMetrics(
            prompt_tokens=0,
            completion_tokens=0,
            total_tokens=0,
            latency_ms=0.0,
        )
        value = _BASELINE_SCORE
        touches_tests = any("test" in f.filename.lower() for f in diff.files)
        if touches_tests:
            value += 1.0
        if context is not None and not context.is_empty:
            value += 0.5
        if diff.stats.additions > _LARGE_CHANGE_LINES:
            value -= 1.0
        value = min(MAX_SCORE, max(MIN_SCORE, value))

        file_count = len(diff.files)
        files_word = "file" if file_count == 1 else "files"
        return QualityAssessment(
            score=value,
            summary=f"{diff.author} changed {file_count} {files_word}.",
            analysis=(
                f"+{diff.stats.additions}/-{diff.stats.deletions} lines; "
                f"tests touched: {'yes' if touches_tests else 'no'}."
            ),
        )
