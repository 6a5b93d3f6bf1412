"""Cheap checks that run before the expensive fetch and score steps."""

from __future__ import annotations

import typing as typ

from tallyman.common.errors import PersistenceError
from tallyman.pipeline.observability import PipelineEventLogger

if typ.TYPE_CHECKING:
    from tallyman.ledger.services import ContributionStore

DEFAULT_MIN_LINES = 10


def passes(additions: int, min_lines: int = DEFAULT_MIN_LINES) -> bool:
    """Return whether a change adds at least ``min_lines`` lines.

    >>> passes(5)
    False
    >>> passes(10)
    True

    """
    return additions >= min_lines


class SizeFilter:
    """Gate undersized changes before the scorer is invoked."""

    def __init__(self, min_lines: int = DEFAULT_MIN_LINES) -> None:
        """Store the minimum number of added lines worth scoring."""
        if min_lines < 0:
            msg = f"min_lines must be non-negative, got {min_lines}"
            raise ValueError(msg)
        self.min_lines = min_lines

    def passes(self, additions: int) -> bool:
        """Return whether ``additions`` meets the configured minimum."""
        return passes(additions, self.min_lines)


class DedupGate:
    """Decide whether a change-event was already recorded.

    Lookup failures are logged and reported as "not recorded": the record
    write downstream is an idempotent upsert, so re-scoring is the worst
    outcome.
    """

    def __init__(
        self,
        store: ContributionStore,
        *,
        event_logger: PipelineEventLogger | None = None,
    ) -> None:
        """Bind the gate to the store it consults."""
        self._store = store
        self._event_logger = event_logger or PipelineEventLogger()

    async def exists(self, sha: str, repo: str) -> bool:
        """Return whether ``(sha, repo)`` is recorded, ``False`` on lookup failure."""
        try:
            return await self._store.exists(sha, repo)
        except PersistenceError as exc:
            self._event_logger.log_dedup_check_failed(sha, repo, exc)
            return False
