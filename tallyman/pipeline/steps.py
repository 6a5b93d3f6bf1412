"""Collaborators and steps shared by the batch and single-item pipelines."""

from __future__ import annotations

import dataclasses
import typing as typ

from tallyman.common.errors import RateLimitError, TransportError
from tallyman.github.models import EMPTY_CONTEXT
from tallyman.logging import get_logger, log_warning

if typ.TYPE_CHECKING:
    from tallyman.github.models import ProjectContext
    from tallyman.github.protocol import ContextProvider, DiffFetcher, SourceFeed
    from tallyman.ledger.services import ContributionStore
    from tallyman.scoring.protocol import QualityScorer

logger = get_logger(__name__)


@dataclasses.dataclass(frozen=True, slots=True)
class PipelineCollaborators:
    """External collaborators injected into a pipeline.

    A single :class:`~tallyman.github.GitHubRestClient` usually serves as
    ``source_feed``, ``diff_fetcher`` and ``context_provider``; tests pass a
    separate fake for each role.
    """

    source_feed: SourceFeed
    diff_fetcher: DiffFetcher
    context_provider: ContextProvider
    scorer: QualityScorer
    store: ContributionStore


async def fetch_context_or_empty(
    provider: ContextProvider, owner: str, repo: str, sha: str
) -> ProjectContext:
    """Return project context at ``sha``, or an empty context on failure.

    Rate-limit errors propagate so batch runs can stop on them.
    """
    try:
        return await provider.fetch_context(owner, repo, sha)
    except RateLimitError:
        raise
    except TransportError as exc:
        log_warning(
            logger,
            "Context fetch failed for %s/%s@%s, scoring without it: %s",
            owner,
            repo,
            sha,
            exc,
        )
        return EMPTY_CONTEXT
