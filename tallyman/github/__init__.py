"""GitHub collaborators: merged pull request feed, diffs and project context."""

from __future__ import annotations

from .client import GitHubConfig, GitHubRestClient
from .errors import (
    GitHubAPIError,
    GitHubConfigError,
    GitHubRateLimitError,
    GitHubResponseShapeError,
)
from .models import (
    EMPTY_CONTEXT,
    CommitDiff,
    DiffFile,
    DiffStats,
    MergedPullRequest,
    ProjectContext,
)
from .protocol import ContextProvider, DiffFetcher, SourceFeed

__all__ = [
    "EMPTY_CONTEXT",
    "CommitDiff",
    "ContextProvider",
    "DiffFetcher",
    "DiffFile",
    "DiffStats",
    "GitHubAPIError",
    "GitHubConfig",
    "GitHubConfigError",
    "GitHubRateLimitError",
    "GitHubResponseShapeError",
    "GitHubRestClient",
    "MergedPullRequest",
    "ProjectContext",
    "SourceFeed",
]
