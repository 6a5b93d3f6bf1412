"""Collaborator interfaces the pipeline uses to reach source control."""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    from .models import CommitDiff, MergedPullRequest, ProjectContext


@typ.runtime_checkable
class SourceFeed(typ.Protocol):
    """Discover merged pull requests for a repository."""

    async def list_candidates(
        self, owner: str, repo: str, since_days: int
    ) -> list[MergedPullRequest]:
        """Return pull requests merged in the last ``since_days`` days, in order."""
        ...

    async def fetch_pull_request(
        self, owner: str, repo: str, number: int
    ) -> MergedPullRequest:
        """Return a single pull request by number."""
        ...


@typ.runtime_checkable
class DiffFetcher(typ.Protocol):
    """Resolve a commit to its diff and line statistics."""

    async def fetch_diff(self, owner: str, repo: str, sha: str) -> CommitDiff:
        """Return the diff for ``sha``."""
        ...


@typ.runtime_checkable
class ContextProvider(typ.Protocol):
    """Resolve supplementary project guidance for a commit."""

    async def fetch_context(self, owner: str, repo: str, sha: str) -> ProjectContext:
        """Return project guidance at ``sha``; absent guidance is not an error."""
        ...
