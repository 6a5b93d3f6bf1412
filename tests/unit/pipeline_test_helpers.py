"""Fakes and builders shared by the pipeline, CLI, action and worker tests."""

from __future__ import annotations

import contextlib
import dataclasses
import datetime as dt
import typing as typ

from tallyman.github.errors import GitHubAPIError
from tallyman.github.models import (
    CommitDiff,
    DiffFile,
    DiffStats,
    MergedPullRequest,
    ProjectContext,
)
from tallyman.ledger.errors import AggregateMergeError, RecordPersistError
from tallyman.ledger.models import ContributionRecord
from tallyman.pipeline.config import PipelineConfig
from tallyman.pipeline.steps import PipelineCollaborators
from tallyman.runtime import PipelineRuntime, open_store
from tallyman.scoring.models import QualityAssessment

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from tallyman.ledger.models import AggregateSnapshot
    from tallyman.ledger.services import ContributionStore, SqlContributionStore

MERGED_AT = dt.datetime(2024, 5, 1, 12, 30, tzinfo=dt.UTC)


def make_pull_request(  # noqa: PLR0913
    number: int,
    *,
    author: str = "alice",
    sha: str | None = None,
    additions: int = 40,
    merged_at: dt.datetime | None = MERGED_AT,
    avatar_url: str | None = None,
) -> MergedPullRequest:
    """Build a merged pull request with a predictable SHA."""
    return MergedPullRequest(
        number=number,
        sha=sha if sha is not None else f"sha{number:04d}",
        author=author,
        title=f"Change {number}",
        url=f"https://github.com/octo/reef/pull/{number}",
        merged_at=merged_at,
        additions=additions,
        deletions=2,
        description=f"Description for {number}",
        author_avatar_url=avatar_url,
    )


def make_diff(sha: str, additions: int = 40, *, author: str = "alice") -> CommitDiff:
    """Build a one-file diff with ``additions`` added lines."""
    return CommitDiff(
        sha=sha,
        message=f"Merge {sha}\n\nbody",
        author=author,
        date="2024-05-01T12:30:00Z",
        files=(
            DiffFile(
                filename="src/reef.py",
                status="modified",
                additions=additions,
                deletions=2,
                patch="@@ -1 +1 @@\n-old\n+new",
            ),
        ),
        stats=DiffStats(additions=additions, deletions=2),
    )


def assessment(score: float, summary: str = "Solid change.") -> QualityAssessment:
    """Build a validated quality assessment."""
    return QualityAssessment(score=score, summary=summary, analysis="Detailed.")


def make_record(  # noqa: PLR0913
    sha: str,
    *,
    author: str = "alice",
    score: float = 6.0,
    date: dt.date = MERGED_AT.date(),
    additions: int = 40,
    repo: str = "octo/reef",
) -> ContributionRecord:
    """Build a scored record committed at noon UTC on ``date``."""
    committed = dt.datetime.combine(date, dt.time(12), tzinfo=dt.UTC)
    return ContributionRecord(
        sha=sha,
        repo=repo,
        author=author,
        date=date,
        commit_date=committed,
        message=f"Change {sha}",
        additions=additions,
        pr_number=1,
        pr_title=f"Title {sha}",
        pr_url="https://github.com/octo/reef/pull/1",
        quality=assessment(score, summary=f"Summary {sha}"),
        analyzed_at=committed,
    )


class FakeSourceFeed:
    """In-memory SourceFeed returning a fixed candidate list."""

    def __init__(
        self,
        pull_requests: list[MergedPullRequest],
        *,
        error: Exception | None = None,
    ) -> None:
        """Store candidates and an optional error raised by every call."""
        self.pull_requests = pull_requests
        self.error = error
        self.list_calls: list[tuple[str, str, int]] = []

    async def list_candidates(
        self, owner: str, repo: str, days: int
    ) -> list[MergedPullRequest]:
        """Return the configured candidates in order."""
        self.list_calls.append((owner, repo, days))
        if self.error is not None:
            raise self.error
        return list(self.pull_requests)

    async def fetch_pull_request(
        self, owner: str, repo: str, number: int
    ) -> MergedPullRequest:
        """Return the candidate numbered ``number`` or raise 404."""
        if self.error is not None:
            raise self.error
        for pull_request in self.pull_requests:
            if pull_request.number == number:
                return pull_request
        raise GitHubAPIError.http_error(404, f"/repos/{owner}/{repo}/pulls/{number}")


class FakeDiffFetcher:
    """DiffFetcher keyed by SHA with optional per-SHA failures."""

    def __init__(
        self,
        additions: dict[str, int] | None = None,
        *,
        failures: dict[str, Exception] | None = None,
        default_additions: int = 40,
    ) -> None:
        """Store per-SHA addition counts and failures."""
        self.additions = additions or {}
        self.failures = failures or {}
        self.default_additions = default_additions
        self.calls: list[str] = []

    async def fetch_diff(self, owner: str, repo: str, sha: str) -> CommitDiff:
        """Return a diff for ``sha`` or raise its configured failure."""
        del owner, repo
        self.calls.append(sha)
        if sha in self.failures:
            raise self.failures[sha]
        return make_diff(sha, self.additions.get(sha, self.default_additions))


class FakeContextProvider:
    """ContextProvider returning a fixed context or raising an error."""

    def __init__(
        self,
        context: ProjectContext | None = None,
        *,
        error: Exception | None = None,
    ) -> None:
        """Store the context to return and an optional error."""
        self.context = context or ProjectContext(guidelines="Write tests.")
        self.error = error
        self.calls: list[str] = []

    async def fetch_context(self, owner: str, repo: str, sha: str) -> ProjectContext:
        """Return the configured context or raise the configured error."""
        del owner, repo
        self.calls.append(sha)
        if self.error is not None:
            raise self.error
        return self.context


class FakeScorer:
    """QualityScorer with per-SHA scores and failures."""

    def __init__(
        self,
        scores: dict[str, float] | None = None,
        *,
        failures: dict[str, Exception] | None = None,
        default_score: float = 6.0,
    ) -> None:
        """Store per-SHA scores and failures."""
        self.scores = scores or {}
        self.failures = failures or {}
        self.default_score = default_score
        self.calls: list[str] = []
        self.contexts: list[ProjectContext | None] = []

    @property
    def call_count(self) -> int:
        """Number of score requests received."""
        return len(self.calls)

    async def score(
        self, diff: CommitDiff, context: ProjectContext | None = None
    ) -> QualityAssessment:
        """Return the configured assessment for ``diff.sha``."""
        self.calls.append(diff.sha)
        self.contexts.append(context)
        if diff.sha in self.failures:
            raise self.failures[diff.sha]
        return assessment(self.scores.get(diff.sha, self.default_score))


class FlakyAggregateStore:
    """Store wrapper that fails selected record writes and aggregate merges.

    Every other call is delegated to the wrapped store.
    """

    def __init__(
        self,
        inner: ContributionStore,
        *,
        fail_daily: bool = False,
        fail_contributor: bool = False,
        fail_exists: Exception | None = None,
        fail_upsert: cabc.Collection[str] = (),
    ) -> None:
        """Wrap ``inner`` and configure which operations fail."""
        self.inner = inner
        self.fail_daily = fail_daily
        self.fail_contributor = fail_contributor
        self.fail_exists = fail_exists
        self.fail_upsert = frozenset(fail_upsert)
        self.upserts: list[ContributionRecord] = []

    async def exists(self, sha: str, repo: str) -> bool:
        """Delegate or raise the configured dedupe failure."""
        if self.fail_exists is not None:
            raise self.fail_exists
        return await self.inner.exists(sha, repo)

    async def upsert_record(self, record: ContributionRecord) -> None:
        """Record the call, then fail for configured SHAs or delegate."""
        self.upserts.append(record)
        if record.sha in self.fail_upsert:
            raise RecordPersistError.for_record(record.sha, record.repo)
        await self.inner.upsert_record(record)

    async def merge_daily_aggregate(  # noqa: PLR0913
        self,
        date: dt.date,
        author: str,
        delta_lines: int,
        score: float,
        avatar_url: str | None = None,
    ) -> AggregateSnapshot:
        """Delegate or fail the daily merge."""
        if self.fail_daily:
            raise AggregateMergeError.for_daily(date, author)
        return await self.inner.merge_daily_aggregate(
            date, author, delta_lines, score, avatar_url
        )

    async def merge_contributor_aggregate(
        self,
        author: str,
        delta_lines: int,
        score: float,
        avatar_url: str | None = None,
    ) -> AggregateSnapshot:
        """Delegate or fail the contributor merge."""
        if self.fail_contributor:
            raise AggregateMergeError.for_contributor(author)
        return await self.inner.merge_contributor_aggregate(
            author, delta_lines, score, avatar_url
        )


@dataclasses.dataclass(slots=True)
class PipelineFakes:
    """The fakes behind one set of collaborators, for assertions."""

    feed: FakeSourceFeed
    diffs: FakeDiffFetcher
    context: FakeContextProvider
    scorer: FakeScorer
    store: ContributionStore

    def collaborators(self) -> PipelineCollaborators:
        """Return collaborators wired to these fakes."""
        return PipelineCollaborators(
            source_feed=self.feed,
            diff_fetcher=self.diffs,
            context_provider=self.context,
            scorer=self.scorer,
            store=self.store,
        )


def build_fakes(
    store: ContributionStore,
    pull_requests: list[MergedPullRequest] | None = None,
    **overrides: typ.Any,  # noqa: ANN401
) -> PipelineFakes:
    """Return default fakes over ``store``; keyword overrides replace parts."""
    fakes = PipelineFakes(
        feed=FakeSourceFeed(pull_requests or []),
        diffs=FakeDiffFetcher(),
        context=FakeContextProvider(),
        scorer=FakeScorer(),
        store=store,
    )
    for name, value in overrides.items():
        setattr(fakes, name, value)
    return fakes


def runtime_for(
    fakes: PipelineFakes,
    store: SqlContributionStore,
    config: PipelineConfig | None = None,
) -> PipelineRuntime:
    """Wrap fakes in the runtime the entry points expect."""
    return PipelineRuntime(
        collaborators=fakes.collaborators(),
        config=config or PipelineConfig(),
        store=store,
    )


def fake_pipeline_opener(
    pull_requests: list[MergedPullRequest],
    *,
    config: PipelineConfig | None = None,
    **overrides: typ.Any,  # noqa: ANN401
) -> tuple[
    cabc.Callable[[str], contextlib.AbstractAsyncContextManager[PipelineRuntime]],
    list[PipelineFakes],
]:
    """Return a stand-in for ``open_pipeline`` and the fakes it creates.

    The opener binds a real SQL store to the URL it receives, so entry points
    that call ``asyncio.run`` get a store on their own event loop.
    """
    created: list[PipelineFakes] = []

    @contextlib.asynccontextmanager
    async def opener(database_url: str) -> cabc.AsyncIterator[PipelineRuntime]:
        async with open_store(database_url) as store:
            fakes = build_fakes(store, pull_requests, **overrides)
            created.append(fakes)
            yield runtime_for(fakes, store, config)

    return opener, created
