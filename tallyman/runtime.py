"""Wiring shared by the CLI, the action entry point and the worker.

:func:`open_pipeline` turns environment configuration into live
collaborators (GitHub client, scorer, SQL store) and closes everything it
opened on exit.
"""

from __future__ import annotations

import contextlib
import dataclasses
import os
import typing as typ

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from tallyman.common.errors import ConfigError
from tallyman.github.client import GitHubConfig, GitHubRestClient
from tallyman.ledger.services import SqlContributionStore
from tallyman.pipeline.config import PipelineConfig
from tallyman.pipeline.steps import PipelineCollaborators
from tallyman.scoring.factory import create_quality_scorer

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

DATABASE_URL_ENV_VAR = "TALLYMAN_DATABASE_URL"


class DatabaseConfigError(ConfigError):
    """Raised when no database URL is configured."""

    @classmethod
    def missing_url(cls) -> DatabaseConfigError:
        """Create error for a missing database URL."""
        return cls(f"{DATABASE_URL_ENV_VAR} environment variable is required")


def database_url_from_env() -> str:
    """Return ``TALLYMAN_DATABASE_URL`` or raise :class:`DatabaseConfigError`."""
    url = os.environ.get(DATABASE_URL_ENV_VAR, "").strip()
    if not url:
        raise DatabaseConfigError.missing_url()
    return url


@dataclasses.dataclass(frozen=True, slots=True)
class PipelineRuntime:
    """Live collaborators and configuration for one process or job."""

    collaborators: PipelineCollaborators
    config: PipelineConfig
    store: SqlContributionStore


@contextlib.asynccontextmanager
async def open_engine(database_url: str) -> cabc.AsyncIterator[AsyncEngine]:
    """Yield an async engine for ``database_url`` and dispose it on exit."""
    engine = create_async_engine(database_url)
    try:
        yield engine
    finally:
        await engine.dispose()


@contextlib.asynccontextmanager
async def open_store(database_url: str) -> cabc.AsyncIterator[SqlContributionStore]:
    """Yield a store bound to ``database_url``."""
    async with open_engine(database_url) as engine:
        session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            engine, expire_on_commit=False
        )
        yield SqlContributionStore(session_factory)


@contextlib.asynccontextmanager
async def open_pipeline(database_url: str) -> cabc.AsyncIterator[PipelineRuntime]:
    """Yield collaborators built from environment configuration.

    All configuration is read before any connection is opened, so a
    :class:`ConfigError` leaves nothing to clean up.
    """
    github_config = GitHubConfig.from_env()
    config = PipelineConfig.from_env()
    scorer = create_quality_scorer()
    github = GitHubRestClient(github_config)
    try:
        async with open_store(database_url) as store:
            yield PipelineRuntime(
                collaborators=PipelineCollaborators(
                    source_feed=github,
                    diff_fetcher=github,
                    context_provider=github,
                    scorer=scorer,
                    store=store,
                ),
                config=config,
                store=store,
            )
    finally:
        await github.aclose()
        aclose = getattr(scorer, "aclose", None)
        if aclose is not None:
            await aclose()
