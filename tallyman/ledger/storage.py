"""Persistence models for scored contributions and their running aggregates."""

from __future__ import annotations

import datetime as dt
import typing as typ

from sqlalchemy import (
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from tallyman.common.time import utcnow
from tallyman.ledger.errors import TimezoneAwareRequiredError

if typ.TYPE_CHECKING:
    from sqlalchemy.engine import Dialect
    from sqlalchemy.ext.asyncio import AsyncEngine


class Base(DeclarativeBase):
    """Base declarative class for ledger models."""


class UTCDateTime(TypeDecorator[dt.datetime]):
    """DateTime wrapper that round-trips UTC tzinfo even on SQLite."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Force bound datetime values to UTC with tzinfo."""
        if value is None:
            return None
        if value.tzinfo is None:
            raise TimezoneAwareRequiredError.for_column()
        return value.astimezone(dt.UTC)

    def process_result_value(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Ensure result datetimes are UTC and timezone aware."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.UTC)
        return value.astimezone(dt.UTC)


class Contribution(Base):
    """One scored change-event, unique per merge commit and repository."""

    __tablename__ = "contributions"
    __table_args__ = (
        UniqueConstraint("sha", "repo", name="uq_contributions_sha_repo"),
        Index("ix_contributions_date", "date"),
        Index("ix_contributions_author", "author"),
        Index("ix_contributions_repo", "repo"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    sha: Mapped[str] = mapped_column(String(64))
    repo: Mapped[str] = mapped_column(String(255))
    author: Mapped[str] = mapped_column(String(255))
    date: Mapped[dt.date] = mapped_column(Date())
    commit_date: Mapped[dt.datetime] = mapped_column(UTCDateTime())
    message: Mapped[str] = mapped_column(Text())
    additions: Mapped[int] = mapped_column(Integer)

    pr_number: Mapped[int | None] = mapped_column(Integer, default=None)
    pr_title: Mapped[str | None] = mapped_column(Text(), default=None)
    pr_url: Mapped[str | None] = mapped_column(String(512), default=None)
    pr_description: Mapped[str | None] = mapped_column(Text(), default=None)

    quality_score: Mapped[float | None] = mapped_column(Float, default=None)
    quality_summary: Mapped[str | None] = mapped_column(Text(), default=None)
    quality_analysis: Mapped[str | None] = mapped_column(Text(), default=None)
    analyzed_at: Mapped[dt.datetime | None] = mapped_column(UTCDateTime())

    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


class DailySummaryRow(Base):
    """Running aggregate for one author on one calendar day."""

    __tablename__ = "daily_summaries"
    __table_args__ = (
        UniqueConstraint("date", "author", name="uq_daily_summaries_date_author"),
        Index("ix_daily_summaries_author", "author"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    date: Mapped[dt.date] = mapped_column(Date())
    author: Mapped[str] = mapped_column(String(255))
    total_lines: Mapped[int] = mapped_column(Integer, default=0)
    total_commits: Mapped[int] = mapped_column(Integer, default=0)
    avg_quality_score: Mapped[float | None] = mapped_column(Float, default=None)
    avatar_url: Mapped[str | None] = mapped_column(String(512), default=None)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


class ContributorRow(Base):
    """Lifetime running aggregate for one author."""

    __tablename__ = "contributors"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    login: Mapped[str] = mapped_column(String(255), unique=True)
    total_lines: Mapped[int] = mapped_column(Integer, default=0)
    total_commits: Mapped[int] = mapped_column(Integer, default=0)
    avg_quality_score: Mapped[float | None] = mapped_column(Float, default=None)
    avatar_url: Mapped[str | None] = mapped_column(String(512), default=None)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime(), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow
    )


async def init_ledger_storage(engine: AsyncEngine) -> None:
    """Create all tables registered with Base if they are absent."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
