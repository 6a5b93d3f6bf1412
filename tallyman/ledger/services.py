"""Contribution store: idempotent record upserts and atomic aggregate merges."""

from __future__ import annotations

import datetime as dt
import typing as typ

from sqlalchemy import Float, String, case, func, literal, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tallyman.common.time import since_days, utcnow
from tallyman.ledger.errors import (
    AggregateMergeError,
    RecordLookupError,
    RecordPersistError,
)
from tallyman.ledger.models import (
    AggregateSnapshot,
    ContributionRecord,
    ContributorSummary,
    DailySummary,
    TeamDigest,
)
from tallyman.ledger.storage import Contribution, ContributorRow, DailySummaryRow
from tallyman.scoring.models import QualityAssessment

if typ.TYPE_CHECKING:
    from sqlalchemy.engine import CursorResult
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    type SessionFactory = async_sessionmaker[AsyncSession]
    type AggregateModel = type[DailySummaryRow] | type[ContributorRow]

# One retry covers the only expected conflict: a concurrent first insert.
_WRITE_ATTEMPTS = 2
_DIGEST_TOP_LIMIT = 5


@typ.runtime_checkable
class ContributionStore(typ.Protocol):
    """Storage operations the pipeline depends on."""

    async def exists(self, sha: str, repo: str) -> bool:
        """Return whether a record for ``(sha, repo)`` is present."""
        ...

    async def upsert_record(self, record: ContributionRecord) -> None:
        """Insert ``record`` or overwrite the mutable fields of its key."""
        ...

    async def merge_daily_aggregate(
        self,
        date: dt.date,
        author: str,
        delta_lines: int,
        score: float,
        avatar_url: str | None = None,
    ) -> AggregateSnapshot:
        """Atomically merge one scored event into the daily aggregate."""
        ...

    async def merge_contributor_aggregate(
        self,
        author: str,
        delta_lines: int,
        score: float,
        avatar_url: str | None = None,
    ) -> AggregateSnapshot:
        """Atomically merge one scored event into the contributor aggregate."""
        ...


def _apply_record(row: Contribution, record: ContributionRecord) -> None:
    row.author = record.author
    row.date = record.date
    row.commit_date = record.commit_date
    row.message = record.message
    row.additions = record.additions
    row.pr_number = record.pr_number
    row.pr_title = record.pr_title
    row.pr_url = record.pr_url
    row.pr_description = record.pr_description
    quality = record.quality
    row.quality_score = quality.score if quality else None
    row.quality_summary = quality.summary if quality else None
    row.quality_analysis = quality.analysis if quality else None
    row.analyzed_at = record.analyzed_at


def _record_from_row(row: Contribution) -> ContributionRecord:
    quality = None
    if row.quality_score is not None:
        quality = QualityAssessment(
            score=row.quality_score,
            summary=row.quality_summary or "",
            analysis=row.quality_analysis or "",
        )
    return ContributionRecord(
        sha=row.sha,
        repo=row.repo,
        author=row.author,
        date=row.date,
        commit_date=row.commit_date,
        message=row.message,
        additions=row.additions,
        pr_number=row.pr_number,
        pr_title=row.pr_title,
        pr_url=row.pr_url,
        pr_description=row.pr_description,
        quality=quality,
        analyzed_at=row.analyzed_at,
    )


def _daily_from_row(row: DailySummaryRow) -> DailySummary:
    return DailySummary(
        date=row.date,
        author=row.author,
        total_lines=row.total_lines,
        total_commits=row.total_commits,
        avg_quality_score=row.avg_quality_score,
        avatar_url=row.avatar_url,
    )


def _contributor_from_row(row: ContributorRow) -> ContributorSummary:
    return ContributorSummary(
        login=row.login,
        total_lines=row.total_lines,
        total_commits=row.total_commits,
        avg_quality_score=row.avg_quality_score,
        avatar_url=row.avatar_url,
    )


def _snapshot_from_row(row: DailySummaryRow | ContributorRow) -> AggregateSnapshot:
    return AggregateSnapshot(
        total_lines=row.total_lines,
        total_commits=row.total_commits,
        avg_quality_score=row.avg_quality_score,
        avatar_url=row.avatar_url,
    )


def _mean(values: list[float]) -> float | None:
    if not values:
        return None
    return sum(values) / len(values)


class SqlContributionStore:
    """SQLAlchemy implementation of :class:`ContributionStore`.

    Aggregate merges never read a snapshot into Python and write it back.
    The new totals and the weighted mean are computed by the database inside
    a single ``UPDATE``, so two pipelines merging into the same key cannot
    lose each other's contribution. When no row exists yet the merge inserts
    one; if a concurrent merge wins that insert, the ``UPDATE`` is retried.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        """Store the session factory used for ledger operations."""
        self._session_factory = session_factory

    async def exists(self, sha: str, repo: str) -> bool:
        """Return whether a record for ``(sha, repo)`` is present.

        Raises
        ------
        RecordLookupError
            If the query fails; the SQLAlchemy error is chained as the cause.

        """
        stmt = select(Contribution.id).where(
            Contribution.sha == sha, Contribution.repo == repo
        )
        try:
            async with self._session_factory() as session:
                return await session.scalar(stmt) is not None
        except SQLAlchemyError as exc:
            raise RecordLookupError.for_record(sha, repo) from exc

    async def upsert_record(self, record: ContributionRecord) -> None:
        """Insert ``record`` or overwrite the mutable fields of its key.

        Raises
        ------
        RecordPersistError
            If the write fails; the SQLAlchemy error is chained as the cause.

        """
        for attempt in range(1, _WRITE_ATTEMPTS + 1):
            async with self._session_factory() as session:
                try:
                    await self._write_record(session, record)
                    await session.commit()
                except IntegrityError as exc:
                    await session.rollback()
                    if attempt == _WRITE_ATTEMPTS:
                        raise RecordPersistError.concurrent_insert(
                            record.sha, record.repo
                        ) from exc
                except SQLAlchemyError as exc:
                    raise RecordPersistError.for_record(record.sha, record.repo) from exc
                else:
                    return

    @staticmethod
    async def _write_record(session: AsyncSession, record: ContributionRecord) -> None:
        stmt = select(Contribution).where(
            Contribution.sha == record.sha, Contribution.repo == record.repo
        )
        row = await session.scalar(stmt)
        if row is None:
            row = Contribution(sha=record.sha, repo=record.repo)
            session.add(row)
        _apply_record(row, record)
        await session.flush()

    async def merge_daily_aggregate(
        self,
        date: dt.date,
        author: str,
        delta_lines: int,
        score: float,
        avatar_url: str | None = None,
    ) -> AggregateSnapshot:
        """Atomically merge one scored event into the ``(date, author)`` row."""
        try:
            return await self._merge(
                DailySummaryRow,
                {"date": date, "author": author},
                delta_lines=delta_lines,
                score=score,
                avatar_url=avatar_url,
            )
        except SQLAlchemyError as exc:
            raise AggregateMergeError.for_daily(date, author) from exc

    async def merge_contributor_aggregate(
        self,
        author: str,
        delta_lines: int,
        score: float,
        avatar_url: str | None = None,
    ) -> AggregateSnapshot:
        """Atomically merge one scored event into the ``author`` row."""
        try:
            return await self._merge(
                ContributorRow,
                {"login": author},
                delta_lines=delta_lines,
                score=score,
                avatar_url=avatar_url,
            )
        except SQLAlchemyError as exc:
            raise AggregateMergeError.for_contributor(author) from exc

    async def _merge(
        self,
        model: AggregateModel,
        key: dict[str, object],
        *,
        delta_lines: int,
        score: float,
        avatar_url: str | None,
    ) -> AggregateSnapshot:
        for attempt in range(1, _WRITE_ATTEMPTS + 1):
            async with self._session_factory() as session:
                try:
                    snapshot = await self._update_aggregate(
                        session, model, key, delta_lines, score, avatar_url
                    )
                    if snapshot is None:
                        session.add(
                            model(
                                **key,
                                total_lines=delta_lines,
                                total_commits=1,
                                avg_quality_score=float(score),
                                avatar_url=avatar_url,
                            )
                        )
                        await session.flush()
                        snapshot = AggregateSnapshot(
                            total_lines=delta_lines,
                            total_commits=1,
                            avg_quality_score=float(score),
                            avatar_url=avatar_url,
                        )
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    if attempt == _WRITE_ATTEMPTS:
                        raise
                else:
                    return snapshot
        msg = "unreachable: merge loop exited without returning"
        raise AssertionError(msg)

    @staticmethod
    async def _update_aggregate(
        session: AsyncSession,
        model: AggregateModel,
        key: dict[str, object],
        delta_lines: int,
        score: float,
        avatar_url: str | None,
    ) -> AggregateSnapshot | None:
        """Apply the merge in-database; return ``None`` when no row matched.

        Every right-hand side refers to the pre-update column values, so the
        weighted mean divides by the old count plus one.
        """
        conditions = [getattr(model, column) == value for column, value in key.items()]
        new_score = literal(float(score), Float)
        stmt = (
            update(model)
            .where(*conditions)
            .values(
                total_lines=model.total_lines + delta_lines,
                total_commits=model.total_commits + 1,
                avg_quality_score=case(
                    (model.avg_quality_score.is_(None), new_score),
                    else_=(model.avg_quality_score * model.total_commits + new_score)
                    / (model.total_commits + 1),
                ),
                avatar_url=func.coalesce(
                    literal(avatar_url, String), model.avatar_url
                ),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = typ.cast("CursorResult[typ.Any]", await session.execute(stmt))
        if result.rowcount == 0:
            return None

        row = await session.scalar(
            select(model)
            .where(*conditions)
            .execution_options(populate_existing=True)
        )
        if row is None:
            return None
        return _snapshot_from_row(row)

    async def get_record(self, sha: str, repo: str) -> ContributionRecord | None:
        """Return the record for ``(sha, repo)`` if present."""
        stmt = select(Contribution).where(
            Contribution.sha == sha, Contribution.repo == repo
        )
        async with self._session_factory() as session:
            row = await session.scalar(stmt)
        return None if row is None else _record_from_row(row)

    async def list_records(
        self,
        days: int,
        repo: str | None = None,
        *,
        now: dt.datetime | None = None,
    ) -> list[ContributionRecord]:
        """Return records dated within the last ``days`` days, newest first."""
        stmt = (
            select(Contribution)
            .where(Contribution.date >= since_days(days, now=now))
            .order_by(Contribution.date.desc(), Contribution.commit_date.desc())
        )
        if repo is not None:
            stmt = stmt.where(Contribution.repo == repo)
        async with self._session_factory() as session:
            rows = (await session.scalars(stmt)).all()
        return [_record_from_row(row) for row in rows]

    async def list_daily_summaries(
        self, days: int, *, now: dt.datetime | None = None
    ) -> list[DailySummary]:
        """Return daily aggregates within the last ``days`` days, newest first."""
        stmt = (
            select(DailySummaryRow)
            .where(DailySummaryRow.date >= since_days(days, now=now))
            .order_by(DailySummaryRow.date.desc(), DailySummaryRow.author)
        )
        async with self._session_factory() as session:
            rows = (await session.scalars(stmt)).all()
        return [_daily_from_row(row) for row in rows]

    async def list_contributors(self) -> list[ContributorSummary]:
        """Return contributor aggregates ordered by total lines, largest first."""
        stmt = select(ContributorRow).order_by(
            ContributorRow.total_lines.desc(), ContributorRow.login
        )
        async with self._session_factory() as session:
            rows = (await session.scalars(stmt)).all()
        return [_contributor_from_row(row) for row in rows]

    async def get_daily_summary(
        self, date: dt.date, author: str
    ) -> DailySummary | None:
        """Return the daily aggregate for ``(date, author)`` if present."""
        stmt = select(DailySummaryRow).where(
            DailySummaryRow.date == date, DailySummaryRow.author == author
        )
        async with self._session_factory() as session:
            row = await session.scalar(stmt)
        return None if row is None else _daily_from_row(row)

    async def get_contributor(self, login: str) -> ContributorSummary | None:
        """Return the contributor aggregate for ``login`` if present."""
        stmt = select(ContributorRow).where(ContributorRow.login == login)
        async with self._session_factory() as session:
            row = await session.scalar(stmt)
        return None if row is None else _contributor_from_row(row)

    async def team_digest(self, date: dt.date) -> TeamDigest:
        """Summarise team activity for ``date``.

        Returns every author's daily aggregate, the five highest-scored
        records of the day, line and commit totals, and the mean of the
        per-author average scores.
        """
        summaries_stmt = (
            select(DailySummaryRow)
            .where(DailySummaryRow.date == date)
            .order_by(DailySummaryRow.total_lines.desc(), DailySummaryRow.author)
        )
        top_stmt = (
            select(Contribution)
            .where(
                Contribution.date == date,
                Contribution.quality_score.is_not(None),
            )
            .order_by(Contribution.quality_score.desc(), Contribution.sha)
            .limit(_DIGEST_TOP_LIMIT)
        )
        async with self._session_factory() as session:
            summary_rows = (await session.scalars(summaries_stmt)).all()
            top_rows = (await session.scalars(top_stmt)).all()

        summaries = tuple(_daily_from_row(row) for row in summary_rows)
        return TeamDigest(
            date=date,
            summaries=summaries,
            top_contributions=tuple(_record_from_row(row) for row in top_rows),
            total_lines=sum(s.total_lines for s in summaries),
            total_commits=sum(s.total_commits for s in summaries),
            avg_quality_score=_mean(
                [
                    s.avg_quality_score
                    for s in summaries
                    if s.avg_quality_score is not None
                ]
            ),
        )
