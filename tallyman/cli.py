"""Command-line interface for scoring merged pull requests.

Examples
--------
Create the ledger tables, backfill a repository, then read the results::

    tallyman init-db
    tallyman sync octo/reef --days 14
    tallyman analyze octo/reef#42
    tallyman contributors
    tallyman digest --date 2024-05-01

Every command reads the database URL from ``TALLYMAN_DATABASE_URL`` unless
``--database-url`` is given.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import sys
import typing as typ

from cyclopts import App, Parameter
from sqlalchemy.exc import SQLAlchemyError

from tallyman import __version__
from tallyman.common.errors import ConfigError, TallymanError, TransportError
from tallyman.common.slug import parse_pull_request_ref
from tallyman.common.time import utcnow
from tallyman.ledger.storage import init_ledger_storage
from tallyman.logging import configure_logging, get_logger, log_warning
from tallyman.pipeline.batch import BatchRunner
from tallyman.pipeline.models import OutcomeStatus, SkipReason
from tallyman.pipeline.single import SingleItemPipeline
from tallyman.runtime import (
    DATABASE_URL_ENV_VAR,
    DatabaseConfigError,
    open_engine,
    open_pipeline,
    open_store,
)

if typ.TYPE_CHECKING:
    from tallyman.ledger.models import ContributorSummary, TeamDigest
    from tallyman.pipeline.models import AnalysisOutcome, BatchReport

logger = get_logger(__name__)

app = App(
    name="tallyman",
    help="Score merged pull requests and keep per-author quality ledgers",
    version=__version__,
)

DatabaseUrlOption = typ.Annotated[
    str | None, Parameter(env_var=DATABASE_URL_ENV_VAR)
]


def _fail(message: str) -> int:
    print(f"Error: {message}", file=sys.stderr)
    return 1


def _require_database_url(database_url: str | None) -> str:
    url = (database_url or "").strip()
    if not url:
        raise DatabaseConfigError.missing_url()
    return url


def _format_score(value: float | None) -> str:
    return "-" if value is None else f"{value:.2f}"


def format_batch_report(report: BatchReport) -> str:
    """Render a batch report as the summary printed by ``sync``."""
    lines: list[str] = []
    for outcome in report.outcomes:
        label = f"#{outcome.number} {outcome.sha[:7]} {outcome.author}"
        match outcome.status:
            case OutcomeStatus.COMPLETED:
                lines.append(f"{label}: score {outcome.score}/10")
            case OutcomeStatus.SKIPPED:
                lines.append(f"{label}: skipped ({outcome.skip_reason})")
            case OutcomeStatus.FAILED:
                lines.append(f"{label}: failed at {outcome.stage}: {outcome.error}")

    skips = report.skipped_by_reason
    lines.extend(
        [
            "",
            f"--- Sync {'Interrupted' if report.interrupted else 'Complete'} ---",
            f"Repository: {report.repo_slug}",
            f"Processed: {report.processed}",
            (
                f"Skipped: {report.skipped} "
                f"(duplicate: {skips.get(SkipReason.DUPLICATE, 0)}, "
                f"too small: {skips.get(SkipReason.TOO_SMALL, 0)})"
            ),
            f"Failed: {report.failed}",
            f"Total: {len(report.outcomes)}",
        ]
    )
    if report.aggregate_failures:
        lines.append(f"Aggregate merge failures: {report.aggregate_failures}")
    return "\n".join(lines)


def format_analysis(outcome: AnalysisOutcome) -> str:
    """Render a single-item outcome as printed by ``analyze``."""
    number = outcome.pull_request.number
    if outcome.status is OutcomeStatus.SKIPPED:
        return f"PR #{number} skipped ({outcome.skip_reason})"

    quality = outcome.record.quality if outcome.record else None
    if quality is None:
        return f"PR #{number} {outcome.status}"
    return "\n".join(
        [
            f"PR #{number} by {outcome.pull_request.author}",
            f"Quality score: {quality.score}/10",
            f"Summary: {quality.summary}",
        ]
    )


def format_contributors(contributors: list[ContributorSummary]) -> str:
    """Render contributor totals as an aligned table."""
    if not contributors:
        return "No contributors recorded yet."

    width = max(len("Login"), *(len(c.login) for c in contributors))
    header = f"{'Login':<{width}}  {'Lines':>8}  {'Commits':>7}  {'Avg':>5}"
    rows = [
        f"{c.login:<{width}}  {c.total_lines:>8}  {c.total_commits:>7}  "
        f"{_format_score(c.avg_quality_score):>5}"
        for c in contributors
    ]
    return "\n".join([header, "-" * len(header), *rows])


def format_digest(digest: TeamDigest) -> str:
    """Render the team digest for one day."""
    if not digest.summaries:
        return f"No contributions recorded for {digest.date.isoformat()}."

    lines = [
        f"Team digest for {digest.date.isoformat()}",
        (
            f"Lines: {digest.total_lines}  Commits: {digest.total_commits}  "
            f"Average score: {_format_score(digest.avg_quality_score)}"
        ),
        "",
        "Authors:",
    ]
    lines.extend(
        f"  {s.author}: {s.total_lines} lines, {s.total_commits} commits, "
        f"avg {_format_score(s.avg_quality_score)}"
        for s in digest.summaries
    )
    if digest.top_contributions:
        lines.extend(["", "Top contributions:"])
        for record in digest.top_contributions:
            score = record.quality.score if record.quality else None
            title = record.pr_title or next(
                iter(record.message.splitlines()), record.sha[:7]
            )
            lines.append(
                f"  [{_format_score(score)}] {record.repo} {record.author}: {title}"
            )
    return "\n".join(lines)


async def _init_db(database_url: str) -> None:
    async with open_engine(database_url) as engine:
        await init_ledger_storage(engine)


async def _sync(
    database_url: str, repository: str, days: int | None
) -> BatchReport:
    async with open_pipeline(database_url) as runtime:
        runner = BatchRunner(runtime.collaborators, config=runtime.config)
        return await runner.run(repository, days)


async def _analyze(database_url: str, reference: str) -> AnalysisOutcome:
    owner, repo, number = parse_pull_request_ref(reference)
    async with open_pipeline(database_url) as runtime:
        pipeline = SingleItemPipeline(runtime.collaborators, config=runtime.config)
        return await pipeline.run(owner, repo, number)


async def _contributors(database_url: str) -> list[ContributorSummary]:
    async with open_store(database_url) as store:
        return await store.list_contributors()


async def _digest(database_url: str, date: dt.date) -> TeamDigest:
    async with open_store(database_url) as store:
        return await store.team_digest(date)


@app.command
def init_db(*, database_url: DatabaseUrlOption = None) -> int:
    """Create the ledger tables if they do not exist.

    Args:
        database_url: SQLAlchemy async URL for the ledger database.

    Returns:
        Exit code (0 for success, 1 for configuration or database errors).

    """
    try:
        url = _require_database_url(database_url)
        asyncio.run(_init_db(url))
    except (ConfigError, SQLAlchemyError) as exc:
        return _fail(str(exc))
    print("Ledger tables ready.")
    return 0


@app.command
def sync(
    repository: str,
    *,
    days: int | None = None,
    database_url: DatabaseUrlOption = None,
) -> int:
    """Score every merged pull request in a recent window.

    Failed pull requests are reported in the summary and do not change the
    exit code; the next run retries them.

    Args:
        repository: Repository in ``owner/name`` format.
        days: Lookback window in days (defaults to ``TALLYMAN_LOOKBACK_DAYS``).
        database_url: SQLAlchemy async URL for the ledger database.

    Returns:
        Exit code (0 when the run completes, 1 for setup errors).

    """
    if days is not None and days < 1:
        return _fail(f"--days must be positive, got {days}")
    try:
        url = _require_database_url(database_url)
        report = asyncio.run(_sync(url, repository, days))
    except (ConfigError, TransportError, SQLAlchemyError) as exc:
        return _fail(str(exc))
    print(format_batch_report(report))
    return 0


@app.command
def analyze(reference: str, *, database_url: DatabaseUrlOption = None) -> int:
    """Score one pull request and record the result.

    Args:
        reference: Pull request in ``owner/name#number`` format.
        database_url: SQLAlchemy async URL for the ledger database.

    Returns:
        Exit code (0 when scored or skipped, 1 on any failure).

    """
    try:
        url = _require_database_url(database_url)
        outcome = asyncio.run(_analyze(url, reference))
    except (TallymanError, SQLAlchemyError) as exc:
        return _fail(str(exc))
    print(format_analysis(outcome))
    return 0


@app.command
def contributors(*, database_url: DatabaseUrlOption = None) -> int:
    """List contributors by total lines added.

    Args:
        database_url: SQLAlchemy async URL for the ledger database.

    """
    try:
        url = _require_database_url(database_url)
        rows = asyncio.run(_contributors(url))
    except (ConfigError, SQLAlchemyError) as exc:
        return _fail(str(exc))
    print(format_contributors(rows))
    return 0


@app.command
def digest(
    *,
    date: str | None = None,
    database_url: DatabaseUrlOption = None,
) -> int:
    """Show per-author totals and the top contributions for one day.

    Args:
        date: Day in ``YYYY-MM-DD`` format (defaults to today, UTC).
        database_url: SQLAlchemy async URL for the ledger database.

    """
    try:
        day = dt.date.fromisoformat(date) if date else utcnow().date()
    except ValueError:
        return _fail(f"--date must be YYYY-MM-DD, got {date!r}")
    try:
        url = _require_database_url(database_url)
        result = asyncio.run(_digest(url, day))
    except (ConfigError, SQLAlchemyError) as exc:
        return _fail(str(exc))
    print(format_digest(result))
    return 0


def main() -> int:
    """Entry point for the CLI."""
    level, invalid = configure_logging()
    if invalid:
        log_warning(logger, "Invalid log level; falling back to %s", level)
    return app()


if __name__ == "__main__":
    sys.exit(main())
