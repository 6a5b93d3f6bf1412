"""Tests for the size filter, dedupe gate and pipeline configuration."""

from __future__ import annotations

import typing as typ

import pytest
from sqlalchemy.exc import OperationalError

from tallyman.ledger.errors import RecordLookupError, RecordPersistError
from tallyman.pipeline.config import (
    LOOKBACK_DAYS_ENV_VAR,
    MIN_LINES_ENV_VAR,
    PipelineConfig,
    PipelineConfigError,
)
from tallyman.pipeline.gates import DedupGate, SizeFilter, passes
from tallyman.pipeline.observability import PipelineEventLogger

if typ.TYPE_CHECKING:
    from tallyman.ledger.services import SqlContributionStore


class _RecordingEventLogger(PipelineEventLogger):
    def __init__(self) -> None:
        self.dedup_failures: list[tuple[str, str, Exception]] = []

    def log_dedup_check_failed(self, sha: str, repo_slug: str, error: Exception) -> None:
        self.dedup_failures.append((sha, repo_slug, error))


class _FailingStore:
    def __init__(self, error: Exception) -> None:
        self.error = error

    async def exists(self, sha: str, repo: str) -> bool:
        raise self.error


@pytest.mark.parametrize(
    ("additions", "min_lines", "expected"),
    [(9, 10, False), (10, 10, True), (11, 10, True), (0, 0, True)],
)
def test_passes_is_inclusive(additions: int, min_lines: int, *, expected: bool) -> None:
    """Exactly min_lines added lines passes the gate."""
    assert passes(additions, min_lines) is expected
    assert SizeFilter(min_lines).passes(additions) is expected


def test_size_filter_rejects_negative_minimum() -> None:
    """A negative threshold is a programming error."""
    with pytest.raises(ValueError, match="non-negative"):
        SizeFilter(-1)


@pytest.mark.asyncio
async def test_dedup_gate_reports_recorded_events(store: SqlContributionStore) -> None:
    """An empty ledger reports nothing as recorded."""
    assert await DedupGate(store).exists("abc", "octo/reef") is False


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        RecordPersistError.for_record("abc", "octo/reef"),
        RecordLookupError.for_record("abc", "octo/reef"),
    ],
)
async def test_dedup_gate_treats_lookup_failure_as_absent(error: Exception) -> None:
    """A failed lookup is logged and the event is treated as new."""
    event_logger = _RecordingEventLogger()
    gate = DedupGate(_FailingStore(error), event_logger=event_logger)

    assert await gate.exists("abc", "octo/reef") is False
    assert event_logger.dedup_failures == [("abc", "octo/reef", error)]


@pytest.mark.asyncio
async def test_dedup_gate_lets_unwrapped_errors_propagate() -> None:
    """Only persistence errors are absorbed; raw driver errors surface."""
    error = OperationalError("SELECT 1", {}, Exception("database is locked"))
    event_logger = _RecordingEventLogger()
    gate = DedupGate(_FailingStore(error), event_logger=event_logger)

    with pytest.raises(OperationalError):
        await gate.exists("abc", "octo/reef")
    assert event_logger.dedup_failures == []


def test_pipeline_config_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    """Unset variables fall back to 10 lines and 30 days."""
    monkeypatch.delenv(MIN_LINES_ENV_VAR, raising=False)
    monkeypatch.delenv(LOOKBACK_DAYS_ENV_VAR, raising=False)

    assert PipelineConfig.from_env() == PipelineConfig(min_lines=10, lookback_days=30)


def test_pipeline_config_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Both thresholds are read from the environment."""
    monkeypatch.setenv(MIN_LINES_ENV_VAR, "0")
    monkeypatch.setenv(LOOKBACK_DAYS_ENV_VAR, "7")

    assert PipelineConfig.from_env() == PipelineConfig(min_lines=0, lookback_days=7)


@pytest.mark.parametrize(
    ("name", "value"),
    [
        (MIN_LINES_ENV_VAR, "-1"),
        (MIN_LINES_ENV_VAR, "ten"),
        (LOOKBACK_DAYS_ENV_VAR, "0"),
    ],
)
def test_pipeline_config_rejects_invalid_values(
    monkeypatch: pytest.MonkeyPatch, name: str, value: str
) -> None:
    """Invalid thresholds raise PipelineConfigError naming the variable."""
    monkeypatch.setenv(name, value)

    with pytest.raises(PipelineConfigError, match=name):
        PipelineConfig.from_env()
