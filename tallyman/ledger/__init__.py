"""Ledger of scored contributions and their running aggregates."""

from __future__ import annotations

from tallyman.ledger.errors import (
    AggregateMergeError,
    RecordLookupError,
    RecordPersistError,
    TimezoneAwareRequiredError,
)
from tallyman.ledger.models import (
    EMPTY_AGGREGATE,
    AggregateSnapshot,
    ContributionRecord,
    ContributorSummary,
    DailySummary,
    TeamDigest,
)
from tallyman.ledger.services import ContributionStore, SqlContributionStore
from tallyman.ledger.storage import (
    Base,
    Contribution,
    ContributorRow,
    DailySummaryRow,
    UTCDateTime,
    init_ledger_storage,
)

__all__ = [
    "EMPTY_AGGREGATE",
    "AggregateMergeError",
    "AggregateSnapshot",
    "Base",
    "Contribution",
    "ContributionRecord",
    "ContributionStore",
    "ContributorRow",
    "ContributorSummary",
    "DailySummary",
    "DailySummaryRow",
    "RecordLookupError",
    "RecordPersistError",
    "SqlContributionStore",
    "TeamDigest",
    "TimezoneAwareRequiredError",
    "UTCDateTime",
    "init_ledger_storage",
]
