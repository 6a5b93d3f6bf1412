"""Ledger error types."""

from __future__ import annotations

import typing as typ

from tallyman.common.errors import PersistenceError

if typ.TYPE_CHECKING:
    import datetime as dt


class TimezoneAwareRequiredError(ValueError):
    """Raised when datetime inputs lack timezone information."""

    def __init__(self, context: str) -> None:
        """Attach a consistent message for the failing context."""
        super().__init__(f"{context} must be timezone aware")

    @classmethod
    def for_column(cls) -> TimezoneAwareRequiredError:
        """Return an error indicating a bound timestamp was naive."""
        return cls("timestamp column values")


class RecordPersistError(PersistenceError):
    """Raised when a contribution record cannot be written."""

    @classmethod
    def for_record(cls, sha: str, repo: str) -> RecordPersistError:
        """Return an error for a failed write of ``sha`` in ``repo``."""
        return cls(f"failed to persist contribution {sha} in {repo}")

    @classmethod
    def concurrent_insert(cls, sha: str, repo: str) -> RecordPersistError:
        """Return an error when concurrent inserts kept winning the race."""
        return cls(f"contribution {sha} in {repo} kept conflicting on insert")


class RecordLookupError(PersistenceError):
    """Raised when the ledger cannot be queried for an existing record."""

    @classmethod
    def for_record(cls, sha: str, repo: str) -> RecordLookupError:
        """Return an error for a failed lookup of ``sha`` in ``repo``."""
        return cls(f"failed to look up contribution {sha} in {repo}")


class AggregateMergeError(PersistenceError):
    """Raised when a running aggregate cannot be merged."""

    @classmethod
    def for_daily(cls, date: dt.date, author: str) -> AggregateMergeError:
        """Return an error for a failed daily merge."""
        return cls(f"failed to merge daily aggregate for {author} on {date}")

    @classmethod
    def for_contributor(cls, author: str) -> AggregateMergeError:
        """Return an error for a failed contributor merge."""
        return cls(f"failed to merge contributor aggregate for {author}")
