"""Error taxonomy shared by the Tallyman pipeline and its collaborators.

Concrete errors live beside the code that raises them (``tallyman.github``,
``tallyman.scoring``, ``tallyman.ledger``) and subclass one of the roots
defined here, so pipeline code can apply a single isolation policy per
category without knowing which backend failed.
"""

from __future__ import annotations


class TallymanError(Exception):
    """Base class for all Tallyman errors."""


class ConfigError(TallymanError):
    """Raised when a credential, identifier or setting is missing or invalid.

    Configuration errors are fatal: no pipeline work starts.
    """


class TransportError(TallymanError):
    """Raised when a source-control call (feed, diff, context) fails."""


class RateLimitError(TransportError):
    """Raised when an upstream API asks the caller to back off.

    Batch runs stop cooperatively on this error and return partial counts.
    """

    def __init__(self, message: str, *, retry_after: int | None = None) -> None:
        """Record the optional retry delay advertised by the upstream API."""
        self.retry_after = retry_after
        super().__init__(message)


class ScoringError(TallymanError):
    """Raised when the quality scorer is unreachable or returns bad output."""


class PersistenceError(TallymanError):
    """Raised when a record or aggregate write fails."""


__all__ = [
    "ConfigError",
    "PersistenceError",
    "RateLimitError",
    "ScoringError",
    "TallymanError",
    "TransportError",
]
