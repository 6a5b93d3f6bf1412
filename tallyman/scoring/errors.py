"""Custom exceptions for quality scorer operations."""

from __future__ import annotations

import typing as typ

from tallyman.common.errors import ConfigError, RateLimitError, ScoringError

if typ.TYPE_CHECKING:
    import collections.abc as cabc

# Content preview length for error messages
_CONTENT_PREVIEW_LIMIT = 100


def _preview(content: str) -> str:
    if len(content) > _CONTENT_PREVIEW_LIMIT:
        return content[:_CONTENT_PREVIEW_LIMIT] + "..."
    return content


class ScoringAPIError(ScoringError):
    """Raised when the scoring endpoint fails or cannot be reached.

    Attributes
    ----------
    status_code
        HTTP status code from the API response, if available.

    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        """Initialise the error with message and optional status code."""
        self.status_code = status_code
        super().__init__(message)

    @classmethod
    def http_error(cls, status_code: int) -> ScoringAPIError:
        """Create error for HTTP error responses."""
        return cls(f"Scoring API HTTP error {status_code}", status_code=status_code)

    @classmethod
    def rate_limited(cls, retry_after: int | None = None) -> ScoringRateLimitError:
        """Create error for rate limit (429) responses."""
        msg = "Scoring API rate limited"
        if retry_after is not None:
            msg = f"{msg}, retry after {retry_after}s"
        error = ScoringRateLimitError(msg, status_code=429)
        error.retry_after = retry_after
        return error

    @classmethod
    def timeout(cls) -> ScoringAPIError:
        """Create error for request timeouts."""
        return cls("Scoring API request timed out")

    @classmethod
    def network_error(cls, detail: str) -> ScoringAPIError:
        """Create error for network failures (DNS, connection, TLS, etc.)."""
        return cls(f"Scoring API network error: {detail}")


class ScoringRateLimitError(ScoringAPIError, RateLimitError):
    """Raised when the scoring endpoint answers 429.

    Also a :class:`RateLimitError`, so batch runs stop on it.
    """


class ScoringResponseShapeError(ScoringError):
    """Raised when a scorer response is missing fields or fails validation."""

    @classmethod
    def missing(cls, field: str) -> ScoringResponseShapeError:
        """Create error for a missing response field."""
        return cls(f"Scoring response missing expected field: {field}")

    @classmethod
    def invalid_json(cls, content: str) -> ScoringResponseShapeError:
        """Create error for content that is not JSON, with a truncated preview."""
        return cls(f"Failed to parse JSON from scoring response: {_preview(content)}")

    @classmethod
    def nonconforming(cls, detail: str, content: str) -> ScoringResponseShapeError:
        """Create error for JSON that does not match the assessment schema."""
        return cls(
            f"Scoring response does not match schema ({detail}): {_preview(content)}"
        )


class OpenAIConfigError(ConfigError):
    """Raised when OpenAI scorer configuration is invalid."""

    @classmethod
    def missing_api_key(cls) -> OpenAIConfigError:
        """Create error for missing API key environment variable."""
        return cls("TALLYMAN_OPENAI_API_KEY environment variable is required")

    @classmethod
    def empty_api_key(cls) -> OpenAIConfigError:
        """Create error for empty API key."""
        return cls("OpenAI API key must be non-empty")


class ScorerConfigError(ConfigError):
    """Raised when scorer factory configuration is invalid."""

    @classmethod
    def invalid_backend(
        cls, name: str, valid_backends: cabc.Iterable[str]
    ) -> ScorerConfigError:
        """Create error for an unrecognized backend name."""
        valid_backends_str = ", ".join(f"'{b}'" for b in sorted(valid_backends))
        return cls(
            f"Invalid scorer backend '{name}'. Valid options are: {valid_backends_str}"
        )

    @classmethod
    def invalid_parameter(
        cls, parameter_name: str, value: str, constraint: str
    ) -> ScorerConfigError:
        """Create error for an invalid configuration parameter value."""
        return cls(f"Invalid {parameter_name} '{value}'. {constraint}")
