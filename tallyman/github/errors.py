"""GitHub client errors."""

from __future__ import annotations

from tallyman.common.errors import ConfigError, RateLimitError, TransportError


class GitHubAPIError(TransportError):
    """Raised when GitHub returns an error response or cannot be reached."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        """Initialise with a message and optional HTTP status code."""
        self.status_code = status_code
        super().__init__(message)

    @classmethod
    def http_error(cls, status_code: int, path: str) -> GitHubAPIError:
        """Return an error for non-2xx HTTP responses."""
        return cls(f"GitHub API HTTP {status_code} for {path}", status_code=status_code)

    @classmethod
    def network_error(cls, path: str, detail: str) -> GitHubAPIError:
        """Return an error for DNS, connection, TLS or timeout failures."""
        return cls(f"GitHub API request to {path} failed: {detail}")

    @classmethod
    def unexpected_payload(cls, path: str, field: str) -> GitHubResponseShapeError:
        """Return an error for responses missing an expected field."""
        return GitHubResponseShapeError(
            f"GitHub API response for {path} missing expected field: {field}"
        )


class GitHubResponseShapeError(GitHubAPIError):
    """Raised when a GitHub response does not have the expected shape."""


class GitHubRateLimitError(RateLimitError):
    """Raised when GitHub rejects a request because the rate limit is spent."""

    @classmethod
    def for_path(cls, path: str, retry_after: int | None) -> GitHubRateLimitError:
        """Return a rate-limit error for ``path``."""
        msg = f"GitHub API rate limited for {path}"
        if retry_after is not None:
            msg = f"{msg}, retry after {retry_after}s"
        return cls(msg, retry_after=retry_after)


class GitHubConfigError(ConfigError):
    """Raised when GitHub client configuration is invalid."""

    @classmethod
    def missing_token(cls) -> GitHubConfigError:
        """Return an error when no GitHub token is configured."""
        return cls("TALLYMAN_GITHUB_TOKEN is required for GitHub API")

    @classmethod
    def empty_token(cls) -> GitHubConfigError:
        """Return an error when the provided token is empty."""
        return cls("GitHub token must be non-empty")
