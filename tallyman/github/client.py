"""GitHub REST client implementing the pipeline's source-control collaborators."""

from __future__ import annotations

import base64
import binascii
import dataclasses
import datetime as dt
import json
import os
import typing as typ

import httpx

from tallyman.common.time import since_days as _since_day

from .errors import GitHubAPIError, GitHubConfigError, GitHubRateLimitError
from .models import (
    CommitDiff,
    DiffFile,
    DiffStats,
    MergedPullRequest,
    ProjectContext,
)

_HTTP_ERROR_STATUS_THRESHOLD = 400
_HTTP_FORBIDDEN = 403
_HTTP_NOT_FOUND = 404
_HTTP_RATE_LIMITED = 429
_SEARCH_PAGE_SIZE = 100
# The search API never returns more than 1000 results.
_SEARCH_MAX_PAGES = 10

GUIDELINES_PATH = "AGENTS.md"
RULES_DIRECTORY = ".cursor/rules"
_RULE_SUFFIXES = (".md", ".mdc")


@dataclasses.dataclass(frozen=True, slots=True)
class GitHubConfig:
    """Configuration for the GitHub REST API client."""

    token: str
    api_url: str = "https://api.github.com"
    timeout_s: float = 20.0
    user_agent: str = "tallyman/0.1"
    api_version: str = "2022-11-28"

    @classmethod
    def from_env(cls) -> GitHubConfig:
        """Build configuration using the ``TALLYMAN_GITHUB_TOKEN`` env var."""
        token = os.environ.get("TALLYMAN_GITHUB_TOKEN", "").strip()
        if not token:
            raise GitHubConfigError.missing_token()
        api_url = os.environ.get("TALLYMAN_GITHUB_API_URL", cls.api_url)
        return cls(token=token, api_url=api_url.rstrip("/"))


def _parse_github_datetime(value: object) -> dt.datetime | None:
    if not isinstance(value, str) or not value:
        return None
    parsed = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        msg = f"GitHub datetime missing timezone: {value}"
        raise ValueError(msg)
    return parsed.astimezone(dt.UTC)


def _as_int(value: object) -> int:
    return value if isinstance(value, int) else 0


def _as_str(value: object) -> str | None:
    return value if isinstance(value, str) else None


def _require_mapping(payload: object, *, path: str) -> dict[str, typ.Any]:
    if not isinstance(payload, dict):
        raise GitHubAPIError.unexpected_payload(path, "object")
    return typ.cast("dict[str, typ.Any]", payload)


def _retry_after(response: httpx.Response) -> int | None:
    value = response.headers.get("Retry-After")
    if value and value.isdigit():
        return int(value)
    return None


def _is_rate_limited(response: httpx.Response) -> bool:
    if response.status_code == _HTTP_RATE_LIMITED:
        return True
    return (
        response.status_code == _HTTP_FORBIDDEN
        and response.headers.get("X-RateLimit-Remaining") == "0"
    )


def _pull_request_from_payload(
    payload: dict[str, typ.Any], *, path: str
) -> MergedPullRequest:
    number = payload.get("number")
    if not isinstance(number, int):
        raise GitHubAPIError.unexpected_payload(path, "number")
    user = payload.get("user")
    user_dict = user if isinstance(user, dict) else {}
    login = _as_str(user_dict.get("login"))
    if login is None:
        raise GitHubAPIError.unexpected_payload(path, "user.login")
    try:
        merged_at = _parse_github_datetime(payload.get("merged_at"))
    except ValueError as exc:
        raise GitHubAPIError.unexpected_payload(path, "merged_at") from exc

    return MergedPullRequest(
        number=number,
        sha=_as_str(payload.get("merge_commit_sha")) or "",
        author=login,
        title=_as_str(payload.get("title")) or "",
        url=_as_str(payload.get("html_url")) or "",
        merged_at=merged_at,
        additions=_as_int(payload.get("additions")),
        deletions=_as_int(payload.get("deletions")),
        description=_as_str(payload.get("body")),
        author_avatar_url=_as_str(user_dict.get("avatar_url")),
    )


def _diff_file_from_payload(payload: object) -> DiffFile | None:
    if not isinstance(payload, dict):
        return None
    filename = payload.get("filename")
    if not isinstance(filename, str):
        return None
    return DiffFile(
        filename=filename,
        status=_as_str(payload.get("status")) or "modified",
        additions=_as_int(payload.get("additions")),
        deletions=_as_int(payload.get("deletions")),
        patch=_as_str(payload.get("patch")),
    )


def _commit_diff_from_payload(payload: dict[str, typ.Any], *, path: str) -> CommitDiff:
    sha = payload.get("sha")
    commit = payload.get("commit")
    if not isinstance(sha, str) or not isinstance(commit, dict):
        raise GitHubAPIError.unexpected_payload(path, "sha/commit")

    commit_author = commit.get("author")
    commit_author_dict = commit_author if isinstance(commit_author, dict) else {}
    account = payload.get("author")
    login = _as_str(account.get("login")) if isinstance(account, dict) else None

    raw_stats = payload.get("stats")
    stats_dict = raw_stats if isinstance(raw_stats, dict) else {}
    raw_files = payload.get("files")
    files = raw_files if isinstance(raw_files, list) else []

    return CommitDiff(
        sha=sha,
        message=_as_str(commit.get("message")) or "",
        author=login or _as_str(commit_author_dict.get("name")) or "unknown",
        date=_as_str(commit_author_dict.get("date")) or "",
        files=tuple(
            diff_file
            for diff_file in (_diff_file_from_payload(item) for item in files)
            if diff_file is not None
        ),
        stats=DiffStats(
            additions=_as_int(stats_dict.get("additions")),
            deletions=_as_int(stats_dict.get("deletions")),
        ),
    )


def _decode_content(payload: dict[str, typ.Any]) -> str | None:
    content = payload.get("content")
    if not isinstance(content, str):
        return None
    if payload.get("encoding") != "base64":
        return content
    try:
        return base64.b64decode(content).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None


def _sort_by_merge_time(
    pull_requests: list[MergedPullRequest],
) -> list[MergedPullRequest]:
    floor = dt.datetime.min.replace(tzinfo=dt.UTC)
    return sorted(
        pull_requests, key=lambda pr: (pr.merged_at or floor, pr.number)
    )


class GitHubRestClient:
    """GitHub REST implementation of the SourceFeed, DiffFetcher and ContextProvider.

    Each call blocks on its HTTP request; timeout policy is owned by the
    underlying ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        config: GitHubConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialise the client with the provided API configuration."""
        if not config.token.strip():
            raise GitHubConfigError.empty_token()

        self._config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=config.timeout_s,
            headers={
                "Authorization": f"Bearer {config.token}",
                "User-Agent": config.user_agent,
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": config.api_version,
            },
        )

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._client.aclose()

    async def list_candidates(
        self, owner: str, repo: str, since_days: int
    ) -> list[MergedPullRequest]:
        """Return pull requests merged since ``since_days`` days ago.

        Uses the issue search API to find merged pull requests, then fetches
        each one for its merge commit and line statistics. Results are
        ordered by merge time, oldest first.
        """
        since = _since_day(since_days)
        query = f"repo:{owner}/{repo} is:pr is:merged merged:>={since.isoformat()}"
        numbers: list[int] = []
        for page in range(1, _SEARCH_MAX_PAGES + 1):
            payload = _require_mapping(
                await self._get(
                    "/search/issues",
                    params={"q": query, "per_page": _SEARCH_PAGE_SIZE, "page": page},
                ),
                path="/search/issues",
            )
            items = payload.get("items")
            if not isinstance(items, list):
                raise GitHubAPIError.unexpected_payload("/search/issues", "items")
            numbers.extend(
                item["number"]
                for item in items
                if isinstance(item, dict) and isinstance(item.get("number"), int)
            )
            total = _as_int(payload.get("total_count"))
            if len(items) < _SEARCH_PAGE_SIZE or page * _SEARCH_PAGE_SIZE >= total:
                break

        pull_requests = [
            await self.fetch_pull_request(owner, repo, number) for number in numbers
        ]
        return _sort_by_merge_time(pull_requests)

    async def fetch_pull_request(
        self, owner: str, repo: str, number: int
    ) -> MergedPullRequest:
        """Return the pull request ``number`` in ``owner/repo``."""
        path = f"/repos/{owner}/{repo}/pulls/{number}"
        payload = _require_mapping(await self._get(path), path=path)
        return _pull_request_from_payload(payload, path=path)

    async def fetch_diff(self, owner: str, repo: str, sha: str) -> CommitDiff:
        """Return the diff and statistics for commit ``sha``."""
        path = f"/repos/{owner}/{repo}/commits/{sha}"
        payload = _require_mapping(await self._get(path), path=path)
        return _commit_diff_from_payload(payload, path=path)

    async def fetch_file_content(
        self, owner: str, repo: str, file_path: str, ref: str | None = None
    ) -> str | None:
        """Return a file's decoded text at ``ref``, or ``None`` when absent."""
        path = f"/repos/{owner}/{repo}/contents/{file_path}"
        payload = await self._get_optional(path, ref=ref)
        if not isinstance(payload, dict):
            return None
        return _decode_content(payload)

    async def fetch_context(self, owner: str, repo: str, sha: str) -> ProjectContext:
        """Return AGENTS.md guidance and ``.cursor/rules`` files at ``sha``."""
        guidelines = await self.fetch_file_content(owner, repo, GUIDELINES_PATH, sha)

        listing = await self._get_optional(
            f"/repos/{owner}/{repo}/contents/{RULES_DIRECTORY}", ref=sha
        )
        rules: list[str] = []
        entries = listing if isinstance(listing, list) else []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            name = _as_str(entry.get("name"))
            entry_path = _as_str(entry.get("path"))
            if name is None or entry_path is None or not name.endswith(_RULE_SUFFIXES):
                continue
            content = await self.fetch_file_content(owner, repo, entry_path, sha)
            if content:
                rules.append(f"## {name}\n{content}")

        return ProjectContext(guidelines=guidelines or None, rules=tuple(rules))

    async def _get_optional(self, path: str, *, ref: str | None) -> object | None:
        """GET ``path`` at ``ref``, returning ``None`` on 404."""
        params = {"ref": ref} if ref else None
        try:
            return await self._get(path, params=params)
        except GitHubAPIError as exc:
            if exc.status_code == _HTTP_NOT_FOUND:
                return None
            raise

    async def _get(
        self, path: str, params: dict[str, typ.Any] | None = None
    ) -> object:
        """Execute a GET request and return the decoded JSON body."""
        url = f"{self._config.api_url}{path}"
        try:
            response = await self._client.get(url, params=params)
        except httpx.TimeoutException as exc:
            raise GitHubAPIError.network_error(path, "request timed out") from exc
        except httpx.RequestError as exc:
            raise GitHubAPIError.network_error(path, str(exc)) from exc

        if _is_rate_limited(response):
            raise GitHubRateLimitError.for_path(path, _retry_after(response))
        if response.status_code >= _HTTP_ERROR_STATUS_THRESHOLD:
            raise GitHubAPIError.http_error(response.status_code, path)
        try:
            return response.json()
        except json.JSONDecodeError as exc:
            raise GitHubAPIError.unexpected_payload(path, "JSON body") from exc
