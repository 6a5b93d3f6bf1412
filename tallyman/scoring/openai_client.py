"""OpenAI-compatible implementation of the QualityScorer protocol."""

from __future__ import annotations

import json
import time
import typing as typ

import httpx

from tallyman.scoring.errors import (
    OpenAIConfigError,
    ScoringAPIError,
    ScoringResponseShapeError,
)
from tallyman.scoring.metrics import ModelInvocationMetrics
from tallyman.scoring.prompts import SYSTEM_PROMPT, build_user_prompt
from tallyman.scoring.validation import parse_quality_payload, require_assessment

if typ.TYPE_CHECKING:
    from tallyman.github.models import CommitDiff, ProjectContext
    from tallyman.scoring.config import OpenAIScorerConfig
    from tallyman.scoring.models import QualityAssessment

_HTTP_ERROR_STATUS_THRESHOLD = 400
_HTTP_RATE_LIMITED = 429


def _to_int_or_none(value: object) -> int | None:
    if isinstance(value, int):
        return value
    return None


def _get_retry_after(response: httpx.Response) -> int | None:
    """Extract Retry-After header value if present and numeric."""
    retry_after = response.headers.get("Retry-After")
    if retry_after and retry_after.isdigit():
        return int(retry_after)
    return None


def _get_nested(data: dict[str, object], *keys: str) -> object:
    """Traverse nested dict path, returning None for missing keys."""
    current: object = data
    for key in keys:
        if not isinstance(current, dict):
            return None
        current = typ.cast("dict[str, object]", current).get(key)
    return current


class OpenAIQualityScorer:
    """OpenAI-compatible implementation of the QualityScorer protocol.

    Sends the diff and project guidance to a chat completions endpoint with
    JSON response format and validates the assistant content against the
    assessment schema before returning it.

    Parameters
    ----------
    config
        Configuration for the OpenAI API client.
    http_client
        Optional httpx.AsyncClient for testing. If not provided,
        the instance creates and owns its own client.

    """

    def __init__(
        self,
        config: OpenAIScorerConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialise the client with configuration."""
        if not config.api_key.strip():
            raise OpenAIConfigError.empty_api_key()

        self._config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=config.timeout_s,
            headers={
                "Authorization": f"Bearer {config.api_key}",
                "Content-Type": "application/json",
            },
        )
        self._last_invocation_metrics: ModelInvocationMetrics | None = None

    @property
    def config(self) -> OpenAIScorerConfig:
        """Read-only access to the client configuration."""
        return self._config

    @property
    def last_invocation_metrics(self) -> ModelInvocationMetrics | None:
        """Return metrics captured from the most recent invocation."""
        return self._last_invocation_metrics

    async def aclose(self) -> None:
        """Close any owned HTTP resources."""
        if self._owns_client:
            await self._client.aclose()

    async def score(
        self,
        diff: CommitDiff,
        context: ProjectContext | None = None,
    ) -> QualityAssessment:
        """Score a diff using the configured chat completions model.

        Raises
        ------
        ScoringAPIError
            If the API returns an error response, rate limits or times out.
        ScoringResponseShapeError
            If the response is missing fields or the content fails validation.

        """
        payload = self._build_payload(build_user_prompt(diff, context))
        started = time.perf_counter()
        response = await self._send_request(payload)
        latency_ms = (time.perf_counter() - started) * 1000
        self._check_response_errors(response)
        content = self._parse_json_response(response, latency_ms=latency_ms)
        return require_assessment(parse_quality_payload(content))

    def _build_payload(self, user_prompt: str) -> dict[str, object]:
        return {
            "model": self._config.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self._config.temperature,
            "max_tokens": self._config.max_tokens,
            "response_format": {"type": "json_object"},
        }

    async def _send_request(self, payload: dict[str, object]) -> httpx.Response:
        try:
            return await self._client.post(self._config.endpoint, json=payload)
        except httpx.TimeoutException as exc:
            raise ScoringAPIError.timeout() from exc
        except httpx.RequestError as exc:
            raise ScoringAPIError.network_error(str(exc)) from exc

    def _check_response_errors(self, response: httpx.Response) -> None:
        if response.status_code == _HTTP_RATE_LIMITED:
            raise ScoringAPIError.rate_limited(_get_retry_after(response))

        if response.status_code >= _HTTP_ERROR_STATUS_THRESHOLD:
            raise ScoringAPIError.http_error(response.status_code)

    def _parse_json_response(
        self, response: httpx.Response, *, latency_ms: float
    ) -> str:
        """Parse the response body and extract assistant message content."""
        try:
            data = response.json()
        except json.JSONDecodeError as exc:
            raise ScoringResponseShapeError.invalid_json(response.text) from exc
        if not isinstance(data, dict):
            raise ScoringResponseShapeError.missing("choices")
        body = typ.cast("dict[str, object]", data)
        self._last_invocation_metrics = self._extract_usage_metrics(
            body, latency_ms=latency_ms
        )
        return self._extract_content(body)

    def _extract_usage_metrics(
        self, data: dict[str, object], *, latency_ms: float
    ) -> ModelInvocationMetrics:
        usage = data.get("usage")
        if not isinstance(usage, dict):
            return ModelInvocationMetrics(latency_ms=latency_ms)

        usage_dict = typ.cast("dict[str, object]", usage)
        return ModelInvocationMetrics(
            prompt_tokens=_to_int_or_none(usage_dict.get("prompt_tokens")),
            completion_tokens=_to_int_or_none(usage_dict.get("completion_tokens")),
            total_tokens=_to_int_or_none(usage_dict.get("total_tokens")),
            latency_ms=latency_ms,
        )

    def _extract_content(self, data: dict[str, object]) -> str:
        """Extract assistant message content from an API response.

        Raises
        ------
        ScoringResponseShapeError
            If the response is missing expected fields.

        """
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            raise ScoringResponseShapeError.missing("choices")

        first_choice = choices[0]
        if not isinstance(first_choice, dict):
            raise ScoringResponseShapeError.missing("choices[0]")

        content = _get_nested(
            typ.cast("dict[str, object]", first_choice), "message", "content"
        )
        if not isinstance(content, str):
            raise ScoringResponseShapeError.missing("choices[0].message.content")
        return content
