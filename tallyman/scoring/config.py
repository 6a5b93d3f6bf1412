"""Configuration for the OpenAI quality scorer."""

from __future__ import annotations

import dataclasses
import os

from tallyman.scoring.errors import OpenAIConfigError, ScorerConfigError

_DEFAULT_ENDPOINT = "https://api.openai.com/v1/chat/completions"
_DEFAULT_MODEL = "gpt-4o"
_DEFAULT_TIMEOUT_S = 120.0
_DEFAULT_TEMPERATURE = 0.3
_DEFAULT_MAX_TOKENS = 2000

MIN_TEMPERATURE = 0.0
MAX_TEMPERATURE = 2.0


@dataclasses.dataclass(frozen=True, slots=True)
class OpenAIScorerConfig:
    """Configuration for an OpenAI-compatible chat completions scorer.

    Attributes
    ----------
    api_key
        API key for authentication with the OpenAI API.
    endpoint
        Chat completions endpoint URL.
    model
        Model identifier to use for completions.
    timeout_s
        Request timeout in seconds.
    temperature
        Sampling temperature (0.0 to 2.0).
    max_tokens
        Maximum tokens in the completion response.

    """

    api_key: str
    endpoint: str = _DEFAULT_ENDPOINT
    model: str = _DEFAULT_MODEL
    timeout_s: float = _DEFAULT_TIMEOUT_S
    temperature: float = _DEFAULT_TEMPERATURE
    max_tokens: int = _DEFAULT_MAX_TOKENS

    @staticmethod
    def _parse_temperature_from_env() -> float:
        raw_temperature = os.environ.get("TALLYMAN_OPENAI_TEMPERATURE")
        if raw_temperature is None:
            return _DEFAULT_TEMPERATURE

        constraint = f"Must be a float between {MIN_TEMPERATURE} and {MAX_TEMPERATURE}"
        try:
            temperature = float(raw_temperature)
        except ValueError as exc:
            raise ScorerConfigError.invalid_parameter(
                "temperature", raw_temperature, constraint
            ) from exc

        if not MIN_TEMPERATURE <= temperature <= MAX_TEMPERATURE:
            raise ScorerConfigError.invalid_parameter(
                "temperature", raw_temperature, constraint
            )
        return temperature

    @staticmethod
    def _parse_max_tokens_from_env() -> int:
        raw_max_tokens = os.environ.get("TALLYMAN_OPENAI_MAX_TOKENS")
        if raw_max_tokens is None:
            return _DEFAULT_MAX_TOKENS

        constraint = "Must be a positive integer"
        try:
            max_tokens = int(raw_max_tokens)
        except ValueError as exc:
            raise ScorerConfigError.invalid_parameter(
                "max_tokens", raw_max_tokens, constraint
            ) from exc

        if max_tokens <= 0:
            raise ScorerConfigError.invalid_parameter(
                "max_tokens", raw_max_tokens, constraint
            )
        return max_tokens

    @classmethod
    def from_env(cls) -> OpenAIScorerConfig:
        """Build configuration from environment variables.

        Reads the following environment variables:

        - ``TALLYMAN_OPENAI_API_KEY``: Required API key
        - ``TALLYMAN_OPENAI_ENDPOINT``: Optional endpoint override
        - ``TALLYMAN_OPENAI_MODEL``: Optional model override
        - ``TALLYMAN_OPENAI_TEMPERATURE``: Optional temperature (0.0 to 2.0)
        - ``TALLYMAN_OPENAI_MAX_TOKENS``: Optional max tokens (positive integer)

        Raises
        ------
        OpenAIConfigError
            If the API key is missing or empty.
        ScorerConfigError
            If temperature or max_tokens values are invalid.

        """
        raw_api_key = os.environ.get("TALLYMAN_OPENAI_API_KEY")
        if raw_api_key is None:
            raise OpenAIConfigError.missing_api_key()
        api_key = raw_api_key.strip()
        if not api_key:
            raise OpenAIConfigError.empty_api_key()

        return cls(
            api_key=api_key,
            endpoint=os.environ.get("TALLYMAN_OPENAI_ENDPOINT", _DEFAULT_ENDPOINT),
            model=os.environ.get("TALLYMAN_OPENAI_MODEL", _DEFAULT_MODEL),
            temperature=cls._parse_temperature_from_env(),
            max_tokens=cls._parse_max_tokens_from_env(),
        )
