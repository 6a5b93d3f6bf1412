"""Factory for creating QualityScorer implementations from environment configuration."""

from __future__ import annotations

import os
import typing as typ

from tallyman.scoring.errors import ScorerConfigError
from tallyman.scoring.mock import MockQualityScorer

if typ.TYPE_CHECKING:
    from tallyman.scoring.protocol import QualityScorer

SCORER_BACKEND_ENV_VAR = "TALLYMAN_SCORER_BACKEND"
_DEFAULT_BACKEND = "openai"
_VALID_BACKENDS = frozenset({"mock", "openai"})


def create_quality_scorer() -> QualityScorer:
    """Create a QualityScorer implementation based on environment configuration.

    Reads ``TALLYMAN_SCORER_BACKEND`` (``openai`` or ``mock``, default
    ``openai``). The OpenAI backend additionally reads the
    ``TALLYMAN_OPENAI_*`` variables described on
    :meth:`OpenAIScorerConfig.from_env`.

    Raises
    ------
    ScorerConfigError
        If the backend name is not recognised.
    OpenAIConfigError
        If the OpenAI backend is selected but its API key is missing.

    Examples
    --------
    >>> import os
    >>> os.environ["TALLYMAN_SCORER_BACKEND"] = "mock"
    >>> isinstance(create_quality_scorer(), MockQualityScorer)
    True

    """
    raw_backend = os.environ.get(SCORER_BACKEND_ENV_VAR, _DEFAULT_BACKEND)
    backend = raw_backend.strip().lower()
    if backend not in _VALID_BACKENDS:
        raise ScorerConfigError.invalid_backend(raw_backend, _VALID_BACKENDS)

    if backend == "mock":
        return MockQualityScorer()

    from tallyman.scoring.config import OpenAIScorerConfig
    from tallyman.scoring.openai_client import OpenAIQualityScorer

    return OpenAIQualityScorer(OpenAIScorerConfig.from_env())
