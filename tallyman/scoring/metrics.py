"""Model invocation metrics captured by scorer adapters."""

from __future__ import annotations

import dataclasses as dc


@dc.dataclass(frozen=True, slots=True)
class ModelInvocationMetrics:
    """Token and latency metrics from a single scorer invocation."""

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    latency_ms: float | None = None
