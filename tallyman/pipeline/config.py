"""Pipeline tuning from environment variables."""

from __future__ import annotations

import dataclasses
import os

from tallyman.common.errors import ConfigError
from tallyman.pipeline.gates import DEFAULT_MIN_LINES

MIN_LINES_ENV_VAR = "TALLYMAN_MIN_LINES"
LOOKBACK_DAYS_ENV_VAR = "TALLYMAN_LOOKBACK_DAYS"
DEFAULT_LOOKBACK_DAYS = 30


class PipelineConfigError(ConfigError):
    """Raised when a pipeline setting is invalid."""

    @classmethod
    def invalid_integer(
        cls, name: str, value: str, constraint: str
    ) -> PipelineConfigError:
        """Create error for an environment value that is not a valid integer."""
        return cls(f"Invalid {name} '{value}'. {constraint}")


def _read_int(name: str, default: int, *, minimum: int, constraint: str) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise PipelineConfigError.invalid_integer(name, raw, constraint) from exc
    if value < minimum:
        raise PipelineConfigError.invalid_integer(name, raw, constraint)
    return value


@dataclasses.dataclass(frozen=True, slots=True)
class PipelineConfig:
    """Thresholds shared by the batch and single-item pipelines.

    Attributes
    ----------
    min_lines
        Minimum added lines for a change to be scored.
    lookback_days
        Default window for batch runs.

    """

    min_lines: int = DEFAULT_MIN_LINES
    lookback_days: int = DEFAULT_LOOKBACK_DAYS

    @classmethod
    def from_env(cls) -> PipelineConfig:
        """Build configuration from ``TALLYMAN_MIN_LINES`` and ``TALLYMAN_LOOKBACK_DAYS``.

        Raises
        ------
        PipelineConfigError
            If either value is not an integer or is out of range.

        """
        return cls(
            min_lines=_read_int(
                MIN_LINES_ENV_VAR,
                DEFAULT_MIN_LINES,
                minimum=0,
                constraint="Must be a non-negative integer",
            ),
            lookback_days=_read_int(
                LOOKBACK_DAYS_ENV_VAR,
                DEFAULT_LOOKBACK_DAYS,
                minimum=1,
                constraint="Must be a positive integer",
            ),
        )
