"""Entry point for scoring a pull request from a GitHub Actions workflow.

The workflow runs ``tallyman-action`` on ``pull_request`` ``closed`` events.
Other events, and pull requests closed without merging, are skipped with
exit code 0. A scored pull request sets the ``quality-score`` and
``quality-summary`` step outputs; any failure prints an ``::error::``
annotation and exits 1.
"""

from __future__ import annotations

import asyncio
import os
import sys
import typing as typ
import uuid
from pathlib import Path

import msgspec
from sqlalchemy.exc import SQLAlchemyError

from tallyman.common.errors import ConfigError, TallymanError
from tallyman.logging import configure_logging, get_logger, log_exception, log_info
from tallyman.pipeline.config import PipelineConfig
from tallyman.pipeline.gates import passes
from tallyman.pipeline.models import OutcomeStatus
from tallyman.pipeline.single import SingleItemPipeline
from tallyman.runtime import database_url_from_env, open_pipeline

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from tallyman.pipeline.models import AnalysisOutcome

logger = get_logger(__name__)

EVENT_NAME_ENV_VAR = "GITHUB_EVENT_NAME"
EVENT_PATH_ENV_VAR = "GITHUB_EVENT_PATH"
OUTPUT_ENV_VAR = "GITHUB_OUTPUT"
PULL_REQUEST_EVENT = "pull_request"


class EventOwner(msgspec.Struct):
    """Repository owner in a webhook payload."""

    login: str


class EventRepository(msgspec.Struct):
    """Repository in a webhook payload."""

    name: str
    owner: EventOwner


class EventPullRequest(msgspec.Struct):
    """The fields of a ``pull_request`` payload the action reads."""

    number: int
    merged: bool = False
    additions: int = 0


class PullRequestEvent(msgspec.Struct):
    """Subset of the ``pull_request`` webhook payload."""

    repository: EventRepository
    pull_request: EventPullRequest | None = None


class ActionEventError(ConfigError):
    """Raised when the workflow event cannot be read."""

    @classmethod
    def missing_path(cls) -> ActionEventError:
        """Create error for an unset event path."""
        return cls(f"{EVENT_PATH_ENV_VAR} environment variable is required")

    @classmethod
    def unreadable(cls, path: str, reason: str) -> ActionEventError:
        """Create error for an event file that is missing or malformed."""
        return cls(f"cannot read event payload at {path}: {reason}")


def load_event(path: str) -> PullRequestEvent:
    """Decode the event payload at ``path``.

    Raises
    ------
    ActionEventError
        If the file is missing, is not JSON, or lacks the repository fields.

    """
    try:
        return msgspec.json.decode(Path(path).read_bytes(), type=PullRequestEvent)
    except OSError as exc:
        raise ActionEventError.unreadable(path, exc.strerror or str(exc)) from exc
    except msgspec.DecodeError as exc:
        raise ActionEventError.unreadable(path, str(exc)) from exc


def write_outputs(path: str, outputs: cabc.Mapping[str, str]) -> None:
    """Append step outputs to the ``GITHUB_OUTPUT`` file.

    Values use the delimiter form so multi-line summaries survive intact.
    """
    with Path(path).open("a", encoding="utf-8") as handle:
        for name, value in outputs.items():
            delimiter = f"ghadelimiter_{uuid.uuid4()}"
            handle.write(f"{name}<<{delimiter}\n{value}\n{delimiter}\n")


def outputs_for(outcome: AnalysisOutcome) -> dict[str, str]:
    """Return the step outputs for a completed analysis."""
    quality = outcome.record.quality if outcome.record else None
    if quality is None:
        return {}
    return {
        "quality-score": f"{quality.score:g}",
        "quality-summary": quality.summary,
    }


async def _analyze(
    database_url: str, owner: str, repo: str, number: int
) -> AnalysisOutcome:
    async with open_pipeline(database_url) as runtime:
        pipeline = SingleItemPipeline(runtime.collaborators, config=runtime.config)
        return await pipeline.run(owner, repo, number)


def _process_event() -> int:
    event_name = os.environ.get(EVENT_NAME_ENV_VAR, "")
    if event_name != PULL_REQUEST_EVENT:
        log_info(logger, "Event %s is not a pull_request event; skipping", event_name)
        return 0

    event_path = os.environ.get(EVENT_PATH_ENV_VAR, "")
    if not event_path:
        raise ActionEventError.missing_path()
    event = load_event(event_path)
    pull_request = event.pull_request
    if pull_request is None or not pull_request.merged:
        log_info(logger, "Pull request not merged; skipping")
        return 0

    config = PipelineConfig.from_env()
    if not passes(pull_request.additions, config.min_lines):
        log_info(
            logger,
            "PR #%d has %d additions, below minimum of %d; skipping",
            pull_request.number,
            pull_request.additions,
            config.min_lines,
        )
        return 0

    owner = event.repository.owner.login
    repo = event.repository.name
    log_info(logger, "Processing merged PR #%d in %s/%s", pull_request.number, owner, repo)
    outcome = asyncio.run(
        _analyze(database_url_from_env(), owner, repo, pull_request.number)
    )
    if outcome.status is not OutcomeStatus.COMPLETED:
        log_info(logger, "PR #%d skipped (%s)", pull_request.number, outcome.skip_reason)
        return 0

    outputs = outputs_for(outcome)
    log_info(
        logger,
        "Quality score: %s/10 summary=%s",
        outputs["quality-score"],
        outputs["quality-summary"],
    )
    output_path = os.environ.get(OUTPUT_ENV_VAR)
    if output_path:
        write_outputs(output_path, outputs)
    return 0


def run_action() -> int:
    """Score the pull request named by the workflow event.

    Returns
    -------
    int
        0 when the event was scored or skipped, 1 on any failure.

    """
    try:
        return _process_event()
    except (TallymanError, SQLAlchemyError) as exc:
        log_exception(logger, f"Action failed: {exc}", exc)
        print(f"::error::{exc}")
        return 1


def main() -> int:
    """Console entry point for the workflow step."""
    configure_logging()
    return run_action()


if __name__ == "__main__":
    sys.exit(main())
