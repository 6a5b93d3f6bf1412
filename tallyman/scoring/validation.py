"""Strict validation of scorer payloads.

The scorer boundary never lets an unvalidated payload through: content from
the model is decoded against the :class:`QualityAssessment` schema and the
outcome is returned as a tagged result that callers must unpack.

Examples
--------
>>> result = parse_quality_payload('{"score": 7, "summary": "s", "analysis": "a"}')
>>> match result:
...     case ScoreAccepted(assessment=assessment):
...         assessment.score
...     case ScoreRejected(error=error):
...         raise error
7.0

"""

from __future__ import annotations

import dataclasses as dc

import msgspec

from tallyman.scoring.errors import ScoringResponseShapeError
from tallyman.scoring.models import QualityAssessment

_decoder = msgspec.json.Decoder(QualityAssessment)


@dc.dataclass(frozen=True, slots=True)
class ScoreAccepted:
    """Payload conformed to the assessment schema."""

    assessment: QualityAssessment


@dc.dataclass(frozen=True, slots=True)
class ScoreRejected:
    """Payload was not JSON or did not conform to the schema."""

    error: ScoringResponseShapeError


type ScorePayloadResult = ScoreAccepted | ScoreRejected


def parse_quality_payload(content: str | bytes) -> ScorePayloadResult:
    """Decode and validate assistant content as a :class:`QualityAssessment`.

    Scores must be numbers between 1 and 10 inclusive; ``summary`` and
    ``analysis`` must be strings. Unknown fields are ignored.
    """
    text = content.decode("utf-8", "replace") if isinstance(content, bytes) else content
    try:
        assessment = _decoder.decode(content)
    except msgspec.ValidationError as exc:
        return ScoreRejected(ScoringResponseShapeError.nonconforming(str(exc), text))
    except msgspec.DecodeError:
        return ScoreRejected(ScoringResponseShapeError.invalid_json(text))
    return ScoreAccepted(assessment)


def require_assessment(result: ScorePayloadResult) -> QualityAssessment:
    """Return the accepted assessment or raise the rejection error."""
    match result:
        case ScoreAccepted(assessment=assessment):
            return assessment
        case ScoreRejected(error=error):
            raise error
