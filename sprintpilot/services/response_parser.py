"""
Validation of raw completion text.

Parsers never raise: a bad completion becomes a ``ParseFailure`` value that
the caller returns to the client as data.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Type, Union
import json

from pydantic import BaseModel, ValidationError as PydanticValidationError

from ..core.exceptions import ValidationError
from ..schemas.ai import (
    RetrospectiveInsights,
    RiskAssessment,
    ScopeCreepAnalysis,
    SprintPlan,
    SprintPlanAdvice,
)
from ..utils.logging import get_logger

logger = get_logger(__name__)


class ParseFailureKind(str, Enum):
    EMPTY_RESPONSE = "empty_response"
    TRUNCATED_RESPONSE = "truncated_response"
    MALFORMED_JSON = "malformed_json"
    SCHEMA_VIOLATION = "schema_violation"


_REMEDIATION = {
    ParseFailureKind.EMPTY_RESPONSE: "reprompt",
    ParseFailureKind.TRUNCATED_RESPONSE: "raise token budget",
    ParseFailureKind.MALFORMED_JSON: "reprompt",
    ParseFailureKind.SCHEMA_VIOLATION: "reprompt",
}


@dataclass
class ParseFailure:
    kind: ParseFailureKind
    message: str
    raw_response: str
    details: List[Dict[str, Any]] = field(default_factory=list)
    manual_review_required: bool = False

    @property
    def remediation(self) -> str:
        return _REMEDIATION[self.kind]

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "error": self.message,
            "error_kind": self.kind.value,
            "raw_response": self.raw_response,
            "remediation": self.remediation,
        }
        if self.details:
            body["details"] = self.details
        if self.manual_review_required:
            body["manual_review_required"] = True
        return body


ParseResult = Union[Dict[str, Any], ParseFailure]


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` or ``` ... ``` fence"""
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[len("```json"):]
    elif cleaned.startswith("```"):
        cleaned = cleaned[len("```"):]
    if cleaned.endswith("```"):
        cleaned = cleaned[: -len("```")]
    return cleaned.strip()


def pydantic_error_details(error: PydanticValidationError) -> List[Dict[str, Any]]:
    """Flatten pydantic errors into field/message pairs"""
    details = []
    for item in error.errors():
        details.append({
            "field": ".".join(str(part) for part in item["loc"]) or "__root__",
            "message": item["msg"],
            "type": item["type"],
        })
    return details


def _decode(raw: Optional[str]) -> Union[Dict[str, Any], ParseFailure]:
    raw = raw or ""
    cleaned = strip_code_fences(raw)

    if not cleaned:
        return ParseFailure(ParseFailureKind.EMPTY_RESPONSE, "AI returned an empty response", raw)

    if not cleaned.startswith(("{", "[")):
        return ParseFailure(
            ParseFailureKind.MALFORMED_JSON,
            "AI response is not JSON",
            raw,
            [{"field": "__root__", "message": "response does not start with a JSON value", "type": "json_invalid"}],
        )

    # an object that was opened but never closed ran out of tokens
    if cleaned.startswith("{") and not cleaned.endswith("}"):
        return ParseFailure(
            ParseFailureKind.TRUNCATED_RESPONSE,
            "AI response appears to be truncated",
            raw,
        )

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.warning("Failed to decode AI response: %s", e)
        return ParseFailure(
            ParseFailureKind.MALFORMED_JSON,
            "Failed to parse AI response",
            raw,
            [{"field": "__root__", "message": str(e), "type": "json_invalid"}],
        )

    if not isinstance(data, dict):
        return ParseFailure(
            ParseFailureKind.SCHEMA_VIOLATION,
            "AI response is not a JSON object",
            raw,
            [{"field": "__root__", "message": "expected an object", "type": "dict_type"}],
        )

    return data


def _parse_with(model: Type[BaseModel], raw: Optional[str]) -> ParseResult:
    decoded = _decode(raw)
    if isinstance(decoded, ParseFailure):
        return decoded

    try:
        return model.model_validate(decoded).model_dump(mode="json")
    except PydanticValidationError as e:
        details = pydantic_error_details(e)
        logger.warning("AI response failed %s validation: %d errors", model.__name__, len(details))
        return ParseFailure(
            ParseFailureKind.SCHEMA_VIOLATION,
            "AI response does not match the expected structure",
            raw or "",
            details,
        )


def parse_sprint_planning_response(raw: Optional[str]) -> ParseResult:
    return _parse_with(SprintPlanAdvice, raw)


def parse_scope_creep_response(raw: Optional[str]) -> ParseResult:
    return _parse_with(ScopeCreepAnalysis, raw)


def parse_risk_assessment_response(raw: Optional[str]) -> ParseResult:
    return _parse_with(RiskAssessment, raw)


def parse_retrospective_response(raw: Optional[str]) -> ParseResult:
    return _parse_with(RetrospectiveInsights, raw)


def parse_sprint_creation_response(raw: Optional[str]) -> ParseResult:
    """
    Validate an AI-authored sprint plan.

    Truncation is checked before decoding so a cut-off plan is reported as
    needing a bigger token budget rather than as malformed JSON. Any failure
    is flagged for manual review.
    """
    result = _parse_with(SprintPlan, raw)
    if isinstance(result, ParseFailure):
        result.manual_review_required = True
    return result


def validate_sprint_plan(payload: Any) -> SprintPlan:
    """Validate an already-decoded plan body, raising ValidationError"""
    try:
        return SprintPlan.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError("Invalid sprint plan", details=pydantic_error_details(e))
