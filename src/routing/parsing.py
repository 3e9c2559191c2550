# src/routing/parsing.py — v1
"""Extract and validate screening judgments from model replies."""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from typing import Any

from stagegate.core.errors import ValidationError
from stagegate.core.models import ValidationResult
from stagegate.routing.models import (
    VALID_CONFIDENCE_LEVELS,
    VALID_LABELS,
    ScreeningJudgment,
)

_CODE_BLOCK_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL)
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def parse_judgment(text: str) -> dict[str, Any]:
    """Pull the JSON object out of a reply (fenced block or bare object).

    Raises:
        ValidationError: No JSON found, malformed JSON, or no ``decision``.
    """
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("Response text must be a non-empty string")

    block = _CODE_BLOCK_RE.search(text)
    if block:
        candidate = block.group(1).strip()
    else:
        obj = _OBJECT_RE.search(text)
        if obj is None:
            raise ValidationError("No JSON object found in response text")
        candidate = obj.group(0)

    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Failed to parse JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ValidationError("Response JSON must be an object")
    if not parsed.get("decision"):
        raise ValidationError("Missing required field: decision")
    return parsed


def _check_string_list(value: Any, field: str, errors: list[str]) -> None:
    if not isinstance(value, list):
        errors.append(f"{field} must be an array")
    elif not all(isinstance(item, str) for item in value):
        errors.append(f"All {field} elements must be strings")


def validate_judgment(judgment: object) -> ValidationResult:
    """Check a judgment before it is stored. Reports every problem found."""
    if not isinstance(judgment, Mapping):
        return ValidationResult(valid=False, errors=["Judgment must be an object"])

    errors: list[str] = []
    decision = judgment.get("decision")
    if not isinstance(decision, str) or not decision:
        errors.append("decision field is required and must be a string")
    elif decision.lower() not in VALID_LABELS:
        errors.append(f"decision must be one of: {', '.join(VALID_LABELS)}")

    rationale = judgment.get("rationale")
    if not isinstance(rationale, str) or not rationale:
        errors.append("rationale field is required and must be a string")
    elif not rationale.strip():
        errors.append("rationale must be a non-empty string")

    criteria = judgment.get("criteria_matched")
    if criteria is None:
        errors.append("criteria_matched field is required")
    elif not isinstance(criteria, Mapping):
        errors.append("criteria_matched must be an object")
    elif not all(isinstance(v, bool) for v in criteria.values()):
        errors.append("All criteria_matched values must be boolean")

    if "confidence" in judgment:
        level = judgment["confidence"]
        if not isinstance(level, str):
            errors.append("confidence must be a string")
        elif level.lower() not in VALID_CONFIDENCE_LEVELS:
            errors.append(
                f"confidence must be one of: {', '.join(VALID_CONFIDENCE_LEVELS)}"
            )

    if "key_findings" in judgment:
        _check_string_list(judgment["key_findings"], "key_findings", errors)
    if "concerns" in judgment:
        _check_string_list(judgment["concerns"], "concerns", errors)

    return ValidationResult.from_errors(errors)


def to_judgment(judgment: Mapping[str, Any]) -> ScreeningJudgment:
    """Validate and convert into a typed ScreeningJudgment.

    Raises:
        ValidationError: With every problem validate_judgment() found.
    """
    result = validate_judgment(judgment)
    if not result.valid:
        raise ValidationError(
            f"Invalid judgment: {', '.join(result.errors)}", errors=result.errors
        )
    data = dict(judgment)
    data["decision"] = str(data["decision"]).lower()
    if isinstance(data.get("confidence"), str):
        data["confidence"] = data["confidence"].lower()
    return ScreeningJudgment.model_validate(data)
