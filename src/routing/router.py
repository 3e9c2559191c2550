# src/routing/router.py — v1
"""Confidence-threshold routing of labelled judgments.

Anything that cannot be auto-routed falls back to human review, and that
fallback is logged with its reason so it is never silent.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from numbers import Real
from typing import Any

from stagegate.core.errors import InvalidConfidenceError, ValidationError
from stagegate.routing.models import Lane, RoutingDecision
from stagegate.routing.parsing import parse_judgment
from stagegate.routing.scoring import score_judgment

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.85


def _check_confidence(confidence: object) -> float:
    if isinstance(confidence, bool) or not isinstance(confidence, Real):
        raise InvalidConfidenceError(confidence)
    value = float(confidence)
    if math.isnan(value) or not 0.0 <= value <= 1.0:
        raise InvalidConfidenceError(confidence)
    return value


def _check_threshold(threshold: object) -> float:
    if isinstance(threshold, bool) or not isinstance(threshold, Real):
        raise ValidationError(f"Threshold must be a number, got {threshold!r}")
    value = float(threshold)
    if math.isnan(value) or not 0.0 <= value <= 1.0:
        raise ValidationError(f"Threshold must be between 0 and 1, got {threshold!r}")
    return value


def _route(label: object, confidence: object, threshold: object) -> tuple[Lane, str]:
    if not isinstance(label, str) or not label.strip():
        raise ValidationError("Decision label must be a non-empty string")
    score = _check_confidence(confidence)
    limit = _check_threshold(threshold)

    normalized = label.strip().lower()
    if normalized == "uncertain":
        return Lane.UNCERTAIN, "label is uncertain"

    if score >= limit:
        if normalized == "include":
            return Lane.AUTO_ACCEPT, f"include at {score:.2f} >= {limit:.2f}"
        if normalized == "exclude":
            return Lane.AUTO_REJECT, f"exclude at {score:.2f} >= {limit:.2f}"
        reason = f"unrecognised label {label!r}"
    else:
        reason = f"confidence {score:.2f} below threshold {limit:.2f}"

    logger.info("Routing %r to human review: %s", label, reason)
    return Lane.HUMAN_REVIEW, reason


def route_decision(
    label: str, confidence: float, threshold: float = DEFAULT_THRESHOLD
) -> Lane:
    """Map (label, confidence) to a lane.

    Raises:
        InvalidConfidenceError: confidence is not a number in [0, 1].
        ValidationError: empty label or threshold outside [0, 1].
    """
    lane, _ = _route(label, confidence, threshold)
    return lane


def route_judgment(
    raw: str | Mapping[str, Any], threshold: float = DEFAULT_THRESHOLD
) -> RoutingDecision:
    """Parse (if text), score and route a screening judgment."""
    judgment = parse_judgment(raw) if isinstance(raw, str) else dict(raw)
    label = judgment.get("decision")
    score = score_judgment(judgment)
    lane, reason = _route(label, score, threshold)
    rationale = judgment.get("rationale")
    return RoutingDecision(
        label=str(label).strip().lower(),
        confidence=score,
        lane=lane,
        threshold=float(threshold),
        rationale=rationale if isinstance(rationale, str) else "",
        reason=reason,
    )
