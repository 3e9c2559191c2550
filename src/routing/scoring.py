# src/routing/scoring.py — v1
"""Numeric confidence score from a structured screening judgment."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from stagegate.core.errors import ValidationError
from stagegate.routing.models import REQUIRED_CRITERIA

LEVEL_SCORES: dict[str, float] = {"high": 0.9, "medium": 0.6, "low": 0.3}
DEFAULT_LEVEL_SCORE = 0.5
COMPLETE_CRITERIA_BONUS = 0.1
UNCERTAIN_PENALTY = 0.3
CONCERN_PENALTY = 0.05


def score_judgment(raw: Mapping[str, Any]) -> float:
    """Score in [0, 1].

    Base from the stated level (high 0.9, medium 0.6, low 0.3, otherwise
    0.5), +0.1 when every required criterion is present as a boolean,
    -0.3 for an uncertain label, -0.05 per concern, then clamped.
    """
    if not isinstance(raw, Mapping):
        raise ValidationError("Judgment must be a mapping")

    level = raw.get("confidence")
    score = DEFAULT_LEVEL_SCORE
    if isinstance(level, str):
        score = LEVEL_SCORES.get(level.strip().lower(), DEFAULT_LEVEL_SCORE)

    criteria = raw.get("criteria_matched")
    if isinstance(criteria, Mapping) and all(
        isinstance(criteria.get(key), bool) for key in REQUIRED_CRITERIA
    ):
        score += COMPLETE_CRITERIA_BONUS

    decision = raw.get("decision")
    if isinstance(decision, str) and decision.strip().lower() == "uncertain":
        score -= UNCERTAIN_PENALTY

    concerns = raw.get("concerns")
    if isinstance(concerns, (list, tuple)):
        score -= CONCERN_PENALTY * len(concerns)

    return max(0.0, min(1.0, score))
