# src/routing/models.py — v1
"""Routing lanes and screening judgment models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Lane(str, Enum):
    """Where a judgment goes next."""

    AUTO_ACCEPT = "auto_accept"
    AUTO_REJECT = "auto_reject"
    HUMAN_REVIEW = "human_review"
    UNCERTAIN = "uncertain"


VALID_LABELS: tuple[str, ...] = ("include", "exclude", "uncertain")
VALID_CONFIDENCE_LEVELS: tuple[str, ...] = ("high", "medium", "low")
REQUIRED_CRITERIA: tuple[str, ...] = ("population", "intervention", "comparator", "outcome")


class ScreeningJudgment(BaseModel):
    """Model-produced screening verdict for one record."""

    model_config = ConfigDict(extra="allow")

    decision: str
    rationale: str = ""
    criteria_matched: dict[str, bool] = Field(default_factory=dict)
    confidence: str | None = None
    key_findings: list[str] = Field(default_factory=list)
    concerns: list[str] = Field(default_factory=list)


class RoutingDecision(BaseModel):
    """Ephemeral result of routing one judgment. Not persisted."""

    model_config = ConfigDict(frozen=True)

    label: str
    confidence: float = Field(ge=0.0, le=1.0)
    lane: Lane
    threshold: float
    rationale: str = ""
    reason: str = ""

    @property
    def needs_review(self) -> bool:
        return self.lane in (Lane.HUMAN_REVIEW, Lane.UNCERTAIN)
