# src/core/models.py — v1
"""Shared Pydantic models and helpers used across components.

No module redefines these types — all imports come from core.models.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field

# Actor recorded on audit entries produced without a human in the loop.
SYSTEM_ACTOR = "system"


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ValidationResult(BaseModel):
    """Outcome of a pure structural check."""

    valid: bool
    errors: list[str] = Field(default_factory=list)

    @classmethod
    def from_errors(cls, errors: list[str]) -> ValidationResult:
        return cls(valid=not errors, errors=errors)
