# src/checkpoint/models.py — v2
"""Checkpoint domain models: Stage, CheckpointStatus, Progress, CheckpointContext, Checkpoint.

A Checkpoint is the resumable state of one execution of one stage. Field
types are enforced by pydantic; cross-field invariants are enforced by the
model validator so that no invalid checkpoint can be constructed through
normal validation.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from stagegate.core.models import ensure_utc


class Stage(str, Enum):
    """Fixed set of stages a checkpoint may be in. COMPLETED is terminal."""

    FETCH_PMIDS = "fetch_pmids"
    FETCH_METADATA = "fetch_metadata"
    PARSE_METADATA = "parse_metadata"
    SCREEN_ABSTRACTS = "screen_abstracts"
    COMPLETED = "completed"


class CheckpointStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


VALID_STAGES: tuple[str, ...] = tuple(s.value for s in Stage)
VALID_STATUSES: tuple[str, ...] = tuple(s.value for s in CheckpointStatus)


class Progress(BaseModel):
    """Unit counters. total == 0 means the total is not known yet."""

    model_config = ConfigDict(extra="forbid")

    processed: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)


class CheckpointContext(BaseModel):
    """Stage parameters needed to resume.

    Well-known keys are typed fields; anything else goes in ``extra``.
    """

    model_config = ConfigDict(extra="forbid")

    project_id: str | None = None
    review_id: int | str | None = None
    search_id: int | str | None = None
    query: str | None = None
    batch_size: int | None = Field(default=None, ge=1)
    last_error: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def known_keys(cls) -> frozenset[str]:
        return frozenset(cls.model_fields) - {"extra"}

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> CheckpointContext:
        """Split a flat mapping into typed keys and the extra bag."""
        known = cls.known_keys()
        typed = {k: v for k, v in data.items() if k in known}
        extra = dict(data.get("extra") or {})
        extra.update(
            {k: v for k, v in data.items() if k not in known and k != "extra"}
        )
        return cls(**typed, extra=extra)

    def merged(self, updates: dict[str, Any]) -> CheckpointContext:
        """Key-wise merge; extra is merged key-wise as well."""
        incoming = CheckpointContext.from_mapping(updates)
        data = self.model_dump()
        for key in incoming.model_fields_set - {"extra"}:
            data[key] = getattr(incoming, key)
        data["extra"] = {**self.extra, **incoming.extra}
        return CheckpointContext.model_validate(data)


class Checkpoint(BaseModel):
    """Resumable state of one stage execution."""

    model_config = ConfigDict(extra="forbid")

    execution_id: str = Field(min_length=1)
    pipeline_name: str = Field(min_length=1)
    stage: Stage
    status: CheckpointStatus = CheckpointStatus.IN_PROGRESS
    last_processed: Any = None
    progress: Progress = Field(default_factory=Progress)
    created_at: datetime
    updated_at: datetime
    error_count: int = Field(default=0, ge=0)
    context: CheckpointContext = Field(default_factory=CheckpointContext)

    @field_validator("execution_id", "pipeline_name")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must be a non-empty string")
        return v

    @field_validator("created_at", "updated_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @model_validator(mode="after")
    def _check_invariants(self) -> Checkpoint:
        errors: list[str] = []
        if self.progress.total > 0 and self.progress.processed > self.progress.total:
            errors.append(
                f"progress.processed ({self.progress.processed}) exceeds "
                f"progress.total ({self.progress.total})"
            )
        if (
            self.status is CheckpointStatus.COMPLETED
            and self.stage is not Stage.COMPLETED
        ):
            errors.append("status 'completed' requires stage 'completed'")
        if self.updated_at < self.created_at:
            errors.append("updated_at must not be earlier than created_at")
        if errors:
            raise ValueError("; ".join(errors))
        return self

    @property
    def is_terminal(self) -> bool:
        return (
            self.status is CheckpointStatus.COMPLETED
            or self.stage is Stage.COMPLETED
        )

    @property
    def execution_stage(self) -> str:
        """Stage this execution was started for; kept after completion."""
        return self.context.extra.get("stage") or self.stage.value


class ResumeCheck(BaseModel):
    """Outcome of can_resume(); reasons lists every violated condition."""

    can_resume: bool
    reasons: list[str] = Field(default_factory=list)


class ResumeContext(BaseModel):
    """Continuation parameters extracted from a checkpoint."""

    execution_id: str
    stage: Stage
    last_processed: Any
    progress: Progress
    context: CheckpointContext
    start_index: int
