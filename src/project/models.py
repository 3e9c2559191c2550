# src/project/models.py — v2
"""Project, approval flags and audit entry models."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stagegate.core.models import ensure_utc, utc_now


class ProjectStatus(str, Enum):
    """Top-level project status. Order follows the happy path."""

    DRAFT = "draft"
    INTAKE_COMPLETE = "intake_complete"
    INTAKE_APPROVED = "intake_approved"
    RESEARCH_COMPLETE = "research_complete"
    RESEARCH_APPROVED = "research_approved"
    METHODOLOGY_COMPLETE = "methodology_complete"
    METHODOLOGY_APPROVED = "methodology_approved"
    ETHICS_COMPLETE = "ethics_complete"
    ETHICS_APPROVED = "ethics_approved"
    DOCUMENTS_COMPLETE = "documents_complete"
    DOCUMENTS_APPROVED = "documents_approved"
    SUBMITTED = "submitted"
    COMPLETED = "completed"
    ARCHIVED = "archived"
    REVISION_REQUIRED = "revision_required"


APPROVAL_CHECKPOINTS: tuple[str, ...] = (
    "intake", "research", "methodology", "ethics", "documents",
)


class ApprovalFlags(BaseModel):
    """One human sign-off flag per approvable stage."""

    model_config = ConfigDict(extra="forbid")

    intake_approved: bool = False
    research_approved: bool = False
    methodology_approved: bool = False
    ethics_approved: bool = False
    documents_approved: bool = False

    def is_approved(self, checkpoint_name: str) -> bool:
        return bool(getattr(self, f"{checkpoint_name}_approved"))

    def with_flag(self, checkpoint_name: str, value: bool) -> ApprovalFlags:
        return self.model_copy(update={f"{checkpoint_name}_approved": value})


class Project(BaseModel):
    """One end-to-end pipeline run.

    The audit trail is not held here; it lives in the project store's
    append-only audit table.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), min_length=1)
    status: ProjectStatus = ProjectStatus.DRAFT
    checkpoints: ApprovalFlags = Field(default_factory=ApprovalFlags)
    stage_outputs: dict[str, Any] = Field(default_factory=dict)
    revision_of: ProjectStatus | None = None
    # bumped by every store commit; the optimistic-concurrency token
    version: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("created_at", "updated_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    def snapshot(self) -> dict[str, Any]:
        """State captured in audit entries."""
        state: dict[str, Any] = {
            "status": self.status.value,
            "checkpoints": self.checkpoints.model_dump(),
        }
        if self.revision_of is not None:
            state["revision_of"] = self.revision_of.value
        return state


class AuditAction(str, Enum):
    PROJECT_CREATED = "project_created"
    STATUS_CHANGED = "status_changed"
    CHECKPOINT_APPROVED = "checkpoint_approved"
    CHECKPOINT_REJECTED = "checkpoint_rejected"
    STAGE_STARTED = "stage_started"
    STAGE_COMPLETED = "stage_completed"
    SYSTEM_ERROR = "system_error"


class AuditEntry(BaseModel):
    """Immutable record of one state change or stage event."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    project_id: str = Field(min_length=1)
    timestamp: datetime = Field(default_factory=utc_now)
    action: AuditAction
    actor: str = Field(min_length=1)
    previous_state: dict[str, Any] | None = None
    new_state: dict[str, Any] | None = None
    details: dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)
