# src/project/state_machine.py — v2
"""Project status transitions, approvals and audit entry production.

Every function here is pure: it returns the new Project together with the
single AuditEntry describing the change, and the caller persists both in one
store commit (see ProjectGate). Status edges:

    draft -> intake_complete -> intake_approved -> research_complete -> ...
    ... -> documents_approved -> submitted -> completed -> archived

Each *_complete status may also go to revision_required. Entering it clears
that stage's approval flag, and it returns only to the *_complete status
under revision. archived is terminal. Entering an *_approved status requires
the matching approval flag.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from stagegate.core.errors import MissingFieldError, TransitionError, ValidationError
from stagegate.core.models import utc_now
from stagegate.project.models import (
    APPROVAL_CHECKPOINTS,
    AuditAction,
    AuditEntry,
    Project,
    ProjectStatus,
)

logger = logging.getLogger(__name__)

S = ProjectStatus

HAPPY_PATH: tuple[ProjectStatus, ...] = (
    S.DRAFT,
    S.INTAKE_COMPLETE, S.INTAKE_APPROVED,
    S.RESEARCH_COMPLETE, S.RESEARCH_APPROVED,
    S.METHODOLOGY_COMPLETE, S.METHODOLOGY_APPROVED,
    S.ETHICS_COMPLETE, S.ETHICS_APPROVED,
    S.DOCUMENTS_COMPLETE, S.DOCUMENTS_APPROVED,
    S.SUBMITTED, S.COMPLETED, S.ARCHIVED,
)

COMPLETE_STATUSES: dict[str, ProjectStatus] = {
    "intake": S.INTAKE_COMPLETE,
    "research": S.RESEARCH_COMPLETE,
    "methodology": S.METHODOLOGY_COMPLETE,
    "ethics": S.ETHICS_COMPLETE,
    "documents": S.DOCUMENTS_COMPLETE,
}
APPROVED_STATUSES: dict[str, ProjectStatus] = {
    "intake": S.INTAKE_APPROVED,
    "research": S.RESEARCH_APPROVED,
    "methodology": S.METHODOLOGY_APPROVED,
    "ethics": S.ETHICS_APPROVED,
    "documents": S.DOCUMENTS_APPROVED,
}


def _build_transitions() -> dict[ProjectStatus, frozenset[ProjectStatus]]:
    table: dict[ProjectStatus, set[ProjectStatus]] = {s: set() for s in ProjectStatus}
    for current, nxt in zip(HAPPY_PATH, HAPPY_PATH[1:]):
        table[current].add(nxt)
    for complete in COMPLETE_STATUSES.values():
        table[complete].add(S.REVISION_REQUIRED)
        table[S.REVISION_REQUIRED].add(complete)
    return {status: frozenset(targets) for status, targets in table.items()}


TRANSITIONS: dict[ProjectStatus, frozenset[ProjectStatus]] = _build_transitions()

STAGE_EVENT_ACTIONS = frozenset(
    {AuditAction.STAGE_STARTED, AuditAction.STAGE_COMPLETED, AuditAction.SYSTEM_ERROR}
)


def _status(value: ProjectStatus | str) -> ProjectStatus:
    try:
        return ProjectStatus(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown project status {value!r}") from exc


def _checkpoint_name(name: str) -> str:
    if name not in APPROVAL_CHECKPOINTS:
        raise ValidationError(
            f"Unknown checkpoint {name!r}. Must be one of: {', '.join(APPROVAL_CHECKPOINTS)}"
        )
    return name


def _require_actor(actor: str) -> str:
    if not isinstance(actor, str) or not actor.strip():
        raise MissingFieldError("actor")
    return actor


def allowed_transitions(
    status: ProjectStatus | str, revision_of: ProjectStatus | None = None
) -> frozenset[ProjectStatus]:
    """Statuses reachable in one step. revision_of narrows revision_required."""
    current = _status(status)
    if current is S.REVISION_REQUIRED and revision_of is not None:
        return frozenset({revision_of})
    return TRANSITIONS[current]


def can_transition(
    from_status: ProjectStatus | str,
    to_status: ProjectStatus | str,
    revision_of: ProjectStatus | None = None,
) -> bool:
    return _status(to_status) in allowed_transitions(from_status, revision_of)


def approval_checkpoint_for(status: ProjectStatus | str) -> str | None:
    """Checkpoint name an *_complete or *_approved status belongs to."""
    current = _status(status)
    for name in APPROVAL_CHECKPOINTS:
        if current in (COMPLETE_STATUSES[name], APPROVED_STATUSES[name]):
            return name
    return None


def complete_status_for(stage_name: str) -> ProjectStatus:
    """The *_complete status a finished stage moves the project to."""
    return COMPLETE_STATUSES[_checkpoint_name(stage_name)]


def has_reached(status: ProjectStatus | str, target: ProjectStatus | str) -> bool:
    """True when ``status`` is ``target`` or later on the happy path.

    revision_required has not reached anything: the stage under revision
    still has to complete again.
    """
    current, wanted = _status(status), _status(target)
    if S.REVISION_REQUIRED in (current, wanted):
        return False
    return HAPPY_PATH.index(current) >= HAPPY_PATH.index(wanted)


def transition(
    project: Project,
    target: ProjectStatus | str,
    actor: str,
    details: Mapping[str, Any] | None = None,
) -> tuple[Project, AuditEntry]:
    """Move a project along one edge of the status table.

    Raises:
        TransitionError: Same-status move, edge not in the table, return from
            revision to a different stage, or an unapproved checkpoint.
    """
    _require_actor(actor)
    current = project.status
    new_status = _status(target)

    if new_status is current:
        raise TransitionError(current.value, new_status.value, "already in that status")
    if not can_transition(current, new_status, project.revision_of):
        raise TransitionError(current.value, new_status.value)

    checkpoint = approval_checkpoint_for(new_status)
    if (
        checkpoint is not None
        and new_status is APPROVED_STATUSES[checkpoint]
        and not project.checkpoints.is_approved(checkpoint)
    ):
        raise TransitionError(
            current.value, new_status.value, f"checkpoint {checkpoint!r} is not approved"
        )

    now = utc_now()
    changes: dict[str, Any] = {"status": new_status, "revision_of": None, "updated_at": now}
    if new_status is S.REVISION_REQUIRED:
        changes["revision_of"] = current
        under_revision = approval_checkpoint_for(current)
        if under_revision is not None:
            changes["checkpoints"] = project.checkpoints.with_flag(under_revision, False)
    updated = project.model_copy(update=changes)
    entry = AuditEntry(
        project_id=project.id,
        timestamp=now,
        action=AuditAction.STATUS_CHANGED,
        actor=actor,
        previous_state=project.snapshot(),
        new_state=updated.snapshot(),
        details=dict(details or {}),
    )
    logger.info(
        "Project %s: %s -> %s by %s", project.id, current.value, new_status.value, actor
    )
    return updated, entry


def complete_stage(
    project: Project,
    stage_name: str,
    actor: str,
    output: Any = None,
    details: Mapping[str, Any] | None = None,
) -> tuple[Project, AuditEntry]:
    """Transition to the stage's *_complete status, storing its output."""
    target = complete_status_for(stage_name)
    updated, entry = transition(project, target, actor, details)
    if output is not None:
        outputs = {**project.stage_outputs, stage_name: output}
        updated = updated.model_copy(update={"stage_outputs": outputs})
    return updated, entry


def approve_checkpoint(
    project: Project, checkpoint_name: str, actor: str
) -> tuple[Project, AuditEntry]:
    """Set one approval flag. Idempotent; status is never changed."""
    _require_actor(actor)
    name = _checkpoint_name(checkpoint_name)
    already = project.checkpoints.is_approved(name)

    now = utc_now()
    updated = project.model_copy(
        update={"checkpoints": project.checkpoints.with_flag(name, True), "updated_at": now}
    )
    entry = AuditEntry(
        project_id=project.id,
        timestamp=now,
        action=AuditAction.CHECKPOINT_APPROVED,
        actor=actor,
        previous_state=project.snapshot(),
        new_state=updated.snapshot(),
        details={"checkpoint": name, "already_approved": already},
    )
    logger.info("Project %s: checkpoint %s approved by %s", project.id, name, actor)
    return updated, entry


def reject_checkpoint(
    project: Project, checkpoint_name: str, actor: str, reason: str
) -> tuple[Project, AuditEntry]:
    """Send a completed stage back for revision and clear its flag.

    Raises:
        TransitionError: Project is not in the stage's *_complete status.
        ValidationError: Unknown checkpoint or empty reason.
    """
    _require_actor(actor)
    name = _checkpoint_name(checkpoint_name)
    if not isinstance(reason, str) or not reason.strip():
        raise MissingFieldError("reason")

    expected = COMPLETE_STATUSES[name]
    if project.status is not expected:
        raise TransitionError(
            project.status.value,
            S.REVISION_REQUIRED.value,
            f"checkpoint {name!r} can only be rejected from {expected.value}",
        )

    now = utc_now()
    updated = project.model_copy(
        update={
            "status": S.REVISION_REQUIRED,
            "revision_of": expected,
            "checkpoints": project.checkpoints.with_flag(name, False),
            "updated_at": now,
        }
    )
    entry = AuditEntry(
        project_id=project.id,
        timestamp=now,
        action=AuditAction.CHECKPOINT_REJECTED,
        actor=actor,
        previous_state=project.snapshot(),
        new_state=updated.snapshot(),
        details={"checkpoint": name, "reason": reason},
    )
    logger.info("Project %s: checkpoint %s rejected by %s", project.id, name, actor)
    return updated, entry


def record_stage_event(
    project: Project,
    action: AuditAction | str,
    actor: str,
    details: Mapping[str, Any] | None = None,
) -> AuditEntry:
    """Audit entry for a stage event; the project itself is unchanged."""
    _require_actor(actor)
    try:
        event = AuditAction(action)
    except ValueError as exc:
        raise ValidationError(f"Unknown audit action {action!r}") from exc
    if event not in STAGE_EVENT_ACTIONS:
        raise ValidationError(f"{event.value} is not a stage event")

    snapshot = project.snapshot()
    return AuditEntry(
        project_id=project.id,
        action=event,
        actor=actor,
        previous_state=snapshot,
        new_state=snapshot,
        details=dict(details or {}),
    )
