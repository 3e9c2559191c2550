# src/checkpoint/manager.py — v1
"""Checkpoint lifecycle: create, update, validate, resume, serialize.

Typical use inside a stage:

1. At stage start: create_checkpoint() (or load one and call can_resume()).
2. After each unit/batch: update_checkpoint() then persist it.
3. On resume: get_resume_context() gives the start_index to continue from.
4. On non-retryable error: update_checkpoint(cp, {"status": "failed"}).
5. On success: update_checkpoint(cp, {"stage": "completed", "status": "completed"}).

All functions are pure: they return new Checkpoint objects and never mutate
their inputs. Persistence is the job of the checkpoint stores.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from stagegate.checkpoint.models import (
    VALID_STAGES,
    VALID_STATUSES,
    Checkpoint,
    CheckpointContext,
    CheckpointStatus,
    Progress,
    ResumeCheck,
    ResumeContext,
)
from stagegate.core.errors import (
    InvalidStageError,
    MissingFieldError,
    StaleCheckpointError,
    ValidationError,
)
from stagegate.core.models import ValidationResult, ensure_utc, utc_now

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
MAX_CHECKPOINT_AGE_HOURS = 24.0

# Keys of the create() context that become checkpoint fields instead of context.
_RESERVED_CONTEXT_KEYS = ("pipeline_name", "execution_id", "created_at")
_UPDATABLE_FIELDS = frozenset(
    {"stage", "status", "last_processed", "progress", "context", "error_count"}
)


def _pydantic_errors(exc: PydanticValidationError) -> list[str]:
    """Flatten pydantic errors into 'field.path: message' strings."""
    errors: list[str] = []
    for err in exc.errors():
        msg = str(err.get("msg", "invalid value"))
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        loc = ".".join(str(part) for part in err.get("loc", ()))
        errors.append(f"{loc}: {msg}" if loc else msg)
    return errors


def _build(data: dict[str, Any], action: str) -> Checkpoint:
    try:
        return Checkpoint.model_validate(data)
    except PydanticValidationError as exc:
        errors = _pydantic_errors(exc)
        raise ValidationError(
            f"Cannot {action} checkpoint: {', '.join(errors)}", errors=errors
        ) from exc


def _check_stage(stage: object) -> str:
    value = stage.value if hasattr(stage, "value") else stage
    if not isinstance(value, str) or value not in VALID_STAGES:
        raise InvalidStageError(
            f"Invalid stage {stage!r}. Must be one of: {', '.join(VALID_STAGES)}",
            details={"stage": repr(stage)},
        )
    return value


def _check_status(status: object) -> str:
    value = status.value if hasattr(status, "value") else status
    if not isinstance(value, str) or value not in VALID_STATUSES:
        raise ValidationError(
            f"Invalid status {status!r}. Must be one of: {', '.join(VALID_STATUSES)}",
            details={"status": repr(status)},
        )
    return value


def _parse_timestamp(value: object, field: str) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        try:
            return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError as exc:
            raise ValidationError(f"{field} must be a valid ISO date string") from exc
    raise ValidationError(f"{field} must be a datetime or ISO date string")


def _as_update_dict(value: object) -> dict[str, Any]:
    if isinstance(value, BaseModel):
        return value.model_dump(exclude_unset=True)
    if isinstance(value, Mapping):
        return dict(value)
    raise ValidationError(f"Expected a mapping, got {type(value).__name__}")


def create_checkpoint(
    stage: str,
    context: Mapping[str, Any] | None = None,
    *,
    now: datetime | None = None,
) -> Checkpoint:
    """Create the checkpoint for a new stage execution.

    Args:
        stage: Stage name (must be one of VALID_STAGES).
        context: Stage parameters. ``pipeline_name`` is required;
            ``execution_id`` and ``created_at`` may be supplied to continue
            an execution across process restarts. Everything else becomes
            the checkpoint context.
        now: Clock override.

    Raises:
        InvalidStageError: Unknown stage.
        MissingFieldError: ``pipeline_name`` absent or blank.
    """
    stage_value = _check_stage(stage)
    ctx = dict(context or {})

    pipeline_name = ctx.get("pipeline_name")
    if not isinstance(pipeline_name, str) or not pipeline_name.strip():
        raise MissingFieldError("context.pipeline_name")

    timestamp = ensure_utc(now) if now is not None else utc_now()
    created_at = (
        _parse_timestamp(ctx["created_at"], "created_at")
        if ctx.get("created_at") is not None
        else timestamp
    )
    execution_id = ctx.get("execution_id") or str(uuid.uuid4())
    for key in _RESERVED_CONTEXT_KEYS:
        ctx.pop(key, None)

    try:
        checkpoint_context = CheckpointContext.from_mapping(ctx)
    except PydanticValidationError as exc:
        errors = _pydantic_errors(exc)
        raise ValidationError(
            f"Invalid checkpoint context: {', '.join(errors)}", errors=errors
        ) from exc

    checkpoint = _build(
        {
            "execution_id": str(execution_id),
            "pipeline_name": pipeline_name,
            "stage": stage_value,
            "status": CheckpointStatus.IN_PROGRESS,
            "last_processed": None,
            "progress": Progress(),
            "created_at": created_at,
            "updated_at": max(timestamp, created_at),
            "error_count": 0,
            "context": checkpoint_context,
        },
        "create",
    )
    logger.debug(
        "Created checkpoint %s for %s at stage %s",
        checkpoint.execution_id, pipeline_name, stage_value,
    )
    return checkpoint


def update_checkpoint(
    existing: Checkpoint,
    partial: Mapping[str, Any],
    *,
    now: datetime | None = None,
) -> Checkpoint:
    """Return a new checkpoint with ``partial`` merged in.

    ``progress`` and ``context`` are merged key-wise, not replaced. Moving
    into status ``failed`` from any other status increments ``error_count``
    unless ``error_count`` is given explicitly.

    Raises:
        InvalidStageError: Unknown stage in ``partial``.
        ValidationError: Unknown status, unknown field, or a broken invariant.
    """
    current = _coerce(existing, "update")
    updates = dict(partial)

    unknown = set(updates) - _UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(
            f"Cannot update checkpoint fields: {', '.join(sorted(unknown))}"
        )
    if "stage" in updates:
        updates["stage"] = _check_stage(updates["stage"])
    if "status" in updates:
        updates["status"] = _check_status(updates["status"])

    error_count = current.error_count
    explicit_count = updates.get("error_count")
    if (
        updates.get("status") == CheckpointStatus.FAILED.value
        and current.status is not CheckpointStatus.FAILED
    ):
        error_count = explicit_count if explicit_count is not None else error_count + 1
    elif explicit_count is not None:
        error_count = explicit_count

    data = current.model_dump()
    if "progress" in updates:
        data["progress"] = {
            **current.progress.model_dump(),
            **_as_update_dict(updates.pop("progress")),
        }
    if "context" in updates:
        try:
            data["context"] = current.context.merged(
                _as_update_dict(updates.pop("context"))
            )
        except PydanticValidationError as exc:
            errors = _pydantic_errors(exc)
            raise ValidationError(
                f"Invalid checkpoint context: {', '.join(errors)}", errors=errors
            ) from exc
    data.update(updates)
    data["error_count"] = error_count

    timestamp = ensure_utc(now) if now is not None else utc_now()
    data["updated_at"] = max(timestamp, current.updated_at)

    updated = _build(data, "update")
    if updated.status is not current.status:
        logger.info(
            "Checkpoint %s: %s -> %s (errors=%d)",
            updated.execution_id, current.status.value,
            updated.status.value, updated.error_count,
        )
    return updated


def validate_checkpoint(checkpoint: object) -> ValidationResult:
    """Structural check of a Checkpoint or a raw mapping. Side-effect free."""
    if isinstance(checkpoint, Checkpoint):
        data: dict[str, Any] = checkpoint.model_dump()
    elif isinstance(checkpoint, Mapping):
        data = dict(checkpoint)
    else:
        return ValidationResult(valid=False, errors=["Checkpoint must be an object"])

    try:
        Checkpoint.model_validate(data)
    except PydanticValidationError as exc:
        return ValidationResult.from_errors(_pydantic_errors(exc))
    return ValidationResult(valid=True)


def _coerce(checkpoint: object, action: str) -> Checkpoint:
    result = validate_checkpoint(checkpoint)
    if not result.valid:
        raise ValidationError(
            f"Cannot {action} invalid checkpoint: {', '.join(result.errors)}",
            errors=result.errors,
        )
    if isinstance(checkpoint, Checkpoint):
        return checkpoint
    return Checkpoint.model_validate(dict(checkpoint))  # type: ignore[call-overload]


def can_resume(
    checkpoint: object,
    max_retries: int = MAX_RETRIES,
    max_age_hours: float = MAX_CHECKPOINT_AGE_HOURS,
    *,
    now: datetime | None = None,
) -> ResumeCheck:
    """Decide whether a checkpoint may be resumed.

    Resumable iff structurally valid, not completed, error_count below
    max_retries and no older than max_age_hours. Past those thresholds the
    stored last_processed pointer is no longer trusted and the stage must
    restart.
    """
    validation = validate_checkpoint(checkpoint)
    if not validation.valid:
        return ResumeCheck(
            can_resume=False,
            reasons=[f"Invalid checkpoint structure: {', '.join(validation.errors)}"],
        )
    cp = _coerce(checkpoint, "resume")

    reasons: list[str] = []
    if cp.is_terminal:
        reasons.append("Checkpoint is already completed")
    if cp.error_count >= max_retries:
        reasons.append(
            f"Error count ({cp.error_count}) exceeds max retries ({max_retries})"
        )
    current = ensure_utc(now) if now is not None else utc_now()
    age_hours = (current - cp.created_at).total_seconds() / 3600.0
    if age_hours > max_age_hours:
        reasons.append(
            f"Checkpoint age ({age_hours:.1f}h) exceeds max age ({max_age_hours}h)"
        )

    if reasons:
        logger.info(
            "Checkpoint %s not resumable: %s", cp.execution_id, "; ".join(reasons)
        )
    return ResumeCheck(can_resume=not reasons, reasons=reasons)


def ensure_resumable(
    checkpoint: object,
    max_retries: int = MAX_RETRIES,
    max_age_hours: float = MAX_CHECKPOINT_AGE_HOURS,
    *,
    now: datetime | None = None,
) -> ResumeContext:
    """Resume context of a resumable checkpoint.

    Raises:
        StaleCheckpointError: can_resume() refused; the stage must restart.
    """
    check = can_resume(checkpoint, max_retries, max_age_hours, now=now)
    if not check.can_resume:
        if isinstance(checkpoint, Checkpoint):
            execution_id = checkpoint.execution_id
        elif isinstance(checkpoint, Mapping):
            execution_id = str(checkpoint.get("execution_id", "<unknown>"))
        else:
            execution_id = "<unknown>"
        raise StaleCheckpointError(execution_id, check.reasons)
    return get_resume_context(checkpoint)


def get_resume_context(checkpoint: object) -> ResumeContext:
    """Extract continuation parameters; start_index = progress.processed.

    Raises:
        ValidationError: If the checkpoint is structurally invalid.
    """
    cp = _coerce(checkpoint, "extract resume context from")
    return ResumeContext(
        execution_id=cp.execution_id,
        stage=cp.stage,
        last_processed=cp.last_processed,
        progress=cp.progress.model_copy(),
        context=cp.context.model_copy(deep=True),
        start_index=cp.progress.processed,
    )


def serialize_checkpoint(checkpoint: Checkpoint) -> str:
    """Serialize to JSON text for durable storage."""
    cp = _coerce(checkpoint, "serialize")
    return cp.model_dump_json()


def deserialize_checkpoint(text: str) -> Checkpoint:
    """Parse JSON text back into a Checkpoint, re-running validation.

    Raises:
        ValidationError: Empty input, malformed JSON, or invalid structure.
    """
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("Checkpoint JSON must be a non-empty string")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Failed to deserialize checkpoint: {exc}") from exc

    result = validate_checkpoint(data)
    if not result.valid:
        raise ValidationError(
            f"Failed to deserialize checkpoint: {', '.join(result.errors)}",
            errors=result.errors,
        )
    return Checkpoint.model_validate(data)
