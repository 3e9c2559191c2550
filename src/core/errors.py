# src/core/errors.py — v1
"""Error taxonomy shared by every stagegate component.

ValidationError and TransitionError are never retried. RetryableCallError is
the only class the call client retries; everything it gives up on surfaces as
TerminalCallError. StaleCheckpointError tells the stage to restart instead of
resuming.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from stagegate.client.models import RateLimitSignal


class PipelineError(Exception):
    """Base class for all stagegate errors."""

    code = "PIPELINE_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = dict(details or {})

    def to_dict(self) -> dict[str, Any]:
        """Uniform representation for audit entries and logs."""
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(PipelineError):
    """Malformed input. Never retried, always surfaced."""

    code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        errors: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.errors: list[str] = list(errors or [])
        merged = dict(details or {})
        if self.errors:
            merged.setdefault("errors", self.errors)
        super().__init__(message, merged)


class InvalidStageError(ValidationError):
    """Stage name outside the fixed stage enumeration."""

    code = "INVALID_STAGE"


class MissingFieldError(ValidationError):
    """A required field is absent or blank."""

    code = "MISSING_FIELD"

    def __init__(self, field: str) -> None:
        super().__init__(f"{field} is required", details={"field": field})
        self.field = field


class InvalidConfidenceError(ValidationError):
    """Confidence score outside [0, 1] or not a number."""

    code = "INVALID_CONFIDENCE"

    def __init__(self, confidence: object) -> None:
        super().__init__(
            f"Confidence must be a number between 0 and 1, got {confidence!r}",
            details={"confidence": repr(confidence)},
        )
        self.confidence = confidence


class NotFoundError(PipelineError):
    """Record lookup by id found nothing."""

    code = "NOT_FOUND"


class TransitionError(PipelineError):
    """Illegal status edge. Carries the attempted (from, to) pair."""

    code = "TRANSITION_ERROR"

    def __init__(
        self,
        from_status: str,
        to_status: str,
        reason: str | None = None,
    ) -> None:
        message = f"Invalid status transition from {from_status} to {to_status}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message, details={"from_status": from_status, "to_status": to_status}
        )
        self.from_status = from_status
        self.to_status = to_status


class RetryableCallError(PipelineError):
    """Transient external failure (429, 5xx, timeout, connection reset)."""

    code = "RETRYABLE_CALL_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        signal: RateLimitSignal | None = None,
    ) -> None:
        super().__init__(message, details={"status_code": status_code})
        self.status_code = status_code
        self.signal = signal


class TerminalCallError(PipelineError):
    """External call gave up: retries exhausted or failure not retryable.

    The calling stage must mark its checkpoint failed before surfacing this.
    """

    code = "TERMINAL_CALL_ERROR"

    def __init__(
        self,
        attempts: int,
        last_error: BaseException,
        error_class: str,
        retryable: bool,
    ) -> None:
        if retryable:
            message = (
                f"Call failed after {attempts} attempts ({error_class}): {last_error}"
            )
        else:
            message = f"Non-retryable call failure ({error_class}): {last_error}"
        super().__init__(
            message,
            details={
                "attempts": attempts,
                "error_class": error_class,
                "retryable": retryable,
                "last_error": str(last_error),
            },
        )
        self.attempts = attempts
        self.last_error = last_error
        self.error_class = error_class
        self.retryable = retryable


class StaleCheckpointError(PipelineError):
    """Cannot resume, restart stage."""

    code = "STALE_CHECKPOINT"

    def __init__(self, execution_id: str, reasons: list[str]) -> None:
        super().__init__(
            f"Cannot resume checkpoint {execution_id}, restart stage: "
            + "; ".join(reasons),
            details={"execution_id": execution_id, "reasons": list(reasons)},
        )
        self.execution_id = execution_id
        self.reasons = list(reasons)


def format_error(error: BaseException) -> dict[str, Any]:
    """Format any exception into {code, message, details}."""
    if isinstance(error, PipelineError):
        return error.to_dict()
    return {
        "code": "UNKNOWN_ERROR",
        "message": str(error),
        "details": {"name": type(error).__name__},
    }
