# tests/unit/core/test_unit_errors.py — v1
"""Tests for core/errors.py and core/models.py."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from stagegate.client.models import RateLimitSignal
from stagegate.core.errors import (
    InvalidConfidenceError,
    MissingFieldError,
    PipelineError,
    RetryableCallError,
    StaleCheckpointError,
    TerminalCallError,
    TransitionError,
    ValidationError,
    format_error,
)
from stagegate.core.models import ValidationResult, ensure_utc


class TestErrorHierarchy:
    def test_validation_family(self):
        assert issubclass(MissingFieldError, ValidationError)
        assert issubclass(InvalidConfidenceError, ValidationError)
        assert issubclass(ValidationError, PipelineError)

    def test_call_errors_are_not_validation(self):
        assert not issubclass(RetryableCallError, ValidationError)
        assert not issubclass(TerminalCallError, RetryableCallError)


class TestErrorPayloads:
    def test_validation_errors_list(self):
        err = ValidationError("Invalid checkpoint", errors=["a", "b"])
        assert err.errors == ["a", "b"]
        assert err.to_dict() == {
            "code": "VALIDATION_ERROR",
            "message": "Invalid checkpoint",
            "details": {"errors": ["a", "b"]},
        }

    def test_missing_field(self):
        err = MissingFieldError("context.pipeline_name")
        assert str(err) == "context.pipeline_name is required"
        assert err.details == {"field": "context.pipeline_name"}

    def test_transition(self):
        err = TransitionError("draft", "research_complete")
        assert str(err) == "Invalid status transition from draft to research_complete"
        assert (err.from_status, err.to_status) == ("draft", "research_complete")

    def test_transition_with_reason(self):
        err = TransitionError("draft", "draft", "already in that status")
        assert str(err).endswith(": already in that status")

    def test_retryable_carries_signal(self):
        signal = RateLimitSignal(remaining=0, reset_at=1_800_000_010.0)
        err = RetryableCallError("throttled", status_code=429, signal=signal)
        assert err.signal is signal
        assert err.details == {"status_code": 429}

    def test_terminal_messages(self):
        cause = ConnectionResetError("reset by peer")
        exhausted = TerminalCallError(6, cause, "network_error", retryable=True)
        assert "after 6 attempts" in str(exhausted)
        fatal = TerminalCallError(1, cause, "auth_error", retryable=False)
        assert str(fatal).startswith("Non-retryable")
        assert fatal.details["last_error"] == "reset by peer"

    def test_stale(self):
        err = StaleCheckpointError("exec-1", ["too old", "too many errors"])
        assert err.reasons == ["too old", "too many errors"]
        assert "too old; too many errors" in str(err)


class TestFormatError:
    def test_pipeline_error(self):
        assert format_error(MissingFieldError("actor"))["code"] == "MISSING_FIELD"

    def test_foreign_error(self):
        assert format_error(KeyError("x")) == {
            "code": "UNKNOWN_ERROR",
            "message": "'x'",
            "details": {"name": "KeyError"},
        }


class TestCoreModels:
    def test_ensure_utc_naive(self):
        naive = datetime(2026, 3, 1, 9, 0)
        assert ensure_utc(naive).tzinfo is timezone.utc

    def test_ensure_utc_converts(self):
        paris = datetime(2026, 3, 1, 10, 0, tzinfo=timezone(timedelta(hours=1)))
        assert ensure_utc(paris) == datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
        assert ensure_utc(paris).hour == 9

    def test_validation_result(self):
        assert ValidationResult.from_errors([]).valid is True
        result = ValidationResult.from_errors(["x"])
        assert result.valid is False
        assert result.errors == ["x"]
