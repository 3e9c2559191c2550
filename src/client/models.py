# src/client/models.py — v1
"""Data types for the paced retry client."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorClass(str, Enum):
    """Failure classification used to decide whether a call is retried."""

    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    SERVER_ERROR = "server_error"
    NETWORK_ERROR = "network_error"
    TRANSIENT = "transient"
    AUTH_ERROR = "auth_error"
    VALIDATION_ERROR = "validation_error"
    UNKNOWN = "unknown"


RETRYABLE_ERROR_CLASSES: frozenset[ErrorClass] = frozenset(
    {
        ErrorClass.RATE_LIMIT,
        ErrorClass.TIMEOUT,
        ErrorClass.SERVER_ERROR,
        ErrorClass.NETWORK_ERROR,
        ErrorClass.TRANSIENT,
    }
)


@dataclass(frozen=True)
class RateLimitSignal:
    """Server-provided quota state.

    reset_at is a wall-clock epoch timestamp in seconds.
    """

    remaining: int | None = None
    reset_at: float | None = None
    limit: int | None = None

    @property
    def exhausted(self) -> bool:
        return self.remaining == 0


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters: delay = min(base * 2^attempt, max) +/- jitter."""

    max_retries: int = 5
    base_delay_s: float = 1.0
    max_delay_s: float = 60.0
    jitter: float = 0.25
