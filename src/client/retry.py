# src/client/retry.py — v1
"""Error classification, exponential backoff and rate-limit header parsing.

Retryable: 429, 408, 5xx, timeouts, connection reset/refused/aborted and any
RetryableCallError. Auth failures, 4xx validation errors and unknown errors
are terminal on first occurrence.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Callable, Mapping
from typing import Any

from stagegate.client.models import RETRYABLE_ERROR_CLASSES, ErrorClass, RateLimitSignal
from stagegate.core.errors import RetryableCallError

# Reset values below this are seconds-until-reset rather than epoch timestamps
_EPOCH_THRESHOLD = 1_000_000_000

_NETWORK_CODES = frozenset(
    {"ECONNRESET", "ECONNREFUSED", "ECONNABORTED", "EPIPE", "EHOSTUNREACH", "EAI_AGAIN"}
)
_TIMEOUT_CODES = frozenset({"ETIMEDOUT", "ESOCKETTIMEDOUT"})


def _status_of(error: BaseException) -> int | None:
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def _classify_status(status: int) -> ErrorClass:
    if status == 429:
        return ErrorClass.RATE_LIMIT
    if status in (401, 403):
        return ErrorClass.AUTH_ERROR
    if status == 408:
        return ErrorClass.TIMEOUT
    if 500 <= status < 600:
        return ErrorClass.SERVER_ERROR
    if status in (400, 404, 409, 422):
        return ErrorClass.VALIDATION_ERROR
    return ErrorClass.UNKNOWN


def classify_error(error: BaseException) -> ErrorClass:
    """Classify an exception into an ErrorClass."""
    status = _status_of(error)
    if status is not None:
        by_status = _classify_status(status)
        if by_status is not ErrorClass.UNKNOWN:
            return by_status

    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return ErrorClass.TIMEOUT
    if isinstance(error, ConnectionError):
        return ErrorClass.NETWORK_ERROR

    code = getattr(error, "code", None)
    if isinstance(code, str):
        if code in _NETWORK_CODES:
            return ErrorClass.NETWORK_ERROR
        if code in _TIMEOUT_CODES:
            return ErrorClass.TIMEOUT
        if code == "RATE_LIMIT_EXCEEDED":
            return ErrorClass.RATE_LIMIT

    msg = str(error).lower()
    if "rate limit" in msg or "too many requests" in msg:
        return ErrorClass.RATE_LIMIT
    if "timeout" in msg or "timed out" in msg:
        return ErrorClass.TIMEOUT
    if "econnreset" in msg or "connection reset" in msg or "network" in msg:
        return ErrorClass.NETWORK_ERROR
    if "unauthorized" in msg or "forbidden" in msg or "invalid api key" in msg:
        return ErrorClass.AUTH_ERROR

    if isinstance(error, RetryableCallError):
        return ErrorClass.TRANSIENT
    return ErrorClass.UNKNOWN


def is_retryable(error: BaseException) -> bool:
    if isinstance(error, RetryableCallError):
        return True
    return classify_error(error) in RETRYABLE_ERROR_CLASSES


def compute_backoff(
    attempt: int,
    base_delay_s: float = 1.0,
    max_delay_s: float = 60.0,
    jitter: float = 0.25,
    rng: Callable[[], float] = random.random,
) -> float:
    """Delay in seconds before retry number ``attempt`` (0-based).

    min(base * 2^attempt, max), then scaled by a uniform factor in
    [1 - jitter, 1 + jitter].
    """
    capped = min(base_delay_s * (2**attempt), max_delay_s)
    factor = 1.0 + (rng() * 2.0 - 1.0) * jitter
    return max(0.0, capped * factor)


def _header(headers: Mapping[str, Any], name: str) -> Any:
    for key, value in headers.items():
        if isinstance(key, str) and key.lower() == name:
            return value
    return None


def _to_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def parse_rate_limit_headers(
    headers: Mapping[str, Any] | None,
    now: float | None = None,
) -> RateLimitSignal | None:
    """Read X-RateLimit-* (and Retry-After) headers into a RateLimitSignal.

    Returns None when no rate-limit header is present.
    """
    if not headers:
        return None
    current = time.time() if now is None else now

    limit = _to_int(_header(headers, "x-ratelimit-limit"))
    remaining = _to_int(_header(headers, "x-ratelimit-remaining"))
    reset = _to_int(_header(headers, "x-ratelimit-reset"))
    retry_after = _to_int(_header(headers, "retry-after"))

    reset_at: float | None = None
    if reset is not None:
        reset_at = float(reset) if reset >= _EPOCH_THRESHOLD else current + reset
    if retry_after is not None:
        reset_at = max(reset_at or 0.0, current + retry_after)
        if remaining is None:
            remaining = 0

    if limit is None and remaining is None and reset_at is None:
        return None
    return RateLimitSignal(remaining=remaining, reset_at=reset_at, limit=limit)


def signal_wait(signal: RateLimitSignal | None, now: float | None = None) -> float:
    """Seconds to wait before the next call according to a server signal."""
    if signal is None or not signal.exhausted or signal.reset_at is None:
        return 0.0
    current = time.time() if now is None else now
    return max(0.0, signal.reset_at - current)
