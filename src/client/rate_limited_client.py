# src/client/rate_limited_client.py — v2
"""Paced, retrying wrapper around external calls.

Pacing reserves start slots in call order: each reservation takes the next
free slot (at least 1/requests_per_second after the previous one, and no
earlier than a server-announced reset when the quota is exhausted). While the
last response reported quota left, the server is the authority and the
requests_per_second spacing is skipped; without a signal the spacing applies.
The reservation itself never awaits, so concurrent callers on one event loop
are served strictly FIFO without a lock.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import TYPE_CHECKING, Any

from stagegate.client.models import RateLimitSignal, RetryPolicy
from stagegate.client.retry import (
    classify_error,
    compute_backoff,
    is_retryable,
    parse_rate_limit_headers,
    signal_wait,
)
from stagegate.core.errors import (
    PipelineError,
    RetryableCallError,
    TerminalCallError,
    ValidationError,
)

if TYPE_CHECKING:
    from stagegate.config.settings import Settings

logger = logging.getLogger(__name__)

PUBMED_RATE_LIMIT_WITH_KEY = 10
PUBMED_RATE_LIMIT_WITHOUT_KEY = 3

OnRetry = Callable[[BaseException, int, float], None]
SignalFrom = Callable[[Any], "RateLimitSignal | None"]


class RateLimitedClient:
    """Wrap async callables with pacing and bounded exponential retry."""

    def __init__(
        self,
        requests_per_second: float,
        max_retries: int = 5,
        base_delay_s: float = 1.0,
        max_delay_s: float = 60.0,
        jitter: float = 0.25,
        *,
        signal_from: SignalFrom | None = None,
        on_retry: OnRetry | None = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if requests_per_second <= 0:
            raise ValidationError("requests_per_second must be > 0")
        if max_retries < 0:
            raise ValidationError("max_retries must be >= 0")
        if not 0.0 <= jitter < 1.0:
            raise ValidationError("jitter must be in [0, 1)")
        self.requests_per_second = requests_per_second
        self.policy = RetryPolicy(
            max_retries=max_retries,
            base_delay_s=base_delay_s,
            max_delay_s=max_delay_s,
            jitter=jitter,
        )
        self._interval = 1.0 / requests_per_second
        self._signal_from = signal_from or self._headers_signal
        self._on_retry = on_retry
        self._clock = clock
        self._wall_clock = wall_clock
        self._sleep = sleep
        self._next_slot = float("-inf")
        self._blocked_until = float("-inf")
        self.last_signal: RateLimitSignal | None = None

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> RateLimitedClient:
        """Build a client from the client_* settings."""
        return cls(
            requests_per_second=settings.client_requests_per_second,
            max_retries=settings.client_max_retries,
            base_delay_s=settings.client_base_delay_s,
            max_delay_s=settings.client_max_delay_s,
            jitter=settings.client_jitter,
            **kwargs,
        )

    @property
    def interval(self) -> float:
        """Spacing between call starts without a quota signal, in seconds."""
        return self._interval

    def reserve_slot(self) -> float:
        """Claim the next start slot; returns seconds to wait for it."""
        now = self._clock()
        floor = float("-inf") if self.has_quota_left else self._next_slot
        slot = max(now, floor, self._blocked_until)
        self._next_slot = slot + self._interval
        return slot - now

    @property
    def has_quota_left(self) -> bool:
        """True while the latest response announced remaining quota."""
        signal = self.last_signal
        return signal is not None and signal.remaining is not None and signal.remaining > 0

    def apply_signal(self, signal: RateLimitSignal | None) -> None:
        """Record the server signal; block new slots until the reset when exhausted.

        A response without rate-limit headers clears the previous signal.
        """
        self.last_signal = signal
        if signal is None:
            return
        wait = signal_wait(signal, now=self._wall_clock())
        if wait > 0:
            self._blocked_until = max(self._blocked_until, self._clock() + wait)
            logger.info("Rate limit exhausted, pausing new calls for %.1fs", wait)

    async def call(self, fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """Run ``fn`` under pacing and retry.

        Raises:
            TerminalCallError: Non-retryable failure, or retries exhausted.
            PipelineError: Library errors other than RetryableCallError
                propagate unchanged.
        """
        attempt = 0
        while True:
            wait = self.reserve_slot()
            if wait > 0:
                await self._sleep(wait)

            error: BaseException
            try:
                result = await fn(*args, **kwargs)
            except RetryableCallError as e:
                error = e
            except PipelineError:
                raise
            except Exception as e:
                error = e
            else:
                signal = self._signal_from(result)
                self.apply_signal(signal)
                if getattr(result, "status_code", None) != 429:
                    return result
                error = RetryableCallError(
                    "Rate limited (HTTP 429)", status_code=429, signal=signal
                )

            error_class = classify_error(error)
            if not is_retryable(error):
                raise TerminalCallError(
                    attempt + 1, error, error_class.value, retryable=False
                ) from error
            if attempt >= self.policy.max_retries:
                raise TerminalCallError(
                    attempt + 1, error, error_class.value, retryable=True
                ) from error

            delay = self._retry_delay(error, attempt)
            attempt += 1
            logger.warning(
                "Call failed with %s (attempt %d/%d), retrying in %.2fs: %s",
                error_class.value, attempt, self.policy.max_retries, delay, error,
            )
            if self._on_retry is not None:
                self._on_retry(error, attempt, delay)
            await self._sleep(delay)

    def _headers_signal(self, obj: Any) -> RateLimitSignal | None:
        headers = getattr(obj, "headers", None)
        if isinstance(headers, Mapping):
            return parse_rate_limit_headers(headers, now=self._wall_clock())
        return None

    def _retry_delay(self, error: BaseException, attempt: int) -> float:
        p = self.policy
        delay = compute_backoff(attempt, p.base_delay_s, p.max_delay_s, p.jitter)
        signal = getattr(error, "signal", None)
        if signal is None:
            signal = self._headers_signal(error)
        if isinstance(signal, RateLimitSignal):
            self.apply_signal(signal)
            if signal.reset_at is not None:
                delay = max(delay, signal.reset_at - self._wall_clock())
        return delay


def for_pubmed(has_api_key: bool, **kwargs: Any) -> RateLimitedClient:
    """Client paced to NCBI E-utilities limits (10 rps with key, 3 without)."""
    rps = PUBMED_RATE_LIMIT_WITH_KEY if has_api_key else PUBMED_RATE_LIMIT_WITHOUT_KEY
    return RateLimitedClient(requests_per_second=rps, **kwargs)
