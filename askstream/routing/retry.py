"""
askstream - Retry Policy

Bounded retry for upstream calls, specialized for backends that are still
starting up. Permanent failures are raised on the first attempt.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ..core.errors import RequestCancelledError, TransientUpstreamError
from ..observability.logging import get_logger
from ..streaming.cancellation import CancellationSignal


T = TypeVar("T")

logger = get_logger(__name__)


def is_cold_start(error: BaseException) -> bool:
    """Default classifier: only cold-start errors are retried."""
    return isinstance(error, TransientUpstreamError)


def calculate_backoff_ms(attempt: int, base_delay_ms: float) -> float:
    """
    Linear backoff before the next attempt.

    Args:
        attempt: 1-based number of the attempt that just failed
        base_delay_ms: Delay unit in milliseconds

    Returns:
        Delay in milliseconds
    """
    return attempt * base_delay_ms


@dataclass
class RetryAttempt:
    """Progress record handed to the on_retry side channel."""
    attempt_number: int
    max_attempts: int
    backoff_ms: float
    last_error: Optional[BaseException] = None

    @property
    def status_message(self) -> str:
        seconds = self.backoff_ms / 1000
        shown = int(seconds) if float(seconds).is_integer() else round(seconds, 1)
        return f"Service is starting up, retrying in {shown}s..."


OnRetry = Callable[[RetryAttempt], Awaitable[None]]


@dataclass
class RetryPolicy:
    """
    Retry wrapper around a single upstream call.

    The classifier decides which errors are transient. Sleep is injectable so
    tests run without waiting.
    """
    max_attempts: int = 3
    base_delay_ms: float = 2000
    classifier: Callable[[BaseException], bool] = is_cold_start
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    async def execute(
        self,
        fn: Callable[[], Awaitable[T]],
        max_attempts: Optional[int] = None,
        base_delay_ms: Optional[float] = None,
        on_retry: Optional[OnRetry] = None,
        signal: Optional[CancellationSignal] = None,
    ) -> T:
        """
        Run fn, retrying transient failures with linear backoff.

        Args:
            fn: Zero-argument coroutine factory, called once per attempt
            max_attempts: Per-call override of the attempt limit
            base_delay_ms: Per-call override of the backoff unit
            on_retry: Awaited before each backoff wait with the attempt record
            signal: Cancellation that cuts a backoff wait short; no further
                attempt is made once it fires

        Returns:
            Result of the first successful attempt

        Raises:
            The error from the last attempt, unchanged, once attempts run out,
            or the first non-transient error immediately.
            RequestCancelledError: signal fired before the next attempt
        """
        attempts = max_attempts or self.max_attempts
        base = self.base_delay_ms if base_delay_ms is None else base_delay_ms

        attempt = 0
        while True:
            attempt += 1
            try:
                return await fn()
            except Exception as e:
                if attempt >= attempts or not self.classifier(e):
                    raise

                record = RetryAttempt(
                    attempt_number=attempt,
                    max_attempts=attempts,
                    backoff_ms=calculate_backoff_ms(attempt, base),
                    last_error=e,
                )
                logger.warning(
                    "Upstream not ready, retry scheduled",
                    attempt=attempt,
                    max_attempts=attempts,
                    backoff_ms=record.backoff_ms,
                    error=str(e),
                )
                if on_retry is not None:
                    await on_retry(record)
                await self._backoff(record.backoff_ms / 1000, signal, e)

    async def _backoff(self, seconds: float, signal: Optional[CancellationSignal], error: Exception):
        if signal is None:
            await self.sleep(seconds)
            return

        sleeper = asyncio.ensure_future(self.sleep(seconds))
        waiter = asyncio.ensure_future(signal.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not sleeper.done():
                sleeper.cancel()
        if sleeper.done() and not sleeper.cancelled():
            sleeper.result()

        if signal.cancelled:
            logger.info("Retry abandoned, request cancelled", reason=signal.reason)
            raise RequestCancelledError() from error
