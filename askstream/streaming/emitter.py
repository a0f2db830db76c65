"""
askstream - Throttled Emitter

Delivers classified text to the client in fixed-size slices with an
ease-in-out delay between slices. Calls for one session are serialized.
"""

import asyncio
import math
from typing import Awaitable, Callable, List, Optional

from ..core.models import DEFAULT_THROTTLE, ThrottleConfig
from .cancellation import CancellationSignal


SendFn = Callable[[str, str], Awaitable[None]]
SleepFn = Callable[[float], Awaitable[object]]


def slice_text(text: str, chunk_size: int) -> List[str]:
    """Split text into ceil(len/chunk_size) slices."""
    return [text[i:i + chunk_size] for i in range(0, len(text), chunk_size)]


def pacing_delay_ms(index: int, total: int, config: ThrottleConfig) -> float:
    """
    Delay after slice `index` of `total`.

    d = min + (1 - cos(pi * index / total)) / 2 * (max - min)
    """
    if total <= 0:
        return config.min_delay_ms
    progress = index / total
    span = config.max_delay_ms - config.min_delay_ms
    return config.min_delay_ms + (1 - math.cos(math.pi * progress)) / 2 * span


def pacing_schedule(total: int, config: ThrottleConfig) -> List[float]:
    """Per-slice delays in milliseconds for a segment of `total` slices."""
    return [pacing_delay_ms(i, total, config) for i in range(total)]


class ThrottledEmitter:
    """
    Paced, cancellable, serialized delivery for one session.

    Args:
        send: Coroutine writing one wire frame (event, data)
        config: Slice size and delay bounds
        signal: Session cancellation signal
        sleep: Override for the inter-slice wait (seconds). Defaults to a
            cancellation-aware sleep on the signal.
    """

    def __init__(
        self,
        send: SendFn,
        config: ThrottleConfig = DEFAULT_THROTTLE,
        signal: Optional[CancellationSignal] = None,
        sleep: Optional[SleepFn] = None,
    ):
        self._send = send
        self.config = config
        self.signal = signal or CancellationSignal()
        self._sleep = sleep or self.signal.sleep
        self._lock = asyncio.Lock()
        self.slices_sent = 0

    async def emit(self, event: str, text: str) -> int:
        """
        Deliver `text` under `event` in slices.

        Stops at the next slice boundary once the signal is cancelled.

        Returns:
            Number of slices actually sent
        """
        if not text:
            return 0
        async with self._lock:
            parts = slice_text(text, self.config.chunk_size)
            total = len(parts)
            sent = 0
            for index, part in enumerate(parts):
                if self.signal.cancelled:
                    break
                await self._send(event, part)
                sent += 1
                self.slices_sent += 1
                await self._sleep(pacing_delay_ms(index, total, self.config) / 1000)
            return sent

    async def send_now(self, event: str, data: str) -> None:
        """Send a single unpaced frame, queued behind any slices in progress."""
        async with self._lock:
            await self._send(event, data)

    async def drain(self) -> None:
        """Wait for every queued emission to finish."""
        async with self._lock:
            return None
