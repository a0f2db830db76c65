"""
askstream - Cancellation Signal

One signal per request, threaded through context building, the strategy call
and the emitter. Cancellation is cooperative.
"""

import asyncio
from typing import Optional


class CancellationSignal:
    """Wraps an asyncio.Event with abort-signal semantics."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "client disconnected") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, seconds: float) -> bool:
        """
        Sleep unless cancelled first.

        Returns:
            True if the full delay elapsed, False if cancellation cut it short
        """
        if self.cancelled:
            return False
        if seconds <= 0:
            await asyncio.sleep(0)
            return not self.cancelled
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return True
        return False
