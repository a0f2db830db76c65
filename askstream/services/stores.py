"""
askstream - Credit and Thread Stores

In-memory defaults for the two persistence collaborators. Both are injected
into the API layer so deployments can swap in a shared store.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Tuple

from ..core.errors import CreditsExhaustedError
from ..core.models import ChatTurn


# ============================================================
# Credits
# ============================================================

@dataclass(frozen=True)
class CreditIdentity:
    """Who is being charged: an authenticated user id or a client IP."""
    user_id: Optional[str] = None
    ip: Optional[str] = None

    @property
    def key(self) -> str:
        if self.user_id:
            return f"user:ID:{self.user_id}"
        return f"user:IP:{self.ip or 'unknown'}"

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)


class CreditStore(ABC):
    @abstractmethod
    async def remaining(self, identity: CreditIdentity) -> int:
        pass

    @abstractmethod
    async def deduct(self, identity: CreditIdentity, amount: int) -> int:
        """Deduct up to `amount` and return the new balance (never negative)."""
        pass

    async def ensure_available(self, identity: CreditIdentity) -> int:
        """
        Raises:
            CreditsExhaustedError: when the balance is zero
        """
        balance = await self.remaining(identity)
        if balance <= 0:
            raise CreditsExhaustedError(balance)
        return balance


class InMemoryCreditStore(CreditStore):
    """Daily buckets keyed by identity; limits differ for users and IPs."""

    def __init__(self, auth_limit: int = 30, ip_limit: int = 10):
        self.auth_limit = auth_limit
        self.ip_limit = ip_limit
        self._used: Dict[Tuple[str, date], int] = {}
        self._lock = asyncio.Lock()

    def _limit(self, identity: CreditIdentity) -> int:
        return self.auth_limit if identity.is_authenticated else self.ip_limit

    def _bucket(self, identity: CreditIdentity) -> Tuple[str, date]:
        return identity.key, date.today()

    async def remaining(self, identity: CreditIdentity) -> int:
        used = self._used.get(self._bucket(identity), 0)
        return max(0, self._limit(identity) - used)

    async def deduct(self, identity: CreditIdentity, amount: int) -> int:
        async with self._lock:
            bucket = self._bucket(identity)
            limit = self._limit(identity)
            used = min(limit, self._used.get(bucket, 0) + max(0, amount))
            self._used[bucket] = used
            return limit - used


# ============================================================
# Threads
# ============================================================

class ThreadStore(ABC):
    @abstractmethod
    async def append(self, thread_id: str, turns: List[ChatTurn]):
        pass

    @abstractmethod
    async def get(self, thread_id: str) -> List[ChatTurn]:
        pass


class InMemoryThreadStore(ThreadStore):
    def __init__(self):
        self._threads: Dict[str, List[ChatTurn]] = {}

    async def append(self, thread_id: str, turns: List[ChatTurn]):
        self._threads.setdefault(thread_id, []).extend(turns)

    async def get(self, thread_id: str) -> List[ChatTurn]:
        return list(self._threads.get(thread_id, []))
