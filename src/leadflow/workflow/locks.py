"""Per-lead serialization.

A reply that lands mid-sweep must not race the escalation write for the
same lead, so every mutation of a lead runs under that lead's lock.
A lock lives only while someone holds or waits on it; the map is empty
whenever no lead is being mutated.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class LeadLocks:
    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, lead_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(lead_id, asyncio.Lock())
        self._users[lead_id] = self._users.get(lead_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[lead_id] -= 1
            if not self._users[lead_id]:
                del self._users[lead_id]
                del self._locks[lead_id]

    def is_locked(self, lead_id: str) -> bool:
        lock = self._locks.get(lead_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
