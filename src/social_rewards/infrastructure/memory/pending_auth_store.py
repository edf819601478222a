"""Process-local pending-auth store for single-instance deployments and tests."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime

from social_rewards.application.ports.pending_auth_store_port import (
    PendingAuth,
    PendingAuthStorePort,
)


@dataclass
class _Entry:
    pending: PendingAuth
    consumed: bool = False


class InMemoryPendingAuthStore(PendingAuthStorePort):
    """Dictionary-backed store; consumed entries stay as tombstones until purged."""

    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}
        self._lock = asyncio.Lock()

    async def save(self, pending: PendingAuth) -> None:
        async with self._lock:
            self._entries[pending.state] = _Entry(pending=pending)

    async def consume(self, *, state: str, now: datetime) -> PendingAuth | None:
        async with self._lock:
            entry = self._entries.get(state)
            if entry is None or entry.consumed or entry.pending.is_expired(now=now):
                return None
            entry.consumed = True
            return entry.pending

    async def insert_consumed_if_absent(self, pending: PendingAuth) -> bool:
        async with self._lock:
            if pending.state in self._entries:
                return False
            self._entries[pending.state] = _Entry(pending=pending, consumed=True)
            return True

    async def purge_expired(self, *, now: datetime) -> int:
        async with self._lock:
            expired = [
                state
                for state, entry in self._entries.items()
                if entry.pending.is_expired(now=now)
            ]
            for state in expired:
                del self._entries[state]
            return len(expired)
