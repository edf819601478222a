"""Port for short-lived PKCE authorization attempts."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass(frozen=True)
class PendingAuth:
    """One authorization attempt bound to a subject by its state value."""

    state: str
    code_verifier: str
    subject_key: str
    created_at: datetime
    expires_at: datetime

    def is_expired(self, *, now: datetime) -> bool:
        """Return whether the attempt is past its TTL."""

        return now >= self.expires_at


class PendingAuthStorePort(Protocol):
    """Atomic storage contract for pending authorization attempts."""

    async def save(self, pending: PendingAuth) -> None:
        """Store one live attempt keyed by state."""

    async def consume(self, *, state: str, now: datetime) -> PendingAuth | None:
        """Atomically return and retire a live, unexpired attempt; None otherwise."""

    async def insert_consumed_if_absent(self, pending: PendingAuth) -> bool:
        """Record an attempt as already consumed unless the state is known; return inserted."""

    async def purge_expired(self, *, now: datetime) -> int:
        """Delete attempts past their TTL, consumed or not, and return the count."""
