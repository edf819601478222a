"""Port for X identities linked to subjects."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass(frozen=True)
class IdentityUpsertInput:
    """Identity resolved from the X `users/me` call."""

    subject_key: str
    external_user_id: str
    handle: str
    display_name: str | None = None


@dataclass(frozen=True)
class IdentityRecord:
    """Persisted identity row."""

    external_user_id: str
    subject_key: str
    handle: str
    display_name: str | None
    is_verified: bool
    verified_at: datetime | None
    created_at: datetime
    updated_at: datetime


class IdentityRepositoryPort(Protocol):
    """Identity persistence contract."""

    async def upsert(self, payload: IdentityUpsertInput) -> IdentityRecord:
        """Insert or refresh one identity keyed by external user id."""

    async def get_latest_for_subject(self, *, subject_key: str) -> IdentityRecord | None:
        """Return the most recently updated identity linked to subject."""

    async def get_by_handle(self, *, handle: str) -> IdentityRecord | None:
        """Return identity by handle, case-insensitively."""

    async def mark_verified(self, *, external_user_id: str, verified_at: datetime) -> None:
        """Flag identity as verified; keeps the first verification timestamp."""

    async def list_verified(self) -> list[IdentityRecord]:
        """Return every identity eligible for periodic scans."""
