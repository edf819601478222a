"""Port for append-only verification history."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass(frozen=True)
class VerificationRecordCreateInput:
    """Result of one verification pass to append."""

    subject_key: str
    external_user_id: str
    handle: str
    followed_target: bool
    posted_required_phrase: bool
    matched_post_id: str | None
    points: int
    verified_at: datetime
    follow_error: str | None = None
    post_error: str | None = None


@dataclass(frozen=True)
class VerificationRecord:
    """Persisted verification pass."""

    id: int
    subject_key: str
    external_user_id: str
    handle: str
    followed_target: bool
    posted_required_phrase: bool
    matched_post_id: str | None
    points: int
    follow_error: str | None
    post_error: str | None
    verified_at: datetime
    created_at: datetime


class VerificationRecordRepositoryPort(Protocol):
    """Verification history contract."""

    async def append(self, payload: VerificationRecordCreateInput) -> VerificationRecord:
        """Insert one new record; records are never updated."""

    async def get_latest(self, *, subject_key: str) -> VerificationRecord | None:
        """Return the most recently created record for subject."""
