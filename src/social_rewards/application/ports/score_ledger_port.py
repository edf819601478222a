"""Port for the idempotent score-event ledger."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Protocol

from social_rewards.domain.score_kinds import ScoreKind


class AwardOutcome(StrEnum):
    """Result of one conditional award attempt."""

    ACCEPTED = "accepted"
    ALREADY_AWARDED = "already_awarded"


@dataclass(frozen=True)
class AwardRequest:
    """One award attempt for a user and kind.

    ``since`` bounds the idempotency window of windowed kinds: the award is
    rejected when an event of the same kind exists with ``created_at > since``.
    ``None`` means the window is unbounded. One-time kinds never take ``since``.
    """

    external_user_id: str
    kind: ScoreKind
    delta: int
    evidence_ref: str | None = None
    notes: str | None = None
    since: datetime | None = None


@dataclass(frozen=True)
class ScoreEvent:
    """Persisted score event."""

    id: int
    external_user_id: str
    kind: ScoreKind
    delta: int
    evidence_ref: str | None
    notes: str | None
    created_at: datetime


@dataclass(frozen=True)
class AwardResult:
    """Award outcome with the inserted event when accepted."""

    outcome: AwardOutcome
    event: ScoreEvent | None = None

    @property
    def accepted(self) -> bool:
        return self.outcome is AwardOutcome.ACCEPTED


class ScoreLedgerPort(Protocol):
    """Sole writer of score events and leaderboard points."""

    async def ensure_row(self, *, external_user_id: str) -> None:
        """Create the leaderboard row for user when absent."""

    async def award(self, request: AwardRequest) -> AwardResult:
        """Atomically check eligibility, insert the event and increment points."""

    async def list_events(self, *, external_user_id: str) -> list[ScoreEvent]:
        """Return user events ordered by creation."""

    async def rebuild_points(self, *, external_user_id: str | None = None) -> int:
        """Recompute points from events for one or all users; return rows updated."""
