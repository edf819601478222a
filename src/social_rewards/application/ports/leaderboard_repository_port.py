"""Port for the materialized leaderboard view."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass(frozen=True)
class LeaderboardRow:
    """One ranked leaderboard row."""

    external_user_id: str
    handle: str | None
    points: int


@dataclass(frozen=True)
class LeaderboardStanding:
    """Points and rank for one user."""

    external_user_id: str
    handle: str | None
    points: int
    rank: int
    last_scan_at: datetime | None


class LeaderboardRepositoryPort(Protocol):
    """Read and scan-mark operations over leaderboard entries."""

    async def list_page(self, *, limit: int, offset: int) -> list[LeaderboardRow]:
        """Return rows ordered by points desc, updated_at desc."""

    async def get_standing(self, *, external_user_id: str) -> LeaderboardStanding | None:
        """Return user standing with rank computed relationally."""

    async def mark_scan(
        self,
        *,
        external_user_id: str,
        scanned_at: datetime,
        last_ribbit_at: datetime | None = None,
        last_ribbit_tag_at: datetime | None = None,
    ) -> None:
        """Record scan timestamps without touching points or updated_at."""
