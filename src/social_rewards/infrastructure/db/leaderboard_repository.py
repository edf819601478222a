"""SQLAlchemy adapter for leaderboard reads and scan bookkeeping."""

from __future__ import annotations

from datetime import datetime
from typing import Any, cast

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from social_rewards.application.ports.leaderboard_repository_port import (
    LeaderboardRepositoryPort,
    LeaderboardRow,
    LeaderboardStanding,
)
from social_rewards.infrastructure.db.errors import as_optional_utc, as_utc, storage_errors
from social_rewards.infrastructure.db.metadata import leaderboard_entries, x_identities

_ENTRIES_WITH_HANDLE = leaderboard_entries.outerjoin(
    x_identities,
    x_identities.c.external_user_id == leaderboard_entries.c.external_user_id,
)


class SqlAlchemyLeaderboardRepository(LeaderboardRepositoryPort):
    """Leaderboard projection over leaderboard_entries joined to identities."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def list_page(self, *, limit: int, offset: int) -> list[LeaderboardRow]:
        """Return one page ordered by points, then most recent change."""

        statement = (
            sa.select(
                leaderboard_entries.c.external_user_id,
                leaderboard_entries.c.points,
                x_identities.c.handle,
            )
            .select_from(_ENTRIES_WITH_HANDLE)
            .order_by(
                leaderboard_entries.c.points.desc(),
                leaderboard_entries.c.updated_at.desc(),
                leaderboard_entries.c.external_user_id,
            )
            .limit(limit)
            .offset(offset)
        )
        with storage_errors("leaderboard_list_page"):
            async with self._session_factory() as session:
                result = await session.execute(statement)

        return [
            LeaderboardRow(
                external_user_id=cast(str, row["external_user_id"]),
                handle=cast(str | None, row["handle"]),
                points=int(row["points"]),
            )
            for row in result.mappings().all()
        ]

    async def get_standing(self, *, external_user_id: str) -> LeaderboardStanding | None:
        """Return standing; rank counts rows ordered strictly ahead of the user."""

        row_statement = (
            sa.select(
                leaderboard_entries.c.external_user_id,
                leaderboard_entries.c.points,
                leaderboard_entries.c.updated_at,
                leaderboard_entries.c.last_scan_at,
                x_identities.c.handle,
            )
            .select_from(_ENTRIES_WITH_HANDLE)
            .where(leaderboard_entries.c.external_user_id == external_user_id)
            .limit(1)
        )
        with storage_errors("leaderboard_get_standing"):
            async with self._session_factory() as session:
                result = await session.execute(row_statement)
                row = result.mappings().first()
                if row is None:
                    return None
                ahead = await session.execute(_count_ahead_statement(row))
                rank = int(ahead.scalar_one()) + 1

        return LeaderboardStanding(
            external_user_id=cast(str, row["external_user_id"]),
            handle=cast(str | None, row["handle"]),
            points=int(row["points"]),
            rank=rank,
            last_scan_at=as_optional_utc(cast(datetime | None, row["last_scan_at"])),
        )

    async def mark_scan(
        self,
        *,
        external_user_id: str,
        scanned_at: datetime,
        last_ribbit_at: datetime | None = None,
        last_ribbit_tag_at: datetime | None = None,
    ) -> None:
        values: dict[str, Any] = {"last_scan_at": as_utc(scanned_at)}
        if last_ribbit_at is not None:
            values["last_ribbit_at"] = as_utc(last_ribbit_at)
        if last_ribbit_tag_at is not None:
            values["last_ribbit_tag_at"] = as_utc(last_ribbit_tag_at)

        statement = (
            sa.update(leaderboard_entries)
            .where(leaderboard_entries.c.external_user_id == external_user_id)
            .values(**values)
        )
        with storage_errors("leaderboard_mark_scan"):
            async with self._session_factory() as session:
                await session.execute(statement)
                await session.commit()


def _count_ahead_statement(row: sa.RowMapping) -> sa.Select[tuple[int]]:
    points = int(row["points"])
    updated_at = as_utc(cast(datetime, row["updated_at"]))
    external_user_id = cast(str, row["external_user_id"])
    return sa.select(sa.func.count()).select_from(leaderboard_entries).where(
        sa.or_(
            leaderboard_entries.c.points > points,
            sa.and_(
                leaderboard_entries.c.points == points,
                leaderboard_entries.c.updated_at > updated_at,
            ),
            sa.and_(
                leaderboard_entries.c.points == points,
                leaderboard_entries.c.updated_at == updated_at,
                leaderboard_entries.c.external_user_id < external_user_id,
            ),
        )
    )
