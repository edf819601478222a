"""SQLAlchemy adapter for the idempotent score ledger.

Every award runs in one transaction that first takes the leaderboard row
lock, then checks for an existing event, inserts the new event and bumps
the cached points. The partial unique index on one-time kinds backs the
check at the database level.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any, cast

import sqlalchemy as sa
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from social_rewards.application.errors import LeaderboardRowMissingError
from social_rewards.application.ports.score_ledger_port import (
    AwardOutcome,
    AwardRequest,
    AwardResult,
    ScoreEvent,
    ScoreLedgerPort,
)
from social_rewards.domain.score_kinds import ScoreKind, is_one_time
from social_rewards.infrastructure.db.errors import as_utc, storage_errors
from social_rewards.infrastructure.db.metadata import leaderboard_entries, score_events

logger = logging.getLogger(__name__)

NowCallable = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class _KeyedLocks:
    """In-process lock per key, released from the registry once unused."""

    def __init__(self) -> None:
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._holders: dict[tuple[str, str], int] = {}

    @asynccontextmanager
    async def hold(self, key: tuple[str, str]) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                del self._locks[key]


class SqlAlchemyScoreLedger(ScoreLedgerPort):
    """Sole writer of score_events and leaderboard_entries.points."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        now: NowCallable = _utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._now = now
        self._locks = _KeyedLocks()

    async def ensure_row(self, *, external_user_id: str) -> None:
        """Insert a zero-point leaderboard row unless one exists."""

        now = as_utc(self._now())
        with storage_errors("ledger_ensure_row"):
            async with self._session_factory() as session:
                existing = await session.execute(
                    sa.select(leaderboard_entries.c.external_user_id)
                    .where(leaderboard_entries.c.external_user_id == external_user_id)
                    .limit(1)
                )
                if existing.first() is not None:
                    return
                try:
                    await session.execute(
                        sa.insert(leaderboard_entries).values(
                            external_user_id=external_user_id,
                            points=0,
                            created_at=now,
                            updated_at=now,
                        )
                    )
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    return
        logger.info("leaderboard_row_created external_user_id=%s", external_user_id)

    async def award(self, request: AwardRequest) -> AwardResult:
        """Insert one event and increment points unless an equivalent event exists."""

        if request.delta <= 0:
            raise ValueError("delta must be positive")
        if is_one_time(request.kind) and request.since is not None:
            raise ValueError(f"{request.kind} is one-time and takes no window")

        key = (request.external_user_id, request.kind.value)
        async with self._locks.hold(key):
            result = await self._award_locked(request)

        logger.info(
            "score_award external_user_id=%s kind=%s outcome=%s",
            request.external_user_id,
            request.kind,
            result.outcome,
        )
        return result

    async def _award_locked(self, request: AwardRequest) -> AwardResult:
        now = as_utc(self._now())
        with storage_errors("ledger_award"):
            async with self._session_factory() as session:
                try:
                    locked = cast(
                        CursorResult[Any],
                        await session.execute(
                            sa.update(leaderboard_entries)
                            .where(
                                leaderboard_entries.c.external_user_id
                                == request.external_user_id
                            )
                            .values(points=leaderboard_entries.c.points)
                        ),
                    )
                    if locked.rowcount == 0:
                        await session.rollback()
                        raise LeaderboardRowMissingError(
                            f"no leaderboard row for {request.external_user_id}"
                        )

                    duplicate = sa.select(score_events.c.id).where(
                        score_events.c.external_user_id == request.external_user_id,
                        score_events.c.kind == request.kind.value,
                    )
                    if request.since is not None:
                        duplicate = duplicate.where(
                            score_events.c.created_at > as_utc(request.since)
                        )
                    existing = await session.execute(duplicate.limit(1))
                    if existing.first() is not None:
                        await session.rollback()
                        return AwardResult(outcome=AwardOutcome.ALREADY_AWARDED)

                    inserted = await session.execute(
                        sa.insert(score_events)
                        .values(
                            external_user_id=request.external_user_id,
                            kind=request.kind.value,
                            delta=request.delta,
                            evidence_ref=request.evidence_ref,
                            notes=request.notes,
                            created_at=now,
                        )
                        .returning(*score_events.c)
                    )
                    event_row = inserted.mappings().one()
                    await session.execute(
                        sa.update(leaderboard_entries)
                        .where(
                            leaderboard_entries.c.external_user_id == request.external_user_id
                        )
                        .values(
                            points=leaderboard_entries.c.points + request.delta,
                            updated_at=now,
                        )
                    )
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    return AwardResult(outcome=AwardOutcome.ALREADY_AWARDED)

        return AwardResult(outcome=AwardOutcome.ACCEPTED, event=_to_event(event_row))

    async def list_events(self, *, external_user_id: str) -> list[ScoreEvent]:
        statement = (
            sa.select(*score_events.c)
            .where(score_events.c.external_user_id == external_user_id)
            .order_by(score_events.c.created_at, score_events.c.id)
        )
        with storage_errors("ledger_list_events"):
            async with self._session_factory() as session:
                result = await session.execute(statement)
        return [_to_event(row) for row in result.mappings().all()]

    async def rebuild_points(self, *, external_user_id: str | None = None) -> int:
        """Set points to the event sum wherever the cached value drifted."""

        total = (
            sa.select(sa.func.coalesce(sa.func.sum(score_events.c.delta), 0))
            .where(score_events.c.external_user_id == leaderboard_entries.c.external_user_id)
            .scalar_subquery()
        )
        statement = (
            sa.update(leaderboard_entries)
            .where(leaderboard_entries.c.points != total)
            .values(points=total, updated_at=as_utc(self._now()))
        )
        if external_user_id is not None:
            statement = statement.where(
                leaderboard_entries.c.external_user_id == external_user_id
            )

        with storage_errors("ledger_rebuild_points"):
            async with self._session_factory() as session:
                result = cast(CursorResult[Any], await session.execute(statement))
                await session.commit()

        updated = int(result.rowcount or 0)
        logger.info("leaderboard_points_rebuilt rows=%s", updated)
        return updated


def _to_event(row: sa.RowMapping) -> ScoreEvent:
    return ScoreEvent(
        id=int(row["id"]),
        external_user_id=cast(str, row["external_user_id"]),
        kind=ScoreKind(cast(str, row["kind"])),
        delta=int(row["delta"]),
        evidence_ref=cast(str | None, row["evidence_ref"]),
        notes=cast(str | None, row["notes"]),
        created_at=as_utc(cast(datetime, row["created_at"])),
    )
