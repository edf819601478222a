"""SQLAlchemy adapter for append-only verification history."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import cast

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from social_rewards.application.ports.verification_record_repository_port import (
    VerificationRecord,
    VerificationRecordCreateInput,
    VerificationRecordRepositoryPort,
)
from social_rewards.infrastructure.db.errors import as_utc, storage_errors
from social_rewards.infrastructure.db.metadata import verification_records

NowCallable = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class SqlAlchemyVerificationRecordRepository(VerificationRecordRepositoryPort):
    """Verification history backed by the verification_records table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        now: NowCallable = _utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._now = now

    async def append(self, payload: VerificationRecordCreateInput) -> VerificationRecord:
        statement = (
            sa.insert(verification_records)
            .values(
                subject_key=payload.subject_key,
                external_user_id=payload.external_user_id,
                handle=payload.handle,
                followed_target=payload.followed_target,
                posted_required_phrase=payload.posted_required_phrase,
                matched_post_id=payload.matched_post_id,
                points=payload.points,
                follow_error=payload.follow_error,
                post_error=payload.post_error,
                verified_at=as_utc(payload.verified_at),
                created_at=as_utc(self._now()),
            )
            .returning(*verification_records.c)
        )
        with storage_errors("verification_record_append"):
            async with self._session_factory() as session:
                result = await session.execute(statement)
                row = result.mappings().one()
                await session.commit()
        return _to_record(row)

    async def get_latest(self, *, subject_key: str) -> VerificationRecord | None:
        statement = (
            sa.select(*verification_records.c)
            .where(verification_records.c.subject_key == subject_key)
            .order_by(verification_records.c.id.desc())
            .limit(1)
        )
        with storage_errors("verification_record_get_latest"):
            async with self._session_factory() as session:
                result = await session.execute(statement)
        row = result.mappings().first()
        if row is None:
            return None
        return _to_record(row)


def _to_record(row: sa.RowMapping) -> VerificationRecord:
    return VerificationRecord(
        id=int(row["id"]),
        subject_key=cast(str, row["subject_key"]),
        external_user_id=cast(str, row["external_user_id"]),
        handle=cast(str, row["handle"]),
        followed_target=bool(row["followed_target"]),
        posted_required_phrase=bool(row["posted_required_phrase"]),
        matched_post_id=cast(str | None, row["matched_post_id"]),
        points=int(row["points"]),
        follow_error=cast(str | None, row["follow_error"]),
        post_error=cast(str | None, row["post_error"]),
        verified_at=as_utc(cast(datetime, row["verified_at"])),
        created_at=as_utc(cast(datetime, row["created_at"])),
    )
