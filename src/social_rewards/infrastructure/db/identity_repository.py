"""SQLAlchemy adapter for linked X identities."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import cast

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from social_rewards.application.ports.identity_repository_port import (
    IdentityRecord,
    IdentityRepositoryPort,
    IdentityUpsertInput,
)
from social_rewards.infrastructure.db.errors import as_optional_utc, as_utc, storage_errors
from social_rewards.infrastructure.db.metadata import x_identities

NowCallable = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class SqlAlchemyIdentityRepository(IdentityRepositoryPort):
    """Identity repository keyed by X user id."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        now: NowCallable = _utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._now = now

    async def upsert(self, payload: IdentityUpsertInput) -> IdentityRecord:
        """Insert identity or refresh subject link, handle and display name."""

        now = as_utc(self._now())
        with storage_errors("identity_upsert"):
            async with self._session_factory() as session:
                updated = await session.execute(
                    sa.update(x_identities)
                    .where(x_identities.c.external_user_id == payload.external_user_id)
                    .values(
                        subject_key=payload.subject_key,
                        handle=payload.handle,
                        display_name=payload.display_name,
                        updated_at=now,
                    )
                    .returning(*x_identities.c)
                )
                row = updated.mappings().first()
                if row is None:
                    inserted = await session.execute(
                        sa.insert(x_identities)
                        .values(
                            external_user_id=payload.external_user_id,
                            subject_key=payload.subject_key,
                            handle=payload.handle,
                            display_name=payload.display_name,
                            is_verified=False,
                            created_at=now,
                            updated_at=now,
                        )
                        .returning(*x_identities.c)
                    )
                    row = inserted.mappings().one()
                await session.commit()

        return _to_record(row)

    async def get_latest_for_subject(self, *, subject_key: str) -> IdentityRecord | None:
        statement = (
            sa.select(*x_identities.c)
            .where(x_identities.c.subject_key == subject_key)
            .order_by(x_identities.c.updated_at.desc(), x_identities.c.external_user_id)
            .limit(1)
        )
        return await self._fetch_one(statement, operation="identity_get_for_subject")

    async def get_by_handle(self, *, handle: str) -> IdentityRecord | None:
        statement = (
            sa.select(*x_identities.c)
            .where(sa.func.lower(x_identities.c.handle) == handle.lower())
            .order_by(x_identities.c.updated_at.desc())
            .limit(1)
        )
        return await self._fetch_one(statement, operation="identity_get_by_handle")

    async def mark_verified(self, *, external_user_id: str, verified_at: datetime) -> None:
        """Set verified flag; the first verified_at is kept."""

        statement = (
            sa.update(x_identities)
            .where(x_identities.c.external_user_id == external_user_id)
            .values(
                is_verified=True,
                verified_at=sa.func.coalesce(x_identities.c.verified_at, as_utc(verified_at)),
            )
        )
        with storage_errors("identity_mark_verified"):
            async with self._session_factory() as session:
                await session.execute(statement)
                await session.commit()

    async def list_verified(self) -> list[IdentityRecord]:
        statement = (
            sa.select(*x_identities.c)
            .where(x_identities.c.is_verified.is_(True))
            .order_by(x_identities.c.external_user_id)
        )
        with storage_errors("identity_list_verified"):
            async with self._session_factory() as session:
                result = await session.execute(statement)
        return [_to_record(row) for row in result.mappings().all()]

    async def _fetch_one(
        self,
        statement: sa.Select[tuple[object, ...]],
        *,
        operation: str,
    ) -> IdentityRecord | None:
        with storage_errors(operation):
            async with self._session_factory() as session:
                result = await session.execute(statement)
        row = result.mappings().first()
        if row is None:
            return None
        return _to_record(row)


def _to_record(row: sa.RowMapping) -> IdentityRecord:
    return IdentityRecord(
        external_user_id=cast(str, row["external_user_id"]),
        subject_key=cast(str, row["subject_key"]),
        handle=cast(str, row["handle"]),
        display_name=cast(str | None, row["display_name"]),
        is_verified=bool(row["is_verified"]),
        verified_at=as_optional_utc(cast(datetime | None, row["verified_at"])),
        created_at=as_utc(cast(datetime, row["created_at"])),
        updated_at=as_utc(cast(datetime, row["updated_at"])),
    )
