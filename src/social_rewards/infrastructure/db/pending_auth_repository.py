"""SQLAlchemy adapter for PKCE pending authorization attempts."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, cast

import sqlalchemy as sa
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from social_rewards.application.ports.pending_auth_store_port import (
    PendingAuth,
    PendingAuthStorePort,
)
from social_rewards.infrastructure.db.errors import as_utc, storage_errors
from social_rewards.infrastructure.db.metadata import pending_auths

logger = logging.getLogger(__name__)


class SqlAlchemyPendingAuthStore(PendingAuthStorePort):
    """Pending-auth store shared by every api process through the database."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def save(self, pending: PendingAuth) -> None:
        """Insert one live attempt."""

        statement = sa.insert(pending_auths).values(
            state=pending.state,
            code_verifier=pending.code_verifier,
            subject_key=pending.subject_key,
            created_at=as_utc(pending.created_at),
            expires_at=as_utc(pending.expires_at),
        )
        with storage_errors("pending_auth_save"):
            async with self._session_factory() as session:
                await session.execute(statement)
                await session.commit()

    async def consume(self, *, state: str, now: datetime) -> PendingAuth | None:
        """Mark a live attempt consumed and return it in one statement."""

        statement = (
            sa.update(pending_auths)
            .where(
                pending_auths.c.state == state,
                pending_auths.c.consumed_at.is_(None),
                pending_auths.c.expires_at > as_utc(now),
            )
            .values(consumed_at=as_utc(now))
            .returning(*pending_auths.c)
        )
        with storage_errors("pending_auth_consume"):
            async with self._session_factory() as session:
                result = await session.execute(statement)
                row = result.mappings().first()
                await session.commit()

        if row is None:
            return None
        return _to_pending_auth(row)

    async def insert_consumed_if_absent(self, pending: PendingAuth) -> bool:
        """Insert a consumed tombstone; return False when the state already exists."""

        statement = sa.insert(pending_auths).values(
            state=pending.state,
            code_verifier=pending.code_verifier,
            subject_key=pending.subject_key,
            created_at=as_utc(pending.created_at),
            expires_at=as_utc(pending.expires_at),
            consumed_at=as_utc(pending.created_at),
        )
        with storage_errors("pending_auth_insert_consumed"):
            async with self._session_factory() as session:
                try:
                    await session.execute(statement)
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    logger.info("pending_auth_state_already_known")
                    return False
        return True

    async def purge_expired(self, *, now: datetime) -> int:
        """Delete every attempt whose TTL has passed."""

        statement = sa.delete(pending_auths).where(pending_auths.c.expires_at <= as_utc(now))
        with storage_errors("pending_auth_purge"):
            async with self._session_factory() as session:
                result = cast(CursorResult[Any], await session.execute(statement))
                await session.commit()
        return int(result.rowcount or 0)


def _to_pending_auth(row: sa.RowMapping) -> PendingAuth:
    return PendingAuth(
        state=cast(str, row["state"]),
        code_verifier=cast(str, row["code_verifier"]),
        subject_key=cast(str, row["subject_key"]),
        created_at=as_utc(cast(datetime, row["created_at"])),
        expires_at=as_utc(cast(datetime, row["expires_at"])),
    )
