"""SQLAlchemy adapter for append-only audit events."""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from social_rewards.application.ports.audit_repository_port import (
    AuditEventCreateInput,
    AuditRepositoryPort,
)
from social_rewards.infrastructure.db.errors import storage_errors
from social_rewards.infrastructure.db.metadata import audit_events


class SqlAlchemyAuditRepository(AuditRepositoryPort):
    """Audit repository backed by SQLAlchemy async sessions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def append_event(self, payload: AuditEventCreateInput) -> int:
        """Insert an audit event row and return its numeric id."""

        statement = sa.insert(audit_events).values(
            subject_key=payload.subject_key,
            external_user_id=payload.external_user_id,
            event_type=payload.event_type,
            payload=payload.payload,
        ).returning(audit_events.c.id)

        with storage_errors("audit_append"):
            async with self._session_factory() as session:
                result = await session.execute(statement)
                await session.commit()

        inserted_id = result.scalar_one()
        return int(inserted_id)
