"""SQLAlchemy adapter for durable X credential storage."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import cast

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from social_rewards.application.ports.credential_store_port import (
    Credential,
    CredentialStorePort,
)
from social_rewards.infrastructure.db.errors import as_optional_utc, storage_errors
from social_rewards.infrastructure.db.metadata import x_credentials


class SqlAlchemyCredentialStore(CredentialStorePort):
    """Durable credential tier keyed by subject."""

    name = "database"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def find(self, *, subject_key: str) -> Credential | None:
        """Return persisted credential for subject."""

        statement = sa.select(*x_credentials.c).where(
            x_credentials.c.subject_key == subject_key
        ).limit(1)
        with storage_errors("credential_find"):
            async with self._session_factory() as session:
                result = await session.execute(statement)

        row = result.mappings().first()
        if row is None:
            return None
        return Credential(
            subject_key=cast(str, row["subject_key"]),
            access_token=cast(str, row["access_token"]),
            refresh_token=cast(str | None, row["refresh_token"]),
            expires_at=as_optional_utc(cast(datetime | None, row["expires_at"])),
        )

    async def save(self, credential: Credential) -> None:
        """Insert or overwrite credential for its subject."""

        values = {
            "access_token": credential.access_token,
            "refresh_token": credential.refresh_token,
            "expires_at": as_optional_utc(credential.expires_at),
            "updated_at": datetime.now(tz=UTC),
        }
        with storage_errors("credential_save"):
            async with self._session_factory() as session:
                updated = await session.execute(
                    sa.update(x_credentials)
                    .where(x_credentials.c.subject_key == credential.subject_key)
                    .values(**values)
                    .returning(x_credentials.c.subject_key)
                )
                if updated.first() is None:
                    await session.execute(
                        sa.insert(x_credentials).values(
                            subject_key=credential.subject_key,
                            **values,
                        )
                    )
                await session.commit()
