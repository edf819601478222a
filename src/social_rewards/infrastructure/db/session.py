"""Async SQLAlchemy session factory helpers."""

from __future__ import annotations

from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

_SQLITE_BUSY_TIMEOUT_SECONDS = 15.0


def create_session_factory(database_url: str) -> async_sessionmaker[AsyncSession]:
    """Create a reusable async session factory for the provided database URL.

    SQLite connections wait on a locked database instead of failing at once,
    since concurrent awards serialize on the file lock. Server databases get
    pre-ping so connections dropped between scans are replaced.
    """

    engine_options: dict[str, Any] = {}
    if make_url(database_url).get_backend_name() == "sqlite":
        engine_options["connect_args"] = {"timeout": _SQLITE_BUSY_TIMEOUT_SECONDS}
    else:
        engine_options["pool_pre_ping"] = True

    engine = create_async_engine(database_url, **engine_options)
    return async_sessionmaker(engine, expire_on_commit=False)
