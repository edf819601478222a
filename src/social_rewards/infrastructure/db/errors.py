"""Translation of SQLAlchemy failures into the application storage error."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError

from social_rewards.application.errors import StorageUnavailableError

logger = logging.getLogger(__name__)


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Re-raise SQLAlchemy errors raised inside the block as StorageUnavailableError."""

    try:
        yield
    except SQLAlchemyError as error:
        logger.error("storage_operation_failed operation=%s error=%s", operation, error)
        raise StorageUnavailableError(f"{operation} failed") from error


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes returned by SQLite."""

    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def as_optional_utc(value: datetime | None) -> datetime | None:
    """Nullable variant of as_utc."""

    if value is None:
        return None
    return as_utc(value)
