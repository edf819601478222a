from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import sqlalchemy as sa
from alembic.config import Config

from alembic import command
from social_rewards.application.ports.identity_repository_port import IdentityUpsertInput
from social_rewards.application.ports.score_ledger_port import AwardRequest
from social_rewards.application.services.leaderboard_service import LeaderboardService
from social_rewards.domain.score_kinds import ScoreKind
from social_rewards.infrastructure.db.identity_repository import SqlAlchemyIdentityRepository
from social_rewards.infrastructure.db.leaderboard_repository import (
    SqlAlchemyLeaderboardRepository,
)
from social_rewards.infrastructure.db.score_ledger_repository import SqlAlchemyScoreLedger
from social_rewards.infrastructure.db.session import create_session_factory

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _upgrade_head(tmp_path: Path, filename: str) -> tuple[str, str]:
    db_path = tmp_path / filename
    sync_url = f"sqlite+pysqlite:///{db_path}"
    async_url = f"sqlite+aiosqlite:///{db_path}"

    alembic_config = Config("alembic.ini")
    alembic_config.set_main_option("sqlalchemy.url", sync_url)
    command.upgrade(alembic_config, "head")

    return sync_url, async_url


class Clock:
    def __init__(self) -> None:
        self.value = NOW

    def __call__(self) -> datetime:
        return self.value


def _insert_entry(
    connection: sa.Connection,
    *,
    external_user_id: str,
    points: int,
    updated_at: str,
) -> None:
    connection.execute(
        sa.text(
            "INSERT INTO leaderboard_entries (external_user_id, points, created_at, updated_at) "
            "VALUES (:id, :points, '2026-03-01 00:00:00.000000', :updated_at)"
        ),
        {"id": external_user_id, "points": points, "updated_at": updated_at},
    )


@pytest.mark.asyncio
async def test_ties_rank_most_recently_updated_first(tmp_path: Path) -> None:
    _, async_url = _upgrade_head(tmp_path, "leaderboard_ties.db")
    session_factory = create_session_factory(async_url)
    clock = Clock()
    ledger = SqlAlchemyScoreLedger(session_factory, now=clock)
    repository = SqlAlchemyLeaderboardRepository(session_factory)

    for user, delta, offset_minutes in (("a", 50, 0), ("b", 50, 5), ("c", 30, 10)):
        clock.value = NOW + timedelta(minutes=offset_minutes)
        await ledger.ensure_row(external_user_id=user)
        await ledger.award(AwardRequest(external_user_id=user, kind=ScoreKind.RIBBIT, delta=delta))

    rows = await repository.list_page(limit=10, offset=0)
    standings = {
        user: await repository.get_standing(external_user_id=user) for user in ("a", "b", "c")
    }

    assert [(row.external_user_id, row.points) for row in rows] == [
        ("b", 50),
        ("a", 50),
        ("c", 30),
    ]
    assert {user: standing.rank for user, standing in standings.items() if standing} == {
        "b": 1,
        "a": 2,
        "c": 3,
    }
    assert await repository.get_standing(external_user_id="missing") is None


@pytest.mark.asyncio
async def test_full_ties_fall_back_to_user_id_order(tmp_path: Path) -> None:
    sync_url, async_url = _upgrade_head(tmp_path, "leaderboard_full_ties.db")
    engine = sa.create_engine(sync_url)
    with engine.begin() as connection:
        for user in ("z", "m", "a"):
            _insert_entry(
                connection,
                external_user_id=user,
                points=7,
                updated_at="2026-03-01 12:00:00.000000",
            )
    repository = SqlAlchemyLeaderboardRepository(create_session_factory(async_url))

    rows = await repository.list_page(limit=10, offset=0)
    standing = await repository.get_standing(external_user_id="z")

    assert [row.external_user_id for row in rows] == ["a", "m", "z"]
    assert standing is not None
    assert standing.rank == 3


@pytest.mark.asyncio
async def test_pages_are_contiguous_and_include_handles(tmp_path: Path) -> None:
    sync_url, async_url = _upgrade_head(tmp_path, "leaderboard_pages.db")
    engine = sa.create_engine(sync_url)
    with engine.begin() as connection:
        for index in range(5):
            _insert_entry(
                connection,
                external_user_id=f"u{index}",
                points=100 - index * 10,
                updated_at="2026-03-01 12:00:00.000000",
            )
    session_factory = create_session_factory(async_url)
    identities = SqlAlchemyIdentityRepository(session_factory, now=lambda: NOW)
    await identities.upsert(
        IdentityUpsertInput(subject_key="0xu1", external_user_id="u1", handle="one")
    )
    service = LeaderboardService(
        leaderboard=SqlAlchemyLeaderboardRepository(session_factory),
        identities=identities,
    )

    first = await service.page(limit=2)
    second = await service.page(limit=2, offset=first.next_offset or 0)
    third = await service.page(limit=2, offset=second.next_offset or 0)

    assert [(row.rank, row.external_user_id) for row in first.rows] == [(1, "u0"), (2, "u1")]
    assert [row.handle for row in first.rows] == [None, "one"]
    assert [(row.rank, row.external_user_id) for row in second.rows] == [(3, "u2"), (4, "u3")]
    assert [(row.rank, row.external_user_id) for row in third.rows] == [(5, "u4")]
    assert third.next_offset is None

    standing = await service.me_by_handle(handle="@ONE")
    assert standing is not None
    assert standing.rank == 2
    assert standing.points == 90


@pytest.mark.asyncio
async def test_mark_scan_keeps_points_and_updated_at(tmp_path: Path) -> None:
    sync_url, async_url = _upgrade_head(tmp_path, "leaderboard_mark_scan.db")
    engine = sa.create_engine(sync_url)
    with engine.begin() as connection:
        _insert_entry(
            connection,
            external_user_id="u1",
            points=12,
            updated_at="2026-03-01 12:00:00.000000",
        )
    repository = SqlAlchemyLeaderboardRepository(create_session_factory(async_url))
    scanned_at = NOW + timedelta(hours=3)

    await repository.mark_scan(
        external_user_id="u1",
        scanned_at=scanned_at,
        last_ribbit_at=NOW + timedelta(hours=2),
    )
    await repository.mark_scan(external_user_id="u1", scanned_at=scanned_at)

    with engine.connect() as connection:
        row = connection.execute(
            sa.text(
                "SELECT points, updated_at, last_ribbit_at, last_ribbit_tag_at "
                "FROM leaderboard_entries WHERE external_user_id = 'u1'"
            )
        ).one()
    assert row.points == 12
    assert row.updated_at == "2026-03-01 12:00:00.000000"
    assert row.last_ribbit_at == "2026-03-01 14:00:00.000000"
    assert row.last_ribbit_tag_at is None

    standing = await repository.get_standing(external_user_id="u1")
    assert standing is not None
    assert standing.last_scan_at == scanned_at
