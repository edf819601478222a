from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import sqlalchemy as sa
from alembic.config import Config

from alembic import command
from social_rewards.application.errors import LeaderboardRowMissingError
from social_rewards.application.ports.score_ledger_port import AwardOutcome, AwardRequest
from social_rewards.domain.score_kinds import ScoreKind
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


def _points(sync_url: str, external_user_id: str) -> int:
    engine = sa.create_engine(sync_url)
    with engine.connect() as connection:
        return int(
            connection.execute(
                sa.text("SELECT points FROM leaderboard_entries WHERE external_user_id = :id"),
                {"id": external_user_id},
            ).scalar_one()
        )


@pytest.mark.asyncio
async def test_ensure_row_is_idempotent(tmp_path: Path) -> None:
    sync_url, async_url = _upgrade_head(tmp_path, "ledger_ensure_row.db")
    ledger = SqlAlchemyScoreLedger(create_session_factory(async_url), now=Clock())

    await ledger.ensure_row(external_user_id="u1")
    await ledger.ensure_row(external_user_id="u1")

    engine = sa.create_engine(sync_url)
    with engine.connect() as connection:
        count = connection.execute(sa.text("SELECT COUNT(*) FROM leaderboard_entries")).scalar_one()
    assert count == 1
    assert _points(sync_url, "u1") == 0


@pytest.mark.asyncio
async def test_one_time_kind_is_awarded_at_most_once(tmp_path: Path) -> None:
    sync_url, async_url = _upgrade_head(tmp_path, "ledger_one_time.db")
    clock = Clock()
    ledger = SqlAlchemyScoreLedger(create_session_factory(async_url), now=clock)
    await ledger.ensure_row(external_user_id="u1")
    request = AwardRequest(
        external_user_id="u1",
        kind=ScoreKind.FOLLOW_OK,
        delta=10,
        evidence_ref="900",
    )

    first = await ledger.award(request)
    clock.value = NOW + timedelta(days=30)
    second = await ledger.award(request)

    assert first.outcome is AwardOutcome.ACCEPTED
    assert first.event is not None
    assert first.event.kind is ScoreKind.FOLLOW_OK
    assert first.event.evidence_ref == "900"
    assert first.event.created_at == NOW
    assert second.outcome is AwardOutcome.ALREADY_AWARDED
    assert second.event is None
    assert _points(sync_url, "u1") == 10


@pytest.mark.asyncio
async def test_windowed_kind_respects_exclusive_since_boundary(tmp_path: Path) -> None:
    sync_url, async_url = _upgrade_head(tmp_path, "ledger_windowed.db")
    clock = Clock()
    ledger = SqlAlchemyScoreLedger(create_session_factory(async_url), now=clock)
    await ledger.ensure_row(external_user_id="u1")

    def _request(since: datetime) -> AwardRequest:
        return AwardRequest(
            external_user_id="u1",
            kind=ScoreKind.RIBBIT,
            delta=1,
            evidence_ref="p1",
            since=since,
        )

    first = await ledger.award(_request(NOW - timedelta(hours=12)))
    clock.value = NOW + timedelta(hours=1)
    same_window = await ledger.award(_request(NOW - timedelta(hours=11)))
    at_boundary = await ledger.award(_request(NOW))

    assert first.accepted
    assert same_window.outcome is AwardOutcome.ALREADY_AWARDED
    assert at_boundary.accepted
    assert _points(sync_url, "u1") == 2
    events = await ledger.list_events(external_user_id="u1")
    assert [event.created_at for event in events] == [NOW, NOW + timedelta(hours=1)]


@pytest.mark.asyncio
async def test_windowed_kind_without_since_is_awarded_once_ever(tmp_path: Path) -> None:
    sync_url, async_url = _upgrade_head(tmp_path, "ledger_unbounded.db")
    ledger = SqlAlchemyScoreLedger(create_session_factory(async_url), now=Clock())
    await ledger.ensure_row(external_user_id="u1")
    request = AwardRequest(external_user_id="u1", kind=ScoreKind.RIBBIT, delta=10)

    assert (await ledger.award(request)).accepted
    assert not (await ledger.award(request)).accepted
    assert _points(sync_url, "u1") == 10


@pytest.mark.asyncio
async def test_concurrent_awards_for_same_kind_accept_exactly_one(tmp_path: Path) -> None:
    sync_url, async_url = _upgrade_head(tmp_path, "ledger_concurrent.db")
    ledger = SqlAlchemyScoreLedger(create_session_factory(async_url), now=Clock())
    await ledger.ensure_row(external_user_id="u1")
    request = AwardRequest(external_user_id="u1", kind=ScoreKind.FOLLOW_OK, delta=10)

    results = await asyncio.gather(*(ledger.award(request) for _ in range(8)))

    assert sum(1 for result in results if result.accepted) == 1
    assert _points(sync_url, "u1") == 10
    assert len(await ledger.list_events(external_user_id="u1")) == 1


@pytest.mark.asyncio
async def test_award_without_leaderboard_row_raises_and_writes_nothing(tmp_path: Path) -> None:
    _, async_url = _upgrade_head(tmp_path, "ledger_missing_row.db")
    ledger = SqlAlchemyScoreLedger(create_session_factory(async_url), now=Clock())

    with pytest.raises(LeaderboardRowMissingError):
        await ledger.award(
            AwardRequest(external_user_id="ghost", kind=ScoreKind.FOLLOW_OK, delta=10)
        )

    assert await ledger.list_events(external_user_id="ghost") == []


@pytest.mark.asyncio
async def test_invalid_award_requests_are_rejected(tmp_path: Path) -> None:
    _, async_url = _upgrade_head(tmp_path, "ledger_invalid.db")
    ledger = SqlAlchemyScoreLedger(create_session_factory(async_url), now=Clock())
    await ledger.ensure_row(external_user_id="u1")

    with pytest.raises(ValueError):
        await ledger.award(AwardRequest(external_user_id="u1", kind=ScoreKind.RIBBIT, delta=0))
    with pytest.raises(ValueError):
        await ledger.award(
            AwardRequest(
                external_user_id="u1",
                kind=ScoreKind.FOLLOW_OK,
                delta=10,
                since=NOW,
            )
        )


@pytest.mark.asyncio
async def test_rebuild_points_restores_event_sum(tmp_path: Path) -> None:
    sync_url, async_url = _upgrade_head(tmp_path, "ledger_rebuild.db")
    ledger = SqlAlchemyScoreLedger(create_session_factory(async_url), now=Clock())
    for user in ("u1", "u2"):
        await ledger.ensure_row(external_user_id=user)
    await ledger.award(AwardRequest(external_user_id="u1", kind=ScoreKind.FOLLOW_OK, delta=10))
    await ledger.award(AwardRequest(external_user_id="u1", kind=ScoreKind.RIBBIT, delta=10))

    engine = sa.create_engine(sync_url)
    with engine.begin() as connection:
        connection.execute(sa.text("UPDATE leaderboard_entries SET points = 999"))

    updated = await ledger.rebuild_points()

    assert updated == 2
    assert _points(sync_url, "u1") == 20
    assert _points(sync_url, "u2") == 0
    assert await ledger.rebuild_points(external_user_id="u1") == 0
