from __future__ import annotations

import json
from pathlib import Path
from urllib.parse import parse_qs, urlsplit

import pytest
import sqlalchemy as sa
from alembic.config import Config

from alembic import command
from apps.scanner.main import parse_args, run_scanner
from social_rewards.config.settings import Settings
from social_rewards.infrastructure.db.session import create_session_factory
from social_rewards.infrastructure.x.http_client import XHttpResponse


def _upgrade_head(tmp_path: Path, filename: str) -> tuple[str, str]:
    db_path = tmp_path / filename
    sync_url = f"sqlite+pysqlite:///{db_path}"
    async_url = f"sqlite+aiosqlite:///{db_path}"

    alembic_config = Config("alembic.ini")
    alembic_config.set_main_option("sqlalchemy.url", sync_url)
    command.upgrade(alembic_config, "head")

    return sync_url, async_url


class SearchTransport:
    def __init__(self, *, results_by_handle: dict[str, list[dict[str, str]]]) -> None:
        self.results_by_handle = results_by_handle
        self.queries: list[str] = []

    async def request(
        self,
        *,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes | None,
        timeout_seconds: float,
    ) -> XHttpResponse:
        query = parse_qs(urlsplit(url).query)["query"][0]
        self.queries.append(query)
        handle = query.split()[0].removeprefix("from:")
        if handle == "broken":
            return XHttpResponse(status_code=429, body_bytes=b"{}")
        payload = {"data": self.results_by_handle.get(handle, [])}
        return XHttpResponse(status_code=200, body_bytes=json.dumps(payload).encode("utf-8"))


def _settings(monkeypatch: pytest.MonkeyPatch, async_url: str) -> Settings:
    env = {
        "DATABASE_URL": async_url,
        "X_CLIENT_ID": "client-1",
        "X_REDIRECT_URI": "http://testserver/auth/x/callback",
        "SCAN_TRIGGER_SECRET": "scan-secret",
        "SIGNING_SECRET": "signing-secret",
        "X_BEARER_TOKEN": "app-token",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return Settings(_env_file=None)


def _seed_identity(connection: sa.Connection, *, external_user_id: str, handle: str) -> None:
    connection.execute(
        sa.text(
            "INSERT INTO x_identities (external_user_id, subject_key, handle, is_verified, "
            "created_at, updated_at) VALUES (:id, :subject_key, :handle, 1, "
            "'2026-03-01 00:00:00.000000', '2026-03-01 00:00:00.000000')"
        ),
        {"id": external_user_id, "subject_key": f"0x{handle}", "handle": handle},
    )


def test_parse_args_reads_window_and_rebuild_flags() -> None:
    args = parse_args(["--window-hours", "6", "--rebuild-leaderboard"])

    assert args.window_hours == 6
    assert args.rebuild_leaderboard is True
    assert parse_args([]).window_hours is None


@pytest.mark.asyncio
async def test_scanner_awards_verified_identities_and_counts_failures(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    sync_url, async_url = _upgrade_head(tmp_path, "scanner_runtime.db")
    engine = sa.create_engine(sync_url)
    with engine.begin() as connection:
        _seed_identity(connection, external_user_id="1", handle="alice")
        _seed_identity(connection, external_user_id="2", handle="broken")
        _seed_identity(connection, external_user_id="3", handle="quiet")
    transport = SearchTransport(
        results_by_handle={"alice": [{"id": "p1", "text": "RIBBIT @joinfroggys"}]}
    )

    summary = await run_scanner(
        settings=_settings(monkeypatch, async_url),
        session_factory=create_session_factory(async_url),
        x_transport=transport,
    )

    assert summary.scanned == 3
    assert summary.updated == 2
    assert summary.errors == 1
    assert summary.window_hours == 12
    assert "from:alice RIBBIT -is:retweet" in transport.queries
    assert "from:alice @joinfroggys RIBBIT -is:retweet" in transport.queries

    with engine.connect() as connection:
        points = dict(
            connection.execute(
                sa.text("SELECT external_user_id, points FROM leaderboard_entries")
            ).all()
        )
        scan_audits = connection.execute(
            sa.text("SELECT COUNT(*) FROM audit_events WHERE event_type = 'scan_completed'")
        ).scalar_one()
    assert points == {"1": 2, "2": 0, "3": 0}
    assert scan_audits == 1


@pytest.mark.asyncio
async def test_scanner_rebuilds_drifted_points_before_scanning(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    sync_url, async_url = _upgrade_head(tmp_path, "scanner_rebuild.db")
    engine = sa.create_engine(sync_url)
    with engine.begin() as connection:
        connection.execute(
            sa.text(
                "INSERT INTO leaderboard_entries "
                "(external_user_id, points, created_at, updated_at) "
                "VALUES ('9', 55, '2026-03-01 00:00:00.000000', '2026-03-01 00:00:00.000000')"
            )
        )
        connection.execute(
            sa.text(
                "INSERT INTO score_events (external_user_id, kind, delta, created_at) "
                "VALUES ('9', 'follow_ok', 10, '2026-03-01 00:00:00.000000')"
            )
        )

    summary = await run_scanner(
        settings=_settings(monkeypatch, async_url),
        session_factory=create_session_factory(async_url),
        window_hours=3,
        rebuild_leaderboard=True,
        x_transport=SearchTransport(results_by_handle={}),
    )

    assert summary.scanned == 0
    assert summary.window_hours == 3
    with engine.connect() as connection:
        points = connection.execute(
            sa.text("SELECT points FROM leaderboard_entries WHERE external_user_id = '9'")
        ).scalar_one()
    assert points == 10
