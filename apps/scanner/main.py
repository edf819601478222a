"""scanner entrypoint: one scan pass for external schedulers."""

from __future__ import annotations

import argparse
import asyncio
import logging
from collections.abc import Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from social_rewards.application.services.scan_service import ScanService, ScanSummary
from social_rewards.config.settings import Settings, load_settings
from social_rewards.domain.reward_policy import RewardPolicy
from social_rewards.infrastructure.db.audit_repository import SqlAlchemyAuditRepository
from social_rewards.infrastructure.db.identity_repository import SqlAlchemyIdentityRepository
from social_rewards.infrastructure.db.leaderboard_repository import (
    SqlAlchemyLeaderboardRepository,
)
from social_rewards.infrastructure.db.score_ledger_repository import SqlAlchemyScoreLedger
from social_rewards.infrastructure.db.session import create_session_factory
from social_rewards.infrastructure.logging import configure_logging
from social_rewards.infrastructure.x.http_client import XApiClient, XHttpTransportPort

logger = logging.getLogger(__name__)


def build_scan_service(
    *,
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    x_transport: XHttpTransportPort | None = None,
) -> ScanService:
    """Compose scan service with SQLAlchemy repositories and the app-only X client."""

    return ScanService(
        identities=SqlAlchemyIdentityRepository(session_factory),
        ledger=SqlAlchemyScoreLedger(session_factory),
        leaderboard=SqlAlchemyLeaderboardRepository(session_factory),
        x_client=XApiClient(
            client_id=settings.x_client_id,
            client_secret=settings.x_client_secret,
            app_bearer_token=settings.x_bearer_token,
            base_url=str(settings.x_api_base_url),
            transport=x_transport,
            timeout_seconds=settings.x_http_timeout_seconds,
        ),
        policy=RewardPolicy(
            follow_points=settings.follow_reward_points,
            post_points=settings.post_reward_points,
            reply_points=settings.reply_reward_points,
            windowed_points=settings.windowed_reward_points,
        ),
        target_handle=settings.x_target_handle,
        required_phrase=settings.x_required_phrase,
        audit_repository=SqlAlchemyAuditRepository(session_factory),
        window_hours=settings.scan_window_hours,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one leaderboard scan pass.")
    parser.add_argument(
        "--window-hours",
        type=int,
        default=None,
        help="scan window in hours (defaults to SCAN_WINDOW_HOURS)",
    )
    parser.add_argument(
        "--rebuild-leaderboard",
        action="store_true",
        help="recompute leaderboard points from score events before scanning",
    )
    return parser.parse_args(argv)


async def run_scanner(
    *,
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    window_hours: int | None = None,
    rebuild_leaderboard: bool = False,
    x_transport: XHttpTransportPort | None = None,
) -> ScanSummary:
    """Optionally repair cached points, then run one scan pass."""

    if rebuild_leaderboard:
        rebuilt = await SqlAlchemyScoreLedger(session_factory).rebuild_points()
        logger.info("scanner_leaderboard_rebuilt rows=%s", rebuilt)

    service = build_scan_service(
        settings=settings,
        session_factory=session_factory,
        x_transport=x_transport,
    )
    return await service.run_once(window_hours=window_hours)


async def _run(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    settings = load_settings()
    configure_logging(level=settings.log_level)
    logger.info("scanner_starting window_hours=%s", args.window_hours or settings.scan_window_hours)

    await run_scanner(
        settings=settings,
        session_factory=create_session_factory(settings.database_url),
        window_hours=args.window_hours,
        rebuild_leaderboard=args.rebuild_leaderboard,
    )


def main() -> None:
    """Run one scan pass and exit."""

    asyncio.run(_run())


if __name__ == "__main__":
    main()
