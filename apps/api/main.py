"""api entrypoint and HTTP route wiring."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import uvicorn
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from social_rewards.application.dto.api_models import HealthResponse
from social_rewards.application.ports.pending_auth_store_port import PendingAuthStorePort
from social_rewards.application.services.authorization_service import AuthorizationService
from social_rewards.application.services.leaderboard_service import LeaderboardService
from social_rewards.application.services.pending_auth_sweeper import PendingAuthSweeper
from social_rewards.application.services.scan_service import ScanService
from social_rewards.application.services.subject_status_service import SubjectStatusService
from social_rewards.application.services.token_manager import TokenManager
from social_rewards.application.services.verification_service import VerificationService
from social_rewards.config.settings import Settings, load_settings
from social_rewards.domain.reward_policy import RewardPolicy
from social_rewards.infrastructure.db.audit_repository import SqlAlchemyAuditRepository
from social_rewards.infrastructure.db.credential_repository import SqlAlchemyCredentialStore
from social_rewards.infrastructure.db.identity_repository import SqlAlchemyIdentityRepository
from social_rewards.infrastructure.db.leaderboard_repository import (
    SqlAlchemyLeaderboardRepository,
)
from social_rewards.infrastructure.db.pending_auth_repository import SqlAlchemyPendingAuthStore
from social_rewards.infrastructure.db.score_ledger_repository import SqlAlchemyScoreLedger
from social_rewards.infrastructure.db.session import create_session_factory
from social_rewards.infrastructure.db.verification_record_repository import (
    SqlAlchemyVerificationRecordRepository,
)
from social_rewards.infrastructure.http.auth_router import build_auth_router
from social_rewards.infrastructure.http.cookies import CookiePolicy
from social_rewards.infrastructure.http.leaderboard_router import build_leaderboard_router
from social_rewards.infrastructure.http.scan_guard import ScanTriggerGuard
from social_rewards.infrastructure.http.scan_router import build_scan_router
from social_rewards.infrastructure.http.verification_router import build_verification_router
from social_rewards.infrastructure.logging import configure_logging
from social_rewards.infrastructure.memory.credential_cache import InMemoryCredentialCache
from social_rewards.infrastructure.memory.pending_auth_store import InMemoryPendingAuthStore
from social_rewards.infrastructure.security.signed_values import HmacSignedValueCodec
from social_rewards.infrastructure.x.http_client import XApiClient, XHttpTransportPort

API_HOST = "0.0.0.0"
API_PORT = 8000
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApiRuntimeServices:
    """Composed services served by the api process."""

    authorization_service: AuthorizationService
    verification_service: VerificationService
    leaderboard_service: LeaderboardService
    scan_service: ScanService
    status_service: SubjectStatusService
    sweeper: PendingAuthSweeper | None


def build_pending_auth_store(
    *,
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
) -> PendingAuthStorePort:
    """Select the pending-auth backend named by PENDING_AUTH_STORE."""

    if settings.pending_auth_store == "memory":
        logger.info("pending_auth_store_selected backend=memory")
        return InMemoryPendingAuthStore()
    return SqlAlchemyPendingAuthStore(session_factory)


def build_runtime_services(
    *,
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    x_transport: XHttpTransportPort | None = None,
) -> ApiRuntimeServices:
    """Compose api services using SQLAlchemy repositories and the X HTTP adapter."""

    audit_repository = SqlAlchemyAuditRepository(session_factory)
    identities = SqlAlchemyIdentityRepository(session_factory)
    verification_records = SqlAlchemyVerificationRecordRepository(session_factory)
    ledger = SqlAlchemyScoreLedger(session_factory)
    leaderboard = SqlAlchemyLeaderboardRepository(session_factory)
    pending_auths = build_pending_auth_store(settings=settings, session_factory=session_factory)
    signed_values = HmacSignedValueCodec(secret=settings.signing_secret)
    policy = RewardPolicy(
        follow_points=settings.follow_reward_points,
        post_points=settings.post_reward_points,
        reply_points=settings.reply_reward_points,
        windowed_points=settings.windowed_reward_points,
    )
    x_client = XApiClient(
        client_id=settings.x_client_id,
        client_secret=settings.x_client_secret,
        app_bearer_token=settings.x_bearer_token,
        base_url=str(settings.x_api_base_url),
        transport=x_transport,
        timeout_seconds=settings.x_http_timeout_seconds,
    )
    token_manager = TokenManager(
        tiers=[InMemoryCredentialCache(), SqlAlchemyCredentialStore(session_factory)],
        x_client=x_client,
        signed_values=signed_values,
        audit_repository=audit_repository,
        carried_token_max_age_seconds=settings.credential_cookie_max_age_seconds,
    )

    return ApiRuntimeServices(
        authorization_service=AuthorizationService(
            pending_auths=pending_auths,
            signed_values=signed_values,
            x_client=x_client,
            token_manager=token_manager,
            identities=identities,
            client_id=settings.x_client_id,
            redirect_uri=str(settings.x_redirect_uri),
            authorize_url=str(settings.x_authorize_url),
            audit_repository=audit_repository,
            state_ttl_seconds=settings.pkce_state_ttl_seconds,
        ),
        verification_service=VerificationService(
            token_manager=token_manager,
            x_client=x_client,
            identities=identities,
            verification_records=verification_records,
            ledger=ledger,
            policy=policy,
            target_handle=settings.x_target_handle,
            required_phrase=settings.x_required_phrase,
            target_post_id=settings.x_target_post_id,
            reply_search_enabled=settings.x_bearer_token is not None,
            audit_repository=audit_repository,
        ),
        leaderboard_service=LeaderboardService(leaderboard=leaderboard, identities=identities),
        scan_service=ScanService(
            identities=identities,
            ledger=ledger,
            leaderboard=leaderboard,
            x_client=x_client,
            policy=policy,
            target_handle=settings.x_target_handle,
            required_phrase=settings.x_required_phrase,
            audit_repository=audit_repository,
            window_hours=settings.scan_window_hours,
        ),
        status_service=SubjectStatusService(
            token_manager=token_manager,
            identities=identities,
            verification_records=verification_records,
            leaderboard=leaderboard,
        ),
        sweeper=PendingAuthSweeper(
            store=pending_auths,
            interval_seconds=settings.pkce_sweep_interval_seconds,
        ),
    )


def create_app(
    *,
    settings: Settings | None = None,
    services: ApiRuntimeServices | None = None,
) -> FastAPI:
    """Create FastAPI app for authorization, verification, leaderboard and scan routes."""

    if settings is None:
        settings = load_settings()
        configure_logging(level=settings.log_level)
    if services is None:
        services = build_runtime_services(
            settings=settings,
            session_factory=create_session_factory(settings.database_url),
        )

    cookie_policy = CookiePolicy(
        secure=settings.x_redirect_uri.scheme == "https",
        pkce_max_age_seconds=settings.pkce_state_ttl_seconds,
        credential_max_age_seconds=settings.credential_cookie_max_age_seconds,
    )
    post_auth_redirect_url = (
        str(settings.post_auth_redirect_url)
        if settings.post_auth_redirect_url is not None
        else None
    )
    sweeper = services.sweeper

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if sweeper is None:
            yield
            return

        stop_event = asyncio.Event()
        sweep_task = asyncio.create_task(sweeper.run_until_stopped(stop_event))
        logger.info("pending_auth_sweeper_started")
        try:
            yield
        finally:
            stop_event.set()
            sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweep_task
            logger.info("pending_auth_sweeper_stopped")

    app = FastAPI(lifespan=lifespan)
    app.include_router(
        build_auth_router(
            authorization_service=services.authorization_service,
            verification_service=services.verification_service,
            cookie_policy=cookie_policy,
            post_auth_redirect_url=post_auth_redirect_url,
        )
    )
    app.include_router(
        build_verification_router(
            verification_service=services.verification_service,
            status_service=services.status_service,
            cookie_policy=cookie_policy,
        )
    )
    app.include_router(
        build_leaderboard_router(leaderboard_service=services.leaderboard_service)
    )
    app.include_router(
        build_scan_router(
            scan_service=services.scan_service,
            scan_guard=ScanTriggerGuard(secret=settings.scan_trigger_secret),
        )
    )

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse()

    return app


def run_asgi_server(*, host: str = API_HOST, port: int = API_PORT) -> None:
    """Run api as a long-lived ASGI process using application factory mode."""

    uvicorn.run(
        "apps.api.main:create_app",
        host=host,
        port=port,
        factory=True,
    )


def main() -> None:
    """Run api runtime process."""

    run_asgi_server()


if __name__ == "__main__":
    main()
