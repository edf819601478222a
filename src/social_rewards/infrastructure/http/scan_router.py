"""FastAPI router for the externally triggered scan."""

from __future__ import annotations

from fastapi import APIRouter, Query, Request

from social_rewards.application.dto.api_models import ScanSummaryResponse
from social_rewards.application.errors import SocialRewardsError
from social_rewards.application.services.scan_service import ScanService
from social_rewards.infrastructure.http.errors import to_http_exception
from social_rewards.infrastructure.http.scan_guard import ScanTriggerGuard


def build_scan_router(*, scan_service: ScanService, scan_guard: ScanTriggerGuard) -> APIRouter:
    """Build router exposing the secret-guarded scan trigger."""

    router = APIRouter(tags=["scan"])

    @router.post("/scan/run", response_model=ScanSummaryResponse)
    async def run_scan(
        request: Request,
        window_hours: int | None = Query(default=None, ge=1),
    ) -> ScanSummaryResponse:
        try:
            scan_guard.require(
                scan_secret_header=request.headers.get("x-scan-secret"),
                cron_secret_header=request.headers.get("x-cron-secret"),
                authorization_header=request.headers.get("authorization"),
            )
            summary = await scan_service.run_once(window_hours=window_hours)
        except SocialRewardsError as exc:
            raise to_http_exception(exc) from exc

        return ScanSummaryResponse(
            scanned=summary.scanned,
            updated=summary.updated,
            errors=summary.errors,
            window_hours=summary.window_hours,
            started_at=summary.started_at,
        )

    return router
