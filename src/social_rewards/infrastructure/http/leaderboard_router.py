"""FastAPI router for leaderboard pages and per-user standing."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query

from social_rewards.application.dto.api_models import (
    LeaderboardPageResponse,
    LeaderboardRowResponse,
    StandingResponse,
)
from social_rewards.application.errors import SocialRewardsError
from social_rewards.application.services.leaderboard_service import LeaderboardService
from social_rewards.infrastructure.http.errors import to_http_exception
from social_rewards.infrastructure.http.presenters import standing_response


def build_leaderboard_router(*, leaderboard_service: LeaderboardService) -> APIRouter:
    """Build router exposing leaderboard endpoints."""

    router = APIRouter(tags=["leaderboard"])

    @router.get("/leaderboard", response_model=LeaderboardPageResponse)
    async def leaderboard_page(
        limit: int | None = Query(default=None),
        offset: int = Query(default=0),
    ) -> LeaderboardPageResponse:
        try:
            page = await leaderboard_service.page(limit=limit, offset=offset)
        except SocialRewardsError as exc:
            raise to_http_exception(exc) from exc

        return LeaderboardPageResponse(
            rows=[
                LeaderboardRowResponse(
                    rank=row.rank,
                    external_user_id=row.external_user_id,
                    handle=row.handle,
                    points=row.points,
                )
                for row in page.rows
            ],
            limit=page.limit,
            offset=page.offset,
            next_offset=page.next_offset,
        )

    @router.get("/leaderboard/me", response_model=StandingResponse)
    async def leaderboard_me(
        handle: str | None = None,
        subject_key: str | None = None,
    ) -> StandingResponse:
        try:
            if handle is not None:
                standing = await leaderboard_service.me_by_handle(handle=handle)
            elif subject_key is not None:
                standing = await leaderboard_service.me_by_subject(subject_key=subject_key)
            else:
                raise HTTPException(status_code=400, detail="handle or subject_key is required")
        except SocialRewardsError as exc:
            raise to_http_exception(exc) from exc

        response = standing_response(standing)
        if response is None:
            raise HTTPException(status_code=404, detail="user not on leaderboard")
        return response

    return router
