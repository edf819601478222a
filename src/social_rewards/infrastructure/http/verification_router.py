"""FastAPI router for verification recheck and subject status endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request, Response

from social_rewards.application.dto.api_models import (
    SubjectRequest,
    SubjectStatusResponse,
    VerificationResponse,
)
from social_rewards.application.errors import NotConnectedError, SocialRewardsError
from social_rewards.application.services.subject_status_service import SubjectStatusService
from social_rewards.application.services.verification_service import (
    VerificationService,
    VerificationStatus,
)
from social_rewards.infrastructure.http.cookies import CREDENTIAL_COOKIE_NAME, CookiePolicy
from social_rewards.infrastructure.http.errors import to_http_exception
from social_rewards.infrastructure.http.presenters import (
    identity_response,
    standing_response,
    verification_record_response,
    verification_response,
)


def build_verification_router(
    *,
    verification_service: VerificationService,
    status_service: SubjectStatusService,
    cookie_policy: CookiePolicy,
) -> APIRouter:
    """Build router exposing recheck and status endpoints."""

    router = APIRouter(tags=["verification"])

    @router.post("/verify/recheck", response_model=VerificationResponse)
    async def recheck(
        request: Request,
        response: Response,
        payload: SubjectRequest,
    ) -> VerificationResponse:
        try:
            outcome = await verification_service.verify(
                subject_key=payload.subject_key,
                carried_token=request.cookies.get(CREDENTIAL_COOKIE_NAME),
            )
            if outcome.status is VerificationStatus.NOT_CONNECTED:
                raise NotConnectedError("subject is not connected to X")
        except SocialRewardsError as exc:
            raise to_http_exception(exc) from exc

        # A refresh rotates the refresh token; the client copy must follow.
        if outcome.refreshed_carried_token is not None:
            cookie_policy.set_credential(response, outcome.refreshed_carried_token)
        return verification_response(outcome)

    @router.get("/subjects/{subject_key}/status", response_model=SubjectStatusResponse)
    async def subject_status(request: Request, subject_key: str) -> SubjectStatusResponse:
        try:
            status = await status_service.status(
                subject_key=subject_key,
                carried_token=request.cookies.get(CREDENTIAL_COOKIE_NAME),
            )
        except SocialRewardsError as exc:
            raise to_http_exception(exc) from exc

        return SubjectStatusResponse(
            subject_key=status.subject_key,
            connected=status.connected,
            identity=identity_response(status.identity),
            latest_verification=verification_record_response(status.latest_verification),
            standing=standing_response(status.standing),
        )

    return router
