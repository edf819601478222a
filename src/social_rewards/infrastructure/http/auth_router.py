"""FastAPI router for the X authorization start and callback endpoints."""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response

from social_rewards.application.dto.api_models import (
    AuthorizationCallbackResponse,
    AuthorizationStartResponse,
    SubjectRequest,
)
from social_rewards.application.errors import SocialRewardsError
from social_rewards.application.services.authorization_service import (
    AuthorizationService,
    AuthorizationStart,
)
from social_rewards.application.services.verification_service import VerificationService
from social_rewards.infrastructure.http.cookies import PKCE_COOKIE_NAME, CookiePolicy
from social_rewards.infrastructure.http.errors import to_http_exception
from social_rewards.infrastructure.http.presenters import (
    identity_response,
    verification_response,
)

logger = logging.getLogger(__name__)


def build_auth_router(
    *,
    authorization_service: AuthorizationService,
    verification_service: VerificationService,
    cookie_policy: CookiePolicy,
    post_auth_redirect_url: str | None = None,
) -> APIRouter:
    """Build router exposing the PKCE start and callback endpoints."""

    router = APIRouter(tags=["auth"])

    async def _begin(subject_key: str) -> AuthorizationStart:
        try:
            return await authorization_service.begin(subject_key=subject_key)
        except SocialRewardsError as exc:
            raise to_http_exception(exc) from exc

    @router.post("/auth/x/start", response_model=AuthorizationStartResponse)
    async def start_authorization(payload: SubjectRequest) -> Response:
        start = await _begin(payload.subject_key)
        body = AuthorizationStartResponse(
            state=start.state,
            authorization_url=start.authorization_url,
            expires_at=start.expires_at,
        )
        response = JSONResponse(content=body.model_dump(mode="json"))
        cookie_policy.set_pkce(response, start.fallback_token)
        return response

    @router.get("/auth/x/start")
    async def start_authorization_redirect(
        subject_key: str = Query(min_length=1, max_length=100),
    ) -> Response:
        start = await _begin(subject_key)
        response = RedirectResponse(url=start.authorization_url, status_code=302)
        cookie_policy.set_pkce(response, start.fallback_token)
        return response

    @router.get("/auth/x/callback", response_model=AuthorizationCallbackResponse)
    async def authorization_callback(
        request: Request,
        code: str | None = None,
        state: str | None = None,
        error: str | None = None,
    ) -> Response:
        if error is not None:
            logger.info("authorization_denied error=%s", error)
            return _failure_response(
                status_code=400,
                reason=error,
                cookie_policy=cookie_policy,
                post_auth_redirect_url=post_auth_redirect_url,
            )
        if not code or not state:
            raise HTTPException(status_code=400, detail="code and state are required")

        try:
            completed = await authorization_service.complete(
                code=code,
                state=state,
                fallback_token=request.cookies.get(PKCE_COOKIE_NAME),
            )
        except SocialRewardsError as exc:
            http_error = to_http_exception(exc)
            return _failure_response(
                status_code=http_error.status_code,
                reason=str(http_error.detail),
                cookie_policy=cookie_policy,
                post_auth_redirect_url=post_auth_redirect_url,
            )

        verification = None
        verification_error = None
        carried_token = completed.carried_token
        try:
            outcome = await verification_service.verify(
                subject_key=completed.subject_key,
                carried_token=completed.carried_token,
            )
            verification = verification_response(outcome)
            if outcome.refreshed_carried_token is not None:
                carried_token = outcome.refreshed_carried_token
        except SocialRewardsError as exc:
            logger.warning(
                "post_authorization_verification_failed subject_key=%s error=%s",
                completed.subject_key,
                exc,
            )
            verification_error = str(exc)

        response: Response
        if post_auth_redirect_url is not None:
            query = urlencode({"x_auth": "connected", "subject_key": completed.subject_key})
            response = RedirectResponse(url=f"{post_auth_redirect_url}?{query}", status_code=302)
        else:
            body = AuthorizationCallbackResponse(
                subject_key=completed.subject_key,
                identity=identity_response(completed.identity),
                identity_error=completed.identity_error,
                verification=verification,
                verification_error=verification_error,
            )
            response = JSONResponse(content=body.model_dump(mode="json"))
        cookie_policy.clear_pkce(response)
        cookie_policy.set_credential(response, carried_token)
        return response

    return router


def _failure_response(
    *,
    status_code: int,
    reason: str,
    cookie_policy: CookiePolicy,
    post_auth_redirect_url: str | None,
) -> Response:
    response: Response
    if post_auth_redirect_url is not None:
        query = urlencode({"x_auth": "error", "reason": reason})
        response = RedirectResponse(url=f"{post_auth_redirect_url}?{query}", status_code=302)
    else:
        response = JSONResponse(status_code=status_code, content={"detail": reason})
    cookie_policy.clear_pkce(response)
    return response
