"""Port and failure taxonomy for the X (Twitter) API client."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Protocol


class XFailureKind(StrEnum):
    """Classified X API failure reasons."""

    AUTH_ERROR = "auth_error"
    RATE_LIMITED = "rate_limited"
    UPSTREAM_ERROR = "upstream_error"
    MALFORMED_RESPONSE = "malformed_response"


class XApiError(RuntimeError):
    """Raised for normalized X API failures."""

    failure = XFailureKind.UPSTREAM_ERROR

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class XAuthError(XApiError):
    """Raised on 401/403 or when a required token is not configured."""

    failure = XFailureKind.AUTH_ERROR


class XRateLimitedError(XApiError):
    """Raised on 429 responses."""

    failure = XFailureKind.RATE_LIMITED


class XUpstreamError(XApiError):
    """Raised on 5xx, other non-2xx statuses, timeouts and transport failures."""

    failure = XFailureKind.UPSTREAM_ERROR


class XMalformedResponseError(XApiError):
    """Raised when a response body is not the expected JSON shape."""

    failure = XFailureKind.MALFORMED_RESPONSE


@dataclass(frozen=True)
class OAuthTokens:
    """Tokens returned by the code or refresh grant."""

    access_token: str
    refresh_token: str | None
    expires_at: datetime | None
    scope: str | None = None


@dataclass(frozen=True)
class XUser:
    """Minimal X user profile."""

    id: str
    username: str
    name: str | None = None


@dataclass(frozen=True)
class XPost:
    """Minimal X post."""

    id: str
    text: str
    created_at: datetime | None = None
    author_id: str | None = None


class XApiClientPort(Protocol):
    """Operations the verification core needs from X."""

    async def exchange_code(
        self,
        *,
        code: str,
        code_verifier: str,
        redirect_uri: str,
    ) -> OAuthTokens:
        """Exchange an authorization code for tokens."""

    async def refresh(self, *, refresh_token: str) -> OAuthTokens:
        """Exchange a refresh token for new tokens."""

    async def current_user(self, *, access_token: str) -> XUser:
        """Return the user owning the access token."""

    async def user_by_username(self, *, access_token: str, handle: str) -> XUser:
        """Resolve a handle to a user."""

    async def is_following(
        self,
        *,
        access_token: str,
        source_id: str,
        target_id: str,
        max_pages: int = 5,
    ) -> bool:
        """Return whether source follows target within the page cap."""

    async def find_recent_post(
        self,
        *,
        access_token: str,
        user_id: str,
        phrase: str,
        since: datetime | None = None,
        max_pages: int = 2,
    ) -> XPost | None:
        """Return the first recent post of user containing phrase."""

    async def find_phrase_post(
        self,
        *,
        handle: str,
        phrase: str,
        since: datetime | None = None,
    ) -> XPost | None:
        """App-only search for a recent original post of handle containing phrase."""

    async def find_tagged_phrase_post(
        self,
        *,
        handle: str,
        target_handle: str,
        phrase: str,
        since: datetime | None = None,
    ) -> XPost | None:
        """App-only search for a phrase post of handle that also mentions target."""

    async def find_reply_to_post(
        self,
        *,
        handle: str,
        post_id: str,
        phrase: str,
    ) -> XPost | None:
        """App-only search for a phrase reply of handle in the conversation of post."""
