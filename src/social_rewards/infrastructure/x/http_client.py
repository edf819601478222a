"""Concrete X API v2 adapter for OAuth token grants, user lookups and post searches."""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Protocol
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from social_rewards.application.ports.x_api_port import (
    OAuthTokens,
    XApiError,
    XAuthError,
    XMalformedResponseError,
    XPost,
    XRateLimitedError,
    XUpstreamError,
    XUser,
)
from social_rewards.domain.subject_keys import normalize_handle

NowCallable = Callable[[], datetime]
logger = logging.getLogger(__name__)

OAUTH_SCOPES = ("tweet.read", "users.read", "follows.read", "offline.access")
_FOLLOWING_PAGE_SIZE = 1000
_POSTS_PAGE_SIZE = 100
_SEARCH_MAX_RESULTS = 10


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True)
class XHttpResponse:
    """Normalized HTTP response data returned by transport implementations."""

    status_code: int
    body_bytes: bytes


class XHttpTransportPort(Protocol):
    """Transport protocol used by the X HTTP adapter."""

    async def request(
        self,
        *,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes | None,
        timeout_seconds: float,
    ) -> XHttpResponse:
        """Execute one HTTP request and return normalized response data."""


class UrllibXHttpTransport:
    """urllib-based async transport implementation for X HTTP calls."""

    async def request(
        self,
        *,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes | None,
        timeout_seconds: float,
    ) -> XHttpResponse:
        """Execute HTTP request in a worker thread and normalize HTTP errors."""

        return await asyncio.to_thread(
            self._request_sync,
            method=method,
            url=url,
            headers=headers,
            body=body,
            timeout_seconds=timeout_seconds,
        )

    def _request_sync(
        self,
        *,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes | None,
        timeout_seconds: float,
    ) -> XHttpResponse:
        request = Request(url=url, data=body, headers=headers, method=method)
        try:
            with urlopen(request, timeout=timeout_seconds) as response:
                status_code = int(response.getcode())
                payload = response.read()
                return XHttpResponse(status_code=status_code, body_bytes=payload)
        except HTTPError as error:
            payload = error.read()
            return XHttpResponse(status_code=int(error.code), body_bytes=payload)
        except (URLError, TimeoutError) as error:
            raise XUpstreamError(f"transport connection failure: {error}") from error


def build_authorization_url(
    *,
    authorize_url: str,
    client_id: str,
    redirect_uri: str,
    state: str,
    code_challenge: str,
    code_challenge_method: str = "S256",
) -> str:
    """Build the user-facing X authorization URL for one PKCE attempt."""

    params = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "scope": " ".join(OAUTH_SCOPES),
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": code_challenge_method,
    }
    return f"{authorize_url}?{urlencode(params, quote_via=quote)}"


class XApiClient:
    """X API v2 adapter implementing the verification core's outbound operations."""

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str | None = None,
        app_bearer_token: str | None = None,
        base_url: str = "https://api.x.com",
        transport: XHttpTransportPort | None = None,
        timeout_seconds: float = 20.0,
        now: NowCallable = _utc_now,
    ) -> None:
        client_id_value = client_id.strip()
        if not client_id_value:
            raise ValueError("client_id must be a non-empty string")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

        self._client_id = client_id_value
        self._client_secret = (client_secret or "").strip() or None
        self._app_bearer_token = (app_bearer_token or "").strip() or None
        self._base_url = base_url.rstrip("/")
        self._transport = transport or UrllibXHttpTransport()
        self._timeout_seconds = timeout_seconds
        self._now = now

    async def exchange_code(
        self,
        *,
        code: str,
        code_verifier: str,
        redirect_uri: str,
    ) -> OAuthTokens:
        """Exchange authorization code + PKCE verifier for user tokens."""

        response = await self._token_request(
            operation="exchange_code",
            form={
                "client_id": self._client_id,
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "code_verifier": code_verifier,
            },
        )
        return self._parse_tokens(response=response, operation="exchange_code")

    async def refresh(self, *, refresh_token: str) -> OAuthTokens:
        """Exchange a refresh token for a new access token."""

        response = await self._token_request(
            operation="refresh",
            form={
                "client_id": self._client_id,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            },
        )
        return self._parse_tokens(response=response, operation="refresh")

    async def current_user(self, *, access_token: str) -> XUser:
        """Return the user that owns the access token."""

        response = await self._get_json(
            operation="current_user",
            path="/2/users/me",
            query={"user.fields": "username,name"},
            bearer_token=access_token,
        )
        return _extract_user(response=response, operation="current_user")

    async def user_by_username(self, *, access_token: str, handle: str) -> XUser:
        """Resolve an X handle to its user id."""

        response = await self._get_json(
            operation="user_by_username",
            path=f"/2/users/by/username/{quote(normalize_handle(handle=handle), safe='')}",
            query={"user.fields": "username"},
            bearer_token=access_token,
        )
        return _extract_user(response=response, operation="user_by_username")

    async def is_following(
        self,
        *,
        access_token: str,
        source_id: str,
        target_id: str,
        max_pages: int = 5,
    ) -> bool:
        """Page through source's following list, stopping at the first match or page cap."""

        next_token: str | None = None
        for _ in range(max_pages):
            query = {"max_results": str(_FOLLOWING_PAGE_SIZE), "user.fields": "username"}
            if next_token:
                query["pagination_token"] = next_token
            response = await self._get_json(
                operation="is_following",
                path=f"/2/users/{quote(source_id, safe='')}/following",
                query=query,
                bearer_token=access_token,
            )
            for item in _extract_data_list(response=response, operation="is_following"):
                if str(item.get("id")) == target_id:
                    return True
            next_token = _extract_next_token(response)
            if not next_token:
                break
        return False

    async def find_recent_post(
        self,
        *,
        access_token: str,
        user_id: str,
        phrase: str,
        since: datetime | None = None,
        max_pages: int = 2,
    ) -> XPost | None:
        """Page through user's recent posts for a case-insensitive phrase match."""

        needle = phrase.casefold()
        next_token: str | None = None
        for _ in range(max_pages):
            query = {"max_results": str(_POSTS_PAGE_SIZE), "tweet.fields": "created_at"}
            if since is not None:
                query["start_time"] = _format_rfc3339(since)
            if next_token:
                query["pagination_token"] = next_token
            response = await self._get_json(
                operation="find_recent_post",
                path=f"/2/users/{quote(user_id, safe='')}/tweets",
                query=query,
                bearer_token=access_token,
            )
            for item in _extract_data_list(response=response, operation="find_recent_post"):
                post = _to_post(item=item, operation="find_recent_post")
                if needle in post.text.casefold() and _is_on_or_after(post, since):
                    return post
            next_token = _extract_next_token(response)
            if not next_token:
                break
        return None

    async def search_recent_posts(
        self,
        *,
        query: str,
        since: datetime | None = None,
        max_results: int = _SEARCH_MAX_RESULTS,
    ) -> list[XPost]:
        """Run an app-only recent search and return matching posts."""

        if self._app_bearer_token is None:
            raise XAuthError("search_recent_posts requires an app bearer token")

        params = {
            "query": query,
            "tweet.fields": "author_id,created_at,conversation_id",
            "max_results": str(max(10, min(max_results, 100))),
        }
        if since is not None:
            params["start_time"] = _format_rfc3339(since)
        response = await self._get_json(
            operation="search_recent_posts",
            path="/2/tweets/search/recent",
            query=params,
            bearer_token=self._app_bearer_token,
        )
        return [
            _to_post(item=item, operation="search_recent_posts")
            for item in _extract_data_list(response=response, operation="search_recent_posts")
        ]

    async def find_phrase_post(
        self,
        *,
        handle: str,
        phrase: str,
        since: datetime | None = None,
    ) -> XPost | None:
        """Return the newest original post of handle containing phrase."""

        posts = await self.search_recent_posts(
            query=f"from:{handle} {_search_term(phrase)} -is:retweet",
            since=since,
        )
        needle = phrase.casefold()
        for post in posts:
            if needle in post.text.casefold() and _is_on_or_after(post, since):
                return post
        return None

    async def find_tagged_phrase_post(
        self,
        *,
        handle: str,
        target_handle: str,
        phrase: str,
        since: datetime | None = None,
    ) -> XPost | None:
        """Return the newest phrase post of handle that mentions target_handle."""

        target_handle = normalize_handle(handle=target_handle)
        posts = await self.search_recent_posts(
            query=f"from:{handle} @{target_handle} {_search_term(phrase)} -is:retweet",
            since=since,
        )
        needle = phrase.casefold()
        mention = f"@{target_handle}".casefold()
        for post in posts:
            text = post.text.casefold()
            if needle in text and mention in text and _is_on_or_after(post, since):
                return post
        return None

    async def find_reply_to_post(
        self,
        *,
        handle: str,
        post_id: str,
        phrase: str,
    ) -> XPost | None:
        """Return a phrase reply from handle inside the conversation of post_id."""

        posts = await self.search_recent_posts(
            query=f"conversation_id:{post_id} from:{handle} {_search_term(phrase)}",
        )
        needle = phrase.casefold()
        for post in posts:
            if needle in post.text.casefold():
                return post
        return None

    async def _token_request(
        self,
        *,
        operation: str,
        form: dict[str, str],
    ) -> dict[str, object]:
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        if self._client_secret is not None:
            basic = base64.b64encode(
                f"{self._client_id}:{self._client_secret}".encode()
            ).decode("ascii")
            headers["Authorization"] = f"Basic {basic}"
        return await self._request_json(
            operation=operation,
            method="POST",
            url=f"{self._base_url}/2/oauth2/token",
            headers=headers,
            body=urlencode(form).encode("utf-8"),
        )

    async def _get_json(
        self,
        *,
        operation: str,
        path: str,
        query: dict[str, str],
        bearer_token: str,
    ) -> dict[str, object]:
        url = f"{self._base_url}{path}"
        if query:
            url = f"{url}?{urlencode(query)}"
        return await self._request_json(
            operation=operation,
            method="GET",
            url=url,
            headers={"Authorization": f"Bearer {bearer_token}"},
            body=None,
        )

    async def _request_json(
        self,
        *,
        operation: str,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes | None,
    ) -> dict[str, object]:
        try:
            response = await self._transport.request(
                method=method,
                url=url,
                headers=headers,
                body=body,
                timeout_seconds=self._timeout_seconds,
            )
        except XApiError:
            raise
        except Exception as error:  # noqa: BLE001
            raise XUpstreamError(f"{operation} transport failure") from error

        if response.status_code < 200 or response.status_code >= 300:
            raise _classify_failure(
                operation=operation,
                status_code=response.status_code,
                details=_decode_error_payload(response.body_bytes),
            )

        try:
            decoded = json.loads(response.body_bytes.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as error:
            raise XMalformedResponseError(f"{operation} returned invalid JSON payload") from error
        if not isinstance(decoded, dict):
            raise XMalformedResponseError(f"{operation} returned non-object JSON payload")
        return decoded

    def _parse_tokens(self, *, response: dict[str, object], operation: str) -> OAuthTokens:
        access_token = response.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise XMalformedResponseError(f"{operation} response missing access_token")

        refresh_token = response.get("refresh_token")
        expires_in = response.get("expires_in")
        expires_at = None
        if isinstance(expires_in, int | float) and expires_in > 0:
            expires_at = self._now() + timedelta(seconds=float(expires_in))
        scope = response.get("scope")
        return OAuthTokens(
            access_token=access_token,
            refresh_token=(
                refresh_token if isinstance(refresh_token, str) and refresh_token else None
            ),
            expires_at=expires_at,
            scope=scope if isinstance(scope, str) else None,
        )


def _classify_failure(*, operation: str, status_code: int, details: str) -> XApiError:
    message = f"{operation} failed with status {status_code}: {details}"
    if status_code in (401, 403):
        return XAuthError(message, status_code=status_code)
    if status_code == 429:
        return XRateLimitedError(message, status_code=status_code)
    return XUpstreamError(message, status_code=status_code)


def _extract_user(*, response: dict[str, object], operation: str) -> XUser:
    data = response.get("data")
    if not isinstance(data, dict):
        raise XMalformedResponseError(f"{operation} response missing data object")
    user_id = data.get("id")
    username = data.get("username")
    if not isinstance(user_id, str) or not user_id:
        raise XMalformedResponseError(f"{operation} response missing user id")
    if not isinstance(username, str) or not username:
        raise XMalformedResponseError(f"{operation} response missing username")
    name = data.get("name")
    return XUser(id=user_id, username=username, name=name if isinstance(name, str) else None)


def _extract_data_list(*, response: dict[str, object], operation: str) -> list[dict[str, object]]:
    data = response.get("data")
    if data is None:
        return []
    if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
        raise XMalformedResponseError(f"{operation} response data is not a list of objects")
    return data


def _extract_next_token(response: dict[str, object]) -> str | None:
    meta = response.get("meta")
    if not isinstance(meta, dict):
        return None
    next_token = meta.get("next_token")
    return next_token if isinstance(next_token, str) and next_token else None


def _to_post(*, item: dict[str, object], operation: str) -> XPost:
    post_id = item.get("id")
    if not isinstance(post_id, str) or not post_id:
        raise XMalformedResponseError(f"{operation} post missing id")
    text = item.get("text")
    author_id = item.get("author_id")
    return XPost(
        id=post_id,
        text=text if isinstance(text, str) else "",
        created_at=_parse_timestamp(item.get("created_at")),
        author_id=author_id if isinstance(author_id, str) else None,
    )


def _parse_timestamp(value: object) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("x_api_unparseable_timestamp value=%s", value)
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed


def _is_on_or_after(post: XPost, since: datetime | None) -> bool:
    if since is None or post.created_at is None:
        return True
    return post.created_at >= since


def _format_rfc3339(value: datetime) -> str:
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def _search_term(phrase: str) -> str:
    cleaned = phrase.strip().replace('"', "")
    if any(character.isspace() for character in cleaned):
        return f'"{cleaned}"'
    return cleaned


def _decode_error_payload(payload: bytes) -> str:
    if not payload:
        return "empty response body"
    try:
        decoded = payload.decode("utf-8")
    except UnicodeDecodeError:
        return "<binary>"
    return decoded[:200]
