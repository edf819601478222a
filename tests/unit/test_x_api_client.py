from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs, urlsplit

import pytest

from social_rewards.application.ports.x_api_port import (
    XAuthError,
    XFailureKind,
    XMalformedResponseError,
    XRateLimitedError,
    XUpstreamError,
)
from social_rewards.infrastructure.x.http_client import (
    XApiClient,
    XHttpResponse,
    build_authorization_url,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@dataclass
class _QueuedTransport:
    responses: list[XHttpResponse]
    error: Exception | None = None

    def __post_init__(self) -> None:
        self.calls: list[dict[str, object]] = []

    async def request(
        self,
        *,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes | None,
        timeout_seconds: float,
    ) -> XHttpResponse:
        self.calls.append(
            {
                "method": method,
                "url": url,
                "headers": headers,
                "body": body,
                "timeout_seconds": timeout_seconds,
            }
        )
        if self.error is not None:
            raise self.error
        return self.responses.pop(0)


def _json(status_code: int, payload: object) -> XHttpResponse:
    return XHttpResponse(status_code=status_code, body_bytes=json.dumps(payload).encode("utf-8"))


def _post(post_id: str, text: str, created_at: str) -> dict[str, str]:
    return {"id": post_id, "text": text, "created_at": created_at}


def _query(call: dict[str, object]) -> dict[str, list[str]]:
    return parse_qs(urlsplit(str(call["url"])).query)


def _client(transport: _QueuedTransport, **kwargs: object) -> XApiClient:
    return XApiClient(
        client_id="client-id",
        transport=transport,
        timeout_seconds=7.5,
        now=lambda: NOW,
        **kwargs,  # type: ignore[arg-type]
    )


def test_authorization_url_carries_pkce_parameters_and_scopes() -> None:
    url = build_authorization_url(
        authorize_url="https://x.com/i/oauth2/authorize",
        client_id="client-id",
        redirect_uri="https://app.example.org/auth/x/callback",
        state="state-1",
        code_challenge="challenge-1",
    )

    parts = urlsplit(url)
    query = parse_qs(parts.query)
    assert f"{parts.scheme}://{parts.netloc}{parts.path}" == "https://x.com/i/oauth2/authorize"
    assert query == {
        "response_type": ["code"],
        "client_id": ["client-id"],
        "redirect_uri": ["https://app.example.org/auth/x/callback"],
        "scope": ["tweet.read users.read follows.read offline.access"],
        "state": ["state-1"],
        "code_challenge": ["challenge-1"],
        "code_challenge_method": ["S256"],
    }
    assert "+" not in parts.query


@pytest.mark.asyncio
async def test_exchange_code_posts_form_with_basic_auth_and_computes_expiry() -> None:
    transport = _QueuedTransport(
        responses=[
            _json(
                200,
                {
                    "access_token": "access-1",
                    "refresh_token": "refresh-1",
                    "expires_in": 7200,
                    "scope": "tweet.read users.read",
                },
            )
        ]
    )
    client = _client(transport, client_secret="client-secret")

    tokens = await client.exchange_code(
        code="code-1",
        code_verifier="verifier-1",
        redirect_uri="https://app.example.org/auth/x/callback",
    )

    assert tokens.access_token == "access-1"
    assert tokens.refresh_token == "refresh-1"
    assert tokens.expires_at == NOW + timedelta(seconds=7200)
    call = transport.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == "https://api.x.com/2/oauth2/token"
    assert call["timeout_seconds"] == 7.5
    headers = call["headers"]
    assert isinstance(headers, dict)
    assert headers["Content-Type"] == "application/x-www-form-urlencoded"
    expected_basic = base64.b64encode(b"client-id:client-secret").decode("ascii")
    assert headers["Authorization"] == f"Basic {expected_basic}"
    form = parse_qs((call["body"] or b"").decode("utf-8"))
    assert form == {
        "client_id": ["client-id"],
        "grant_type": ["authorization_code"],
        "code": ["code-1"],
        "redirect_uri": ["https://app.example.org/auth/x/callback"],
        "code_verifier": ["verifier-1"],
    }


@pytest.mark.asyncio
async def test_refresh_without_client_secret_sends_no_authorization_header() -> None:
    transport = _QueuedTransport(responses=[_json(200, {"access_token": "access-2"})])
    client = _client(transport)

    tokens = await client.refresh(refresh_token="refresh-1")

    assert tokens.access_token == "access-2"
    assert tokens.refresh_token is None
    assert tokens.expires_at is None
    headers = transport.calls[0]["headers"]
    assert isinstance(headers, dict)
    assert "Authorization" not in headers
    form = parse_qs((transport.calls[0]["body"] or b"").decode("utf-8"))
    assert form["grant_type"] == ["refresh_token"]
    assert form["refresh_token"] == ["refresh-1"]


@pytest.mark.asyncio
async def test_token_response_without_access_token_is_malformed() -> None:
    transport = _QueuedTransport(responses=[_json(200, {"token_type": "bearer"})])

    with pytest.raises(XMalformedResponseError) as error:
        await _client(transport).refresh(refresh_token="refresh-1")

    assert error.value.failure is XFailureKind.MALFORMED_RESPONSE


@pytest.mark.asyncio
async def test_current_user_uses_bearer_token_and_parses_profile() -> None:
    transport = _QueuedTransport(
        responses=[_json(200, {"data": {"id": "42", "username": "alice", "name": "Alice"}})]
    )

    user = await _client(transport).current_user(access_token="access-1")

    assert (user.id, user.username, user.name) == ("42", "alice", "Alice")
    call = transport.calls[0]
    assert str(call["url"]).startswith("https://api.x.com/2/users/me?")
    headers = call["headers"]
    assert isinstance(headers, dict)
    assert headers["Authorization"] == "Bearer access-1"


@pytest.mark.asyncio
async def test_is_following_pages_until_target_is_found() -> None:
    transport = _QueuedTransport(
        responses=[
            _json(200, {"data": [{"id": "1"}, {"id": "2"}], "meta": {"next_token": "page-2"}}),
            _json(200, {"data": [{"id": "99"}], "meta": {"next_token": "page-3"}}),
        ]
    )

    following = await _client(transport).is_following(
        access_token="access-1",
        source_id="42",
        target_id="99",
    )

    assert following is True
    assert len(transport.calls) == 2
    assert "pagination_token" not in _query(transport.calls[0])
    assert _query(transport.calls[1])["pagination_token"] == ["page-2"]
    assert _query(transport.calls[0])["max_results"] == ["1000"]
    assert urlsplit(str(transport.calls[0]["url"])).path == "/2/users/42/following"


@pytest.mark.asyncio
async def test_is_following_stops_at_page_cap() -> None:
    transport = _QueuedTransport(
        responses=[
            _json(200, {"data": [{"id": "1"}], "meta": {"next_token": "page-2"}}),
            _json(200, {"data": [{"id": "2"}], "meta": {"next_token": "page-3"}}),
        ]
    )

    following = await _client(transport).is_following(
        access_token="access-1",
        source_id="42",
        target_id="99",
        max_pages=2,
    )

    assert following is False
    assert len(transport.calls) == 2


@pytest.mark.asyncio
async def test_find_recent_post_matches_phrase_case_insensitively_after_since() -> None:
    since = NOW - timedelta(hours=12)
    transport = _QueuedTransport(
        responses=[
            _json(
                200,
                {
                    "data": [
                        _post("p1", "ribbit long ago", "2026-02-01T00:00:00Z"),
                        _post("p2", "nothing here", "2026-03-01T10:00:00Z"),
                        _post("p3", "Big RiBbIt today", "2026-03-01T11:00:00Z"),
                    ]
                },
            )
        ]
    )

    post = await _client(transport).find_recent_post(
        access_token="access-1",
        user_id="42",
        phrase="RIBBIT",
        since=since,
    )

    assert post is not None
    assert post.id == "p3"
    assert post.created_at == datetime(2026, 3, 1, 11, 0, tzinfo=UTC)
    query = _query(transport.calls[0])
    assert query["start_time"] == ["2026-03-01T00:00:00Z"]
    assert query["max_results"] == ["100"]


@pytest.mark.asyncio
async def test_find_recent_post_returns_none_when_no_posts() -> None:
    transport = _QueuedTransport(responses=[_json(200, {"meta": {"result_count": 0}})])

    post = await _client(transport).find_recent_post(
        access_token="access-1",
        user_id="42",
        phrase="RIBBIT",
    )

    assert post is None


@pytest.mark.asyncio
async def test_search_requires_app_bearer_token() -> None:
    transport = _QueuedTransport(responses=[])

    with pytest.raises(XAuthError):
        await _client(transport).find_phrase_post(handle="alice", phrase="RIBBIT")

    assert transport.calls == []


@pytest.mark.asyncio
async def test_find_tagged_phrase_post_requires_mention_in_text() -> None:
    transport = _QueuedTransport(
        responses=[
            _json(
                200,
                {
                    "data": [
                        {"id": "p1", "text": "RIBBIT without tag"},
                        {"id": "p2", "text": "RIBBIT with @JoinFroggys"},
                    ]
                },
            )
        ]
    )
    client = _client(transport, app_bearer_token="app-token")

    post = await client.find_tagged_phrase_post(
        handle="alice",
        target_handle="joinfroggys",
        phrase="RIBBIT",
    )

    assert post is not None
    assert post.id == "p2"
    call = transport.calls[0]
    headers = call["headers"]
    assert isinstance(headers, dict)
    assert headers["Authorization"] == "Bearer app-token"
    assert urlsplit(str(call["url"])).path == "/2/tweets/search/recent"
    assert _query(call)["query"] == ["from:alice @joinfroggys RIBBIT -is:retweet"]


@pytest.mark.asyncio
async def test_find_reply_to_post_searches_conversation() -> None:
    transport = _QueuedTransport(
        responses=[_json(200, {"data": [{"id": "r1", "text": "ribbit!"}]})]
    )
    client = _client(transport, app_bearer_token="app-token")

    reply = await client.find_reply_to_post(handle="alice", post_id="777", phrase="RIBBIT")

    assert reply is not None
    assert reply.id == "r1"
    assert _query(transport.calls[0])["query"] == ["conversation_id:777 from:alice RIBBIT"]


@pytest.mark.parametrize(
    ("status_code", "error_type", "failure"),
    [
        (401, XAuthError, XFailureKind.AUTH_ERROR),
        (403, XAuthError, XFailureKind.AUTH_ERROR),
        (429, XRateLimitedError, XFailureKind.RATE_LIMITED),
        (500, XUpstreamError, XFailureKind.UPSTREAM_ERROR),
        (404, XUpstreamError, XFailureKind.UPSTREAM_ERROR),
    ],
)
@pytest.mark.asyncio
async def test_non_success_statuses_are_classified(
    status_code: int,
    error_type: type[Exception],
    failure: XFailureKind,
) -> None:
    transport = _QueuedTransport(responses=[_json(status_code, {"title": "nope"})])

    with pytest.raises(error_type) as error:
        await _client(transport).current_user(access_token="access-1")

    assert getattr(error.value, "failure") is failure
    assert getattr(error.value, "status_code") == status_code


@pytest.mark.asyncio
async def test_invalid_json_body_is_malformed_response() -> None:
    transport = _QueuedTransport(responses=[XHttpResponse(status_code=200, body_bytes=b"<html>")])

    with pytest.raises(XMalformedResponseError):
        await _client(transport).current_user(access_token="access-1")


@pytest.mark.asyncio
async def test_transport_exception_is_upstream_error() -> None:
    transport = _QueuedTransport(responses=[], error=TimeoutError("timed out"))

    with pytest.raises(XUpstreamError) as error:
        await _client(transport).current_user(access_token="access-1")

    assert error.value.failure is XFailureKind.UPSTREAM_ERROR


def test_client_rejects_blank_client_id() -> None:
    with pytest.raises(ValueError):
        XApiClient(client_id=" ")


@pytest.mark.asyncio
async def test_target_handle_with_at_prefix_is_searched_and_matched_once() -> None:
    transport = _QueuedTransport(
        responses=[_json(200, {"data": [{"id": "p2", "text": "RIBBIT @JoinFroggys"}]})]
    )
    client = _client(transport, app_bearer_token="app-token")

    post = await client.find_tagged_phrase_post(
        handle="alice",
        target_handle="@JoinFroggys",
        phrase="RIBBIT",
    )

    assert post is not None
    assert post.id == "p2"
    assert _query(transport.calls[0])["query"] == ["from:alice @JoinFroggys RIBBIT -is:retweet"]
