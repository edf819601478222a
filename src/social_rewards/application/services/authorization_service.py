"""OAuth2 PKCE authorization: begin, state consumption and code completion."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from social_rewards.application.errors import (
    InvalidRequestError,
    StateMismatchError,
    StorageUnavailableError,
    UpstreamUnavailableError,
)
from social_rewards.application.ports.audit_repository_port import (
    AuditEventCreateInput,
    AuditRepositoryPort,
)
from social_rewards.application.ports.credential_store_port import Credential
from social_rewards.application.ports.identity_repository_port import (
    IdentityRecord,
    IdentityRepositoryPort,
    IdentityUpsertInput,
)
from social_rewards.application.ports.pending_auth_store_port import (
    PendingAuth,
    PendingAuthStorePort,
)
from social_rewards.application.ports.signed_value_port import SignedValueCodecPort
from social_rewards.application.ports.x_api_port import XApiClientPort, XApiError
from social_rewards.application.services.token_manager import TokenManager
from social_rewards.domain.pkce import (
    CODE_CHALLENGE_METHOD,
    derive_code_challenge,
    generate_code_verifier,
    generate_state,
)
from social_rewards.domain.subject_keys import normalize_subject_key
from social_rewards.infrastructure.x.http_client import build_authorization_url

NowCallable = Callable[[], datetime]
logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True)
class AuthorizationStart:
    """Data the client needs to leave for X and come back."""

    state: str
    authorization_url: str
    fallback_token: str
    expires_at: datetime


@dataclass(frozen=True)
class CompletedAuthorization:
    """Outcome of a successful callback."""

    subject_key: str
    credential: Credential
    carried_token: str
    identity: IdentityRecord | None
    identity_error: str | None = None


class AuthorizationService:
    """Drive the authorization-code flow with PKCE for one subject at a time."""

    def __init__(
        self,
        *,
        pending_auths: PendingAuthStorePort,
        signed_values: SignedValueCodecPort,
        x_client: XApiClientPort,
        token_manager: TokenManager,
        identities: IdentityRepositoryPort,
        client_id: str,
        redirect_uri: str,
        authorize_url: str,
        audit_repository: AuditRepositoryPort | None = None,
        state_ttl_seconds: int = 300,
        now: NowCallable = _utc_now,
    ) -> None:
        self._pending_auths = pending_auths
        self._signed_values = signed_values
        self._x_client = x_client
        self._token_manager = token_manager
        self._identities = identities
        self._client_id = client_id
        self._redirect_uri = redirect_uri
        self._authorize_url = authorize_url
        self._audit_repository = audit_repository
        self._state_ttl = timedelta(seconds=state_ttl_seconds)
        self._now = now

    async def begin(self, *, subject_key: str) -> AuthorizationStart:
        """Create a pending attempt and the authorization URL bound to it."""

        try:
            normalized = normalize_subject_key(subject_key=subject_key)
        except ValueError as error:
            raise InvalidRequestError(str(error)) from error

        now = self._now()
        pending = PendingAuth(
            state=generate_state(),
            code_verifier=generate_code_verifier(),
            subject_key=normalized,
            created_at=now,
            expires_at=now + self._state_ttl,
        )
        try:
            await self._pending_auths.save(pending)
        except StorageUnavailableError:
            logger.warning("pending_auth_save_failed subject_key=%s", normalized)

        fallback_token = self._signed_values.encode(
            {
                "state": pending.state,
                "code_verifier": pending.code_verifier,
                "subject_key": pending.subject_key,
                "issued_at": int(now.timestamp()),
            },
            expires_at=pending.expires_at,
        )
        authorization_url = build_authorization_url(
            authorize_url=self._authorize_url,
            client_id=self._client_id,
            redirect_uri=self._redirect_uri,
            state=pending.state,
            code_challenge=derive_code_challenge(pending.code_verifier),
            code_challenge_method=CODE_CHALLENGE_METHOD,
        )
        logger.info("authorization_started subject_key=%s", normalized)
        return AuthorizationStart(
            state=pending.state,
            authorization_url=authorization_url,
            fallback_token=fallback_token,
            expires_at=pending.expires_at,
        )

    async def consume(self, *, state: str, fallback_token: str | None = None) -> PendingAuth:
        """Retire the attempt for state exactly once.

        The store is authoritative. The signed fallback is consulted only when
        the store has no live entry, and is itself accepted once.
        """

        if not state.strip():
            raise InvalidRequestError("state is required")

        now = self._now()
        try:
            pending = await self._pending_auths.consume(state=state, now=now)
        except StorageUnavailableError:
            logger.warning("pending_auth_consume_failed")
            pending = None
        if pending is not None:
            return pending

        pending = self._decode_fallback(state=state, value=fallback_token, now=now)
        if pending is None:
            logger.warning("pending_auth_state_mismatch")
            raise StateMismatchError("authorization state is unknown, expired or already used")

        inserted = await self._pending_auths.insert_consumed_if_absent(pending)
        if not inserted:
            logger.warning("pending_auth_fallback_replayed subject_key=%s", pending.subject_key)
            raise StateMismatchError("authorization state is unknown, expired or already used")

        logger.info("pending_auth_fallback_used subject_key=%s", pending.subject_key)
        await self._audit(
            event_type="pending_auth_fallback_used",
            subject_key=pending.subject_key,
            payload={},
        )
        return pending

    async def complete(
        self,
        *,
        code: str,
        state: str,
        fallback_token: str | None = None,
    ) -> CompletedAuthorization:
        """Consume state, exchange the code and link the X identity to the subject."""

        if not code.strip():
            raise InvalidRequestError("code is required")

        pending = await self.consume(state=state, fallback_token=fallback_token)
        try:
            tokens = await self._x_client.exchange_code(
                code=code,
                code_verifier=pending.code_verifier,
                redirect_uri=self._redirect_uri,
            )
        except XApiError as error:
            logger.warning(
                "authorization_code_exchange_failed subject_key=%s failure=%s",
                pending.subject_key,
                error.failure,
            )
            await self._audit(
                event_type="authorization_code_exchange_failed",
                subject_key=pending.subject_key,
                payload={"failure": error.failure.value},
            )
            raise UpstreamUnavailableError(
                f"authorization code exchange failed: {error.failure}"
            ) from error

        credential = Credential(
            subject_key=pending.subject_key,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=tokens.expires_at,
        )
        await self._token_manager.save(credential)

        identity, identity_error = await self._link_identity(credential)
        await self._audit(
            event_type="authorization_completed",
            subject_key=pending.subject_key,
            external_user_id=identity.external_user_id if identity is not None else None,
            payload={"identity_error": identity_error},
        )
        logger.info(
            "authorization_completed subject_key=%s identity_resolved=%s",
            pending.subject_key,
            identity is not None,
        )
        return CompletedAuthorization(
            subject_key=pending.subject_key,
            credential=credential,
            carried_token=self._token_manager.issue_carried_token(credential),
            identity=identity,
            identity_error=identity_error,
        )

    async def _link_identity(
        self,
        credential: Credential,
    ) -> tuple[IdentityRecord | None, str | None]:
        try:
            user = await self._x_client.current_user(access_token=credential.access_token)
        except XApiError as error:
            logger.warning(
                "identity_resolution_failed subject_key=%s failure=%s",
                credential.subject_key,
                error.failure,
            )
            return None, error.failure.value

        try:
            identity = await self._identities.upsert(
                IdentityUpsertInput(
                    subject_key=credential.subject_key,
                    external_user_id=user.id,
                    handle=user.username,
                    display_name=user.name,
                )
            )
        except StorageUnavailableError:
            return None, "storage_unavailable"
        return identity, None

    def _decode_fallback(
        self,
        *,
        state: str,
        value: str | None,
        now: datetime,
    ) -> PendingAuth | None:
        if not value:
            return None
        payload = self._signed_values.decode(value, now=now)
        if payload is None or payload.get("state") != state:
            return None

        code_verifier = payload.get("code_verifier")
        subject_key = payload.get("subject_key")
        issued_at = payload.get("issued_at")
        if not isinstance(code_verifier, str) or not isinstance(subject_key, str):
            return None
        if not isinstance(issued_at, int):
            return None

        created_at = datetime.fromtimestamp(issued_at, tz=UTC)
        return PendingAuth(
            state=state,
            code_verifier=code_verifier,
            subject_key=subject_key,
            created_at=created_at,
            expires_at=created_at + self._state_ttl,
        )

    async def _audit(
        self,
        *,
        event_type: str,
        subject_key: str,
        payload: dict[str, Any],
        external_user_id: str | None = None,
    ) -> None:
        if self._audit_repository is None:
            return
        try:
            await self._audit_repository.append_event(
                AuditEventCreateInput(
                    event_type=event_type,
                    subject_key=subject_key,
                    external_user_id=external_user_id,
                    payload=payload,
                )
            )
        except StorageUnavailableError:
            logger.warning("audit_append_skipped event_type=%s", event_type)
