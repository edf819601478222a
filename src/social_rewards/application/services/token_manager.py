"""Credential lookup, persistence and silent refresh for subjects."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any

from social_rewards.application.errors import StorageUnavailableError
from social_rewards.application.ports.audit_repository_port import (
    AuditEventCreateInput,
    AuditRepositoryPort,
)
from social_rewards.application.ports.credential_store_port import (
    Credential,
    CredentialStorePort,
)
from social_rewards.application.ports.signed_value_port import SignedValueCodecPort
from social_rewards.application.ports.x_api_port import XApiClientPort, XApiError

NowCallable = Callable[[], datetime]
logger = logging.getLogger(__name__)

REFRESH_MARGIN = timedelta(seconds=60)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class CredentialStatus(StrEnum):
    """Freshness of the credential handed to callers."""

    FRESH = "fresh"
    REFRESHED = "refreshed"
    MISSING = "missing"
    REFRESH_FAILED = "refresh_failed"


@dataclass(frozen=True)
class FreshCredential:
    """Credential lookup result with its freshness status."""

    status: CredentialStatus
    credential: Credential | None = None


class TokenManager:
    """Sole owner of subject credentials.

    Lookup walks ``tiers`` in order and then the signed credential carried by
    the client. The first hit is written back into every tier ahead of it.
    """

    def __init__(
        self,
        *,
        tiers: Sequence[CredentialStorePort],
        x_client: XApiClientPort,
        signed_values: SignedValueCodecPort,
        audit_repository: AuditRepositoryPort | None = None,
        carried_token_max_age_seconds: int = 7 * 24 * 60 * 60,
        now: NowCallable = _utc_now,
    ) -> None:
        if not tiers:
            raise ValueError("at least one credential tier is required")
        self._tiers = tuple(tiers)
        self._x_client = x_client
        self._signed_values = signed_values
        self._audit_repository = audit_repository
        self._carried_token_max_age = timedelta(seconds=carried_token_max_age_seconds)
        self._now = now

    async def get(
        self,
        *,
        subject_key: str,
        carried_token: str | None = None,
    ) -> Credential | None:
        """Return the first credential found across tiers, then the carried token."""

        for index, tier in enumerate(self._tiers):
            try:
                credential = await tier.find(subject_key=subject_key)
            except StorageUnavailableError:
                logger.warning(
                    "credential_tier_unavailable tier=%s subject_key=%s",
                    tier.name,
                    subject_key,
                )
                continue
            if credential is not None:
                await self._repopulate(credential, tiers=self._tiers[:index])
                return credential

        credential = self._decode_carried_token(subject_key=subject_key, value=carried_token)
        if credential is None:
            return None
        logger.info("credential_restored_from_carried_token subject_key=%s", subject_key)
        await self._repopulate(credential, tiers=self._tiers)
        return credential

    async def save(self, credential: Credential) -> None:
        """Write credential to every tier; raises only when no tier accepted it."""

        failed: list[str] = []
        for tier in self._tiers:
            try:
                await tier.save(credential)
            except StorageUnavailableError:
                failed.append(tier.name)

        if len(failed) == len(self._tiers):
            raise StorageUnavailableError("credential could not be stored in any tier")
        if failed:
            logger.warning(
                "credential_save_degraded subject_key=%s failed_tiers=%s",
                credential.subject_key,
                ",".join(failed),
            )
            await self._audit(
                event_type="credential_save_degraded",
                subject_key=credential.subject_key,
                payload={"failed_tiers": failed},
            )

    async def ensure_fresh(
        self,
        *,
        subject_key: str,
        carried_token: str | None = None,
    ) -> FreshCredential:
        """Return a usable credential, refreshing it when close to expiry."""

        credential = await self.get(subject_key=subject_key, carried_token=carried_token)
        if credential is None:
            return FreshCredential(status=CredentialStatus.MISSING)
        refresh_token = credential.refresh_token
        if refresh_token is None or not self._needs_refresh(credential):
            return FreshCredential(status=CredentialStatus.FRESH, credential=credential)

        try:
            tokens = await self._x_client.refresh(refresh_token=refresh_token)
        except XApiError as error:
            logger.warning(
                "credential_refresh_failed subject_key=%s failure=%s",
                subject_key,
                error.failure,
            )
            await self._audit(
                event_type="credential_refresh_failed",
                subject_key=subject_key,
                payload={"failure": error.failure.value},
            )
            return FreshCredential(status=CredentialStatus.REFRESH_FAILED, credential=credential)

        refreshed = Credential(
            subject_key=subject_key,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token or refresh_token,
            expires_at=tokens.expires_at,
        )
        await self.save(refreshed)
        logger.info("credential_refreshed subject_key=%s", subject_key)
        return FreshCredential(status=CredentialStatus.REFRESHED, credential=refreshed)

    def issue_carried_token(self, credential: Credential) -> str:
        """Return the signed credential value handed to the client."""

        return self._signed_values.encode(
            {
                "subject_key": credential.subject_key,
                "access_token": credential.access_token,
                "refresh_token": credential.refresh_token,
                "expires_at": (
                    int(credential.expires_at.timestamp())
                    if credential.expires_at is not None
                    else None
                ),
            },
            expires_at=self._now() + self._carried_token_max_age,
        )

    def _needs_refresh(self, credential: Credential) -> bool:
        if credential.expires_at is None:
            return False
        return credential.expires_at - self._now() <= REFRESH_MARGIN

    def _decode_carried_token(self, *, subject_key: str, value: str | None) -> Credential | None:
        if not value:
            return None
        payload = self._signed_values.decode(value, now=self._now())
        if payload is None or payload.get("subject_key") != subject_key:
            return None

        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token")
        expires_at = payload.get("expires_at")
        if not isinstance(access_token, str) or not access_token:
            return None
        if refresh_token is not None and not isinstance(refresh_token, str):
            return None
        if expires_at is not None and not isinstance(expires_at, int):
            return None

        return Credential(
            subject_key=subject_key,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=(
                datetime.fromtimestamp(expires_at, tz=UTC) if expires_at is not None else None
            ),
        )

    async def _repopulate(
        self,
        credential: Credential,
        *,
        tiers: Sequence[CredentialStorePort],
    ) -> None:
        for tier in tiers:
            try:
                await tier.save(credential)
            except StorageUnavailableError:
                logger.warning(
                    "credential_repopulate_failed tier=%s subject_key=%s",
                    tier.name,
                    credential.subject_key,
                )

    async def _audit(
        self,
        *,
        event_type: str,
        subject_key: str,
        payload: dict[str, Any],
    ) -> None:
        if self._audit_repository is None:
            return
        try:
            await self._audit_repository.append_event(
                AuditEventCreateInput(
                    event_type=event_type,
                    subject_key=subject_key,
                    payload=payload,
                )
            )
        except StorageUnavailableError:
            logger.warning("audit_append_skipped event_type=%s", event_type)
