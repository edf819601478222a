"""Verification engine: follow and phrase checks turned into ledger awards."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from social_rewards.application.errors import (
    InvalidRequestError,
    LeaderboardRowMissingError,
    StorageUnavailableError,
)
from social_rewards.application.ports.audit_repository_port import (
    AuditEventCreateInput,
    AuditRepositoryPort,
)
from social_rewards.application.ports.identity_repository_port import (
    IdentityRecord,
    IdentityRepositoryPort,
    IdentityUpsertInput,
)
from social_rewards.application.ports.score_ledger_port import AwardRequest, ScoreLedgerPort
from social_rewards.application.ports.verification_record_repository_port import (
    VerificationRecord,
    VerificationRecordCreateInput,
    VerificationRecordRepositoryPort,
)
from social_rewards.application.ports.x_api_port import XApiClientPort, XApiError, XPost
from social_rewards.application.services.token_manager import CredentialStatus, TokenManager
from social_rewards.domain.reward_policy import RewardPolicy
from social_rewards.domain.score_kinds import ScoreKind
from social_rewards.domain.subject_keys import normalize_handle, normalize_subject_key

NowCallable = Callable[[], datetime]
logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class VerificationStatus(StrEnum):
    """Overall result of one verification pass."""

    VERIFIED = "verified"
    INCOMPLETE = "incomplete"
    NOT_CONNECTED = "not_connected"
    IDENTITY_UNRESOLVED = "identity_unresolved"


class AwardStatus(StrEnum):
    """Per-kind award result reported to callers."""

    ACCEPTED = "accepted"
    ALREADY_AWARDED = "already_awarded"
    FAILED = "failed"


@dataclass(frozen=True)
class VerificationOutcome:
    """Everything one verification pass observed and awarded."""

    status: VerificationStatus
    subject_key: str
    credential_status: CredentialStatus
    identity: IdentityRecord | None = None
    identity_error: str | None = None
    followed_target: bool = False
    posted_required_phrase: bool = False
    matched_post_id: str | None = None
    replied_to_target_post: bool | None = None
    points: int = 0
    follow_error: str | None = None
    post_error: str | None = None
    reply_error: str | None = None
    record: VerificationRecord | None = None
    record_error: str | None = None
    awards: dict[ScoreKind, AwardStatus] = field(default_factory=dict)
    verified_at: datetime | None = None
    refreshed_carried_token: str | None = None


class VerificationService:
    """Run the follow and phrase checks for one subject and record the result.

    X failures on either check degrade that check to a negative result with
    the failure kind attached; storage failures after the checks are logged,
    audited and reported per award without failing the pass.
    """

    def __init__(
        self,
        *,
        token_manager: TokenManager,
        x_client: XApiClientPort,
        identities: IdentityRepositoryPort,
        verification_records: VerificationRecordRepositoryPort,
        ledger: ScoreLedgerPort,
        policy: RewardPolicy,
        target_handle: str,
        required_phrase: str,
        target_post_id: str | None = None,
        reply_search_enabled: bool = False,
        audit_repository: AuditRepositoryPort | None = None,
        following_max_pages: int = 5,
        posts_max_pages: int = 2,
        now: NowCallable = _utc_now,
    ) -> None:
        self._token_manager = token_manager
        self._x_client = x_client
        self._identities = identities
        self._verification_records = verification_records
        self._ledger = ledger
        self._policy = policy
        self._target_handle = normalize_handle(handle=target_handle)
        self._required_phrase = required_phrase
        self._reply_post_id = target_post_id if reply_search_enabled else None
        self._audit_repository = audit_repository
        self._following_max_pages = following_max_pages
        self._posts_max_pages = posts_max_pages
        self._now = now
        self._target_user_id: str | None = None

    async def verify(
        self,
        *,
        subject_key: str,
        since: datetime | None = None,
        carried_token: str | None = None,
    ) -> VerificationOutcome:
        """Verify subject and award eligible kinds; never raises on X failures."""

        try:
            subject_key = normalize_subject_key(subject_key=subject_key)
        except ValueError as error:
            raise InvalidRequestError(str(error)) from error

        fresh = await self._token_manager.ensure_fresh(
            subject_key=subject_key,
            carried_token=carried_token,
        )
        if fresh.credential is None:
            logger.info("verification_not_connected subject_key=%s", subject_key)
            return VerificationOutcome(
                status=VerificationStatus.NOT_CONNECTED,
                subject_key=subject_key,
                credential_status=fresh.status,
            )
        access_token = fresh.credential.access_token
        refreshed_carried_token = (
            self._token_manager.issue_carried_token(fresh.credential)
            if fresh.status is CredentialStatus.REFRESHED
            else None
        )

        identity, identity_error = await self._resolve_identity(
            subject_key=subject_key,
            access_token=access_token,
        )
        if identity is None:
            return VerificationOutcome(
                status=VerificationStatus.IDENTITY_UNRESOLVED,
                subject_key=subject_key,
                credential_status=fresh.status,
                identity_error=identity_error,
                refreshed_carried_token=refreshed_carried_token,
            )

        followed_target, follow_error = await self._check_follow(
            access_token=access_token,
            source_id=identity.external_user_id,
        )
        post, post_error = await self._check_post(
            access_token=access_token,
            user_id=identity.external_user_id,
            since=since,
        )
        posted_required_phrase = post is not None
        points = self._policy.verification_points(
            followed_target=followed_target,
            posted_required_phrase=posted_required_phrase,
        )
        verified_at = self._now()

        record: VerificationRecord | None = None
        record_error: str | None = None
        try:
            record = await self._verification_records.append(
                VerificationRecordCreateInput(
                    subject_key=subject_key,
                    external_user_id=identity.external_user_id,
                    handle=identity.handle,
                    followed_target=followed_target,
                    posted_required_phrase=posted_required_phrase,
                    matched_post_id=post.id if post is not None else None,
                    points=points,
                    verified_at=verified_at,
                    follow_error=follow_error,
                    post_error=post_error,
                )
            )
        except StorageUnavailableError:
            record_error = "storage_unavailable"
            await self._audit(
                event_type="verification_record_failed",
                subject_key=subject_key,
                external_user_id=identity.external_user_id,
                payload={"points": points},
            )

        awards: dict[ScoreKind, AwardStatus] = {}
        if followed_target:
            awards[ScoreKind.FOLLOW_OK] = await self._award(
                subject_key=subject_key,
                request=AwardRequest(
                    external_user_id=identity.external_user_id,
                    kind=ScoreKind.FOLLOW_OK,
                    delta=self._policy.follow_points,
                    evidence_ref=self._target_user_id,
                    notes=f"follows @{self._target_handle}",
                ),
            )
        if post is not None:
            awards[ScoreKind.RIBBIT] = await self._award(
                subject_key=subject_key,
                request=AwardRequest(
                    external_user_id=identity.external_user_id,
                    kind=ScoreKind.RIBBIT,
                    delta=self._policy.post_points,
                    evidence_ref=post.id,
                    notes=f"posted {self._required_phrase}",
                    since=since,
                ),
            )

        replied: bool | None = None
        reply_error: str | None = None
        if self._reply_post_id is not None:
            reply, reply_error = await self._check_reply(
                handle=identity.handle,
                post_id=self._reply_post_id,
            )
            replied = reply is not None
            if reply is not None:
                awards[ScoreKind.REPLY_OK] = await self._award(
                    subject_key=subject_key,
                    request=AwardRequest(
                        external_user_id=identity.external_user_id,
                        kind=ScoreKind.REPLY_OK,
                        delta=self._policy.reply_points,
                        evidence_ref=reply.id,
                        notes=f"replied to {self._reply_post_id}",
                    ),
                )

        verified = followed_target and posted_required_phrase
        if verified:
            await self._mark_verified(identity=identity, verified_at=verified_at)

        logger.info(
            (
                "verification_completed subject_key=%s external_user_id=%s "
                "followed=%s posted=%s points=%s follow_error=%s post_error=%s"
            ),
            subject_key,
            identity.external_user_id,
            followed_target,
            posted_required_phrase,
            points,
            follow_error,
            post_error,
        )
        return VerificationOutcome(
            status=VerificationStatus.VERIFIED if verified else VerificationStatus.INCOMPLETE,
            subject_key=subject_key,
            credential_status=fresh.status,
            identity=identity,
            followed_target=followed_target,
            posted_required_phrase=posted_required_phrase,
            matched_post_id=post.id if post is not None else None,
            replied_to_target_post=replied,
            points=points,
            follow_error=follow_error,
            post_error=post_error,
            reply_error=reply_error,
            record=record,
            record_error=record_error,
            awards=awards,
            verified_at=verified_at,
            refreshed_carried_token=refreshed_carried_token,
        )

    async def _resolve_identity(
        self,
        *,
        subject_key: str,
        access_token: str,
    ) -> tuple[IdentityRecord | None, str | None]:
        cached = await self._identities.get_latest_for_subject(subject_key=subject_key)
        if cached is not None:
            return cached, None

        try:
            user = await self._x_client.current_user(access_token=access_token)
        except XApiError as error:
            logger.warning(
                "identity_resolution_failed subject_key=%s failure=%s",
                subject_key,
                error.failure,
            )
            return None, error.failure.value

        identity = await self._identities.upsert(
            IdentityUpsertInput(
                subject_key=subject_key,
                external_user_id=user.id,
                handle=user.username,
                display_name=user.name,
            )
        )
        return identity, None

    async def _check_follow(self, *, access_token: str, source_id: str) -> tuple[bool, str | None]:
        try:
            if self._target_user_id is None:
                target = await self._x_client.user_by_username(
                    access_token=access_token,
                    handle=self._target_handle,
                )
                self._target_user_id = target.id
            following = await self._x_client.is_following(
                access_token=access_token,
                source_id=source_id,
                target_id=self._target_user_id,
                max_pages=self._following_max_pages,
            )
        except XApiError as error:
            logger.warning("follow_check_failed source_id=%s failure=%s", source_id, error.failure)
            return False, error.failure.value
        return following, None

    async def _check_post(
        self,
        *,
        access_token: str,
        user_id: str,
        since: datetime | None,
    ) -> tuple[XPost | None, str | None]:
        try:
            post = await self._x_client.find_recent_post(
                access_token=access_token,
                user_id=user_id,
                phrase=self._required_phrase,
                since=since,
                max_pages=self._posts_max_pages,
            )
        except XApiError as error:
            logger.warning("post_check_failed user_id=%s failure=%s", user_id, error.failure)
            return None, error.failure.value
        return post, None

    async def _check_reply(
        self,
        *,
        handle: str,
        post_id: str,
    ) -> tuple[XPost | None, str | None]:
        try:
            reply = await self._x_client.find_reply_to_post(
                handle=handle,
                post_id=post_id,
                phrase=self._required_phrase,
            )
        except XApiError as error:
            logger.warning("reply_check_failed handle=%s failure=%s", handle, error.failure)
            return None, error.failure.value
        return reply, None

    async def _award(self, *, subject_key: str, request: AwardRequest) -> AwardStatus:
        try:
            await self._ledger.ensure_row(external_user_id=request.external_user_id)
            result = await self._ledger.award(request)
        except (StorageUnavailableError, LeaderboardRowMissingError) as error:
            logger.error(
                "score_award_failed external_user_id=%s kind=%s error=%s",
                request.external_user_id,
                request.kind,
                error,
            )
            await self._audit(
                event_type="score_award_failed",
                subject_key=subject_key,
                external_user_id=request.external_user_id,
                payload={"kind": request.kind.value, "delta": request.delta},
            )
            return AwardStatus.FAILED
        if result.accepted:
            return AwardStatus.ACCEPTED
        return AwardStatus.ALREADY_AWARDED

    async def _mark_verified(self, *, identity: IdentityRecord, verified_at: datetime) -> None:
        try:
            await self._identities.mark_verified(
                external_user_id=identity.external_user_id,
                verified_at=verified_at,
            )
        except StorageUnavailableError:
            await self._audit(
                event_type="identity_mark_verified_failed",
                subject_key=identity.subject_key,
                external_user_id=identity.external_user_id,
                payload={},
            )

    async def _audit(
        self,
        *,
        event_type: str,
        subject_key: str,
        external_user_id: str | None,
        payload: dict[str, Any],
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
