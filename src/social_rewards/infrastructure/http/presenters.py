"""Builders turning service results into API response models."""

from __future__ import annotations

from social_rewards.application.dto.api_models import (
    IdentityResponse,
    StandingResponse,
    VerificationRecordResponse,
    VerificationResponse,
)
from social_rewards.application.ports.identity_repository_port import IdentityRecord
from social_rewards.application.ports.leaderboard_repository_port import LeaderboardStanding
from social_rewards.application.ports.verification_record_repository_port import (
    VerificationRecord,
)
from social_rewards.application.services.verification_service import VerificationOutcome


def identity_response(identity: IdentityRecord | None) -> IdentityResponse | None:
    if identity is None:
        return None
    return IdentityResponse(
        external_user_id=identity.external_user_id,
        handle=identity.handle,
        display_name=identity.display_name,
        is_verified=identity.is_verified,
        verified_at=identity.verified_at,
    )


def verification_response(outcome: VerificationOutcome) -> VerificationResponse:
    return VerificationResponse(
        status=outcome.status,
        subject_key=outcome.subject_key,
        credential_status=outcome.credential_status,
        identity=identity_response(outcome.identity),
        identity_error=outcome.identity_error,
        followed_target=outcome.followed_target,
        posted_required_phrase=outcome.posted_required_phrase,
        matched_post_id=outcome.matched_post_id,
        replied_to_target_post=outcome.replied_to_target_post,
        points=outcome.points,
        follow_error=outcome.follow_error,
        post_error=outcome.post_error,
        reply_error=outcome.reply_error,
        record_id=outcome.record.id if outcome.record is not None else None,
        record_error=outcome.record_error,
        awards=dict(outcome.awards),
        verified_at=outcome.verified_at,
    )


def verification_record_response(
    record: VerificationRecord | None,
) -> VerificationRecordResponse | None:
    if record is None:
        return None
    return VerificationRecordResponse(
        id=record.id,
        external_user_id=record.external_user_id,
        handle=record.handle,
        followed_target=record.followed_target,
        posted_required_phrase=record.posted_required_phrase,
        matched_post_id=record.matched_post_id,
        points=record.points,
        follow_error=record.follow_error,
        post_error=record.post_error,
        verified_at=record.verified_at,
    )


def standing_response(standing: LeaderboardStanding | None) -> StandingResponse | None:
    if standing is None:
        return None
    return StandingResponse(
        external_user_id=standing.external_user_id,
        handle=standing.handle,
        points=standing.points,
        rank=standing.rank,
        last_scan_at=standing.last_scan_at,
    )
