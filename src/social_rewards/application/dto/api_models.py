"""Pydantic request and response models for the HTTP API."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from social_rewards.application.services.token_manager import CredentialStatus
from social_rewards.application.services.verification_service import (
    AwardStatus,
    VerificationStatus,
)
from social_rewards.domain.score_kinds import ScoreKind


class StrictModel(BaseModel):
    """Base model with strict unknown-field rejection."""

    model_config = ConfigDict(extra="forbid")


class SubjectRequest(StrictModel):
    """Body carrying the wallet address acting as subject."""

    subject_key: str = Field(min_length=1, max_length=100)


class AuthorizationStartResponse(StrictModel):
    """Where to send the user and which state to expect back."""

    state: str
    authorization_url: str
    expires_at: datetime


class IdentityResponse(StrictModel):
    """Linked X identity."""

    external_user_id: str
    handle: str
    display_name: str | None
    is_verified: bool
    verified_at: datetime | None


class VerificationResponse(StrictModel):
    """Result of one verification pass with per-check errors and per-kind awards."""

    status: VerificationStatus
    subject_key: str
    credential_status: CredentialStatus
    identity: IdentityResponse | None
    identity_error: str | None
    followed_target: bool
    posted_required_phrase: bool
    matched_post_id: str | None
    replied_to_target_post: bool | None
    points: int = Field(ge=0)
    follow_error: str | None
    post_error: str | None
    reply_error: str | None
    record_id: int | None
    record_error: str | None
    awards: dict[ScoreKind, AwardStatus]
    verified_at: datetime | None


class AuthorizationCallbackResponse(StrictModel):
    """Callback result: linked identity plus the verification that followed."""

    subject_key: str
    identity: IdentityResponse | None
    identity_error: str | None
    verification: VerificationResponse | None
    verification_error: str | None = None


class VerificationRecordResponse(StrictModel):
    """Latest stored verification pass."""

    id: int
    external_user_id: str
    handle: str
    followed_target: bool
    posted_required_phrase: bool
    matched_post_id: str | None
    points: int
    follow_error: str | None
    post_error: str | None
    verified_at: datetime


class StandingResponse(StrictModel):
    """Points and rank of one leaderboard user."""

    external_user_id: str
    handle: str | None
    points: int
    rank: int = Field(ge=1)
    last_scan_at: datetime | None


class SubjectStatusResponse(StrictModel):
    """Connection, verification and leaderboard snapshot of one subject."""

    subject_key: str
    connected: bool
    identity: IdentityResponse | None
    latest_verification: VerificationRecordResponse | None
    standing: StandingResponse | None


class LeaderboardRowResponse(StrictModel):
    """One ranked leaderboard row."""

    rank: int = Field(ge=1)
    external_user_id: str
    handle: str | None
    points: int


class LeaderboardPageResponse(StrictModel):
    """Ranked page; next_offset is null after a short page."""

    rows: list[LeaderboardRowResponse]
    limit: int = Field(ge=1)
    offset: int = Field(ge=0)
    next_offset: int | None


class ScanSummaryResponse(StrictModel):
    """Counts for one scan pass."""

    scanned: int = Field(ge=0)
    updated: int = Field(ge=0)
    errors: int = Field(ge=0)
    window_hours: int = Field(ge=1)
    started_at: datetime


class HealthResponse(StrictModel):
    status: Literal["ok"] = "ok"
