"""Periodic re-scan of verified identities for windowed phrase posts."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

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
)
from social_rewards.application.ports.leaderboard_repository_port import LeaderboardRepositoryPort
from social_rewards.application.ports.score_ledger_port import AwardRequest, ScoreLedgerPort
from social_rewards.application.ports.x_api_port import XApiClientPort, XApiError, XPost
from social_rewards.domain.reward_policy import RewardPolicy
from social_rewards.domain.score_kinds import ScoreKind
from social_rewards.domain.subject_keys import normalize_handle

NowCallable = Callable[[], datetime]
logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True)
class ScanSummary:
    """Counts for one scan pass.

    `updated` counts accepted awards, so one identity can add up to two.
    """

    scanned: int
    updated: int
    errors: int
    window_hours: int
    started_at: datetime


class ScanService:
    """Award windowed kinds to every verified identity, at most once per window."""

    def __init__(
        self,
        *,
        identities: IdentityRepositoryPort,
        ledger: ScoreLedgerPort,
        leaderboard: LeaderboardRepositoryPort,
        x_client: XApiClientPort,
        policy: RewardPolicy,
        target_handle: str,
        required_phrase: str,
        audit_repository: AuditRepositoryPort | None = None,
        window_hours: int = 12,
        now: NowCallable = _utc_now,
    ) -> None:
        self._identities = identities
        self._ledger = ledger
        self._leaderboard = leaderboard
        self._x_client = x_client
        self._policy = policy
        self._target_handle = normalize_handle(handle=target_handle)
        self._required_phrase = required_phrase
        self._audit_repository = audit_repository
        self._window_hours = window_hours
        self._now = now

    async def run_once(self, *, window_hours: int | None = None) -> ScanSummary:
        """Scan every verified identity once; per-identity failures are counted."""

        hours = self._window_hours if window_hours is None else window_hours
        if hours <= 0:
            raise InvalidRequestError("window_hours must be positive")

        started_at = self._now()
        since = started_at - timedelta(hours=hours)
        identities = await self._identities.list_verified()

        updated = 0
        errors = 0
        for identity in identities:
            try:
                accepted = await self._scan_identity(identity=identity, since=since)
            except (XApiError, StorageUnavailableError, LeaderboardRowMissingError) as error:
                errors += 1
                logger.warning(
                    "scan_identity_failed external_user_id=%s error=%s",
                    identity.external_user_id,
                    error,
                )
                continue
            updated += accepted

        summary = ScanSummary(
            scanned=len(identities),
            updated=updated,
            errors=errors,
            window_hours=hours,
            started_at=started_at,
        )
        logger.info(
            "scan_completed scanned=%s updated=%s errors=%s window_hours=%s",
            summary.scanned,
            summary.updated,
            summary.errors,
            hours,
        )
        await self._audit_summary(summary)
        return summary

    async def _scan_identity(self, *, identity: IdentityRecord, since: datetime) -> int:
        await self._ledger.ensure_row(external_user_id=identity.external_user_id)

        phrase_post = await self._x_client.find_phrase_post(
            handle=identity.handle,
            phrase=self._required_phrase,
            since=since,
        )
        tagged_post = await self._x_client.find_tagged_phrase_post(
            handle=identity.handle,
            target_handle=self._target_handle,
            phrase=self._required_phrase,
            since=since,
        )

        last_ribbit_at = await self._award_post(
            identity=identity,
            kind=ScoreKind.RIBBIT,
            post=phrase_post,
            since=since,
        )
        last_ribbit_tag_at = await self._award_post(
            identity=identity,
            kind=ScoreKind.RIBBIT_TAG,
            post=tagged_post,
            since=since,
        )
        await self._leaderboard.mark_scan(
            external_user_id=identity.external_user_id,
            scanned_at=self._now(),
            last_ribbit_at=last_ribbit_at,
            last_ribbit_tag_at=last_ribbit_tag_at,
        )
        return sum(1 for at in (last_ribbit_at, last_ribbit_tag_at) if at is not None)

    async def _award_post(
        self,
        *,
        identity: IdentityRecord,
        kind: ScoreKind,
        post: XPost | None,
        since: datetime,
    ) -> datetime | None:
        """Award kind for post and return the post time when accepted."""

        if post is None:
            return None
        result = await self._ledger.award(
            AwardRequest(
                external_user_id=identity.external_user_id,
                kind=kind,
                delta=self._policy.windowed_points,
                evidence_ref=post.id,
                notes="scan",
                since=since,
            )
        )
        if not result.accepted:
            return None
        return post.created_at or self._now()

    async def _audit_summary(self, summary: ScanSummary) -> None:
        if self._audit_repository is None:
            return
        try:
            await self._audit_repository.append_event(
                AuditEventCreateInput(
                    event_type="scan_completed",
                    payload={
                        "scanned": summary.scanned,
                        "updated": summary.updated,
                        "errors": summary.errors,
                        "window_hours": summary.window_hours,
                    },
                )
            )
        except StorageUnavailableError:
            logger.warning("audit_append_skipped event_type=scan_completed")
