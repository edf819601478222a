"""Read model of one subject's connection, verification and standing."""

from __future__ import annotations

from dataclasses import dataclass

from social_rewards.application.errors import InvalidRequestError
from social_rewards.application.ports.identity_repository_port import (
    IdentityRecord,
    IdentityRepositoryPort,
)
from social_rewards.application.ports.leaderboard_repository_port import (
    LeaderboardRepositoryPort,
    LeaderboardStanding,
)
from social_rewards.application.ports.verification_record_repository_port import (
    VerificationRecord,
    VerificationRecordRepositoryPort,
)
from social_rewards.application.services.token_manager import TokenManager
from social_rewards.domain.subject_keys import normalize_subject_key


@dataclass(frozen=True)
class SubjectStatus:
    """Connection flag plus the latest persisted state for a subject."""

    subject_key: str
    connected: bool
    identity: IdentityRecord | None
    latest_verification: VerificationRecord | None
    standing: LeaderboardStanding | None


class SubjectStatusService:
    """Assemble subject status from credential, identity, history and leaderboard."""

    def __init__(
        self,
        *,
        token_manager: TokenManager,
        identities: IdentityRepositoryPort,
        verification_records: VerificationRecordRepositoryPort,
        leaderboard: LeaderboardRepositoryPort,
    ) -> None:
        self._token_manager = token_manager
        self._identities = identities
        self._verification_records = verification_records
        self._leaderboard = leaderboard

    async def status(self, *, subject_key: str, carried_token: str | None = None) -> SubjectStatus:
        try:
            normalized = normalize_subject_key(subject_key=subject_key)
        except ValueError as error:
            raise InvalidRequestError(str(error)) from error

        credential = await self._token_manager.get(
            subject_key=normalized,
            carried_token=carried_token,
        )
        identity = await self._identities.get_latest_for_subject(subject_key=normalized)
        latest = await self._verification_records.get_latest(subject_key=normalized)
        standing = None
        if identity is not None:
            standing = await self._leaderboard.get_standing(
                external_user_id=identity.external_user_id
            )
        return SubjectStatus(
            subject_key=normalized,
            connected=credential is not None,
            identity=identity,
            latest_verification=latest,
            standing=standing,
        )
