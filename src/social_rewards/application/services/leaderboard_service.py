"""Leaderboard reads: ranked pages and per-user standing."""

from __future__ import annotations

from dataclasses import dataclass

from social_rewards.application.errors import InvalidRequestError
from social_rewards.application.ports.identity_repository_port import IdentityRepositoryPort
from social_rewards.application.ports.leaderboard_repository_port import (
    LeaderboardRepositoryPort,
    LeaderboardStanding,
)
from social_rewards.domain.subject_keys import normalize_handle, normalize_subject_key

DEFAULT_PAGE_LIMIT = 100
MAX_PAGE_LIMIT = 200


@dataclass(frozen=True)
class RankedRow:
    """Leaderboard row with its absolute rank."""

    rank: int
    external_user_id: str
    handle: str | None
    points: int


@dataclass(frozen=True)
class LeaderboardPage:
    """One page of ranked rows; next_offset is set only after a full page."""

    rows: list[RankedRow]
    limit: int
    offset: int
    next_offset: int | None


class LeaderboardService:
    """Read-only projection over leaderboard entries."""

    def __init__(
        self,
        *,
        leaderboard: LeaderboardRepositoryPort,
        identities: IdentityRepositoryPort,
    ) -> None:
        self._leaderboard = leaderboard
        self._identities = identities

    async def page(self, *, limit: int | None = None, offset: int = 0) -> LeaderboardPage:
        """Return rows ranked offset+1.. with limit clamped to 1..200."""

        effective_limit = DEFAULT_PAGE_LIMIT if limit is None else limit
        effective_limit = max(1, min(effective_limit, MAX_PAGE_LIMIT))
        effective_offset = max(offset, 0)

        rows = await self._leaderboard.list_page(limit=effective_limit, offset=effective_offset)
        ranked = [
            RankedRow(
                rank=effective_offset + index + 1,
                external_user_id=row.external_user_id,
                handle=row.handle,
                points=row.points,
            )
            for index, row in enumerate(rows)
        ]
        next_offset = effective_offset + effective_limit if len(rows) == effective_limit else None
        return LeaderboardPage(
            rows=ranked,
            limit=effective_limit,
            offset=effective_offset,
            next_offset=next_offset,
        )

    async def me(self, *, external_user_id: str) -> LeaderboardStanding | None:
        return await self._leaderboard.get_standing(external_user_id=external_user_id)

    async def me_by_handle(self, *, handle: str) -> LeaderboardStanding | None:
        """Resolve standing from an X handle, with or without the leading `@`."""

        try:
            normalized = normalize_handle(handle=handle)
        except ValueError as error:
            raise InvalidRequestError(str(error)) from error
        identity = await self._identities.get_by_handle(handle=normalized)
        if identity is None:
            return None
        return await self.me(external_user_id=identity.external_user_id)

    async def me_by_subject(self, *, subject_key: str) -> LeaderboardStanding | None:
        """Resolve standing from the subject linked to an identity."""

        try:
            normalized = normalize_subject_key(subject_key=subject_key)
        except ValueError as error:
            raise InvalidRequestError(str(error)) from error
        identity = await self._identities.get_latest_for_subject(subject_key=normalized)
        if identity is None:
            return None
        return await self.me(external_user_id=identity.external_user_id)
