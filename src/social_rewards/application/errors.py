"""Application error taxonomy shared by services and inbound adapters."""

from __future__ import annotations


class SocialRewardsError(Exception):
    """Base class for expected application failures."""


class InvalidRequestError(SocialRewardsError, ValueError):
    """Raised for missing or malformed caller input."""


class UnauthorizedError(SocialRewardsError, PermissionError):
    """Raised when a privileged credential is missing or invalid."""


class NotConnectedError(SocialRewardsError):
    """Raised when a subject has no X credential on file."""


class UpstreamUnavailableError(SocialRewardsError):
    """Raised when the X API fails, times out or rate-limits a required call."""


class StorageUnavailableError(SocialRewardsError):
    """Raised when a persistence operation fails."""


class StateMismatchError(SocialRewardsError):
    """Raised when an authorization state is absent, expired or already used."""


class LeaderboardRowMissingError(SocialRewardsError):
    """Raised when an award is attempted before the leaderboard row exists."""
