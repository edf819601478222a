"""Translation of application errors into HTTP errors."""

from __future__ import annotations

from fastapi import HTTPException

from social_rewards.application.errors import (
    InvalidRequestError,
    NotConnectedError,
    SocialRewardsError,
    StateMismatchError,
    StorageUnavailableError,
    UnauthorizedError,
    UpstreamUnavailableError,
)

_STATUS_BY_ERROR: tuple[tuple[type[SocialRewardsError], int], ...] = (
    (InvalidRequestError, 400),
    (StateMismatchError, 400),
    (UnauthorizedError, 401),
    (NotConnectedError, 409),
    (UpstreamUnavailableError, 502),
    (StorageUnavailableError, 503),
)


def to_http_exception(error: SocialRewardsError) -> HTTPException:
    """Map one application error to its HTTP status; unknown kinds become 500."""

    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=500, detail="internal error")
