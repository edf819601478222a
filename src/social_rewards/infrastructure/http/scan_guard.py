"""Shared-secret guard for the scan trigger endpoint."""

from __future__ import annotations

import hmac

from social_rewards.application.errors import UnauthorizedError


def extract_bearer_token(authorization_header: str | None) -> str | None:
    """Extract token from `Authorization: Bearer <token>`; None when absent or malformed."""

    if authorization_header is None or not authorization_header.strip():
        return None

    parts = authorization_header.strip().split()
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        return None

    return parts[1]


class ScanTriggerGuard:
    """Accept the scan secret from `X-Scan-Secret`, `X-Cron-Secret` or a bearer token."""

    def __init__(self, *, secret: str) -> None:
        secret_value = secret.strip()
        if not secret_value:
            raise ValueError("scan trigger secret must be a non-empty string")
        self._secret = secret_value

    def require(
        self,
        *,
        scan_secret_header: str | None,
        cron_secret_header: str | None = None,
        authorization_header: str | None = None,
    ) -> None:
        """Raise UnauthorizedError unless one presented value equals the secret."""

        candidates = (
            scan_secret_header,
            cron_secret_header,
            extract_bearer_token(authorization_header),
        )
        for candidate in candidates:
            if candidate is not None and hmac.compare_digest(
                candidate.strip().encode("utf-8"),
                self._secret.encode("utf-8"),
            ):
                return
        raise UnauthorizedError("missing or invalid scan secret")
