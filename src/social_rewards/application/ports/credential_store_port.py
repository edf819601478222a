"""Port for per-subject X OAuth credentials."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass(frozen=True)
class Credential:
    """Access/refresh token pair issued for one subject."""

    subject_key: str
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None


class CredentialLookupPort(Protocol):
    """One tier of the credential lookup chain."""

    name: str

    async def find(self, *, subject_key: str) -> Credential | None:
        """Return the stored credential for subject or None."""


class CredentialStorePort(CredentialLookupPort, Protocol):
    """Writable credential tier."""

    async def save(self, credential: Credential) -> None:
        """Insert or overwrite the credential for its subject."""
