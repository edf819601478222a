"""Process-local credential cache tier."""

from __future__ import annotations

from social_rewards.application.ports.credential_store_port import (
    Credential,
    CredentialStorePort,
)


class InMemoryCredentialCache(CredentialStorePort):
    """First lookup tier; lost on restart."""

    name = "memory"

    def __init__(self) -> None:
        self._credentials: dict[str, Credential] = {}

    async def find(self, *, subject_key: str) -> Credential | None:
        return self._credentials.get(subject_key)

    async def save(self, credential: Credential) -> None:
        self._credentials[credential.subject_key] = credential
