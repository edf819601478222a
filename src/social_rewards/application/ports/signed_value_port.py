"""Port for tamper-evident values carried by the client across requests."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol


class SignedValueCodecPort(Protocol):
    """Sign and verify small JSON payloads with an expiry."""

    def encode(self, payload: dict[str, Any], *, expires_at: datetime) -> str:
        """Return an opaque signed value carrying payload until expires_at."""

    def decode(self, value: str, *, now: datetime) -> dict[str, Any] | None:
        """Return payload when signature is valid and not expired; None otherwise."""
