"""Port for append-only audit events."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True)
class AuditEventCreateInput:
    """Input payload for appending one audit event."""

    event_type: str
    subject_key: str | None = None
    external_user_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)


class AuditRepositoryPort(Protocol):
    """Append-only audit event contract."""

    async def append_event(self, payload: AuditEventCreateInput) -> int:
        """Append one audit event and return its id."""
