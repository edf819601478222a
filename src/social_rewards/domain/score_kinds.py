"""Score event kinds and their idempotency scope."""

from __future__ import annotations

from enum import StrEnum


class ScoreKind(StrEnum):
    """Rewardable action categories recorded in the score ledger."""

    FOLLOW_OK = "follow_ok"
    REPLY_OK = "reply_ok"
    RIBBIT = "ribbit"
    RIBBIT_TAG = "ribbit_tag"


ONE_TIME_KINDS: frozenset[ScoreKind] = frozenset({ScoreKind.FOLLOW_OK, ScoreKind.REPLY_OK})
WINDOWED_KINDS: frozenset[ScoreKind] = frozenset({ScoreKind.RIBBIT, ScoreKind.RIBBIT_TAG})


def is_one_time(kind: ScoreKind) -> bool:
    """Return whether at most one event of this kind may ever exist per user."""

    return kind in ONE_TIME_KINDS


def is_windowed(kind: ScoreKind) -> bool:
    """Return whether this kind may be awarded again once per scan window."""

    return kind in WINDOWED_KINDS
