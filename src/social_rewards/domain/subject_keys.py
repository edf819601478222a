"""Normalization helpers for subject keys and X handles."""

from __future__ import annotations

_MAX_SUBJECT_KEY_LENGTH = 100
_MAX_HANDLE_LENGTH = 50


def normalize_subject_key(*, subject_key: str) -> str:
    """Normalize one wallet address used as subject key and reject blank values."""

    normalized = subject_key.strip()
    if not normalized:
        raise ValueError("subject_key cannot be blank")
    if len(normalized) > _MAX_SUBJECT_KEY_LENGTH:
        raise ValueError("subject_key is too long")
    return normalized


def normalize_handle(*, handle: str) -> str:
    """Strip whitespace and a leading `@` from an X handle and reject blank values."""

    normalized = handle.strip().removeprefix("@").strip()
    if not normalized:
        raise ValueError("handle cannot be blank")
    if len(normalized) > _MAX_HANDLE_LENGTH:
        raise ValueError("handle is too long")
    return normalized
