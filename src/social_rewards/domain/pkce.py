"""PKCE (RFC 7636) primitives for the X authorization flow."""

from __future__ import annotations

import base64
import hashlib
import secrets

CODE_CHALLENGE_METHOD = "S256"
_STATE_BYTES = 16
_VERIFIER_BYTES = 32


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def generate_state() -> str:
    """Return an unguessable opaque state value."""

    return _b64url(secrets.token_bytes(_STATE_BYTES))


def generate_code_verifier() -> str:
    """Return a 43-character code verifier built from 32 random bytes."""

    return _b64url(secrets.token_bytes(_VERIFIER_BYTES))


def derive_code_challenge(code_verifier: str) -> str:
    """Derive the S256 code challenge: base64url(sha256(verifier)) without padding."""

    if not code_verifier:
        raise ValueError("code_verifier cannot be blank")
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return _b64url(digest)
