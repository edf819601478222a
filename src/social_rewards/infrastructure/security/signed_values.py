"""HMAC-SHA256 signed values used for cookie-carried fallbacks."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from datetime import datetime
from typing import Any

_EXPIRY_FIELD = "exp"


def compute_hmac_sha256(*, secret: str, body: bytes) -> str:
    """Compute a hex HMAC-SHA256 signature for body."""

    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_hmac_signature(*, secret: str, body: bytes, provided_signature: str | None) -> bool:
    """Return whether provided signature matches body under secret in constant time."""

    if provided_signature is None or not provided_signature.strip():
        return False
    expected = compute_hmac_sha256(secret=secret, body=body)
    return hmac.compare_digest(expected, provided_signature.strip())


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


class HmacSignedValueCodec:
    """Encode JSON payloads as `<base64url(json)>.<hex hmac>` with an embedded expiry.

    Values are signed, not encrypted; payloads must not hold anything the
    client may not see.
    """

    def __init__(self, *, secret: str) -> None:
        secret_value = secret.strip()
        if not secret_value:
            raise ValueError("secret must be a non-empty string")
        self._secret = secret_value

    def encode(self, payload: dict[str, Any], *, expires_at: datetime) -> str:
        """Return signed value carrying payload until expires_at."""

        if _EXPIRY_FIELD in payload:
            raise ValueError(f"payload cannot use reserved key {_EXPIRY_FIELD!r}")
        document = {**payload, _EXPIRY_FIELD: int(expires_at.timestamp())}
        body = _b64encode(
            json.dumps(document, separators=(",", ":"), sort_keys=True).encode("utf-8")
        )
        signature = compute_hmac_sha256(secret=self._secret, body=body.encode("ascii"))
        return f"{body}.{signature}"

    def decode(self, value: str, *, now: datetime) -> dict[str, Any] | None:
        """Return payload when signature verifies and expiry is in the future."""

        body, separator, signature = value.strip().partition(".")
        if not separator or not body:
            return None
        if not verify_hmac_signature(
            secret=self._secret,
            body=body.encode("ascii", errors="replace"),
            provided_signature=signature,
        ):
            return None

        try:
            document = json.loads(_b64decode(body).decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError):
            return None
        if not isinstance(document, dict):
            return None

        expiry = document.pop(_EXPIRY_FIELD, None)
        if not isinstance(expiry, int) or now.timestamp() >= expiry:
            return None
        return document
