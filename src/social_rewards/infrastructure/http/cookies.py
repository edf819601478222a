"""Cookies carrying the signed PKCE fallback and the signed credential."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Response

PKCE_COOKIE_NAME = "x_pkce"
CREDENTIAL_COOKIE_NAME = "x_cred"


@dataclass(frozen=True)
class CookiePolicy:
    """HttpOnly, SameSite=Lax cookie attributes shared by the auth routes."""

    secure: bool = True
    pkce_max_age_seconds: int = 300
    credential_max_age_seconds: int = 7 * 24 * 60 * 60

    def set_pkce(self, response: Response, value: str) -> None:
        self._set(response, PKCE_COOKIE_NAME, value, max_age=self.pkce_max_age_seconds)

    def clear_pkce(self, response: Response) -> None:
        response.delete_cookie(
            PKCE_COOKIE_NAME,
            path="/",
            secure=self.secure,
            httponly=True,
            samesite="lax",
        )

    def set_credential(self, response: Response, value: str) -> None:
        self._set(
            response,
            CREDENTIAL_COOKIE_NAME,
            value,
            max_age=self.credential_max_age_seconds,
        )

    def _set(self, response: Response, name: str, value: str, *, max_age: int) -> None:
        response.set_cookie(
            name,
            value,
            max_age=max_age,
            path="/",
            secure=self.secure,
            httponly=True,
            samesite="lax",
        )
