"""
auth/cookies.py -- Cookie directives and the adapter that applies them.

The auth core never touches a response object. Actions return a list of
CookieDirective values describing what should happen to the browser's
cookies; apply_cookies() is the only place they meet Starlette.

Cookie names are part of the external contract:
  session               -- httpOnly, secure in production, sameSite=strict
  google_oauth_state    -- httpOnly, <= 1h, deleted on callback
  google_code_verifier  -- httpOnly, <= 1h, deleted on callback
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from starlette.responses import Response

SESSION_COOKIE = "session"
OAUTH_STATE_COOKIE = "google_oauth_state"
OAUTH_VERIFIER_COOKIE = "google_code_verifier"


@dataclass(frozen=True)
class CookieDirective:
    """A cookie to set (value is not None) or delete (value is None)."""

    name: str
    value: str | None
    max_age: int | None = None
    httponly: bool = True
    secure: bool = False
    samesite: Literal["lax", "strict", "none"] = "lax"
    path: str = "/"

    @property
    def is_delete(self) -> bool:
        return self.value is None

    @classmethod
    def delete(cls, name: str, secure: bool = False, samesite: Literal["lax", "strict", "none"] = "lax") -> CookieDirective:
        return cls(name=name, value=None, secure=secure, samesite=samesite)


def apply_cookies(response: Response, directives: list[CookieDirective]) -> Response:
    """Write every directive onto a Starlette/FastAPI response."""
    for d in directives:
        if d.is_delete:
            response.delete_cookie(d.name, path=d.path, secure=d.secure, httponly=d.httponly, samesite=d.samesite)
        else:
            response.set_cookie(
                d.name,
                value=d.value,
                max_age=d.max_age,
                path=d.path,
                secure=d.secure,
                httponly=d.httponly,
                samesite=d.samesite,
            )
    return response
