"""
auth/guard.py -- Request-level access gate for protected pages.

check_access() is a pure function: it looks at the path and the presence of
the session cookie and nothing else. It does not hit the database, so a
forged or revoked cookie gets past it; the protected page then calls
SessionManager.validate() (see web/routes.py dashboard) and redirects on
failure. Keeping the guard I/O-free lets it run on every request cheaply.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from urllib.parse import urlencode

from auth.cookies import SESSION_COOKIE


@dataclass(frozen=True)
class Allow:
    pass


@dataclass(frozen=True)
class Redirect:
    target: str


def is_protected(path: str, prefixes: Iterable[str]) -> bool:
    """True if path is one of prefixes or lies beneath one (segment-aware)."""
    for prefix in prefixes:
        prefix = prefix.rstrip("/") or "/"
        if prefix == "/":
            return True
        if path == prefix or path.startswith(prefix + "/"):
            return True
    return False


def signin_redirect(signin_path: str, return_to: str) -> str:
    """Build the signin URL carrying return_to as callbackUrl.

    Only the request path is ever used as return_to (never a full URL), and the
    signin handler re-validates it before redirecting [C2].
    """
    return f"{signin_path}?{urlencode({'callbackUrl': return_to})}"


def check_access(
    path: str,
    cookies: Mapping[str, str],
    protected_prefixes: Iterable[str],
    signin_path: str = "/signin",
) -> Allow | Redirect:
    if is_protected(path, protected_prefixes) and not cookies.get(SESSION_COOKIE):
        return Redirect(signin_redirect(signin_path, path))
    return Allow()
