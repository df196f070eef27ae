"""
auth/sessions.py -- Server-side session issuance, validation and revocation.

A session is a random token in the `session` cookie and an HMAC of that token
in the sessions table. Nothing about the user is encoded in the cookie; the
user is resolved only by looking the row up.

Expiry policy (Settings.session_expire_seconds):
  0   -- sessions do not expire on their own. The row gets a far-future
         expiry and the cookie a 400-day lifetime (the browser maximum).
         They end on signout, password reset, or user deletion.
  N>0 -- row and cookie both expire N seconds after issue.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from auth.cookies import SESSION_COOKIE, CookieDirective
from auth.models import Session, User
from auth.store import UserStore, iso_utc
from auth.tokens import generate_session_token, hash_token
from core.config import Settings

logger = logging.getLogger("authkit.auth.sessions")

_NEVER = datetime(9999, 12, 31, tzinfo=timezone.utc)
_MAX_COOKIE_AGE = 400 * 24 * 60 * 60


@dataclass(frozen=True)
class IssuedSession:
    token: str  # raw value, goes into the cookie and nowhere else
    session: Session
    cookie: CookieDirective


class SessionManager:
    def __init__(self, store: UserStore, settings: Settings) -> None:
        self.store = store
        self.settings = settings

    def create(self, user_id: int) -> IssuedSession:
        """Mint a new session for user_id and the cookie that carries it."""
        now = datetime.now(timezone.utc)
        ttl = self.settings.session_expire_seconds
        expires = now + timedelta(seconds=ttl) if ttl > 0 else _NEVER

        token = generate_session_token()
        session = Session(
            id=hash_token(self.settings.secret_key, token),
            user_id=user_id,
            expires_at=iso_utc(expires),
            created_at=iso_utc(now),
        )
        self.store.create_session(session)
        logger.info("Session created for user %d", user_id)
        cookie = CookieDirective(
            name=SESSION_COOKIE,
            value=token,
            max_age=ttl if ttl > 0 else _MAX_COOKIE_AGE,
            httponly=True,
            secure=bool(self.settings.secure_cookies),
            samesite="strict",
            path="/",
        )
        return IssuedSession(token=token, session=session, cookie=cookie)

    def validate(self, token: str | None) -> User | None:
        """Return the session's user, or None if missing, unknown or expired. Never raises."""
        if not token:
            return None
        try:
            session_id = hash_token(self.settings.secret_key, token)
            session = self.store.get_session(session_id)
            if session is None:
                return None
            if session.expires_at <= iso_utc(datetime.now(timezone.utc)):
                self.store.delete_session(session_id)
                return None
            return self.store.get_by_id(session.user_id)
        except Exception:
            logger.exception("Session validation failed")
            return None

    def revoke(self, token: str | None) -> None:
        """Delete the session behind token. Unknown or empty tokens are a no-op."""
        if not token:
            return
        if self.store.delete_session(hash_token(self.settings.secret_key, token)):
            logger.info("Session revoked")

    def clear_cookie(self) -> CookieDirective:
        return CookieDirective.delete(SESSION_COOKIE, secure=bool(self.settings.secure_cookies), samesite="strict")
