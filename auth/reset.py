"""
auth/reset.py -- Time-limited, single-use password reset tokens.

Lifecycle:
  issue(user_id)      -- replaces every earlier token of the user, returns
                         the raw token for the emailed link.
  validate(token)     -- owner id if the token exists and is unexpired.
  redeem(token, hash) -- validate + password update + consume, one transaction.
  consume(token)      -- delete the row.

validate() and redeem() give the same None for "never existed", "expired" and
"already used". Callers must not try to tell them apart: a distinguishable
answer would let an attacker enumerate live tokens.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

from auth.models import PasswordResetToken
from auth.store import UserStore, iso_utc
from auth.tokens import generate_reset_token, hash_token
from core.config import Settings

logger = logging.getLogger("authkit.auth.reset")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class IssuedResetToken:
    token: str
    expires_at: datetime


class ResetTokenService:
    def __init__(self, store: UserStore, settings: Settings, clock: Callable[[], datetime] = _utcnow) -> None:
        self.store = store
        self.settings = settings
        self.clock = clock

    def _hash(self, token: str) -> str:
        return hash_token(self.settings.secret_key, token)

    def issue(self, user_id: int) -> IssuedResetToken:
        token = generate_reset_token()
        expires_at = self.clock() + timedelta(seconds=self.settings.reset_token_expire_seconds)
        self.store.replace_reset_token(
            PasswordResetToken(token=self._hash(token), user_id=user_id, expires_at=iso_utc(expires_at))
        )
        logger.info("Password reset token issued for user %d", user_id)
        return IssuedResetToken(token=token, expires_at=expires_at)

    def validate(self, token: str) -> int | None:
        row = self.store.get_reset_token(self._hash(token))
        if row is None or row.expires_at <= iso_utc(self.clock()):
            return None
        return row.user_id

    def consume(self, token: str) -> None:
        self.store.delete_reset_token(self._hash(token))

    def redeem(self, token: str, hashed_password: str) -> int | None:
        """Set the owner's password and burn the token in one step. None if the token is not valid."""
        user_id = self.store.redeem_reset_token(self._hash(token), hashed_password, self.clock())
        if user_id is not None:
            logger.info("Password reset completed for user %d", user_id)
        return user_id

    def build_reset_link(self, token: str) -> str:
        return f"{self.settings.app_url.rstrip('/')}/reset-password?{urlencode({'token': token})}"
