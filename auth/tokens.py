"""
auth/tokens.py -- Random token generation and keyed hashing.

Security design decisions:
  Session tokens: secrets.token_urlsafe(32) gives 256 bits of entropy and has
       no relationship to the user id or the clock. A session is only ever
       resolved by server-side lookup.

  Reset tokens: uuid4 (122 random bits). The reset form validates the UUID
       shape before any DB access.

  Storage: both are stored as HMAC-SHA256(SECRET_KEY, raw). The hash is
       deterministic so lookup stays an O(1) index hit, and an attacker who
       reads the DB cannot turn rows back into working cookies or links
       without also knowing SECRET_KEY. bcrypt's slowness is unnecessary for
       high-entropy values.

  Comparison of request-supplied secrets (OAuth state) goes through
       hmac.compare_digest to avoid timing leaks.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import uuid


def generate_session_token() -> str:
    return secrets.token_urlsafe(32)


def generate_reset_token() -> str:
    return str(uuid.uuid4())


def hash_token(secret_key: str, raw: str) -> str:
    """Return HMAC-SHA256(secret_key, raw) as a 64-char hex string."""
    return hmac.new(secret_key.encode(), raw.encode(), hashlib.sha256).hexdigest()


def tokens_match(a: str, b: str) -> bool:
    """Constant-time string comparison."""
    return hmac.compare_digest(a.encode(), b.encode())
