"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these only own the domain shape.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Provider(str, Enum):
    email = "email"
    google = "google"


@dataclass
class User:
    """An identity that can sign in.

    email is stored normalized (stripped, lower-cased) and is the login key for
    password accounts.

    hashed_password is None for Google-only accounts. provider_id is the
    provider's stable subject ("sub") and is None for email accounts.
    """

    name: str
    email: str
    provider: str = Provider.email.value  # "email", "google"
    id: int | None = None
    hashed_password: str | None = None  # None = provider-only user
    email_verified: bool = False
    provider_id: str | None = None  # Google "sub" claim
    created_at: str | None = None


@dataclass
class Session:
    """A server-side session row.

    id holds HMAC-SHA256(SECRET_KEY, raw_token). The raw token is only ever in
    the browser cookie, so a database dump cannot be replayed as cookies.
    """

    id: str
    user_id: int
    expires_at: str  # ISO-8601 UTC, fixed width
    created_at: str | None = None


@dataclass
class PasswordResetToken:
    """A single-use password reset capability. token is the HMAC of the raw token."""

    token: str
    user_id: int
    expires_at: str
