"""Unit tests for auth/store.py -- UserStore persistence.

Covers:
- user create / lookup by email (case-insensitive), id and provider id
- database-level uniqueness of email and provider_id
- session CRUD
- unique-key violations classified by constraint, not by message text
- reset tokens: replace keeps one row per user, redeem is single-use
- purge_expired() and ping()
"""

import sqlite3
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import IntegrityError

from auth.errors import DuplicateEmail, DuplicateProviderId
from auth.models import PasswordResetToken, Session, User
from auth.store import _raise_for_integrity, iso_utc


def _user(email="ann@x.com", **kwargs):
    return User(name=kwargs.pop("name", "Ann"), email=email, hashed_password=kwargs.pop("hashed_password", "h"), **kwargs)


def _iso(delta: timedelta) -> str:
    return iso_utc(datetime.now(timezone.utc) + delta)


class TestUsers:
    def test_create_assigns_id_and_timestamp(self, memory_store):
        user = memory_store.create_user(_user())
        assert user.id is not None
        assert user.created_at
        assert user.provider == "email"
        assert user.email_verified is False

    def test_email_is_normalized(self, memory_store):
        created = memory_store.create_user(_user(email="  Ann@X.com "))
        assert created.email == "ann@x.com"
        assert memory_store.get_by_email("ANN@x.COM").id == created.id

    def test_duplicate_email_rejected(self, memory_store):
        memory_store.create_user(_user())
        with pytest.raises(DuplicateEmail):
            memory_store.create_user(_user(email="ANN@x.com"))
        assert memory_store.count_users() == 1

    def test_duplicate_provider_id_rejected(self, memory_store):
        memory_store.create_user(_user(email="a@x.com", provider="google", provider_id="sub-1"))
        with pytest.raises(DuplicateProviderId):
            memory_store.create_user(_user(email="b@x.com", provider="google", provider_id="sub-1"))

    def test_many_email_users_without_provider_id(self, memory_store):
        memory_store.create_user(_user(email="a@x.com"))
        memory_store.create_user(_user(email="b@x.com"))
        assert memory_store.count_users() == 2

    def test_lookups_return_none_when_missing(self, memory_store):
        assert memory_store.get_by_email("nobody@x.com") is None
        assert memory_store.get_by_id(999) is None
        assert memory_store.get_by_provider_id("sub-404") is None

    def test_update_password_and_profile(self, memory_store):
        user = memory_store.create_user(_user())
        assert memory_store.update_password(user.id, "new-hash")
        assert not memory_store.update_password(999, "new-hash")
        memory_store.update_profile(user.id, "Ann B")
        refreshed = memory_store.get_by_id(user.id)
        assert refreshed.hashed_password == "new-hash"
        assert refreshed.name == "Ann B"


class TestSessions:
    def test_create_get_delete(self, memory_store):
        user = memory_store.create_user(_user())
        memory_store.create_session(Session(id="s1", user_id=user.id, expires_at=_iso(timedelta(hours=1))))
        assert memory_store.get_session("s1").user_id == user.id
        assert memory_store.delete_session("s1") is True
        assert memory_store.delete_session("s1") is False
        assert memory_store.get_session("s1") is None


class _DriverError(Exception):
    """DB-API error carrying a Postgres-style diag.constraint_name."""

    def __init__(self, message, constraint_name=None):
        super().__init__(message)
        self.diag = SimpleNamespace(constraint_name=constraint_name)


class TestIntegrityClassification:
    def test_constraint_name_wins_over_message_text(self):
        orig = _DriverError(
            'duplicate key value violates unique constraint "uq_users_email"\n'
            "DETAIL:  Key (email)=(provider_id@x.com) already exists.",
            constraint_name="uq_users_email",
        )
        with pytest.raises(DuplicateEmail):
            _raise_for_integrity(IntegrityError("INSERT INTO users", {}, orig))

    def test_postgres_provider_id_constraint(self):
        orig = _DriverError("duplicate key", constraint_name="uq_users_provider_id")
        with pytest.raises(DuplicateProviderId):
            _raise_for_integrity(IntegrityError("INSERT INTO users", {}, orig))

    def test_sqlite_message_names_the_column(self):
        orig = sqlite3.IntegrityError("UNIQUE constraint failed: users.provider_id")
        with pytest.raises(DuplicateProviderId):
            _raise_for_integrity(IntegrityError("INSERT INTO users", {}, orig))

    def test_unrelated_violation_is_reraised(self):
        orig = sqlite3.IntegrityError("NOT NULL constraint failed: users.name")
        with pytest.raises(IntegrityError):
            _raise_for_integrity(IntegrityError("INSERT INTO users", {}, orig))


class TestResetTokens:
    def test_replace_keeps_one_token_per_user(self, memory_store):
        user = memory_store.create_user(_user())
        expires = _iso(timedelta(hours=1))
        memory_store.replace_reset_token(PasswordResetToken(token="t1", user_id=user.id, expires_at=expires))
        memory_store.replace_reset_token(PasswordResetToken(token="t2", user_id=user.id, expires_at=expires))
        assert memory_store.get_reset_token("t1") is None
        assert memory_store.get_reset_token("t2").user_id == user.id

    def test_redeem_updates_password_and_revokes_sessions(self, memory_store):
        user = memory_store.create_user(_user())
        memory_store.create_session(Session(id="s1", user_id=user.id, expires_at=_iso(timedelta(hours=1))))
        memory_store.replace_reset_token(
            PasswordResetToken(token="t1", user_id=user.id, expires_at=_iso(timedelta(hours=1)))
        )

        now = datetime.now(timezone.utc)
        assert memory_store.redeem_reset_token("t1", "new-hash", now) == user.id
        assert memory_store.get_by_id(user.id).hashed_password == "new-hash"
        assert memory_store.get_session("s1") is None
        # Single use.
        assert memory_store.redeem_reset_token("t1", "other-hash", now) is None
        assert memory_store.get_by_id(user.id).hashed_password == "new-hash"

    def test_redeem_expired_token_changes_nothing(self, memory_store):
        user = memory_store.create_user(_user())
        memory_store.replace_reset_token(
            PasswordResetToken(token="t1", user_id=user.id, expires_at=_iso(-timedelta(seconds=1)))
        )
        assert memory_store.redeem_reset_token("t1", "new-hash", datetime.now(timezone.utc)) is None
        assert memory_store.get_by_id(user.id).hashed_password == "h"

    def test_delete_reset_token(self, memory_store):
        user = memory_store.create_user(_user())
        memory_store.replace_reset_token(
            PasswordResetToken(token="t1", user_id=user.id, expires_at=_iso(timedelta(hours=1)))
        )
        assert memory_store.delete_reset_token("t1") is True
        assert memory_store.delete_reset_token("t1") is False


class TestHousekeeping:
    def test_purge_expired(self, memory_store):
        user = memory_store.create_user(_user())
        memory_store.create_session(Session(id="old", user_id=user.id, expires_at=_iso(-timedelta(minutes=1))))
        memory_store.create_session(Session(id="new", user_id=user.id, expires_at=_iso(timedelta(hours=1))))
        memory_store.replace_reset_token(
            PasswordResetToken(token="t1", user_id=user.id, expires_at=_iso(-timedelta(minutes=1)))
        )

        assert memory_store.purge_expired(datetime.now(timezone.utc)) == (1, 1)
        assert memory_store.get_session("new") is not None

    def test_ping(self, memory_store):
        assert memory_store.ping() is True

    def test_iso_utc_is_fixed_width(self):
        a = iso_utc(datetime(2024, 1, 1, tzinfo=timezone.utc))
        b = iso_utc(datetime(2024, 1, 1, 0, 0, 0, 123456, tzinfo=timezone.utc))
        assert len(a) == len(b)
        assert a < b
