"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_session / _row_to_reset_token
are the mappers. Services and routes never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Uniqueness is enforced by the database, never by check-then-insert:
    users.email, users.provider_id, sessions.id, password_reset_tokens.token
    and password_reset_tokens.user_id all carry UNIQUE constraints. A losing
    concurrent writer gets IntegrityError, which create_user() translates into
    DuplicateEmail / DuplicateProviderId. Two NULL provider_id values do not
    collide (SQL NULL semantics), which is exactly what email accounts need.

  Session ids and reset tokens are stored as HMACs (see auth/tokens.py), so
  the values in these tables cannot be replayed as cookies or links.

Timestamps are fixed-width ISO-8601 UTC strings (microsecond precision). With a
fixed width, string comparison in SQL is chronological comparison, which keeps
the expiry predicates portable across SQLite and Postgres.

DB URL: settings.database_url, default sqlite:///./authkit.db.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import DuplicateEmail, DuplicateProviderId
from auth.models import PasswordResetToken, Session, User

logger = logging.getLogger("authkit.auth.store")

_DEFAULT_DB_URL = "sqlite:///./authkit.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False),
    Column("hashed_password", String(255)),  # NULL for Google-only users
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("provider", String(50), nullable=False, server_default="email"),
    Column("provider_id", String(255)),  # Google "sub"
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("email", name="uq_users_email"),
    UniqueConstraint("provider_id", name="uq_users_provider_id"),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(64), primary_key=True),  # HMAC-SHA256 hex of the raw token
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)

_reset_tokens = Table(
    "password_reset_tokens",
    _metadata,
    Column("token", String(64), nullable=False),  # HMAC-SHA256 hex of the raw token
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("expires_at", String(32), nullable=False),
    UniqueConstraint("token", name="uq_password_reset_tokens_token"),
    # One row per user: a second concurrent insert for the same user fails
    # instead of leaving two live tokens behind.
    UniqueConstraint("user_id", name="uq_password_reset_tokens_user_id"),
)


# ---------------------------------------------------------------------------
# SQLite pragmas
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    WAL lets readers proceed while a writer holds the lock. SQLite ships with
    foreign keys off, and ON DELETE CASCADE is a no-op without this pragma.
    Set per-connection because PRAGMAs are not inherited by new pool
    connections.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def iso_utc(dt: datetime) -> str:
    """Render a datetime as fixed-width ISO-8601 UTC."""
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now_iso() -> str:
    return iso_utc(datetime.now(timezone.utc))


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _raise_for_integrity(exc: IntegrityError) -> None:
    """Translate a unique-key violation on users into a domain error.

    Postgres drivers expose the constraint name on exc.orig.diag. SQLite only
    has the message ("UNIQUE constraint failed: users.email"), whose tail
    names the column. The offending value never takes part in the match.
    """
    diag = getattr(exc.orig, "diag", None)
    constraint = getattr(diag, "constraint_name", None)
    if constraint:
        target = constraint.lower()
    else:
        target = str(exc.orig).rsplit(":", 1)[-1].strip().lower()
    if target in ("uq_users_provider_id", "users.provider_id"):
        raise DuplicateProviderId() from exc
    if target in ("uq_users_email", "users.email"):
        raise DuplicateEmail() from exc
    raise exc


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for users, sessions and password reset tokens.

    Usage:
        store = UserStore("sqlite:///./authkit.db")
        user = store.create_user(User(name="Ann", email="ann@x.com", hashed_password=hasher.hash("pw")))
        store.get_by_email("ANN@x.com")  # same user -- email lookups are normalized
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            # Concurrent writers on a file DB wait on the lock instead of failing.
            connect_args["timeout"] = 30
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> User:
        """Insert a new user and return it with its assigned id.

        Raises DuplicateEmail or DuplicateProviderId when the database rejects
        the row. This is the authoritative uniqueness check -- callers that
        pre-check get_by_email() still have to handle these.
        """
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _users.insert().values(
                        name=user.name,
                        email=normalize_email(user.email),
                        hashed_password=user.hashed_password,
                        email_verified=1 if user.email_verified else 0,
                        provider=user.provider,
                        provider_id=user.provider_id,
                        created_at=_now_iso(),
                    )
                )
                user_id = result.inserted_primary_key[0]
        except IntegrityError as exc:
            _raise_for_integrity(exc)
        created = self.get_by_id(user_id)
        if created is None:
            raise RuntimeError(f"user {user_id} missing after insert")
        return created

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_provider_id(self, provider_id: str) -> User | None:
        """Look up a user by the provider's stable subject id."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.provider_id == provider_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_password(self, user_id: int, hashed_password: str) -> bool:
        """Replace a user's password hash. Returns False if user_id was not found."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(hashed_password=hashed_password)
            )
        return result.rowcount > 0

    def update_profile(self, user_id: int, name: str) -> None:
        """Refresh the display name from the identity provider."""
        with self.engine.begin() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(name=name))

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    user_id=session.user_id,
                    expires_at=session.expires_at,
                    created_at=session.created_at or _now_iso(),
                )
            )

    def get_session(self, session_id: str) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def delete_session(self, session_id: str) -> bool:
        """Delete one session. Returns False if it did not exist (idempotent)."""
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.id == session_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Password reset tokens
    # ------------------------------------------------------------------

    def replace_reset_token(self, token: PasswordResetToken) -> None:
        """Delete every reset token of token.user_id, then insert token.

        Both statements run in one transaction so no reader ever sees zero or
        two tokens for the user. If a concurrent request inserted its row
        between our delete and insert (possible on Postgres under READ
        COMMITTED), the UNIQUE(user_id) constraint rejects ours; one retry
        deletes the competitor's row and the latest request wins.
        """
        for attempt in range(2):
            try:
                with self.engine.begin() as conn:
                    conn.execute(_reset_tokens.delete().where(_reset_tokens.c.user_id == token.user_id))
                    conn.execute(
                        _reset_tokens.insert().values(
                            token=token.token,
                            user_id=token.user_id,
                            expires_at=token.expires_at,
                        )
                    )
                return
            except IntegrityError:
                if attempt:
                    raise
                logger.info("Concurrent reset token issue for user %d, retrying", token.user_id)

    def get_reset_token(self, token_hash: str) -> PasswordResetToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(_reset_tokens.select().where(_reset_tokens.c.token == token_hash)).fetchone()
        return _row_to_reset_token(row) if row is not None else None

    def delete_reset_token(self, token_hash: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(_reset_tokens.delete().where(_reset_tokens.c.token == token_hash))
        return result.rowcount > 0

    def redeem_reset_token(self, token_hash: str, hashed_password: str, now: datetime) -> int | None:
        """Consume an unexpired token and set the owner's password, atomically.

        The DELETE ... RETURNING is the claim: of two concurrent redemptions of
        the same token only one deletes the row, and the other sees no row.
        The password update and session revocation commit with the delete, so
        a token is never consumed without the password changing and vice versa.

        Returns the owning user id, or None if no unexpired token matched.
        """
        with self.engine.begin() as conn:
            row = conn.execute(
                _reset_tokens.delete()
                .where((_reset_tokens.c.token == token_hash) & (_reset_tokens.c.expires_at > iso_utc(now)))
                .returning(_reset_tokens.c.user_id)
            ).fetchone()
            if row is None:
                return None
            user_id = row.user_id
            conn.execute(_users.update().where(_users.c.id == user_id).values(hashed_password=hashed_password))
            # Anyone holding an old session is signed out with the old password.
            conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
        return user_id

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def purge_expired(self, now: datetime) -> tuple[int, int]:
        """Delete expired sessions and reset tokens. Returns (sessions, tokens) removed."""
        cutoff = iso_utc(now)
        with self.engine.begin() as conn:
            sessions = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= cutoff)).rowcount
            tokens = conn.execute(_reset_tokens.delete().where(_reset_tokens.c.expires_at <= cutoff)).rowcount
        return sessions, tokens

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception:
            logger.exception("Database ping failed")
            return False

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        hashed_password=row.hashed_password,
        email_verified=bool(row.email_verified),
        provider=row.provider,
        provider_id=row.provider_id,
        created_at=row.created_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )


def _row_to_reset_token(row) -> PasswordResetToken:
    return PasswordResetToken(
        token=row.token,
        user_id=row.user_id,
        expires_at=row.expires_at,
    )
