"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper (same as plans/store.py).
UserStore and SessionStore are the repositories; _row_to_user /
_row_to_refresh_token are the mappers. Route and dependency code never
touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Refresh tokens are stored as SHA-256 digests. The raw token carries 384
  bits of entropy, so a fast hash is enough to make a leaked table useless --
  bcrypt's intentional slowness buys nothing here and would slow every
  refresh.

Concurrency:
  SessionStore.consume() is a single DELETE ... RETURNING. When two requests
  rotate the same refresh token at once, the database serializes the two
  deletes and only one of them gets the row back. The loser sees None and
  fails with InvalidToken, so one refresh token can never mint two pairs.

Integrity:
  refresh_tokens.user_id references users.id with ON DELETE CASCADE, so a
  stored refresh token always belongs to an existing user. SQLite enforces
  this only with PRAGMA foreign_keys=ON, which core.database sets on every
  connection.

Layer rule: no imports from api/, plans/, or client/.
"""

from __future__ import annotations

import hashlib
from datetime import datetime

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    func,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import RefreshToken, Role, User
from core.database import connect, from_iso, make_engine, now_iso, now_utc, to_iso, transaction

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(100)),
    Column("avatar", String(500)),
    Column("hashed_password", Text),
    Column("role", String(20), nullable=False, server_default=Role.USER.value),
    Column("is_verified", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("last_login_at", String(32)),
)

_refresh_tokens = Table(
    "refresh_tokens",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # SHA-256 hex
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("issued_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False, index=True),
)

# Only these columns may be changed through update_profile(). Role changes go
# through update_role(); email and password are immutable via the profile API.
_PROFILE_FIELDS = frozenset({"name", "avatar"})


def _digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore()
        uid = store.create_user(User(email="a@b.com", hashed_password=hash_password("secret123")))
        user = store.get_by_email("a@b.com")
        store.close()
    """

    def __init__(self, db_url: str, timeout: float = 5.0) -> None:
        self.engine: Engine = make_engine(db_url, timeout)
        metadata.create_all(self.engine)

    def has_users(self) -> bool:
        with connect(self.engine) as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers map that to a Conflict -- checking first and inserting second
        would race against a concurrent signup for the same address.
        """
        with transaction(self.engine) as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email,
                    name=user.name,
                    avatar=user.avatar,
                    hashed_password=user.hashed_password,
                    role=user.role,
                    is_verified=1 if user.is_verified else 0,
                    created_at=now_iso(),
                )
            )
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email. Input is lower-cased to match stored form."""
        with connect(self.engine) as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with connect(self.engine) as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_many(self, user_ids) -> dict[int, User]:
        """Return {id: User} for the given ids. Unknown ids are simply absent."""
        ids = set(user_ids)
        if not ids:
            return {}
        with connect(self.engine) as conn:
            rows = conn.execute(_users.select().where(_users.c.id.in_(ids))).fetchall()
        return {r.id: _row_to_user(r) for r in rows}

    def list_users(self) -> list[User]:
        """Return all users, newest first. Admin-only operation."""
        with connect(self.engine) as conn:
            rows = conn.execute(_users.select().order_by(_users.c.created_at.desc(), _users.c.id.desc())).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_profile(self, user_id: int, **fields) -> bool:
        """Update profile fields (name, avatar). Returns False if user_id was not found.

        Unknown keys raise ValueError rather than being silently dropped.
        """
        unknown = set(fields) - _PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Unknown profile fields: {sorted(unknown)!r}")
        if not fields:
            return self.get_by_id(user_id) is not None
        with transaction(self.engine) as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
        return result.rowcount > 0

    def update_role(self, user_id: int, role: Role) -> bool:
        with transaction(self.engine) as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(role=Role(role).value))
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current UTC timestamp as last_login_at. Called on every successful login."""
        with transaction(self.engine) as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login_at=now_iso()))

    def close(self) -> None:
        self.engine.dispose()


class SessionStore:
    """Repository for refresh tokens, keyed by the token value.

    Every public method takes the raw token; hashing is internal so callers
    cannot accidentally look up by the wrong representation.

    Usage:
        sessions = SessionStore(db_url)
        sessions.save(token, user_id, expires_at)
        record = sessions.find(token)     # RefreshToken or None
        sessions.delete(token)            # idempotent
        sessions.delete_expired()         # maintenance sweep
    """

    def __init__(self, db_url: str, timeout: float = 5.0) -> None:
        self.engine: Engine = make_engine(db_url, timeout)
        metadata.create_all(self.engine)

    def save(self, token: str, user_id: int, expires_at: datetime) -> None:
        """Persist a refresh token.

        Raises IntegrityError if user_id does not exist (foreign key) or the
        token value collides with a stored one.
        """
        with transaction(self.engine) as conn:
            conn.execute(
                _refresh_tokens.insert().values(
                    token_hash=_digest(token),
                    user_id=user_id,
                    issued_at=now_iso(),
                    expires_at=to_iso(expires_at),
                )
            )

    def find(self, token: str) -> RefreshToken | None:
        """Return the stored record for token, expired or not. None if absent."""
        with connect(self.engine) as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token_hash == _digest(token))).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def delete(self, token: str) -> bool:
        """Delete token. Returns True if a row was removed; an absent token is not an error."""
        with transaction(self.engine) as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.token_hash == _digest(token)))
        return result.rowcount > 0

    def consume(self, token: str) -> RefreshToken | None:
        """Atomically delete token and return what was stored.

        Exactly one concurrent caller receives the record; every other caller
        receives None. Expiry is NOT checked here -- an expired token is still
        removed and returned so the caller can report it as expired.
        """
        with transaction(self.engine) as conn:
            row = conn.execute(
                _refresh_tokens.delete()
                .where(_refresh_tokens.c.token_hash == _digest(token))
                .returning(
                    _refresh_tokens.c.id,
                    _refresh_tokens.c.token_hash,
                    _refresh_tokens.c.user_id,
                    _refresh_tokens.c.issued_at,
                    _refresh_tokens.c.expires_at,
                )
            ).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def delete_expired(self) -> int:
        """Delete every token whose expiry has passed. Returns number of rows removed."""
        with transaction(self.engine) as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at <= to_iso(now_utc())))
        return result.rowcount

    def delete_for_user(self, user_id: int) -> int:
        """Revoke every session of a user (sign out everywhere)."""
        with transaction(self.engine) as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == user_id))
        return result.rowcount

    def count_for_user(self, user_id: int) -> int:
        with connect(self.engine) as conn:
            result = conn.execute(
                select(func.count()).select_from(_refresh_tokens).where(_refresh_tokens.c.user_id == user_id)
            ).scalar()
        return result or 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        avatar=row.avatar,
        hashed_password=row.hashed_password,
        role=row.role,
        is_verified=bool(row.is_verified),
        created_at=row.created_at,
        last_login_at=row.last_login_at,
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        token_hash=row.token_hash,
        user_id=row.user_id,
        issued_at=from_iso(row.issued_at),
        expires_at=from_iso(row.expires_at),
    )
