"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data containers, no persistence logic). Mirrors the approach
in plans/models.py -- dataclasses own domain shape; stores and routes do the
work.

Layer rule: no imports from api/, plans/, or client/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"
    MODERATOR = "MODERATOR"


@dataclass
class User:
    """An identity that can sign in to CropCase.

    email is stored lower-cased; the signup/login schemas normalize input so
    lookups are effectively case-insensitive.

    hashed_password is a bcrypt digest and is never serialized in responses.
    last_login_at is None until the first successful login.
    """

    email: str
    role: str = Role.USER.value
    id: int | None = None
    name: str | None = None
    avatar: str | None = None
    hashed_password: str | None = None
    is_verified: bool = False
    created_at: str | None = None
    last_login_at: str | None = None


@dataclass
class RefreshToken:
    """A persisted refresh session.

    token_hash is SHA-256(raw token). The raw value is handed to the client
    exactly once and never stored, so a database leak does not hand out live
    sessions.
    """

    token_hash: str
    user_id: int
    issued_at: datetime
    expires_at: datetime
    id: int | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass
class TokenPair:
    """The credentials returned by login, signup and refresh."""

    access_token: str
    access_expires_at: datetime
    refresh_token: str
    refresh_expires_at: datetime
