"""
auth/tokens.py -- Access token signing and refresh token lifecycle.

Security design decisions:
  Access tokens: python-jose with HS256. Tokens are signed with SECRET_KEY and
       carry user_id, email, role, a "type" claim and expiry. They are never
       stored server-side; verification is signature + expiry only, so they
       are kept short-lived (Settings.access_token_expire_seconds).

  Refresh tokens: secrets.token_urlsafe(48) gives 384 bits of entropy. They
       are opaque (not JWTs) -- all their meaning lives in the SessionStore
       record, which is what makes server-side revocation possible.

  Rotation-on-use: rotate_refresh_token() consumes the presented token before
       issuing a replacement. A stolen refresh token therefore works at most
       once, and the legitimate client notices on its next refresh.

Layer rule: no imports from api/, plans/, or client/. Import from core/
is allowed.
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta
from typing import TYPE_CHECKING

from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import TokenPair, User
from core.config import get_settings
from core.database import now_utc
from core.errors import InvalidToken, TokenExpired

if TYPE_CHECKING:
    from datetime import datetime

    from auth.store import SessionStore, UserStore

logger = logging.getLogger("cropcase.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"
_ACCESS_TYPE = "access"

# ---------------------------------------------------------------------------
# Access tokens (JWT)
# ---------------------------------------------------------------------------


def create_access_token(user: User, expire_seconds: int = 0) -> tuple[str, datetime]:
    """Encode a signed JWT for user. Returns (token, expires_at).

    Args:
        user:           The authenticated user. id must be set.
        expire_seconds: Lifetime override in seconds. 0 (default) uses
                        Settings.access_token_expire_seconds. Negative values
                        produce an already-expired token (tests use this).
    """
    duration = expire_seconds if expire_seconds != 0 else _settings.access_token_expire_seconds
    issued = now_utc()
    expires_at = issued + timedelta(seconds=duration)
    payload = {
        "sub": str(user.id),
        "user_id": user.id,
        "email": user.email,
        "role": user.role,
        "type": _ACCESS_TYPE,
        "iat": issued,
        "exp": expires_at,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM), expires_at


def decode_access_token(token: str) -> dict:
    """Verify a JWT and return its claims.

    Raises TokenExpired if the signature is valid but exp has passed, and
    InvalidToken for everything else (bad signature, garbage input, wrong
    token type, missing identity claims).
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise TokenExpired("Access token has expired.") from exc
    except JWTError as exc:
        raise InvalidToken() from exc
    if payload.get("type") != _ACCESS_TYPE or "user_id" not in payload or "role" not in payload:
        raise InvalidToken()
    return payload


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------


def generate_refresh_token() -> str:
    return secrets.token_urlsafe(48)


def issue_refresh_token(sessions: SessionStore, user: User) -> tuple[str, datetime]:
    """Mint and persist a refresh token for user. Returns (token, expires_at)."""
    token = generate_refresh_token()
    expires_at = now_utc() + timedelta(days=_settings.refresh_token_expire_days)
    sessions.save(token, user.id, expires_at)
    return token, expires_at


def issue_token_pair(sessions: SessionStore, user: User) -> TokenPair:
    access_token, access_exp = create_access_token(user)
    refresh_token, refresh_exp = issue_refresh_token(sessions, user)
    return TokenPair(
        access_token=access_token,
        access_expires_at=access_exp,
        refresh_token=refresh_token,
        refresh_expires_at=refresh_exp,
    )


def rotate_refresh_token(sessions: SessionStore, users: UserStore, old_token: str) -> tuple[TokenPair, User]:
    """Exchange old_token for a fresh pair, invalidating old_token.

    The old token is consumed first (atomic delete-returning). Whatever
    happens afterwards, it can never be used again:
      - not stored          -> InvalidToken
      - stored but expired  -> TokenExpired (record already removed)
      - owner gone          -> InvalidToken
    """
    record = sessions.consume(old_token)
    if record is None:
        raise InvalidToken("Invalid or expired refresh token.")
    if record.is_expired(now_utc()):
        logger.info("Rejected expired refresh token for user_id=%s", record.user_id)
        raise TokenExpired("Invalid or expired refresh token.")
    user = users.get_by_id(record.user_id)
    if user is None:
        raise InvalidToken("Invalid or expired refresh token.")
    pair = issue_token_pair(sessions, user)
    logger.info("Rotated refresh token for user_id=%s", user.id)
    return pair, user
