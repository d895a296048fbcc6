"""
auth/passwords.py -- Password hashing and constant-time credential checks.

Passwords: bcrypt used directly (no passlib wrapper). Bcrypt is the right
choice for low-entropy secrets because its cost factor makes brute-force
expensive. The cost comes from Settings.bcrypt_rounds.

bcrypt only looks at the first 72 bytes of input and recent releases raise
ValueError past that limit. The signup schema rejects longer passwords, so
hash_password() only sees such input if a caller bypasses the API layer; it
then fails with a generic InternalError.

Passwords always arrive in plaintext over the transport and are hashed here.
A digest computed by a client is never accepted as a verifier.

Layer rule: no imports from api/, plans/, or client/. Import from core/
is allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import bcrypt

from core.config import get_settings
from core.errors import InternalError

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("cropcase.auth")

_settings = get_settings()

BCRYPT_MAX_BYTES = 72


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    try:
        secret = plain.encode("utf-8")
        if len(secret) > BCRYPT_MAX_BYTES:
            # bcrypt 4.x silently truncates here; 5.x raises. Treat both the same.
            raise ValueError(f"password exceeds {BCRYPT_MAX_BYTES} bytes")
        salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
        return bcrypt.hashpw(secret, salt).decode("utf-8")
    except (ValueError, TypeError) as exc:
        logger.error("Password hashing failed: %s", exc.__class__.__name__)
        raise InternalError("Could not process credentials.") from exc


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Timing equalization dummy hash.
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones. Always call verify_password() even when the
# email does not exist -- bcrypt's constant work factor equalizes timing and
# prevents account enumeration via response-time differences.
_DUMMY_HASH: str = hash_password("cropcase_timing_dummy")


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Authenticate an email/password login with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the User on success, None on any failure. The caller must not
    distinguish the failure cases in its response.
    """
    user = store.get_by_email(email)
    if user is None or user.hashed_password is None:
        # Equalize timing -- do NOT return early before running bcrypt
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user
