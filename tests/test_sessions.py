"""Unit tests for auth/tokens.py and auth/store.py SessionStore.

Covers:
- create_access_token() / decode_access_token() claims, expiry and tampering
- rotate_refresh_token() burns the old token and issues a working new one
- rotation of an expired token fails with TokenExpired and removes the record
- rotation for a deleted user fails with InvalidToken (cascade removes sessions)
- SessionStore stores digests, never raw tokens
- delete() is idempotent; delete_expired() only sweeps expired records
- concurrent consume() of the same token: exactly one caller wins
"""

import threading
import uuid
from datetime import timedelta

import pytest
from jose import jwt
from sqlalchemy import text

from auth.models import Role, User
from auth.store import SessionStore, UserStore
from auth.tokens import (
    create_access_token,
    decode_access_token,
    issue_refresh_token,
    issue_token_pair,
    rotate_refresh_token,
)
from conftest import make_user
from core.database import now_utc
from core.errors import InvalidToken, TokenExpired

# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def stores():
    """User and session stores sharing one private in-memory database."""
    url = f"sqlite:///file:test_sessions_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    users, sessions = UserStore(url), SessionStore(url)
    yield users, sessions
    sessions.close()
    users.close()


@pytest.fixture
def farmer(stores) -> User:
    users, _ = stores
    return make_user(users, "farmer@cropcase.in", name="Farmer")


# ---------------------------------------------------------------------------
# Access tokens
# ---------------------------------------------------------------------------


class TestAccessTokens:
    def test_round_trip_claims(self, farmer: User) -> None:
        token, expires_at = create_access_token(farmer)
        claims = decode_access_token(token)
        assert claims["user_id"] == farmer.id
        assert claims["sub"] == str(farmer.id)
        assert claims["email"] == farmer.email
        assert claims["role"] == Role.USER.value
        assert claims["type"] == "access"
        assert expires_at > now_utc()

    def test_expired_token_raises_token_expired(self, farmer: User) -> None:
        token, _ = create_access_token(farmer, expire_seconds=-5)
        with pytest.raises(TokenExpired):
            decode_access_token(token)

    def test_token_expired_is_an_invalid_token(self, farmer: User) -> None:
        token, _ = create_access_token(farmer, expire_seconds=-5)
        with pytest.raises(InvalidToken):
            decode_access_token(token)

    def test_wrong_key_is_rejected(self, farmer: User) -> None:
        forged = jwt.encode({"user_id": farmer.id, "role": "ADMIN", "type": "access"}, "x" * 40, algorithm="HS256")
        with pytest.raises(InvalidToken):
            decode_access_token(forged)

    def test_garbage_is_rejected(self) -> None:
        with pytest.raises(InvalidToken):
            decode_access_token("not-a-token")


# ---------------------------------------------------------------------------
# Refresh token lifecycle
# ---------------------------------------------------------------------------


class TestRotation:
    def test_rotation_replaces_token(self, stores, farmer: User) -> None:
        """rotate(issue(user)) must leave find(old) None and the new token valid."""
        users, sessions = stores
        old, _ = issue_refresh_token(sessions, farmer)

        pair, user = rotate_refresh_token(sessions, users, old)

        assert user.id == farmer.id
        assert sessions.find(old) is None
        assert sessions.find(pair.refresh_token) is not None
        assert decode_access_token(pair.access_token)["user_id"] == farmer.id

    def test_rotated_token_cannot_be_reused(self, stores, farmer: User) -> None:
        users, sessions = stores
        old, _ = issue_refresh_token(sessions, farmer)
        rotate_refresh_token(sessions, users, old)
        with pytest.raises(InvalidToken):
            rotate_refresh_token(sessions, users, old)

    def test_expired_token_raises_and_is_removed(self, stores, farmer: User) -> None:
        users, sessions = stores
        sessions.save("stale-token", farmer.id, now_utc() - timedelta(seconds=1))
        with pytest.raises(TokenExpired):
            rotate_refresh_token(sessions, users, "stale-token")
        assert sessions.find("stale-token") is None

    def test_unknown_token_raises_invalid(self, stores) -> None:
        users, sessions = stores
        with pytest.raises(InvalidToken):
            rotate_refresh_token(sessions, users, "never-issued")

    def test_deleting_user_cascades_to_sessions(self, stores, farmer: User) -> None:
        """A refresh token always maps to an existing user: deleting the user removes its tokens."""
        users, sessions = stores
        pair = issue_token_pair(sessions, farmer)
        with users.engine.begin() as conn:
            conn.execute(text("DELETE FROM users WHERE id = :id"), {"id": farmer.id})
        assert sessions.find(pair.refresh_token) is None
        with pytest.raises(InvalidToken):
            rotate_refresh_token(sessions, users, pair.refresh_token)


class TestSessionStore:
    def test_stores_digest_not_raw_token(self, stores, farmer: User) -> None:
        _, sessions = stores
        token, _ = issue_refresh_token(sessions, farmer)
        record = sessions.find(token)
        assert record is not None
        assert record.token_hash != token
        assert len(record.token_hash) == 64
        with sessions.engine.connect() as conn:
            raw = conn.execute(
                text("SELECT COUNT(*) FROM refresh_tokens WHERE token_hash = :t"), {"t": token}
            ).scalar()
        assert raw == 0

    def test_delete_is_idempotent(self, stores, farmer: User) -> None:
        _, sessions = stores
        token, _ = issue_refresh_token(sessions, farmer)
        assert sessions.delete(token) is True
        assert sessions.delete(token) is False
        assert sessions.delete("never-issued") is False

    def test_delete_expired_only_removes_expired(self, stores, farmer: User) -> None:
        _, sessions = stores
        live, _ = issue_refresh_token(sessions, farmer)
        sessions.save("expired-1", farmer.id, now_utc() - timedelta(hours=1))
        sessions.save("expired-2", farmer.id, now_utc() - timedelta(days=2))

        assert sessions.delete_expired() == 2
        assert sessions.find(live) is not None
        assert sessions.find("expired-1") is None

    def test_multiple_sessions_per_user(self, stores, farmer: User) -> None:
        _, sessions = stores
        for _ in range(3):
            issue_refresh_token(sessions, farmer)
        assert sessions.count_for_user(farmer.id) == 3
        assert sessions.delete_for_user(farmer.id) == 3
        assert sessions.count_for_user(farmer.id) == 0


class TestConcurrentRotation:
    def test_only_one_concurrent_consume_wins(self, file_stores) -> None:
        """Eight threads consuming the same token at once: exactly one gets the record."""
        users, sessions = file_stores
        user = make_user(users, "race@cropcase.in")
        token, _ = issue_refresh_token(sessions, user)

        barrier = threading.Barrier(8)
        results = []
        lock = threading.Lock()

        def worker() -> None:
            barrier.wait()
            record = sessions.consume(token)
            with lock:
                results.append(record)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        winners = [r for r in results if r is not None]
        assert len(results) == 8
        assert len(winners) == 1
        assert winners[0].user_id == user.id
