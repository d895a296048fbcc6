"""
tests/test_storage_failures.py -- Behaviour when the database stops answering.

Covers:
  - a locked database during login surfaces as 503 storage_unavailable
  - a failed refresh transaction surfaces as 503 and leaves the token usable
  - driver error text never reaches the response body
  - the background purge loop logs and survives a failed sweep
"""

from __future__ import annotations

import asyncio
import logging
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import OperationalError

import api.main as api_main
from conftest import make_user
from core.errors import StorageUnavailable


def _locked(*args, **kwargs):
    raise OperationalError("SELECT 1", {}, Exception("database is locked"))


@pytest.fixture(scope="module")
def grower(api_client):
    client, _, _ = api_client
    return make_user(client.app.state.user_store, "storage@cropcase.in")


def _assert_unavailable(resp) -> None:
    assert resp.status_code == 503
    error = resp.json()["error"]
    assert error["code"] == "storage_unavailable"
    assert error["message"] == StorageUnavailable.default_message
    assert "locked" not in resp.text
    assert "OperationalError" not in resp.text


def test_login_with_locked_database_returns_503(api_client, grower, monkeypatch):
    client, _, _ = api_client
    monkeypatch.setattr(client.app.state.user_store.engine, "connect", _locked)

    resp = client.post("/api/v1/auth/login", json={"email": grower.email, "password": "secret123"})
    _assert_unavailable(resp)


def test_refresh_with_failed_transaction_returns_503(api_client, grower, monkeypatch):
    client, _, _ = api_client
    login = client.post("/api/v1/auth/login", json={"email": grower.email, "password": "secret123"})
    assert login.status_code == 200
    token = login.json()["refreshToken"]

    monkeypatch.setattr(client.app.state.session_store.engine, "begin", _locked)
    resp = client.post("/api/v1/auth/refresh", json={"refreshToken": token})
    _assert_unavailable(resp)

    # The transaction never ran, so the token was not consumed.
    monkeypatch.undo()
    again = client.post("/api/v1/auth/refresh", json={"refreshToken": token})
    assert again.status_code == 200


class _FlakySessionStore:
    """First sweep fails, second removes two tokens, later ones find nothing."""

    def __init__(self) -> None:
        self.calls = 0

    def delete_expired(self) -> int:
        self.calls += 1
        if self.calls == 1:
            raise StorageUnavailable()
        return 2 if self.calls == 2 else 0


def test_purge_loop_survives_unavailable_storage(monkeypatch, caplog):
    monkeypatch.setattr(
        api_main, "_settings", api_main._settings.model_copy(update={"token_purge_interval_seconds": 0})
    )
    caplog.set_level(logging.INFO, logger="cropcase.api")
    store = _FlakySessionStore()
    app = SimpleNamespace(state=SimpleNamespace(session_store=store))

    async def run() -> None:
        task = asyncio.create_task(api_main._purge_loop(app))
        for _ in range(500):
            if store.calls >= 3:
                break
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(run())

    assert store.calls >= 3
    messages = [r.getMessage() for r in caplog.records if r.name == "cropcase.api"]
    assert "Expired session purge skipped: storage unavailable" in messages
    assert messages.count("Purged 2 expired refresh tokens") == 1
