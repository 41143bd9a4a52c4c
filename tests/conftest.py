"""
tests/conftest.py -- Shared test fixtures for Gatekeep.

This module provides:
  - store / auth:   a fresh in-memory SqlCredentialStore and the auth
                    components built around it, per test
  - NOW:            a fixed, timezone-aware instant for deterministic unit tests
  - _patch_lifespan(): wires a test store into app.state, bypassing real startup
  - api_client:     TestClient against the real FastAPI app

Design: API tests use a named shared-memory SQLite URI (not plain :memory:)
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

Environment must be set before any auth/core/api import:
  DEBUG=true             -> get_settings() auto-generates SECRET_KEY
  BCRYPT_ROUNDS=4        -> minimum cost keeps hashing fast in tests
  LOGIN_RATE_LIMIT       -> high enough that the suite never trips it
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

# CRITICAL: Set env before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth import AuthComponents, build_auth
from auth.store import SqlCredentialStore
from core.config import get_settings

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[SqlCredentialStore, None, None]:
    s = SqlCredentialStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def auth(store: SqlCredentialStore) -> AuthComponents:
    return build_auth(get_settings(), store)


@pytest.fixture
def now() -> datetime:
    return NOW


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(store: SqlCredentialStore):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        components = build_auth(get_settings(), store)
        app.state.store = store
        app.state.auth_service = components.service
        app.state.guard = components.guard
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, SqlCredentialStore], None, None]:
    """Yield (client, store) backed by an isolated shared-memory database.

    The DB name is unique per test module so modules do not see each
    other's users.
    """
    store = SqlCredentialStore(f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    app.router.lifespan_context = _patch_lifespan(store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, store

    store.close()
