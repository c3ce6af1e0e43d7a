"""
tests/conftest.py -- Shared test fixtures for tokengate integration tests.

This module provides:
  - _patch_lifespan(): wires mock collaborators into app.state, bypassing
    real startup (no Redis pool, no IdP session)
  - app_state: the mocks wired into app.state for one test
  - api_client: TestClient over the real app with the patched lifespan
  - make_jwt: factory for unsigned three-segment tokens (claims tests)

Environment must be set before any core/api import: get_settings() is cached
on first call, and api/main.py reads it at import time.
"""

from __future__ import annotations

import base64
import json
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from types import SimpleNamespace
from unittest.mock import MagicMock

# CRITICAL: Set env before any core/api import. DEBUG lets Settings load in
# delegated mode without ADMIN_PAT (warning instead of ValueError).
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("PAT_CREATE_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app

# ---------------------------------------------------------------------------
# Token helpers
# ---------------------------------------------------------------------------


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def jwt_token(claims: dict) -> str:
    """Return header.payload.signature with a fake signature. Never verified."""
    header = _b64url(json.dumps({"alg": "RS256", "typ": "JWT"}).encode())
    payload = _b64url(json.dumps(claims).encode())
    return f"{header}.{payload}.c2lnbmF0dXJl"


# ---------------------------------------------------------------------------
# Lifespan patching
# ---------------------------------------------------------------------------


def _patch_lifespan(state: SimpleNamespace):
    """Return an async context manager that replaces the real lifespan.

    Wires the given mocks into app.state so TestClient routes never touch
    Redis or the IdP.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.cache = state.cache
        app.state.authorizer = state.authorizer
        app.state.pat_manager = state.pat_manager
        yield

    return test_lifespan


@pytest.fixture
def app_state() -> SimpleNamespace:
    """Fresh mocks for every test: cache, authorizer and PAT manager."""
    cache = MagicMock()
    cache.ping.return_value = True
    return SimpleNamespace(cache=cache, authorizer=MagicMock(), pat_manager=MagicMock())


@pytest.fixture
def api_client(app_state: SimpleNamespace) -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app with mocked collaborators.

    raise_server_exceptions=False so unhandled errors surface as the 500
    envelope the generic exception handler renders, as a real client sees.
    """
    app.router.lifespan_context = _patch_lifespan(app_state)

    with TestClient(app, raise_server_exceptions=False) as client:
        yield client


@pytest.fixture
def make_jwt():
    """Factory fixture: make_jwt({"sub": ...}) -> unsigned three-segment token."""
    return jwt_token
