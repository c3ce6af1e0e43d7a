"""
tests/test_pat_routes.py -- Integration tests for the PAT management routes.

FastAPI routing -> trusted-header caller dependency -> PATManager (MagicMock)
-> response model serialization and PATError status mapping.

Coverage:
  - 401 unauthenticated without X-Auth-Request-User on every route
  - Create / list / delete happy paths and wire shapes (epoch timestamps)
  - Error mapping: 400, 404 (two codes), 409, 500
  - 503 when PAT management is not configured
  - CORS scoped to the PAT paths
  - CreatePAT rate limit, per caller
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from pat.models import PAT
from pat.service import (
    InvalidExpirationError,
    MachineUserNotFoundError,
    PATConflictError,
    PATInternalError,
    PATNotFoundError,
)

CREATE = "/pat.v1.PATService/CreatePAT"
LIST = "/pat.v1.PATService/ListPATs"
DELETE = "/pat.v1.PATService/DeletePAT"

CALLER = {
    "X-Auth-Request-User": "h1",
    "X-Auth-Request-Email": "a@example.com",
    "X-Auth-Request-Preferred-Username": "alice",
}

EXPIRES = datetime(2030, 1, 1, tzinfo=timezone.utc)
CREATED = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _pat(pat_id: str = "p1") -> PAT:
    return PAT(id=pat_id, machine_user_id="m1", human_user_id="h1", expiration_date=EXPIRES, created_at=CREATED)


class TestUnauthenticated:
    """Requests without the proxy's user header are rejected before the manager runs."""

    @pytest.mark.parametrize(
        "path,body",
        [(CREATE, {"expiration_date": 1893456000}), (LIST, {}), (DELETE, {"pat_id": "p1"})],
    )
    def test_missing_user_header(self, api_client: TestClient, app_state, path: str, body: dict) -> None:
        resp = api_client.post(path, json=body)
        assert resp.status_code == 401, f"Expected 401, got {resp.status_code}: {resp.text}"
        assert resp.json()["error"]["code"] == "unauthenticated"
        assert app_state.pat_manager.method_calls == []


class TestCreatePAT:
    def test_create(self, api_client: TestClient, app_state) -> None:
        app_state.pat_manager.create_pat.return_value = (_pat(), "raw-token")
        resp = api_client.post(CREATE, json={"expiration_date": int(EXPIRES.timestamp())}, headers=CALLER)

        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["token"] == "raw-token"
        assert data["pat"] == {
            "id": "p1",
            "user_id": "m1",
            "human_user_id": "h1",
            "expiration_date": int(EXPIRES.timestamp()),
            "created_at": int(CREATED.timestamp()),
        }
        app_state.pat_manager.create_pat.assert_called_once_with("h1", "a@example.com", "alice", EXPIRES)

    def test_invalid_expiration_maps_to_400(self, api_client: TestClient, app_state) -> None:
        app_state.pat_manager.create_pat.side_effect = InvalidExpirationError("expiration date must be in the future")
        resp = api_client.post(CREATE, json={"expiration_date": 0}, headers=CALLER)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_argument"

    def test_out_of_range_expiration_maps_to_400(self, api_client: TestClient, app_state) -> None:
        resp = api_client.post(CREATE, json={"expiration_date": 10**20}, headers=CALLER)
        assert resp.status_code == 400
        app_state.pat_manager.create_pat.assert_not_called()

    def test_missing_expiration_is_validation_error(self, api_client: TestClient) -> None:
        resp = api_client.post(CREATE, json={}, headers=CALLER)
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_conflict_maps_to_409(self, api_client: TestClient, app_state) -> None:
        app_state.pat_manager.create_pat.side_effect = PATConflictError("exists")
        resp = api_client.post(CREATE, json={"expiration_date": 1893456000}, headers=CALLER)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "already_exists"

    def test_internal_error_hides_details(self, api_client: TestClient, app_state) -> None:
        app_state.pat_manager.create_pat.side_effect = PATInternalError("failed to create PAT: secret body")
        resp = api_client.post(CREATE, json={"expiration_date": 1893456000}, headers=CALLER)
        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "internal"
        assert "secret body" not in resp.text


class TestListPATs:
    def test_list(self, api_client: TestClient, app_state) -> None:
        app_state.pat_manager.list_pats.return_value = [_pat("p1"), _pat("p2")]
        resp = api_client.post(LIST, json={}, headers=CALLER)
        assert resp.status_code == 200
        assert [p["id"] for p in resp.json()["pats"]] == ["p1", "p2"]
        assert "token" not in resp.json()["pats"][0]
        app_state.pat_manager.list_pats.assert_called_once_with("h1")

    def test_list_empty(self, api_client: TestClient, app_state) -> None:
        app_state.pat_manager.list_pats.return_value = []
        resp = api_client.post(LIST, json={}, headers=CALLER)
        assert resp.json() == {"pats": []}


class TestDeletePAT:
    def test_delete(self, api_client: TestClient, app_state) -> None:
        resp = api_client.post(DELETE, json={"pat_id": "p1"}, headers=CALLER)
        assert resp.status_code == 200
        assert resp.json() == {"success": True}
        app_state.pat_manager.delete_pat.assert_called_once_with("h1", "p1")

    @pytest.mark.parametrize(
        "exc,code",
        [
            (MachineUserNotFoundError("machine user not found"), "machine_user_not_found"),
            (PATNotFoundError("PAT not found"), "pat_not_found"),
        ],
    )
    def test_not_found_variants(self, api_client: TestClient, app_state, exc, code: str) -> None:
        app_state.pat_manager.delete_pat.side_effect = exc
        resp = api_client.post(DELETE, json={"pat_id": "p1"}, headers=CALLER)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == code

    def test_empty_pat_id_is_validation_error(self, api_client: TestClient) -> None:
        resp = api_client.post(DELETE, json={"pat_id": ""}, headers=CALLER)
        assert resp.status_code == 422


class TestNotConfigured:
    def test_returns_503_without_manager(self, api_client: TestClient) -> None:
        api_client.app.state.pat_manager = None
        resp = api_client.post(LIST, json={}, headers=CALLER)
        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "unavailable"


class TestCORS:
    def test_preflight_on_pat_path(self, api_client: TestClient) -> None:
        resp = api_client.options(
            CREATE,
            headers={
                "Origin": "https://app.example.com",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "Content-Type, Connect-Protocol-Version",
            },
        )
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == "*"

    def test_forward_auth_path_has_no_cors(self, api_client: TestClient, app_state) -> None:
        from core.models import Decision

        app_state.authorizer.authorize.return_value = Decision.allowed({})
        resp = api_client.options(
            "/oauth2/token-exchange/x",
            headers={
                "Origin": "https://app.example.com",
                "Access-Control-Request-Method": "POST",
                "Authorization": "pat-1",
            },
        )
        assert "access-control-allow-origin" not in resp.headers
        app_state.authorizer.authorize.assert_called_once()


class TestCreateRateLimit:
    """CreatePAT is limited per caller, keyed on the proxy's user header."""

    @pytest.fixture(autouse=True)
    def _tight_limit(self):
        from api.limiter import limiter
        from core.config import Settings

        limiter.reset()
        with patch("api.routes.pat.get_settings", return_value=Settings(debug=True, pat_create_rate_limit="2/minute")):
            yield
        limiter.reset()

    def _create(self, api_client: TestClient, user_id: str):
        return api_client.post(
            CREATE,
            json={"expiration_date": 1893456000},
            headers={**CALLER, "X-Auth-Request-User": user_id},
        )

    def test_third_create_in_window_is_rejected(self, api_client: TestClient, app_state) -> None:
        app_state.pat_manager.create_pat.return_value = (_pat(), "raw-token")

        statuses = [self._create(api_client, "h-limited").status_code for _ in range(3)]

        assert statuses == [200, 200, 429], f"Expected the third create to be limited, got {statuses}"
        assert app_state.pat_manager.create_pat.call_count == 2

    def test_429_uses_error_envelope(self, api_client: TestClient, app_state) -> None:
        app_state.pat_manager.create_pat.return_value = (_pat(), "raw-token")
        for _ in range(2):
            self._create(api_client, "h-envelope")

        resp = self._create(api_client, "h-envelope")
        assert resp.status_code == 429
        assert resp.json()["error"]["code"] == "rate_limited"
        assert "retry-after" in resp.headers

    def test_buckets_are_per_user(self, api_client: TestClient, app_state) -> None:
        app_state.pat_manager.create_pat.return_value = (_pat(), "raw-token")
        for _ in range(2):
            self._create(api_client, "h-first")

        assert self._create(api_client, "h-first").status_code == 429
        assert self._create(api_client, "h-second").status_code == 200

    def test_list_is_not_limited(self, api_client: TestClient, app_state) -> None:
        app_state.pat_manager.list_pats.return_value = []
        statuses = {api_client.post(LIST, json={}, headers=CALLER).status_code for _ in range(4)}
        assert statuses == {200}
