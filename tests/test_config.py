"""
tests/test_config.py -- Unit tests for core/config.py and core/wiring.py.

Covers the exchange-path validator, the header key mapping, and that the
composition root wires the configured exchange mode into the engine.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings
from core.wiring import build_components


class TestExchangePathValidation:
    def test_delegated_without_admin_pat_fails_in_production(self) -> None:
        with pytest.raises(ValidationError, match="ADMIN_PAT is required"):
            Settings(debug=False, exchange_mode="delegated", admin_pat="")

    def test_delegated_without_admin_pat_warns_in_debug(self, caplog) -> None:
        with caplog.at_level("WARNING", logger="tokengate.config"):
            settings = Settings(debug=True, exchange_mode="delegated", admin_pat="")
        assert settings.admin_pat == ""
        assert "delegated token exchange is disabled" in caplog.text

    def test_simple_mode_needs_no_admin_pat(self) -> None:
        settings = Settings(debug=False, exchange_mode="simple", admin_pat="")
        assert settings.exchange_mode == "simple"

    def test_unknown_mode_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(debug=True, exchange_mode="magic")

    def test_cache_ttl_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            Settings(debug=True, cache_ttl_seconds=0)


class TestHeaderKeys:
    def test_defaults(self) -> None:
        keys = Settings(debug=True).header_keys()
        assert keys == {
            "user_id": "x-user-id",
            "user_email": "x-user-email",
            "user_groups": "x-user-groups",
            "user_preferred_username": "x-user-preferred-username",
            "user_jwt": "x-user-jwt",
        }

    def test_overrides_from_env(self, monkeypatch) -> None:
        monkeypatch.setenv("HEADER_USER_ID", "x-remote-user")
        assert Settings(debug=True).header_keys()["user_id"] == "x-remote-user"


class TestCORSOrigins:
    def test_comma_separated_env(self, monkeypatch) -> None:
        monkeypatch.setenv("CORS_ALLOWED_ORIGINS", "https://a.example.com, https://b.example.com")
        assert Settings(debug=True).cors_allowed_origins == ["https://a.example.com", "https://b.example.com"]

    def test_json_array_env(self, monkeypatch) -> None:
        monkeypatch.setenv("CORS_ALLOWED_ORIGINS", '["https://a.example.com"]')
        assert Settings(debug=True).cors_allowed_origins == ["https://a.example.com"]

    def test_unset_means_empty(self, monkeypatch) -> None:
        monkeypatch.delenv("CORS_ALLOWED_ORIGINS", raising=False)
        assert Settings(debug=True).cors_allowed_origins == []


class TestWiring:
    def test_delegated_with_admin_pat(self) -> None:
        components = build_components(Settings(debug=False, exchange_mode="delegated", admin_pat="admin"))
        try:
            assert components.authorizer.exchange_configured is True
            assert components.pat_manager is not None
        finally:
            components.close()

    def test_without_admin_pat_disables_pat_management(self) -> None:
        components = build_components(Settings(debug=True, exchange_mode="delegated", admin_pat=""))
        try:
            assert components.authorizer.exchange_configured is False
            assert components.pat_manager is None
        finally:
            components.close()

    def test_simple_mode_is_configured_without_admin_pat(self) -> None:
        components = build_components(Settings(debug=True, exchange_mode="simple"))
        try:
            assert components.authorizer.exchange_configured is True
        finally:
            components.close()
