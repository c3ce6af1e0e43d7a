"""
tests/test_main.py -- Tests for the command-line entry point.

The `check` command is run with build_components patched, so no Redis or IdP
is contacted.
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

from core.models import Decision
from main import main


def _components(decision: Decision) -> MagicMock:
    components = MagicMock()
    components.authorizer.authorize.return_value = decision
    return components


def test_check_allow_prints_decision_and_exits_zero(capsys) -> None:
    components = _components(Decision.allowed({"x-user-id": "u1"}))
    with patch("core.wiring.build_components", return_value=components):
        code = main(["check", "Bearer pat-1"])

    assert code == 0
    out = json.loads(capsys.readouterr().out)
    assert out == {"allow": True, "headers": {"x-user-id": "u1"}, "reason": ""}
    assert components.authorizer.authorize.call_args.args[0] == "Bearer pat-1"
    components.close.assert_called_once()


def test_check_deny_exits_one(capsys) -> None:
    components = _components(Decision.denied("exchange path not configured"))
    with patch("core.wiring.build_components", return_value=components):
        code = main(["check", "pat-1"])

    assert code == 1
    assert json.loads(capsys.readouterr().out)["reason"] == "exchange path not configured"


def test_check_reads_credential_from_stdin(monkeypatch) -> None:
    import io

    monkeypatch.setattr("sys.stdin", io.StringIO("pat-from-stdin\n"))
    components = _components(Decision.allowed({}))
    with patch("core.wiring.build_components", return_value=components):
        main(["check", "-"])

    assert components.authorizer.authorize.call_args.args[0] == "pat-from-stdin\n"


def test_no_command_prints_help(capsys) -> None:
    assert main([]) == 0
    assert "serve-http" in capsys.readouterr().out
