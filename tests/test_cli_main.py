from __future__ import annotations

import io
import json
from datetime import datetime, timedelta, timezone

import pytest

from fumo_sdk.auth import AuthTransport
from fumo_sdk.cli.main import main
from fumo_sdk.client import ApiClient
from fumo_sdk.credentials import Credential
from fumo_sdk.errors import ApiRequestError, ApiUnavailableError, AuthRejectedError
from fumo_sdk.outcomes import FatalFailure, RateLimited, Success, TransientFailure


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch) -> None:
    for name in ("FUMO_BASE_URL", "FUMO_PROFILE", "FUMO_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("FUMO_STORE_DIR", str(tmp_path / "state"))


def _run(tmp_path, *argv: str) -> tuple[int, str, str]:
    out = io.StringIO()
    err = io.StringIO()
    rc = main(["--config", str(tmp_path / "missing.toml"), *argv], stdout=out, stderr=err)
    return rc, out.getvalue(), err.getvalue()


def _status(tmp_path, *extra: str) -> dict:
    rc, out, _ = _run(tmp_path, *extra, "status", "--json")
    assert rc == 0
    return json.loads(out)


def _fake_exchange(self, proof: str) -> Credential:  # noqa: ANN001
    if proof != "good-code":
        raise AuthRejectedError("login rejected: 401 invalid code", status_code=401)
    now = datetime.now(timezone.utc)
    return Credential(token="tok-login", issued_at=now, expires_at=now + timedelta(hours=1))


def test_login_with_token_then_status(tmp_path) -> None:
    rc, out, _ = _run(tmp_path, "login", "--token", "pasted-session")

    assert rc == 0
    assert "logged in: profile=default" in out
    assert "pasted-session" not in out
    status = _status(tmp_path)
    assert status["state"] == "authenticated"
    assert status["expires_at"] is None


def test_login_with_code_exchanges_proof(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(AuthTransport, "exchange", _fake_exchange)

    rc, out, _ = _run(tmp_path, "login", "--code", "good-code", "--json")

    assert rc == 0
    payload = json.loads(out)
    assert payload["logged_in"] is True
    assert payload["expires_at"] is not None
    assert _status(tmp_path)["state"] == "authenticated"


def test_login_prompts_for_code_when_not_given(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(AuthTransport, "exchange", _fake_exchange)
    prompts: list[str] = []

    def fake_prompt(prompt: str) -> str:
        prompts.append(prompt)
        return "good-code\n"

    monkeypatch.setattr("fumo_sdk.cli.main._prompt_secret", fake_prompt)

    rc, _, _ = _run(tmp_path, "login")

    assert rc == 0
    assert prompts == ["one-time code: "]


def test_rejected_login_exits_with_validation_error(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(AuthTransport, "exchange", _fake_exchange)

    rc, _, err = _run(tmp_path, "login", "--code", "bad-code")

    assert rc == 1
    assert "login error: login rejected" in err
    assert _status(tmp_path)["state"] == "unauthenticated"


def test_login_while_api_down_is_transient(tmp_path, monkeypatch) -> None:
    def down(self, proof: str) -> Credential:  # noqa: ANN001, ARG001
        raise ApiUnavailableError("login request failed: ConnectionError")

    monkeypatch.setattr(AuthTransport, "exchange", down)

    rc, _, err = _run(tmp_path, "login", "--code", "good-code")

    assert rc == 2
    assert "api unavailable" in err


def test_expires_at_requires_token(tmp_path) -> None:
    rc, _, err = _run(tmp_path, "login", "--code", "x", "--expires-at", "2030-01-01T00:00:00Z")
    assert rc == 1
    assert "--expires-at only applies to --token" in err


def test_view_without_login_requires_auth(tmp_path) -> None:
    rc, out, err = _run(tmp_path, "view")

    assert rc == 3
    assert out == ""
    assert "run `fumo login`" in err


def test_view_prints_details_and_caches_user_id(tmp_path, monkeypatch) -> None:
    details = {
        "success": True,
        "id": "u-1",
        "name": "Reimu",
        "icon": "",
        "robloxUser": "reimu_rbx",
        "discordUserId": "42",
        "numSessions": 2,
    }
    monkeypatch.setattr(ApiClient, "get_account_details", lambda self: Success(payload=details))
    _run(tmp_path, "login", "--token", "pasted-session")

    rc, out, _ = _run(tmp_path, "view")

    assert rc == 0
    assert out.splitlines() == ["Reimu - reimu_rbx - u-1", "2 currently logged in sessions"]
    assert _status(tmp_path)["user_id"] == "u-1"


def test_list_prints_scripts(tmp_path, monkeypatch) -> None:
    scripts = {
        "success": True,
        "scripts": [
            {"id": "s1", "name": "alpha", "creator": "reimu", "editable": True, "isFavorite": True},
            {"id": "s2", "name": "beta", "creator": "marisa", "editable": False},
        ],
    }
    monkeypatch.setattr(ApiClient, "list_scripts", lambda self: Success(payload=scripts))

    rc, out, _ = _run(tmp_path, "list")

    assert rc == 0
    assert out.splitlines() == ["★ alpha (s1) by reimu 🔓", "☆ beta (s2) by marisa 🔐"]


@pytest.mark.parametrize(
    ("outcome", "expected_rc", "prefix"),
    [
        (FatalFailure(cause="api request failed: 404 not found", status_code=404), 4, "api error"),
        (RateLimited(retry_after=12.0), 5, "rate limited: retry after 12 seconds"),
        (TransientFailure(cause="server error: 503", attempts=4), 2, "api unavailable"),
    ],
)
def test_request_outcomes_map_to_exit_codes(
    tmp_path, monkeypatch, outcome, expected_rc: int, prefix: str
) -> None:
    monkeypatch.setattr(ApiClient, "call", lambda self, endpoint, body=None: outcome)

    rc, out, err = _run(tmp_path, "request", "GET", "/api/thing")

    assert rc == expected_rc
    assert out == ""
    assert prefix in err


def test_request_passes_endpoint_and_body(tmp_path, monkeypatch) -> None:
    captured: dict[str, object] = {}

    def fake_call(self, endpoint, body=None):  # noqa: ANN001
        captured["endpoint"] = endpoint
        captured["body"] = body
        return Success(payload={"id": "s9"}, status_code=201)

    monkeypatch.setattr(ApiClient, "call", fake_call)

    rc, out, _ = _run(
        tmp_path,
        "request",
        "post",
        "/api/script/create",
        "--data",
        '{"name": "x"}',
        "--idempotency-key",
        "req-1",
    )

    assert rc == 0
    assert json.loads(out) == {"id": "s9"}
    endpoint = captured["endpoint"]
    assert endpoint.method == "POST"
    assert endpoint.idempotency_key == "req-1"
    assert endpoint.retry_safe
    assert captured["body"] == {"name": "x"}


def test_request_rejects_invalid_json_body(tmp_path) -> None:
    rc, _, err = _run(tmp_path, "request", "POST", "/x", "--data", "{oops")
    assert rc == 1
    assert "--data must be valid JSON" in err


def test_errors_redact_secrets(tmp_path, monkeypatch) -> None:
    outcome = FatalFailure(cause="api error: bad token=tok-secret-123 Bearer tok-secret-123")
    monkeypatch.setattr(ApiClient, "call", lambda self, endpoint, body=None: outcome)

    rc, _, err = _run(tmp_path, "request", "GET", "/x")

    assert rc == 4
    assert "tok-secret-123" not in err
    assert "token=[REDACTED]" in err


def test_logout_clears_session_and_cache(tmp_path) -> None:
    _run(tmp_path, "login", "--token", "pasted-session")

    rc, out, _ = _run(tmp_path, "logout")
    rc_again, _, _ = _run(tmp_path, "logout")

    assert rc == 0
    assert rc_again == 0
    assert "logged out: profile=default" in out
    status = _status(tmp_path)
    assert status["state"] == "unauthenticated"
    assert status["user_id"] is None


def test_profiles_are_independent(tmp_path) -> None:
    _run(tmp_path, "--profile", "work", "login", "--token", "work-session")

    assert _status(tmp_path, "--profile", "work")["state"] == "authenticated"
    assert _status(tmp_path)["state"] == "unauthenticated"

    rc, out, _ = _run(tmp_path, "--profile", "work", "profiles")
    assert rc == 0
    assert out.splitlines() == ["* work"]


def test_invalid_profile_name_is_validation_error(tmp_path) -> None:
    rc, _, err = _run(tmp_path, "--profile", "../etc", "status")
    assert rc == 1
    assert "profile error" in err


def test_corrupt_store_exits_with_store_error(tmp_path) -> None:
    record = tmp_path / "state" / "profiles" / "default.json"
    record.parent.mkdir(parents=True)
    record.write_text("{broken", encoding="utf-8")

    rc, _, err = _run(tmp_path, "status")

    assert rc == 6
    assert "store error" in err


def test_invalid_config_exits_with_validation_error(tmp_path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text('auth_scheme = "signed"\n', encoding="utf-8")
    err = io.StringIO()

    rc = main(["--config", str(config_path), "status"], stdout=io.StringIO(), stderr=err)

    assert rc == 1
    assert "config error" in err.getvalue()


def test_version_json(tmp_path) -> None:
    rc, out, err = _run(tmp_path, "version", "--json")
    assert rc == 0
    assert json.loads(out)["cli"] == "fumo"
    assert "[beta]" not in err


@pytest.mark.parametrize(
    "payload",
    [
        {"success": True, "scripts": "not-a-list"},
        {"success": True, "scripts": ["s1", None]},
    ],
)
def test_list_with_malformed_scripts_is_fatal(tmp_path, monkeypatch, payload: dict) -> None:
    monkeypatch.setattr(ApiClient, "list_scripts", lambda self: Success(payload=payload))

    rc, out, err = _run(tmp_path, "list")

    assert rc == 4
    assert out == ""
    assert "api error: script list response was not a list of objects" in err


def test_login_with_malformed_response_is_fatal(tmp_path, monkeypatch) -> None:
    def malformed(self, proof: str) -> Credential:  # noqa: ANN001, ARG001
        raise ApiRequestError("malformed login response: expires_in out of range: 1e+30")

    monkeypatch.setattr(AuthTransport, "exchange", malformed)

    rc, _, err = _run(tmp_path, "login", "--code", "good-code")

    assert rc == 4
    assert "login error: malformed login response" in err
    assert _status(tmp_path)["state"] == "unauthenticated"
