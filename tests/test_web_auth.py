from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from fastapi import HTTPException
from starlette.requests import Request

from autobid.config import settings
from autobid.web.auth import build_session_token, current_user_id, validate_session_token


def _make_request(authorization: str | None = None) -> Request:
    headers: list[tuple[bytes, bytes]] = []
    if authorization is not None:
        headers.append((b"authorization", authorization.encode("utf-8")))
    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": "/api/notifications",
        "raw_path": b"/api/notifications",
        "query_string": b"",
        "headers": headers,
        "client": ("testclient", 50000),
        "server": ("testserver", 80),
    }
    return Request(scope)


def test_token_round_trip_and_tamper(monkeypatch) -> None:
    monkeypatch.setattr(settings, "session_secret", "unit-test-secret")

    token = build_session_token(42)
    assert validate_session_token(token) == 42

    uid, expires, signature = token.split(":")
    assert validate_session_token(f"43:{expires}:{signature}") is None
    assert validate_session_token("not-a-token") is None


def test_token_expires(monkeypatch) -> None:
    monkeypatch.setattr(settings, "session_secret", "unit-test-secret")
    monkeypatch.setattr(settings, "session_max_age_seconds", 3600)
    issued = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)

    token = build_session_token(7, now=issued)

    assert validate_session_token(token, now=issued + timedelta(minutes=59)) == 7
    assert validate_session_token(token, now=issued + timedelta(hours=2)) is None


def test_token_signed_with_other_secret_is_rejected(monkeypatch) -> None:
    monkeypatch.setattr(settings, "session_secret", "first-secret")
    token = build_session_token(5)
    monkeypatch.setattr(settings, "session_secret", "second-secret")

    assert validate_session_token(token) is None


def test_current_user_id_requires_bearer(monkeypatch) -> None:
    monkeypatch.setattr(settings, "session_secret", "unit-test-secret")

    with pytest.raises(HTTPException) as missing:
        current_user_id(_make_request())
    assert missing.value.status_code == 401

    with pytest.raises(HTTPException) as invalid:
        current_user_id(_make_request("Bearer 1:2:3"))
    assert invalid.value.status_code == 401

    assert current_user_id(_make_request(f"Bearer {build_session_token(9)}")) == 9
