from __future__ import annotations

import hashlib
import hmac
from datetime import UTC, datetime

from fastapi import HTTPException, Request

from autobid.config import settings

_BEARER_PREFIX = "bearer "


def _session_secret() -> bytes:
    return settings.session_secret.strip().encode("utf-8")


def _sign(payload: str) -> str:
    return hmac.new(_session_secret(), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def _build_token_value(user_id: int, expires_at: int) -> str:
    payload = f"{user_id}:{expires_at}"
    return f"{payload}:{_sign(payload)}"


def build_session_token(user_id: int, *, now: datetime | None = None) -> str:
    issued = now or datetime.now(UTC)
    expires_at = int(issued.timestamp()) + max(settings.session_max_age_seconds, 60)
    return _build_token_value(user_id, expires_at)


def validate_session_token(value: str, *, now: datetime | None = None) -> int | None:
    parts = value.split(":")
    if len(parts) != 3:
        return None
    uid_raw, expires_raw, signature = parts
    if not uid_raw.isdigit() or not expires_raw.isdigit():
        return None

    expected = _build_token_value(int(uid_raw), int(expires_raw)).split(":")[-1]
    if not hmac.compare_digest(signature, expected):
        return None

    current = now or datetime.now(UTC)
    if int(expires_raw) < int(current.timestamp()):
        return None
    return int(uid_raw)


def _token_from_request(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    if header.lower().startswith(_BEARER_PREFIX):
        token = header[len(_BEARER_PREFIX):].strip()
        return token or None
    return None


def current_user_id(request: Request) -> int:
    token = _token_from_request(request)
    if token is None:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    user_id = validate_session_token(token)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return user_id
