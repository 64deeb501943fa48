from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Iterable
from uuid import uuid4

from jose import JWTError, jwt

from app.core.config import settings

ALGORITHM = settings.JWT_ALGORITHM
_RESERVED_CLAIMS = {"sub", "exp", "type", "jti", "iat", "scopes"}

ADMIN_SCOPE = "admin"
CRON_SCOPE = "cron"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_header_algorithm(token: str) -> None:
    try:
        header = jwt.get_unverified_header(token)
    except JWTError as exc:
        raise JWTError("Invalid token header") from exc
    if header.get("alg") != ALGORITHM:
        raise JWTError("Token signed with unexpected algorithm")


def _candidate_secrets(primary: str | None, fallbacks: list[str]) -> list[str]:
    seen: list[str] = []
    for item in [primary, *fallbacks]:
        if item and item not in seen:
            seen.append(item)
    return seen


def _decode_with_rotation(token: str, primary: str | None, fallbacks: list[str]) -> dict[str, Any]:
    _ensure_header_algorithm(token)
    last_error: JWTError | None = None
    for secret in _candidate_secrets(primary, fallbacks):
        try:
            return jwt.decode(token, secret, algorithms=[ALGORITHM])
        except JWTError as exc:
            last_error = exc
    raise last_error or JWTError("Unable to decode token with provided secrets")


def create_access_token(
    subject: str,
    scopes: Iterable[str],
    expires_minutes: int | None = None,
    extra: dict[str, Any] | None = None,
) -> str:
    """Issue a service token for an operator or for the cron caller."""
    now = _now()
    payload: dict[str, Any] = {
        "sub": str(subject),
        "type": "access",
        "scopes": sorted(set(scopes)),
        "exp": now + timedelta(minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        "iat": int(now.timestamp()),
        "jti": uuid4().hex,
    }
    for key, value in (extra or {}).items():
        if key not in _RESERVED_CLAIMS:
            payload[key] = value
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    data = _decode_with_rotation(token, settings.SECRET_KEY, settings.SECRET_KEY_FALLBACKS)
    if data.get("type") != "access":
        raise JWTError("Invalid token type")
    return data
