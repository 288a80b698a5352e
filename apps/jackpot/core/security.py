from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from apps.jackpot.infra.settings import get_settings

ALGORITHM = "HS256"
ROLE_PLAYER = "player"
ROLE_OPERATOR = "operator"


class AuthError(Exception):
    pass


def create_access_token(user_id: int, *, role: str = ROLE_PLAYER, ttl: int | None = None) -> tuple[str, int]:
    settings = get_settings()
    ttl = ttl if ttl is not None else settings.jwt_ttl
    expires = datetime.now(tz=timezone.utc) + timedelta(seconds=ttl)
    payload = {
        "sub": str(user_id),
        "role": role,
        "exp": expires,
        "type": "access",
    }
    token = jwt.encode(payload, settings.jwt_secret, algorithm=ALGORITHM)
    return token, ttl


def decode_access_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[ALGORITHM])
    except jwt.PyJWTError as exc:
        raise AuthError("Invalid token") from exc
    if payload.get("type") != "access":
        raise AuthError("Unexpected token type")
    try:
        int(payload.get("sub", ""))
    except (TypeError, ValueError) as exc:
        raise AuthError("Invalid subject") from exc
    return payload
