from __future__ import annotations

import time
from typing import Dict, Tuple

import jwt

ALGORITHM = "HS256"


class TokenError(Exception):
    """Raised when a JWT token cannot be validated."""


def _now() -> int:
    return int(time.time())


def create_access_token(*, email: str, secret: str, ttl: int) -> Tuple[str, int]:
    issued_at = _now()
    payload: Dict[str, object] = {
        "sub": email,
        "iat": issued_at,
        "exp": issued_at + ttl,
        "typ": "access",
    }
    token = jwt.encode(payload, secret, algorithm=ALGORITHM)
    if isinstance(token, bytes):
        return token.decode("utf-8"), ttl
    return token, ttl


def decode_access_token(token: str, *, secret: str) -> Dict[str, object]:
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except jwt.PyJWTError as exc:
        raise TokenError(str(exc)) from exc
    if payload.get("typ") not in (None, "access"):
        raise TokenError("Invalid token type for access token")
    return payload
