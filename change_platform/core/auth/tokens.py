from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

from change_platform.core.config import Settings, get_settings
from change_platform.core.errors import ApiErrorCode, UnauthorizedError

ALGORITHM = "HS256"
TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_REFRESH = "refresh"

_EXPIRY_RE = re.compile(r"^(\d+)([smhd])$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}
_DEFAULT_EXPIRY_SECONDS = 86400


def parse_expiry(value: str) -> int:
    """'15m' -> 900. Anything unparseable falls back to one day."""
    m = _EXPIRY_RE.match((value or "").strip())
    if not m:
        return _DEFAULT_EXPIRY_SECONDS
    return int(m.group(1)) * _UNIT_SECONDS[m.group(2)]


@dataclass(frozen=True)
class TokenPayload:
    user_id: str
    email: str
    role: str
    tenant_id: Optional[str]


def _encode(claims: Dict[str, Any], secret: str, ttl_seconds: int) -> str:
    now = datetime.now(timezone.utc)
    body = dict(claims)
    body["iat"] = now
    body["exp"] = now + timedelta(seconds=ttl_seconds)
    return jwt.encode(body, secret, algorithm=ALGORITHM)


def issue_tokens(payload: TokenPayload, settings: Optional[Settings] = None) -> Dict[str, Any]:
    s = settings or get_settings()
    access_ttl = parse_expiry(s.jwt_expires_in)
    access = _encode(
        {
            "user_id": payload.user_id,
            "email": payload.email,
            "role": payload.role,
            "tenant_id": payload.tenant_id,
            "type": TOKEN_TYPE_ACCESS,
        },
        s.jwt_secret,
        access_ttl,
    )
    refresh = _encode(
        {"user_id": payload.user_id, "type": TOKEN_TYPE_REFRESH},
        s.jwt_refresh_secret,
        parse_expiry(s.jwt_refresh_expires_in),
    )
    return {"access_token": access, "refresh_token": refresh, "token_type": "bearer", "expires_in": access_ttl}


def _decode(token: str, secret: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, secret, algorithms=[ALGORITHM], options={"require": ["exp", "iat"]})
    except jwt.ExpiredSignatureError as e:
        raise UnauthorizedError("Token expired", code=ApiErrorCode.TOKEN_EXPIRED) from e
    except jwt.InvalidTokenError as e:
        raise UnauthorizedError("Invalid token") from e


def verify_access_token(token: str, settings: Optional[Settings] = None) -> TokenPayload:
    s = settings or get_settings()
    claims = _decode(token, s.jwt_secret)
    if claims.get("type", TOKEN_TYPE_ACCESS) != TOKEN_TYPE_ACCESS or not claims.get("user_id"):
        raise UnauthorizedError("Invalid token")
    return TokenPayload(
        user_id=str(claims["user_id"]),
        email=str(claims.get("email") or ""),
        role=str(claims.get("role") or ""),
        tenant_id=claims.get("tenant_id"),
    )


def verify_refresh_token(token: str, settings: Optional[Settings] = None) -> str:
    """Return the user id carried by a valid refresh token."""
    s = settings or get_settings()
    claims = _decode(token, s.jwt_refresh_secret)
    if claims.get("type") != TOKEN_TYPE_REFRESH or not claims.get("user_id"):
        raise UnauthorizedError("Invalid refresh token")
    return str(claims["user_id"])
