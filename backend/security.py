import base64
import hashlib
import hmac
import json
import time
from typing import Any, Callable, TypedDict

from fastapi import Depends, Header, HTTPException

from backend.config import AUTH_TOKEN_TTL_SECONDS, SIGNING_KEY
from database.db import STAFF_ROLES


class StaffClaims(TypedDict):
    sub: str
    role: str
    iat: int
    exp: int


def _b64(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _unb64(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def _signature(body: str) -> str:
    return _b64(hmac.digest(SIGNING_KEY.encode("utf-8"), body.encode("ascii"), hashlib.sha256))


def issue_staff_token(username: str, role: str) -> tuple[str, StaffClaims]:
    """Signed ``<claims>.<hmac>`` bearer token for a dashboard or scanner login."""
    if role not in STAFF_ROLES:
        raise ValueError(f"Unknown staff role: {role}")
    now = int(time.time())
    claims: StaffClaims = {
        "sub": username,
        "role": role,
        "iat": now,
        "exp": now + AUTH_TOKEN_TTL_SECONDS,
    }
    body = _b64(json.dumps(claims, separators=(",", ":"), sort_keys=True).encode("utf-8"))
    return f"{body}.{_signature(body)}", claims


def read_staff_token(token: str) -> StaffClaims | None:
    body, dot, signature = token.partition(".")
    if not token.isascii():
        return None
    if not dot or not hmac.compare_digest(signature, _signature(body)):
        return None

    try:
        claims: Any = json.loads(_unb64(body).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return None

    if not isinstance(claims, dict):
        return None
    if not isinstance(claims.get("sub"), str) or not claims["sub"].strip():
        return None
    if claims.get("role") not in STAFF_ROLES:
        return None
    if not isinstance(claims.get("exp"), int) or claims["exp"] < int(time.time()):
        return None
    return claims


def require_session(authorization: str | None = Header(default=None)) -> StaffClaims:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing bearer token.")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Invalid authorization scheme.")

    claims = read_staff_token(token.strip())
    if not claims:
        raise HTTPException(status_code=401, detail="Invalid or expired session token.")
    return claims


def require_role(*roles: str) -> Callable[..., StaffClaims]:
    """Dependency admitting only sessions whose role is one of ``roles``."""

    def _check(claims: StaffClaims = Depends(require_session)) -> StaffClaims:
        if claims["role"] not in roles:
            raise HTTPException(status_code=403, detail="Not allowed for this role.")
        return claims

    return _check


require_admin = require_role("admin")
require_staff = require_role("admin", "operator")
