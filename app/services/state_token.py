"""Signed OAuth ``state`` tokens.

Format: ``base64url(json claims) + "." + base64url(hmac_sha256(claims))``.
The callback must still re-check the embedded user's role; a valid signature
only proves the token was issued by this service.
"""

import base64
import binascii
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from app.config import settings
from app.services.errors import AuthorizationError

MAX_TOKEN_LENGTH = 1024


@dataclass(frozen=True)
class StateClaims:
    clinic_id: UUID
    user_id: UUID
    provider: str
    issued_at: int


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def _sign(payload: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), payload.encode("ascii"), hashlib.sha256).digest()
    return _b64encode(digest)


def issue_state_token(
    clinic_id: UUID,
    user_id: UUID,
    provider: str,
    *,
    now: Optional[int] = None,
    secret: Optional[str] = None,
) -> str:
    claims = {
        "c": str(clinic_id),
        "u": str(user_id),
        "p": provider,
        "iat": int(now if now is not None else time.time()),
    }
    payload = _b64encode(json.dumps(claims, separators=(",", ":")).encode("utf-8"))
    return f"{payload}.{_sign(payload, secret or settings.state_secret)}"


def verify_state_token(
    token: Optional[str],
    *,
    now: Optional[int] = None,
    secret: Optional[str] = None,
    max_age_seconds: Optional[int] = None,
) -> StateClaims:
    """Return the claims of an untampered, unexpired token or raise AuthorizationError."""
    if not token or len(token) > MAX_TOKEN_LENGTH or not token.isascii() or token.count(".") != 1:
        raise AuthorizationError("Invalid state", code="invalid_state")

    payload, signature = token.split(".")
    expected = _sign(payload, secret or settings.state_secret)
    if not hmac.compare_digest(expected, signature):
        raise AuthorizationError("Invalid state", code="invalid_state")

    try:
        claims = json.loads(_b64decode(payload))
        parsed = StateClaims(
            clinic_id=UUID(claims["c"]),
            user_id=UUID(claims["u"]),
            provider=str(claims["p"]),
            issued_at=int(claims["iat"]),
        )
    except (binascii.Error, ValueError, KeyError, TypeError) as exc:
        raise AuthorizationError("Invalid state", code="invalid_state") from exc

    max_age = max_age_seconds if max_age_seconds is not None else settings.state_max_age_seconds
    now_ts = int(now if now is not None else time.time())
    if now_ts - parsed.issued_at > max_age or parsed.issued_at > now_ts + 60:
        raise AuthorizationError("State expired", code="state_expired")
    return parsed
