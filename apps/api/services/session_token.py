"""Signed bearer tokens identifying the owner of audit requests."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from config import settings


SESSION_TOKEN_TYPE = "wha_session"


def create_session_token(
    user_id: str,
    email: Optional[str] = None,
    expires_hours: Optional[int] = None,
) -> Dict[str, Any]:
    """Sign a session token for `user_id`; returns the token and its expiry timestamp."""
    now = datetime.now(timezone.utc)
    ttl_hours = max(int(expires_hours or settings.JWT_EXPIRATION_HOURS or 24), 1)
    expires_at = int((now + timedelta(hours=ttl_hours)).timestamp())
    claims: Dict[str, Any] = {
        "sub": user_id,
        "type": SESSION_TOKEN_TYPE,
        "iat": int(now.timestamp()),
        "exp": expires_at,
    }
    if email:
        claims["email"] = email

    return {
        "token": jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM),
        "expires_at": expires_at,
    }


def decode_session_token(token: str) -> Dict[str, Any]:
    """Verify signature, expiry, token type and subject; raises ValueError otherwise."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise ValueError("Invalid or expired session token.") from exc

    if str(payload.get("type", "")).strip() != SESSION_TOKEN_TYPE:
        raise ValueError("Invalid session token type.")
    if not str(payload.get("sub", "")).strip():
        raise ValueError("Session token missing subject.")
    return payload
