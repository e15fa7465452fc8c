"""Authentication dependencies resolving the audit owner from a bearer token."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from services.session_token import decode_session_token


auth_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    user_id: str
    email: Optional[str] = None


def _context_from_credentials(credentials: HTTPAuthorizationCredentials) -> AuthContext:
    if credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Missing Bearer session token.")
    try:
        payload = decode_session_token(credentials.credentials)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    return AuthContext(
        user_id=str(payload.get("sub", "")),
        email=str(payload.get("email", "")) or None,
    )


async def get_auth_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
) -> AuthContext:
    """Resolve authenticated user from Bearer session token."""
    if not credentials:
        raise HTTPException(status_code=401, detail="Missing Bearer session token.")
    return _context_from_credentials(credentials)


async def get_optional_auth_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
) -> Optional[AuthContext]:
    """Resolve the session when one is supplied; anonymous callers get None."""
    if not credentials:
        return None
    return _context_from_credentials(credentials)
