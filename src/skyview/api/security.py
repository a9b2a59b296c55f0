# API Security - Session-token authentication for the local vault API
#
# A random session token is generated when the server starts. Every vault
# endpoint requires it in the X-Session-Token header; the WebSocket takes
# it as a ?token= query parameter because browsers cannot set WS headers.

import secrets
from typing import Optional

from fastapi import Header, HTTPException, status

# Generated once per server instance
_SESSION_TOKEN: Optional[str] = None


def initialize_session_token() -> str:
    """
    Generate a new 256-bit session token for this server instance.

    Returns:
        The token, to be handed to the local client at launch
    """
    global _SESSION_TOKEN
    _SESSION_TOKEN = secrets.token_urlsafe(32)
    return _SESSION_TOKEN


def get_session_token() -> str:
    """
    Raises:
        RuntimeError: If the session token hasn't been initialized
    """
    if _SESSION_TOKEN is None:
        raise RuntimeError("Session token not initialized. Call initialize_session_token() first.")
    return _SESSION_TOKEN


def token_matches(candidate: Optional[str]) -> bool:
    """Constant-time comparison against the current session token."""
    if _SESSION_TOKEN is None or not candidate:
        return False
    return secrets.compare_digest(candidate, _SESSION_TOKEN)


async def verify_session_token(x_session_token: str = Header(None)) -> str:
    """
    FastAPI dependency: reject calls without the session token.

    Usage in routes:
        @router.get("/protected", dependencies=[Depends(verify_session_token)])

    Raises:
        HTTPException: 503 before a token exists, 401 if missing or wrong
    """
    if _SESSION_TOKEN is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session token not initialized"
        )

    if x_session_token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Session-Token header"
        )

    if not token_matches(x_session_token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid session token"
        )

    return x_session_token
