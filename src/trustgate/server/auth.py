"""Gateway token authentication for the server."""

from __future__ import annotations

import secrets

from fastapi import HTTPException, Request, status

from trustgate.vault.gateway_token import GATEWAY_TOKEN_HEADER

# Set by ``configure_auth``; ``None`` disables the check.
_gateway_token: str | None = None


def configure_auth(token: str | None) -> None:
    """Bind the token every authenticated request must present."""
    global _gateway_token
    _gateway_token = token


def verify_gateway_token(request: Request) -> None:
    """Verify the X-Gateway-Token header. No-op if no token is configured."""
    expected = _gateway_token
    if expected is None:
        return
    provided = request.headers.get(GATEWAY_TOKEN_HEADER, "")
    if not secrets.compare_digest(provided.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing gateway token",
        )
