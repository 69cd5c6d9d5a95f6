"""PKCE verifier/challenge generation and authorization URL construction."""

from __future__ import annotations

import base64
import hashlib
import secrets
from collections.abc import Sequence
from urllib.parse import urlencode

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_SCOPES: tuple[str, ...] = ("openid", "email", "profile")


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_verifier() -> str:
    return b64url(secrets.token_bytes(32))


def generate_state() -> str:
    return b64url(secrets.token_bytes(16))


def code_challenge(verifier: str) -> str:
    """S256 challenge: base64url(sha256(verifier)) without padding."""
    return b64url(hashlib.sha256(verifier.encode("ascii")).digest())


def loopback_redirect_uri(port: int) -> str:
    return f"http://127.0.0.1:{port}/callback"


def build_auth_url(
    *,
    client_id: str,
    redirect_uri: str,
    state: str,
    challenge: str,
    scopes: Sequence[str] = GOOGLE_SCOPES,
    auth_url: str = GOOGLE_AUTH_URL,
) -> str:
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": " ".join(scopes),
        "state": state,
        "code_challenge": challenge,
        "code_challenge_method": "S256",
        "access_type": "offline",
        "prompt": "consent",
        "include_granted_scopes": "true",
    }
    return f"{auth_url}?{urlencode(params)}"
