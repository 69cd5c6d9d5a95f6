"""Identity records and errors for the OAuth sign-in broker."""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Any

FEATURE_DISABLED = "feature_disabled"
NOT_CONFIGURED = "not_configured"
ALREADY_IN_PROGRESS = "already_in_progress"
SESSION_NOT_FOUND = "session_not_found"
TIMED_OUT = "timed_out"
OAUTH_ERROR = "oauth_error"
MISSING_CODE = "missing_code"
MISSING_REFRESH_TOKEN = "missing_refresh_token"
TOKEN_EXCHANGE_FAILED = "token_exchange_failed"
USERINFO_FAILED = "userinfo_failed"
INVALID_GRANT = "invalid_grant"


class IdentityError(RuntimeError):
    """Raised by the identity broker; ``code`` is machine-readable."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


def _clean_str(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


@dataclass(frozen=True)
class GoogleIdentityRecord:
    email: str
    expires_at_ms: int
    name: str | None = None
    picture: str | None = None
    id: str | None = None

    def with_expiry(self, expires_at_ms: int) -> GoogleIdentityRecord:
        return replace(self, expires_at_ms=expires_at_ms)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"email": self.email, "expiresAtMs": self.expires_at_ms}
        if self.name:
            data["name"] = self.name
        if self.picture:
            data["picture"] = self.picture
        if self.id:
            data["id"] = self.id
        return data

    @classmethod
    def from_dict(cls, data: object) -> GoogleIdentityRecord | None:
        """Parse a stored record; anything malformed reads as no identity."""
        if not isinstance(data, dict):
            return None
        email = _clean_str(data.get("email"))
        expires = data.get("expiresAtMs")
        if isinstance(expires, bool) or not isinstance(expires, int | float):
            return None
        if not email or not math.isfinite(expires) or expires <= 0:
            return None
        return cls(
            email=email,
            expires_at_ms=int(expires),
            name=_clean_str(data.get("name")),
            picture=_clean_str(data.get("picture")),
            id=_clean_str(data.get("id")),
        )


@dataclass(frozen=True)
class UserInfo:
    email: str
    name: str | None = None
    picture: str | None = None
    id: str | None = None

    @classmethod
    def from_dict(cls, data: object) -> UserInfo | None:
        if not isinstance(data, dict):
            return None
        email = _clean_str(data.get("email"))
        if not email:
            return None
        return cls(
            email=email,
            name=_clean_str(data.get("name")),
            picture=_clean_str(data.get("picture")),
            id=_clean_str(data.get("id")),
        )


@dataclass(frozen=True)
class TokenGrant:
    access_token: str
    refresh_token: str | None
    expires_at_ms: int


@dataclass(frozen=True)
class SignInStart:
    session_id: str
    auth_url: str

    def to_dict(self) -> dict[str, str]:
        return {"sessionId": self.session_id, "authUrl": self.auth_url}
