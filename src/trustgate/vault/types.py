"""Result types, backend protocol, and errors for the secret vault."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

NOT_FOUND = "not_found"
EMPTY_SECRET = "empty_secret"
BACKEND_ERROR_PREFIX = "backend_error"


@dataclass(frozen=True)
class VaultResult:
    """Outcome of one backend call: ``{ok, secret}`` or ``{ok: false, error}``."""

    ok: bool
    secret: str | None = None
    error: str | None = None

    @classmethod
    def success(cls, secret: str | None = None) -> VaultResult:
        return cls(ok=True, secret=secret)

    @classmethod
    def failure(cls, error: str) -> VaultResult:
        return cls(ok=False, error=error)

    def to_dict(self) -> dict[str, object]:
        if self.ok:
            return {"ok": True} if self.secret is None else {"ok": True, "secret": self.secret}
        return {"ok": False, "error": self.error}


def backend_error(detail: str) -> str:
    return f"{BACKEND_ERROR_PREFIX}:{detail}"


class VaultBackend(Protocol):
    """Native secure storage keyed by ``(service, account)``.

    Implementations never raise for expected failures; they report them in
    the returned ``VaultResult``. ``delete`` of a missing entry succeeds.
    """

    name: str

    def read(self, service: str, account: str) -> VaultResult: ...

    def write(self, service: str, account: str, secret: str) -> VaultResult: ...

    def delete(self, service: str, account: str) -> VaultResult: ...


class VaultError(Exception):
    """Raised by the vault façade when a backend call fails."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class SecretNotFoundError(VaultError):
    def __init__(self, service: str, account: str) -> None:
        super().__init__(NOT_FOUND, f"No secret stored for {service}/{account}.")
        self.service = service
        self.account = account


class VaultBackendError(VaultError):
    pass
