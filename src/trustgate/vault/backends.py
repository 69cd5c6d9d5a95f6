"""Vault backend adapters.

``MemoryVaultBackend`` exists for tests and is only used when configured
explicitly. ``KeyringVaultBackend`` binds to the host's secure storage through
the ``keyring`` library; which native facility it talks to is chosen by name
at the composition root, never by sniffing the environment here.
"""

from __future__ import annotations

import importlib
import logging
import threading

from keyring.backend import KeyringBackend
from keyring.errors import KeyringError, PasswordDeleteError

from trustgate.vault.types import EMPTY_SECRET, NOT_FOUND, VaultBackend, VaultResult, backend_error

_log = logging.getLogger(__name__)

# backend name -> (module, class) inside the keyring distribution
_KEYRING_BACKENDS: dict[str, tuple[str, str]] = {
    "macos": ("keyring.backends.macOS", "Keyring"),
    "windows": ("keyring.backends.Windows", "WinVaultKeyring"),
    "secret-service": ("keyring.backends.SecretService", "Keyring"),
}


class MemoryVaultBackend:
    """In-process dictionary store with the same contract as the OS backends."""

    name = "memory"

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], str] = {}
        self._lock = threading.Lock()
        self.writes = 0

    def read(self, service: str, account: str) -> VaultResult:
        with self._lock:
            secret = self._entries.get((service, account))
        if secret is None:
            return VaultResult.failure(NOT_FOUND)
        return VaultResult.success(secret)

    def write(self, service: str, account: str, secret: str) -> VaultResult:
        if not secret:
            return VaultResult.failure(EMPTY_SECRET)
        with self._lock:
            self._entries[(service, account)] = secret
            self.writes += 1
        return VaultResult.success()

    def delete(self, service: str, account: str) -> VaultResult:
        with self._lock:
            self._entries.pop((service, account), None)
        return VaultResult.success()

    def accounts(self, service: str) -> list[str]:
        with self._lock:
            return sorted(acct for svc, acct in self._entries if svc == service)


class KeyringVaultBackend:
    """Adapter from a ``keyring`` backend to the ``VaultResult`` contract."""

    def __init__(self, keyring: KeyringBackend, name: str = "system") -> None:
        self._keyring = keyring
        self.name = name

    def read(self, service: str, account: str) -> VaultResult:
        try:
            secret = self._keyring.get_password(service, account)
        except KeyringError as exc:
            _log.warning("Vault read failed for %s/%s via %s", service, account, self.name)
            return VaultResult.failure(backend_error(type(exc).__name__))
        if secret is None:
            return VaultResult.failure(NOT_FOUND)
        if not secret:
            return VaultResult.failure(EMPTY_SECRET)
        return VaultResult.success(secret)

    def write(self, service: str, account: str, secret: str) -> VaultResult:
        if not secret:
            return VaultResult.failure(EMPTY_SECRET)
        try:
            self._keyring.set_password(service, account, secret)
        except KeyringError as exc:
            _log.warning("Vault write failed for %s/%s via %s", service, account, self.name)
            return VaultResult.failure(backend_error(type(exc).__name__))
        return VaultResult.success()

    def delete(self, service: str, account: str) -> VaultResult:
        try:
            self._keyring.delete_password(service, account)
        except PasswordDeleteError:
            return VaultResult.success()  # already absent
        except KeyringError as exc:
            _log.warning("Vault delete failed for %s/%s via %s", service, account, self.name)
            return VaultResult.failure(backend_error(type(exc).__name__))
        return VaultResult.success()


def create_vault_backend(name: str) -> VaultBackend:
    """Build the backend configured as *name*.

    ``system`` defers to keyring's own platform default; the other names pin a
    specific native facility and fail loudly if it is not usable here.
    """
    if name == "memory":
        return MemoryVaultBackend()
    if name == "system":
        import keyring

        return KeyringVaultBackend(keyring.get_keyring(), name="system")
    target = _KEYRING_BACKENDS.get(name)
    if target is None:
        raise ValueError(f"Unknown vault backend '{name}'.")
    module_name, class_name = target
    module = importlib.import_module(module_name)
    backend_cls = getattr(module, class_name)
    if not backend_cls.viable:
        raise RuntimeError(f"Vault backend '{name}' is not available on this host.")
    return KeyringVaultBackend(backend_cls(), name=name)
