"""Vault façade: raising wrapper over a backend plus the encrypting layer.

``SecretVault`` turns backend ``VaultResult`` values into exceptions.
``EncryptedVault`` encrypts with ``StorageCrypto`` before every write and
decrypts after every read; the backend only ever sees ciphertext.

Dependencies: vault.types, security.storage_crypto, security.install_identity
Wired in: runtime.py → build_runtime()
"""

from __future__ import annotations

import logging

from trustgate.security.install_identity import InstallIdentity
from trustgate.security.storage_crypto import StorageCrypto
from trustgate.vault.types import (
    NOT_FOUND,
    SecretNotFoundError,
    VaultBackend,
    VaultBackendError,
)

_log = logging.getLogger(__name__)


class SecretVault:
    """Opaque ``(service, account) -> secret`` storage."""

    def __init__(self, backend: VaultBackend) -> None:
        self._backend = backend

    @property
    def backend(self) -> VaultBackend:
        return self._backend

    def read(self, service: str, account: str) -> str:
        result = self._backend.read(service, account)
        if result.ok and result.secret is not None:
            return result.secret
        if result.error == NOT_FOUND:
            raise SecretNotFoundError(service, account)
        raise VaultBackendError(
            result.error or "backend_error", f"Vault read failed: {result.error}"
        )

    def read_optional(self, service: str, account: str) -> str | None:
        try:
            return self.read(service, account)
        except SecretNotFoundError:
            return None

    def write(self, service: str, account: str, secret: str) -> None:
        result = self._backend.write(service, account, secret)
        if not result.ok:
            raise VaultBackendError(
                result.error or "backend_error", f"Vault write failed: {result.error}"
            )

    def delete(self, service: str, account: str) -> None:
        result = self._backend.delete(service, account)
        if not result.ok:
            raise VaultBackendError(
                result.error or "backend_error", f"Vault delete failed: {result.error}"
            )


class EncryptedVault:
    """Encrypt-on-write, decrypt-on-read view over a ``SecretVault``."""

    def __init__(
        self,
        vault: SecretVault,
        crypto: StorageCrypto,
        install_identity: InstallIdentity,
    ) -> None:
        self._vault = vault
        self._crypto = crypto
        self._install_identity = install_identity

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def read(self, service: str, account: str) -> str | None:
        """Return the decrypted value, or ``None`` when nothing is stored.

        Raises ``StorageCryptoError`` when the stored value does not decrypt
        under this device and install.
        """
        encrypted = self._vault.read_optional(service, account)
        if encrypted is None:
            return None
        return self._crypto.decrypt(encrypted, self._install_identity.resolve())

    def write(self, service: str, account: str, plaintext: str) -> None:
        encrypted = self._crypto.encrypt(plaintext, self._install_identity.resolve())
        self._vault.write(service, account, encrypted)

    def delete(self, service: str, account: str) -> None:
        self._vault.delete(service, account)
