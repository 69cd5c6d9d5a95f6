"""Secret vault: native backends, encryption layer, and secure references.

Public API: SecretVault, EncryptedVault, SecureRefStore, AuthProfileStore,
    MemoryVaultBackend, KeyringVaultBackend, create_vault_backend,
    resolve_gateway_token, VaultResult, VaultError and subclasses.
Internal: CREDENTIAL_SECRET_FIELDS, account helpers.
"""

from trustgate.vault.auth_profiles import AuthProfileError, AuthProfileStore, ProviderStatus
from trustgate.vault.backends import KeyringVaultBackend, MemoryVaultBackend, create_vault_backend
from trustgate.vault.gateway_token import GATEWAY_TOKEN_HEADER, resolve_gateway_token
from trustgate.vault.secure_ref import SECURE_REF_PREFIX, SecureRefStore, is_secure_ref
from trustgate.vault.store import EncryptedVault, SecretVault
from trustgate.vault.types import (
    SecretNotFoundError,
    VaultBackend,
    VaultBackendError,
    VaultError,
    VaultResult,
)

__all__ = [
    "GATEWAY_TOKEN_HEADER",
    "SECURE_REF_PREFIX",
    "AuthProfileError",
    "AuthProfileStore",
    "EncryptedVault",
    "KeyringVaultBackend",
    "MemoryVaultBackend",
    "ProviderStatus",
    "SecretNotFoundError",
    "SecretVault",
    "SecureRefStore",
    "VaultBackend",
    "VaultBackendError",
    "VaultError",
    "VaultResult",
    "create_vault_backend",
    "is_secure_ref",
    "resolve_gateway_token",
]
