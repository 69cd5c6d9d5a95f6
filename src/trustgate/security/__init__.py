"""Device binding, install identity, and storage encryption.

Public API: StorageCrypto, DeviceIdResolver, InstallIdentity,
    scrub_inherited_sensitive_env, and the error classes below.
Internal: derive_storage_key, b64 helpers.
"""

from trustgate.security.device_id import DeviceIdResolver, DeviceIdUnavailableError
from trustgate.security.install_identity import InstallIdentity, InstallIdentityError
from trustgate.security.sensitive_env import (
    SENSITIVE_GATEWAY_ENV_KEYS,
    scrub_inherited_sensitive_env,
)
from trustgate.security.storage_crypto import (
    DecryptionFailedError,
    InvalidCiphertextFormatError,
    StorageCrypto,
    StorageCryptoError,
)

__all__ = [
    "SENSITIVE_GATEWAY_ENV_KEYS",
    "DecryptionFailedError",
    "DeviceIdResolver",
    "DeviceIdUnavailableError",
    "InstallIdentity",
    "InstallIdentityError",
    "InvalidCiphertextFormatError",
    "StorageCrypto",
    "StorageCryptoError",
    "scrub_inherited_sensitive_env",
]
