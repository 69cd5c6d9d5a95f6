"""Device- and install-bound authenticated encryption for vault values.

Key = scrypt(device id, "trustgate-v1-salt:" + install uuid). Ciphertext is
``b64(nonce):b64(tag):b64(ciphertext)``; every call draws a fresh nonce so
encrypting the same value twice never yields the same string.

Dependencies: security.device_id
Wired in: vault/store.py → EncryptedVault
"""

from __future__ import annotations

import base64
import binascii
import os
import threading

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from trustgate.security.device_id import DeviceIdResolver

SALT_PREFIX = "trustgate-v1-salt:"
_KEY_LENGTH = 32
_NONCE_LENGTH = 12
_TAG_LENGTH = 16
_SCRYPT_N = 2**14
_SCRYPT_R = 8
_SCRYPT_P = 1


class StorageCryptoError(Exception):
    """Base error for storage encryption failures."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class InvalidCiphertextFormatError(StorageCryptoError):
    def __init__(self, message: str = "Invalid encrypted value format.") -> None:
        super().__init__("invalid_format", message)


class DecryptionFailedError(StorageCryptoError):
    def __init__(self, message: str = "Encrypted value failed authentication.") -> None:
        super().__init__("authentication_failed", message)


def b64_encode(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


def b64_decode(value: str) -> bytes:
    return base64.b64decode(value.encode("ascii"), validate=True)


def derive_storage_key(device_id: str, install_uuid: str) -> bytes:
    """Stretch the device id into a 256-bit key scoped to one install."""
    salt = f"{SALT_PREFIX}{install_uuid}".encode()
    return Scrypt(
        salt=salt,
        length=_KEY_LENGTH,
        n=_SCRYPT_N,
        r=_SCRYPT_R,
        p=_SCRYPT_P,
    ).derive(device_id.encode("utf-8"))


class StorageCrypto:
    """Encrypt and decrypt strings under a key derived per install uuid."""

    def __init__(self, device_ids: DeviceIdResolver) -> None:
        self._device_ids = device_ids
        self._keys: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def _key_for(self, install_uuid: str) -> bytes:
        with self._lock:
            key = self._keys.get(install_uuid)
            if key is None:
                key = derive_storage_key(self._device_ids.resolve(), install_uuid)
                self._keys[install_uuid] = key
            return key

    def encrypt(self, plaintext: str, install_uuid: str) -> str:
        nonce = os.urandom(_NONCE_LENGTH)
        sealed = AESGCM(self._key_for(install_uuid)).encrypt(
            nonce, plaintext.encode("utf-8"), None
        )
        ciphertext, tag = sealed[:-_TAG_LENGTH], sealed[-_TAG_LENGTH:]
        return ":".join((b64_encode(nonce), b64_encode(tag), b64_encode(ciphertext)))

    def decrypt(self, encrypted: str, install_uuid: str) -> str:
        nonce, tag, ciphertext = _split_payload(encrypted)
        try:
            plaintext = AESGCM(self._key_for(install_uuid)).decrypt(
                nonce, ciphertext + tag, None
            )
        except InvalidTag as exc:
            raise DecryptionFailedError() from exc
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionFailedError("Decrypted value is not valid UTF-8.") from exc


def _split_payload(encrypted: str) -> tuple[bytes, bytes, bytes]:
    parts = encrypted.split(":")
    if len(parts) != 3:
        raise InvalidCiphertextFormatError()
    try:
        nonce, tag, ciphertext = (b64_decode(part) for part in parts)
    except (binascii.Error, ValueError) as exc:
        raise InvalidCiphertextFormatError() from exc
    if len(nonce) != _NONCE_LENGTH or len(tag) != _TAG_LENGTH:
        raise InvalidCiphertextFormatError()
    return nonce, tag, ciphertext
