"""Local rendezvous token shared between the gateway and its clients."""

from __future__ import annotations

import logging
import uuid

from trustgate.security.storage_crypto import StorageCryptoError
from trustgate.vault.store import EncryptedVault
from trustgate.vault.types import VaultError

_log = logging.getLogger(__name__)

GATEWAY_SERVICE = "trustgate"
GATEWAY_TOKEN_ACCOUNT = "gateway-token"
GATEWAY_TOKEN_HEADER = "X-Gateway-Token"


def resolve_gateway_token(vault: EncryptedVault) -> str:
    """Return the stored token, minting and storing a new one if needed."""
    try:
        existing = vault.read(GATEWAY_SERVICE, GATEWAY_TOKEN_ACCOUNT)
    except (StorageCryptoError, VaultError) as exc:
        _log.warning("Stored gateway token unusable (%s); generating a new one", type(exc).__name__)
        existing = None
    if existing and existing.strip():
        return existing.strip()
    token = str(uuid.uuid4())
    vault.write(GATEWAY_SERVICE, GATEWAY_TOKEN_ACCOUNT, token)
    _log.info("Generated new gateway token")
    return token
