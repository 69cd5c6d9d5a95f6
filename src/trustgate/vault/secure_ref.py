"""``secure:<account>`` references that stand in for plaintext secrets.

Structured stores keep a reference string where a secret used to live; the
secret itself sits encrypted in the vault. Values that are not references are
returned unchanged so pre-migration stores keep working.
"""

from __future__ import annotations

import logging
from collections.abc import MutableMapping
from typing import Any

from trustgate.vault.store import EncryptedVault

_log = logging.getLogger(__name__)

SECURE_REF_PREFIX = "secure:"
AUTH_PROFILES_SERVICE = "trustgate.auth-profiles"

# credential type -> ((field, account suffix), ...)
CREDENTIAL_SECRET_FIELDS: dict[str, tuple[tuple[str, str], ...]] = {
    "api_key": (("key", "api-key"),),
    "token": (("token", "token"),),
    "oauth": (("access", "oauth-access"), ("refresh", "oauth-refresh")),
}


def is_secure_ref(value: object) -> bool:
    return (
        isinstance(value, str)
        and value.startswith(SECURE_REF_PREFIX)
        and len(value) > len(SECURE_REF_PREFIX)
    )


def account_from_ref(ref: str) -> str:
    return ref[len(SECURE_REF_PREFIX) :]


def make_ref(account: str) -> str:
    return f"{SECURE_REF_PREFIX}{account}"


def profile_account(profile_id: str, suffix: str) -> str:
    return f"auth-profile:{profile_id}:{suffix}"


class SecureRefStore:
    """Resolve and mint secure references inside one vault service."""

    def __init__(self, vault: EncryptedVault, service: str = AUTH_PROFILES_SERVICE) -> None:
        self._vault = vault
        self._service = service

    @property
    def service(self) -> str:
        return self._service

    def resolve(self, value: str | None) -> str | None:
        """Return plaintext for a reference; any other value passes through."""
        if value is None or not is_secure_ref(value):
            return value
        return self._vault.read(self._service, account_from_ref(value))

    def store(self, account: str, secret: str) -> str:
        self._vault.write(self._service, account, secret)
        return make_ref(account)

    def delete(self, value: str | None) -> None:
        if value is not None and is_secure_ref(value):
            self._vault.delete(self._service, account_from_ref(value))

    def migrate_profiles(self, profiles: MutableMapping[str, Any]) -> bool:
        """Move plaintext credential fields into the vault.

        Every non-empty, non-reference secret field becomes a reference under
        ``auth-profile:<profile id>:<field>``. Returns whether anything changed;
        a store that is already migrated produces no vault writes.
        """
        mutated = False
        for profile_id, credential in profiles.items():
            if not isinstance(credential, dict):
                continue
            fields = CREDENTIAL_SECRET_FIELDS.get(str(credential.get("type")), ())
            for field_name, suffix in fields:
                raw = credential.get(field_name)
                if not isinstance(raw, str) or is_secure_ref(raw):
                    continue
                value = raw.strip()
                if not value:
                    continue
                credential[field_name] = self.store(profile_account(profile_id, suffix), value)
                mutated = True
        if mutated:
            _log.info("Migrated plaintext credentials into vault service %s", self._service)
        return mutated
