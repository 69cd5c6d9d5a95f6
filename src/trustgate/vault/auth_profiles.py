"""Provider credential store (``auth-profiles.json``).

Profiles map ``<provider>:default`` style ids to credentials. When the secure
credential store is enabled, secret fields are replaced by ``secure:``
references on every write.

Dependencies: io_utils, vault.secure_ref
Wired in: runtime.py → build_runtime(), server/methods.py → providers.*
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from trustgate.io_utils import read_text_or_none, write_json_atomic
from trustgate.vault.secure_ref import (
    SecureRefStore,
    is_secure_ref,
    make_ref,
    profile_account,
)

_log = logging.getLogger(__name__)

AUTH_PROFILES_VERSION = 1

KNOWN_PROVIDERS: tuple[tuple[str, str], ...] = (
    ("anthropic", "Anthropic (Claude)"),
    ("openai", "OpenAI"),
    ("google", "Google Gemini"),
    ("openrouter", "OpenRouter"),
)


class AuthProfileError(ValueError):
    """Raised for invalid provider credential requests."""


@dataclass(frozen=True)
class ProviderStatus:
    id: str
    label: str
    configured: bool

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "label": self.label, "configured": self.configured}


def normalize_provider_id(provider: str) -> str:
    return provider.strip().lower()


def default_profile_id(provider: str) -> str:
    return f"{normalize_provider_id(provider)}:default"


def is_configured_credential(credential: object) -> bool:
    if not isinstance(credential, dict):
        return False
    kind = credential.get("type")
    if kind == "api_key":
        return bool(str(credential.get("key") or "").strip())
    if kind == "token":
        return bool(str(credential.get("token") or "").strip())
    return bool(
        str(credential.get("access") or "").strip()
        and str(credential.get("refresh") or "").strip()
    )


class AuthProfileStore:
    """Read-modify-write access to the auth profile file under an in-process lock."""

    def __init__(
        self,
        path: Path,
        secure_refs: SecureRefStore | None = None,
        *,
        secure_enabled: bool = False,
    ) -> None:
        self._path = path
        self._secure_refs = secure_refs
        self._secure_enabled = secure_enabled and secure_refs is not None
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, Any]:
        raw = read_text_or_none(self._path)
        if raw is None:
            return _empty_store()
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            _log.warning("Auth profile store %s is not valid JSON; treating as empty", self._path)
            return _empty_store()
        profiles = data.get("profiles") if isinstance(data, dict) else None
        if not isinstance(profiles, dict):
            return _empty_store()
        return {"version": AUTH_PROFILES_VERSION, "profiles": profiles}

    def update(self, updater: Callable[[dict[str, Any]], bool]) -> bool:
        """Apply *updater* to the loaded store and persist when it returns True.

        Secret fields are migrated into the vault before the file is written,
        so plaintext never reaches disk while the secure store is enabled.
        """
        with self._lock:
            store = self.load()
            changed = updater(store)
            if self._secure_enabled and self._secure_refs is not None:
                changed = self._secure_refs.migrate_profiles(store["profiles"]) or changed
            if changed:
                write_json_atomic(self._path, store)
            return changed

    def migrate(self) -> bool:
        """Migrate any remaining plaintext secrets; no-op if the secure store is off."""
        if not self._secure_enabled:
            return False
        return self.update(lambda _store: False)

    def list_providers(self) -> list[ProviderStatus]:
        profiles = self.load()["profiles"]
        return [
            ProviderStatus(
                id=provider_id,
                label=label,
                configured=is_configured_credential(profiles.get(default_profile_id(provider_id))),
            )
            for provider_id, label in KNOWN_PROVIDERS
        ]

    def set_api_key(self, provider: str, api_key: str) -> None:
        provider_id = _require_known_provider(provider)
        key = api_key.strip()
        if not key:
            raise AuthProfileError("apiKey is required")
        profile_id = default_profile_id(provider_id)

        def _apply(store: dict[str, Any]) -> bool:
            store["profiles"][profile_id] = {"type": "api_key", "provider": provider_id, "key": key}
            return True

        self.update(_apply)
        _log.info("Stored API key for provider %s", provider_id)

    def clear_api_key(self, provider: str) -> bool:
        provider_id = _require_known_provider(provider)
        profile_id = default_profile_id(provider_id)
        refs_to_delete: list[str] = []

        def _apply(store: dict[str, Any]) -> bool:
            credential = store["profiles"].get(profile_id)
            if credential is None:
                return False
            if isinstance(credential, dict) and credential.get("type") == "api_key":
                key = credential.get("key")
                refs_to_delete.append(
                    key if is_secure_ref(key) else make_ref(profile_account(profile_id, "api-key"))
                )
            del store["profiles"][profile_id]
            return True

        removed = self.update(_apply)
        if self._secure_refs is not None:
            for ref in refs_to_delete:
                self._secure_refs.delete(ref)
        if removed:
            _log.info("Cleared API key for provider %s", provider_id)
        return removed

    def resolve_api_key(self, provider: str) -> str | None:
        """Return the plaintext API key for *provider*, following secure refs."""
        credential = self.load()["profiles"].get(default_profile_id(provider))
        if not isinstance(credential, dict) or credential.get("type") != "api_key":
            return None
        key = credential.get("key")
        if not isinstance(key, str):
            return None
        if self._secure_refs is None:
            return None if is_secure_ref(key) else key
        return self._secure_refs.resolve(key)


def _empty_store() -> dict[str, Any]:
    return {"version": AUTH_PROFILES_VERSION, "profiles": {}}


def _require_known_provider(provider: str) -> str:
    provider_id = normalize_provider_id(provider)
    if provider_id not in {known for known, _ in KNOWN_PROVIDERS}:
        raise AuthProfileError(f"unknown provider: {provider_id}")
    return provider_id
