"""Configuration loading for the trust boundary.

Settings come from environment variables (optionally seeded from ``.env`` by
the CLI) plus a ``trustgate.toml`` file holding the tool approval policy.
Everything is resolved once into a frozen ``TrustgateConfig`` and handed to
the composition root; nothing deeper reads the environment.

Dependencies: (none, leaf module)
Wired in: cli.py → main(), runtime.py → build_runtime()
"""

from __future__ import annotations

import os
import sys
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import cast

DEFAULT_APPROVAL_TIMEOUT_MS = 120_000
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8765

_VALID_FILE_MODES = frozenset({"off", "on-new-path", "always"})
_VALID_BROWSER_MODES = frozenset({"off", "per-session", "always"})
_VALID_VAULT_BACKENDS = frozenset({"memory", "system", "macos", "windows", "secret-service"})
_VALID_MODES = frozenset({"gateway", "desktop"})
_TRUTHY = frozenset({"1", "true", "yes", "on"})


class ConfigError(ValueError):
    """Raised when configuration values are missing or malformed."""


@dataclass(frozen=True)
class ToolApprovalsSettings:
    """Raw tool approval policy settings from ``[tool_approvals]``."""

    enabled: bool = False
    timeout_ms: int = DEFAULT_APPROVAL_TIMEOUT_MS
    file_mode: str = "off"
    browser_mode: str = "off"


@dataclass(frozen=True)
class TrustgateConfig:
    """Immutable process configuration."""

    state_dir: Path
    """Private per-user directory holding install.json and tool-approvals.json."""

    vault_backend: str = "system"
    """``memory`` for tests, ``system`` for the keyring default, or an explicit OS backend."""

    mode: str = "gateway"
    """Deployment mode. ``desktop`` enables the identity broker and secure credential store."""

    install_uuid_override: str | None = None
    device_id_override: str | None = None
    auth_secure_store: bool = False
    google_client_id: str | None = None
    oauth_redirect_port: int = 0
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    platform: str = field(default_factory=lambda: sys.platform)
    tool_approvals: ToolApprovalsSettings = field(default_factory=ToolApprovalsSettings)

    @property
    def identity_enabled(self) -> bool:
        return self.mode == "desktop"

    @property
    def secure_credentials_enabled(self) -> bool:
        return self.auth_secure_store or self.mode == "desktop"

    @property
    def install_file(self) -> Path:
        return self.state_dir / "install.json"

    @property
    def tool_approvals_file(self) -> Path:
        return self.state_dir / "tool-approvals.json"

    @property
    def auth_profiles_file(self) -> Path:
        return self.state_dir / "auth-profiles.json"


def default_state_dir(env: Mapping[str, str]) -> Path:
    raw = (env.get("TRUSTGATE_STATE_DIR") or "").strip()
    if raw:
        return Path(raw).expanduser()
    return Path.home() / ".trustgate"


def load_config(
    env: Mapping[str, str] | None = None,
    *,
    config_path: Path | None = None,
) -> TrustgateConfig:
    """Build a ``TrustgateConfig`` from *env* and the TOML policy file."""
    source = os.environ if env is None else env
    state_dir = default_state_dir(source)
    if config_path is None:
        raw_path = (source.get("TRUSTGATE_CONFIG") or "").strip()
        config_path = Path(raw_path).expanduser() if raw_path else state_dir / "trustgate.toml"

    vault_backend = _read_choice(source, "TRUSTGATE_VAULT_BACKEND", "system", _VALID_VAULT_BACKENDS)
    mode = _read_choice(source, "TRUSTGATE_MODE", "gateway", _VALID_MODES)
    client_id = (
        source.get("TRUSTGATE_GOOGLE_CLIENT_ID") or source.get("GOOGLE_OAUTH_CLIENT_ID") or ""
    ).strip()

    return TrustgateConfig(
        state_dir=state_dir,
        vault_backend=vault_backend,
        mode=mode,
        install_uuid_override=_read_optional(source, "TRUSTGATE_INSTALL_UUID"),
        device_id_override=_read_optional(source, "TRUSTGATE_DEVICE_ID"),
        auth_secure_store=(source.get("TRUSTGATE_AUTH_SECURE_STORE") or "").strip().lower()
        in _TRUTHY,
        google_client_id=client_id or None,
        oauth_redirect_port=_read_non_negative_int(source, "TRUSTGATE_OAUTH_REDIRECT_PORT", 0),
        host=(source.get("TRUSTGATE_HOST") or DEFAULT_HOST).strip(),
        port=_read_non_negative_int(source, "TRUSTGATE_PORT", DEFAULT_PORT),
        tool_approvals=load_tool_approvals_settings(config_path),
    )


def load_tool_approvals_settings(config_path: Path) -> ToolApprovalsSettings:
    """Parse the ``[tool_approvals]`` section; absent file means approvals are off."""
    if not config_path.is_file():
        return ToolApprovalsSettings()
    with config_path.open("rb") as fh:
        try:
            data = tomllib.load(fh)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Invalid TOML in {config_path}: {exc}") from exc
    section = data.get("tool_approvals")
    if section is None:
        return ToolApprovalsSettings()
    if not isinstance(section, dict):
        raise ConfigError("'tool_approvals' must be a table.")
    return parse_tool_approvals_settings(cast(dict[str, object], section))


def parse_tool_approvals_settings(raw: Mapping[str, object]) -> ToolApprovalsSettings:
    enabled_raw = raw.get("enabled", False)
    if not isinstance(enabled_raw, bool):
        raise ConfigError("tool_approvals.enabled must be a boolean.")
    enabled = enabled_raw

    timeout_raw = raw.get("timeout_ms", DEFAULT_APPROVAL_TIMEOUT_MS)
    if isinstance(timeout_raw, bool) or not isinstance(timeout_raw, int) or timeout_raw < 1:
        raise ConfigError("tool_approvals.timeout_ms must be an integer of at least 1.")
    timeout_ms = timeout_raw

    file_mode = str(raw.get("file_mode") or ("on-new-path" if enabled else "off"))
    if file_mode not in _VALID_FILE_MODES:
        msg = f"tool_approvals.file_mode '{file_mode}' must be one of {sorted(_VALID_FILE_MODES)}."
        raise ConfigError(msg)

    browser_mode = str(raw.get("browser_mode") or ("per-session" if enabled else "off"))
    if browser_mode not in _VALID_BROWSER_MODES:
        msg = (
            f"tool_approvals.browser_mode '{browser_mode}' must be one of "
            f"{sorted(_VALID_BROWSER_MODES)}."
        )
        raise ConfigError(msg)

    return ToolApprovalsSettings(
        enabled=enabled,
        timeout_ms=timeout_ms,
        file_mode=file_mode,
        browser_mode=browser_mode,
    )


def _read_optional(env: Mapping[str, str], name: str) -> str | None:
    value = (env.get(name) or "").strip()
    return value or None


def _read_choice(env: Mapping[str, str], name: str, default: str, choices: frozenset[str]) -> str:
    value = (env.get(name) or default).strip().lower()
    if value not in choices:
        raise ConfigError(f"{name} must be one of {sorted(choices)}, got '{value}'.")
    return value


def _read_non_negative_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer.") from exc
    if value < 0:
        raise ConfigError(f"{name} must be >= 0.")
    return value
