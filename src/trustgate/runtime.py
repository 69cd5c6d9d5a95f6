"""Composition root: build every trust-boundary component from one config.

Dependencies: config, security, vault, approvals, identity, server.events
Wired in: cli.py, server/app.py → create_app_from_env()
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from trustgate.approvals.events import SystemEventQueue
from trustgate.approvals.gate import ToolApprovalGate
from trustgate.approvals.manager import ManagerApprovalRequester, ToolApprovalManager
from trustgate.approvals.policy import ToolApprovalsPolicy
from trustgate.approvals.session_cache import SessionApprovalCache
from trustgate.approvals.store import ToolApprovalsStore
from trustgate.config import TrustgateConfig
from trustgate.identity.broker import GoogleIdentityBroker
from trustgate.io_utils import ensure_private_dir
from trustgate.security.device_id import DeviceIdResolver
from trustgate.security.install_identity import InstallIdentity
from trustgate.security.storage_crypto import StorageCrypto
from trustgate.server.events import EventBroadcaster
from trustgate.vault.auth_profiles import AuthProfileStore
from trustgate.vault.backends import create_vault_backend
from trustgate.vault.gateway_token import resolve_gateway_token
from trustgate.vault.secure_ref import SecureRefStore
from trustgate.vault.store import EncryptedVault, SecretVault
from trustgate.vault.types import VaultBackend

_log = logging.getLogger(__name__)

_HTTP_TIMEOUT_SECONDS = 30.0


@dataclass
class TrustgateRuntime:
    """Everything a server or CLI invocation needs, wired once."""

    config: TrustgateConfig
    install_identity: InstallIdentity
    device_ids: DeviceIdResolver
    vault: SecretVault
    encrypted_vault: EncryptedVault
    secure_refs: SecureRefStore
    auth_profiles: AuthProfileStore
    approvals_store: ToolApprovalsStore
    session_cache: SessionApprovalCache
    system_events: SystemEventQueue
    approvals: ToolApprovalManager
    broadcaster: EventBroadcaster
    gate: ToolApprovalGate
    identity: GoogleIdentityBroker
    http: httpx.AsyncClient

    def gateway_token(self) -> str:
        return resolve_gateway_token(self.encrypted_vault)

    async def aclose(self) -> None:
        await self.identity.close()
        await self.http.aclose()


def build_runtime(
    config: TrustgateConfig,
    *,
    backend: VaultBackend | None = None,
    http: httpx.AsyncClient | None = None,
    now_ms: Callable[[], int] | None = None,
    home: str | None = None,
) -> TrustgateRuntime:
    """Wire the components described by *config*.

    *backend*, *http* and *now_ms* replace the configured vault backend, the
    outbound HTTP client and the wall clock (tests).
    """
    ensure_private_dir(config.state_dir)
    clock: dict[str, Callable[[], int]] = {"now_ms": now_ms} if now_ms is not None else {}

    install_identity = InstallIdentity(config.install_file, override=config.install_uuid_override)
    device_ids = DeviceIdResolver(config.platform, override=config.device_id_override)
    if backend is None:
        backend = create_vault_backend(config.vault_backend)
    vault = SecretVault(backend)
    encrypted_vault = EncryptedVault(vault, StorageCrypto(device_ids), install_identity)
    secure_refs = SecureRefStore(encrypted_vault)
    auth_profiles = AuthProfileStore(
        config.auth_profiles_file,
        secure_refs,
        secure_enabled=config.secure_credentials_enabled,
    )

    approvals_store = ToolApprovalsStore(config.tool_approvals_file, home=home, **clock)
    session_cache = SessionApprovalCache(home=home, **clock)
    system_events = SystemEventQueue(**clock)
    approvals = ToolApprovalManager(**clock)
    broadcaster = EventBroadcaster()
    gate = ToolApprovalGate(
        ToolApprovalsPolicy.from_settings(config.tool_approvals),
        approvals_store,
        session_cache,
        ManagerApprovalRequester(approvals, broadcaster),
        system_events,
        home=home,
    )

    client = http if http is not None else httpx.AsyncClient(timeout=_HTTP_TIMEOUT_SECONDS)
    identity = GoogleIdentityBroker(
        encrypted_vault,
        client,
        client_id=config.google_client_id,
        enabled=config.identity_enabled,
        redirect_port=config.oauth_redirect_port,
        **clock,
    )
    _log.info(
        "Runtime ready (mode=%s, vault=%s, state=%s)",
        config.mode,
        vault.backend.name,
        config.state_dir,
    )
    return TrustgateRuntime(
        config=config,
        install_identity=install_identity,
        device_ids=device_ids,
        vault=vault,
        encrypted_vault=encrypted_vault,
        secure_refs=secure_refs,
        auth_profiles=auth_profiles,
        approvals_store=approvals_store,
        session_cache=session_cache,
        system_events=system_events,
        approvals=approvals,
        broadcaster=broadcaster,
        gate=gate,
        identity=identity,
        http=client,
    )
