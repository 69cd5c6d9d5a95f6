"""RPC method table: validate params, call the runtime, map errors to codes.

Every method answers ``RpcResponse(ok, result | error)``. Validation and
protocol misuse (duplicate or unknown ids, stale base hash, bad provider)
become ``INVALID_REQUEST``; backend and provider failures become
``UNAVAILABLE``. Error messages never carry secret material.

Dependencies: runtime, server.models, approvals, identity, vault
Wired in: server/routes.py → POST /api/rpc
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, cast

import httpx
from pydantic import BaseModel, ValidationError

from trustgate.approvals.events import TOOL_APPROVAL_RESOLVED
from trustgate.approvals.types import (
    Decision,
    ToolApprovalError,
    ToolApprovalRequest,
    UnknownApprovalIdError,
    is_decision,
)
from trustgate.identity.broker import DEFAULT_SIGN_IN_TIMEOUT_MS
from trustgate.identity.types import SESSION_NOT_FOUND, IdentityError
from trustgate.runtime import TrustgateRuntime
from trustgate.security.device_id import DeviceIdUnavailableError
from trustgate.security.install_identity import InstallIdentityError
from trustgate.security.storage_crypto import StorageCryptoError
from trustgate.server.models import (
    IdentityGetParams,
    ProviderClearApiKeyParams,
    ProviderSetApiKeyParams,
    ProvidersListParams,
    RpcError,
    RpcResponse,
    SignInStartParams,
    SignInWaitParams,
    SignOutParams,
    ToolApprovalRequestParams,
    ToolApprovalResolveParams,
    ToolApprovalsGetParams,
    ToolApprovalsSetParams,
)
from trustgate.vault.auth_profiles import AuthProfileError
from trustgate.vault.types import VaultError

_log = logging.getLogger(__name__)

INVALID_REQUEST = "INVALID_REQUEST"
UNAVAILABLE = "UNAVAILABLE"

_BACKEND_ERRORS = (
    VaultError,
    StorageCryptoError,
    InstallIdentityError,
    DeviceIdUnavailableError,
    httpx.HTTPError,
    OSError,
)


class RpcMethodError(Exception):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


Handler = Callable[[Any, str | None], Awaitable[Any]]


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "params"
        parts.append(f"{location}: {error['msg']}")
    return "; ".join(parts)


class RpcDispatcher:
    """Route ``{method, params}`` calls to the runtime components."""

    def __init__(self, runtime: TrustgateRuntime) -> None:
        self._runtime = runtime
        self._methods: dict[str, tuple[type[BaseModel], Handler]] = {
            "tool.approval.request": (ToolApprovalRequestParams, self._approval_request),
            "tool.approval.resolve": (ToolApprovalResolveParams, self._approval_resolve),
            "tool.approvals.get": (ToolApprovalsGetParams, self._approvals_get),
            "tool.approvals.set": (ToolApprovalsSetParams, self._approvals_set),
            "identity.get": (IdentityGetParams, self._identity_get),
            "identity.signin.start": (SignInStartParams, self._signin_start),
            "identity.signin.wait": (SignInWaitParams, self._signin_wait),
            "identity.signout": (SignOutParams, self._signout),
            "providers.list": (ProvidersListParams, self._providers_list),
            "providers.apiKey.set": (ProviderSetApiKeyParams, self._provider_set_key),
            "providers.apiKey.clear": (ProviderClearApiKeyParams, self._provider_clear_key),
        }

    @property
    def method_names(self) -> list[str]:
        return sorted(self._methods)

    async def dispatch(
        self,
        method: str,
        params: dict[str, Any] | None,
        *,
        client_name: str | None = None,
    ) -> RpcResponse:
        entry = self._methods.get(method)
        if entry is None:
            return _error(INVALID_REQUEST, f"unknown method: {method}")
        model, handler = entry
        try:
            parsed = model.model_validate(params or {})
        except ValidationError as exc:
            return _error(
                INVALID_REQUEST, f"invalid {method} params: {_format_validation_error(exc)}"
            )
        try:
            result = await handler(parsed, client_name)
        except RpcMethodError as exc:
            return _error(exc.code, str(exc))
        except (ToolApprovalError, AuthProfileError) as exc:
            return _error(INVALID_REQUEST, str(exc))
        except IdentityError as exc:
            code = INVALID_REQUEST if exc.code == SESSION_NOT_FOUND else UNAVAILABLE
            return _error(code, str(exc))
        except _BACKEND_ERRORS as exc:
            _log.warning("RPC %s failed: %s", method, type(exc).__name__)
            return _error(UNAVAILABLE, f"{method} failed: {type(exc).__name__}")
        return RpcResponse(ok=True, result=result)

    # --- tool.approval.* ---

    async def _approval_request(
        self, params: ToolApprovalRequestParams, client_name: str | None
    ) -> dict[str, Any]:
        runtime = self._runtime
        timeout_ms = (
            max(1, params.timeout_ms)
            if params.timeout_ms is not None
            else runtime.config.tool_approvals.timeout_ms
        )
        request = ToolApprovalRequest(
            tool_name=params.tool_name,
            tool_group=params.tool_group,
            summary=params.summary,
            cwd=params.cwd,
            agent_id=params.agent_id,
            session_key=params.session_key,
            target=params.target,
            targets=tuple(params.targets) if params.targets is not None else None,
            allow_always=params.allow_always,
        )
        approval_id = params.id.strip() if params.id and params.id.strip() else None
        record, decision = await runtime.approvals.submit(
            request, timeout_ms, runtime.broadcaster, approval_id=approval_id
        )
        return {
            "id": record.id,
            "decision": decision,
            "createdAtMs": record.created_at_ms,
            "expiresAtMs": record.expires_at_ms,
        }

    async def _approval_resolve(
        self, params: ToolApprovalResolveParams, client_name: str | None
    ) -> dict[str, Any]:
        if not is_decision(params.decision):
            raise RpcMethodError(INVALID_REQUEST, "invalid decision")
        decision = cast(Decision, params.decision)
        if not self._runtime.approvals.resolve(params.id, decision, resolved_by=client_name):
            raise UnknownApprovalIdError(params.id)
        await self._runtime.broadcaster.broadcast(
            TOOL_APPROVAL_RESOLVED,
            {
                "id": params.id,
                "decision": decision,
                "resolvedBy": client_name,
                "ts": int(time.time() * 1000),
            },
            drop_if_slow=True,
        )
        return {"ok": True}

    async def _approvals_get(
        self, params: ToolApprovalsGetParams, client_name: str | None
    ) -> dict[str, Any]:
        snapshot = await asyncio.to_thread(self._runtime.approvals_store.get)
        return snapshot.to_dict()

    async def _approvals_set(
        self, params: ToolApprovalsSetParams, client_name: str | None
    ) -> dict[str, Any]:
        snapshot = await asyncio.to_thread(
            self._runtime.approvals_store.set, params.file, params.base_hash
        )
        _log.info("Tool approvals replaced by %s", client_name or "client")
        return snapshot.to_dict()

    # --- identity.* ---

    async def _identity_get(
        self, params: IdentityGetParams, client_name: str | None
    ) -> dict[str, Any]:
        identity = await self._runtime.identity.get_identity()
        return {"identity": identity.to_dict() if identity is not None else None}

    async def _signin_start(
        self, params: SignInStartParams, client_name: str | None
    ) -> dict[str, Any]:
        started = await self._runtime.identity.start_sign_in()
        return started.to_dict()

    async def _signin_wait(
        self, params: SignInWaitParams, client_name: str | None
    ) -> dict[str, Any]:
        timeout_ms = DEFAULT_SIGN_IN_TIMEOUT_MS if params.timeout_ms is None else params.timeout_ms
        identity = await self._runtime.identity.wait_sign_in(params.session_id, timeout_ms)
        return {"identity": identity.to_dict()}

    async def _signout(self, params: SignOutParams, client_name: str | None) -> dict[str, Any]:
        await self._runtime.identity.sign_out()
        return {"ok": True}

    # --- providers.* ---

    async def _providers_list(
        self, params: ProvidersListParams, client_name: str | None
    ) -> dict[str, Any]:
        providers = await asyncio.to_thread(self._runtime.auth_profiles.list_providers)
        return {"providers": [provider.to_dict() for provider in providers]}

    async def _provider_set_key(
        self, params: ProviderSetApiKeyParams, client_name: str | None
    ) -> dict[str, Any]:
        await asyncio.to_thread(
            self._runtime.auth_profiles.set_api_key, params.provider, params.api_key
        )
        return {"ok": True}

    async def _provider_clear_key(
        self, params: ProviderClearApiKeyParams, client_name: str | None
    ) -> dict[str, Any]:
        removed = await asyncio.to_thread(
            self._runtime.auth_profiles.clear_api_key, params.provider
        )
        return {"ok": True, "removed": removed}


def _error(code: str, message: str) -> RpcResponse:
    return RpcResponse(ok=False, error=RpcError(code=code, message=message))
