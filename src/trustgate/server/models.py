"""Pydantic models for the RPC envelope and per-method parameters.

Wire names are camelCase; unknown keys are rejected.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Params(BaseModel):
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)


# --- Envelope ---


class RpcRequest(BaseModel):
    """POST /api/rpc request body."""

    method: str
    params: dict[str, Any] = Field(default_factory=dict)


class RpcError(BaseModel):
    code: str
    message: str


class RpcResponse(BaseModel):
    ok: bool
    result: Any = None
    error: RpcError | None = None


class HealthResponse(BaseModel):
    """GET /api/health response."""

    status: str = "ok"
    version: str = "0.1.0"


# --- tool.approval.* ---


class ToolApprovalRequestParams(_Params):
    id: str | None = None
    tool_name: str = Field(min_length=1)
    tool_group: Literal["fs.read", "fs.write", "browser.read", "browser.control"]
    summary: str
    cwd: str | None = None
    agent_id: str | None = None
    session_key: str | None = None
    target: str | None = None
    targets: list[str] | None = None
    allow_always: bool | None = None
    timeout_ms: int | None = None


class ToolApprovalResolveParams(_Params):
    id: str = Field(min_length=1)
    decision: str


class ToolApprovalsGetParams(_Params):
    pass


class ToolApprovalsSetParams(_Params):
    file: dict[str, Any]
    base_hash: str | None = None


# --- identity.* ---


class IdentityGetParams(_Params):
    pass


class SignInStartParams(_Params):
    pass


class SignInWaitParams(_Params):
    session_id: str = Field(min_length=1)
    timeout_ms: int | None = Field(default=None, ge=0)


class SignOutParams(_Params):
    pass


# --- providers.* ---


class ProvidersListParams(_Params):
    pass


class ProviderSetApiKeyParams(_Params):
    provider: str = Field(min_length=1)
    api_key: str


class ProviderClearApiKeyParams(_Params):
    provider: str = Field(min_length=1)
