"""Shared data models and errors for tool approvals."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

ToolGroup = Literal["fs.read", "fs.write", "browser.read", "browser.control"]
Decision = Literal["allow-once", "allow-always", "deny"]
DenyReason = Literal["user-denied", "approval-timeout", "approval-request-failed"]

TOOL_GROUPS: frozenset[str] = frozenset({"fs.read", "fs.write", "browser.read", "browser.control"})
FILE_TOOL_GROUPS: frozenset[str] = frozenset({"fs.read", "fs.write"})
BROWSER_TOOL_GROUPS: frozenset[str] = frozenset({"browser.read", "browser.control"})
DECISIONS: frozenset[str] = frozenset({"allow-once", "allow-always", "deny"})

TOOL_APPROVALS_VERSION = 1


def is_tool_group(value: object) -> bool:
    return isinstance(value, str) and value in TOOL_GROUPS


def is_decision(value: object) -> bool:
    return isinstance(value, str) and value in DECISIONS


class ToolApprovalError(ValueError):
    """Base error for the approval engine; ``code`` is machine-readable."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class DuplicateApprovalIdError(ToolApprovalError):
    def __init__(self, approval_id: str) -> None:
        super().__init__("duplicate_id", "approval id already pending")
        self.approval_id = approval_id


class UnknownApprovalIdError(ToolApprovalError):
    def __init__(self, approval_id: str) -> None:
        super().__init__("unknown_id", "unknown approval id")
        self.approval_id = approval_id


class ToolApprovalsConflictError(ToolApprovalError):
    """Write rejected by the base-hash check on ``tool-approvals.json``."""


class ToolApprovalDeniedError(ToolApprovalError):
    """Raised by the gate when a tool invocation must not proceed."""

    def __init__(self, tool_name: str, reason: DenyReason, approval_id: str | None = None) -> None:
        message = (
            f"Tool denied: {tool_name}"
            if reason == "user-denied"
            else f"Tool denied ({reason}): {tool_name}"
        )
        super().__init__(reason, message)
        self.tool_name = tool_name
        self.reason: DenyReason = reason
        self.approval_id = approval_id


@dataclass(frozen=True)
class PersistOutcome:
    """Result of a best-effort side effect the caller may ignore."""

    ok: bool
    error: str | None = None

    @classmethod
    def success(cls) -> PersistOutcome:
        return cls(ok=True)

    @classmethod
    def failed(cls, error: str) -> PersistOutcome:
        return cls(ok=False, error=error)


@dataclass(frozen=True)
class ToolApprovalRequest:
    """What the human is asked to approve. Wire keys are camelCase."""

    tool_name: str
    tool_group: ToolGroup
    summary: str
    cwd: str | None = None
    agent_id: str | None = None
    session_key: str | None = None
    target: str | None = None
    targets: tuple[str, ...] | None = None
    allow_always: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "toolName": self.tool_name,
            "toolGroup": self.tool_group,
            "summary": self.summary,
        }
        optional: dict[str, Any] = {
            "cwd": self.cwd,
            "agentId": self.agent_id,
            "sessionKey": self.session_key,
            "target": self.target,
            "targets": list(self.targets) if self.targets is not None else None,
            "allowAlways": self.allow_always,
        }
        data.update({key: value for key, value in optional.items() if value is not None})
        return data


@dataclass
class ToolApprovalRecord:
    """Pending or terminal approval. Mutated only by the manager."""

    id: str
    request: ToolApprovalRequest
    created_at_ms: int
    expires_at_ms: int
    resolved_at_ms: int | None = None
    decision: Decision | None = None
    resolved_by: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "request": self.request.to_dict(),
            "createdAtMs": self.created_at_ms,
            "expiresAtMs": self.expires_at_ms,
        }
        if self.resolved_at_ms is not None:
            data["resolvedAtMs"] = self.resolved_at_ms
        if self.decision is not None:
            data["decision"] = self.decision
        if self.resolved_by is not None:
            data["resolvedBy"] = self.resolved_by
        return data


@dataclass(frozen=True)
class ToolApprovalsEntry:
    """One persisted grant: *pattern* authorizes *tool_group* without prompting."""

    id: str
    tool_group: ToolGroup
    pattern: str
    created_at_ms: int
    last_used_at_ms: int | None = None
    last_example: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "toolGroup": self.tool_group,
            "pattern": self.pattern,
            "createdAtMs": self.created_at_ms,
        }
        if self.last_used_at_ms is not None:
            data["lastUsedAtMs"] = self.last_used_at_ms
        if self.last_example:
            data["lastExample"] = self.last_example
        return data


def _empty_entries() -> tuple[ToolApprovalsEntry, ...]:
    return ()


@dataclass(frozen=True)
class ToolApprovalsFile:
    version: int = TOOL_APPROVALS_VERSION
    entries: tuple[ToolApprovalsEntry, ...] = field(default_factory=_empty_entries)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"version": self.version}
        if self.entries:
            data["entries"] = [entry.to_dict() for entry in self.entries]
        return data


@dataclass(frozen=True)
class ToolApprovalsSnapshot:
    path: str
    exists: bool
    raw: str | None
    file: ToolApprovalsFile
    hash: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "exists": self.exists,
            "hash": self.hash,
            "file": self.file.to_dict(),
        }
