"""Human-in-the-loop tool approval engine.

Public API: ToolApprovalGate, ApprovalOutcome, ToolApprovalManager,
    ManagerApprovalRequester, ToolApprovalsStore, SessionApprovalCache,
    SystemEventQueue, ToolApprovalsPolicy, ToolApprovalRequest,
    ToolApprovalRecord, PersistOutcome, ToolApprovalError and subclasses
Internal: patterns, policy canonicalization helpers
"""

from trustgate.approvals.events import EventSink, SystemEventQueue
from trustgate.approvals.gate import ApprovalOutcome, ApprovalRequester, ToolApprovalGate
from trustgate.approvals.manager import ManagerApprovalRequester, ToolApprovalManager
from trustgate.approvals.policy import (
    BrowserApprovalMode,
    FileApprovalMode,
    ToolApprovalsPolicy,
    canonicalize_path,
)
from trustgate.approvals.session_cache import SessionApprovalCache
from trustgate.approvals.store import ToolApprovalsStore
from trustgate.approvals.types import (
    DuplicateApprovalIdError,
    PersistOutcome,
    ToolApprovalDeniedError,
    ToolApprovalError,
    ToolApprovalRecord,
    ToolApprovalRequest,
    ToolApprovalsConflictError,
    ToolApprovalsEntry,
    ToolApprovalsFile,
    ToolApprovalsSnapshot,
    UnknownApprovalIdError,
)

__all__ = [
    "ApprovalOutcome",
    "ApprovalRequester",
    "BrowserApprovalMode",
    "DuplicateApprovalIdError",
    "EventSink",
    "FileApprovalMode",
    "ManagerApprovalRequester",
    "PersistOutcome",
    "SessionApprovalCache",
    "SystemEventQueue",
    "ToolApprovalDeniedError",
    "ToolApprovalError",
    "ToolApprovalGate",
    "ToolApprovalManager",
    "ToolApprovalRecord",
    "ToolApprovalRequest",
    "ToolApprovalsConflictError",
    "ToolApprovalsEntry",
    "ToolApprovalsFile",
    "ToolApprovalsPolicy",
    "ToolApprovalsSnapshot",
    "ToolApprovalsStore",
    "UnknownApprovalIdError",
    "canonicalize_path",
]
