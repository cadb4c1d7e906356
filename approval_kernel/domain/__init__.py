"""
Pure domain layer.

Value objects and pure rules with NO dependencies on the ORM, the
database, or I/O.  All domain objects are immutable and deterministic.
"""

from approval_kernel.domain.approval import (
    SYSTEM_ACTOR_ID,
    ActionOrigin,
    ActionResult,
    ActionState,
    ApprovalActionRecord,
    ApprovalDecision,
    ApprovalDelegation,
    ApprovalLogEntry,
    ApprovalNotification,
    ApprovalPage,
    ApprovalRequest,
    ApproverDirectory,
    ApproverSpec,
    ApproverType,
    NotificationType,
    RequestPriority,
    RequestState,
    RequestStatus,
    RoleMatch,
    SpecificUser,
    StepDefinition,
    StepEvaluation,
    StepOutcome,
    TimerDecision,
    WorkflowDefinition,
    WorkflowDraft,
    WorkflowType,
    parse_decision,
)
from approval_kernel.domain.clock import (
    Clock,
    DeterministicClock,
    SequentialClock,
    SystemClock,
)
from approval_kernel.domain.directory import StaticApproverDirectory
from approval_kernel.domain.documents import (
    DocumentStatus,
    DocumentType,
    LinkedDocument,
)

__all__ = [
    "SYSTEM_ACTOR_ID",
    "ActionOrigin",
    "ActionResult",
    "ActionState",
    "ApprovalActionRecord",
    "ApprovalDecision",
    "ApprovalDelegation",
    "ApprovalLogEntry",
    "ApprovalNotification",
    "ApprovalPage",
    "ApprovalRequest",
    "ApproverDirectory",
    "ApproverSpec",
    "ApproverType",
    "Clock",
    "DeterministicClock",
    "DocumentStatus",
    "DocumentType",
    "LinkedDocument",
    "NotificationType",
    "RequestPriority",
    "RequestState",
    "RequestStatus",
    "RoleMatch",
    "SequentialClock",
    "SpecificUser",
    "StaticApproverDirectory",
    "StepDefinition",
    "StepEvaluation",
    "StepOutcome",
    "SystemClock",
    "TimerDecision",
    "WorkflowDefinition",
    "WorkflowDraft",
    "WorkflowType",
    "parse_decision",
]
