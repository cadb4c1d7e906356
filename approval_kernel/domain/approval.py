"""
Approval domain types (``approval_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the multi-step approval engine: request lifecycle
states, step approver specifications, workflow definitions, recorded
actions, delegations, notifications and evaluation results.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Request lifecycle -- ``REQUEST_TRANSITIONS`` defines the only valid
  status transitions.  Terminal states have no outgoing edges.
* Action lifecycle -- an action moves from ``pending`` exactly once to
  ``approved`` or ``rejected``.
* Approver specification is a tagged variant: ``SpecificUser`` or
  ``RoleMatch``; nothing else is interpreted.
* Delegation windows are half-open ``[start, end)``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Protocol, Union
from uuid import UUID

from approval_kernel.exceptions import InvalidDecisionError

# Identity recorded on actions synthesised by the timer sweep.
SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000000")


# =========================================================================
# Request Lifecycle
# =========================================================================


class RequestStatus(str, Enum):
    """Approval request lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


REQUEST_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
        RequestStatus.CANCELLED,
        RequestStatus.EXPIRED,
    }),
    RequestStatus.APPROVED: frozenset(),
    RequestStatus.REJECTED: frozenset(),
    RequestStatus.CANCELLED: frozenset(),
    RequestStatus.EXPIRED: frozenset(),
}

TERMINAL_REQUEST_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.APPROVED,
    RequestStatus.REJECTED,
    RequestStatus.CANCELLED,
    RequestStatus.EXPIRED,
})

# Statuses set by an administrative path rather than derived from actions.
ADMINISTRATIVE_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.CANCELLED,
    RequestStatus.EXPIRED,
})


def can_transition(current: RequestStatus, target: RequestStatus) -> bool:
    return target in REQUEST_TRANSITIONS[current]


class RequestPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class WorkflowType(str, Enum):
    """Workflow label.  Execution is always the ordered step list."""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    CONDITIONAL = "conditional"


class ApproverType(str, Enum):
    USER = "user"
    ROLE = "role"


# =========================================================================
# Actions and Decisions
# =========================================================================


class ActionState(str, Enum):
    """State of one approver's action row on one step."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ActionOrigin(str, Enum):
    """Why an action row exists."""

    ASSIGNED = "assigned"
    ESCALATED = "escalated"
    SYSTEM = "system"


class ApprovalDecision(str, Enum):
    """Decision types that an approver can submit."""

    APPROVE = "approve"
    REJECT = "reject"

    @property
    def action_state(self) -> ActionState:
        if self is ApprovalDecision.APPROVE:
            return ActionState.APPROVED
        return ActionState.REJECTED


_DECISION_ALIASES: dict[str, ApprovalDecision] = {
    "approve": ApprovalDecision.APPROVE,
    "approved": ApprovalDecision.APPROVE,
    "accept": ApprovalDecision.APPROVE,
    "reject": ApprovalDecision.REJECT,
    "rejected": ApprovalDecision.REJECT,
    "decline": ApprovalDecision.REJECT,
}


def parse_decision(raw: str | ApprovalDecision) -> ApprovalDecision:
    """Normalise a caller-supplied decision string.

    Raises:
        InvalidDecisionError: if ``raw`` is not a recognised alias.
    """
    if isinstance(raw, ApprovalDecision):
        return raw
    if not isinstance(raw, str):
        raise InvalidDecisionError(raw)
    decision = _DECISION_ALIASES.get(raw.strip().lower())
    if decision is None:
        raise InvalidDecisionError(raw)
    return decision


class StepOutcome(str, Enum):
    OPEN = "open"
    CLEARED = "cleared"
    REJECTED = "rejected"


class TimerDecision(str, Enum):
    """What the periodic sweep should do with an open step."""

    NONE = "none"
    ESCALATE = "escalate"
    AUTO_APPROVE = "auto_approve"


class NotificationType(str, Enum):
    NEW_REQUEST = "new_request"
    APPROVED = "approved"
    REJECTED = "rejected"
    ESCALATED = "escalated"
    REMINDER = "reminder"
    EXPIRED = "expired"


# =========================================================================
# Approver Specification (tagged variant)
# =========================================================================


@dataclass(frozen=True)
class SpecificUser:
    """A step approved by exactly one named identity."""

    user_id: UUID

    @property
    def approver_type(self) -> ApproverType:
        return ApproverType.USER


@dataclass(frozen=True)
class RoleMatch:
    """A step approved by whoever the directory resolves ``criteria`` to.

    Recognised criteria keys: ``role`` (role name) or
    ``relation: manager`` (the requester's manager).
    """

    criteria: Mapping[str, Any]

    @property
    def approver_type(self) -> ApproverType:
        return ApproverType.ROLE


ApproverSpec = Union[SpecificUser, RoleMatch]


class ApproverDirectory(Protocol):
    """Pluggable resolver for role/criteria-based approvers."""

    def resolve(
        self, criteria: Mapping[str, Any], requester_id: UUID
    ) -> tuple[UUID, ...]:
        """Return the identities matching ``criteria`` for this requester."""
        ...


# =========================================================================
# Pages and Workflows
# =========================================================================


@dataclass(frozen=True)
class ApprovalPage:
    """A document type that can be bound to workflows."""

    page_id: UUID
    page_name: str
    display_name: str
    module_name: str = ""
    requires_approval: bool = True
    is_active: bool = True


@dataclass(frozen=True)
class StepDefinition:
    """One ordered stage of a workflow.

    ``step_id`` is None on drafts and set once the step is persisted as
    part of a workflow version.
    """

    step_order: int
    step_name: str
    approver: ApproverSpec
    required_approvals: int = 1
    auto_approve_after_hours: float | None = None
    escalation_after_hours: float | None = None
    escalation_to: UUID | None = None
    conditions: Mapping[str, Any] | None = None
    step_id: UUID | None = None

    @property
    def approver_type(self) -> ApproverType:
        return self.approver.approver_type


@dataclass(frozen=True)
class WorkflowDraft:
    """Caller-submitted workflow content, before versioning."""

    page_id: UUID
    workflow_name: str
    workflow_type: WorkflowType
    steps: tuple[StepDefinition, ...]
    is_default: bool = False
    priority: int = 0
    conditions: Mapping[str, Any] | None = None
    description: str | None = None


@dataclass(frozen=True)
class WorkflowDefinition:
    """One immutable workflow version plus its currency flags.

    ``replaced_by`` is derived from the lineage: the id of the next version,
    or None when this version is current.
    """

    workflow_id: UUID
    lineage_id: UUID
    version: int
    page_id: UUID
    workflow_name: str
    workflow_type: WorkflowType
    is_default: bool
    priority: int
    steps: tuple[StepDefinition, ...]
    definition_hash: str
    created_at: datetime
    conditions: Mapping[str, Any] | None = None
    description: str | None = None
    is_current: bool = True
    is_active: bool = True
    deleted_at: datetime | None = None
    replaced_by: UUID | None = None

    def step(self, step_order: int) -> StepDefinition:
        for s in self.steps:
            if s.step_order == step_order:
                return s
        raise KeyError(step_order)


# =========================================================================
# Requests and Actions
# =========================================================================


@dataclass(frozen=True)
class ApprovalActionRecord:
    """One approver's decision slot on one step. Immutable once decided."""

    action_id: UUID
    request_id: UUID
    step_id: UUID
    step_order: int
    approver_id: UUID
    action: ActionState
    origin: ActionOrigin = ActionOrigin.ASSIGNED
    on_behalf_of: UUID | None = None
    comments: str | None = None
    attachments: tuple[str, ...] = ()
    action_date: datetime | None = None
    created_at: datetime | None = None

    @property
    def is_decided(self) -> bool:
        return self.action != ActionState.PENDING


@dataclass(frozen=True)
class ApprovalRequest:
    """Immutable snapshot of an approval request aggregate."""

    request_id: UUID
    request_number: str
    page_id: UUID
    workflow_id: UUID | None
    requester_id: UUID
    payload: Mapping[str, Any]
    current_step: int
    status: RequestStatus
    priority: RequestPriority = RequestPriority.NORMAL
    due_date: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    document_id: UUID | None = None
    version: int = 1
    actions: tuple[ApprovalActionRecord, ...] = ()

    def actions_for_step(self, step_order: int) -> tuple[ApprovalActionRecord, ...]:
        return tuple(a for a in self.actions if a.step_order == step_order)


# =========================================================================
# Delegation
# =========================================================================


@dataclass(frozen=True)
class ApprovalDelegation:
    """Time-bounded substitution of one approver identity by another."""

    delegation_id: UUID
    delegator_id: UUID
    delegate_id: UUID
    start_date: datetime
    end_date: datetime
    page_id: UUID | None = None
    workflow_id: UUID | None = None
    workflow_lineage_id: UUID | None = None
    reason: str | None = None
    is_active: bool = True
    created_at: datetime | None = None

    def covers(self, at: datetime) -> bool:
        """Half-open window check: ``start <= at < end``."""
        return self.is_active and self.start_date <= at < self.end_date

    def matches_scope(
        self, page_id: UUID | None, workflow_lineage_id: UUID | None
    ) -> bool:
        if self.page_id is not None and self.page_id != page_id:
            return False
        if (
            self.workflow_lineage_id is not None
            and self.workflow_lineage_id != workflow_lineage_id
        ):
            return False
        return True


def scopes_intersect(
    a_page: UUID | None,
    a_lineage: UUID | None,
    b_page: UUID | None,
    b_lineage: UUID | None,
) -> bool:
    """Two delegation scopes intersect unless they name different targets.

    An unscoped (global) delegation intersects everything.
    """
    if a_page is not None and b_page is not None and a_page != b_page:
        return False
    if a_lineage is not None and b_lineage is not None and a_lineage != b_lineage:
        return False
    return True


# =========================================================================
# Notifications and Log
# =========================================================================


@dataclass(frozen=True)
class ApprovalNotification:
    notification_id: UUID
    recipient_id: UUID
    notification_type: NotificationType
    title: str
    message: str
    request_id: UUID | None = None
    is_read: bool = False
    read_at: datetime | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class ApprovalLogEntry:
    log_id: UUID
    request_id: UUID
    user_id: UUID | None
    action: str
    details: Mapping[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None


# =========================================================================
# Evaluation Results
# =========================================================================


@dataclass(frozen=True)
class StepEvaluation:
    """Outcome of evaluating one step against its recorded actions."""

    outcome: StepOutcome
    required: int
    current: int
    reason: str = ""
    approved_by: tuple[UUID, ...] = ()


@dataclass(frozen=True)
class RequestState:
    """Request status and step derived purely from action history."""

    status: RequestStatus
    current_step: int


@dataclass(frozen=True)
class ActionResult:
    """Result returned by the action processor for one mutation."""

    request_id: UUID
    status: RequestStatus
    current_step: int
    step_outcome: StepOutcome
    advanced: bool = False
    completed: bool = False
    timer_decision: TimerDecision = TimerDecision.NONE
