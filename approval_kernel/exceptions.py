"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Approval callers (UI screens, document-management screens, the escalation
sweep) must render a specific message for every rejected operation:
"already decided" is not "not your turn", and neither is "someone else
acted at the same moment, refresh and retry".  Parsing message strings for
that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        processor.process_action(request_id, actor_id, "approve")
    except AlreadyProcessedError as e:
        show_banner(f"Request already {e.status}")
    except NotAuthorizedError as e:
        show_banner("You are not an approver for this step")

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ApprovalKernelError (base)
    |
    +-- ValidationError
    |   +-- WorkflowValidationError
    |   +-- DelegationValidationError
    |   +-- RequestValidationError
    |   +-- InvalidDecisionError
    |   +-- NoEligibleApproversError
    |
    +-- NotFoundError
    |   +-- ApprovalRequestNotFoundError
    |   +-- WorkflowNotFoundError
    |   +-- PageNotFoundError
    |   +-- DelegationNotFoundError
    |   +-- NotificationNotFoundError
    |   +-- DocumentNotFoundError
    |
    +-- AuthorizationError
    |   +-- NotAuthorizedError
    |
    +-- StateError
    |   +-- AlreadyProcessedError
    |   +-- AlreadyActedError
    |   +-- DelegationOverlapError
    |   +-- DocumentLockedError
    |   +-- InvalidDerivationError
    |   +-- StatusDriftError
    |
    +-- ConcurrencyError
    |   +-- ConcurrencyConflictError
    |   +-- StaleWorkflowVersionError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                        | When Raised
--------------|-----------------------------|-------------------------------------
Validation    | WORKFLOW_VALIDATION_FAILED  | Malformed steps / missing fields
              | DELEGATION_INVALID          | Self-delegation, empty interval
              | REQUEST_INVALID             | Bad priority, inactive page
              | INVALID_DECISION            | Decision string not approve/reject
              | NO_ELIGIBLE_APPROVERS       | Role criteria resolved to nobody
--------------|-----------------------------|-------------------------------------
Not found     | APPROVAL_REQUEST_NOT_FOUND  | Unknown request id
              | WORKFLOW_NOT_FOUND          | Unknown / deleted workflow, no match
              | PAGE_NOT_FOUND              | Unknown page name
              | DELEGATION_NOT_FOUND        | Unknown delegation id
              | NOTIFICATION_NOT_FOUND      | Unknown notification id
              | DOCUMENT_NOT_FOUND          | Unknown linked document
--------------|-----------------------------|-------------------------------------
Authorization | NOT_AUTHORIZED              | Actor not eligible for current step
--------------|-----------------------------|-------------------------------------
State         | ALREADY_PROCESSED           | Request already terminal
              | ALREADY_ACTED               | Actor already decided on this step
              | DELEGATION_OVERLAP          | Overlapping delegation for delegator
              | DOCUMENT_LOCKED             | Document under / after approval
              | INVALID_DERIVATION          | Source not approved / wrong chain
              | STATUS_DRIFT                | Stored status != derived status
--------------|-----------------------------|-------------------------------------
Concurrency   | CONCURRENCY_CONFLICT        | Retries exhausted on a hot request
              | STALE_WORKFLOW_VERSION      | Editing a superseded version
--------------|-----------------------------|-------------------------------------
Immutability  | IMMUTABILITY_VIOLATION      | Mutating a version / decided action

===============================================================================
DESIGN DECISIONS
===============================================================================

1. All errors are recoverable.  No error in this package should terminate
   the process; at worst an action is rejected and the caller retries.

2. AlreadyProcessedError and NotAuthorizedError are distinct types so the
   caller can tell "already decided" from "not your turn".

3. ConcurrencyError is the category middleware may auto-retry.
"""

from __future__ import annotations

from typing import Any


class ApprovalKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "APPROVAL_KERNEL_ERROR"


# Validation errors


class ValidationError(ApprovalKernelError):
    """Base exception for input rejected before any write."""

    code: str = "VALIDATION_ERROR"


class WorkflowValidationError(ValidationError):
    """Submitted workflow definition is structurally invalid."""

    code: str = "WORKFLOW_VALIDATION_FAILED"

    def __init__(self, workflow_name: str, errors: list[str]):
        self.workflow_name = workflow_name
        self.errors = list(errors)
        super().__init__(
            f"Workflow '{workflow_name}' is invalid: " + "; ".join(self.errors)
        )


class DelegationValidationError(ValidationError):
    """Delegation request is malformed."""

    code: str = "DELEGATION_INVALID"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid delegation: {reason}")


class RequestValidationError(ValidationError):
    """Approval request input is malformed."""

    code: str = "REQUEST_INVALID"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid approval request field '{field}': {reason}")


class InvalidDecisionError(ValidationError):
    """Decision string is neither an approval nor a rejection."""

    code: str = "INVALID_DECISION"

    def __init__(self, decision: Any):
        self.decision = decision
        super().__init__(f"Unrecognised approval decision: {decision!r}")


class NoEligibleApproversError(ValidationError):
    """A step's approver specification resolved to too few identities."""

    code: str = "NO_ELIGIBLE_APPROVERS"

    def __init__(self, step_order: int, required: int, resolved: int):
        self.step_order = step_order
        self.required = required
        self.resolved = resolved
        super().__init__(
            f"Step {step_order} needs {required} approver(s), "
            f"resolved {resolved}"
        )


# Not-found errors


class NotFoundError(ApprovalKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class ApprovalRequestNotFoundError(NotFoundError):
    """Approval request with the given id does not exist."""

    code: str = "APPROVAL_REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Approval request not found: {request_id}")


class WorkflowNotFoundError(NotFoundError):
    """Workflow version does not exist, is deleted, or nothing matched."""

    code: str = "WORKFLOW_NOT_FOUND"

    def __init__(self, identifier: str, reason: str = "not found"):
        self.identifier = identifier
        self.reason = reason
        super().__init__(f"Workflow {identifier}: {reason}")


class PageNotFoundError(NotFoundError):
    """No approval page registered under the given name or id."""

    code: str = "PAGE_NOT_FOUND"

    def __init__(self, page: str):
        self.page = page
        super().__init__(f"Approval page not found: {page}")


class DelegationNotFoundError(NotFoundError):
    code: str = "DELEGATION_NOT_FOUND"

    def __init__(self, delegation_id: str):
        self.delegation_id = delegation_id
        super().__init__(f"Delegation not found: {delegation_id}")


class NotificationNotFoundError(NotFoundError):
    code: str = "NOTIFICATION_NOT_FOUND"

    def __init__(self, notification_id: str):
        self.notification_id = notification_id
        super().__init__(f"Notification not found: {notification_id}")


class DocumentNotFoundError(NotFoundError):
    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Linked document not found: {document_id}")


# Authorization errors


class AuthorizationError(ApprovalKernelError):
    """Base exception for actor authority failures."""

    code: str = "AUTHORIZATION_ERROR"


class NotAuthorizedError(AuthorizationError):
    """Actor is not entitled to perform the operation."""

    code: str = "NOT_AUTHORIZED"

    def __init__(self, actor_id: str, target_id: str, reason: str):
        self.actor_id = actor_id
        self.target_id = target_id
        self.reason = reason
        super().__init__(
            f"Actor {actor_id} not authorized on {target_id}: {reason}"
        )


# State errors


class StateError(ApprovalKernelError):
    """Base exception for operations invalid in the current state."""

    code: str = "STATE_ERROR"


class AlreadyProcessedError(StateError):
    """Request is already in a terminal status."""

    code: str = "ALREADY_PROCESSED"

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(f"Approval request {request_id} already {status}")


class AlreadyActedError(StateError):
    """Actor already recorded a decision on the current step."""

    code: str = "ALREADY_ACTED"

    def __init__(self, request_id: str, actor_id: str, step_order: int):
        self.request_id = request_id
        self.actor_id = actor_id
        self.step_order = step_order
        super().__init__(
            f"Actor {actor_id} already acted on step {step_order} "
            f"of request {request_id}"
        )


class DelegationOverlapError(StateError):
    """An active delegation of the same delegator overlaps the new one."""

    code: str = "DELEGATION_OVERLAP"

    def __init__(self, delegator_id: str, existing_delegation_id: str):
        self.delegator_id = delegator_id
        self.existing_delegation_id = existing_delegation_id
        super().__init__(
            f"Delegator {delegator_id} already has overlapping delegation "
            f"{existing_delegation_id}"
        )


class DocumentLockedError(StateError):
    """Document cannot be edited or resubmitted in its approval state."""

    code: str = "DOCUMENT_LOCKED"

    def __init__(self, document_id: str, request_status: str | None, reason: str):
        self.document_id = document_id
        self.request_status = request_status
        self.reason = reason
        super().__init__(f"Document {document_id} is locked: {reason}")


class InvalidDerivationError(StateError):
    """Derived document requested from an ineligible source."""

    code: str = "INVALID_DERIVATION"

    def __init__(self, source_document_id: str, target_type: str, reason: str):
        self.source_document_id = source_document_id
        self.target_type = target_type
        self.reason = reason
        super().__init__(
            f"Cannot derive {target_type} from {source_document_id}: {reason}"
        )


class StatusDriftError(StateError):
    """Stored request status disagrees with the status derived from history."""

    code: str = "STATUS_DRIFT"

    def __init__(
        self,
        request_id: str,
        stored: tuple[str, int],
        derived: tuple[str, int],
    ):
        self.request_id = request_id
        self.stored = stored
        self.derived = derived
        super().__init__(
            f"Request {request_id} stored {stored} but history derives {derived}"
        )


# Concurrency errors


class ConcurrencyError(ApprovalKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrencyConflictError(ConcurrencyError):
    """Concurrent writers on the same request; the caller may retry."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, request_id: str, attempts: int):
        self.request_id = request_id
        self.attempts = attempts
        super().__init__(
            f"Concurrent modification of request {request_id} "
            f"after {attempts} attempt(s)"
        )


class StaleWorkflowVersionError(ConcurrencyError):
    """Edit submitted against a version that is no longer current."""

    code: str = "STALE_WORKFLOW_VERSION"

    def __init__(self, workflow_id: str, current_workflow_id: str):
        self.workflow_id = workflow_id
        self.current_workflow_id = current_workflow_id
        super().__init__(
            f"Workflow version {workflow_id} was superseded by "
            f"{current_workflow_id}"
        )


# Immutability errors


class ImmutabilityError(ApprovalKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Workflow versions, their steps, decided actions, approval log rows and
    notifications (beyond the read flag) are immutable.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
