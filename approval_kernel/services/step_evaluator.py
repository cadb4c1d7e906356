"""
approval_kernel.services.step_evaluator -- Approver resolution for steps.

Responsibility:
    The impure half of step evaluation.  Resolves a step's nominal approvers
    through the pluggable ``ApproverDirectory``, seeds their pending action
    rows when the step becomes active, and decides whether a given actor
    may act on the current step once delegation is taken into account.
    Outcome evaluation itself is the pure ``approval_engines.approval``.

Architecture position:
    Kernel > Services.  Used by RequestCoordinator (first step) and
    ActionProcessor (advancement, authorisation).

Invariants enforced:
    - Deferred activation: rows for a step are created only when that step
      becomes current, never at request creation for later steps.
    - One slot per identity per step (duplicates are collapsed before the
      UNIQUE constraint ever sees them).
    - Delegation resolves a single hop.  A nominal approver keeps their own
      slot while delegated; whichever of the pair acts first consumes it.

Failure modes:
    - NoEligibleApproversError when a step resolves fewer identities than
      ``required_approvals``.
    - NotAuthorizedError / AlreadyActedError from ``find_actionable_row``.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from approval_kernel.domain.approval import (
    ActionOrigin,
    ActionState,
    ApproverDirectory,
    RoleMatch,
    SpecificUser,
    StepDefinition,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.exceptions import (
    AlreadyActedError,
    NoEligibleApproversError,
    NotAuthorizedError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.request import ApprovalActionModel, ApprovalRequestModel
from approval_kernel.models.workflow import WorkflowDefinitionModel
from approval_kernel.services.delegation_service import DelegationService

logger = get_logger("services.step_evaluator")


class StepEvaluator:
    """Resolves approvers and authorises actors for request steps."""

    def __init__(
        self,
        session: Session,
        directory: ApproverDirectory,
        delegations: DelegationService,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._directory = directory
        self._delegations = delegations
        self._clock = clock or SystemClock()

    def resolve_nominal_approvers(
        self, step: StepDefinition, requester_id: UUID,
    ) -> tuple[UUID, ...]:
        """Identities the step's approver specification names, de-duplicated."""
        if isinstance(step.approver, SpecificUser):
            resolved: tuple[UUID, ...] = (step.approver.user_id,)
        elif isinstance(step.approver, RoleMatch):
            resolved = tuple(self._directory.resolve(step.approver.criteria, requester_id))
        else:
            resolved = ()

        unique = tuple(dict.fromkeys(r for r in resolved if r is not None))
        if len(unique) < step.required_approvals:
            raise NoEligibleApproversError(
                step.step_order, step.required_approvals, len(unique),
            )
        return unique

    def activate_step(
        self,
        request: ApprovalRequestModel,
        step: StepDefinition,
        at: datetime | None = None,
    ) -> tuple[UUID, ...]:
        """Seed one pending ``assigned`` row per nominal approver."""
        at = at or self._clock.now()
        approvers = self.resolve_nominal_approvers(step, request.requester_id)
        existing = {a.approver_id for a in request.actions_for_step(step.step_order)}
        seeded = []
        for approver_id in approvers:
            if approver_id in existing:
                continue
            request.actions.append(ApprovalActionModel(
                step_id=step.step_id,
                step_order=step.step_order,
                approver_id=approver_id,
                origin=ActionOrigin.ASSIGNED.value,
                action=ActionState.PENDING.value,
                attachments=[],
                created_at=at,
            ))
            seeded.append(approver_id)

        logger.info(
            "approval_step_activated",
            extra={
                "request_number": request.request_number,
                "step_order": step.step_order,
                "approver_count": len(seeded),
            },
        )
        return tuple(seeded)

    def add_escalation_row(
        self,
        request: ApprovalRequestModel,
        step: StepDefinition,
        at: datetime,
    ) -> ApprovalActionModel:
        """Give ``step.escalation_to`` a pending slot beside the original pool."""
        row = ApprovalActionModel(
            step_id=step.step_id,
            step_order=step.step_order,
            approver_id=step.escalation_to,
            origin=ActionOrigin.ESCALATED.value,
            action=ActionState.PENDING.value,
            attachments=[],
            created_at=at,
        )
        request.actions.append(row)
        return row

    def lineage_for(self, request: ApprovalRequestModel) -> UUID | None:
        if request.workflow_id is None:
            return None
        workflow = self._session.get(WorkflowDefinitionModel, request.workflow_id)
        return workflow.lineage_id if workflow is not None else None

    def eligible_approvers(
        self,
        request: ApprovalRequestModel,
        step_order: int | None = None,
        at: datetime | None = None,
    ) -> set[UUID]:
        """Holders of pending slots on the step plus their active delegates."""
        at = at or self._clock.now()
        step_order = request.current_step if step_order is None else step_order
        lineage_id = self.lineage_for(request)
        eligible: set[UUID] = set()
        for row in request.actions_for_step(step_order):
            if row.is_decided:
                continue
            eligible.add(row.approver_id)
            eligible.add(self._delegations.resolve_approver(
                row.approver_id, at, request.page_id, lineage_id,
            ))
        return eligible

    def find_actionable_row(
        self,
        request: ApprovalRequestModel,
        actor_id: UUID,
        at: datetime,
    ) -> tuple[ApprovalActionModel, UUID | None]:
        """The action row ``actor_id`` would decide, and who it acts for.

        Own slots come first.  A decided own slot, or a slot already
        consumed on the actor's behalf, means the actor has acted.  Failing
        that, a pending slot whose holder currently delegates to the actor.
        """
        rows = request.actions_for_step(request.current_step)

        for row in rows:
            if row.approver_id == actor_id or row.on_behalf_of == actor_id:
                if row.is_decided:
                    raise AlreadyActedError(
                        str(request.id), str(actor_id), request.current_step,
                    )
        for row in rows:
            if row.approver_id == actor_id:
                return row, None

        lineage_id = self.lineage_for(request)
        for row in rows:
            if row.is_decided:
                continue
            delegate = self._delegations.resolve_approver(
                row.approver_id, at, request.page_id, lineage_id,
            )
            if delegate == actor_id:
                return row, row.approver_id

        raise NotAuthorizedError(
            str(actor_id),
            str(request.id),
            f"not an eligible approver for step {request.current_step}",
        )

    def can_act(
        self,
        request: ApprovalRequestModel,
        actor_id: UUID,
        at: datetime | None = None,
    ) -> bool:
        """True iff ``process_action`` by ``actor_id`` would pass authorisation."""
        if request.status != "pending":
            return False
        try:
            self.find_actionable_row(request, actor_id, at or self._clock.now())
        except (NotAuthorizedError, AlreadyActedError):
            return False
        return True
