"""
approval_kernel.services.delegation_service -- Time-bounded delegation.

Responsibility:
    Records ``delegator -> delegate`` substitutions over a half-open window
    ``[start, end)``, optionally scoped to a page or a workflow lineage, and
    answers "who acts for this approver at time t" for the evaluator and the
    pending-inbox selector.

Architecture position:
    Kernel > Services.  Reads workflow definitions to resolve a workflow
    scope to its lineage, so a delegation keeps matching after the workflow
    is re-versioned.

Invariants enforced:
    - No self-delegation and ``end > start`` (also CHECK constraints).
    - No two active delegations from the same delegator with overlapping
      windows and intersecting scopes.
    - Single hop: resolution never follows a delegate's own delegation.

Failure modes:
    - DelegationValidationError for self-delegation or an empty window.
    - DelegationOverlapError for an overlapping active delegation.
    - DelegationNotFoundError when revoking an unknown id.
    - WorkflowNotFoundError for an unknown workflow scope.

Audit relevance:
    The delegate acts under its own identity; the action row records the
    delegator in ``on_behalf_of``.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.approval import ApprovalDelegation, scopes_intersect
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.exceptions import (
    DelegationNotFoundError,
    DelegationOverlapError,
    DelegationValidationError,
    PageNotFoundError,
    WorkflowNotFoundError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.delegation import ApprovalDelegationModel
from approval_kernel.models.page import ApprovalPageModel
from approval_kernel.models.workflow import WorkflowDefinitionModel

logger = get_logger("services.delegation")


class DelegationService:
    """Create, revoke and resolve approver delegations."""

    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()

    def create_delegation(
        self,
        delegator_id: UUID,
        delegate_id: UUID,
        start_date: datetime,
        end_date: datetime,
        page_id: UUID | None = None,
        workflow_id: UUID | None = None,
        reason: str | None = None,
    ) -> ApprovalDelegation:
        if delegator_id == delegate_id:
            raise DelegationValidationError("cannot delegate to oneself")
        if end_date <= start_date:
            raise DelegationValidationError("end_date must be after start_date")
        if page_id is not None and self._session.get(ApprovalPageModel, page_id) is None:
            raise PageNotFoundError(str(page_id))

        lineage_id = None
        if workflow_id is not None:
            workflow = self._session.get(WorkflowDefinitionModel, workflow_id)
            if workflow is None:
                raise WorkflowNotFoundError(str(workflow_id))
            lineage_id = workflow.lineage_id

        existing = self._session.execute(
            select(ApprovalDelegationModel).where(
                ApprovalDelegationModel.delegator_id == delegator_id,
                ApprovalDelegationModel.is_active.is_(True),
                ApprovalDelegationModel.start_date < end_date,
                ApprovalDelegationModel.end_date > start_date,
            )
        ).scalars().all()
        for other in existing:
            if scopes_intersect(
                other.page_id, other.workflow_lineage_id, page_id, lineage_id,
            ):
                raise DelegationOverlapError(str(delegator_id), str(other.id))

        model = ApprovalDelegationModel(
            delegator_id=delegator_id,
            delegate_id=delegate_id,
            start_date=start_date,
            end_date=end_date,
            page_id=page_id,
            workflow_id=workflow_id,
            workflow_lineage_id=lineage_id,
            reason=reason,
            is_active=True,
            created_at=self._clock.now(),
        )
        self._session.add(model)
        self._session.flush()

        logger.info(
            "delegation_created",
            extra={
                "delegation_id": str(model.id),
                "delegator_id": str(delegator_id),
                "delegate_id": str(delegate_id),
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
            },
        )
        return model.to_dto()

    def revoke_delegation(self, delegation_id: UUID) -> ApprovalDelegation:
        model = self._session.get(ApprovalDelegationModel, delegation_id)
        if model is None:
            raise DelegationNotFoundError(str(delegation_id))
        if model.is_active:
            model.is_active = False
            model.revoked_at = self._clock.now()
            self._session.flush()
            logger.info(
                "delegation_revoked", extra={"delegation_id": str(delegation_id)},
            )
        return model.to_dto()

    def get_delegation(self, delegation_id: UUID) -> ApprovalDelegation:
        model = self._session.get(ApprovalDelegationModel, delegation_id)
        if model is None:
            raise DelegationNotFoundError(str(delegation_id))
        return model.to_dto()

    def list_active_delegations(
        self, at: datetime | None = None,
    ) -> list[ApprovalDelegation]:
        """Delegations whose window covers ``at`` (default: now)."""
        at = at or self._clock.now()
        rows = self._session.execute(
            select(ApprovalDelegationModel)
            .where(
                ApprovalDelegationModel.is_active.is_(True),
                ApprovalDelegationModel.start_date <= at,
                ApprovalDelegationModel.end_date > at,
            )
            .order_by(ApprovalDelegationModel.start_date)
        ).scalars()
        return [r.to_dto() for r in rows]

    def resolve_approver(
        self,
        nominal_approver_id: UUID,
        at: datetime,
        page_id: UUID | None = None,
        workflow_lineage_id: UUID | None = None,
    ) -> UUID:
        """The delegate acting for ``nominal_approver_id`` at ``at``, or itself.

        Exactly one hop: a delegate's own delegations are not followed.
        """
        for delegation in self._covering(nominal_approver_id, at):
            if delegation.matches_scope(page_id, workflow_lineage_id):
                return delegation.delegate_id
        return nominal_approver_id

    def delegators_for(
        self,
        delegate_id: UUID,
        at: datetime,
        page_id: UUID | None = None,
        workflow_lineage_id: UUID | None = None,
    ) -> list[UUID]:
        """Approvers for whom ``delegate_id`` currently acts in this scope."""
        rows = self._session.execute(
            select(ApprovalDelegationModel).where(
                ApprovalDelegationModel.delegate_id == delegate_id,
                ApprovalDelegationModel.is_active.is_(True),
                ApprovalDelegationModel.start_date <= at,
                ApprovalDelegationModel.end_date > at,
            )
        ).scalars()
        return [
            r.delegator_id for r in rows
            if r.to_dto().matches_scope(page_id, workflow_lineage_id)
        ]

    def _covering(self, delegator_id: UUID, at: datetime) -> list[ApprovalDelegation]:
        rows = self._session.execute(
            select(ApprovalDelegationModel)
            .where(
                ApprovalDelegationModel.delegator_id == delegator_id,
                ApprovalDelegationModel.is_active.is_(True),
                ApprovalDelegationModel.start_date <= at,
                ApprovalDelegationModel.end_date > at,
            )
            .order_by(ApprovalDelegationModel.created_at)
        ).scalars()
        return [r.to_dto() for r in rows]
