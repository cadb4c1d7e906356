"""
Module: approval_kernel.models.request
Responsibility: ORM persistence for approval requests and their per-approver
    action rows.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Valid status / priority values via CHECK constraints.
    - Optimistic concurrency: ``version`` is the mapper's version_id_col, so
      every UPDATE of a request carries ``WHERE version = :seen`` and a
      writer working from a stale snapshot fails with StaleDataError.
    - Action uniqueness: UNIQUE(request_id, step_id, approver_id) -- an
      identity holds at most one slot per step, so it can never be credited
      twice on the same step.
    - Action immutability: an action row changes exactly once, from
      ``pending`` to a decision.  Decided rows reject UPDATE; all rows
      reject DELETE.

Failure modes:
    - StaleDataError on concurrent request update.
    - IntegrityError on duplicate approver slot.
    - ImmutabilityViolationError on decided-action UPDATE or any DELETE.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from approval_kernel.domain.approval import (
        ApprovalActionRecord,
        ApprovalRequest,
    )


class ApprovalRequestModel(Base):
    """Persistent approval request aggregate root.

    Contract:
        ``status`` and ``current_step`` are written only by the action
        processor (derived from actions) and by the administrative
        cancel/expire paths.
    """

    __tablename__ = "approval_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'cancelled', 'expired')",
            name="ck_approval_requests_valid_status",
        ),
        CheckConstraint(
            "priority IN ('low', 'normal', 'high', 'urgent')",
            name="ck_approval_requests_valid_priority",
        ),
        Index("ix_approval_requests_status_due", "status", "due_date"),
        Index("ix_approval_requests_document", "document_id", "created_at"),
        Index("ix_approval_requests_page_status", "page_id", "status"),
    )

    request_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    page_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_pages.id"), nullable=False,
    )
    workflow_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("workflow_definitions.id"), nullable=True,
    )
    requester_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    document_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("linked_documents.id"), nullable=True,
    )
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    current_step: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default="normal")
    due_date: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    actions: Mapped[list["ApprovalActionModel"]] = relationship(
        "ApprovalActionModel",
        back_populates="request",
        order_by=lambda: (
            ApprovalActionModel.step_order,
            ApprovalActionModel.created_at,
        ),
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.request_number} "
            f"status={self.status} step={self.current_step}>"
        )

    def actions_for_step(self, step_order: int) -> list[ApprovalActionModel]:
        return [a for a in self.actions if a.step_order == step_order]

    def to_dto(self) -> ApprovalRequest:
        from approval_kernel.domain.approval import (
            ApprovalRequest,
            RequestPriority,
            RequestStatus,
        )

        return ApprovalRequest(
            request_id=self.id,
            request_number=self.request_number,
            page_id=self.page_id,
            workflow_id=self.workflow_id,
            requester_id=self.requester_id,
            payload=dict(self.payload or {}),
            current_step=self.current_step,
            status=RequestStatus(self.status),
            priority=RequestPriority(self.priority),
            due_date=self.due_date,
            completed_at=self.completed_at,
            created_at=self.created_at,
            updated_at=self.updated_at,
            document_id=self.document_id,
            version=self.version,
            actions=tuple(a.to_dto() for a in self.actions),
        )


class ApprovalActionModel(Base):
    """One approver slot on one step of one request."""

    __tablename__ = "approval_actions"

    __table_args__ = (
        UniqueConstraint(
            "request_id", "step_id", "approver_id",
            name="uq_approval_actions_slot",
        ),
        CheckConstraint(
            "action IN ('pending', 'approved', 'rejected')",
            name="ck_approval_actions_valid_action",
        ),
        CheckConstraint(
            "origin IN ('assigned', 'escalated', 'system')",
            name="ck_approval_actions_valid_origin",
        ),
        # Inbox lookup: pending rows by approver
        Index("ix_approval_actions_inbox", "approver_id", "action"),
        Index("ix_approval_actions_request_step", "request_id", "step_order"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_requests.id"), nullable=False,
    )
    step_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_steps.id"), nullable=False,
    )
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    approver_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    on_behalf_of: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    origin: Mapped[str] = mapped_column(String(20), nullable=False, default="assigned")
    action: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    attachments: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    action_date: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    request: Mapped["ApprovalRequestModel"] = relationship(
        "ApprovalRequestModel", back_populates="actions",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalAction step={self.step_order} "
            f"approver={self.approver_id} action={self.action}>"
        )

    @property
    def is_decided(self) -> bool:
        return self.action != "pending"

    def to_dto(self) -> ApprovalActionRecord:
        from approval_kernel.domain.approval import (
            ActionOrigin,
            ActionState,
            ApprovalActionRecord,
        )

        return ApprovalActionRecord(
            action_id=self.id,
            request_id=self.request_id,
            step_id=self.step_id,
            step_order=self.step_order,
            approver_id=self.approver_id,
            action=ActionState(self.action),
            origin=ActionOrigin(self.origin),
            on_behalf_of=self.on_behalf_of,
            comments=self.comments,
            attachments=tuple(self.attachments or ()),
            action_date=self.action_date,
            created_at=self.created_at,
        )


# =============================================================================
# ORM-Level Immutability for Decided Actions
# =============================================================================


@event.listens_for(ApprovalActionModel, "before_update")
def prevent_decided_action_update(mapper, connection, target):
    """Allow exactly one pending -> decided transition per action row."""
    history = inspect(target).attrs.action.history
    previous = history.deleted[0] if history.deleted else target.action
    if previous != "pending":
        raise ImmutabilityViolationError(
            entity_type="ApprovalAction",
            entity_id=str(target.id),
            reason=f"Action already {previous} -- cannot modify",
        )


@event.listens_for(ApprovalActionModel, "before_delete")
def prevent_action_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="ApprovalAction",
        entity_id=str(target.id),
        reason="Approval actions are append-only -- cannot delete",
    )
