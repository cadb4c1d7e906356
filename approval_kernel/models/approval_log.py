"""
Module: approval_kernel.models.approval_log
Responsibility: Append-only audit trail of everything that happened to an
    approval request (creation, each decision, advancement, escalation,
    auto-approval, cancellation, expiry).

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: UPDATE and DELETE raise ImmutabilityViolationError.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String, event
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from approval_kernel.domain.approval import ApprovalLogEntry


class ApprovalLogModel(Base):
    __tablename__ = "approval_logs"

    __table_args__ = (
        Index("ix_approval_logs_request", "request_id", "created_at"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_requests.id"), nullable=False,
    )
    user_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<ApprovalLog {self.action} request={self.request_id}>"

    def to_dto(self) -> ApprovalLogEntry:
        from approval_kernel.domain.approval import ApprovalLogEntry

        return ApprovalLogEntry(
            log_id=self.id,
            request_id=self.request_id,
            user_id=self.user_id,
            action=self.action,
            details=dict(self.details or {}),
            created_at=self.created_at,
        )


@event.listens_for(ApprovalLogModel, "before_update")
def prevent_log_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="ApprovalLog",
        entity_id=str(target.id),
        reason="Approval log is append-only -- cannot modify",
    )


@event.listens_for(ApprovalLogModel, "before_delete")
def prevent_log_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="ApprovalLog",
        entity_id=str(target.id),
        reason="Approval log is append-only -- cannot delete",
    )
