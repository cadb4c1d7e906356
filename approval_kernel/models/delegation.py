"""
Module: approval_kernel.models.delegation
Responsibility: ORM persistence for time-bounded approver delegations.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - end_date > start_date (half-open window is non-empty).
    - delegator_id != delegate_id.
    - Non-overlap of active delegations per delegator with intersecting
      scope is enforced by DelegationService on insert.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, Text
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from approval_kernel.domain.approval import ApprovalDelegation


class ApprovalDelegationModel(Base):
    """Persistent delegation ``delegator -> delegate`` over ``[start, end)``."""

    __tablename__ = "approval_delegations"

    __table_args__ = (
        CheckConstraint("end_date > start_date", name="ck_delegations_window"),
        CheckConstraint("delegator_id <> delegate_id", name="ck_delegations_not_self"),
        Index("ix_delegations_delegator_active", "delegator_id", "is_active"),
        Index("ix_delegations_delegate_active", "delegate_id", "is_active"),
    )

    delegator_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    delegate_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    page_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("approval_pages.id"), nullable=True,
    )
    workflow_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("workflow_definitions.id"), nullable=True,
    )
    workflow_lineage_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True,
    )
    start_date: Mapped[datetime] = mapped_column(nullable=False)
    end_date: Mapped[datetime] = mapped_column(nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<ApprovalDelegation {self.delegator_id} -> {self.delegate_id} "
            f"[{self.start_date}, {self.end_date})>"
        )

    def to_dto(self) -> ApprovalDelegation:
        from approval_kernel.domain.approval import ApprovalDelegation

        return ApprovalDelegation(
            delegation_id=self.id,
            delegator_id=self.delegator_id,
            delegate_id=self.delegate_id,
            start_date=self.start_date,
            end_date=self.end_date,
            page_id=self.page_id,
            workflow_id=self.workflow_id,
            workflow_lineage_id=self.workflow_lineage_id,
            reason=self.reason,
            is_active=self.is_active,
            created_at=self.created_at,
        )
