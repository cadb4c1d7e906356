"""
Module: approval_kernel.models.notification
Responsibility: Notification outbox rows consumed by an external delivery
    pipeline.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only outbox: the only permitted mutation is flipping
      ``is_read`` / ``read_at``; every other UPDATE and every DELETE raises
      ImmutabilityViolationError.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from approval_kernel.domain.approval import ApprovalNotification

_MUTABLE_FIELDS = frozenset({"is_read", "read_at"})


class ApprovalNotificationModel(Base):
    __tablename__ = "approval_notifications"

    __table_args__ = (
        CheckConstraint(
            "notification_type IN ('new_request', 'approved', 'rejected', "
            "'escalated', 'reminder', 'expired')",
            name="ck_approval_notifications_type",
        ),
        Index("ix_approval_notifications_recipient", "recipient_id", "is_read"),
        Index("ix_approval_notifications_outbox", "created_at"),
    )

    recipient_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    notification_type: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    request_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("approval_requests.id"), nullable=True,
    )
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ApprovalNotification {self.notification_type} "
            f"to={self.recipient_id} read={self.is_read}>"
        )

    def to_dto(self) -> ApprovalNotification:
        from approval_kernel.domain.approval import (
            ApprovalNotification,
            NotificationType,
        )

        return ApprovalNotification(
            notification_id=self.id,
            recipient_id=self.recipient_id,
            notification_type=NotificationType(self.notification_type),
            title=self.title,
            message=self.message,
            request_id=self.request_id,
            is_read=self.is_read,
            read_at=self.read_at,
            created_at=self.created_at,
        )


@event.listens_for(ApprovalNotificationModel, "before_update")
def prevent_notification_rewrite(mapper, connection, target):
    """Only the read flag may change on an outbox row."""
    state = inspect(target)
    changed = [
        attr.key
        for attr in state.attrs
        if attr.key not in _MUTABLE_FIELDS and attr.history.has_changes()
    ]
    if changed:
        raise ImmutabilityViolationError(
            entity_type="ApprovalNotification",
            entity_id=str(target.id),
            reason=f"Notifications are append-only -- cannot modify {sorted(changed)}",
        )


@event.listens_for(ApprovalNotificationModel, "before_delete")
def prevent_notification_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="ApprovalNotification",
        entity_id=str(target.id),
        reason="Notifications are append-only -- cannot delete",
    )
