"""
approval_kernel.services.notification_trigger -- Notification outbox writer.

Responsibility:
    Appends notification rows when approval events happen: a step is
    activated, a step escalates, a request completes or expires, or a
    reminder is requested.  Delivery (email, push, polling UI) is a
    separate consumer that reads the outbox through ``list_outbox``.

Architecture position:
    Kernel > Services.  Called inside the action processor's and the
    coordinator's transactions, so an event and its notifications commit
    or roll back together.

Invariants enforced:
    - Append-only: rows are never rewritten except the read flag.
    - ``mark_read`` is idempotent.

Failure modes:
    - NotificationNotFoundError from ``mark_read`` for an unknown id.
    - ApprovalRequestNotFoundError from ``remind_pending``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.approval import (
    ApprovalNotification,
    NotificationType,
    RequestStatus,
    StepDefinition,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.exceptions import (
    ApprovalRequestNotFoundError,
    NotificationNotFoundError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.notification import ApprovalNotificationModel
from approval_kernel.models.request import ApprovalRequestModel

logger = get_logger("services.notification")


class NotificationTrigger:
    """Writes and reads the approval notification outbox."""

    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    def notify_new_request(
        self,
        request: ApprovalRequestModel,
        recipients: Iterable[UUID],
        step: StepDefinition,
    ) -> int:
        """One ``new_request`` row per approver of a freshly activated step."""
        count = 0
        for recipient in dict.fromkeys(recipients):
            self._append(
                recipient,
                NotificationType.NEW_REQUEST,
                f"Approval needed: {request.request_number}",
                f"Request {request.request_number} is waiting for your "
                f"decision at step {step.step_order} ({step.step_name}).",
                request.id,
            )
            count += 1
        return count

    def notify_escalated(
        self,
        request: ApprovalRequestModel,
        recipient: UUID,
        step: StepDefinition,
    ) -> None:
        self._append(
            recipient,
            NotificationType.ESCALATED,
            f"Escalated: {request.request_number}",
            f"Step {step.step_order} ({step.step_name}) of request "
            f"{request.request_number} had no decision in time and was "
            f"escalated to you.",
            request.id,
        )

    def notify_outcome(self, request: ApprovalRequestModel) -> None:
        """Tell the requester a request was approved or rejected."""
        status = RequestStatus(request.status)
        if status == RequestStatus.APPROVED:
            kind = NotificationType.APPROVED
        elif status == RequestStatus.REJECTED:
            kind = NotificationType.REJECTED
        else:
            return
        self._append(
            request.requester_id,
            kind,
            f"Request {request.request_number} {status.value}",
            f"Your request {request.request_number} was {status.value}.",
            request.id,
        )

    def notify_expired(self, request: ApprovalRequestModel) -> None:
        self._append(
            request.requester_id,
            NotificationType.EXPIRED,
            f"Request {request.request_number} expired",
            f"Your request {request.request_number} passed its due date "
            f"without a decision and has expired.",
            request.id,
        )

    def remind_pending(self, request_id: UUID) -> int:
        """Send a reminder to every approver still pending on the current step."""
        request = self._session.get(ApprovalRequestModel, request_id)
        if request is None:
            raise ApprovalRequestNotFoundError(str(request_id))
        if request.status != RequestStatus.PENDING.value:
            return 0

        pending = [
            a.approver_id
            for a in request.actions_for_step(request.current_step)
            if not a.is_decided
        ]
        for recipient in dict.fromkeys(pending):
            self._append(
                recipient,
                NotificationType.REMINDER,
                f"Reminder: {request.request_number}",
                f"Request {request.request_number} is still waiting for your "
                f"decision at step {request.current_step}.",
                request.id,
            )
        self._session.flush()
        return len(set(pending))

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def mark_read(self, notification_id: UUID) -> ApprovalNotification:
        model = self._session.get(ApprovalNotificationModel, notification_id)
        if model is None:
            raise NotificationNotFoundError(str(notification_id))
        if not model.is_read:
            model.is_read = True
            model.read_at = self._clock.now()
            self._session.flush()
        return model.to_dto()

    def list_unread(self, recipient_id: UUID) -> list[ApprovalNotification]:
        rows = self._session.execute(
            select(ApprovalNotificationModel)
            .where(
                ApprovalNotificationModel.recipient_id == recipient_id,
                ApprovalNotificationModel.is_read.is_(False),
            )
            .order_by(ApprovalNotificationModel.created_at)
        ).scalars()
        return [r.to_dto() for r in rows]

    def list_outbox(
        self, after: datetime | None = None, limit: int = 100,
    ) -> list[ApprovalNotification]:
        """Notifications created strictly after ``after``, oldest first."""
        stmt = select(ApprovalNotificationModel)
        if after is not None:
            stmt = stmt.where(ApprovalNotificationModel.created_at > after)
        rows = self._session.execute(
            stmt.order_by(ApprovalNotificationModel.created_at).limit(limit)
        ).scalars()
        return [r.to_dto() for r in rows]

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _append(
        self,
        recipient_id: UUID,
        kind: NotificationType,
        title: str,
        message: str,
        request_id: UUID | None,
    ) -> ApprovalNotificationModel:
        model = ApprovalNotificationModel(
            recipient_id=recipient_id,
            notification_type=kind.value,
            title=title,
            message=message,
            request_id=request_id,
            is_read=False,
            created_at=self._clock.now(),
        )
        self._session.add(model)
        logger.debug(
            "notification_queued",
            extra={
                "recipient_id": str(recipient_id),
                "notification_type": kind.value,
                "request_id": str(request_id) if request_id else None,
            },
        )
        return model
