"""
ApprovalLogService -- append-only audit trail per approval request.

Every state change of a request (creation, recorded decision, step
advancement, escalation, auto-approval, cancellation, expiry) appends one
``ApprovalLogModel`` row in the same transaction as the change itself.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.approval import ApprovalLogEntry
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.models.approval_log import ApprovalLogModel


class ApprovalLogService:
    """Writes and reads the approval audit trail. Flushes, never commits."""

    REQUEST_CREATED = "request_created"
    ACTION_RECORDED = "action_recorded"
    STEP_ADVANCED = "step_advanced"
    STEP_ESCALATED = "step_escalated"
    STEP_AUTO_APPROVED = "step_auto_approved"
    REQUEST_COMPLETED = "request_completed"
    REQUEST_CANCELLED = "request_cancelled"
    REQUEST_EXPIRED = "request_expired"

    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()

    def record(
        self,
        request_id: UUID,
        user_id: UUID | None,
        action: str,
        details: dict[str, Any] | None = None,
    ) -> ApprovalLogModel:
        entry = ApprovalLogModel(
            request_id=request_id,
            user_id=user_id,
            action=action,
            details=_jsonable(details or {}),
            created_at=self._clock.now(),
        )
        self._session.add(entry)
        return entry

    def list_for_request(self, request_id: UUID) -> list[ApprovalLogEntry]:
        rows = self._session.execute(
            select(ApprovalLogModel)
            .where(ApprovalLogModel.request_id == request_id)
            .order_by(ApprovalLogModel.created_at)
        ).scalars()
        return [r.to_dto() for r in rows]


def _jsonable(details: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, val in details.items():
        if isinstance(val, UUID):
            out[key] = str(val)
        elif isinstance(val, Enum):
            out[key] = val.value
        elif isinstance(val, datetime):
            out[key] = val.isoformat()
        else:
            out[key] = val
    return out
