"""
approval_services.escalation_sweep -- Periodic timer sweep.

Responsibility:
    Walks every pending request, oldest first, and lets the action
    processor apply whatever timer is due on the current step
    (auto-approval or escalation), then expires requests whose due date
    has passed.  Run from a scheduler or ``scripts/run_sweep.py``.

Architecture position:
    Services -- batch layer.  Uses the same ``ActionProcessor`` path as
    interactive decisions, so timer transitions take the same lock and
    version checks.

Invariants enforced:
    - Full coverage: candidates are read in keyset pages of ``batch_size``
      on (created_at, request_number) until none are left, so requests
      that stay pending (nothing due, or failing every run) never hide
      newer ones.
    - Item isolation: with ``auto_commit`` each timer or expiry commits on
      its own and releases the request row lock before the next item; the
      processor retries concurrency conflicts.  Without it, each item runs
      in its own SAVEPOINT inside the caller's transaction.
    - Auto-approval wins over escalation when both are due (decided by the
      pure engine).

Failure modes:
    - Per-item ``ApprovalKernelError`` is logged and counted in
      ``SweepReport.failed``; the sweep continues.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from approval_kernel.domain.approval import (
    ApproverDirectory,
    RequestStatus,
    TimerDecision,
)
from approval_kernel.domain.clock import Clock
from approval_kernel.exceptions import ApprovalKernelError
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.request import ApprovalRequestModel
from approval_services.orchestrator import ApprovalOrchestrator

logger = get_logger("services.escalation_sweep")


@dataclass(frozen=True)
class SweepReport:
    examined: int = 0
    escalated: int = 0
    auto_approved: int = 0
    expired: int = 0
    failed: int = 0
    failed_request_ids: tuple[UUID, ...] = ()


class EscalationSweep:
    """Applies due timers and expiries to pending requests."""

    def __init__(
        self,
        session: Session,
        directory: ApproverDirectory,
        clock: Clock | None = None,
        batch_size: int = 100,
        expire_overdue: bool = True,
        auto_commit: bool = True,
        max_retries: int = 3,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._session = session
        self._orchestrator = ApprovalOrchestrator(
            session,
            directory,
            clock=clock,
            auto_commit=auto_commit,
            max_retries=max_retries,
        )
        self._clock = self._orchestrator.clock
        self._batch_size = batch_size
        self._expire_overdue = expire_overdue
        self._auto_commit = auto_commit

    def _next_page(self, after: tuple[datetime, str] | None) -> Sequence[Any]:
        stmt = select(
            ApprovalRequestModel.id,
            ApprovalRequestModel.due_date,
            ApprovalRequestModel.created_at,
            ApprovalRequestModel.request_number,
        ).where(ApprovalRequestModel.status == RequestStatus.PENDING.value)
        if after is not None:
            created_at, request_number = after
            stmt = stmt.where(
                or_(
                    ApprovalRequestModel.created_at > created_at,
                    and_(
                        ApprovalRequestModel.created_at == created_at,
                        ApprovalRequestModel.request_number > request_number,
                    ),
                )
            )
        rows = self._session.execute(
            stmt.order_by(
                ApprovalRequestModel.created_at, ApprovalRequestModel.request_number,
            ).limit(self._batch_size)
        ).all()
        if self._auto_commit:
            # end the read transaction; each item opens its own
            self._session.commit()
        return rows

    def _log_failure(self, request_id: UUID, exc: ApprovalKernelError) -> None:
        logger.warning(
            "sweep_item_failed",
            extra={
                "request_id": str(request_id),
                "error_code": exc.code,
                "error": str(exc),
            },
        )

    def run(self) -> SweepReport:
        now = self._clock.now()
        processor = self._orchestrator.processor
        t0 = time.monotonic()
        examined = escalated = auto_approved = expired = pages = 0
        failed: list[UUID] = []

        with LogContext.bind(correlation_id=f"sweep-{now.isoformat()}"):
            logger.info("sweep_started", extra={"batch_size": self._batch_size})

            cursor: tuple[datetime, str] | None = None
            while True:
                page = self._next_page(cursor)
                if not page:
                    break
                pages += 1
                examined += len(page)

                for request_id, due_date, _, _ in page:
                    status = RequestStatus.PENDING
                    item_failed = False
                    try:
                        result = processor.apply_timers(request_id)
                        status = result.status
                        if result.timer_decision == TimerDecision.ESCALATE:
                            escalated += 1
                        elif result.timer_decision == TimerDecision.AUTO_APPROVE:
                            auto_approved += 1
                    except ApprovalKernelError as exc:
                        item_failed = True
                        self._log_failure(request_id, exc)

                    # a timer that cannot be applied does not keep an
                    # overdue request alive
                    if (
                        self._expire_overdue
                        and status == RequestStatus.PENDING
                        and due_date is not None
                        and due_date < now
                    ):
                        try:
                            processor.expire_request(request_id)
                            expired += 1
                        except ApprovalKernelError as exc:
                            item_failed = True
                            self._log_failure(request_id, exc)

                    if item_failed:
                        failed.append(request_id)

                last = page[-1]
                cursor = (last.created_at, last.request_number)
                if len(page) < self._batch_size:
                    break

            report = SweepReport(
                examined=examined,
                escalated=escalated,
                auto_approved=auto_approved,
                expired=expired,
                failed=len(failed),
                failed_request_ids=tuple(failed),
            )
            logger.info(
                "sweep_completed",
                extra={
                    "pages": pages,
                    "examined": report.examined,
                    "escalated": report.escalated,
                    "auto_approved": report.auto_approved,
                    "expired": report.expired,
                    "failed": report.failed,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
        return report
