"""
approval_kernel.services.action_processor -- Approval state machine driver.

Responsibility:
    Applies every mutation of an approval request: an approver's decision,
    the timer sweep's auto-approval or escalation, administrative
    cancellation and expiry.  After each decision the request's status and
    current step are recomputed from the full action history by the pure
    engine, never incremented in place.

Architecture position:
    Kernel > Services -- imperative shell around ``approval_engines``.
    Owns the transaction boundary when ``auto_commit=True`` (the default),
    mirroring the posting orchestrators: commit on success, rollback and
    re-raise on failure.

Invariants enforced:
    - Serialisation point: the request row is read ``FOR UPDATE`` with
      ``populate_existing`` and every mutation bumps its ``version_id_col``,
      so two writers can never both commit a transition computed from the
      same snapshot.
    - No double credit: an identity holds one slot per step and a decided
      slot raises AlreadyActedError.
    - Single-rejection veto and immediate rejection.
    - Monotonic advancement: a recomputed current step lower than the
      stored one raises StatusDriftError instead of being written.
    - Deferred activation: the next step's rows are seeded only when the
      request advances onto it.
    - Atomic fan-out: the document status, notifications and audit log rows
      are written in the same transaction as the action.

Failure modes:
    - InvalidDecisionError before anything is read.
    - ApprovalRequestNotFoundError, AlreadyProcessedError,
      NotAuthorizedError, AlreadyActedError -- no state change.
    - ConcurrencyConflictError once ``max_retries`` conflicting attempts
      have been rolled back, or at once when the caller owns the
      transaction (``auto_commit=False``).
"""

from __future__ import annotations

import time
from dataclasses import replace
from datetime import datetime
from typing import Callable, Sequence, TypeVar
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from approval_engines.approval import (
    derive_request_state,
    evaluate_step,
    evaluate_timers,
)
from approval_kernel.domain.approval import (
    ADMINISTRATIVE_STATUSES,
    SYSTEM_ACTOR_ID,
    ActionOrigin,
    ActionResult,
    ActionState,
    ApprovalDecision,
    RequestState,
    RequestStatus,
    StepDefinition,
    StepOutcome,
    TimerDecision,
    parse_decision,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.exceptions import (
    AlreadyProcessedError,
    ApprovalRequestNotFoundError,
    ConcurrencyConflictError,
    NotAuthorizedError,
    StatusDriftError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.request import ApprovalActionModel, ApprovalRequestModel
from approval_kernel.models.workflow import WorkflowDefinitionModel
from approval_kernel.services.approval_log import ApprovalLogService
from approval_kernel.services.document_sync import DocumentSyncService
from approval_kernel.services.notification_trigger import NotificationTrigger
from approval_kernel.services.step_evaluator import StepEvaluator

logger = get_logger("services.action_processor")

T = TypeVar("T")

_LOCK_MARKERS = ("lock", "deadlock", "serializ", "could not obtain")


def _is_lock_conflict(exc: OperationalError) -> bool:
    return any(marker in str(exc.orig).lower() for marker in _LOCK_MARKERS)


class ActionProcessor:
    """
    Records decisions and drives the request state machine.

    Contract:
        Every public mutation loads the request under lock, validates,
        writes, recomputes, and (with ``auto_commit``) commits -- as one
        unit that is retried from fresh state on a concurrency conflict.
    """

    def __init__(
        self,
        session: Session,
        evaluator: StepEvaluator,
        document_sync: DocumentSyncService,
        notifier: NotificationTrigger,
        log_service: ApprovalLogService,
        clock: Clock | None = None,
        auto_commit: bool = True,
        max_retries: int = 3,
    ) -> None:
        self._session = session
        self._evaluator = evaluator
        self._document_sync = document_sync
        self._notifier = notifier
        self._log = log_service
        self._clock = clock or SystemClock()
        self._auto_commit = auto_commit
        self._max_retries = max(1, max_retries)

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def process_action(
        self,
        request_id: UUID,
        actor_id: UUID,
        decision: ApprovalDecision | str,
        comments: str | None = None,
        attachments: Sequence[str] = (),
    ) -> ActionResult:
        """
        Record ``actor_id``'s decision on the request's current step.

        Preconditions (checked in order):
            - ``decision`` is a recognised approve/reject alias.
            - The request exists and is ``pending``.
            - The actor holds a slot on the current step, directly or as
              the active delegate of a slot holder.
            - The actor has not already decided on this step.

        Postconditions:
            - The slot is decided under the actor's identity, with
              ``on_behalf_of`` naming the delegator when acting by
              delegation.
            - Status and current step equal ``derive_request_state`` over
              the full history.
        """
        parsed = parse_decision(decision)

        def work() -> ActionResult:
            now = self._clock.now()
            request = self._lock_request(request_id)
            self._require_pending(request)

            row, on_behalf_of = self._evaluator.find_actionable_row(
                request, actor_id, now,
            )
            step_order = request.current_step
            row.action = parsed.action_state.value
            row.approver_id = actor_id
            row.on_behalf_of = on_behalf_of
            row.comments = comments
            row.attachments = list(attachments)
            row.action_date = now

            self._log.record(
                request.id, actor_id, ApprovalLogService.ACTION_RECORDED,
                {
                    "step_order": step_order,
                    "decision": parsed,
                    "on_behalf_of": on_behalf_of,
                    "comments": comments,
                },
            )
            logger.info(
                "approval_action_recorded",
                extra={
                    "request_number": request.request_number,
                    "step_order": step_order,
                    "decision": parsed.value,
                    "on_behalf_of": str(on_behalf_of) if on_behalf_of else None,
                },
            )
            return self._recompute(
                request, step_order, now,
                comment=comments, attachments=attachments, actor_id=actor_id,
            )

        return self._run("process_action", request_id, actor_id, work)

    def can_act(self, request_id: UUID, actor_id: UUID, at: datetime | None = None) -> bool:
        request = self._session.get(ApprovalRequestModel, request_id)
        if request is None:
            raise ApprovalRequestNotFoundError(str(request_id))
        return self._evaluator.can_act(request, actor_id, at or self._clock.now())

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def apply_timers(self, request_id: UUID) -> ActionResult:
        """Auto-approve or escalate the current step if its timer is due."""

        def work() -> ActionResult:
            now = self._clock.now()
            request = self._lock_request(request_id)
            status = RequestStatus(request.status)
            if status != RequestStatus.PENDING:
                return ActionResult(
                    request.id, status, request.current_step, StepOutcome.OPEN,
                )

            steps = self._steps_for(request)
            step = _step_by_order(steps, request.current_step)
            rows = request.actions_for_step(step.step_order)
            records = [a.to_dto() for a in rows]
            assigned = [r.created_at for r in rows if r.origin != ActionOrigin.SYSTEM.value]
            if not assigned:
                return ActionResult(
                    request.id, status, request.current_step, StepOutcome.OPEN,
                )

            decision = evaluate_timers(step, records, min(assigned), now)

            if decision == TimerDecision.AUTO_APPROVE:
                request.actions.append(ApprovalActionModel(
                    step_id=step.step_id,
                    step_order=step.step_order,
                    approver_id=SYSTEM_ACTOR_ID,
                    origin=ActionOrigin.SYSTEM.value,
                    action=ActionState.APPROVED.value,
                    comments=(
                        f"Auto-approved after {step.auto_approve_after_hours:g} hours"
                    ),
                    attachments=[],
                    action_date=now,
                    created_at=now,
                ))
                self._log.record(
                    request.id, SYSTEM_ACTOR_ID,
                    ApprovalLogService.STEP_AUTO_APPROVED,
                    {"step_order": step.step_order},
                )
                logger.info(
                    "approval_step_auto_approved",
                    extra={
                        "request_number": request.request_number,
                        "step_order": step.step_order,
                    },
                )
                result = self._recompute(
                    request, step.step_order, now, actor_id=SYSTEM_ACTOR_ID,
                )
                return replace(result, timer_decision=decision)

            if decision == TimerDecision.ESCALATE:
                self._evaluator.add_escalation_row(request, step, now)
                self._notifier.notify_escalated(request, step.escalation_to, step)
                self._log.record(
                    request.id, SYSTEM_ACTOR_ID,
                    ApprovalLogService.STEP_ESCALATED,
                    {"step_order": step.step_order, "escalation_to": step.escalation_to},
                )
                self._touch(request, now)
                self._session.flush()
                logger.info(
                    "approval_step_escalated",
                    extra={
                        "request_number": request.request_number,
                        "step_order": step.step_order,
                        "escalation_to": str(step.escalation_to),
                    },
                )

            return ActionResult(
                request.id, status, request.current_step, StepOutcome.OPEN,
                timer_decision=decision,
            )

        return self._run("apply_timers", request_id, SYSTEM_ACTOR_ID, work)

    # ------------------------------------------------------------------
    # Administrative transitions
    # ------------------------------------------------------------------

    def cancel_request(
        self,
        request_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
        admin: bool = False,
    ) -> ActionResult:
        """Withdraw a pending request.  Only the requester or an admin may."""

        def work() -> ActionResult:
            now = self._clock.now()
            request = self._lock_request(request_id)
            self._require_pending(request)
            if not admin and request.requester_id != actor_id:
                raise NotAuthorizedError(
                    str(actor_id), str(request_id),
                    "only the requester or an administrator may cancel",
                )
            self._finish_administratively(
                request, RequestStatus.CANCELLED, now, reason,
            )
            self._log.record(
                request.id, actor_id, ApprovalLogService.REQUEST_CANCELLED,
                {"reason": reason, "admin": admin},
            )
            return ActionResult(
                request.id, RequestStatus.CANCELLED, request.current_step,
                StepOutcome.OPEN, completed=True,
            )

        return self._run("cancel_request", request_id, actor_id, work)

    def expire_request(self, request_id: UUID) -> ActionResult:
        """Close a pending request whose due date has passed."""

        def work() -> ActionResult:
            now = self._clock.now()
            request = self._lock_request(request_id)
            self._require_pending(request)
            self._finish_administratively(request, RequestStatus.EXPIRED, now, None)
            self._notifier.notify_expired(request)
            self._log.record(
                request.id, SYSTEM_ACTOR_ID, ApprovalLogService.REQUEST_EXPIRED,
                {"due_date": request.due_date},
            )
            return ActionResult(
                request.id, RequestStatus.EXPIRED, request.current_step,
                StepOutcome.OPEN, completed=True,
            )

        return self._run("expire_request", request_id, SYSTEM_ACTOR_ID, work)

    # ------------------------------------------------------------------
    # Derivation checks
    # ------------------------------------------------------------------

    def derive_state(self, request_id: UUID) -> RequestState:
        """Status and step as derived from the stored action history."""
        request = self._session.get(ApprovalRequestModel, request_id)
        if request is None:
            raise ApprovalRequestNotFoundError(str(request_id))
        return derive_request_state(
            self._steps_for(request),
            [a.to_dto() for a in request.actions],
            request.payload,
        )

    def verify_request_state(self, request_id: UUID) -> RequestState:
        """Raise StatusDriftError if stored state disagrees with history.

        Cancelled and expired requests are set administratively and are
        returned as stored.
        """
        request = self._session.get(ApprovalRequestModel, request_id)
        if request is None:
            raise ApprovalRequestNotFoundError(str(request_id))
        stored = RequestState(RequestStatus(request.status), request.current_step)
        if stored.status in ADMINISTRATIVE_STATUSES:
            return stored
        derived = self.derive_state(request_id)
        if derived != stored:
            raise StatusDriftError(
                str(request_id),
                (stored.status.value, stored.current_step),
                (derived.status.value, derived.current_step),
            )
        return stored

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _run(
        self,
        operation: str,
        request_id: UUID,
        actor_id: UUID | None,
        work: Callable[[], T],
    ) -> T:
        """Run ``work`` as one unit, retrying on concurrency conflicts."""
        with LogContext.bind(
            correlation_id=str(uuid4()),
            request_id=str(request_id),
            actor_id=str(actor_id) if actor_id else None,
        ):
            t0 = time.monotonic()
            attempt = 0
            while True:
                attempt += 1
                try:
                    if self._auto_commit:
                        result = work()
                        self._session.commit()
                    else:
                        with self._session.begin_nested():
                            result = work()
                    logger.debug(
                        "approval_operation_completed",
                        extra={
                            "operation": operation,
                            "attempts": attempt,
                            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                        },
                    )
                    return result

                except (StaleDataError, OperationalError) as exc:
                    if isinstance(exc, OperationalError) and not _is_lock_conflict(exc):
                        if self._auto_commit:
                            self._session.rollback()
                        raise
                    if self._auto_commit:
                        self._session.rollback()
                    if not self._auto_commit or attempt >= self._max_retries:
                        logger.error(
                            "approval_concurrency_conflict",
                            extra={"operation": operation, "attempts": attempt},
                        )
                        raise ConcurrencyConflictError(str(request_id), attempt) from exc
                    logger.warning(
                        "approval_concurrency_retry",
                        extra={
                            "operation": operation,
                            "attempt": attempt,
                            "error": type(exc).__name__,
                        },
                    )

                except Exception:
                    if self._auto_commit:
                        self._session.rollback()
                    logger.info(
                        "approval_operation_rejected",
                        extra={"operation": operation},
                        exc_info=True,
                    )
                    raise

    def _lock_request(self, request_id: UUID) -> ApprovalRequestModel:
        request = self._session.execute(
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if request is None:
            raise ApprovalRequestNotFoundError(str(request_id))
        return request

    @staticmethod
    def _require_pending(request: ApprovalRequestModel) -> None:
        if request.status != RequestStatus.PENDING.value:
            raise AlreadyProcessedError(str(request.id), request.status)

    def _steps_for(self, request: ApprovalRequestModel) -> tuple[StepDefinition, ...]:
        if request.workflow_id is None:
            return ()
        workflow = self._session.get(WorkflowDefinitionModel, request.workflow_id)
        return tuple(s.to_dto() for s in workflow.steps)

    def _touch(self, request: ApprovalRequestModel, now: datetime) -> None:
        # forces an UPDATE so the version column moves even when only
        # child action rows changed
        request.updated_at = now
        flag_modified(request, "updated_at")

    def _recompute(
        self,
        request: ApprovalRequestModel,
        acted_step: int,
        now: datetime,
        comment: str | None = None,
        attachments: Sequence[str] | None = None,
        actor_id: UUID | None = None,
    ) -> ActionResult:
        """Derive status/step from history and apply the consequences."""
        self._session.flush()
        steps = self._steps_for(request)
        records = [a.to_dto() for a in request.actions]
        state = derive_request_state(steps, records, request.payload)

        if state.current_step < request.current_step:
            raise StatusDriftError(
                str(request.id),
                (request.status, request.current_step),
                (state.status.value, state.current_step),
            )

        step_outcome = evaluate_step(_step_by_order(steps, acted_step), records).outcome
        self._touch(request, now)
        advanced = False
        completed = False

        if state.status == RequestStatus.PENDING:
            if state.current_step != request.current_step:
                step = _step_by_order(steps, state.current_step)
                request.current_step = step.step_order
                seeded = self._evaluator.activate_step(request, step, now)
                self._notifier.notify_new_request(request, seeded, step)
                self._log.record(
                    request.id, actor_id, ApprovalLogService.STEP_ADVANCED,
                    {"from_step": acted_step, "to_step": step.step_order},
                )
                logger.info(
                    "approval_step_advanced",
                    extra={
                        "request_number": request.request_number,
                        "from_step": acted_step,
                        "to_step": step.step_order,
                    },
                )
                advanced = True
        else:
            request.status = state.status.value
            request.current_step = state.current_step
            request.completed_at = now
            self._document_sync.sync(request, comment, attachments)
            self._notifier.notify_outcome(request)
            self._log.record(
                request.id, actor_id, ApprovalLogService.REQUEST_COMPLETED,
                {"status": state.status, "step_order": state.current_step},
            )
            logger.info(
                "approval_request_completed",
                extra={
                    "request_number": request.request_number,
                    "status": state.status.value,
                    "step_order": state.current_step,
                },
            )
            completed = True

        self._session.flush()
        return ActionResult(
            request_id=request.id,
            status=RequestStatus(request.status),
            current_step=request.current_step,
            step_outcome=step_outcome,
            advanced=advanced,
            completed=completed,
        )

    def _finish_administratively(
        self,
        request: ApprovalRequestModel,
        status: RequestStatus,
        now: datetime,
        reason: str | None,
    ) -> None:
        request.status = status.value
        request.completed_at = now
        self._touch(request, now)
        self._document_sync.sync(request, reason)
        self._session.flush()
        logger.info(
            "approval_request_closed",
            extra={
                "request_number": request.request_number,
                "status": status.value,
                "reason": reason,
            },
        )


def _step_by_order(
    steps: Sequence[StepDefinition], step_order: int,
) -> StepDefinition:
    for step in steps:
        if step.step_order == step_order:
            return step
    raise KeyError(step_order)
