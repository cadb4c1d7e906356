"""
approval_kernel.services.request_coordinator -- Request lifecycle entry point.

Responsibility:
    Creates approval requests: resolves the page and the workflow version
    that governs the request, allocates the request number, activates the
    first applicable step, and hands the bound document to the status
    synchronizer.  Also submits an existing linked document for approval.

Architecture position:
    Kernel > Services.  Flushes, never commits; the API facade or the
    caller owns the transaction.

Invariants enforced:
    - Version pinning: ``workflow_id`` is the concrete version selected at
      creation and is never re-resolved.
    - Deferred activation: only the first applicable step is seeded.
    - Edit lock: a document whose latest request is pending or approved
      cannot be submitted again.  The document row is locked before the
      check, so concurrent submissions of one document serialise.
    - A page that does not require approval, or a workflow whose steps are
      all skipped by their conditions, yields an approved request at once.

Failure modes:
    - PageNotFoundError, WorkflowNotFoundError (no matching workflow).
    - RequestValidationError for an unknown priority.
    - DocumentNotFoundError, DocumentLockedError, NotAuthorizedError
      (submitting someone else's document).
    - NoEligibleApproversError when the first step resolves too few
      approvers.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from approval_engines.approval import next_active_step
from approval_kernel.domain.approval import (
    ApprovalRequest,
    RequestPriority,
    RequestStatus,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.exceptions import (
    ApprovalRequestNotFoundError,
    NotAuthorizedError,
    RequestValidationError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.request import ApprovalRequestModel
from approval_kernel.services.approval_log import ApprovalLogService
from approval_kernel.services.document_sync import DocumentSyncService
from approval_kernel.services.notification_trigger import NotificationTrigger
from approval_kernel.services.sequence_service import SequenceService
from approval_kernel.services.step_evaluator import StepEvaluator
from approval_kernel.services.workflow_store import WorkflowStore

logger = get_logger("services.request_coordinator")


class RequestCoordinator:
    """Creates approval requests against the current workflow version."""

    def __init__(
        self,
        session: Session,
        store: WorkflowStore,
        evaluator: StepEvaluator,
        document_sync: DocumentSyncService,
        notifier: NotificationTrigger,
        sequences: SequenceService,
        log_service: ApprovalLogService,
        clock: Clock | None = None,
        number_prefix: str = "APR",
    ) -> None:
        self._session = session
        self._store = store
        self._evaluator = evaluator
        self._document_sync = document_sync
        self._notifier = notifier
        self._sequences = sequences
        self._log = log_service
        self._clock = clock or SystemClock()
        self._number_prefix = number_prefix

    def create_request(
        self,
        page_name: str,
        requester_id: UUID,
        payload: Mapping[str, Any] | None = None,
        priority: RequestPriority | str = RequestPriority.NORMAL,
        due_date: datetime | None = None,
        document_id: UUID | None = None,
    ) -> ApprovalRequest:
        """
        Open a request on ``page_name`` for ``requester_id``.

        Postconditions:
            - ``status`` is ``pending`` with the first applicable step's
              rows seeded, or ``approved`` when nothing needs approving.
            - The bound document, if any, reflects the request status.
        """
        try:
            priority = RequestPriority(priority)
        except ValueError:
            raise RequestValidationError(
                "priority", f"unknown priority {priority!r}",
            ) from None

        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=str(requester_id),
            page=page_name,
        ):
            page = self._store.get_page(page_name)
            if document_id is not None:
                self._document_sync.assert_editable(document_id)

            payload = dict(payload or {})
            now = self._clock.now()

            workflow = None
            first_step = None
            if page.requires_approval:
                workflow = self._store.select_workflow_for_request(page.page_id, payload)
                first_step = next_active_step(workflow.steps, payload)

            request = ApprovalRequestModel(
                request_number=self._sequences.next_number(
                    SequenceService.APPROVAL_REQUEST, self._number_prefix,
                ),
                page_id=page.page_id,
                workflow_id=workflow.workflow_id if workflow else None,
                requester_id=requester_id,
                document_id=document_id,
                payload=payload,
                current_step=first_step.step_order if first_step else 0,
                status=(
                    RequestStatus.PENDING.value if first_step
                    else RequestStatus.APPROVED.value
                ),
                priority=priority.value,
                due_date=due_date,
                completed_at=None if first_step else now,
                created_at=now,
                updated_at=now,
            )
            self._session.add(request)
            self._session.flush()

            with LogContext.bind(
                request_id=str(request.id),
                workflow_id=str(workflow.workflow_id) if workflow else None,
            ):
                if first_step is not None:
                    seeded = self._evaluator.activate_step(request, first_step, now)
                    self._notifier.notify_new_request(request, seeded, first_step)
                else:
                    self._notifier.notify_outcome(request)

                self._log.record(
                    request.id, requester_id, ApprovalLogService.REQUEST_CREATED,
                    {
                        "request_number": request.request_number,
                        "workflow_id": workflow.workflow_id if workflow else None,
                        "workflow_version": workflow.version if workflow else None,
                        "status": request.status,
                    },
                )
                self._document_sync.sync(request)
                self._session.flush()

                logger.info(
                    "approval_request_created",
                    extra={
                        "request_number": request.request_number,
                        "status": request.status,
                        "current_step": request.current_step,
                        "priority": priority.value,
                    },
                )
            return request.to_dto()

    def submit_document(
        self,
        document_id: UUID,
        page_name: str,
        requester_id: UUID,
        priority: RequestPriority | str = RequestPriority.NORMAL,
        due_date: datetime | None = None,
        payload: Mapping[str, Any] | None = None,
    ) -> ApprovalRequest:
        """Submit the owner's document; its identity is copied into the payload."""
        document = self._document_sync.lock_document(document_id)
        if document.owner_id != requester_id:
            raise NotAuthorizedError(
                str(requester_id), str(document_id),
                "only the document owner may submit it",
            )
        merged = {
            k: v for k, v in (document.payload or {}).items()
            if k not in DocumentSyncService.REQUEST_KEYS
        }
        merged.update(payload or {})
        merged.update({
            "document_id": str(document.id),
            "doc_no": document.doc_no,
            "doc_type": document.doc_type,
            "title": document.title,
        })
        return self.create_request(
            page_name, requester_id, merged,
            priority=priority, due_date=due_date, document_id=document_id,
        )

    def get_request(self, request_id: UUID) -> ApprovalRequest:
        request = self._session.get(ApprovalRequestModel, request_id)
        if request is None:
            raise ApprovalRequestNotFoundError(str(request_id))
        return request.to_dto()
