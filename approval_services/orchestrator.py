"""
approval_services.orchestrator -- DI container for approval kernel services.

Responsibility:
    Creates every kernel service exactly once per session and wires them
    together.  No kernel service constructs another; the API facade, the
    sweep and the scripts all obtain their services from here.

Architecture position:
    Services -- composition layer above ``approval_kernel``.

Invariants enforced:
    - Single-instance lifecycle: one of each service per orchestrator, all
      sharing the same Session and Clock.
    - DI transparency: the whole dependency graph is visible in ``__init__``.

Usage:
    orchestrator = ApprovalOrchestrator(session, directory, clock=clock)
    orchestrator.coordinator.create_request("leave_request", requester_id, {...})
    orchestrator.processor.process_action(request_id, approver_id, "approve")
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from approval_kernel.domain.approval import ApproverDirectory
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.selectors.approval_selector import ApprovalSelector
from approval_kernel.services.action_processor import ActionProcessor
from approval_kernel.services.approval_log import ApprovalLogService
from approval_kernel.services.delegation_service import DelegationService
from approval_kernel.services.document_service import DocumentService
from approval_kernel.services.document_sync import DocumentSyncService
from approval_kernel.services.notification_trigger import NotificationTrigger
from approval_kernel.services.request_coordinator import RequestCoordinator
from approval_kernel.services.sequence_service import SequenceService
from approval_kernel.services.step_evaluator import StepEvaluator
from approval_kernel.services.workflow_store import WorkflowStore


class ApprovalOrchestrator:
    """Central factory for approval kernel services.

    Non-goals:
        - Does NOT own the Session lifecycle.  Only the action processor
          commits, and only when ``auto_commit`` is True.
    """

    def __init__(
        self,
        session: Session,
        directory: ApproverDirectory,
        clock: Clock | None = None,
        auto_commit: bool = True,
        max_retries: int = 3,
        number_prefix: str = "APR",
    ) -> None:
        self.session = session
        self.clock = clock or SystemClock()
        self.directory = directory

        # Foundational services (no kernel dependencies)
        self.sequences = SequenceService(session)
        self.log_service = ApprovalLogService(session, self.clock)
        self.notifier = NotificationTrigger(session, self.clock)
        self.document_sync = DocumentSyncService(session, self.clock)
        self.store = WorkflowStore(session, self.clock)
        self.delegations = DelegationService(session, self.clock)

        # Depend on the above
        self.documents = DocumentService(
            session, self.sequences, self.document_sync, self.clock,
        )
        self.evaluator = StepEvaluator(
            session, directory, self.delegations, self.clock,
        )
        self.coordinator = RequestCoordinator(
            session,
            store=self.store,
            evaluator=self.evaluator,
            document_sync=self.document_sync,
            notifier=self.notifier,
            sequences=self.sequences,
            log_service=self.log_service,
            clock=self.clock,
            number_prefix=number_prefix,
        )
        self.processor = ActionProcessor(
            session,
            evaluator=self.evaluator,
            document_sync=self.document_sync,
            notifier=self.notifier,
            log_service=self.log_service,
            clock=self.clock,
            auto_commit=auto_commit,
            max_retries=max_retries,
        )

        # Read side
        self.selector = ApprovalSelector(session)
