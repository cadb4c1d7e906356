"""
approval_services.approval_api -- Collaborator-facing approval operations.

Responsibility:
    The surface used by UI screens, document-management screens and
    notification delivery.  Each call opens its own ``session_scope()``
    transaction, builds an ``ApprovalOrchestrator`` over it, and returns
    ids, booleans or frozen DTOs -- never ORM instances.

Architecture position:
    Services -- outermost layer.  Typed kernel errors propagate unchanged
    so callers can tell "already decided" from "not your turn".

Failure modes:
    - Every ``ApprovalKernelError`` subclass, raised after the call's
      transaction has been rolled back.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Generator, Iterable, Mapping, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from approval_config.schema import EngineSettings
from approval_kernel.db.engine import session_scope
from approval_kernel.domain.approval import (
    SYSTEM_ACTOR_ID,
    ApprovalDelegation,
    ApprovalNotification,
    ApprovalPage,
    ApprovalRequest,
    ApproverDirectory,
    RequestPriority,
    StepDefinition,
    WorkflowDraft,
    WorkflowType,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.documents import DocumentType, LinkedDocument
from approval_kernel.selectors.approval_selector import (
    ApprovalStatistics,
    RequestDetails,
    RequestPage,
)
from approval_services.orchestrator import ApprovalOrchestrator


class ApprovalWorkflowAPI:
    """One transaction per call over the approval kernel."""

    def __init__(
        self,
        directory: ApproverDirectory,
        session_factory: Callable[[], Session] | None = None,
        clock: Clock | None = None,
        settings: EngineSettings | None = None,
    ) -> None:
        self._directory = directory
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._settings = settings or EngineSettings()

    @contextmanager
    def _orchestrator(self) -> Generator[ApprovalOrchestrator, None, None]:
        with session_scope(self._session_factory) as session:
            yield ApprovalOrchestrator(
                session,
                self._directory,
                clock=self._clock,
                auto_commit=True,
                max_retries=self._settings.max_action_retries,
                number_prefix=self._settings.request_number_prefix,
            )

    # ------------------------------------------------------------------
    # Pages and workflows
    # ------------------------------------------------------------------

    def register_page(
        self,
        page_name: str,
        display_name: str,
        module_name: str = "",
        requires_approval: bool = True,
    ) -> ApprovalPage:
        with self._orchestrator() as o:
            return o.store.register_page(
                page_name, display_name, module_name, requires_approval,
            )

    def create_workflow_version(
        self,
        page_id: UUID,
        name: str,
        workflow_type: WorkflowType | str,
        is_default: bool,
        steps: Iterable[StepDefinition],
        priority: int = 0,
        conditions: Mapping[str, Any] | None = None,
        workflow_id: UUID | None = None,
        description: str | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> UUID:
        """Save a new workflow, or a new version superseding ``workflow_id``."""
        draft = WorkflowDraft(
            page_id=page_id,
            workflow_name=name,
            workflow_type=WorkflowType(workflow_type),
            steps=tuple(steps),
            is_default=is_default,
            priority=priority,
            conditions=conditions,
            description=description,
        )
        with self._orchestrator() as o:
            return o.store.save_workflow(draft, actor_id, workflow_id).workflow_id

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def create_approval_request(
        self,
        page_name: str,
        request_payload: Mapping[str, Any] | None,
        priority: RequestPriority | str,
        due_date: datetime | None,
        requester_id: UUID,
        document_id: UUID | None = None,
    ) -> UUID:
        with self._orchestrator() as o:
            request = o.coordinator.create_request(
                page_name, requester_id, request_payload,
                priority=priority, due_date=due_date, document_id=document_id,
            )
            return request.request_id

    def submit_document(
        self,
        document_id: UUID,
        page_name: str,
        requester_id: UUID,
        priority: RequestPriority | str = RequestPriority.NORMAL,
        due_date: datetime | None = None,
    ) -> UUID:
        with self._orchestrator() as o:
            return o.coordinator.submit_document(
                document_id, page_name, requester_id,
                priority=priority, due_date=due_date,
            ).request_id

    def process_approval_action(
        self,
        request_id: UUID,
        actor_id: UUID,
        action: str,
        comments: str | None = None,
        attachments: Sequence[str] = (),
    ) -> bool:
        """True on success; typed errors are raised otherwise."""
        with self._orchestrator() as o:
            o.processor.process_action(
                request_id, actor_id, action, comments, attachments,
            )
        return True

    def cancel_request(
        self,
        request_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
        admin: bool = False,
    ) -> bool:
        with self._orchestrator() as o:
            o.processor.cancel_request(request_id, actor_id, reason, admin)
        return True

    def can_actor_approve(self, request_id: UUID, actor_id: UUID) -> bool:
        with self._orchestrator() as o:
            return o.processor.can_act(request_id, actor_id)

    def get_request(self, request_id: UUID) -> ApprovalRequest:
        with self._orchestrator() as o:
            return o.coordinator.get_request(request_id)

    def get_request_details(self, request_id: UUID) -> RequestDetails:
        with self._orchestrator() as o:
            return o.selector.get_request_details(request_id)

    def list_pending_for_actor(self, actor_id: UUID) -> list[ApprovalRequest]:
        with self._orchestrator() as o:
            return o.selector.list_pending_for_actor(actor_id, self._clock.now())

    def list_requests(
        self,
        status: str | None = None,
        page_name: str | None = None,
        requester_id: UUID | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> RequestPage:
        with self._orchestrator() as o:
            return o.selector.list_requests(status, page_name, requester_id, page, limit)

    def statistics(self, page_name: str | None = None) -> ApprovalStatistics:
        with self._orchestrator() as o:
            return o.selector.statistics(self._clock.now(), page_name)

    # ------------------------------------------------------------------
    # Delegation
    # ------------------------------------------------------------------

    def create_delegation(
        self,
        delegator_id: UUID,
        delegate_id: UUID,
        scope: Mapping[str, UUID] | None,
        start_date: datetime,
        end_date: datetime,
        reason: str | None = None,
    ) -> UUID:
        """``scope`` may name a ``page_id`` and/or ``workflow_id``; None is global."""
        scope = scope or {}
        with self._orchestrator() as o:
            return o.delegations.create_delegation(
                delegator_id, delegate_id, start_date, end_date,
                page_id=scope.get("page_id"),
                workflow_id=scope.get("workflow_id"),
                reason=reason,
            ).delegation_id

    def revoke_delegation(self, delegation_id: UUID) -> ApprovalDelegation:
        with self._orchestrator() as o:
            return o.delegations.revoke_delegation(delegation_id)

    def list_active_delegations(
        self, at: datetime | None = None,
    ) -> list[ApprovalDelegation]:
        with self._orchestrator() as o:
            return o.delegations.list_active_delegations(at or self._clock.now())

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def mark_notification_read(self, notification_id: UUID) -> ApprovalNotification:
        with self._orchestrator() as o:
            return o.notifier.mark_read(notification_id)

    def list_unread_notifications(self, recipient_id: UUID) -> list[ApprovalNotification]:
        with self._orchestrator() as o:
            return o.notifier.list_unread(recipient_id)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def create_document(
        self,
        doc_type: DocumentType | str,
        owner_id: UUID,
        title: str,
        payload: Mapping[str, Any] | None = None,
    ) -> LinkedDocument:
        with self._orchestrator() as o:
            return o.documents.create_document(doc_type, owner_id, title, payload)

    def derive_document(
        self,
        source_document_id: UUID,
        doc_type: DocumentType | str,
        owner_id: UUID,
        title: str | None = None,
    ) -> LinkedDocument:
        with self._orchestrator() as o:
            return o.documents.derive_document(
                source_document_id, doc_type, owner_id, title,
            )

    def get_document(self, document_id: UUID) -> LinkedDocument:
        with self._orchestrator() as o:
            return o.documents.get_document(document_id)
