"""
approval_kernel.services.document_sync -- Document status synchronizer.

Responsibility:
    Single writer of a linked document's ``status`` once an approval request
    exists for it.  Maps the request status onto the document status and
    records the request id and the last decision comment in the document
    payload.  Also answers the edit-lock question for document owners.

Architecture position:
    Kernel > Services.  Invoked by the coordinator on request creation and
    by the action processor on every terminal transition, always inside the
    caller's transaction so request, actions and document move together.

Invariants enforced:
    - Status mapping: pending -> submitted, approved -> approved,
      rejected -> rejected, cancelled -> cancelled, expired -> rejected.
    - Edit lock: editable iff there is no request, or the most recent
      request is rejected, cancelled or expired.

Failure modes:
    - DocumentNotFoundError for an unknown document.
    - DocumentLockedError from ``assert_editable``.
"""

from __future__ import annotations

from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_kernel.domain.approval import RequestStatus
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.documents import document_status_for, is_editable
from approval_kernel.exceptions import DocumentLockedError, DocumentNotFoundError
from approval_kernel.logging_config import get_logger
from approval_kernel.models.document import LinkedDocumentModel
from approval_kernel.models.request import ApprovalRequestModel

logger = get_logger("services.document_sync")


class DocumentSyncService:
    """Keeps linked document status in step with its approval request."""

    # payload keys written here; they describe one request, not the document
    REQUEST_KEYS = (
        "approval_request_id",
        "last_approval_comment",
        "last_approval_attachments",
    )

    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()

    def sync(
        self,
        request: ApprovalRequestModel,
        comment: str | None = None,
        attachments: Sequence[str] | None = None,
    ) -> None:
        """Write the status implied by ``request`` onto its document, if any."""
        if request.document_id is None:
            return
        document = self._session.get(LinkedDocumentModel, request.document_id)
        if document is None:
            raise DocumentNotFoundError(str(request.document_id))

        previous = document.status
        document.status = document_status_for(RequestStatus(request.status)).value

        payload = dict(document.payload or {})
        payload["approval_request_id"] = str(request.id)
        if comment is not None:
            payload["last_approval_comment"] = comment
        if attachments:
            payload["last_approval_attachments"] = list(attachments)
        # new dict so the JSON column registers the change
        document.payload = payload
        document.updated_at = self._clock.now()

        logger.info(
            "document_status_synced",
            extra={
                "document_id": str(document.id),
                "doc_no": document.doc_no,
                "from_status": previous,
                "to_status": document.status,
                "request_status": request.status,
            },
        )

    def latest_request_status(self, document_id: UUID) -> RequestStatus | None:
        """Status of the document's most recent request, or None."""
        status = self._session.execute(
            select(ApprovalRequestModel.status)
            .where(ApprovalRequestModel.document_id == document_id)
            .order_by(
                ApprovalRequestModel.created_at.desc(),
                ApprovalRequestModel.request_number.desc(),
            )
            .limit(1)
        ).scalar_one_or_none()
        return RequestStatus(status) if status is not None else None

    def has_request(self, document_id: UUID) -> bool:
        return self.latest_request_status(document_id) is not None

    def is_editable(self, document_id: UUID) -> bool:
        if self._session.get(LinkedDocumentModel, document_id) is None:
            raise DocumentNotFoundError(str(document_id))
        return is_editable(self.latest_request_status(document_id))

    def lock_document(self, document_id: UUID) -> LinkedDocumentModel:
        """Load the document row FOR UPDATE; held until the caller's transaction ends."""
        document = self._session.execute(
            select(LinkedDocumentModel)
            .where(LinkedDocumentModel.id == document_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if document is None:
            raise DocumentNotFoundError(str(document_id))
        return document

    def assert_editable(self, document_id: UUID) -> None:
        """Refuse a locked document.

        The document row is locked first, so two submissions of the same
        document queue here and the second sees the first one's request.
        """
        self.lock_document(document_id)
        latest = self.latest_request_status(document_id)
        if not is_editable(latest):
            raise DocumentLockedError(
                str(document_id),
                latest.value if latest else None,
                "an approval request is in progress or approved",
            )
