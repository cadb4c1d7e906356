"""
approval_kernel.services.document_service -- Linked business documents.

Responsibility:
    Creates, edits and derives the documents an approval request can gate:
    activity-plan drafts, summary requests, purchase requests, purchase
    orders, goods-receipt notes, leave and travel requests.

Architecture position:
    Kernel > Services.  Owner edits go through here; status writes after
    a request exists go through DocumentSyncService only.

Invariants enforced:
    - Edit lock: owner edits are refused while the latest request is
      pending or approved.
    - Status ownership: once any request exists, ``status`` cannot be
      written here.
    - Derivation chain: DRAFT -> SR -> PR -> PO -> GRN, from an approved
      source only; provenance is copied and the new document starts as
      ``draft``.

Failure modes:
    - DocumentNotFoundError, NotAuthorizedError (not the owner),
      DocumentLockedError, InvalidDerivationError.
"""

from __future__ import annotations

from typing import Any, Mapping
from uuid import UUID

from sqlalchemy.orm import Session

from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.documents import (
    DocumentStatus,
    DocumentType,
    LinkedDocument,
    allowed_source_for,
)
from approval_kernel.exceptions import (
    DocumentLockedError,
    DocumentNotFoundError,
    InvalidDerivationError,
    NotAuthorizedError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.document import LinkedDocumentModel
from approval_kernel.services.document_sync import DocumentSyncService
from approval_kernel.services.sequence_service import SequenceService

logger = get_logger("services.document")


class DocumentService:
    """Owner-facing document operations."""

    def __init__(
        self,
        session: Session,
        sequences: SequenceService,
        sync: DocumentSyncService,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._sequences = sequences
        self._sync = sync
        self._clock = clock or SystemClock()

    def create_document(
        self,
        doc_type: DocumentType | str,
        owner_id: UUID,
        title: str,
        payload: Mapping[str, Any] | None = None,
    ) -> LinkedDocument:
        doc_type = DocumentType(doc_type)
        model = self._new_document(doc_type, owner_id, title, payload)
        self._session.flush()
        logger.info(
            "document_created",
            extra={
                "document_id": str(model.id),
                "doc_no": model.doc_no,
                "doc_type": doc_type.value,
            },
        )
        return model.to_dto()

    def get_document(self, document_id: UUID) -> LinkedDocument:
        return self._load(document_id).to_dto()

    def update_document(
        self,
        document_id: UUID,
        actor_id: UUID,
        title: str | None = None,
        payload: Mapping[str, Any] | None = None,
        status: DocumentStatus | str | None = None,
    ) -> LinkedDocument:
        """Owner edit.  Refused while an approval request locks the document."""
        model = self._load(document_id)
        if model.owner_id != actor_id:
            raise NotAuthorizedError(
                str(actor_id), str(document_id), "only the owner may edit",
            )

        self._sync.assert_editable(document_id)
        latest = self._sync.latest_request_status(document_id)
        if status is not None and latest is not None:
            raise DocumentLockedError(
                str(document_id),
                latest.value,
                "status is owned by the approval workflow once a request exists",
            )

        if title is not None:
            model.title = title
        if payload is not None:
            model.payload = dict(payload)
        if status is not None:
            model.status = DocumentStatus(status).value
        model.updated_at = self._clock.now()
        self._session.flush()

        logger.info(
            "document_updated",
            extra={"document_id": str(document_id), "doc_no": model.doc_no},
        )
        return model.to_dto()

    def derive_document(
        self,
        source_document_id: UUID,
        doc_type: DocumentType | str,
        owner_id: UUID,
        title: str | None = None,
        payload: Mapping[str, Any] | None = None,
    ) -> LinkedDocument:
        """Create the next document in the procurement chain from an approved one."""
        doc_type = DocumentType(doc_type)
        source = self._load(source_document_id)

        expected = allowed_source_for(doc_type)
        if expected is None:
            raise InvalidDerivationError(
                str(source_document_id), doc_type.value,
                f"{doc_type.value} documents are not derived",
            )
        if source.doc_type != expected.value:
            raise InvalidDerivationError(
                str(source_document_id), doc_type.value,
                f"{doc_type.value} derives from {expected.value}, "
                f"not {source.doc_type}",
            )
        if source.status != DocumentStatus.APPROVED.value:
            raise InvalidDerivationError(
                str(source_document_id), doc_type.value,
                f"source {source.doc_no} is {source.status}, not approved",
            )

        # the source's approval bookkeeping stays with the source
        merged = {
            k: v for k, v in (source.payload or {}).items()
            if k not in DocumentSyncService.REQUEST_KEYS
        }
        merged.update(payload or {})
        model = self._new_document(
            doc_type, owner_id, title or source.title, merged,
        )
        model.source_document_id = source.id
        model.source_document_no = source.doc_no
        self._session.flush()

        logger.info(
            "document_derived",
            extra={
                "document_id": str(model.id),
                "doc_no": model.doc_no,
                "source_doc_no": source.doc_no,
            },
        )
        return model.to_dto()

    def _new_document(
        self,
        doc_type: DocumentType,
        owner_id: UUID,
        title: str,
        payload: Mapping[str, Any] | None,
    ) -> LinkedDocumentModel:
        now = self._clock.now()
        doc_no = self._sequences.next_number(
            SequenceService.document_sequence(doc_type.value), doc_type.value,
        )
        model = LinkedDocumentModel(
            doc_type=doc_type.value,
            doc_no=doc_no,
            owner_id=owner_id,
            title=title,
            status=DocumentStatus.DRAFT.value,
            payload=dict(payload or {}),
            created_at=now,
            updated_at=now,
        )
        self._session.add(model)
        return model

    def _load(self, document_id: UUID) -> LinkedDocumentModel:
        model = self._session.get(LinkedDocumentModel, document_id)
        if model is None:
            raise DocumentNotFoundError(str(document_id))
        return model
