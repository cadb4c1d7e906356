"""
Module: approval_kernel.models.document
Responsibility: ORM persistence for linked business documents (activity-plan
    drafts, summary requests, purchase requests, purchase orders, goods-receipt
    notes, leave and travel requests).

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - doc_no is unique (allocated from a per-type sequence).
    - Provenance: source_document_id / source_document_no are written once
      at derivation time.
    - Once an approval request exists for a document, ``status`` is written
      only by DocumentSyncService (enforced in the service layer).
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from approval_kernel.domain.documents import LinkedDocument


class LinkedDocumentModel(Base):
    __tablename__ = "linked_documents"

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'submitted', 'approved', 'rejected', 'cancelled')",
            name="ck_linked_documents_status",
        ),
        Index("ix_linked_documents_owner", "owner_id", "doc_type"),
        Index("ix_linked_documents_source", "source_document_id"),
    )

    doc_type: Mapped[str] = mapped_column(String(10), nullable=False)
    doc_no: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    owner_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    source_document_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("linked_documents.id"), nullable=True,
    )
    source_document_no: Mapped[str | None] = mapped_column(String(40), nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<LinkedDocument {self.doc_no} status={self.status}>"

    def to_dto(self) -> LinkedDocument:
        from approval_kernel.domain.documents import (
            DocumentStatus,
            DocumentType,
            LinkedDocument,
        )

        return LinkedDocument(
            document_id=self.id,
            doc_type=DocumentType(self.doc_type),
            doc_no=self.doc_no,
            owner_id=self.owner_id,
            title=self.title,
            status=DocumentStatus(self.status),
            payload=dict(self.payload or {}),
            source_document_id=self.source_document_id,
            source_document_no=self.source_document_no,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
