"""
Linked document domain types (``approval_kernel.domain.documents``).

Responsibility
--------------
Value objects and pure rules for the business documents gated by approval
requests: the procurement chain DRAFT -> SR -> PR -> PO -> GRN plus leave
and travel requests.

Invariants enforced
-------------------
* Edit lock -- a document is editable by its owner iff it has no approval
  request, or its most recent request is rejected, cancelled or expired.
* Status mapping -- a request status maps to exactly one document status.
* Derivation chain -- each derived type has exactly one allowed source type.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping
from uuid import UUID

from approval_kernel.domain.approval import RequestStatus


class DocumentType(str, Enum):
    DRAFT = "DRAFT"  # activity-plan draft
    SR = "SR"  # summary request
    PR = "PR"  # purchase request
    PO = "PO"  # purchase order
    GRN = "GRN"  # goods-receipt note
    LEAVE = "LEAVE"
    TRAVEL = "TRAVEL"


class DocumentStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


# target type -> the only source type it may be derived from
DERIVATION_SOURCES: dict[DocumentType, DocumentType] = {
    DocumentType.SR: DocumentType.DRAFT,
    DocumentType.PR: DocumentType.SR,
    DocumentType.PO: DocumentType.PR,
    DocumentType.GRN: DocumentType.PO,
}

# Latest request statuses that leave the document open for owner edits.
EDITABLE_REQUEST_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.REJECTED,
    RequestStatus.CANCELLED,
    RequestStatus.EXPIRED,
})

_STATUS_MAP: dict[RequestStatus, DocumentStatus] = {
    RequestStatus.PENDING: DocumentStatus.SUBMITTED,
    RequestStatus.APPROVED: DocumentStatus.APPROVED,
    RequestStatus.REJECTED: DocumentStatus.REJECTED,
    RequestStatus.CANCELLED: DocumentStatus.CANCELLED,
    RequestStatus.EXPIRED: DocumentStatus.REJECTED,
}


def document_status_for(request_status: RequestStatus) -> DocumentStatus:
    """Document status implied by the bound request's status."""
    return _STATUS_MAP[request_status]


def is_editable(latest_request_status: RequestStatus | None) -> bool:
    """Edit-lock rule evaluated on the most recent request's status."""
    if latest_request_status is None:
        return True
    return latest_request_status in EDITABLE_REQUEST_STATUSES


def allowed_source_for(target: DocumentType) -> DocumentType | None:
    return DERIVATION_SOURCES.get(target)


@dataclass(frozen=True)
class LinkedDocument:
    """Snapshot of a business document whose status approval gates."""

    document_id: UUID
    doc_type: DocumentType
    doc_no: str
    owner_id: UUID
    title: str
    status: DocumentStatus
    payload: Mapping[str, Any] = field(default_factory=dict)
    source_document_id: UUID | None = None
    source_document_no: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
