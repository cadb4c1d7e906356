"""
Module: approval_kernel.models.page
Responsibility: ORM persistence for approval pages (document types).

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - page_name is unique; callers address pages by name.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base

if TYPE_CHECKING:
    from approval_kernel.domain.approval import ApprovalPage


class ApprovalPageModel(Base):
    """A document type that workflows and requests attach to."""

    __tablename__ = "approval_pages"

    page_name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(String(200), nullable=False)
    module_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    requires_approval: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<ApprovalPage {self.page_name}>"

    def to_dto(self) -> ApprovalPage:
        from approval_kernel.domain.approval import ApprovalPage

        return ApprovalPage(
            page_id=self.id,
            page_name=self.page_name,
            display_name=self.display_name,
            module_name=self.module_name,
            requires_approval=self.requires_approval,
            is_active=self.is_active,
        )
