"""
Module: approval_kernel.models.workflow
Responsibility: ORM persistence for versioned workflow definitions, their
    ordered steps, and the per-lineage current-version pointer.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Version immutability: ``WorkflowDefinitionModel`` and
      ``WorkflowStepModel`` rows are never updated or deleted.  Editing a
      workflow writes a new version; in-flight requests keep resolving the
      version they were created under.
    - Step ordering: UNIQUE(workflow_id, step_order); the store additionally
      requires orders to be exactly 1..n.
    - One default per (page, workflow_type): partial unique index on the
      pointer table over non-deleted default lineages.
    - UNIQUE(lineage_id, version).

Failure modes:
    - ImmutabilityViolationError on version/step UPDATE or DELETE.
    - IntegrityError on a second live default for the same page and type.

Design:
    Currency and soft deletion live on ``WorkflowPointerModel`` (one row per
    lineage), never on version rows.  ``replaced_by`` is derived from the
    lineage order when a version is read.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from approval_kernel.domain.approval import StepDefinition, WorkflowDefinition


class WorkflowDefinitionModel(Base):
    """One immutable version of a page workflow."""

    __tablename__ = "workflow_definitions"

    __table_args__ = (
        UniqueConstraint("lineage_id", "version", name="uq_workflow_lineage_version"),
        CheckConstraint(
            "workflow_type IN ('sequential', 'parallel', 'conditional')",
            name="ck_workflow_definitions_type",
        ),
        Index("ix_workflow_definitions_page", "page_id"),
    )

    lineage_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    page_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_pages.id"), nullable=False,
    )
    workflow_name: Mapped[str] = mapped_column(String(200), nullable=False)
    workflow_type: Mapped[str] = mapped_column(String(20), nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    conditions: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    definition_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    steps: Mapped[list["WorkflowStepModel"]] = relationship(
        "WorkflowStepModel",
        back_populates="workflow",
        order_by="WorkflowStepModel.step_order",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<WorkflowDefinition {self.workflow_name} v{self.version} "
            f"lineage={self.lineage_id}>"
        )

    def to_dto(
        self,
        pointer: WorkflowPointerModel | None = None,
        replaced_by: UUID | None = None,
    ) -> WorkflowDefinition:
        """Convert to the frozen domain DTO.

        ``pointer`` supplies currency and soft-delete state; without it the
        version is reported as current and active.
        """
        from approval_kernel.domain.approval import (
            WorkflowDefinition,
            WorkflowType,
        )

        is_current = pointer is None or pointer.current_workflow_id == self.id
        return WorkflowDefinition(
            workflow_id=self.id,
            lineage_id=self.lineage_id,
            version=self.version,
            page_id=self.page_id,
            workflow_name=self.workflow_name,
            workflow_type=WorkflowType(self.workflow_type),
            is_default=(
                pointer.is_default if pointer is not None and is_current
                else self.is_default
            ),
            priority=self.priority,
            steps=tuple(s.to_dto() for s in self.steps),
            definition_hash=self.definition_hash,
            created_at=self.created_at,
            conditions=self.conditions,
            description=self.description,
            is_current=is_current,
            is_active=pointer.is_active if pointer is not None else True,
            deleted_at=pointer.deleted_at if pointer is not None else None,
            replaced_by=replaced_by,
        )


class WorkflowStepModel(Base):
    """One ordered step of a workflow version."""

    __tablename__ = "workflow_steps"

    __table_args__ = (
        UniqueConstraint("workflow_id", "step_order", name="uq_workflow_step_order"),
        CheckConstraint("required_approvals >= 1", name="ck_workflow_steps_required"),
        CheckConstraint("step_order >= 1", name="ck_workflow_steps_order"),
        CheckConstraint(
            "approver_type IN ('user', 'role')",
            name="ck_workflow_steps_approver_type",
        ),
    )

    workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_definitions.id"), nullable=False,
    )
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    step_name: Mapped[str] = mapped_column(String(200), nullable=False)
    approver_type: Mapped[str] = mapped_column(String(10), nullable=False)
    approver_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approver_criteria: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True,
    )
    required_approvals: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    auto_approve_after_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    escalation_after_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    escalation_to: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    conditions: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    workflow: Mapped["WorkflowDefinitionModel"] = relationship(
        "WorkflowDefinitionModel", back_populates="steps",
    )

    def __repr__(self) -> str:
        return f"<WorkflowStep {self.step_order}:{self.step_name}>"

    def to_dto(self) -> StepDefinition:
        from approval_kernel.domain.approval import (
            RoleMatch,
            SpecificUser,
            StepDefinition,
        )

        if self.approver_type == "user":
            approver = SpecificUser(user_id=self.approver_id)
        else:
            approver = RoleMatch(criteria=dict(self.approver_criteria or {}))

        return StepDefinition(
            step_order=self.step_order,
            step_name=self.step_name,
            approver=approver,
            required_approvals=self.required_approvals,
            auto_approve_after_hours=self.auto_approve_after_hours,
            escalation_after_hours=self.escalation_after_hours,
            escalation_to=self.escalation_to,
            conditions=self.conditions,
            step_id=self.id,
        )

    @classmethod
    def from_dto(cls, dto: StepDefinition, workflow_id: UUID) -> WorkflowStepModel:
        from approval_kernel.domain.approval import SpecificUser

        is_user = isinstance(dto.approver, SpecificUser)
        return cls(
            workflow_id=workflow_id,
            step_order=dto.step_order,
            step_name=dto.step_name,
            approver_type=dto.approver_type.value,
            approver_id=dto.approver.user_id if is_user else None,
            approver_criteria=None if is_user else dict(dto.approver.criteria),
            required_approvals=dto.required_approvals,
            auto_approve_after_hours=dto.auto_approve_after_hours,
            escalation_after_hours=dto.escalation_after_hours,
            escalation_to=dto.escalation_to,
            conditions=dict(dto.conditions) if dto.conditions else None,
        )


class WorkflowPointerModel(Base):
    """Mutable current-version pointer, one per workflow lineage."""

    __tablename__ = "workflow_pointers"

    __table_args__ = (
        Index(
            "ix_workflow_pointers_one_default",
            "page_id", "workflow_type",
            unique=True,
            postgresql_where=text("is_default AND deleted_at IS NULL"),
            sqlite_where=text("is_default AND deleted_at IS NULL"),
        ),
        Index("ix_workflow_pointers_page_active", "page_id", "is_active"),
    )

    lineage_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, unique=True)
    page_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("approval_pages.id"), nullable=False,
    )
    workflow_type: Mapped[str] = mapped_column(String(20), nullable=False)
    current_workflow_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_definitions.id"), nullable=False,
    )
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<WorkflowPointer lineage={self.lineage_id} "
            f"current={self.current_workflow_id}>"
        )


# =============================================================================
# ORM-Level Immutability for Versions and Steps
# =============================================================================


@event.listens_for(WorkflowDefinitionModel, "before_update")
def prevent_workflow_version_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="WorkflowDefinition",
        entity_id=str(target.id),
        reason="Workflow versions are immutable -- save a new version instead",
    )


@event.listens_for(WorkflowDefinitionModel, "before_delete")
def prevent_workflow_version_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="WorkflowDefinition",
        entity_id=str(target.id),
        reason="Workflow versions are immutable -- soft-delete the lineage instead",
    )


@event.listens_for(WorkflowStepModel, "before_update")
def prevent_workflow_step_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="WorkflowStep",
        entity_id=str(target.id),
        reason="Workflow steps are immutable -- cannot modify",
    )


@event.listens_for(WorkflowStepModel, "before_delete")
def prevent_workflow_step_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="WorkflowStep",
        entity_id=str(target.id),
        reason="Workflow steps are immutable -- cannot delete",
    )
