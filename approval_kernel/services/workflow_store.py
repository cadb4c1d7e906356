"""
approval_kernel.services.workflow_store -- Versioned workflow definitions.

Responsibility:
    Owns approval pages and versioned workflow definitions with their
    ordered steps.  Saving a workflow always writes a new immutable version;
    a per-lineage pointer row records which version is current, whether the
    lineage is the page default, and whether it is soft-deleted.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/, and the pure
    engine's structural validator.

Invariants enforced:
    - Version pinning: existing versions and steps are never edited, so a
      request created against version N keeps resolving version N's steps.
    - Structural steps: step_order unique and contiguous from 1, with the
      remaining field rules of ``validate_workflow_steps``.
    - One current default per (page, workflow_type): saving a default
      lineage clears the flag on its siblings before the pointer moves.
    - Edits target the current version only; a superseded id raises
      StaleWorkflowVersionError.

Failure modes:
    - WorkflowValidationError on structural problems (no write happens).
    - PageNotFoundError for an unknown page.
    - WorkflowNotFoundError for an unknown or deleted workflow.
    - StaleWorkflowVersionError when editing a superseded version.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from approval_engines.approval import evaluate_conditions, validate_workflow_steps
from approval_kernel.domain.approval import (
    ApprovalPage,
    SpecificUser,
    WorkflowDefinition,
    WorkflowDraft,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.exceptions import (
    PageNotFoundError,
    StaleWorkflowVersionError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.page import ApprovalPageModel
from approval_kernel.models.workflow import (
    WorkflowDefinitionModel,
    WorkflowPointerModel,
    WorkflowStepModel,
)
from approval_kernel.utils.hashing import hash_payload

logger = get_logger("services.workflow_store")


def compute_definition_hash(draft: WorkflowDraft) -> str:
    """SHA-256 over the canonical step configuration of a draft."""
    steps = []
    for s in sorted(draft.steps, key=lambda s: s.step_order):
        steps.append({
            "step_order": s.step_order,
            "step_name": s.step_name,
            "approver_type": s.approver_type.value,
            "approver_id": (
                str(s.approver.user_id) if isinstance(s.approver, SpecificUser)
                else None
            ),
            "approver_criteria": (
                None if isinstance(s.approver, SpecificUser)
                else dict(s.approver.criteria)
            ),
            "required_approvals": s.required_approvals,
            "auto_approve_after_hours": s.auto_approve_after_hours,
            "escalation_after_hours": s.escalation_after_hours,
            "escalation_to": str(s.escalation_to) if s.escalation_to else None,
            "conditions": dict(s.conditions) if s.conditions else None,
        })
    return hash_payload({
        "workflow_type": draft.workflow_type.value,
        "conditions": dict(draft.conditions) if draft.conditions else None,
        "steps": steps,
    })


class WorkflowStore:
    """Pages and immutable workflow versions behind a current pointer."""

    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    def register_page(
        self,
        page_name: str,
        display_name: str,
        module_name: str = "",
        requires_approval: bool = True,
    ) -> ApprovalPage:
        """Create a page, or return the existing page of the same name."""
        existing = self._find_page(page_name)
        if existing is not None:
            return existing.to_dto()

        model = ApprovalPageModel(
            page_name=page_name,
            display_name=display_name,
            module_name=module_name,
            requires_approval=requires_approval,
            is_active=True,
            created_at=self._clock.now(),
        )
        self._session.add(model)
        self._session.flush()
        logger.info(
            "approval_page_registered",
            extra={"page": page_name, "requires_approval": requires_approval},
        )
        return model.to_dto()

    def get_page(self, page_name: str) -> ApprovalPage:
        model = self._find_page(page_name)
        if model is None:
            raise PageNotFoundError(page_name)
        return model.to_dto()

    def get_page_by_id(self, page_id: UUID) -> ApprovalPage:
        model = self._session.get(ApprovalPageModel, page_id)
        if model is None:
            raise PageNotFoundError(str(page_id))
        return model.to_dto()

    def _find_page(self, page_name: str) -> ApprovalPageModel | None:
        return self._session.execute(
            select(ApprovalPageModel).where(ApprovalPageModel.page_name == page_name)
        ).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Workflows
    # ------------------------------------------------------------------

    def save_workflow(
        self,
        draft: WorkflowDraft,
        actor_id: UUID,
        workflow_id: UUID | None = None,
    ) -> WorkflowDefinition:
        """Create a new lineage, or a new version superseding ``workflow_id``.

        Preconditions:
            - ``draft.page_id`` names an existing page.
            - When given, ``workflow_id`` is the current version of a live
              lineage on the same page.

        Postconditions:
            - A new immutable version row with its steps exists.
            - The lineage pointer names the new version.
            - If ``draft.is_default``, no other live lineage for the same
              (page, workflow_type) is default.
        """
        errors = validate_workflow_steps(draft.steps)
        if not draft.workflow_name or not draft.workflow_name.strip():
            errors.insert(0, "workflow_name is required")
        if errors:
            raise WorkflowValidationError(draft.workflow_name, errors)

        if self._session.get(ApprovalPageModel, draft.page_id) is None:
            raise PageNotFoundError(str(draft.page_id))

        now = self._clock.now()

        if workflow_id is None:
            lineage_id = uuid4()
            version = 1
            pointer = None
        else:
            previous = self._session.get(WorkflowDefinitionModel, workflow_id)
            if previous is None:
                raise WorkflowNotFoundError(str(workflow_id))
            pointer = self._load_pointer(previous.lineage_id, for_update=True)
            if pointer.deleted_at is not None:
                raise WorkflowNotFoundError(str(workflow_id), "lineage is deleted")
            if pointer.current_workflow_id != workflow_id:
                raise StaleWorkflowVersionError(
                    str(workflow_id), str(pointer.current_workflow_id),
                )
            if previous.page_id != draft.page_id:
                raise WorkflowValidationError(
                    draft.workflow_name,
                    ["a new version must stay on the same page"],
                )
            lineage_id = previous.lineage_id
            version = previous.version + 1

        definition = WorkflowDefinitionModel(
            lineage_id=lineage_id,
            version=version,
            page_id=draft.page_id,
            workflow_name=draft.workflow_name,
            workflow_type=draft.workflow_type.value,
            is_default=draft.is_default,
            priority=draft.priority,
            conditions=dict(draft.conditions) if draft.conditions else None,
            description=draft.description,
            definition_hash=compute_definition_hash(draft),
            created_at=now,
            created_by_id=actor_id,
        )
        self._session.add(definition)
        self._session.flush()

        for step in draft.steps:
            self._session.add(WorkflowStepModel.from_dto(step, definition.id))

        if draft.is_default:
            self._clear_sibling_defaults(
                draft.page_id, draft.workflow_type.value, lineage_id,
            )

        if pointer is None:
            pointer = WorkflowPointerModel(
                lineage_id=lineage_id,
                page_id=draft.page_id,
                workflow_type=draft.workflow_type.value,
                current_workflow_id=definition.id,
                is_default=draft.is_default,
                is_active=True,
                updated_at=now,
            )
            self._session.add(pointer)
        else:
            pointer.current_workflow_id = definition.id
            pointer.workflow_type = draft.workflow_type.value
            pointer.is_default = draft.is_default
            pointer.updated_at = now

        self._session.flush()
        self._session.refresh(definition, attribute_names=["steps"])

        logger.info(
            "workflow_version_saved",
            extra={
                "workflow_id": str(definition.id),
                "lineage_id": str(lineage_id),
                "version": version,
                "workflow_name": draft.workflow_name,
                "is_default": draft.is_default,
                "step_count": len(draft.steps),
            },
        )
        return definition.to_dto(pointer=pointer)

    def get_workflow(self, workflow_id: UUID) -> WorkflowDefinition:
        """Any version, current or superseded, with its currency flags."""
        definition = self._session.get(WorkflowDefinitionModel, workflow_id)
        if definition is None:
            raise WorkflowNotFoundError(str(workflow_id))
        pointer = self._load_pointer(definition.lineage_id)
        return definition.to_dto(
            pointer=pointer,
            replaced_by=self._successor_id(definition),
        )

    def get_workflows_for_page(self, page_id: UUID) -> list[WorkflowDefinition]:
        """Current, active, non-deleted versions by priority descending."""
        rows = self._session.execute(
            select(WorkflowDefinitionModel, WorkflowPointerModel)
            .join(
                WorkflowPointerModel,
                WorkflowPointerModel.current_workflow_id == WorkflowDefinitionModel.id,
            )
            .where(
                WorkflowPointerModel.page_id == page_id,
                WorkflowPointerModel.is_active.is_(True),
                WorkflowPointerModel.deleted_at.is_(None),
            )
            .order_by(
                WorkflowDefinitionModel.priority.desc(),
                WorkflowPointerModel.is_default.desc(),
                WorkflowDefinitionModel.created_at.desc(),
            )
        ).all()
        return [definition.to_dto(pointer=pointer) for definition, pointer in rows]

    def select_workflow_for_request(
        self,
        page_id: UUID,
        payload: Mapping[str, Any] | None,
    ) -> WorkflowDefinition:
        """Highest-priority current workflow whose conditions hold."""
        for workflow in self.get_workflows_for_page(page_id):
            if evaluate_conditions(workflow.conditions, payload):
                return workflow
        raise WorkflowNotFoundError(
            f"page {page_id}", "no active workflow matches the request",
        )

    def list_versions(self, workflow_id: UUID) -> list[WorkflowDefinition]:
        """Every version of the lineage ``workflow_id`` belongs to."""
        definition = self._session.get(WorkflowDefinitionModel, workflow_id)
        if definition is None:
            raise WorkflowNotFoundError(str(workflow_id))
        pointer = self._load_pointer(definition.lineage_id)
        versions = self._session.execute(
            select(WorkflowDefinitionModel)
            .where(WorkflowDefinitionModel.lineage_id == definition.lineage_id)
            .order_by(WorkflowDefinitionModel.version)
        ).scalars().all()
        result = []
        for i, v in enumerate(versions):
            successor = versions[i + 1].id if i + 1 < len(versions) else None
            result.append(v.to_dto(pointer=pointer, replaced_by=successor))
        return result

    def delete_workflow(self, workflow_id: UUID) -> WorkflowDefinition:
        """Soft-delete the lineage.  Versions stay resolvable for history."""
        definition = self._session.get(WorkflowDefinitionModel, workflow_id)
        if definition is None:
            raise WorkflowNotFoundError(str(workflow_id))
        pointer = self._load_pointer(definition.lineage_id, for_update=True)
        if pointer.deleted_at is None:
            pointer.is_active = False
            pointer.is_default = False
            pointer.deleted_at = self._clock.now()
            pointer.updated_at = pointer.deleted_at
            self._session.flush()
            logger.info(
                "workflow_deleted",
                extra={
                    "workflow_id": str(workflow_id),
                    "lineage_id": str(definition.lineage_id),
                },
            )
        return definition.to_dto(
            pointer=pointer, replaced_by=self._successor_id(definition),
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _load_pointer(
        self, lineage_id: UUID, for_update: bool = False,
    ) -> WorkflowPointerModel:
        stmt = select(WorkflowPointerModel).where(
            WorkflowPointerModel.lineage_id == lineage_id,
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self._session.execute(stmt).scalar_one()

    def _successor_id(self, definition: WorkflowDefinitionModel) -> UUID | None:
        return self._session.execute(
            select(WorkflowDefinitionModel.id).where(
                WorkflowDefinitionModel.lineage_id == definition.lineage_id,
                WorkflowDefinitionModel.version == definition.version + 1,
            )
        ).scalar_one_or_none()

    def _clear_sibling_defaults(
        self, page_id: UUID, workflow_type: str, lineage_id: UUID,
    ) -> None:
        siblings = self._session.execute(
            select(WorkflowPointerModel)
            .where(
                WorkflowPointerModel.page_id == page_id,
                WorkflowPointerModel.workflow_type == workflow_type,
                WorkflowPointerModel.is_default.is_(True),
                WorkflowPointerModel.lineage_id != lineage_id,
            )
            .with_for_update()
        ).scalars().all()
        for sibling in siblings:
            sibling.is_default = False
            sibling.updated_at = self._clock.now()
        if siblings:
            self._session.flush()
            logger.info(
                "workflow_default_superseded",
                extra={
                    "page_id": str(page_id),
                    "workflow_type": workflow_type,
                    "cleared": len(siblings),
                },
            )
