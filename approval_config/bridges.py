"""
Bridges from configuration to kernel inputs.

Translates a validated ``ApprovalConfigSet`` into what the kernel consumes:
a ``StaticApproverDirectory``, ``WorkflowDraft`` values, and a seeding
routine that registers pages and saves workflows through ``WorkflowStore``.

User names are mapped to deterministic UUIDs with uuid5, so the same name
always resolves to the same identity across processes and re-seeds.
"""

from __future__ import annotations

from uuid import UUID, uuid5

from sqlalchemy.orm import Session

from approval_config.schema import ApprovalConfigSet, StepDef, WorkflowDef
from approval_kernel.domain.approval import (
    SYSTEM_ACTOR_ID,
    RoleMatch,
    SpecificUser,
    StepDefinition,
    WorkflowDraft,
    WorkflowType,
)
from approval_kernel.domain.clock import Clock
from approval_kernel.domain.directory import StaticApproverDirectory
from approval_kernel.logging_config import get_logger
from approval_kernel.services.workflow_store import (
    WorkflowStore,
    compute_definition_hash,
)

logger = get_logger("config.bridges")

_USER_UUID_NAMESPACE = UUID("6f1c2a9e-4b7d-4e13-9a52-0d3e8c71b4aa")


def user_id_for(name: str) -> UUID:
    """Deterministic identity for a configured user name."""
    return uuid5(_USER_UUID_NAMESPACE, name)


def build_directory(config: ApprovalConfigSet) -> StaticApproverDirectory:
    return StaticApproverDirectory(
        roles={
            role.name: tuple(user_id_for(m) for m in role.members)
            for role in config.roles
        },
        managers={
            user_id_for(user): user_id_for(manager)
            for user, manager in config.managers
        },
    )


def build_step(step: StepDef) -> StepDefinition:
    if step.approver_user is not None:
        approver = SpecificUser(user_id=user_id_for(step.approver_user))
    else:
        approver = RoleMatch(criteria=dict(step.approver_criteria or {}))
    return StepDefinition(
        step_order=step.step_order,
        step_name=step.step_name,
        approver=approver,
        required_approvals=step.required_approvals,
        auto_approve_after_hours=step.auto_approve_after_hours,
        escalation_after_hours=step.escalation_after_hours,
        escalation_to=user_id_for(step.escalation_to) if step.escalation_to else None,
        conditions=step.conditions,
    )


def build_workflow_draft(wf: WorkflowDef, page_id: UUID) -> WorkflowDraft:
    return WorkflowDraft(
        page_id=page_id,
        workflow_name=wf.workflow_name,
        workflow_type=WorkflowType(wf.workflow_type),
        steps=tuple(build_step(s) for s in wf.steps),
        is_default=wf.is_default,
        priority=wf.priority,
        conditions=wf.conditions,
        description=wf.description,
    )


def seed_workflows(
    session: Session,
    config: ApprovalConfigSet,
    clock: Clock | None = None,
    actor_id: UUID = SYSTEM_ACTOR_ID,
) -> dict[str, UUID]:
    """Register pages and save workflows; safe to run repeatedly.

    A workflow whose name already exists on its page is left alone when its
    steps are unchanged, and saved as a new version when they differ.
    Flushes, never commits.

    Returns:
        workflow name -> current workflow version id.
    """
    store = WorkflowStore(session, clock)
    pages = {
        p.page_name: store.register_page(
            p.page_name, p.display_name, p.module_name, p.requires_approval,
        )
        for p in config.pages
    }

    seeded: dict[str, UUID] = {}
    for wf in config.workflows:
        page = pages[wf.page]
        draft = build_workflow_draft(wf, page.page_id)
        current = {
            w.workflow_name: w for w in store.get_workflows_for_page(page.page_id)
        }.get(wf.workflow_name)

        if current is None:
            saved = store.save_workflow(draft, actor_id)
        elif (
            current.definition_hash == compute_definition_hash(draft)
            and current.is_default == draft.is_default
            and current.priority == draft.priority
        ):
            seeded[wf.workflow_name] = current.workflow_id
            continue
        else:
            saved = store.save_workflow(draft, actor_id, workflow_id=current.workflow_id)

        seeded[wf.workflow_name] = saved.workflow_id
        logger.info(
            "workflow_seeded",
            extra={
                "workflow_name": wf.workflow_name,
                "page": wf.page,
                "workflow_id": str(saved.workflow_id),
                "version": saved.version,
            },
        )
    return seeded
