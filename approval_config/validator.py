"""
Configuration validation (``approval_config.validator``).

Structural checks on a parsed ``ApprovalConfigSet`` before anything is
seeded: unique pages and users, known references from roles, managers,
workflows and steps, step-order shape, approver shape, and at most one
default workflow per (page, workflow_type).
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field

from approval_config.schema import ApprovalConfigSet, WorkflowDef

_WORKFLOW_TYPES = frozenset({"sequential", "parallel", "conditional"})


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    Contract
    --------
    * ``is_valid`` returns ``True`` only when ``errors`` is empty.
    * Warnings do not block seeding but should be reviewed.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_configuration(config: ApprovalConfigSet) -> ConfigValidationResult:
    """
    Validate a configuration set.

    Postconditions:
        - A configuration with errors MUST NOT be seeded.
    """
    result = ConfigValidationResult()

    _validate_directory(config, result)
    _validate_pages(config, result)
    page_names = {p.page_name for p in config.pages}
    users = set(config.users)
    for wf in config.workflows:
        _validate_workflow(wf, page_names, users, result)
    _validate_defaults(config, result)

    return result


def _validate_directory(config: ApprovalConfigSet, result: ConfigValidationResult) -> None:
    users = set(config.users)
    for name, count in Counter(config.users).items():
        if count > 1:
            result.add_error(f"duplicate user '{name}'")
    for role in config.roles:
        if not role.members:
            result.add_warning(f"role '{role.name}' has no members")
        for member in role.members:
            if member not in users:
                result.add_error(f"role '{role.name}': unknown user '{member}'")
    for user, manager in config.managers:
        if user not in users:
            result.add_error(f"managers: unknown user '{user}'")
        if manager not in users:
            result.add_error(f"managers: unknown manager '{manager}' for '{user}'")
        if user == manager:
            result.add_error(f"managers: '{user}' cannot manage themselves")


def _validate_pages(config: ApprovalConfigSet, result: ConfigValidationResult) -> None:
    for name, count in Counter(p.page_name for p in config.pages).items():
        if count > 1:
            result.add_error(f"duplicate page '{name}'")


def _validate_workflow(
    wf: WorkflowDef,
    page_names: set[str],
    users: set[str],
    result: ConfigValidationResult,
) -> None:
    label = f"workflow '{wf.workflow_name}'"
    if wf.page not in page_names:
        result.add_error(f"{label}: unknown page '{wf.page}'")
    if wf.workflow_type not in _WORKFLOW_TYPES:
        result.add_error(f"{label}: unknown type '{wf.workflow_type}'")
    if not wf.steps:
        result.add_error(f"{label}: has no steps")
        return

    orders = sorted(s.step_order for s in wf.steps)
    if orders != list(range(1, len(orders) + 1)):
        result.add_error(f"{label}: step orders must be 1..n, got {orders}")

    for step in wf.steps:
        step_label = f"{label} step {step.step_order}"
        if (step.approver_user is None) == (step.approver_criteria is None):
            result.add_error(
                f"{step_label}: give exactly one of approver.user / approver.criteria"
            )
        if step.approver_user is not None and step.approver_user not in users:
            result.add_error(f"{step_label}: unknown user '{step.approver_user}'")
        if step.escalation_to is not None and step.escalation_to not in users:
            result.add_error(f"{step_label}: unknown escalation user '{step.escalation_to}'")
        if step.required_approvals < 1:
            result.add_error(f"{step_label}: required_approvals must be >= 1")


def _validate_defaults(config: ApprovalConfigSet, result: ConfigValidationResult) -> None:
    defaults = Counter(
        (wf.page, wf.workflow_type) for wf in config.workflows if wf.is_default
    )
    for (page, wf_type), count in defaults.items():
        if count > 1:
            result.add_error(
                f"page '{page}' has {count} default {wf_type} workflows"
            )
