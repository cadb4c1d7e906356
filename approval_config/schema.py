"""
ApprovalConfigSet schema.

Defines the human-authored, reviewable source artifact for approval
configuration: engine settings, the user/role/manager directory, approval
pages and their workflows.  YAML files are parsed into these types by the
loader and translated into kernel inputs by the bridges.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# ---------------------------------------------------------------------------
# Engine settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineSettings:
    """Runtime knobs for the engine, the API facade and the sweep."""

    database_url: str = "sqlite:///approvals.db"
    pool_size: int = 20
    max_overflow: int = 10
    max_action_retries: int = 3
    sweep_batch_size: int = 100
    expire_overdue_requests: bool = True
    request_number_prefix: str = "APR"
    log_level: str = "INFO"


# ---------------------------------------------------------------------------
# Directory
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RoleDef:
    name: str
    members: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Pages and workflows
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PageDef:
    page_name: str
    display_name: str
    module_name: str = ""
    requires_approval: bool = True


@dataclass(frozen=True)
class StepDef:
    """One workflow step.  Exactly one of approver_user / approver_criteria."""

    step_order: int
    step_name: str
    approver_user: str | None = None
    approver_criteria: dict[str, Any] | None = None
    required_approvals: int = 1
    auto_approve_after_hours: float | None = None
    escalation_after_hours: float | None = None
    escalation_to: str | None = None
    conditions: dict[str, Any] | None = None


@dataclass(frozen=True)
class WorkflowDef:
    page: str
    workflow_name: str
    workflow_type: str = "sequential"
    is_default: bool = False
    priority: int = 0
    conditions: dict[str, Any] | None = None
    description: str | None = None
    steps: tuple[StepDef, ...] = ()


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ApprovalConfigSet:
    """The complete approval configuration, as authored."""

    config_id: str
    version: int
    settings: EngineSettings = field(default_factory=EngineSettings)
    users: tuple[str, ...] = ()
    roles: tuple[RoleDef, ...] = ()
    managers: tuple[tuple[str, str], ...] = ()  # (user, manager)
    pages: tuple[PageDef, ...] = ()
    workflows: tuple[WorkflowDef, ...] = ()
    checksum: str = ""
