"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen
``approval_config.schema`` dataclasses.  Runtime callers go through
``approval_config.get_active_config()``; this module is its tooling.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; required keys have no silent defaults.
* ``compute_checksum`` is a deterministic SHA-256 over the parsed source,
  so identical YAML always yields the same checksum.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from approval_config.schema import (
    ApprovalConfigSet,
    EngineSettings,
    PageDef,
    RoleDef,
    StepDef,
    WorkflowDef,
)
from approval_kernel.utils.hashing import hash_payload


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    return hash_payload(data)


def parse_settings(data: dict[str, Any] | None) -> EngineSettings:
    data = data or {}
    defaults = EngineSettings()
    return EngineSettings(
        database_url=str(data.get("database_url", defaults.database_url)),
        pool_size=int(data.get("pool_size", defaults.pool_size)),
        max_overflow=int(data.get("max_overflow", defaults.max_overflow)),
        max_action_retries=int(
            data.get("max_action_retries", defaults.max_action_retries)
        ),
        sweep_batch_size=int(data.get("sweep_batch_size", defaults.sweep_batch_size)),
        expire_overdue_requests=bool(
            data.get("expire_overdue_requests", defaults.expire_overdue_requests)
        ),
        request_number_prefix=str(
            data.get("request_number_prefix", defaults.request_number_prefix)
        ),
        log_level=str(data.get("log_level", defaults.log_level)).upper(),
    )


def parse_page(data: dict[str, Any]) -> PageDef:
    return PageDef(
        page_name=data["page_name"],
        display_name=data.get("display_name", data["page_name"]),
        module_name=data.get("module_name", ""),
        requires_approval=bool(data.get("requires_approval", True)),
    )


def parse_step(data: dict[str, Any]) -> StepDef:
    approver = data.get("approver") or {}
    if not isinstance(approver, dict):
        raise ValueError(f"step {data.get('order')}: approver must be a mapping")
    criteria = approver.get("criteria")
    return StepDef(
        step_order=int(data["order"]),
        step_name=data["name"],
        approver_user=approver.get("user"),
        approver_criteria=dict(criteria) if criteria is not None else None,
        required_approvals=int(data.get("required_approvals", 1)),
        auto_approve_after_hours=_optional_float(data.get("auto_approve_after_hours")),
        escalation_after_hours=_optional_float(data.get("escalation_after_hours")),
        escalation_to=data.get("escalation_to"),
        conditions=data.get("conditions"),
    )


def parse_workflow(data: dict[str, Any]) -> WorkflowDef:
    return WorkflowDef(
        page=data["page"],
        workflow_name=data["name"],
        workflow_type=data.get("type", "sequential"),
        is_default=bool(data.get("is_default", False)),
        priority=int(data.get("priority", 0)),
        conditions=data.get("conditions"),
        description=data.get("description"),
        steps=tuple(parse_step(s) for s in data.get("steps", [])),
    )


def parse_config(data: dict[str, Any]) -> ApprovalConfigSet:
    """Parse a loaded YAML mapping into an ``ApprovalConfigSet``."""
    roles_data = data.get("roles") or {}
    managers_data = data.get("managers") or {}
    return ApprovalConfigSet(
        config_id=data["config_id"],
        version=int(data.get("version", 1)),
        settings=parse_settings(data.get("settings")),
        users=tuple(str(u) for u in data.get("users", [])),
        roles=tuple(
            RoleDef(name=name, members=tuple(members or ()))
            for name, members in sorted(roles_data.items())
        ),
        managers=tuple(sorted(
            (str(user), str(manager)) for user, manager in managers_data.items()
        )),
        pages=tuple(parse_page(p) for p in data.get("pages", [])),
        workflows=tuple(parse_workflow(w) for w in data.get("workflows", [])),
        checksum=compute_checksum(data),
    )


def load_config(path: Path) -> ApprovalConfigSet:
    return parse_config(load_yaml_file(path))


def _optional_float(value: Any) -> float | None:
    return None if value is None else float(value)
