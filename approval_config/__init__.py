"""
approval_config -- single public entrypoint for approval configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a validated, frozen
    ``ApprovalConfigSet``; the bridges turn it into a kernel approver
    directory and workflow drafts.

Architecture position:
    Configuration -- sits above ``approval_kernel`` and below
    ``approval_services``.  The kernel never imports from this package.

Invariants enforced:
    - Single entrypoint: runtime config flows through ``get_active_config()``.
    - Validation before use: a set with errors is never returned.
    - Deterministic checksum: the same YAML always yields the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the requested configuration file is missing.
    - ``ValueError`` -- structural validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``APPROVAL_CONFIG_TRACE`` log entry with the config id, version,
    checksum and page/workflow counts.
"""

from __future__ import annotations

import logging
from pathlib import Path

from approval_config.loader import load_config
from approval_config.schema import (
    ApprovalConfigSet,
    EngineSettings,
    PageDef,
    RoleDef,
    StepDef,
    WorkflowDef,
)
from approval_config.validator import validate_configuration

_logger = logging.getLogger("approval_kernel.config")

# Default configuration file
DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | str | None = None) -> ApprovalConfigSet:
    """The ONLY public configuration entrypoint.

    Guarantees:
        - The returned set has passed ``validate_configuration``.
        - An ``APPROVAL_CONFIG_TRACE`` log entry is emitted on every
          successful call.

    Non-goals:
        - Does NOT cache across calls and does NOT read environment
          variables; scripts apply ``DATABASE_URL`` overrides themselves.

    Args:
        path: Configuration file.  Defaults to approval_config/sets/default.yaml.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If configuration validation fails.
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    if not config_path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    config = load_config(config_path)

    validation = validate_configuration(config)
    if not validation.is_valid:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )
    for warning in validation.warnings:
        _logger.warning("approval_config_warning", extra={"warning": warning})

    _logger.info(
        "APPROVAL_CONFIG_TRACE",
        extra={
            "trace_type": "APPROVAL_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "checksum": config.checksum,
            "page_count": len(config.pages),
            "workflow_count": len(config.workflows),
            "role_count": len(config.roles),
        },
    )
    return config


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "ApprovalConfigSet",
    "EngineSettings",
    "PageDef",
    "RoleDef",
    "StepDef",
    "WorkflowDef",
    "get_active_config",
]
