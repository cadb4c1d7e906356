"""
Module: approval_engines
Responsibility:
    Package entrypoint re-exporting the pure approval evaluation functions.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain/.
    MUST NOT import approval_services or approval_config.

Invariants enforced:
    - Purity: engines never read the clock; ``now`` is always a parameter.
    - Determinism: identical inputs always produce identical outputs.
"""

from approval_engines.approval import (
    derive_request_state,
    evaluate_conditions,
    evaluate_step,
    evaluate_timers,
    next_active_step,
    validate_workflow_steps,
)

__all__ = [
    "derive_request_state",
    "evaluate_conditions",
    "evaluate_step",
    "evaluate_timers",
    "next_active_step",
    "validate_workflow_steps",
]
