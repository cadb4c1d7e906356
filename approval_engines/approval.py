"""
approval_engines.approval -- Pure approval step evaluation engine.

Responsibility:
    Decide everything about a request that can be decided from data alone:
    whether a condition predicate holds for a payload, whether a step is
    open, cleared or rejected given its recorded actions, which step is
    active next, what the request status is for a full action history, and
    whether an open step is due for escalation or auto-approval.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain/ types.

Invariants enforced:
    - Single-rejection veto: any rejected action on a step rejects the step,
      regardless of how many approvals sit beside it.
    - Distinct approvals: a step clears when the number of distinct
      approving identities reaches ``required_approvals``.
    - Idempotent derivation: ``derive_request_state`` is a pure function of
      (steps, actions, payload); recomputing it never changes the answer.
    - Purity: no clock access, no I/O, no database.  Callers pass ``now``.

Failure modes:
    - ``evaluate_conditions`` returns False (never raises) for unresolvable
      field paths or incomparable values.
    - ``validate_workflow_steps`` returns a list of error strings; raising
      is left to the store.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Mapping, Sequence
from uuid import UUID

from approval_kernel.domain.approval import (
    SYSTEM_ACTOR_ID,
    ActionOrigin,
    ActionState,
    ApprovalActionRecord,
    RequestState,
    RequestStatus,
    RoleMatch,
    SpecificUser,
    StepDefinition,
    StepEvaluation,
    StepOutcome,
    TimerDecision,
)

_OPERATORS = ("<=", ">=", "!=", "==", "<", ">")


# =========================================================================
# Conditions
# =========================================================================


def evaluate_conditions(
    conditions: Mapping[str, Any] | None,
    payload: Mapping[str, Any] | None,
) -> bool:
    """Evaluate a step or workflow condition block against a payload.

    Accepted shapes::

        None / {}                              -> True
        {"all": ["payload.amount > 1000", ...]} -> every expression holds
        {"any": ["payload.urgent", ...]}        -> at least one holds
        {"all": [...], "any": [...]}            -> both blocks hold

    Expressions are ``payload.<dotted.path> <op> <literal>`` or a bare path
    tested for truthiness.
    """
    if not conditions:
        return True

    context = {"payload": dict(payload or {})}

    all_exprs = _as_expressions(conditions.get("all"))
    any_exprs = _as_expressions(conditions.get("any"))

    if all_exprs and not all(_evaluate_simple_guard(e, context) for e in all_exprs):
        return False
    if any_exprs and not any(_evaluate_simple_guard(e, context) for e in any_exprs):
        return False
    return True


def _as_expressions(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


def _evaluate_simple_guard(expression: str, context: dict[str, Any]) -> bool:
    """Evaluate ``path op literal`` or a bare ``path`` against context."""
    expression = expression.strip()

    for op in _OPERATORS:
        if op in expression:
            field_path, expected_str = (p.strip() for p in expression.split(op, 1))
            actual = _resolve_field(field_path, context)
            if actual is None:
                return False
            expected = _coerce_literal(_parse_literal(expected_str), actual)
            try:
                if op == "<=":
                    return actual <= expected
                if op == ">=":
                    return actual >= expected
                if op == "!=":
                    return actual != expected
                if op == "==":
                    return actual == expected
                if op == "<":
                    return actual < expected
                return actual > expected
            except TypeError:
                return False

    return bool(_resolve_field(expression, context))


def _parse_literal(text: str) -> Any:
    lowered = text.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if lowered in ("null", "none"):
        return None
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        return text[1:-1]
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return text


def _coerce_literal(expected: Any, actual: Any) -> Any:
    """Bring a parsed literal to the payload value's type where sensible."""
    if isinstance(actual, bool) or expected is None:
        return expected
    if isinstance(actual, (int, float)) and isinstance(expected, str):
        try:
            return float(expected)
        except ValueError:
            return expected
    if isinstance(actual, str) and not isinstance(expected, str):
        return str(expected)
    return expected


def _resolve_field(field_path: str, context: Mapping[str, Any]) -> Any:
    """Resolve ``payload.a.b`` -> context["payload"]["a"]["b"]."""
    current: Any = context
    for part in field_path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
        if current is None:
            return None
    # numeric strings in payloads compare as numbers
    if isinstance(current, str):
        try:
            return float(current) if "." in current else int(current)
        except ValueError:
            return current
    return current


# =========================================================================
# Step evaluation
# =========================================================================


def evaluate_step(
    step: StepDefinition,
    actions: Iterable[ApprovalActionRecord],
) -> StepEvaluation:
    """Given the actions recorded on one step, decide its outcome.

    A single rejection vetoes the step.  Otherwise the step clears when the
    distinct approving identities reach ``required_approvals``, or when a
    system (timer) approval was recorded.
    """
    step_actions = [a for a in actions if a.step_order == step.step_order]

    for a in step_actions:
        if a.action == ActionState.REJECTED:
            return StepEvaluation(
                outcome=StepOutcome.REJECTED,
                required=step.required_approvals,
                current=0,
                reason=f"Rejected by {a.approver_id}",
            )

    approved_by: list[UUID] = []
    system_cleared = False
    for a in step_actions:
        if a.action != ActionState.APPROVED:
            continue
        if a.origin == ActionOrigin.SYSTEM:
            system_cleared = True
            continue
        if a.approver_id not in approved_by:
            approved_by.append(a.approver_id)

    if system_cleared:
        return StepEvaluation(
            outcome=StepOutcome.CLEARED,
            required=step.required_approvals,
            current=len(approved_by),
            reason="Auto-approved after timeout",
            approved_by=(SYSTEM_ACTOR_ID, *approved_by),
        )

    if len(approved_by) >= step.required_approvals:
        return StepEvaluation(
            outcome=StepOutcome.CLEARED,
            required=step.required_approvals,
            current=len(approved_by),
            reason=f"{len(approved_by)}/{step.required_approvals} approvals",
            approved_by=tuple(approved_by),
        )

    return StepEvaluation(
        outcome=StepOutcome.OPEN,
        required=step.required_approvals,
        current=len(approved_by),
        reason=f"Waiting: {len(approved_by)}/{step.required_approvals} approvals",
        approved_by=tuple(approved_by),
    )


def next_active_step(
    steps: Sequence[StepDefinition],
    payload: Mapping[str, Any] | None,
    after_order: int = 0,
) -> StepDefinition | None:
    """First step after ``after_order`` whose conditions hold, else None."""
    for step in sorted(steps, key=lambda s: s.step_order):
        if step.step_order <= after_order:
            continue
        if evaluate_conditions(step.conditions, payload):
            return step
    return None


def derive_request_state(
    steps: Sequence[StepDefinition],
    actions: Iterable[ApprovalActionRecord],
    payload: Mapping[str, Any] | None,
) -> RequestState:
    """Derive (status, current_step) from the full action history.

    Walks active (non-skipped) steps in order: the first rejected step
    rejects the request, the first open step is the current step, and a
    history that clears every active step approves the request.  With no
    active steps the request is approved at step 0.
    """
    history = list(actions)
    last_order = 0
    for step in sorted(steps, key=lambda s: s.step_order):
        if not evaluate_conditions(step.conditions, payload):
            continue
        last_order = step.step_order
        evaluation = evaluate_step(step, history)
        if evaluation.outcome == StepOutcome.REJECTED:
            return RequestState(RequestStatus.REJECTED, step.step_order)
        if evaluation.outcome == StepOutcome.OPEN:
            return RequestState(RequestStatus.PENDING, step.step_order)
    return RequestState(RequestStatus.APPROVED, last_order)


# =========================================================================
# Timers
# =========================================================================


def evaluate_timers(
    step: StepDefinition,
    actions: Iterable[ApprovalActionRecord],
    activated_at: datetime,
    now: datetime,
) -> TimerDecision:
    """Decide whether an open step is due for auto-approval or escalation.

    Auto-approval requires zero decided actions on the step; it wins over
    escalation when both are due.  Escalation fires once: not when
    ``escalation_to`` already holds a slot on the step.
    """
    step_actions = [a for a in actions if a.step_order == step.step_order]
    if evaluate_step(step, step_actions).outcome != StepOutcome.OPEN:
        return TimerDecision.NONE

    elapsed_hours = (now - activated_at).total_seconds() / 3600.0
    decided = [a for a in step_actions if a.is_decided]

    if (
        step.auto_approve_after_hours is not None
        and elapsed_hours >= step.auto_approve_after_hours
        and not decided
    ):
        return TimerDecision.AUTO_APPROVE

    if (
        step.escalation_after_hours is not None
        and step.escalation_to is not None
        and elapsed_hours >= step.escalation_after_hours
        and all(a.approver_id != step.escalation_to for a in step_actions)
    ):
        return TimerDecision.ESCALATE

    return TimerDecision.NONE


# =========================================================================
# Structural validation
# =========================================================================


def validate_workflow_steps(steps: Sequence[StepDefinition]) -> list[str]:
    """Return every structural problem with a submitted step list."""
    errors: list[str] = []
    if not steps:
        return ["workflow must have at least one step"]

    orders = [s.step_order for s in steps]
    if len(set(orders)) != len(orders):
        errors.append(f"step_order values must be unique, got {sorted(orders)}")
    elif sorted(orders) != list(range(1, len(orders) + 1)):
        errors.append(
            f"step_order values must be contiguous from 1, got {sorted(orders)}"
        )

    for s in steps:
        label = f"step {s.step_order}"
        if not s.step_name or not s.step_name.strip():
            errors.append(f"{label}: step_name is required")
        if s.required_approvals < 1:
            errors.append(f"{label}: required_approvals must be >= 1")
        if isinstance(s.approver, SpecificUser):
            if s.approver.user_id is None:
                errors.append(f"{label}: user step needs approver_id")
            if s.required_approvals != 1:
                errors.append(f"{label}: user step can require only 1 approval")
        elif isinstance(s.approver, RoleMatch):
            if not s.approver.criteria:
                errors.append(f"{label}: role step needs approver_criteria")
        else:
            errors.append(f"{label}: unknown approver specification")
        for name in ("auto_approve_after_hours", "escalation_after_hours"):
            value = getattr(s, name)
            if value is not None and value <= 0:
                errors.append(f"{label}: {name} must be > 0")
        if (s.escalation_after_hours is None) != (s.escalation_to is None):
            errors.append(
                f"{label}: escalation_after_hours and escalation_to go together"
            )
        if s.conditions is not None and not set(s.conditions) <= {"all", "any"}:
            errors.append(f"{label}: conditions accept only 'all' / 'any' blocks")

    return errors
