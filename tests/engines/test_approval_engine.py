"""
Tests for the pure approval evaluation engine.

Covers:
- Condition predicates over payloads (operators, coercion, all/any blocks)
- Step evaluation: distinct approvals, single-rejection veto, system clearance
- Request-state derivation and its idempotence
- Next active step selection with skipped steps
- Timer decisions: auto-approval beats escalation, escalation fires once
- Structural validation of step lists
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from approval_engines.approval import (
    derive_request_state,
    evaluate_conditions,
    evaluate_step,
    evaluate_timers,
    next_active_step,
    validate_workflow_steps,
)
from approval_kernel.domain.approval import (
    SYSTEM_ACTOR_ID,
    ActionOrigin,
    ActionState,
    ApprovalActionRecord,
    RequestStatus,
    RoleMatch,
    SpecificUser,
    StepDefinition,
    StepOutcome,
    TimerDecision,
)

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
REQUEST_ID = uuid4()


def _step(order, required=1, conditions=None, **kwargs):
    return StepDefinition(
        step_order=order,
        step_name=f"Step {order}",
        approver=RoleMatch({"role": "reviewer"}),
        required_approvals=required,
        conditions=conditions,
        step_id=uuid4(),
        **kwargs,
    )


def _action(step_order, approver_id, state, origin=ActionOrigin.ASSIGNED):
    return ApprovalActionRecord(
        action_id=uuid4(),
        request_id=REQUEST_ID,
        step_id=uuid4(),
        step_order=step_order,
        approver_id=approver_id,
        action=state,
        origin=origin,
        created_at=T0,
    )


class TestEvaluateConditions:
    """Payload predicates."""

    def test_empty_conditions_hold(self):
        assert evaluate_conditions(None, {"amount": 1})
        assert evaluate_conditions({}, None)

    @pytest.mark.parametrize(
        "expression, payload, expected",
        [
            ("payload.amount > 1000", {"amount": 1500}, True),
            ("payload.amount > 1000", {"amount": 1000}, False),
            ("payload.amount >= 1000", {"amount": 1000}, True),
            ("payload.amount <= 1000", {"amount": 999.5}, True),
            ("payload.amount < 10", {"amount": 10}, False),
            ("payload.amount != 5", {"amount": 6}, True),
            ("payload.kind == 'overseas'", {"kind": "overseas"}, True),
            ("payload.kind == overseas", {"kind": "domestic"}, False),
            ("payload.urgent == true", {"urgent": True}, True),
            ("payload.trip.days > 3", {"trip": {"days": 5}}, True),
        ],
    )
    def test_comparison_expressions(self, expression, payload, expected):
        assert evaluate_conditions({"all": [expression]}, payload) is expected

    def test_numeric_strings_compare_as_numbers(self):
        assert evaluate_conditions({"all": ["payload.amount > 2000"]}, {"amount": "2500"})
        assert not evaluate_conditions({"all": ["payload.amount > 2000"]}, {"amount": "150"})

    def test_bare_path_is_truthiness(self):
        assert evaluate_conditions({"all": ["payload.urgent"]}, {"urgent": True})
        assert not evaluate_conditions({"all": ["payload.urgent"]}, {"urgent": False})

    def test_missing_field_is_false_not_error(self):
        assert not evaluate_conditions({"all": ["payload.amount > 1"]}, {})
        assert not evaluate_conditions({"all": ["payload.a.b > 1"]}, {"a": 3})

    def test_incomparable_values_are_false(self):
        assert not evaluate_conditions({"all": ["payload.tags > 1"]}, {"tags": [1, 2]})

    def test_all_and_any_blocks(self):
        conditions = {
            "all": ["payload.amount > 100"],
            "any": ["payload.kind == 'capex'", "payload.urgent"],
        }
        assert evaluate_conditions(conditions, {"amount": 200, "urgent": True})
        assert not evaluate_conditions(conditions, {"amount": 200, "kind": "opex"})
        assert not evaluate_conditions(conditions, {"amount": 50, "kind": "capex"})

    def test_single_string_block(self):
        assert evaluate_conditions({"any": "payload.amount > 1"}, {"amount": 2})


class TestEvaluateStep:
    """Step clearance from recorded actions."""

    def test_open_until_required_distinct_approvals(self):
        step = _step(1, required=2)
        a, b = uuid4(), uuid4()
        one = [_action(1, a, ActionState.APPROVED), _action(1, b, ActionState.PENDING)]
        result = evaluate_step(step, one)
        assert result.outcome == StepOutcome.OPEN
        assert result.current == 1
        assert result.required == 2

        two = [_action(1, a, ActionState.APPROVED), _action(1, b, ActionState.APPROVED)]
        result = evaluate_step(step, two)
        assert result.outcome == StepOutcome.CLEARED
        assert set(result.approved_by) == {a, b}

    def test_same_identity_counts_once(self):
        step = _step(1, required=2)
        a = uuid4()
        actions = [_action(1, a, ActionState.APPROVED), _action(1, a, ActionState.APPROVED)]
        assert evaluate_step(step, actions).outcome == StepOutcome.OPEN

    def test_single_rejection_vetoes(self):
        step = _step(1, required=2)
        actions = [
            _action(1, uuid4(), ActionState.APPROVED),
            _action(1, uuid4(), ActionState.APPROVED),
            _action(1, uuid4(), ActionState.REJECTED),
        ]
        assert evaluate_step(step, actions).outcome == StepOutcome.REJECTED

    def test_actions_on_other_steps_are_ignored(self):
        step = _step(2)
        actions = [_action(1, uuid4(), ActionState.APPROVED)]
        assert evaluate_step(step, actions).outcome == StepOutcome.OPEN

    def test_system_approval_clears_regardless_of_count(self):
        step = _step(1, required=3)
        actions = [
            _action(1, uuid4(), ActionState.PENDING),
            _action(1, SYSTEM_ACTOR_ID, ActionState.APPROVED, ActionOrigin.SYSTEM),
        ]
        result = evaluate_step(step, actions)
        assert result.outcome == StepOutcome.CLEARED
        assert SYSTEM_ACTOR_ID in result.approved_by


class TestDeriveRequestState:
    """Request status/step as a pure function of history."""

    def test_fresh_request_pends_on_first_step(self):
        steps = [_step(1), _step(2)]
        state = derive_request_state(steps, [_action(1, uuid4(), ActionState.PENDING)], {})
        assert state.status == RequestStatus.PENDING
        assert state.current_step == 1

    def test_advances_past_cleared_step(self):
        steps = [_step(1), _step(2)]
        actions = [_action(1, uuid4(), ActionState.APPROVED)]
        state = derive_request_state(steps, actions, {})
        assert (state.status, state.current_step) == (RequestStatus.PENDING, 2)

    def test_all_cleared_approves_at_last_step(self):
        steps = [_step(1), _step(2)]
        actions = [
            _action(1, uuid4(), ActionState.APPROVED),
            _action(2, uuid4(), ActionState.APPROVED),
        ]
        state = derive_request_state(steps, actions, {})
        assert (state.status, state.current_step) == (RequestStatus.APPROVED, 2)

    def test_rejection_rejects_at_that_step(self):
        steps = [_step(1), _step(2), _step(3)]
        actions = [
            _action(1, uuid4(), ActionState.APPROVED),
            _action(2, uuid4(), ActionState.REJECTED),
        ]
        state = derive_request_state(steps, actions, {})
        assert (state.status, state.current_step) == (RequestStatus.REJECTED, 2)

    def test_skipped_step_is_not_waited_on(self):
        steps = [_step(1), _step(2, conditions={"all": ["payload.amount > 1000"]}), _step(3)]
        actions = [_action(1, uuid4(), ActionState.APPROVED)]
        state = derive_request_state(steps, actions, {"amount": 10})
        assert (state.status, state.current_step) == (RequestStatus.PENDING, 3)

    def test_no_active_steps_approves_at_step_zero(self):
        steps = [_step(1, conditions={"all": ["payload.amount > 1000"]})]
        state = derive_request_state(steps, [], {"amount": 1})
        assert (state.status, state.current_step) == (RequestStatus.APPROVED, 0)

    def test_derivation_is_idempotent(self):
        steps = [_step(1, required=2), _step(2)]
        a, b = uuid4(), uuid4()
        actions = [
            _action(1, a, ActionState.APPROVED),
            _action(1, b, ActionState.APPROVED),
            _action(2, uuid4(), ActionState.PENDING),
        ]
        first = derive_request_state(steps, actions, {})
        again = derive_request_state(steps, list(reversed(actions)), {})
        assert first == again


class TestNextActiveStep:

    def test_first_step_without_conditions(self):
        steps = [_step(2), _step(1)]
        assert next_active_step(steps, {}).step_order == 1

    def test_skips_steps_whose_conditions_fail(self):
        steps = [_step(1, conditions={"all": ["payload.amount > 5"]}), _step(2)]
        assert next_active_step(steps, {"amount": 1}).step_order == 2

    def test_after_order(self):
        steps = [_step(1), _step(2), _step(3)]
        assert next_active_step(steps, {}, after_order=2).step_order == 3
        assert next_active_step(steps, {}, after_order=3) is None


class TestEvaluateTimers:
    """Escalation and auto-approval decisions."""

    def test_nothing_due_before_threshold(self):
        step = _step(1, escalation_after_hours=48, escalation_to=uuid4())
        actions = [_action(1, uuid4(), ActionState.PENDING)]
        assert evaluate_timers(step, actions, T0, T0 + timedelta(hours=47)) == TimerDecision.NONE

    def test_escalates_after_threshold(self):
        step = _step(1, escalation_after_hours=48, escalation_to=uuid4())
        actions = [_action(1, uuid4(), ActionState.PENDING)]
        assert (
            evaluate_timers(step, actions, T0, T0 + timedelta(hours=48))
            == TimerDecision.ESCALATE
        )

    def test_escalation_fires_once(self):
        target = uuid4()
        step = _step(1, escalation_after_hours=1, escalation_to=target)
        actions = [
            _action(1, uuid4(), ActionState.PENDING),
            _action(1, target, ActionState.PENDING, ActionOrigin.ESCALATED),
        ]
        assert evaluate_timers(step, actions, T0, T0 + timedelta(hours=5)) == TimerDecision.NONE

    def test_auto_approve_wins_over_escalation(self):
        step = _step(
            1, auto_approve_after_hours=24,
            escalation_after_hours=12, escalation_to=uuid4(),
        )
        actions = [_action(1, uuid4(), ActionState.PENDING)]
        assert (
            evaluate_timers(step, actions, T0, T0 + timedelta(hours=30))
            == TimerDecision.AUTO_APPROVE
        )

    def test_no_auto_approve_once_someone_decided(self):
        step = _step(1, required=2, auto_approve_after_hours=24)
        actions = [
            _action(1, uuid4(), ActionState.APPROVED),
            _action(1, uuid4(), ActionState.PENDING),
        ]
        assert evaluate_timers(step, actions, T0, T0 + timedelta(hours=30)) == TimerDecision.NONE

    def test_closed_step_has_no_timer(self):
        step = _step(1, auto_approve_after_hours=1)
        actions = [_action(1, uuid4(), ActionState.APPROVED)]
        assert evaluate_timers(step, actions, T0, T0 + timedelta(hours=5)) == TimerDecision.NONE


class TestValidateWorkflowSteps:

    def test_valid_steps(self):
        steps = [
            _step(1, required=2),
            StepDefinition(2, "Director", SpecificUser(uuid4())),
        ]
        assert validate_workflow_steps(steps) == []

    def test_empty_list(self):
        assert validate_workflow_steps([]) == ["workflow must have at least one step"]

    def test_non_contiguous_orders(self):
        errors = validate_workflow_steps([_step(1), _step(3)])
        assert any("contiguous" in e for e in errors)

    def test_duplicate_orders(self):
        errors = validate_workflow_steps([_step(1), _step(1)])
        assert any("unique" in e for e in errors)

    def test_user_step_requires_one_approval(self):
        errors = validate_workflow_steps(
            [StepDefinition(1, "Boss", SpecificUser(uuid4()), required_approvals=2)]
        )
        assert any("only 1 approval" in e for e in errors)

    def test_field_rules(self):
        steps = [
            StepDefinition(
                1, " ", RoleMatch({}), required_approvals=0,
                auto_approve_after_hours=0, escalation_after_hours=4,
                conditions={"when": ["x"]},
            ),
        ]
        errors = validate_workflow_steps(steps)
        joined = "\n".join(errors)
        assert "step_name is required" in joined
        assert "required_approvals must be >= 1" in joined
        assert "needs approver_criteria" in joined
        assert "auto_approve_after_hours must be > 0" in joined
        assert "go together" in joined
        assert "'all' / 'any'" in joined
