"""
Hypothesis properties of request-state derivation.

Draws random step lists and random action histories and checks that
derivation behaves like a pure function of the set of decisions:

- Order of the history does not matter
- Repeated approvals by one identity count once
- An extra approval on the current step never moves the request backwards
  and never rejects the step it approves
- The derived (status, step) pair is always well-formed
"""

from __future__ import annotations

from uuid import UUID, uuid4

from hypothesis import given, settings
from hypothesis import strategies as st

from approval_engines.approval import derive_request_state
from approval_kernel.domain.approval import (
    ActionState,
    ApprovalActionRecord,
    RequestStatus,
    RoleMatch,
    StepDefinition,
)

APPROVERS: tuple[UUID, ...] = tuple(uuid4() for _ in range(5))
REQUEST_ID = uuid4()


@st.composite
def workflows(draw):
    count = draw(st.integers(min_value=1, max_value=4))
    return tuple(
        StepDefinition(
            step_order=order,
            step_name=f"step {order}",
            approver=RoleMatch({"role": "reviewers"}),
            required_approvals=draw(st.integers(min_value=1, max_value=3)),
            step_id=uuid4(),
        )
        for order in range(1, count + 1)
    )


def _record(step: StepDefinition, approver: UUID, state: ActionState) -> ApprovalActionRecord:
    return ApprovalActionRecord(
        action_id=uuid4(),
        request_id=REQUEST_ID,
        step_id=step.step_id,
        step_order=step.step_order,
        approver_id=approver,
        action=state,
    )


@st.composite
def histories(draw, steps):
    entries = draw(st.lists(
        st.tuples(
            st.sampled_from(steps),
            st.sampled_from(APPROVERS),
            st.sampled_from([ActionState.PENDING, ActionState.APPROVED, ActionState.REJECTED]),
        ),
        max_size=15,
    ))
    return [_record(step, approver, state) for step, approver, state in entries]


@st.composite
def scenarios(draw):
    steps = draw(workflows())
    return steps, draw(histories(steps))


class TestDerivationProperties:

    @settings(max_examples=200, deadline=None)
    @given(scenario=scenarios(), data=st.data())
    def test_history_order_irrelevant(self, scenario, data):
        steps, history = scenario
        shuffled = data.draw(st.permutations(history))
        assert derive_request_state(steps, shuffled, {}) == derive_request_state(
            steps, history, {},
        )

    @settings(max_examples=200, deadline=None)
    @given(scenario=scenarios())
    def test_repeat_approvals_count_once(self, scenario):
        steps, history = scenario
        repeated = history + [
            _record(
                next(s for s in steps if s.step_order == a.step_order),
                a.approver_id,
                ActionState.APPROVED,
            )
            for a in history
            if a.action == ActionState.APPROVED
        ]
        assert derive_request_state(steps, repeated, {}) == derive_request_state(
            steps, history, {},
        )

    @settings(max_examples=200, deadline=None)
    @given(scenario=scenarios(), approver=st.sampled_from(APPROVERS))
    def test_extra_approval_moves_forward(self, scenario, approver):
        steps, history = scenario
        before = derive_request_state(steps, history, {})
        if before.status != RequestStatus.PENDING:
            return
        current = next(s for s in steps if s.step_order == before.current_step)

        after = derive_request_state(
            steps, history + [_record(current, approver, ActionState.APPROVED)], {},
        )

        assert after.current_step >= before.current_step
        if after.status == RequestStatus.REJECTED:
            # only a rejection already waiting on a later step can surface
            assert after.current_step > before.current_step

    @settings(max_examples=200, deadline=None)
    @given(scenario=scenarios())
    def test_state_well_formed(self, scenario):
        steps, history = scenario
        state = derive_request_state(steps, history, {})
        orders = [s.step_order for s in steps]

        assert state.current_step in orders
        if state.status == RequestStatus.APPROVED:
            assert state.current_step == max(orders)
        if state.status == RequestStatus.REJECTED:
            assert any(
                a.step_order == state.current_step and a.action == ActionState.REJECTED
                for a in history
            )
