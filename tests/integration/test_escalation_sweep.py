"""
Tests for EscalationSweep.

Covers:
- Escalation and auto-approval counted per request
- Overdue pending requests expire; finished requests are not examined
- One failing request does not undo the others
- Every pending request is reached, however many older ones stay pending
- With real commits each item is its own transaction
"""

from datetime import timedelta

import pytest

from approval_kernel.domain.approval import RequestStatus
from approval_kernel.domain.clock import DeterministicClock
from approval_services.approval_api import ApprovalWorkflowAPI
from approval_services.escalation_sweep import EscalationSweep
from tests.conftest import ALICE, BOB, CAROL, HANNAH, manager_step, role_step, user_step


@pytest.fixture
def sweep(session, directory, deterministic_clock):
    def _make(**kwargs):
        return EscalationSweep(
            session, directory, clock=deterministic_clock, auto_commit=False, **kwargs,
        )

    return _make


@pytest.fixture
def timed_leave(make_workflow):
    return make_workflow([
        manager_step(1, escalation_after_hours=48, escalation_to=HANNAH),
        role_step("hr_manager", 2, auto_approve_after_hours=72),
    ])


@pytest.fixture
def broken_purchase_order(make_workflow):
    # step 2 names a role nobody holds, so auto-approving step 1 always fails
    return make_workflow(
        [user_step(CAROL, 1, auto_approve_after_hours=1), role_step("auditor", 2)],
        page_name="purchase_order",
    )


class TestSweep:

    def test_nothing_due(self, sweep, timed_leave, coordinator):
        coordinator.create_request("leave_request", ALICE, {})
        report = sweep().run()
        assert report.examined == 1
        assert (report.escalated, report.auto_approved, report.expired) == (0, 0, 0)

    def test_escalates_then_auto_approves(
        self, sweep, timed_leave, coordinator, processor, deterministic_clock,
    ):
        request = coordinator.create_request("leave_request", ALICE, {})

        deterministic_clock.advance_hours(49)
        assert sweep().run().escalated == 1
        # already escalated
        assert sweep().run().escalated == 0

        processor.process_action(request.request_id, CAROL, "approve")
        deterministic_clock.advance_hours(72)
        report = sweep().run()

        assert report.auto_approved == 1
        assert coordinator.get_request(request.request_id).status == RequestStatus.APPROVED
        assert sweep().run().examined == 0

    def test_overdue_expire(self, sweep, timed_leave, coordinator, deterministic_clock):
        due = deterministic_clock.now() + timedelta(hours=10)
        overdue = coordinator.create_request("leave_request", ALICE, {}, due_date=due)
        on_time = coordinator.create_request("leave_request", BOB, {})

        deterministic_clock.advance_hours(11)
        report = sweep().run()

        assert report.expired == 1
        assert coordinator.get_request(overdue.request_id).status == RequestStatus.EXPIRED
        assert coordinator.get_request(on_time.request_id).status == RequestStatus.PENDING

    def test_expiry_can_be_disabled(self, sweep, timed_leave, coordinator, deterministic_clock):
        due = deterministic_clock.now() + timedelta(hours=1)
        request = coordinator.create_request("leave_request", ALICE, {}, due_date=due)
        deterministic_clock.advance_hours(2)

        assert sweep(expire_overdue=False).run().expired == 0
        assert coordinator.get_request(request.request_id).status == RequestStatus.PENDING

    def test_failure_isolated(
        self, sweep, timed_leave, broken_purchase_order, coordinator, deterministic_clock,
        captured_logs,
    ):
        broken = coordinator.create_request("purchase_order", ALICE, {})
        healthy = coordinator.create_request("leave_request", BOB, {})

        deterministic_clock.advance_hours(49)
        report = sweep().run()

        assert report.failed == 1
        assert report.failed_request_ids == (broken.request_id,)
        assert report.escalated == 1
        stored = coordinator.get_request(broken.request_id)
        assert (stored.status, stored.current_step) == (RequestStatus.PENDING, 1)
        assert any(
            r["message"] == "sweep_item_failed" and r["error_code"] == "NO_ELIGIBLE_APPROVERS"
            for r in captured_logs()
        )
        assert coordinator.get_request(healthy.request_id).status == RequestStatus.PENDING


class TestPaging:

    def test_reaches_requests_past_batch_size(
        self, sweep, timed_leave, coordinator, processor, deterministic_clock,
    ):
        requests = [coordinator.create_request("leave_request", ALICE, {}) for _ in range(3)]
        deterministic_clock.advance_hours(49)

        report = sweep(batch_size=2).run()

        assert (report.examined, report.escalated) == (3, 3)
        for request in requests:
            assert processor.can_act(request.request_id, HANNAH)

    def test_failing_requests_do_not_hide_newer_ones(
        self, sweep, timed_leave, broken_purchase_order, coordinator, processor,
        deterministic_clock,
    ):
        broken = [coordinator.create_request("purchase_order", ALICE, {}) for _ in range(2)]
        healthy = coordinator.create_request("leave_request", BOB, {})
        deterministic_clock.advance_hours(49)

        for _ in range(2):
            report = sweep(batch_size=2).run()
            assert report.failed_request_ids == tuple(r.request_id for r in broken)

        assert processor.can_act(healthy.request_id, HANNAH)

    def test_batch_size_must_be_positive(self, sweep):
        with pytest.raises(ValueError):
            sweep(batch_size=0)


class TestCommittedSweep:

    def test_each_item_commits(self, session_factory, directory):
        clock = DeterministicClock()
        api = ApprovalWorkflowAPI(directory, session_factory=session_factory, clock=clock)
        leave = api.register_page("leave_request", "Leave Request", "hr")
        api.create_workflow_version(
            leave.page_id, "Timed leave", "sequential", True,
            [manager_step(1, escalation_after_hours=48, escalation_to=HANNAH)],
        )
        po = api.register_page("purchase_order", "Purchase Order", "procurement")
        api.create_workflow_version(
            po.page_id, "Audited", "sequential", True,
            [user_step(CAROL, 1, auto_approve_after_hours=1), role_step("auditor", 2)],
        )
        first = api.create_approval_request("leave_request", {}, "normal", None, ALICE)
        broken = api.create_approval_request("purchase_order", {}, "normal", None, ALICE)
        last = api.create_approval_request("leave_request", {}, "normal", None, BOB)
        clock.advance_hours(49)

        sweep_session = session_factory()
        report = EscalationSweep(sweep_session, directory, clock=clock, batch_size=2).run()

        assert (report.examined, report.escalated, report.failed) == (3, 2, 1)
        # no row lock is left held by the sweep's session
        assert not sweep_session.in_transaction()
        # the failure between them rolled back neither escalation
        assert api.can_actor_approve(first, HANNAH)
        assert api.can_actor_approve(last, HANNAH)
        assert api.get_request(broken).current_step == 1
