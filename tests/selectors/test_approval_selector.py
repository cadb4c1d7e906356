"""
Tests for ApprovalSelector.

Covers:
- Approver inbox, including the delegate's view and its window and scope
- Request listings: filters, ordering, pagination
- Dashboard statistics: counts, overdue, mean completion time
- Request details with the audit history
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from approval_kernel.domain.approval import RequestStatus
from approval_kernel.exceptions import ApprovalRequestNotFoundError, PageNotFoundError
from approval_kernel.services.approval_log import ApprovalLogService
from tests.conftest import ALICE, BOB, CAROL, DAVE, HANNAH, HARRY, manager_step


def _ids(requests):
    return [r.request_id for r in requests]


class TestInbox:

    def test_current_step_only(
        self, leave_workflow, coordinator, processor, selector, deterministic_clock,
    ):
        request = coordinator.create_request("leave_request", ALICE, {})
        now = deterministic_clock.now()
        assert _ids(selector.list_pending_for_actor(CAROL, now)) == [request.request_id]
        assert selector.list_pending_for_actor(HANNAH, now) == []

        processor.process_action(request.request_id, CAROL, "approve")

        assert selector.list_pending_for_actor(CAROL, now) == []
        assert _ids(selector.list_pending_for_actor(HARRY, now)) == [request.request_id]

    def test_finished_requests_leave_inbox(
        self, leave_workflow, coordinator, processor, selector, deterministic_clock,
    ):
        request = coordinator.create_request("leave_request", ALICE, {})
        processor.cancel_request(request.request_id, ALICE)
        assert selector.list_pending_for_actor(CAROL, deterministic_clock.now()) == []

    def test_delegate_sees_delegators_slot(
        self, leave_workflow, coordinator, delegations, selector, deterministic_clock,
    ):
        own = coordinator.create_request("leave_request", BOB, {})
        delegated = coordinator.create_request("leave_request", ALICE, {})
        now = deterministic_clock.now()
        delegations.create_delegation(CAROL, DAVE, now, now + timedelta(days=2))

        inbox = selector.list_pending_for_actor(DAVE, now)

        assert set(_ids(inbox)) == {own.request_id, delegated.request_id}
        # the nominal approver keeps the request too
        assert _ids(selector.list_pending_for_actor(CAROL, now)) == [delegated.request_id]

    def test_delegate_view_bounded_by_window(
        self, leave_workflow, coordinator, delegations, selector, deterministic_clock,
    ):
        request = coordinator.create_request("leave_request", ALICE, {})
        now = deterministic_clock.now()
        delegations.create_delegation(CAROL, DAVE, now + timedelta(days=1), now + timedelta(days=2))

        assert selector.list_pending_for_actor(DAVE, now) == []
        assert _ids(
            selector.list_pending_for_actor(DAVE, now + timedelta(days=1, hours=1))
        ) == [request.request_id]
        assert selector.list_pending_for_actor(DAVE, now + timedelta(days=2)) == []

    def test_delegate_view_bounded_by_scope(
        self, leave_workflow, make_page, coordinator, delegations, selector,
        deterministic_clock,
    ):
        coordinator.create_request("leave_request", ALICE, {})
        travel = make_page("travel_request")
        now = deterministic_clock.now()
        delegations.create_delegation(
            CAROL, DAVE, now, now + timedelta(days=2), page_id=travel.page_id,
        )
        assert selector.list_pending_for_actor(DAVE, now) == []


class TestListRequests:

    @pytest.fixture
    def requests(self, make_workflow, coordinator, processor, deterministic_clock):
        make_workflow([manager_step(1)])
        created = []
        for requester in (ALICE, BOB, ALICE):
            created.append(coordinator.create_request("leave_request", requester, {}))
            deterministic_clock.advance_hours(1)
        processor.process_action(created[0].request_id, CAROL, "approve")
        return created

    def test_newest_first(self, selector, requests):
        listing = selector.list_requests()
        assert listing.total == 3
        assert _ids(listing.items) == _ids(reversed(requests))

    def test_filters(self, selector, requests):
        assert selector.list_requests(status="approved").total == 1
        assert selector.list_requests(status=RequestStatus.PENDING).total == 2
        assert _ids(selector.list_requests(requester_id=BOB).items) == [requests[1].request_id]
        assert selector.list_requests(page_name="leave_request").total == 3

    def test_pagination(self, selector, requests):
        second = selector.list_requests(page=2, limit=2)
        assert second.total == 3
        assert second.pages == 2
        assert _ids(second.items) == [requests[0].request_id]

    def test_unknown_page(self, selector, requests):
        with pytest.raises(PageNotFoundError):
            selector.list_requests(page_name="nope")


class TestStatistics:

    def test_dashboard(self, make_workflow, coordinator, processor, selector, deterministic_clock):
        make_workflow([manager_step(1)])
        start = deterministic_clock.now()
        approved = coordinator.create_request("leave_request", ALICE, {})
        rejected = coordinator.create_request("leave_request", BOB, {})
        coordinator.create_request(
            "leave_request", ALICE, {}, due_date=start + timedelta(hours=1),
        )
        cancelled = coordinator.create_request("leave_request", BOB, {})

        deterministic_clock.advance_hours(3)
        processor.process_action(rejected.request_id, DAVE, "reject")
        processor.cancel_request(cancelled.request_id, BOB)
        deterministic_clock.advance_hours(2)
        processor.process_action(approved.request_id, CAROL, "approve")

        stats = selector.statistics(deterministic_clock.now())

        assert (stats.total, stats.pending, stats.approved, stats.rejected) == (4, 1, 1, 1)
        assert (stats.cancelled, stats.expired) == (1, 0)
        assert stats.overdue == 1
        assert stats.avg_completion_hours == 4.0

    def test_empty(self, selector, deterministic_clock):
        stats = selector.statistics(deterministic_clock.now())
        assert stats.total == 0
        assert stats.avg_completion_hours is None


class TestDetails:

    def test_details(self, leave_workflow, coordinator, processor, selector):
        request = coordinator.create_request("leave_request", ALICE, {})
        processor.process_action(request.request_id, CAROL, "approve")

        details = selector.get_request_details(request.request_id)

        assert details.page_name == "leave_request"
        assert details.workflow_name == "Standard"
        assert details.workflow_version == 1
        assert details.request.current_step == 2
        assert {e.action for e in details.history} == {
            ApprovalLogService.REQUEST_CREATED,
            ApprovalLogService.ACTION_RECORDED,
            ApprovalLogService.STEP_ADVANCED,
        }

    def test_unknown(self, selector):
        with pytest.raises(ApprovalRequestNotFoundError):
            selector.get_request_details(uuid4())
