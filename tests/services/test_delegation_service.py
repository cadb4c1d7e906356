"""
Tests for DelegationService.

Covers:
- Validation: no self-delegation, non-empty window, known scope targets
- Overlap rejection for intersecting scopes of the same delegator
- Resolution within the half-open window, by scope, one hop only
- Revocation and active listings
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from approval_kernel.exceptions import (
    DelegationNotFoundError,
    DelegationOverlapError,
    DelegationValidationError,
    PageNotFoundError,
    WorkflowNotFoundError,
)
from tests.conftest import CAROL, DAVE, HANNAH, VICTOR


@pytest.fixture
def window(deterministic_clock):
    start = deterministic_clock.now()
    return start, start + timedelta(days=7)


class TestCreateDelegation:

    def test_create(self, delegations, window):
        start, end = window
        created = delegations.create_delegation(CAROL, DAVE, start, end, reason="leave")
        assert created.delegator_id == CAROL
        assert created.delegate_id == DAVE
        assert created.is_active
        assert created.reason == "leave"
        assert delegations.get_delegation(created.delegation_id) == created

    def test_self_delegation_rejected(self, delegations, window):
        with pytest.raises(DelegationValidationError):
            delegations.create_delegation(CAROL, CAROL, *window)

    def test_empty_window_rejected(self, delegations, window):
        start, _ = window
        with pytest.raises(DelegationValidationError):
            delegations.create_delegation(CAROL, DAVE, start, start)

    def test_unknown_scope_targets(self, delegations, window):
        start, end = window
        with pytest.raises(PageNotFoundError):
            delegations.create_delegation(CAROL, DAVE, start, end, page_id=uuid4())
        with pytest.raises(WorkflowNotFoundError):
            delegations.create_delegation(CAROL, DAVE, start, end, workflow_id=uuid4())

    def test_workflow_scope_records_lineage(self, delegations, leave_workflow, window):
        created = delegations.create_delegation(
            CAROL, DAVE, *window, workflow_id=leave_workflow.workflow_id,
        )
        assert created.workflow_lineage_id == leave_workflow.lineage_id


class TestOverlap:

    def test_overlapping_global_rejected(self, delegations, window):
        start, end = window
        delegations.create_delegation(CAROL, DAVE, start, end)
        with pytest.raises(DelegationOverlapError):
            delegations.create_delegation(
                CAROL, HANNAH, start + timedelta(days=3), end + timedelta(days=3),
            )

    def test_adjacent_windows_allowed(self, delegations, window):
        start, end = window
        delegations.create_delegation(CAROL, DAVE, start, end)
        delegations.create_delegation(CAROL, HANNAH, end, end + timedelta(days=1))

    def test_disjoint_page_scopes_allowed(self, delegations, make_page, window):
        leave = make_page("leave_request")
        travel = make_page("travel_request")
        delegations.create_delegation(CAROL, DAVE, *window, page_id=leave.page_id)
        delegations.create_delegation(CAROL, HANNAH, *window, page_id=travel.page_id)

    def test_global_overlaps_scoped(self, delegations, make_page, window):
        leave = make_page("leave_request")
        delegations.create_delegation(CAROL, DAVE, *window, page_id=leave.page_id)
        with pytest.raises(DelegationOverlapError):
            delegations.create_delegation(CAROL, HANNAH, *window)

    def test_revoked_does_not_block(self, delegations, window):
        first = delegations.create_delegation(CAROL, DAVE, *window)
        delegations.revoke_delegation(first.delegation_id)
        delegations.create_delegation(CAROL, HANNAH, *window)


class TestResolution:

    def test_resolves_inside_window_only(self, delegations, window):
        start, end = window
        delegations.create_delegation(CAROL, DAVE, start, end)
        assert delegations.resolve_approver(CAROL, start) == DAVE
        assert delegations.resolve_approver(CAROL, end - timedelta(seconds=1)) == DAVE
        assert delegations.resolve_approver(CAROL, end) == CAROL
        assert delegations.resolve_approver(CAROL, start - timedelta(seconds=1)) == CAROL

    def test_scope_must_match(self, delegations, make_page, window):
        start, _ = window
        leave = make_page("leave_request")
        travel = make_page("travel_request")
        delegations.create_delegation(CAROL, DAVE, *window, page_id=leave.page_id)
        assert delegations.resolve_approver(CAROL, start, leave.page_id) == DAVE
        assert delegations.resolve_approver(CAROL, start, travel.page_id) == CAROL

    def test_single_hop(self, delegations, window):
        start, _ = window
        delegations.create_delegation(CAROL, DAVE, *window)
        delegations.create_delegation(DAVE, VICTOR, *window)
        assert delegations.resolve_approver(CAROL, start) == DAVE

    def test_delegators_for(self, delegations, window):
        start, _ = window
        delegations.create_delegation(CAROL, DAVE, *window)
        delegations.create_delegation(HANNAH, DAVE, *window)
        assert set(delegations.delegators_for(DAVE, start)) == {CAROL, HANNAH}
        assert delegations.delegators_for(CAROL, start) == []


class TestRevocationAndListing:

    def test_revoke(self, delegations, window):
        start, _ = window
        created = delegations.create_delegation(CAROL, DAVE, *window)
        revoked = delegations.revoke_delegation(created.delegation_id)
        assert not revoked.is_active
        assert delegations.resolve_approver(CAROL, start) == CAROL

    def test_revoke_unknown(self, delegations):
        with pytest.raises(DelegationNotFoundError):
            delegations.revoke_delegation(uuid4())

    def test_list_active(self, delegations, deterministic_clock, window):
        start, end = window
        current = delegations.create_delegation(CAROL, DAVE, start, end)
        delegations.create_delegation(HANNAH, DAVE, end, end + timedelta(days=2))
        active = delegations.list_active_delegations()
        assert [d.delegation_id for d in active] == [current.delegation_id]
        later = delegations.list_active_delegations(end + timedelta(hours=1))
        assert [d.delegator_id for d in later] == [HANNAH]
