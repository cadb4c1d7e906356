"""
Tests for approval domain value objects.

Covers:
- Request lifecycle transitions (terminal states have no exits)
- Decision alias parsing
- Delegation window (half-open) and scope matching
- Delegation scope intersection
- Document status mapping, edit lock and derivation chain
- Static approver directory resolution
- Deterministic clock helpers
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from approval_kernel.domain.approval import (
    REQUEST_TRANSITIONS,
    TERMINAL_REQUEST_STATUSES,
    ActionState,
    ApprovalDecision,
    ApprovalDelegation,
    RequestStatus,
    can_transition,
    parse_decision,
    scopes_intersect,
)
from approval_kernel.domain.clock import DeterministicClock, SequentialClock
from approval_kernel.domain.directory import StaticApproverDirectory
from approval_kernel.domain.documents import (
    DocumentStatus,
    DocumentType,
    allowed_source_for,
    document_status_for,
    is_editable,
)
from approval_kernel.exceptions import InvalidDecisionError

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


class TestRequestLifecycle:

    def test_pending_reaches_every_terminal_state(self):
        for target in TERMINAL_REQUEST_STATUSES:
            assert can_transition(RequestStatus.PENDING, target)

    def test_terminal_states_are_final(self):
        for status in TERMINAL_REQUEST_STATUSES:
            assert REQUEST_TRANSITIONS[status] == frozenset()
            assert not can_transition(status, RequestStatus.PENDING)


class TestParseDecision:

    @pytest.mark.parametrize("raw", ["approve", "Approved", " ACCEPT "])
    def test_approve_aliases(self, raw):
        assert parse_decision(raw) == ApprovalDecision.APPROVE

    @pytest.mark.parametrize("raw", ["reject", "rejected", "Decline"])
    def test_reject_aliases(self, raw):
        assert parse_decision(raw) == ApprovalDecision.REJECT

    def test_enum_passes_through(self):
        assert parse_decision(ApprovalDecision.REJECT) is ApprovalDecision.REJECT

    @pytest.mark.parametrize("raw", ["maybe", "", None, 1])
    def test_unknown_raises(self, raw):
        with pytest.raises(InvalidDecisionError) as exc_info:
            parse_decision(raw)
        assert exc_info.value.code == "INVALID_DECISION"

    def test_action_state(self):
        assert ApprovalDecision.APPROVE.action_state == ActionState.APPROVED
        assert ApprovalDecision.REJECT.action_state == ActionState.REJECTED


class TestDelegationWindow:

    def _delegation(self, **kwargs):
        return ApprovalDelegation(
            delegation_id=uuid4(),
            delegator_id=uuid4(),
            delegate_id=uuid4(),
            start_date=T0,
            end_date=T0 + timedelta(days=7),
            **kwargs,
        )

    def test_window_is_half_open(self):
        d = self._delegation()
        assert d.covers(T0)
        assert d.covers(T0 + timedelta(days=7) - timedelta(seconds=1))
        assert not d.covers(T0 + timedelta(days=7))
        assert not d.covers(T0 - timedelta(seconds=1))

    def test_inactive_covers_nothing(self):
        assert not self._delegation(is_active=False).covers(T0)

    def test_global_scope_matches_everything(self):
        assert self._delegation().matches_scope(uuid4(), uuid4())
        assert self._delegation().matches_scope(None, None)

    def test_page_scope(self):
        page = uuid4()
        d = self._delegation(page_id=page)
        assert d.matches_scope(page, uuid4())
        assert not d.matches_scope(uuid4(), None)

    def test_workflow_scope(self):
        lineage = uuid4()
        d = self._delegation(workflow_lineage_id=lineage)
        assert d.matches_scope(uuid4(), lineage)
        assert not d.matches_scope(uuid4(), uuid4())


class TestScopesIntersect:

    def test_global_intersects_everything(self):
        assert scopes_intersect(None, None, uuid4(), uuid4())

    def test_different_pages_do_not_intersect(self):
        assert not scopes_intersect(uuid4(), None, uuid4(), None)

    def test_same_page_different_workflows(self):
        page = uuid4()
        assert not scopes_intersect(page, uuid4(), page, uuid4())
        assert scopes_intersect(page, None, page, uuid4())


class TestDocumentRules:

    @pytest.mark.parametrize(
        "request_status, document_status",
        [
            (RequestStatus.PENDING, DocumentStatus.SUBMITTED),
            (RequestStatus.APPROVED, DocumentStatus.APPROVED),
            (RequestStatus.REJECTED, DocumentStatus.REJECTED),
            (RequestStatus.CANCELLED, DocumentStatus.CANCELLED),
            (RequestStatus.EXPIRED, DocumentStatus.REJECTED),
        ],
    )
    def test_status_mapping(self, request_status, document_status):
        assert document_status_for(request_status) == document_status

    def test_edit_lock(self):
        assert is_editable(None)
        assert is_editable(RequestStatus.REJECTED)
        assert is_editable(RequestStatus.CANCELLED)
        assert is_editable(RequestStatus.EXPIRED)
        assert not is_editable(RequestStatus.PENDING)
        assert not is_editable(RequestStatus.APPROVED)

    def test_derivation_chain(self):
        assert allowed_source_for(DocumentType.SR) == DocumentType.DRAFT
        assert allowed_source_for(DocumentType.PR) == DocumentType.SR
        assert allowed_source_for(DocumentType.PO) == DocumentType.PR
        assert allowed_source_for(DocumentType.GRN) == DocumentType.PO
        assert allowed_source_for(DocumentType.DRAFT) is None
        assert allowed_source_for(DocumentType.LEAVE) is None


class TestStaticApproverDirectory:

    def test_manager_relation(self):
        staff, boss = uuid4(), uuid4()
        directory = StaticApproverDirectory(managers={staff: boss})
        assert directory.resolve({"relation": "manager"}, staff) == (boss,)
        assert directory.resolve({"relation": "manager"}, uuid4()) == ()

    def test_role_excludes_requester_by_default(self):
        a, b = uuid4(), uuid4()
        directory = StaticApproverDirectory(roles={"finance": [a, b]})
        assert directory.resolve({"role": "finance"}, a) == (b,)
        assert directory.resolve(
            {"role": "finance", "exclude_requester": False}, a,
        ) == (a, b)

    def test_unknown_role_and_criteria(self):
        directory = StaticApproverDirectory()
        assert directory.resolve({"role": "nobody"}, uuid4()) == ()
        assert directory.resolve({"department": "x"}, uuid4()) == ()

    def test_mutators(self):
        a, b = uuid4(), uuid4()
        directory = StaticApproverDirectory()
        directory.add_member("hr", a)
        directory.add_member("hr", a)
        directory.set_manager(b, a)
        assert directory.roles == {"hr": (a,)}
        assert directory.resolve({"relation": "manager"}, b) == (a,)


class TestClocks:

    def test_deterministic_clock(self):
        clock = DeterministicClock(T0)
        assert clock.now() == clock.now() == T0
        clock.advance_hours(1.5)
        assert clock.now() == T0 + timedelta(minutes=90)
        assert clock.tick() == T0 + timedelta(minutes=90, seconds=1)

    def test_sequential_clock_repeats_last(self):
        clock = SequentialClock([T0, T0 + timedelta(hours=1)])
        assert clock.now() == T0
        assert clock.now() == T0 + timedelta(hours=1)
        assert clock.now() == T0 + timedelta(hours=1)

    def test_sequential_clock_needs_times(self):
        with pytest.raises(ValueError):
            SequentialClock([])
