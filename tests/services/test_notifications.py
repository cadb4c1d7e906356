"""
Tests for NotificationTrigger.

Covers:
- new_request rows for every approver of an activated step
- Outcome rows for the requester
- Reminders only for approvers still pending
- mark_read is idempotent; unknown ids are reported
- Outbox reads after a watermark
"""

from uuid import uuid4

import pytest

from approval_kernel.domain.approval import NotificationType
from approval_kernel.exceptions import (
    ApprovalRequestNotFoundError,
    NotificationNotFoundError,
)
from tests.conftest import ALICE, CAROL, FELIX, FIONA, HANNAH, HARRY, role_step


def _kinds(notifier, recipient):
    return [n.notification_type for n in notifier.list_unread(recipient)]


@pytest.fixture
def finance_request(make_workflow, coordinator):
    make_workflow(
        [role_step("finance_officer", 1, required_approvals=2)],
        page_name="purchase_request",
    )
    return coordinator.create_request("purchase_request", ALICE, {"amount": 700})


class TestEmission:

    def test_every_approver_told(self, notifier, finance_request):
        assert _kinds(notifier, FIONA) == [NotificationType.NEW_REQUEST]
        assert _kinds(notifier, FELIX) == [NotificationType.NEW_REQUEST]
        (note,) = notifier.list_unread(FIONA)
        assert finance_request.request_number in note.title
        assert note.request_id == finance_request.request_id

    def test_next_step_told_on_advance(self, leave_workflow, coordinator, processor, notifier):
        request = coordinator.create_request("leave_request", ALICE, {})
        assert _kinds(notifier, HANNAH) == []

        processor.process_action(request.request_id, CAROL, "approve")

        assert _kinds(notifier, HANNAH) == [NotificationType.NEW_REQUEST]
        assert _kinds(notifier, HARRY) == [NotificationType.NEW_REQUEST]

    def test_requester_told_of_approval(self, processor, notifier, finance_request):
        processor.process_action(finance_request.request_id, FIONA, "approve")
        assert _kinds(notifier, ALICE) == []
        processor.process_action(finance_request.request_id, FELIX, "approve")
        assert _kinds(notifier, ALICE) == [NotificationType.APPROVED]

    def test_requester_told_of_rejection(self, processor, notifier, finance_request):
        processor.process_action(finance_request.request_id, FELIX, "reject")
        assert _kinds(notifier, ALICE) == [NotificationType.REJECTED]

    def test_cancellation_sends_nothing_to_requester(self, processor, notifier, finance_request):
        processor.cancel_request(finance_request.request_id, ALICE)
        assert _kinds(notifier, ALICE) == []


class TestReminders:

    def test_only_pending_approvers_reminded(self, processor, notifier, finance_request):
        processor.process_action(finance_request.request_id, FIONA, "approve")

        sent = notifier.remind_pending(finance_request.request_id)

        assert sent == 1
        assert NotificationType.REMINDER in _kinds(notifier, FELIX)
        assert NotificationType.REMINDER not in _kinds(notifier, FIONA)

    def test_finished_request_not_reminded(self, processor, notifier, finance_request):
        processor.process_action(finance_request.request_id, FIONA, "reject")
        assert notifier.remind_pending(finance_request.request_id) == 0

    def test_unknown_request(self, notifier):
        with pytest.raises(ApprovalRequestNotFoundError):
            notifier.remind_pending(uuid4())


class TestReading:

    def test_mark_read(self, notifier, deterministic_clock, finance_request):
        (note,) = notifier.list_unread(FIONA)

        read = notifier.mark_read(note.notification_id)

        assert read.is_read
        assert read.read_at == deterministic_clock.now()
        assert notifier.list_unread(FIONA) == []

    def test_mark_read_idempotent(self, notifier, deterministic_clock, finance_request):
        (note,) = notifier.list_unread(FIONA)
        first = notifier.mark_read(note.notification_id)
        deterministic_clock.advance_hours(1)
        second = notifier.mark_read(note.notification_id)
        assert second.read_at == first.read_at

    def test_mark_unknown(self, notifier):
        with pytest.raises(NotificationNotFoundError):
            notifier.mark_read(uuid4())

    def test_outbox_after_watermark(
        self, processor, notifier, deterministic_clock, finance_request,
    ):
        watermark = deterministic_clock.now()
        assert len(notifier.list_outbox()) == 2

        deterministic_clock.advance_hours(1)
        processor.process_action(finance_request.request_id, FIONA, "reject")

        later = notifier.list_outbox(after=watermark)
        assert [(n.recipient_id, n.notification_type) for n in later] == [
            (ALICE, NotificationType.REJECTED),
        ]

    def test_outbox_limit(self, notifier, finance_request):
        assert len(notifier.list_outbox(limit=1)) == 1
