"""
Module: approval_kernel.selectors.approval_selector
Responsibility: Read-side queries over approval requests -- the approver
    inbox, request details with history, paginated listings and per-page
    dashboard statistics.
Architecture position: Kernel > Selectors.  Read-only; resolves delegation
    directly against the delegation table rather than through services.

Invariants enforced:
    - The inbox lists only rows on the request's current step of pending
      requests, so leftover slots on cleared steps never show up.
    - A delegate sees a delegator's slot only while the delegation window
      covers ``at`` and its scope matches the request.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, or_, select

from approval_kernel.domain.approval import (
    ApprovalDelegation,
    ApprovalLogEntry,
    ApprovalRequest,
    RequestStatus,
)
from approval_kernel.exceptions import ApprovalRequestNotFoundError, PageNotFoundError
from approval_kernel.models.approval_log import ApprovalLogModel
from approval_kernel.models.delegation import ApprovalDelegationModel
from approval_kernel.models.page import ApprovalPageModel
from approval_kernel.models.request import ApprovalActionModel, ApprovalRequestModel
from approval_kernel.models.workflow import WorkflowDefinitionModel
from approval_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class RequestDetails:
    request: ApprovalRequest
    page_name: str
    workflow_name: str | None
    workflow_version: int | None
    history: tuple[ApprovalLogEntry, ...] = ()


@dataclass(frozen=True)
class RequestPage:
    """One page of a request listing."""

    items: tuple[ApprovalRequest, ...]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit


@dataclass(frozen=True)
class ApprovalStatistics:
    total: int
    pending: int
    approved: int
    rejected: int
    cancelled: int
    expired: int
    overdue: int
    avg_completion_hours: float | None


class ApprovalSelector(BaseSelector[ApprovalRequestModel]):
    """Inbox, listings and dashboards over approval requests."""

    def get_request_details(self, request_id: UUID) -> RequestDetails:
        request = self.session.get(ApprovalRequestModel, request_id)
        if request is None:
            raise ApprovalRequestNotFoundError(str(request_id))
        page = self.session.get(ApprovalPageModel, request.page_id)
        workflow = (
            self.session.get(WorkflowDefinitionModel, request.workflow_id)
            if request.workflow_id else None
        )
        history = self.session.execute(
            select(ApprovalLogModel)
            .where(ApprovalLogModel.request_id == request_id)
            .order_by(ApprovalLogModel.created_at)
        ).scalars()
        return RequestDetails(
            request=request.to_dto(),
            page_name=page.page_name,
            workflow_name=workflow.workflow_name if workflow else None,
            workflow_version=workflow.version if workflow else None,
            history=tuple(h.to_dto() for h in history),
        )

    def list_pending_for_actor(
        self, actor_id: UUID, at: datetime,
    ) -> list[ApprovalRequest]:
        """Requests waiting on ``actor_id`` directly or as an active delegate."""
        delegations = self.session.execute(
            select(ApprovalDelegationModel).where(
                ApprovalDelegationModel.delegate_id == actor_id,
                ApprovalDelegationModel.is_active.is_(True),
                ApprovalDelegationModel.start_date <= at,
                ApprovalDelegationModel.end_date > at,
            )
        ).scalars().all()
        scoped: dict[UUID, list[ApprovalDelegation]] = {}
        for d in delegations:
            scoped.setdefault(d.delegator_id, []).append(d.to_dto())

        identities = [actor_id, *scoped]
        rows = self.session.execute(
            select(ApprovalActionModel, ApprovalRequestModel, WorkflowDefinitionModel.lineage_id)
            .join(ApprovalRequestModel, ApprovalActionModel.request_id == ApprovalRequestModel.id)
            .outerjoin(
                WorkflowDefinitionModel,
                ApprovalRequestModel.workflow_id == WorkflowDefinitionModel.id,
            )
            .where(
                ApprovalRequestModel.status == RequestStatus.PENDING.value,
                ApprovalActionModel.step_order == ApprovalRequestModel.current_step,
                ApprovalActionModel.action == "pending",
                or_(*(ApprovalActionModel.approver_id == i for i in identities)),
            )
            .order_by(ApprovalRequestModel.created_at, ApprovalRequestModel.request_number)
        ).all()

        seen: dict[UUID, ApprovalRequest] = {}
        for action, request, lineage_id in rows:
            if request.id in seen:
                continue
            if action.approver_id != actor_id:
                if not any(
                    d.matches_scope(request.page_id, lineage_id)
                    for d in scoped.get(action.approver_id, ())
                ):
                    continue
                if self._has_decided_on_step(request, actor_id):
                    continue
            seen[request.id] = request.to_dto()
        return list(seen.values())

    def list_requests(
        self,
        status: RequestStatus | str | None = None,
        page_name: str | None = None,
        requester_id: UUID | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> RequestPage:
        """Newest first, filtered by any combination of the arguments."""
        page = max(1, page)
        filters = []
        if status is not None:
            filters.append(ApprovalRequestModel.status == RequestStatus(status).value)
        if page_name is not None:
            filters.append(ApprovalRequestModel.page_id == self._page_id(page_name))
        if requester_id is not None:
            filters.append(ApprovalRequestModel.requester_id == requester_id)

        total = self.session.execute(
            select(func.count(ApprovalRequestModel.id)).where(*filters)
        ).scalar_one()
        rows = self.session.execute(
            select(ApprovalRequestModel)
            .where(*filters)
            .order_by(
                ApprovalRequestModel.created_at.desc(),
                ApprovalRequestModel.request_number.desc(),
            )
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars()
        return RequestPage(
            items=tuple(r.to_dto() for r in rows),
            total=total,
            page=page,
            limit=limit,
        )

    def statistics(
        self, at: datetime, page_name: str | None = None,
    ) -> ApprovalStatistics:
        """Per-status counts, overdue pending requests, mean completion time."""
        filters = []
        if page_name is not None:
            filters.append(ApprovalRequestModel.page_id == self._page_id(page_name))

        counts = dict(self.session.execute(
            select(ApprovalRequestModel.status, func.count(ApprovalRequestModel.id))
            .where(*filters)
            .group_by(ApprovalRequestModel.status)
        ).all())

        overdue = self.session.execute(
            select(func.count(ApprovalRequestModel.id)).where(
                *filters,
                ApprovalRequestModel.status == RequestStatus.PENDING.value,
                ApprovalRequestModel.due_date.is_not(None),
                ApprovalRequestModel.due_date < at,
            )
        ).scalar_one()

        # durations computed here so SQLite and PostgreSQL agree
        completed = self.session.execute(
            select(ApprovalRequestModel.created_at, ApprovalRequestModel.completed_at)
            .where(
                *filters,
                ApprovalRequestModel.status.in_((
                    RequestStatus.APPROVED.value, RequestStatus.REJECTED.value,
                )),
                ApprovalRequestModel.completed_at.is_not(None),
            )
        ).all()
        hours = [
            (done - created).total_seconds() / 3600.0 for created, done in completed
        ]

        return ApprovalStatistics(
            total=sum(counts.values()),
            pending=counts.get(RequestStatus.PENDING.value, 0),
            approved=counts.get(RequestStatus.APPROVED.value, 0),
            rejected=counts.get(RequestStatus.REJECTED.value, 0),
            cancelled=counts.get(RequestStatus.CANCELLED.value, 0),
            expired=counts.get(RequestStatus.EXPIRED.value, 0),
            overdue=overdue,
            avg_completion_hours=round(sum(hours) / len(hours), 2) if hours else None,
        )

    def _page_id(self, page_name: str) -> UUID:
        page_id = self.session.execute(
            select(ApprovalPageModel.id).where(ApprovalPageModel.page_name == page_name)
        ).scalar_one_or_none()
        if page_id is None:
            raise PageNotFoundError(page_name)
        return page_id

    @staticmethod
    def _has_decided_on_step(request: ApprovalRequestModel, actor_id: UUID) -> bool:
        return any(
            a.is_decided and (a.approver_id == actor_id or a.on_behalf_of == actor_id)
            for a in request.actions_for_step(request.current_step)
        )
