"""
In-memory approver directory.

``StaticApproverDirectory`` implements the ``ApproverDirectory`` protocol
from a role -> members table and a requester -> manager table.  It is what
``approval_config.bridges`` builds from YAML and what tests wire in; a
deployment backed by an HR system supplies its own implementation.
"""

from __future__ import annotations

from typing import Any, Mapping
from uuid import UUID


class StaticApproverDirectory:
    """Resolve ``RoleMatch`` criteria from fixed role and manager tables."""

    def __init__(
        self,
        roles: Mapping[str, tuple[UUID, ...] | list[UUID]] | None = None,
        managers: Mapping[UUID, UUID] | None = None,
    ) -> None:
        self._roles: dict[str, tuple[UUID, ...]] = {
            name: tuple(members) for name, members in (roles or {}).items()
        }
        self._managers: dict[UUID, UUID] = dict(managers or {})

    def resolve(
        self, criteria: Mapping[str, Any], requester_id: UUID
    ) -> tuple[UUID, ...]:
        relation = criteria.get("relation")
        if relation == "manager":
            manager = self._managers.get(requester_id)
            return (manager,) if manager is not None else ()

        role = criteria.get("role")
        if role is None:
            return ()
        members = self._roles.get(str(role), ())
        if criteria.get("exclude_requester", True):
            members = tuple(m for m in members if m != requester_id)
        return members

    def add_member(self, role: str, user_id: UUID) -> None:
        current = self._roles.get(role, ())
        if user_id not in current:
            self._roles[role] = current + (user_id,)

    def set_manager(self, user_id: UUID, manager_id: UUID) -> None:
        self._managers[user_id] = manager_id

    @property
    def roles(self) -> dict[str, tuple[UUID, ...]]:
        return dict(self._roles)
