"""Role-derived record scopes.

A scope is the set of owning-agent ids a principal may see or act on. It is
resolved from the principal's role and, for team leaders, from live team
membership in the assignment ledger. Scopes only ever narrow a query.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from sqlalchemy import ColumnElement, Select, false
from sqlalchemy.orm import Session

from realty_crm.platform.security.context import Principal
from realty_crm.platform.security.roles import MANAGEMENT_ROLES, ResourceType, Role
from realty_crm.teams.service import assignment_ledger


@dataclass(slots=True, frozen=True)
class AllScope:
    kind = "all"

    def allows(self, owner_id: int | None) -> bool:
        return True


@dataclass(slots=True, frozen=True)
class OwnedBySelf:
    user_id: int
    kind = "self"

    def allows(self, owner_id: int | None) -> bool:
        return owner_id is not None and owner_id == self.user_id


@dataclass(slots=True, frozen=True)
class OwnedByAnyOf:
    owner_ids: frozenset[int]
    kind = "team"

    def allows(self, owner_id: int | None) -> bool:
        return owner_id is not None and owner_id in self.owner_ids


Scope = Union[AllScope, OwnedBySelf, OwnedByAnyOf]


def resolve(session: Session, principal: Principal, resource_type: ResourceType) -> Scope:
    """Map a principal to its scope. The mapping is identical for every owned resource type."""

    if principal.role in MANAGEMENT_ROLES:
        return AllScope()
    if principal.role == Role.TEAM_LEADER:
        members = assignment_ledger.get_team_members(session, principal.user_id)
        return OwnedByAnyOf(frozenset({principal.user_id, *members}))
    return OwnedBySelf(principal.user_id)


def scope_predicate(scope: Scope, owner_column: ColumnElement[Any]) -> ColumnElement[bool] | None:
    if isinstance(scope, AllScope):
        return None
    if isinstance(scope, OwnedBySelf):
        return owner_column == scope.user_id
    if not scope.owner_ids:
        return false()
    return owner_column.in_(sorted(scope.owner_ids))


def apply(scope: Scope, query: Select[Any], owner_column: ColumnElement[Any]) -> Select[Any]:
    """AND the scope predicate into ``query``; caller filters already on it are kept."""

    predicate = scope_predicate(scope, owner_column)
    if predicate is None:
        return query
    return query.where(predicate)


def describe(scope: Scope) -> dict[str, Any]:
    if isinstance(scope, OwnedBySelf):
        return {"kind": scope.kind, "owner_ids": [scope.user_id]}
    if isinstance(scope, OwnedByAnyOf):
        return {"kind": scope.kind, "owner_ids": sorted(scope.owner_ids)}
    return {"kind": scope.kind, "owner_ids": None}
