from __future__ import annotations

from typing import Any

from sqlalchemy import ColumnElement, Select
from sqlalchemy.orm import Session

from realty_crm.platform.security import scope as scope_resolver
from realty_crm.platform.security.context import Principal
from realty_crm.platform.security.roles import ResourceType
from realty_crm.platform.security.scope import Scope


class BaseRepository:
    """Scoped access to a table whose rows are owned through an agent id column."""

    resource_type: ResourceType
    model: Any = None
    owner_field = "agent_id"

    def owner_column(self) -> ColumnElement[Any]:
        return getattr(self.model, self.owner_field)

    def resolve_scope(self, session: Session, principal: Principal) -> Scope:
        return scope_resolver.resolve(session, principal, self.resource_type)

    def apply_scope_query(self, query: Select[Any], scope: Scope) -> Select[Any]:
        return scope_resolver.apply(scope, query, self.owner_column())

    def get(self, session: Session, record_id: int) -> Any:
        return session.get(self.model, record_id)
