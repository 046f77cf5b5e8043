from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from realty_crm import audit
from realty_crm.listings.models import Lead, Property
from realty_crm.metrics import observe_authz_denied
from realty_crm.platform.security import scope as scope_resolver
from realty_crm.platform.security.context import Principal
from realty_crm.platform.security.errors import ForbiddenError, NotFoundError
from realty_crm.platform.security.roles import DELETE_ROLES, ResourceAction, ResourceType, is_action_permitted
from realty_crm.platform.security.scope import Scope
from realty_crm.viewings.models import Viewing


_OWNED_MODELS: dict[ResourceType, Any] = {
    ResourceType.LEAD: Lead,
    ResourceType.PROPERTY: Property,
    ResourceType.VIEWING: Viewing,
}


@dataclass(slots=True, frozen=True)
class Decision:
    allowed: bool
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def deny(reason: str) -> Decision:
    return Decision(False, reason)


def check_role(principal: Principal, resource_type: ResourceType, action: ResourceAction) -> Decision:
    if not is_action_permitted(principal.role, resource_type, action):
        return deny(f"role '{principal.role.value}' may not {action.value} {resource_type.value}")
    if action == ResourceAction.DELETE and principal.role not in DELETE_ROLES:
        return deny(f"role '{principal.role.value}' may not delete")
    return ALLOW


def check_owner(principal: Principal, scope: Scope, owner_id: int | None) -> Decision:
    if scope.allows(owner_id):
        return ALLOW
    return deny(f"record owner is outside the {scope.kind} scope of user {principal.user_id}")


def load_owner(session: Session, resource_type: ResourceType, target_id: int) -> int | None:
    """Read the target's owning agent straight from storage."""

    model = _OWNED_MODELS[resource_type]
    row = session.execute(select(model.id, model.agent_id).where(model.id == target_id)).first()
    if row is None:
        raise NotFoundError(f"{resource_type.value.capitalize()} not found", details={"id": target_id})
    return row.agent_id


def check(
    session: Session,
    principal: Principal,
    resource_type: ResourceType,
    action: ResourceAction,
    target_id: int | None = None,
) -> Decision:
    """Role matrix first, then scope; concrete targets are re-read before any mutation."""

    decision = check_role(principal, resource_type, action)
    if not decision:
        return decision
    if target_id is None or resource_type not in _OWNED_MODELS:
        return ALLOW

    owner_id = load_owner(session, resource_type, target_id)
    scope = scope_resolver.resolve(session, principal, resource_type)
    return check_owner(principal, scope, owner_id)


def require(
    session: Session,
    principal: Principal,
    resource_type: ResourceType,
    action: ResourceAction,
    target_id: int | None = None,
) -> None:
    decision = check(session, principal, resource_type, action, target_id)
    if not decision:
        raise forbidden(principal, resource_type, action, decision.reason, target_id)


def check_self_change(principal: Principal, target_user_id: int, changes: dict[str, Any]) -> Decision:
    """No principal may change their own role or active status, whatever the resource."""

    if target_user_id != principal.user_id:
        return ALLOW
    if "role" in changes and changes["role"] is not None and changes["role"] != principal.role.value:
        return deny("You cannot change your own role.")
    if "is_active" in changes and changes["is_active"] is not None:
        return deny("You cannot change your own active status.")
    return ALLOW


def forbidden(
    principal: Principal,
    resource_type: ResourceType,
    action: ResourceAction,
    reason: str | None,
    target_id: int | None = None,
) -> ForbiddenError:
    """Build the denial error, counting and auditing it on the way."""

    reason = reason or "forbidden"
    observe_authz_denied(resource=resource_type.value, action=action.value, reason=_reason_label(reason))
    audit.record(
        actor_user_id=principal.user_id,
        entity_type="security.gate",
        entity_id=str(target_id) if target_id is not None else resource_type.value,
        action="authz.denied",
        before=None,
        after={
            "resource": resource_type.value,
            "action": action.value,
            "role": principal.role.value,
            "reason": reason,
        },
        correlation_id=principal.correlation_id,
    )
    return ForbiddenError(reason, resource=resource_type.value, action=action.value)


def _reason_label(reason: str) -> str:
    if reason.startswith("record owner"):
        return "scope"
    if reason.startswith("You cannot"):
        return "self_change"
    return "role"
