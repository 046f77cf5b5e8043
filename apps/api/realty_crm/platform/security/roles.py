from __future__ import annotations

from enum import StrEnum


class Role(StrEnum):
    ADMIN = "admin"
    HR = "hr"
    OPERATIONS_MANAGER = "operations_manager"
    OPERATIONS = "operations"
    AGENT_MANAGER = "agent_manager"
    TEAM_LEADER = "team_leader"
    AGENT = "agent"


class ResourceType(StrEnum):
    LEAD = "lead"
    PROPERTY = "property"
    VIEWING = "viewing"
    TEAM = "team"
    USER = "user"


class ResourceAction(StrEnum):
    LIST = "list"
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


MANAGEMENT_ROLES = frozenset({Role.ADMIN, Role.HR, Role.OPERATIONS_MANAGER, Role.OPERATIONS, Role.AGENT_MANAGER})
DELETE_ROLES = frozenset({Role.ADMIN, Role.OPERATIONS_MANAGER, Role.OPERATIONS})
USER_ADMIN_ROLES = frozenset({Role.ADMIN, Role.HR})
ASSIGNABLE_OWNER_ROLES = frozenset({Role.AGENT, Role.TEAM_LEADER})

_READ_WRITE = frozenset({ResourceAction.LIST, ResourceAction.READ, ResourceAction.CREATE, ResourceAction.UPDATE})
_READ_ONLY = frozenset({ResourceAction.LIST, ResourceAction.READ})
_EVERYTHING = frozenset(ResourceAction)

# Resources whose rows carry an owning agent id and are filtered by scope.
OWNED_RESOURCE_TYPES = frozenset({ResourceType.LEAD, ResourceType.PROPERTY, ResourceType.VIEWING})

_CRM_RESOURCES = (ResourceType.LEAD, ResourceType.PROPERTY, ResourceType.VIEWING, ResourceType.TEAM)

# Updating another user's record is reserved to admin and hr; self-updates are checked separately.
PERMISSION_MATRIX: dict[Role, dict[ResourceType, frozenset[ResourceAction]]] = {
    Role.ADMIN: {resource: _EVERYTHING for resource in ResourceType},
    Role.OPERATIONS_MANAGER: {**{resource: _EVERYTHING for resource in _CRM_RESOURCES}, ResourceType.USER: _READ_ONLY},
    Role.OPERATIONS: {
        **{resource: _EVERYTHING for resource in _CRM_RESOURCES},
        ResourceType.TEAM: _READ_ONLY,
        ResourceType.USER: _READ_ONLY,
    },
    Role.HR: {**{resource: _READ_WRITE for resource in _CRM_RESOURCES}, ResourceType.USER: _READ_WRITE},
    Role.AGENT_MANAGER: {**{resource: _READ_WRITE for resource in _CRM_RESOURCES}, ResourceType.USER: _READ_ONLY},
    Role.TEAM_LEADER: {
        ResourceType.LEAD: _READ_WRITE,
        ResourceType.PROPERTY: _READ_ONLY,
        ResourceType.VIEWING: _READ_WRITE,
        ResourceType.TEAM: _READ_ONLY,
        ResourceType.USER: _READ_ONLY,
    },
    Role.AGENT: {
        ResourceType.LEAD: _READ_WRITE,
        ResourceType.PROPERTY: _READ_ONLY,
        ResourceType.VIEWING: _READ_WRITE,
        ResourceType.TEAM: frozenset(),
        ResourceType.USER: _READ_ONLY,
    },
}


def is_action_permitted(role: Role, resource_type: ResourceType, action: ResourceAction) -> bool:
    return action in PERMISSION_MATRIX.get(role, {}).get(resource_type, frozenset())


def parse_role(value: str) -> Role | None:
    try:
        return Role(value.strip().lower())
    except ValueError:
        return None
