from realty_crm.platform.security.context import Principal
from realty_crm.platform.security.errors import (
    ConflictError,
    DomainError,
    DuplicateError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from realty_crm.platform.security.roles import ResourceAction, ResourceType, Role

__all__ = [
    "Principal",
    "DomainError",
    "ConflictError",
    "DuplicateError",
    "ForbiddenError",
    "NotFoundError",
    "ValidationError",
    "ResourceAction",
    "ResourceType",
    "Role",
]
