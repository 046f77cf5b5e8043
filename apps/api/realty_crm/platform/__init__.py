from realty_crm.platform.security.context import Principal
from realty_crm.platform.security.errors import DomainError
from realty_crm.platform.security.roles import Role

__all__ = [
    "Principal",
    "DomainError",
    "Role",
]
