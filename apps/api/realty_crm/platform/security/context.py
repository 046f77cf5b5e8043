from __future__ import annotations

from dataclasses import dataclass

from realty_crm.platform.security.roles import MANAGEMENT_ROLES, Role


@dataclass(slots=True, frozen=True)
class Principal:
    """Verified actor issuing a request: user id plus role."""

    user_id: int
    role: Role
    correlation_id: str | None = None

    @property
    def is_management(self) -> bool:
        return self.role in MANAGEMENT_ROLES
