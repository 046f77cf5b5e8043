from __future__ import annotations

from typing import Any


class DomainError(Exception):
    """Base error for business-rule failures surfaced to controllers unchanged."""

    status_code = 400
    code = "domain_error"

    def __init__(self, message: str, *, details: Any = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)


class ValidationError(DomainError):
    """Malformed input, e.g. a user of the wrong role for an assignment."""

    status_code = 422
    code = "validation_error"


class NotFoundError(DomainError):
    status_code = 404
    code = "not_found"


class ConflictError(DomainError):
    """A business invariant was violated by a rule or a lost race."""

    status_code = 409
    code = "conflict"


class DuplicateError(DomainError):
    status_code = 409
    code = "duplicate"


class ForbiddenError(DomainError):
    """Scope, ownership or role-matrix failure."""

    status_code = 403
    code = "forbidden"

    def __init__(self, message: str, *, resource: str | None = None, action: str | None = None, details: Any = None) -> None:
        self.resource = resource
        self.action = action
        super().__init__(message, details=details)
