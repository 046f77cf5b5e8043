from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from realty_crm.api.deps import domain_error_response, get_current_principal
from realty_crm.core.database import get_db
from realty_crm.platform.security import scope as scope_resolver
from realty_crm.platform.security.context import Principal
from realty_crm.platform.security.errors import DomainError, ValidationError
from realty_crm.platform.security.roles import OWNED_RESOURCE_TYPES, ResourceType


router = APIRouter(prefix="/api/scope", tags=["security"])


class ScopeRead(BaseModel):
    resource_type: str
    kind: Literal["all", "self", "team"]
    owner_ids: list[int] | None = None


def _owned_resource_type(value: str) -> ResourceType:
    try:
        resource_type = ResourceType(value)
    except ValueError:
        resource_type = None
    if resource_type not in OWNED_RESOURCE_TYPES:
        raise ValidationError("Unknown resource type", details={"resource_type": value})
    return resource_type


@router.get("/{resource_type}", response_model=ScopeRead)
def describe_scope(
    request: Request,
    resource_type: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ScopeRead | JSONResponse:
    try:
        resolved_type = _owned_resource_type(resource_type)
        resolved = scope_resolver.resolve(db, principal, resolved_type)
        return ScopeRead(resource_type=resolved_type.value, **scope_resolver.describe(resolved))
    except DomainError as exc:
        return domain_error_response(request, exc)
