from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from realty_crm.api.deps import domain_error_response, get_current_principal
from realty_crm.core.database import get_db
from realty_crm.platform.security.context import Principal
from realty_crm.platform.security.errors import DomainError, ValidationError
from realty_crm.platform.security.roles import parse_role
from realty_crm.users.schemas import UserRead, UserUpdate
from realty_crm.users.service import user_service


router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("", response_model=list[UserRead])
def list_users(
    request: Request,
    role: str | None = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[UserRead] | JSONResponse:
    try:
        role_filter = parse_role(role) if role else None
        if role and role_filter is None:
            raise ValidationError("Unknown role", details={"role": role})
        return user_service.list_users(db, principal, role=role_filter)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("/{user_id}", response_model=UserRead)
def get_user(
    request: Request,
    user_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> UserRead | JSONResponse:
    try:
        return user_service.get_user(db, principal, user_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.patch("/{user_id}", response_model=UserRead)
def update_user(
    request: Request,
    user_id: int,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> UserRead | JSONResponse:
    try:
        return user_service.update_user(db, principal, user_id, payload)
    except DomainError as exc:
        return domain_error_response(request, exc)
