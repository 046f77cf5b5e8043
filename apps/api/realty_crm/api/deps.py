from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from realty_crm.context import get_correlation_id
from realty_crm.core.auth import AuthUser, get_current_user as get_auth_user
from realty_crm.platform.security.context import Principal
from realty_crm.platform.security.errors import DomainError
from realty_crm.platform.security.roles import parse_role


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def domain_error_response(request: Request, exc: DomainError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )


def get_current_principal(request: Request, auth_user: AuthUser = Depends(get_auth_user)) -> Principal:
    role = parse_role(auth_user.role)
    if role is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Unknown role: {auth_user.role}")
    try:
        user_id = int(auth_user.sub)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token subject must be a user id") from exc
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    return Principal(user_id=user_id, role=role, correlation_id=correlation_id)
