from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from realty_crm.api.deps import domain_error_response, get_current_principal
from realty_crm.core.database import get_db
from realty_crm.listings.schemas import LeadRead, PropertyRead
from realty_crm.listings.service import lead_service, property_service
from realty_crm.platform.security.context import Principal
from realty_crm.platform.security.errors import DomainError


router = APIRouter(prefix="/api", tags=["listings"])


@router.get("/leads", response_model=list[LeadRead])
def list_leads(
    request: Request,
    status_filter: str | None = Query(default=None, alias="status"),
    agent_id: int | None = Query(default=None),
    search: str | None = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[LeadRead] | JSONResponse:
    try:
        return lead_service.list_leads(db, principal, status=status_filter, agent_id=agent_id, search=search)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("/leads/{lead_id}", response_model=LeadRead)
def get_lead(
    request: Request,
    lead_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> LeadRead | JSONResponse:
    try:
        return lead_service.get_lead(db, principal, lead_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("/properties", response_model=list[PropertyRead])
def list_properties(
    request: Request,
    agent_id: int | None = Query(default=None),
    property_type: str | None = Query(default=None),
    search: str | None = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[PropertyRead] | JSONResponse:
    try:
        return property_service.list_properties(
            db,
            principal,
            agent_id=agent_id,
            property_type=property_type,
            search=search,
        )
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("/properties/{property_id}", response_model=PropertyRead)
def get_property(
    request: Request,
    property_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> PropertyRead | JSONResponse:
    try:
        return property_service.get_property(db, principal, property_id)
    except DomainError as exc:
        return domain_error_response(request, exc)
