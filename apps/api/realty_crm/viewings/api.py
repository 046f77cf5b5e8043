from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from realty_crm.api.deps import domain_error_response, get_current_principal
from realty_crm.core.database import get_db
from realty_crm.platform.security.context import Principal
from realty_crm.platform.security.errors import DomainError
from realty_crm.viewings.schemas import (
    FollowUpCreate,
    MutationAuthorizationRead,
    ViewingCreate,
    ViewingFilters,
    ViewingMutation,
    ViewingRead,
    ViewingStatsRead,
    ViewingStatusFilter,
    ViewingUpdate,
)
from realty_crm.viewings.service import viewing_hierarchy


router = APIRouter(prefix="/api/viewings", tags=["viewings"])


def get_viewing_filters(
    status_filter: ViewingStatusFilter | None = Query(default=None, alias="status"),
    agent_filter: int | None = Query(default=None, alias="agent_id"),
    property_id: int | None = Query(default=None),
    lead_id: int | None = Query(default=None),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
) -> ViewingFilters:
    return ViewingFilters(
        status=None if status_filter == "All" else status_filter,
        agent_id=agent_filter,
        property_id=property_id,
        lead_id=lead_id,
        date_from=date_from,
        date_to=date_to,
    )


@router.post("", response_model=ViewingRead, status_code=status.HTTP_201_CREATED)
def create_root_viewing(
    request: Request,
    payload: ViewingCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ViewingRead | JSONResponse:
    try:
        return viewing_hierarchy.create_root(db, principal, payload)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("", response_model=list[ViewingRead])
def list_viewings(
    request: Request,
    filters: ViewingFilters = Depends(get_viewing_filters),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[ViewingRead] | JSONResponse:
    try:
        return viewing_hierarchy.list_roots(db, principal, filters)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("/stats", response_model=ViewingStatsRead)
def viewing_stats(
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ViewingStatsRead | JSONResponse:
    try:
        return viewing_hierarchy.stats(db, principal)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("/agents/{agent_id}", response_model=list[ViewingRead])
def list_viewings_for_agent(
    request: Request,
    agent_id: int,
    filters: ViewingFilters = Depends(get_viewing_filters),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[ViewingRead] | JSONResponse:
    try:
        return viewing_hierarchy.list_for_agent(db, principal, agent_id, filters)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("/{viewing_id}", response_model=ViewingRead)
def get_viewing(
    request: Request,
    viewing_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ViewingRead | JSONResponse:
    try:
        return viewing_hierarchy.get_by_id(db, principal, viewing_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.patch("/{viewing_id}", response_model=ViewingRead)
def update_viewing(
    request: Request,
    viewing_id: int,
    payload: ViewingUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ViewingRead | JSONResponse:
    try:
        return viewing_hierarchy.update_viewing(db, principal, viewing_id, payload)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.delete("/{viewing_id}", status_code=status.HTTP_204_NO_CONTENT, response_model=None)
def delete_viewing(
    request: Request,
    viewing_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> Response:
    try:
        viewing_hierarchy.delete_viewing(db, principal, viewing_id)
    except DomainError as exc:
        return domain_error_response(request, exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{viewing_id}/authorization", response_model=MutationAuthorizationRead)
def authorize_viewing_mutation(
    request: Request,
    viewing_id: int,
    action: ViewingMutation = Query(default="update"),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> MutationAuthorizationRead | JSONResponse:
    try:
        return viewing_hierarchy.authorize_mutation(db, principal, viewing_id, action)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("/{viewing_id}/follow-ups", response_model=list[ViewingRead])
def list_follow_up_viewings(
    request: Request,
    viewing_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[ViewingRead] | JSONResponse:
    try:
        return viewing_hierarchy.list_follow_ups(db, principal, viewing_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.post("/{viewing_id}/follow-ups", response_model=ViewingRead, status_code=status.HTTP_201_CREATED)
def create_follow_up_viewing(
    request: Request,
    viewing_id: int,
    payload: FollowUpCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ViewingRead | JSONResponse:
    try:
        return viewing_hierarchy.create_follow_up(db, principal, viewing_id, payload)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.patch("/{viewing_id}/follow-ups/{follow_up_id}", response_model=ViewingRead)
def update_follow_up_viewing(
    request: Request,
    viewing_id: int,
    follow_up_id: int,
    payload: ViewingUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> ViewingRead | JSONResponse:
    try:
        return viewing_hierarchy.update_follow_up(db, principal, viewing_id, follow_up_id, payload)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.delete(
    "/{viewing_id}/follow-ups/{follow_up_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_model=None,
)
def delete_follow_up_viewing(
    request: Request,
    viewing_id: int,
    follow_up_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> Response:
    try:
        viewing_hierarchy.delete_follow_up(db, principal, viewing_id, follow_up_id)
    except DomainError as exc:
        return domain_error_response(request, exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
