from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from realty_crm.api.deps import domain_error_response, get_current_principal
from realty_crm.core.database import get_db
from realty_crm.platform.security import gate
from realty_crm.platform.security.context import Principal
from realty_crm.platform.security.errors import DomainError
from realty_crm.platform.security.roles import ResourceAction, ResourceType, Role
from realty_crm.teams.schemas import (
    AssignAgentRequest,
    CacheConsistencyRead,
    TeamAssignmentRead,
    TeamLeaderRead,
    TeamMembersRead,
    TransferAgentRequest,
)
from realty_crm.teams.service import assignment_ledger
from realty_crm.users.schemas import UserRead


router = APIRouter(prefix="/api/teams", tags=["teams"])


def _require_team_read(db: Session, principal: Principal, team_leader_id: int | None = None) -> None:
    gate.require(db, principal, ResourceType.TEAM, ResourceAction.READ)
    if principal.role == Role.TEAM_LEADER and team_leader_id != principal.user_id:
        raise gate.forbidden(
            principal,
            ResourceType.TEAM,
            ResourceAction.READ,
            "Team leaders may only view their own team",
            target_id=team_leader_id,
        )


@router.post("/assignments", response_model=TeamAssignmentRead, status_code=status.HTTP_201_CREATED)
def assign_agent(
    request: Request,
    payload: AssignAgentRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> TeamAssignmentRead | JSONResponse:
    try:
        gate.require(db, principal, ResourceType.TEAM, ResourceAction.CREATE)
        return assignment_ledger.assign(db, payload.team_leader_id, payload.agent_id, principal.user_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.delete("/{team_leader_id}/agents/{agent_id}", response_model=TeamAssignmentRead)
def remove_agent(
    request: Request,
    team_leader_id: int,
    agent_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> TeamAssignmentRead | JSONResponse:
    try:
        gate.require(db, principal, ResourceType.TEAM, ResourceAction.UPDATE)
        return assignment_ledger.remove(db, team_leader_id, agent_id, principal.user_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.post("/transfers", response_model=TeamAssignmentRead)
def transfer_agent(
    request: Request,
    payload: TransferAgentRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> TeamAssignmentRead | JSONResponse:
    try:
        gate.require(db, principal, ResourceType.TEAM, ResourceAction.UPDATE)
        return assignment_ledger.transfer(
            db,
            payload.current_team_leader_id,
            payload.agent_id,
            payload.new_team_leader_id,
            principal.user_id,
        )
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("/agents/{agent_id}/team-leader", response_model=TeamLeaderRead)
def get_team_leader_of(
    request: Request,
    agent_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> TeamLeaderRead | JSONResponse:
    try:
        if agent_id != principal.user_id:
            gate.require(db, principal, ResourceType.TEAM, ResourceAction.READ)
        leader = assignment_ledger.get_current_team_leader(db, agent_id)
        if principal.role == Role.TEAM_LEADER and agent_id != principal.user_id:
            _require_team_read(db, principal, leader.id if leader is not None else None)
        return TeamLeaderRead(agent_id=agent_id, team_leader=leader)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("/{team_leader_id}/members", response_model=TeamMembersRead)
def get_team_members_of(
    request: Request,
    team_leader_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> TeamMembersRead | JSONResponse:
    try:
        _require_team_read(db, principal, team_leader_id)
        members = assignment_ledger.list_team(db, team_leader_id)
        return TeamMembersRead(
            team_leader_id=team_leader_id,
            member_ids=sorted(assignment_ledger.get_team_members(db, team_leader_id)),
            members=members,
        )
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("/agents/{agent_id}/history", response_model=list[TeamAssignmentRead])
def get_assignment_history(
    request: Request,
    agent_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[TeamAssignmentRead] | JSONResponse:
    try:
        gate.require(db, principal, ResourceType.TEAM, ResourceAction.UPDATE)
        return assignment_ledger.get_assignment_history(db, agent_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("/unassigned-agents", response_model=list[UserRead])
def list_unassigned_agents(
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> list[UserRead] | JSONResponse:
    try:
        gate.require(db, principal, ResourceType.TEAM, ResourceAction.UPDATE)
        return assignment_ledger.list_unassigned_agents(db)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("/consistency", response_model=CacheConsistencyRead)
def verify_assignment_cache(
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> CacheConsistencyRead | JSONResponse:
    try:
        gate.require(db, principal, ResourceType.TEAM, ResourceAction.UPDATE)
        drift = assignment_ledger.verify_cache(db)
        return CacheConsistencyRead(consistent=not drift, drift=drift)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.post("/consistency/repair", response_model=CacheConsistencyRead)
def repair_assignment_cache(
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> CacheConsistencyRead | JSONResponse:
    try:
        gate.require(db, principal, ResourceType.TEAM, ResourceAction.UPDATE)
        repaired = assignment_ledger.repair_cache(db, principal.user_id)
        return CacheConsistencyRead(consistent=True, drift=repaired)
    except DomainError as exc:
        return domain_error_response(request, exc)
