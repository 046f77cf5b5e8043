from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from realty_crm.users.schemas import UserRead


class AssignAgentRequest(BaseModel):
    team_leader_id: int = Field(gt=0)
    agent_id: int = Field(gt=0)


class TransferAgentRequest(BaseModel):
    current_team_leader_id: int = Field(gt=0)
    agent_id: int = Field(gt=0)
    new_team_leader_id: int = Field(gt=0)


class TeamAssignmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    team_leader_id: int
    agent_id: int
    assigned_by: int | None
    is_active: bool
    assigned_at: datetime
    deactivated_at: datetime | None


class TeamLeaderRead(BaseModel):
    agent_id: int
    team_leader: UserRead | None


class TeamMembersRead(BaseModel):
    team_leader_id: int
    member_ids: list[int]
    members: list[UserRead]


class CacheDriftRead(BaseModel):
    user_id: int
    cached_is_assigned: bool
    cached_assigned_to: int | None
    ledger_team_leader_id: int | None


class CacheConsistencyRead(BaseModel):
    consistent: bool
    drift: list[CacheDriftRead]
