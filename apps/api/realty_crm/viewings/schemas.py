from __future__ import annotations

from datetime import date, datetime, time
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


ViewingStatusName = Literal["Scheduled", "Completed", "Cancelled", "No Show", "Rescheduled"]
ViewingMutation = Literal["read", "update", "delete"]
# "All" is the UI's no-op status filter.
ViewingStatusFilter = Literal[Literal["All"], ViewingStatusName]


class ViewingCreate(BaseModel):
    property_id: int = Field(gt=0)
    lead_id: int = Field(gt=0)
    agent_id: int | None = Field(default=None, gt=0)
    viewing_date: date
    viewing_time: time
    status: ViewingStatusName = "Scheduled"
    is_serious: bool = False
    description: str | None = None
    notes: str | None = None
    initial_update: str | None = Field(default=None, min_length=1)


class FollowUpCreate(BaseModel):
    property_id: int | None = Field(default=None, gt=0)
    lead_id: int | None = Field(default=None, gt=0)
    agent_id: int | None = Field(default=None, gt=0)
    viewing_date: date | None = None
    viewing_time: time | None = None
    status: ViewingStatusName = "Scheduled"
    is_serious: bool = False
    description: str | None = None
    notes: str | None = None


class ViewingUpdate(BaseModel):
    property_id: int | None = Field(default=None, gt=0)
    lead_id: int | None = Field(default=None, gt=0)
    agent_id: int | None = Field(default=None, gt=0)
    viewing_date: date | None = None
    viewing_time: time | None = None
    status: ViewingStatusName | None = None
    is_serious: bool | None = None
    description: str | None = None
    notes: str | None = None


class ViewingFilters(BaseModel):
    status: ViewingStatusName | None = None
    agent_id: int | None = None
    property_id: int | None = None
    lead_id: int | None = None
    date_from: date | None = None
    date_to: date | None = None


class ViewingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    property_id: int
    lead_id: int
    agent_id: int
    viewing_date: date
    viewing_time: time
    status: ViewingStatusName
    is_serious: bool
    description: str | None
    notes: str | None
    parent_viewing_id: int | None
    created_at: datetime
    updated_at: datetime
    sub_viewings: list[ViewingRead] | None = None


class ViewingStatsRead(BaseModel):
    total_viewings: int
    scheduled: int
    completed: int
    cancelled: int
    no_show: int
    rescheduled: int


class MutationAuthorizationRead(BaseModel):
    viewing_id: int
    action: ViewingMutation
    allowed: bool
    reason: str | None = None
