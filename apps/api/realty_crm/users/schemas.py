from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


RoleName = Literal["admin", "hr", "operations_manager", "operations", "agent_manager", "team_leader", "agent"]


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    role: RoleName
    is_active: bool
    is_assigned: bool
    assigned_to: int | None
    created_at: datetime
    updated_at: datetime


class UserUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    email: str | None = Field(default=None, min_length=3)
    role: RoleName | None = None
    is_active: bool | None = None
