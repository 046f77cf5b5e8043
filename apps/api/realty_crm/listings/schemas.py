from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class LeadRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    customer_name: str
    phone_number: str | None
    status: str
    agent_id: int | None
    created_at: datetime
    updated_at: datetime


class PropertyRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    reference_number: str
    location: str | None
    property_type: str | None
    agent_id: int | None
    created_at: datetime
    updated_at: datetime
