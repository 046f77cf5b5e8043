from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import Select, or_, select
from sqlalchemy.orm import Session

from realty_crm.listings.models import Lead, Property
from realty_crm.listings.schemas import LeadRead, PropertyRead
from realty_crm.platform.security import gate
from realty_crm.platform.security.context import Principal
from realty_crm.platform.security.errors import NotFoundError
from realty_crm.platform.security.repository import BaseRepository
from realty_crm.platform.security.roles import ResourceAction, ResourceType


class LeadRepository(BaseRepository):
    resource_type = ResourceType.LEAD
    model = Lead


class PropertyRepository(BaseRepository):
    resource_type = ResourceType.PROPERTY
    model = Property


@dataclass(slots=True)
class LeadService:
    repository: LeadRepository = LeadRepository()

    def list_leads(
        self,
        session: Session,
        principal: Principal,
        *,
        status: str | None = None,
        agent_id: int | None = None,
        search: str | None = None,
    ) -> list[LeadRead]:
        gate.require(session, principal, ResourceType.LEAD, ResourceAction.LIST)
        stmt: Select[tuple[Lead]] = select(Lead)
        if status is not None:
            stmt = stmt.where(Lead.status == status)
        if agent_id is not None:
            stmt = stmt.where(Lead.agent_id == agent_id)
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(or_(Lead.customer_name.ilike(pattern), Lead.phone_number.ilike(pattern)))
        stmt = self.repository.apply_scope_query(stmt, self.repository.resolve_scope(session, principal))
        rows = session.scalars(stmt.order_by(Lead.created_at.desc(), Lead.id.desc())).all()
        return [LeadRead.model_validate(item) for item in rows]

    def get_lead(self, session: Session, principal: Principal, lead_id: int) -> LeadRead:
        gate.require(session, principal, ResourceType.LEAD, ResourceAction.READ, target_id=lead_id)
        lead = self.repository.get(session, lead_id)
        if lead is None:
            raise NotFoundError("Lead not found", details={"id": lead_id})
        return LeadRead.model_validate(lead)


@dataclass(slots=True)
class PropertyService:
    repository: PropertyRepository = PropertyRepository()

    def list_properties(
        self,
        session: Session,
        principal: Principal,
        *,
        agent_id: int | None = None,
        property_type: str | None = None,
        search: str | None = None,
    ) -> list[PropertyRead]:
        gate.require(session, principal, ResourceType.PROPERTY, ResourceAction.LIST)
        stmt: Select[tuple[Property]] = select(Property)
        if agent_id is not None:
            stmt = stmt.where(Property.agent_id == agent_id)
        if property_type is not None:
            stmt = stmt.where(Property.property_type == property_type)
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(or_(Property.reference_number.ilike(pattern), Property.location.ilike(pattern)))
        stmt = self.repository.apply_scope_query(stmt, self.repository.resolve_scope(session, principal))
        rows = session.scalars(stmt.order_by(Property.created_at.desc(), Property.id.desc())).all()
        return [PropertyRead.model_validate(item) for item in rows]

    def get_property(self, session: Session, principal: Principal, property_id: int) -> PropertyRead:
        gate.require(session, principal, ResourceType.PROPERTY, ResourceAction.READ, target_id=property_id)
        item = self.repository.get(session, property_id)
        if item is None:
            raise NotFoundError("Property not found", details={"id": property_id})
        return PropertyRead.model_validate(item)


lead_service = LeadService()
property_service = PropertyService()
