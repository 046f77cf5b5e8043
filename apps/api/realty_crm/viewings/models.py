from __future__ import annotations

from datetime import date, datetime, time
from enum import StrEnum

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text, Time
from sqlalchemy.orm import Mapped, mapped_column, relationship

from realty_crm.core.database import Base
from realty_crm.users.models import utcnow


class ViewingStatus(StrEnum):
    SCHEDULED = "Scheduled"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    NO_SHOW = "No Show"
    RESCHEDULED = "Rescheduled"


class Viewing(Base):
    __tablename__ = "viewings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    property_id: Mapped[int] = mapped_column(Integer, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False)
    lead_id: Mapped[int] = mapped_column(Integer, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False)
    agent_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    viewing_date: Mapped[date] = mapped_column(Date(), nullable=False)
    viewing_time: Mapped[time] = mapped_column(Time(), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=ViewingStatus.SCHEDULED.value, server_default="Scheduled")
    is_serious: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    parent_viewing_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("viewings.id", ondelete="CASCADE"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    follow_ups: Mapped[list[Viewing]] = relationship(
        "Viewing",
        cascade="all, delete-orphan",
    )

    @property
    def is_root(self) -> bool:
        return self.parent_viewing_id is None


Index("ix_viewings_agent_id", Viewing.agent_id)
Index("ix_viewings_parent_viewing_id", Viewing.parent_viewing_id)
Index(
    "ix_viewings_root_ordering",
    Viewing.is_serious,
    Viewing.viewing_date,
    Viewing.viewing_time,
    postgresql_where=Viewing.parent_viewing_id.is_(None),
    sqlite_where=Viewing.parent_viewing_id.is_(None),
)
Index(
    "uq_viewings_root_lead_property",
    Viewing.lead_id,
    Viewing.property_id,
    unique=True,
    postgresql_where=Viewing.parent_viewing_id.is_(None),
    sqlite_where=Viewing.parent_viewing_id.is_(None),
)
