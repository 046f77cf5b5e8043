from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer
from sqlalchemy.orm import Mapped, mapped_column

from realty_crm.core.database import Base
from realty_crm.users.models import utcnow


class TeamAssignment(Base):
    """Append-only ledger row linking an agent to a team leader."""

    __tablename__ = "team_assignments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    team_leader_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    agent_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    assigned_by: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    deactivated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("team_leader_id <> agent_id", name="ck_team_assignments_distinct_users"),
    )


Index("ix_team_assignments_agent_id", TeamAssignment.agent_id)
Index(
    "ix_team_assignments_leader_active",
    TeamAssignment.team_leader_id,
    postgresql_where=TeamAssignment.is_active.is_(True),
    sqlite_where=TeamAssignment.is_active.is_(True),
)
Index(
    "uq_team_assignments_active_agent",
    TeamAssignment.agent_id,
    unique=True,
    postgresql_where=TeamAssignment.is_active.is_(True),
    sqlite_where=TeamAssignment.is_active.is_(True),
)
