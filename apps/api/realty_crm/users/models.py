from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from realty_crm.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    # Mirror of the active team_assignments row; written only by the assignment ledger.
    is_assigned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    assigned_to: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(
            "role IN ('admin', 'hr', 'operations_manager', 'operations', 'agent_manager', 'team_leader', 'agent')",
            name="ck_users_role",
        ),
        CheckConstraint(
            "(is_assigned AND assigned_to IS NOT NULL) OR (NOT is_assigned AND assigned_to IS NULL)",
            name="ck_users_assignment_cache",
        ),
    )


Index("ix_users_role", User.role)
Index("ix_users_assigned_to", User.assigned_to)
