"""create users, listings, team ledger and viewings tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from __future__ import annotations

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("is_assigned", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("assigned_to", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "role IN ('admin', 'hr', 'operations_manager', 'operations', 'agent_manager', 'team_leader', 'agent')",
            name="ck_users_role",
        ),
        sa.CheckConstraint(
            "(is_assigned AND assigned_to IS NOT NULL) OR (NOT is_assigned AND assigned_to IS NULL)",
            name="ck_users_assignment_cache",
        ),
        sa.ForeignKeyConstraint(["assigned_to"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index("ix_users_role", "users", ["role"], unique=False)
    op.create_index("ix_users_assigned_to", "users", ["assigned_to"], unique=False)

    op.create_table(
        "leads",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("customer_name", sa.String(length=255), nullable=False),
        sa.Column("phone_number", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="New"),
        sa.Column("agent_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["agent_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_leads_agent_id", "leads", ["agent_id"], unique=False)

    op.create_table(
        "properties",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("reference_number", sa.String(length=64), nullable=False),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("property_type", sa.String(length=64), nullable=True),
        sa.Column("agent_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["agent_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("reference_number"),
    )
    op.create_index("ix_properties_agent_id", "properties", ["agent_id"], unique=False)

    op.create_table(
        "team_assignments",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("team_leader_id", sa.Integer(), nullable=False),
        sa.Column("agent_id", sa.Integer(), nullable=False),
        sa.Column("assigned_by", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deactivated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("team_leader_id <> agent_id", name="ck_team_assignments_distinct_users"),
        sa.ForeignKeyConstraint(["team_leader_id"], ["users.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["agent_id"], ["users.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["assigned_by"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_team_assignments_agent_id", "team_assignments", ["agent_id"], unique=False)
    op.create_index(
        "ix_team_assignments_leader_active",
        "team_assignments",
        ["team_leader_id"],
        unique=False,
        postgresql_where=sa.text("is_active = true"),
        sqlite_where=sa.text("is_active = 1"),
    )
    op.create_index(
        "uq_team_assignments_active_agent",
        "team_assignments",
        ["agent_id"],
        unique=True,
        postgresql_where=sa.text("is_active = true"),
        sqlite_where=sa.text("is_active = 1"),
    )

    op.create_table(
        "viewings",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("property_id", sa.Integer(), nullable=False),
        sa.Column("lead_id", sa.Integer(), nullable=False),
        sa.Column("agent_id", sa.Integer(), nullable=False),
        sa.Column("viewing_date", sa.Date(), nullable=False),
        sa.Column("viewing_time", sa.Time(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="Scheduled"),
        sa.Column("is_serious", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("parent_viewing_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["property_id"], ["properties.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["lead_id"], ["leads.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["agent_id"], ["users.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["parent_viewing_id"], ["viewings.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_viewings_agent_id", "viewings", ["agent_id"], unique=False)
    op.create_index("ix_viewings_parent_viewing_id", "viewings", ["parent_viewing_id"], unique=False)
    op.create_index(
        "ix_viewings_root_ordering",
        "viewings",
        ["is_serious", "viewing_date", "viewing_time"],
        unique=False,
        postgresql_where=sa.text("parent_viewing_id IS NULL"),
        sqlite_where=sa.text("parent_viewing_id IS NULL"),
    )
    op.create_index(
        "uq_viewings_root_lead_property",
        "viewings",
        ["lead_id", "property_id"],
        unique=True,
        postgresql_where=sa.text("parent_viewing_id IS NULL"),
        sqlite_where=sa.text("parent_viewing_id IS NULL"),
    )


def downgrade() -> None:
    op.drop_index("uq_viewings_root_lead_property", table_name="viewings")
    op.drop_index("ix_viewings_root_ordering", table_name="viewings")
    op.drop_index("ix_viewings_parent_viewing_id", table_name="viewings")
    op.drop_index("ix_viewings_agent_id", table_name="viewings")
    op.drop_table("viewings")

    op.drop_index("uq_team_assignments_active_agent", table_name="team_assignments")
    op.drop_index("ix_team_assignments_leader_active", table_name="team_assignments")
    op.drop_index("ix_team_assignments_agent_id", table_name="team_assignments")
    op.drop_table("team_assignments")

    op.drop_index("ix_properties_agent_id", table_name="properties")
    op.drop_table("properties")

    op.drop_index("ix_leads_agent_id", table_name="leads")
    op.drop_table("leads")

    op.drop_index("ix_users_assigned_to", table_name="users")
    op.drop_index("ix_users_role", table_name="users")
    op.drop_table("users")
