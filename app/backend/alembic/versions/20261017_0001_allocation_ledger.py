"""allocation ledger schema

Revision ID: 20261017_0001
Revises:
Create Date: 2026-10-17
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261017_0001"
down_revision = None
branch_labels = None
depends_on = None


employee_role = postgresql.ENUM("EMP", "PM", "HR", name="employee_role", create_type=False)
employee_status = postgresql.ENUM("ACTIVE", "EXITED", name="employee_status", create_type=False)
project_status = postgresql.ENUM(
    "DRAFT", "ACTIVE", "ON_HOLD", "COMPLETED", "CANCELLED", name="project_status", create_type=False
)


def upgrade() -> None:
    employee_role.create(op.get_bind(), checkfirst=True)
    employee_status.create(op.get_bind(), checkfirst=True)
    project_status.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "employees",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("employee_code", sa.String(length=50), nullable=False, unique=True),
        sa.Column("ldap_username", sa.String(length=100), nullable=False, unique=True),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("employee_role", employee_role, nullable=False),
        sa.Column("status", employee_status, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "projects",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("project_code", sa.String(length=50), nullable=False, unique=True),
        sa.Column("project_name", sa.String(length=255), nullable=False),
        sa.Column(
            "project_manager_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("employees.id"),
            nullable=True,
        ),
        sa.Column("status", project_status, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_projects_project_manager_id", "projects", ["project_manager_id"])
    op.create_index("ix_projects_status", "projects", ["status"])

    op.create_table(
        "project_allocation",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("emp_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False),
        sa.Column("project_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("role", sa.String(length=100), nullable=False),
        sa.Column("allocation_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("billability", sa.Boolean(), nullable=False),
        sa.Column("assigned_by", postgresql.UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=True),
        sa.Column(
            "transferred_to_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("project_allocation.id"),
            nullable=True,
        ),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "allocation_percentage > 0 AND allocation_percentage <= 100",
            name="ck_project_allocation_percentage_range",
        ),
        sa.CheckConstraint(
            "end_date IS NULL OR end_date >= start_date",
            name="ck_project_allocation_date_order",
        ),
    )
    op.create_index("ix_project_allocation_emp_id", "project_allocation", ["emp_id"])
    op.create_index("ix_project_allocation_project_id", "project_allocation", ["project_id"])
    op.create_index("ix_project_allocation_start_date", "project_allocation", ["start_date"])

    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("operation", sa.String(length=20), nullable=False),
        sa.Column("changed_by", postgresql.UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False),
        sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("changed_fields", postgresql.JSONB(), nullable=True),
    )
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"])
    op.create_index("ix_audit_logs_changed_at", "audit_logs", ["changed_at"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_changed_at", table_name="audit_logs")
    op.drop_index("ix_audit_logs_entity", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index("ix_project_allocation_start_date", table_name="project_allocation")
    op.drop_index("ix_project_allocation_project_id", table_name="project_allocation")
    op.drop_index("ix_project_allocation_emp_id", table_name="project_allocation")
    op.drop_table("project_allocation")

    op.drop_index("ix_projects_status", table_name="projects")
    op.drop_index("ix_projects_project_manager_id", table_name="projects")
    op.drop_table("projects")

    op.drop_table("employees")

    project_status.drop(op.get_bind(), checkfirst=True)
    employee_status.drop(op.get_bind(), checkfirst=True)
    employee_role.drop(op.get_bind(), checkfirst=True)
