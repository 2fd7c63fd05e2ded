"""initial_assignment_engine_schema

Create directory, work item, assignment, SLA, role action, scheduling,
notification and optimizer audit tables.

Revision ID: a1c0e5f2b7d4
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "a1c0e5f2b7d4"
down_revision = None
branch_labels = None
depends_on = None

_OPEN_SLA_WHERE = sa.text("status NOT IN ('Completed', 'Cancelled')")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "organizations" not in existing_tables:
        op.create_table(
            "organizations",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("sector", sa.String(length=100), nullable=True),
            sa.Column("region", sa.String(length=100), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_organizations_region", "organizations", ["region"])

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("username", sa.String(length=150), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=True),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column("role", sa.String(length=50), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=True),
            sa.Column("region", sa.String(length=100), nullable=True),
            sa.Column("experience_level", sa.String(length=20), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("username"),
        )
        op.create_index("ix_users_role", "users", ["role"])
        op.create_index("ix_users_organization_id", "users", ["organization_id"])

    if "work_items" not in existing_tables:
        op.create_table(
            "work_items",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("item_type", sa.String(length=10), nullable=False),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("category", sa.String(length=50), nullable=True),
            sa.Column("priority", sa.String(length=20), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("organization_id", sa.Integer(), nullable=True),
            sa.Column("parent_plan_id", sa.Integer(), nullable=True),
            sa.Column("framework_ref", sa.String(length=100), nullable=True),
            sa.Column("required_roles", sa.JSON(), nullable=True),
            sa.Column("due_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("sla_target_days", sa.Integer(), nullable=True),
            sa.Column("sla_target_hours", sa.Integer(), nullable=True),
            sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("estimated_hours", sa.Float(), nullable=True),
            sa.Column("assignment_confidence", sa.Float(), nullable=True),
            sa.Column("assignment_reasoning", sa.Text(), nullable=True),
            sa.Column("responsible_persons", sa.JSON(), nullable=True),
            sa.Column("auto_assignment_rules", sa.JSON(), nullable=True),
            sa.Column("last_auto_assignment_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("sla_start_time", sa.DateTime(timezone=True), nullable=True),
            sa.Column("sla_target_time", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["parent_plan_id"], ["work_items.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        for col in ("item_type", "category", "status", "organization_id", "parent_plan_id"):
            op.create_index(f"ix_work_items_{col}", "work_items", [col])

    if "assignments" not in existing_tables:
        op.create_table(
            "assignments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("work_item_id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("user_role", sa.String(length=50), nullable=True),
            sa.Column("assignment_type", sa.String(length=20), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("is_auto_assigned", sa.Boolean(), nullable=True),
            sa.Column("assignment_reason", sa.JSON(), nullable=True),
            sa.Column("estimated_hours", sa.Float(), nullable=True),
            sa.Column("confidence", sa.Float(), nullable=True),
            sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["work_item_id"], ["work_items.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("work_item_id", "user_id", name="uq_assignment_item_user"),
        )
        for col in ("work_item_id", "user_id", "status"):
            op.create_index(f"ix_assignments_{col}", "assignments", [col])

    if "sla_records" not in existing_tables:
        op.create_table(
            "sla_records",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("item_type", sa.String(length=10), nullable=False),
            sa.Column("item_id", sa.Integer(), nullable=False),
            sa.Column("sla_name", sa.String(length=300), nullable=True),
            sa.Column("sla_target_unit", sa.String(length=10), nullable=True),
            sa.Column("sla_target_value", sa.Integer(), nullable=False),
            sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
            sa.Column("target_time", sa.DateTime(timezone=True), nullable=False),
            sa.Column("actual_completion_time", sa.DateTime(timezone=True), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("compliance_percentage", sa.Float(), nullable=True),
            sa.Column("hours_remaining", sa.Float(), nullable=True),
            sa.Column("hours_overdue", sa.Float(), nullable=True),
            sa.Column("days_remaining", sa.Integer(), nullable=True),
            sa.Column("days_overdue", sa.Integer(), nullable=True),
            sa.Column("breach_reason", sa.Text(), nullable=True),
            sa.Column("assigned_to_id", sa.Integer(), nullable=True),
            sa.Column("responsible_persons", sa.JSON(), nullable=True),
            sa.Column("escalation_history", sa.JSON(), nullable=True),
            sa.Column("last_computed_at", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["item_id"], ["work_items.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["assigned_to_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_sla_records_item_id", "sla_records", ["item_id"])
        op.create_index("ix_sla_records_status", "sla_records", ["status"])
        op.create_index("ix_sla_records_assigned_to_id", "sla_records", ["assigned_to_id"])
        op.create_index(
            "uq_sla_open_item",
            "sla_records",
            ["item_type", "item_id"],
            unique=True,
            postgresql_where=_OPEN_SLA_WHERE,
            sqlite_where=_OPEN_SLA_WHERE,
        )

    if "role_actions" not in existing_tables:
        op.create_table(
            "role_actions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("action_type", sa.String(length=50), nullable=False),
            sa.Column("action_name", sa.String(length=200), nullable=False),
            sa.Column("action_description", sa.Text(), nullable=True),
            sa.Column("user_role", sa.String(length=50), nullable=False),
            sa.Column("entity_sector", sa.String(length=100), nullable=True),
            sa.Column("entity_region", sa.String(length=100), nullable=True),
            sa.Column("priority", sa.String(length=20), nullable=True),
            sa.Column("is_mandatory", sa.Boolean(), nullable=True),
            sa.Column("requires_approval", sa.Boolean(), nullable=True),
            sa.Column("auto_assign_threshold", sa.Integer(), nullable=True),
            sa.Column("assignment_rules", sa.JSON(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_role_actions_user_role", "role_actions", ["user_role"])

    if "scheduled_jobs" not in existing_tables:
        op.create_table(
            "scheduled_jobs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("job_name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("interval_minutes", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("is_enabled", sa.Boolean(), nullable=True),
            sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_run_status", sa.String(length=20), nullable=True),
            sa.Column("last_run_duration_ms", sa.Integer(), nullable=True),
            sa.Column("last_run_result", sa.JSON(), nullable=True),
            sa.Column("run_count", sa.Integer(), nullable=True),
            sa.Column("error_count", sa.Integer(), nullable=True),
            sa.Column("last_error", sa.Text(), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("job_name"),
        )

    if "job_locks" not in existing_tables:
        op.create_table(
            "job_locks",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("holder", sa.String(length=100), nullable=True),
            sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
        )

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("recipient_id", sa.Integer(), nullable=True),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("category", sa.String(length=30), nullable=True),
            sa.Column("severity", sa.String(length=20), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=True),
            sa.Column("entity_id", sa.Integer(), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=True),
            sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["recipient_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_recipient_id", "notifications", ["recipient_id"])

    if "optimization_logs" not in existing_tables:
        op.create_table(
            "optimization_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("log_type", sa.String(length=30), nullable=False),
            sa.Column("batch_id", sa.String(length=40), nullable=True),
            sa.Column("work_item_id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=True),
            sa.Column("score", sa.Float(), nullable=True),
            sa.Column("confidence", sa.Float(), nullable=True),
            sa.Column("estimated_hours", sa.Float(), nullable=True),
            sa.Column("reasoning", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["work_item_id"], ["work_items.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        for col in ("log_type", "batch_id", "work_item_id", "created_at"):
            op.create_index(f"ix_optimization_logs_{col}", "optimization_logs", [col])

    if "optimization_reports" not in existing_tables:
        op.create_table(
            "optimization_reports",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("report_date", sa.Date(), nullable=False),
            sa.Column("payload", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_optimization_reports_report_date", "optimization_reports", ["report_date"])


def downgrade():
    for table in (
        "optimization_reports", "optimization_logs", "notifications", "job_locks",
        "scheduled_jobs", "role_actions", "sla_records", "assignments", "work_items",
        "users", "organizations",
    ):
        op.drop_table(table)
