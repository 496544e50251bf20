"""initial_recurrence_schema

Revision ID: 001_initial_recurrence
Revises:
Create Date: 2026-10-19

Creates templates, groups, recurrence rules and task instances.

task_instance carries the (recurrence_rule_id, assignee_id, scheduled_date)
unique key that makes reconciliation idempotent, and the
(status, scheduled_date) index the nightly missed-task sweep filters on.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB


revision = "001_initial_recurrence"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "task_template",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("coach_id", UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.Column("category", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("duration_minutes IS NULL OR duration_minutes > 0", name="ck_task_template_duration_positive"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_task_template_coach_id", "task_template", ["coach_id"], unique=False)

    op.create_table(
        "task_group",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("coach_id", UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_task_group_coach_id", "task_group", ["coach_id"], unique=False)

    op.create_table(
        "group_member",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("group_id", UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column("role", sa.Text(), nullable=False, server_default=sa.text("'member'")),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["group_id"], ["task_group.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("group_id", "user_id", name="uq_group_member_group_user"),
    )
    op.create_index("ix_group_member_user_id", "group_member", ["user_id"], unique=False)

    op.create_table(
        "recurrence_rule",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("owner_id", UUID(as_uuid=True), nullable=False),
        sa.Column("template_id", UUID(as_uuid=True), nullable=True),
        sa.Column("assignee_id", UUID(as_uuid=True), nullable=True),
        sa.Column("group_id", UUID(as_uuid=True), nullable=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.Column("scheduled_time", sa.Time(), nullable=True),
        sa.Column("recurrence_type", sa.Text(), nullable=False),
        sa.Column("days_of_week", JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("interval_days", sa.Integer(), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["template_id"], ["task_template.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["group_id"], ["task_group.id"]),
        sa.CheckConstraint("end_date IS NULL OR end_date >= start_date", name="ck_recurrence_rule_date_order"),
        sa.CheckConstraint("(assignee_id IS NULL) <> (group_id IS NULL)", name="ck_recurrence_rule_single_target"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_recurrence_rule_owner_id", "recurrence_rule", ["owner_id"], unique=False)
    op.create_index("ix_recurrence_rule_is_active", "recurrence_rule", ["is_active"], unique=False)

    op.create_table(
        "task_instance",
        sa.Column("id", UUID(as_uuid=True), nullable=False),
        sa.Column("recurrence_rule_id", UUID(as_uuid=True), nullable=True),
        sa.Column("assignee_id", UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.Column("scheduled_date", sa.Date(), nullable=False),
        sa.Column("scheduled_time", sa.Time(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_customized", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("coach_note", sa.Text(), nullable=True),
        sa.Column("student_note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_by", UUID(as_uuid=True), nullable=True),
        sa.ForeignKeyConstraint(["recurrence_rule_id"], ["recurrence_rule.id"], ondelete="SET NULL"),
        sa.CheckConstraint("status IN ('pending', 'completed', 'missed')", name="ck_task_instance_status"),
        sa.CheckConstraint(
            "(status = 'completed' AND completed_at IS NOT NULL) OR "
            "(status <> 'completed' AND completed_at IS NULL)",
            name="ck_task_instance_completed_at",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "recurrence_rule_id", "assignee_id", "scheduled_date",
            name="uq_task_instance_rule_assignee_date",
        ),
    )
    op.create_index(
        "ix_task_instance_status_scheduled_date", "task_instance", ["status", "scheduled_date"], unique=False
    )
    op.create_index(
        "ix_task_instance_assignee_scheduled_date", "task_instance", ["assignee_id", "scheduled_date"], unique=False
    )


def downgrade() -> None:
    op.drop_index("ix_task_instance_assignee_scheduled_date", table_name="task_instance")
    op.drop_index("ix_task_instance_status_scheduled_date", table_name="task_instance")
    op.drop_table("task_instance")
    op.drop_index("ix_recurrence_rule_is_active", table_name="recurrence_rule")
    op.drop_index("ix_recurrence_rule_owner_id", table_name="recurrence_rule")
    op.drop_table("recurrence_rule")
    op.drop_index("ix_group_member_user_id", table_name="group_member")
    op.drop_table("group_member")
    op.drop_index("ix_task_group_coach_id", table_name="task_group")
    op.drop_table("task_group")
    op.drop_index("ix_task_template_coach_id", table_name="task_template")
    op.drop_table("task_template")
