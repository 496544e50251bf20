"""task_instance_owner

Revision ID: 002_task_instance_owner
Revises: 001_initial_recurrence
Create Date: 2026-10-19

Adds task_instance.owner_id, the coach who assigned the task, so coach
listings and mutations are scoped to their own tasks. Existing rows take the
owner of their generating rule; manual rows take the last editor.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


revision = "002_task_instance_owner"
down_revision = "001_initial_recurrence"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("task_instance", sa.Column("owner_id", UUID(as_uuid=True), nullable=True))
    op.execute(
        """
        UPDATE task_instance AS ti
        SET owner_id = rr.owner_id
        FROM recurrence_rule AS rr
        WHERE ti.recurrence_rule_id = rr.id
        """
    )
    op.execute("UPDATE task_instance SET owner_id = updated_by WHERE owner_id IS NULL")
    op.create_index(
        "ix_task_instance_owner_scheduled_date", "task_instance", ["owner_id", "scheduled_date"], unique=False
    )


def downgrade() -> None:
    op.drop_index("ix_task_instance_owner_scheduled_date", table_name="task_instance")
    op.drop_column("task_instance", "owner_id")
