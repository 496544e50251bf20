from sqlalchemy import Column, Integer, Boolean, CheckConstraint, Date, DateTime, ForeignKey, Text, Time, Index, UniqueConstraint, JSON, Uuid
from sqlalchemy.sql import func
from core.database import Base
import uuid


# Instance lifecycle states
STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_MISSED = "missed"
INSTANCE_STATUSES = (STATUS_PENDING, STATUS_COMPLETED, STATUS_MISSED)

# Recurrence kinds
RECURRENCE_ONCE = "once"
RECURRENCE_DAILY = "daily"
RECURRENCE_WEEKLY = "weekly"
RECURRENCE_CUSTOM_INTERVAL = "custom_interval"
RECURRENCE_TYPES = (RECURRENCE_ONCE, RECURRENCE_DAILY, RECURRENCE_WEEKLY, RECURRENCE_CUSTOM_INTERVAL)


class TaskTemplate(Base):
    """
    Reusable task content owned by a coach.

    Rules linked to a template take their name/description/duration from it,
    so template edits flow into not-yet-customized future instances.
    """
    __tablename__ = "task_template"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    coach_id = Column(Uuid, nullable=False, index=True)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    category = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("duration_minutes IS NULL OR duration_minutes > 0", name="ck_task_template_duration_positive"),
    )


class TaskGroup(Base):
    """A coach's class/group. Group-targeted rules fan out to every member."""
    __tablename__ = "task_group"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    coach_id = Column(Uuid, nullable=False, index=True)
    name = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class GroupMember(Base):
    __tablename__ = "group_member"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    group_id = Column(Uuid, ForeignKey("task_group.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Uuid, nullable=False)
    role = Column(Text, default="member", nullable=False)
    joined_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("group_id", "user_id", name="uq_group_member_group_user"),
        Index("ix_group_member_user_id", "user_id"),
    )


class RecurrenceRule(Base):
    """
    How a task repeats, and for whom.

    Exactly one of assignee_id / group_id is set. Deactivating or deleting a
    rule never deletes already-materialized history.
    """
    __tablename__ = "recurrence_rule"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = Column(Uuid, nullable=False)  # coach
    template_id = Column(Uuid, ForeignKey("task_template.id", ondelete="SET NULL"), nullable=True)
    assignee_id = Column(Uuid, nullable=True)
    group_id = Column(Uuid, ForeignKey("task_group.id"), nullable=True)

    # Task content used when no template is linked
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    scheduled_time = Column(Time, nullable=True)

    recurrence_type = Column(Text, nullable=False)  # once | daily | weekly | custom_interval
    days_of_week = Column(JSON, nullable=False, default=list)  # 0=Sunday .. 6=Saturday
    interval_days = Column(Integer, nullable=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)  # NULL = open-ended
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("end_date IS NULL OR end_date >= start_date", name="ck_recurrence_rule_date_order"),
        CheckConstraint(
            "(assignee_id IS NULL) <> (group_id IS NULL)",
            name="ck_recurrence_rule_single_target",
        ),
        Index("ix_recurrence_rule_owner_id", "owner_id"),
        Index("ix_recurrence_rule_is_active", "is_active"),
    )


class TaskInstance(Base):
    """
    One dated occurrence of a task for one assignee.

    Lifecycle: pending -> completed (assignee) / pending (un-check);
    pending -> missed only through the nightly sweep.
    """
    __tablename__ = "task_instance"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # NULL for manually created instances, or once the rule has been deleted
    recurrence_rule_id = Column(Uuid, ForeignKey("recurrence_rule.id", ondelete="SET NULL"), nullable=True)
    assignee_id = Column(Uuid, nullable=False)
    # Coach who assigned it: the rule owner, or the creator of a manual instance
    owner_id = Column(Uuid, nullable=True)

    name = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    scheduled_date = Column(Date, nullable=False)
    scheduled_time = Column(Time, nullable=True)

    status = Column(Text, default=STATUS_PENDING, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    # Set once someone edits content away from the rule/template snapshot
    is_customized = Column(Boolean, default=False, nullable=False)

    coach_note = Column(Text, nullable=True)
    student_note = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    updated_by = Column(Uuid, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "recurrence_rule_id", "assignee_id", "scheduled_date",
            name="uq_task_instance_rule_assignee_date",
        ),
        # Sweeper: WHERE status = 'pending' AND scheduled_date < today
        Index("ix_task_instance_status_scheduled_date", "status", "scheduled_date"),
        Index("ix_task_instance_assignee_scheduled_date", "assignee_id", "scheduled_date"),
        Index("ix_task_instance_owner_scheduled_date", "owner_id", "scheduled_date"),
        CheckConstraint(
            "status IN ('pending', 'completed', 'missed')",
            name="ck_task_instance_status",
        ),
        CheckConstraint(
            "(status = 'completed' AND completed_at IS NOT NULL) OR "
            "(status <> 'completed' AND completed_at IS NULL)",
            name="ck_task_instance_completed_at",
        ),
    )
