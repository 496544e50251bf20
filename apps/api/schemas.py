from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime, date, time
from uuid import UUID
from typing import Optional, List, Dict, Any, Literal


RecurrenceType = Literal["once", "daily", "weekly", "custom_interval"]
InstanceStatus = Literal["pending", "completed", "missed"]


# ---------------------------------------------------------------------------
# Recurrence rules
# ---------------------------------------------------------------------------


class RecurrenceRuleCreate(BaseModel):
    """Schema for creating a recurrence rule (coach only)"""
    name: str
    description: Optional[str] = None
    duration_minutes: Optional[int] = None
    scheduled_time: Optional[time] = None
    template_id: Optional[UUID] = None
    assignee_id: Optional[UUID] = None  # exactly one of assignee_id / group_id
    group_id: Optional[UUID] = None
    recurrence_type: RecurrenceType
    days_of_week: List[int] = Field(default_factory=list)  # 0=Sunday .. 6=Saturday
    interval_days: Optional[int] = None
    start_date: Optional[date] = None  # defaults to today
    end_date: Optional[date] = None


class RecurrenceRuleUpdate(BaseModel):
    """Partial update; only provided fields change"""
    name: Optional[str] = None
    description: Optional[str] = None
    duration_minutes: Optional[int] = None
    scheduled_time: Optional[time] = None
    template_id: Optional[UUID] = None
    assignee_id: Optional[UUID] = None
    group_id: Optional[UUID] = None
    recurrence_type: Optional[RecurrenceType] = None
    days_of_week: Optional[List[int]] = None
    interval_days: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: Optional[bool] = None


class RecurrenceRuleResponse(BaseModel):
    id: UUID
    owner_id: UUID
    template_id: Optional[UUID] = None
    assignee_id: Optional[UUID] = None
    group_id: Optional[UUID] = None
    name: str
    description: Optional[str] = None
    duration_minutes: Optional[int] = None
    scheduled_time: Optional[time] = None
    recurrence_type: str
    days_of_week: List[int] = Field(default_factory=list)
    interval_days: Optional[int] = None
    start_date: date
    end_date: Optional[date] = None
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ReconcileSummary(BaseModel):
    window_from: date
    window_to: date
    created: int
    updated: int
    unchanged: int
    customized_skipped: int
    failed_instances: int


class RecurrenceRuleWriteResponse(BaseModel):
    rule: RecurrenceRuleResponse
    reconcile: Optional[ReconcileSummary] = None
    pruned: int = 0


class GenerateRequest(BaseModel):
    """On-demand generation window; defaults to today .. today + window"""
    from_date: Optional[date] = None
    to_date: Optional[date] = None


# ---------------------------------------------------------------------------
# Task instances
# ---------------------------------------------------------------------------


class TaskInstanceResponse(BaseModel):
    id: UUID
    recurrence_rule_id: Optional[UUID] = None
    assignee_id: UUID
    name: str
    description: Optional[str] = None
    duration_minutes: Optional[int] = None
    scheduled_date: date
    scheduled_time: Optional[time] = None
    status: InstanceStatus
    completed_at: Optional[datetime] = None
    is_customized: bool
    coach_note: Optional[str] = None
    student_note: Optional[str] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[UUID] = None
    owner_id: Optional[UUID] = None

    model_config = ConfigDict(from_attributes=True)


class TaskInstanceListResponse(BaseModel):
    items: List[TaskInstanceResponse]
    count: int
    limit: int
    offset: int


class TaskInstanceCreate(BaseModel):
    """Manual one-off instance (coach only)"""
    assignee_id: UUID
    scheduled_date: date
    name: str
    description: Optional[str] = None
    duration_minutes: Optional[int] = None
    scheduled_time: Optional[time] = None


class ToggleCompleteRequest(BaseModel):
    completed: bool


class StatusUpdateRequest(BaseModel):
    status: InstanceStatus


class NoteRequest(BaseModel):
    content: Optional[str] = Field(default=None, max_length=4000)


class TaskInstanceCustomize(BaseModel):
    """Content edit; pins the instance against reconciliation"""
    name: Optional[str] = None
    description: Optional[str] = None
    duration_minutes: Optional[int] = None
    scheduled_time: Optional[time] = None


# ---------------------------------------------------------------------------
# Templates & groups
# ---------------------------------------------------------------------------


class TaskTemplateCreate(BaseModel):
    name: str
    description: Optional[str] = None
    duration_minutes: Optional[int] = None
    category: Optional[str] = None


class TaskTemplateUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    duration_minutes: Optional[int] = None
    category: Optional[str] = None


class TaskTemplateResponse(BaseModel):
    id: UUID
    coach_id: UUID
    name: str
    description: Optional[str] = None
    duration_minutes: Optional[int] = None
    category: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class TaskGroupCreate(BaseModel):
    name: str


class TaskGroupResponse(BaseModel):
    id: UUID
    coach_id: UUID
    name: str

    model_config = ConfigDict(from_attributes=True)


class GroupMemberCreate(BaseModel):
    user_id: UUID


class GroupMemberResponse(BaseModel):
    id: UUID
    group_id: UUID
    user_id: UUID
    role: str
    joined_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Progress & jobs
# ---------------------------------------------------------------------------


class CompletionStatsResponse(BaseModel):
    assignee_id: UUID
    date_from: date
    date_to: date
    total: int
    completed: int
    missed: int
    pending: int
    completion_rate: float


class GroupProgressResponse(BaseModel):
    date: date
    completed: int
    total: int
    members: List[Dict[str, Any]]
