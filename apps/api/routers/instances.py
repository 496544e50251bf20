"""
Task Instances API Router

What the student and coach UIs call: daily/upcoming/overdue lists,
completion toggles, notes, and coach edits. Missed status cannot be set here.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from uuid import UUID
from typing import Optional
from datetime import date
from core.database import get_db
from core.auth import Actor, get_current_actor, require_coach
from core.clock import schedule_today, utcnow
from schemas import (
    InstanceStatus,
    NoteRequest,
    StatusUpdateRequest,
    TaskInstanceCreate,
    TaskInstanceCustomize,
    TaskInstanceListResponse,
    TaskInstanceResponse,
    ToggleCompleteRequest,
)
from services import instance_api, instance_store
from services.instance_store import InstanceFilter
from services.recurrence import TaskContent

router = APIRouter(prefix="/v1/instances", tags=["instances"])


def _page(items, limit: int, offset: int) -> dict:
    return {"items": items, "count": len(items), "limit": limit, "offset": offset}


@router.get("", response_model=TaskInstanceListResponse)
def list_instances_endpoint(
    assignee_id: Optional[UUID] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    status: Optional[InstanceStatus] = Query(None),
    recurrence_rule_id: Optional[UUID] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """
    List instances ordered by scheduled date and time.

    Students always get their own instances.
    """
    flt = InstanceFilter(
        assignee_id=assignee_id,
        date_from=date_from,
        date_to=date_to,
        status=status,
        recurrence_rule_id=recurrence_rule_id,
    )
    items = instance_api.list_for_actor(db, actor, flt, limit=limit, offset=offset)
    return _page(items, limit, offset)


@router.get("/today", response_model=TaskInstanceListResponse)
def list_today_endpoint(
    assignee_id: Optional[UUID] = Query(None, description="Defaults to the caller"),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    items = instance_api.list_today(db, actor, assignee_id or actor.id, schedule_today())
    return _page(items, len(items), 0)


@router.get("/upcoming", response_model=TaskInstanceListResponse)
def list_upcoming_endpoint(
    assignee_id: Optional[UUID] = Query(None, description="Defaults to the caller"),
    days: int = Query(7, ge=1, le=instance_api.MAX_UPCOMING_DAYS),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    items = instance_api.list_upcoming(
        db, actor, assignee_id or actor.id, days, schedule_today(), limit=limit, offset=offset,
    )
    return _page(items, limit, offset)


@router.get("/overdue", response_model=TaskInstanceListResponse)
def list_overdue_endpoint(
    assignee_id: Optional[UUID] = Query(None, description="Defaults to the caller"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Pending tasks from previous days that the nightly sweep has not reached yet."""
    items = instance_api.list_overdue(
        db, actor, assignee_id or actor.id, schedule_today(), limit=limit, offset=offset,
    )
    return _page(items, limit, offset)


@router.post("", response_model=TaskInstanceResponse, status_code=201)
def create_instance_endpoint(
    payload: TaskInstanceCreate,
    actor: Actor = Depends(require_coach),
    db: Session = Depends(get_db),
):
    """Create a one-off task that no rule generates."""
    content = TaskContent(
        name=payload.name,
        description=payload.description,
        duration_minutes=payload.duration_minutes,
        scheduled_time=payload.scheduled_time,
    )
    return instance_store.create_manual_instance(
        db, payload.assignee_id, payload.scheduled_date, content, actor_id=actor.id,
    )


@router.get("/{instance_id}", response_model=TaskInstanceResponse)
def get_instance_endpoint(
    instance_id: UUID,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    return instance_api.get_for_actor(db, actor, instance_id)


@router.post("/{instance_id}/toggle", response_model=TaskInstanceResponse)
def toggle_complete_endpoint(
    instance_id: UUID,
    payload: ToggleCompleteRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Check or un-check a task. Errors are always surfaced so the UI can roll back."""
    return instance_api.toggle_complete(db, actor, instance_id, payload.completed, utcnow())


@router.put("/{instance_id}/status", response_model=TaskInstanceResponse)
def set_status_endpoint(
    instance_id: UUID,
    payload: StatusUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Explicit status write; 'missed' is rejected with 409."""
    return instance_api.set_status(db, actor, instance_id, payload.status, utcnow())


@router.put("/{instance_id}/note", response_model=TaskInstanceResponse)
def attach_note_endpoint(
    instance_id: UUID,
    payload: NoteRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Sets coach_note or student_note depending on the caller's role."""
    return instance_api.add_note(db, actor, instance_id, payload.content, utcnow())


@router.put("/{instance_id}/coach-note", response_model=TaskInstanceResponse)
def add_coach_note_endpoint(
    instance_id: UUID,
    payload: NoteRequest,
    actor: Actor = Depends(require_coach),
    db: Session = Depends(get_db),
):
    return instance_api.add_coach_note(db, actor, instance_id, payload.content, utcnow())


@router.patch("/{instance_id}", response_model=TaskInstanceResponse)
def customize_instance_endpoint(
    instance_id: UUID,
    payload: TaskInstanceCustomize,
    actor: Actor = Depends(require_coach),
    db: Session = Depends(get_db),
):
    """
    Edit one instance's content.

    The instance is marked customized and reconciliation stops overwriting it.
    """
    changes = payload.model_dump(exclude_unset=True)
    return instance_api.customize(db, actor, instance_id, changes, utcnow())
