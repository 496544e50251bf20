"""
Templates & Groups API Router

Coach-owned building blocks for rules: reusable task templates and
groups (classes) whose members receive group-targeted rules.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from uuid import UUID
from typing import List, Optional
from datetime import date
from core.database import get_db
from core.auth import Actor, require_coach
from core.clock import schedule_today
from schemas import (
    GroupMemberCreate,
    GroupMemberResponse,
    GroupProgressResponse,
    TaskGroupCreate,
    TaskGroupResponse,
    TaskTemplateCreate,
    TaskTemplateResponse,
    TaskTemplateUpdate,
)
from services import roster_service
from services.progress_service import get_group_progress

templates_router = APIRouter(prefix="/v1/templates", tags=["templates"])
router = APIRouter(prefix="/v1/groups", tags=["groups"])


@templates_router.post("", response_model=TaskTemplateResponse, status_code=201)
def create_template_endpoint(
    payload: TaskTemplateCreate,
    actor: Actor = Depends(require_coach),
    db: Session = Depends(get_db),
):
    return roster_service.create_template(db, actor.id, payload.model_dump(exclude_unset=True))


@templates_router.get("", response_model=List[TaskTemplateResponse])
def list_templates_endpoint(
    actor: Actor = Depends(require_coach),
    db: Session = Depends(get_db),
):
    return roster_service.list_templates(db, actor.id)


@templates_router.patch("/{template_id}", response_model=TaskTemplateResponse)
def update_template_endpoint(
    template_id: UUID,
    payload: TaskTemplateUpdate,
    actor: Actor = Depends(require_coach),
    db: Session = Depends(get_db),
):
    """Changes reach non-customized instances on the next reconciliation."""
    template = roster_service.get_owned_template(db, template_id, actor.id)
    return roster_service.update_template(db, template, payload.model_dump(exclude_unset=True))


@templates_router.delete("/{template_id}")
def delete_template_endpoint(
    template_id: UUID,
    actor: Actor = Depends(require_coach),
    db: Session = Depends(get_db),
):
    template = roster_service.get_owned_template(db, template_id, actor.id)
    roster_service.delete_template(db, template)
    return {"success": True, "template_id": str(template_id)}


@router.post("", response_model=TaskGroupResponse, status_code=201)
def create_group_endpoint(
    payload: TaskGroupCreate,
    actor: Actor = Depends(require_coach),
    db: Session = Depends(get_db),
):
    return roster_service.create_group(db, actor.id, payload.name)


@router.get("", response_model=List[TaskGroupResponse])
def list_groups_endpoint(
    actor: Actor = Depends(require_coach),
    db: Session = Depends(get_db),
):
    return roster_service.list_groups(db, actor.id)


@router.get("/{group_id}/members", response_model=List[GroupMemberResponse])
def list_members_endpoint(
    group_id: UUID,
    actor: Actor = Depends(require_coach),
    db: Session = Depends(get_db),
):
    group = roster_service.get_owned_group(db, group_id, actor.id)
    return roster_service.list_members(db, group.id)


@router.post("/{group_id}/members", response_model=GroupMemberResponse, status_code=201)
def add_member_endpoint(
    group_id: UUID,
    payload: GroupMemberCreate,
    actor: Actor = Depends(require_coach),
    db: Session = Depends(get_db),
):
    group = roster_service.get_owned_group(db, group_id, actor.id)
    return roster_service.add_member(db, group, payload.user_id)


@router.delete("/{group_id}/members/{user_id}")
def remove_member_endpoint(
    group_id: UUID,
    user_id: UUID,
    actor: Actor = Depends(require_coach),
    db: Session = Depends(get_db),
):
    group = roster_service.get_owned_group(db, group_id, actor.id)
    removed = roster_service.remove_member(db, group, user_id)
    return {"success": True, "removed": removed}


@router.get("/{group_id}/progress", response_model=GroupProgressResponse)
def group_progress_endpoint(
    group_id: UUID,
    target_date: Optional[date] = Query(None, alias="date"),
    actor: Actor = Depends(require_coach),
    db: Session = Depends(get_db),
):
    """Per-member completed/total for one day (defaults to today)."""
    group = roster_service.get_owned_group(db, group_id, actor.id)
    return get_group_progress(db, group, target_date or schedule_today())
