"""
Instance Query/Mutation API

The thin contract the UI consumes on top of the instance store. "today" is
always passed in by the caller. Students may only see and change their own
instances. Coaches may query any assignee explicitly, but unscoped listings
and by-id access are limited to tasks they assigned (`owner_id`).
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from core.auth import Actor
from core.exceptions import InvalidRuleError, PermissionDeniedError
from core.security import ROLE_COACH
from models import STATUS_COMPLETED, STATUS_PENDING, TaskInstance
from services import instance_store
from services.instance_store import InstanceFilter

MAX_UPCOMING_DAYS = 90


def check_assignee_access(actor: Actor, assignee_id: UUID) -> None:
    if actor.role != ROLE_COACH and actor.id != assignee_id:
        raise PermissionDeniedError("Students can only access their own tasks")


def check_instance_access(actor: Actor, instance: TaskInstance) -> None:
    if actor.role == ROLE_COACH:
        if instance.owner_id != actor.id:
            raise PermissionDeniedError("Coaches can only access tasks they assigned")
    elif instance.assignee_id != actor.id:
        raise PermissionDeniedError("Students can only access their own tasks")


def get_for_actor(db: Session, actor: Actor, instance_id: UUID) -> TaskInstance:
    instance = instance_store.get_instance(db, instance_id)
    check_instance_access(actor, instance)
    return instance


def list_today(db: Session, actor: Actor, assignee_id: UUID, today: date) -> List[TaskInstance]:
    check_assignee_access(actor, assignee_id)
    return instance_store.list_instances(
        db, InstanceFilter(assignee_id=assignee_id, date_from=today, date_to=today),
        limit=instance_store.MAX_PAGE_SIZE,
    )


def list_upcoming(
    db: Session,
    actor: Actor,
    assignee_id: UUID,
    days: int,
    today: date,
    limit: int = 100,
    offset: int = 0,
) -> List[TaskInstance]:
    """Instances from tomorrow through today + days."""
    check_assignee_access(actor, assignee_id)
    if days < 1 or days > MAX_UPCOMING_DAYS:
        raise InvalidRuleError(f"days must be between 1 and {MAX_UPCOMING_DAYS}", field="days")
    return instance_store.list_instances(
        db,
        InstanceFilter(
            assignee_id=assignee_id,
            date_from=today + timedelta(days=1),
            date_to=today + timedelta(days=days),
        ),
        limit=limit,
        offset=offset,
    )


def list_overdue(
    db: Session,
    actor: Actor,
    assignee_id: UUID,
    today: date,
    limit: int = 100,
    offset: int = 0,
) -> List[TaskInstance]:
    """Pending instances scheduled before today (not yet swept)."""
    check_assignee_access(actor, assignee_id)
    return instance_store.list_instances(
        db,
        InstanceFilter(
            assignee_id=assignee_id,
            date_to=today - timedelta(days=1),
            status=STATUS_PENDING,
        ),
        limit=limit,
        offset=offset,
    )


def list_for_actor(
    db: Session,
    actor: Actor,
    flt: InstanceFilter,
    limit: int = 100,
    offset: int = 0,
) -> List[TaskInstance]:
    """
    General listing. Students are pinned to their own assignee id; a coach
    without an assignee filter sees only the tasks they assigned.
    """
    if actor.role != ROLE_COACH:
        if flt.assignee_id is not None and flt.assignee_id != actor.id:
            raise PermissionDeniedError("Students can only access their own tasks")
        flt.assignee_id = actor.id
    elif flt.assignee_id is None:
        flt.owner_id = actor.id
    return instance_store.list_instances(db, flt, limit=limit, offset=offset)


def toggle_complete(
    db: Session,
    actor: Actor,
    instance_id: UUID,
    completed: bool,
    now: datetime,
) -> TaskInstance:
    get_for_actor(db, actor, instance_id)
    return instance_store.set_status(
        db,
        instance_id,
        STATUS_COMPLETED if completed else STATUS_PENDING,
        actor_id=actor.id,
        now=now,
        actor_role=actor.role,
    )


def set_status(
    db: Session,
    actor: Actor,
    instance_id: UUID,
    new_status: str,
    now: datetime,
) -> TaskInstance:
    get_for_actor(db, actor, instance_id)
    return instance_store.set_status(
        db, instance_id, new_status, actor_id=actor.id, now=now, actor_role=actor.role,
    )


def add_note(
    db: Session,
    actor: Actor,
    instance_id: UUID,
    content: Optional[str],
    now: datetime,
) -> TaskInstance:
    """Coaches write coach_note, students write student_note."""
    get_for_actor(db, actor, instance_id)
    return instance_store.attach_note(
        db, instance_id, author_role=actor.role, content=content, actor_id=actor.id, now=now,
    )


def add_coach_note(
    db: Session,
    actor: Actor,
    instance_id: UUID,
    content: Optional[str],
    now: datetime,
) -> TaskInstance:
    if actor.role != ROLE_COACH:
        raise PermissionDeniedError("Only coaches can write coach notes")
    return add_note(db, actor, instance_id, content, now)


def customize(
    db: Session,
    actor: Actor,
    instance_id: UUID,
    changes: dict,
    now: datetime,
) -> TaskInstance:
    if actor.role != ROLE_COACH:
        raise PermissionDeniedError("Only coaches can edit task content")
    get_for_actor(db, actor, instance_id)
    return instance_store.customize_instance(db, instance_id, changes, actor_id=actor.id, now=now)
