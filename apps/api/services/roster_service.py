"""
Templates and groups owned by a coach.

Both feed reconciliation: templates supply the content snapshot of linked
rules, groups supply the assignee list of group-targeted rules.
"""

from __future__ import annotations

from typing import Any, Dict, List
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.exceptions import InvalidRuleError, NotFoundError, PermissionDeniedError
from models import GroupMember, RecurrenceRule, TaskGroup, TaskTemplate
from services.instance_store import translate_store_errors

TEMPLATE_FIELDS = ("name", "description", "duration_minutes", "category")


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def _check_template_fields(data: Dict[str, Any]) -> None:
    unknown = set(data) - set(TEMPLATE_FIELDS)
    if unknown:
        raise InvalidRuleError(f"Unknown template fields: {', '.join(sorted(unknown))}")
    if "name" in data and not (data["name"] or "").strip():
        raise InvalidRuleError("Template name is required", field="name")
    duration = data.get("duration_minutes")
    if duration is not None and duration <= 0:
        raise InvalidRuleError("duration_minutes must be positive", field="duration_minutes")


def create_template(db: Session, coach_id: UUID, data: Dict[str, Any]) -> TaskTemplate:
    if "name" not in data:
        raise InvalidRuleError("Template name is required", field="name")
    _check_template_fields(data)
    template = TaskTemplate(coach_id=coach_id, **data)
    db.add(template)
    with translate_store_errors("create_template"):
        db.flush()
    return template


def get_owned_template(db: Session, template_id: UUID, coach_id: UUID) -> TaskTemplate:
    with translate_store_errors("get_template"):
        template = db.query(TaskTemplate).filter(TaskTemplate.id == template_id).first()
    if template is None:
        raise NotFoundError("Task template", template_id)
    if template.coach_id != coach_id:
        raise PermissionDeniedError("Task template belongs to another coach")
    return template


def update_template(db: Session, template: TaskTemplate, changes: Dict[str, Any]) -> TaskTemplate:
    """Edits reach instances on the next reconciliation (customized ones excepted)."""
    _check_template_fields(changes)
    for key, value in changes.items():
        setattr(template, key, value)
    with translate_store_errors("update_template"):
        db.flush()
    return template


def list_templates(db: Session, coach_id: UUID) -> List[TaskTemplate]:
    with translate_store_errors("list_templates"):
        return (
            db.query(TaskTemplate)
            .filter(TaskTemplate.coach_id == coach_id)
            .order_by(TaskTemplate.name.asc())
            .all()
        )


def delete_template(db: Session, template: TaskTemplate) -> None:
    """Linked rules keep working from their own content (template_id -> NULL)."""
    with translate_store_errors("delete_template"):
        db.query(RecurrenceRule).filter(RecurrenceRule.template_id == template.id).update(
            {RecurrenceRule.template_id: None}, synchronize_session="fetch"
        )
        db.delete(template)
        db.flush()


# ---------------------------------------------------------------------------
# Groups
# ---------------------------------------------------------------------------


def create_group(db: Session, coach_id: UUID, name: str) -> TaskGroup:
    if not (name or "").strip():
        raise InvalidRuleError("Group name is required", field="name")
    group = TaskGroup(coach_id=coach_id, name=name.strip())
    db.add(group)
    with translate_store_errors("create_group"):
        db.flush()
    return group


def get_owned_group(db: Session, group_id: UUID, coach_id: UUID) -> TaskGroup:
    with translate_store_errors("get_group"):
        group = db.query(TaskGroup).filter(TaskGroup.id == group_id).first()
    if group is None:
        raise NotFoundError("Group", group_id)
    if group.coach_id != coach_id:
        raise PermissionDeniedError("Group belongs to another coach")
    return group


def list_groups(db: Session, coach_id: UUID) -> List[TaskGroup]:
    with translate_store_errors("list_groups"):
        return (
            db.query(TaskGroup)
            .filter(TaskGroup.coach_id == coach_id)
            .order_by(TaskGroup.name.asc())
            .all()
        )


def list_members(db: Session, group_id: UUID) -> List[GroupMember]:
    with translate_store_errors("list_members"):
        return (
            db.query(GroupMember)
            .filter(GroupMember.group_id == group_id)
            .order_by(GroupMember.joined_at.asc())
            .all()
        )


def add_member(db: Session, group: TaskGroup, user_id: UUID) -> GroupMember:
    """
    Idempotent join. New members receive future instances of the group's
    rules on the next reconciliation.
    """
    existing = (
        db.query(GroupMember)
        .filter(GroupMember.group_id == group.id, GroupMember.user_id == user_id)
        .first()
    )
    if existing:
        return existing
    member = GroupMember(group_id=group.id, user_id=user_id)
    with translate_store_errors("add_member"):
        try:
            with db.begin_nested():
                db.add(member)
                db.flush()
        except IntegrityError:
            member = (
                db.query(GroupMember)
                .filter(GroupMember.group_id == group.id, GroupMember.user_id == user_id)
                .one()
            )
    return member


def remove_member(db: Session, group: TaskGroup, user_id: UUID) -> bool:
    """Stops future materialization for the member; existing instances stay."""
    with translate_store_errors("remove_member"):
        deleted = (
            db.query(GroupMember)
            .filter(GroupMember.group_id == group.id, GroupMember.user_id == user_id)
            .delete(synchronize_session="fetch")
        )
        db.flush()
    return deleted > 0
