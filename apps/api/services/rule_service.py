"""
Recurrence Rule management

Create / edit / deactivate / delete rules on behalf of a coach. Every write is
validated before anything is materialized, and create/edit immediately
reconcile the rule's forward window so the assignee sees the new instances
without waiting for the nightly run.

Edits that change the schedule follow RULE_EDIT_POLICY:
- prune_future: pending, non-customized instances after today that the
  edited rule no longer produces are deleted
- keep: they stay and expire through the sweep
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Set, Tuple
from uuid import UUID

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from core.exceptions import InvalidRuleError, NotFoundError, PermissionDeniedError
from models import (
    STATUS_PENDING,
    RecurrenceRule,
    TaskGroup,
    TaskInstance,
    TaskTemplate,
)
from services.instance_store import delete_pending_instances, translate_store_errors
from services.materializer import occurrence_dates
from services.reconciliation import (
    ReconcileResult,
    forward_window,
    load_pattern,
    reconcile_rule,
    resolve_assignees,
)
from services.recurrence import normalize_days_of_week, validate_rule

logger = logging.getLogger(__name__)

EDIT_POLICY_PRUNE_FUTURE = "prune_future"
EDIT_POLICY_KEEP = "keep"

RULE_FIELDS = (
    "name",
    "description",
    "duration_minutes",
    "scheduled_time",
    "template_id",
    "assignee_id",
    "group_id",
    "recurrence_type",
    "days_of_week",
    "interval_days",
    "start_date",
    "end_date",
    "is_active",
)

# Changing any of these can move or remove already-materialized dates
SCHEDULE_FIELDS = {
    "assignee_id",
    "group_id",
    "recurrence_type",
    "days_of_week",
    "interval_days",
    "start_date",
    "end_date",
    "is_active",
}


@dataclass
class RuleWriteResult:
    rule: RecurrenceRule
    reconcile: Optional[ReconcileResult] = None
    pruned: int = 0


def get_rule(db: Session, rule_id: UUID) -> RecurrenceRule:
    with translate_store_errors("get_rule"):
        rule = db.query(RecurrenceRule).filter(RecurrenceRule.id == rule_id).first()
    if rule is None:
        raise NotFoundError("Recurrence rule", rule_id)
    return rule


def get_owned_rule(db: Session, rule_id: UUID, owner_id: UUID) -> RecurrenceRule:
    rule = get_rule(db, rule_id)
    if rule.owner_id != owner_id:
        raise PermissionDeniedError("Recurrence rule belongs to another coach")
    return rule


def list_rules(
    db: Session,
    owner_id: UUID,
    active_only: bool = False,
    limit: int = 100,
    offset: int = 0,
) -> List[RecurrenceRule]:
    query = db.query(RecurrenceRule).filter(RecurrenceRule.owner_id == owner_id)
    if active_only:
        query = query.filter(RecurrenceRule.is_active.is_(True))
    with translate_store_errors("list_rules"):
        return (
            query.order_by(RecurrenceRule.created_at.desc(), RecurrenceRule.id.asc())
            .offset(max(0, offset))
            .limit(max(1, min(limit, 500)))
            .all()
        )


def _check_references(db: Session, rule: RecurrenceRule, owner_id: UUID) -> None:
    if rule.template_id is not None:
        template = db.query(TaskTemplate).filter(TaskTemplate.id == rule.template_id).first()
        if template is None:
            raise NotFoundError("Task template", rule.template_id)
        if template.coach_id != owner_id:
            raise PermissionDeniedError("Task template belongs to another coach")
    if rule.group_id is not None:
        group = db.query(TaskGroup).filter(TaskGroup.id == rule.group_id).first()
        if group is None:
            raise NotFoundError("Group", rule.group_id)
        if group.coach_id != owner_id:
            raise PermissionDeniedError("Group belongs to another coach")


def _apply_fields(rule: RecurrenceRule, data: Dict[str, Any]) -> None:
    unknown = set(data) - set(RULE_FIELDS)
    if unknown:
        raise InvalidRuleError(f"Unknown rule fields: {', '.join(sorted(unknown))}")
    for key, value in data.items():
        if key == "days_of_week":
            value = normalize_days_of_week(value)
        setattr(rule, key, value)
    if rule.days_of_week is None:
        rule.days_of_week = []


def _validated(db: Session, rule: RecurrenceRule, owner_id: UUID) -> None:
    validate_rule(load_pattern(db, rule))
    _check_references(db, rule, owner_id)


def create_rule(
    db: Session,
    owner_id: UUID,
    data: Dict[str, Any],
    today: date,
    window_days: int,
) -> RuleWriteResult:
    """Validate, persist, and immediately reconcile a new rule."""
    rule = RecurrenceRule(owner_id=owner_id, is_active=True, days_of_week=[])
    _apply_fields(rule, data)
    if rule.start_date is None:
        rule.start_date = today
    if rule.is_active is None:
        rule.is_active = True

    with translate_store_errors("create_rule"):
        _validated(db, rule, owner_id)
        db.add(rule)
        db.flush()

    reconcile = None
    if rule.is_active:
        window_from, window_to = forward_window(today, window_days)
        reconcile = reconcile_rule(db, rule, window_from, window_to)

    logger.info(
        f"Created recurrence rule {rule.id}",
        extra={"extra_fields": {
            "recurrence_rule_id": str(rule.id),
            "owner_id": str(owner_id),
            "recurrence_type": rule.recurrence_type,
            "instances_created": reconcile.created if reconcile else 0,
        }},
    )
    return RuleWriteResult(rule=rule, reconcile=reconcile)


def _future_pending_horizon(db: Session, rule_id: UUID, after: date) -> Optional[date]:
    return (
        db.query(func.max(TaskInstance.scheduled_date))
        .filter(
            TaskInstance.recurrence_rule_id == rule_id,
            TaskInstance.status == STATUS_PENDING,
            TaskInstance.scheduled_date > after,
        )
        .scalar()
    )


def _prune_stale_future(db: Session, rule: RecurrenceRule, today: date) -> int:
    """Delete future pending instances the (edited) rule no longer produces."""
    horizon = _future_pending_horizon(db, rule.id, today)
    if horizon is None:
        return 0
    tomorrow = today + timedelta(days=1)
    keep: Set[Tuple[UUID, date]] = set()
    if rule.is_active:
        pattern = load_pattern(db, rule)
        dates = occurrence_dates(pattern, tomorrow, horizon)
        for assignee_id in resolve_assignees(db, rule):
            keep.update((assignee_id, d) for d in dates)
    return delete_pending_instances(db, rule.id, tomorrow, keep=keep)


def update_rule(
    db: Session,
    rule: RecurrenceRule,
    changes: Dict[str, Any],
    today: date,
    window_days: int,
    edit_policy: str = EDIT_POLICY_PRUNE_FUTURE,
) -> RuleWriteResult:
    """
    Apply an edit, validate the result, apply the edit policy, reconcile.

    Content-only edits (name/description/duration/time/template) propagate to
    non-customized instances through the reconcile step.
    """
    if edit_policy not in (EDIT_POLICY_PRUNE_FUTURE, EDIT_POLICY_KEEP):
        raise InvalidRuleError(f"Unknown edit policy: {edit_policy}")

    # Switching target kind must clear the other side
    if changes.get("assignee_id") is not None and "group_id" not in changes:
        changes = {**changes, "group_id": None}
    elif changes.get("group_id") is not None and "assignee_id" not in changes:
        changes = {**changes, "assignee_id": None}

    with translate_store_errors("update_rule"):
        with db.no_autoflush:
            try:
                _apply_fields(rule, changes)
                _validated(db, rule, rule.owner_id)
            except Exception:
                db.expire(rule)
                raise
        db.flush()

    pruned = 0
    if edit_policy == EDIT_POLICY_PRUNE_FUTURE and SCHEDULE_FIELDS.intersection(changes):
        with translate_store_errors("prune_future_instances"):
            pruned = _prune_stale_future(db, rule, today)

    reconcile = None
    if rule.is_active:
        window_from, window_to = forward_window(today, window_days)
        reconcile = reconcile_rule(db, rule, window_from, window_to)

    logger.info(
        f"Updated recurrence rule {rule.id}",
        extra={"extra_fields": {
            "recurrence_rule_id": str(rule.id),
            "changed_fields": sorted(changes),
            "edit_policy": edit_policy,
            "pruned": pruned,
        }},
    )
    return RuleWriteResult(rule=rule, reconcile=reconcile, pruned=pruned)


def deactivate_rule(
    db: Session,
    rule: RecurrenceRule,
    today: date,
    edit_policy: str = EDIT_POLICY_PRUNE_FUTURE,
) -> RuleWriteResult:
    """Stop future materialization. Past instances are always kept."""
    return update_rule(db, rule, {"is_active": False}, today, 0, edit_policy)


def delete_rule(
    db: Session,
    rule: RecurrenceRule,
    today: date,
    edit_policy: str = EDIT_POLICY_PRUNE_FUTURE,
) -> int:
    """
    Delete a rule without losing history.

    Under prune_future, pending non-customized instances dated today or later
    are removed; every other instance is detached (recurrence_rule_id = NULL)
    and kept for analytics. Returns the number of instances removed.
    """
    removed = 0
    with translate_store_errors("delete_rule"):
        if edit_policy == EDIT_POLICY_PRUNE_FUTURE:
            removed = delete_pending_instances(db, rule.id, today)
        db.execute(
            update(TaskInstance)
            .where(TaskInstance.recurrence_rule_id == rule.id)
            .values(recurrence_rule_id=None)
            .execution_options(synchronize_session="fetch")
        )
        db.delete(rule)
        db.flush()

    logger.info(
        f"Deleted recurrence rule {rule.id}",
        extra={"extra_fields": {"recurrence_rule_id": str(rule.id), "instances_removed": removed}},
    )
    return removed
