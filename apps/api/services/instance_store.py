"""
Instance Store

Persistence and lifecycle rules for TaskInstance rows:
- idempotent upsert keyed on (recurrence_rule_id, assignee_id, scheduled_date)
- filtered, ordered, paginated listing
- guarded status transitions (pending <-> completed; missed is sweep-only)
- notes and content customization

Concurrency: no locks. Inserts race safely on the unique constraint; status
writes are last-write-wins.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, fields
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Session

from core.exceptions import (
    InvalidRuleError,
    InvalidTransitionError,
    NotFoundError,
    TransientStoreError,
)
from core.security import ROLE_COACH, ROLE_STUDENT
from models import (
    INSTANCE_STATUSES,
    STATUS_COMPLETED,
    STATUS_MISSED,
    STATUS_PENDING,
    TaskInstance,
)
from services.recurrence import TaskContent

logger = logging.getLogger(__name__)

CONTENT_FIELDS = ("name", "description", "duration_minutes", "scheduled_time")

UPSERT_CREATED = "created"
UPSERT_UPDATED = "updated"
UPSERT_UNCHANGED = "unchanged"
UPSERT_CUSTOMIZED = "customized"  # existing row left untouched

MAX_PAGE_SIZE = 500


@contextmanager
def translate_store_errors(operation: str):
    """Surface connectivity failures as TransientStoreError (retryable)."""
    try:
        yield
    except OperationalError as e:
        raise TransientStoreError(f"{operation} failed: store unavailable") from e
    except DBAPIError as e:
        if e.connection_invalidated:
            raise TransientStoreError(f"{operation} failed: connection lost") from e
        raise


@dataclass(frozen=True)
class InstanceCandidate:
    """What the materializer says should exist for one assignee on one date."""
    recurrence_rule_id: UUID
    assignee_id: UUID
    scheduled_date: date
    content: TaskContent
    owner_id: Optional[UUID] = None


@dataclass
class InstanceFilter:
    assignee_id: Optional[UUID] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    status: Optional[str] = None
    recurrence_rule_id: Optional[UUID] = None
    assignee_ids: Optional[List[UUID]] = None
    owner_id: Optional[UUID] = None


def _content_differs(instance: TaskInstance, content: TaskContent) -> bool:
    return any(getattr(instance, f.name) != getattr(content, f.name) for f in fields(content))


def _apply_content(instance: TaskInstance, content: TaskContent) -> None:
    for f in fields(content):
        setattr(instance, f.name, getattr(content, f.name))


def _find_materialized(db: Session, candidate: InstanceCandidate) -> Optional[TaskInstance]:
    return (
        db.query(TaskInstance)
        .filter(
            TaskInstance.recurrence_rule_id == candidate.recurrence_rule_id,
            TaskInstance.assignee_id == candidate.assignee_id,
            TaskInstance.scheduled_date == candidate.scheduled_date,
        )
        .first()
    )


def _refresh_existing(existing: TaskInstance, candidate: InstanceCandidate) -> str:
    if existing.is_customized:
        return UPSERT_CUSTOMIZED
    if not _content_differs(existing, candidate.content):
        return UPSERT_UNCHANGED
    _apply_content(existing, candidate.content)
    return UPSERT_UPDATED


def upsert_instance(db: Session, candidate: InstanceCandidate) -> str:
    """
    Insert the candidate, or refresh an existing non-customized row's content.

    Never touches status/completed_at/notes of an existing row. Runs inside a
    SAVEPOINT so a failure here does not poison the caller's transaction.

    Returns one of UPSERT_CREATED / UPSERT_UPDATED / UPSERT_UNCHANGED / UPSERT_CUSTOMIZED.
    """
    with translate_store_errors("upsert_instance"):
        try:
            with db.begin_nested():
                existing = _find_materialized(db, candidate)
                if existing is not None:
                    outcome = _refresh_existing(existing, candidate)
                    db.flush()
                    return outcome

                instance = TaskInstance(
                    recurrence_rule_id=candidate.recurrence_rule_id,
                    assignee_id=candidate.assignee_id,
                    scheduled_date=candidate.scheduled_date,
                    status=STATUS_PENDING,
                    owner_id=candidate.owner_id,
                    is_customized=False,
                )
                _apply_content(instance, candidate.content)
                db.add(instance)
                db.flush()
                return UPSERT_CREATED
        except IntegrityError:
            # A concurrent run inserted the same key first; converge on its row.
            logger.info(
                "Upsert lost insert race, refreshing existing row",
                extra={"extra_fields": {
                    "recurrence_rule_id": str(candidate.recurrence_rule_id),
                    "assignee_id": str(candidate.assignee_id),
                    "scheduled_date": candidate.scheduled_date.isoformat(),
                }},
            )
            with db.begin_nested():
                existing = _find_materialized(db, candidate)
                if existing is None:
                    raise
                outcome = _refresh_existing(existing, candidate)
                db.flush()
                return outcome


def get_instance(db: Session, instance_id: UUID) -> TaskInstance:
    with translate_store_errors("get_instance"):
        instance = db.query(TaskInstance).filter(TaskInstance.id == instance_id).first()
    if instance is None:
        raise NotFoundError("Task instance", instance_id)
    return instance


def _filtered_query(db: Session, flt: InstanceFilter):
    query = db.query(TaskInstance)
    if flt.assignee_id is not None:
        query = query.filter(TaskInstance.assignee_id == flt.assignee_id)
    if flt.assignee_ids is not None:
        query = query.filter(TaskInstance.assignee_id.in_(flt.assignee_ids))
    if flt.recurrence_rule_id is not None:
        query = query.filter(TaskInstance.recurrence_rule_id == flt.recurrence_rule_id)
    if flt.owner_id is not None:
        query = query.filter(TaskInstance.owner_id == flt.owner_id)
    if flt.date_from is not None:
        query = query.filter(TaskInstance.scheduled_date >= flt.date_from)
    if flt.date_to is not None:
        query = query.filter(TaskInstance.scheduled_date <= flt.date_to)
    if flt.status is not None:
        if flt.status not in INSTANCE_STATUSES:
            raise InvalidRuleError(f"Unknown status filter: {flt.status}", field="status")
        query = query.filter(TaskInstance.status == flt.status)
    return query


def list_instances(
    db: Session,
    flt: Optional[InstanceFilter] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[TaskInstance]:
    """
    Instances matching the filter, ordered by scheduled_date, then
    scheduled_time (untimed last), then creation order.
    """
    flt = flt or InstanceFilter()
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    offset = max(0, offset)
    with translate_store_errors("list_instances"):
        return (
            _filtered_query(db, flt)
            .order_by(
                TaskInstance.scheduled_date.asc(),
                TaskInstance.scheduled_time.is_(None).asc(),
                TaskInstance.scheduled_time.asc(),
                TaskInstance.created_at.asc(),
                TaskInstance.id.asc(),
            )
            .offset(offset)
            .limit(limit)
            .all()
        )


def count_instances(db: Session, flt: Optional[InstanceFilter] = None) -> int:
    with translate_store_errors("count_instances"):
        return _filtered_query(db, flt or InstanceFilter()).count()


def set_status(
    db: Session,
    instance_id: UUID,
    new_status: str,
    actor_id: UUID,
    now: datetime,
    actor_role: Optional[str] = None,
) -> TaskInstance:
    """
    Apply a user-driven status change.

    Allowed:
        pending   -> completed   (sets completed_at)
        completed -> pending     (clears completed_at)
        missed    -> completed   coaches only (late credit)
        X -> X                   no-op
    Rejected with InvalidTransitionError:
        anything -> missed       (only the sweeper marks missed)
        missed -> pending        (the next sweep would re-mark it)
    """
    instance = get_instance(db, instance_id)
    current = instance.status

    if new_status not in INSTANCE_STATUSES:
        raise InvalidTransitionError(current, new_status, "unknown status")

    if new_status == STATUS_MISSED and current != STATUS_MISSED:
        logger.warning(
            "Rejected direct transition to missed",
            extra={"extra_fields": {"instance_id": str(instance_id), "actor_id": str(actor_id)}},
        )
        raise InvalidTransitionError(current, new_status, "missed is set only by the nightly sweep")

    if current == new_status:
        return instance

    if current == STATUS_MISSED:
        if new_status == STATUS_COMPLETED and actor_role == ROLE_COACH:
            pass
        else:
            logger.warning(
                "Rejected transition out of missed",
                extra={"extra_fields": {
                    "instance_id": str(instance_id),
                    "actor_id": str(actor_id),
                    "requested": new_status,
                }},
            )
            raise InvalidTransitionError(current, new_status, "missed tasks can only be credited by a coach")

    instance.status = new_status
    instance.completed_at = now if new_status == STATUS_COMPLETED else None
    instance.updated_by = actor_id
    instance.updated_at = now
    with translate_store_errors("set_status"):
        db.flush()
    return instance


def attach_note(
    db: Session,
    instance_id: UUID,
    author_role: str,
    content: Optional[str],
    actor_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> TaskInstance:
    """Set coach_note or student_note by author role. Allowed in any status."""
    if author_role not in (ROLE_COACH, ROLE_STUDENT):
        raise InvalidRuleError(f"Unknown note author role: {author_role}", field="author_role")

    instance = get_instance(db, instance_id)
    if author_role == ROLE_COACH:
        instance.coach_note = content
    else:
        instance.student_note = content
    if actor_id is not None:
        instance.updated_by = actor_id
    if now is not None:
        instance.updated_at = now
    with translate_store_errors("attach_note"):
        db.flush()
    return instance


def customize_instance(
    db: Session,
    instance_id: UUID,
    changes: Dict[str, Any],
    actor_id: UUID,
    now: Optional[datetime] = None,
) -> TaskInstance:
    """
    Edit content fields of a single instance and pin it against reconciliation.

    `is_customized` is set only when a value actually changes.
    """
    unknown = set(changes) - set(CONTENT_FIELDS)
    if unknown:
        raise InvalidRuleError(f"Not editable: {', '.join(sorted(unknown))}")
    if "name" in changes and not (changes["name"] or "").strip():
        raise InvalidRuleError("Task name is required", field="name")
    duration = changes.get("duration_minutes")
    if duration is not None and duration <= 0:
        raise InvalidRuleError("duration_minutes must be positive", field="duration_minutes")

    instance = get_instance(db, instance_id)
    changed = False
    for key, value in changes.items():
        if getattr(instance, key) != value:
            setattr(instance, key, value)
            changed = True

    if changed:
        instance.is_customized = True
        instance.updated_by = actor_id
        if now is not None:
            instance.updated_at = now
        with translate_store_errors("customize_instance"):
            db.flush()
    return instance


def create_manual_instance(
    db: Session,
    assignee_id: UUID,
    scheduled_date: date,
    content: TaskContent,
    actor_id: UUID,
) -> TaskInstance:
    """One-off instance with no generating rule."""
    if not (content.name or "").strip():
        raise InvalidRuleError("Task name is required", field="name")
    instance = TaskInstance(
        recurrence_rule_id=None,
        assignee_id=assignee_id,
        owner_id=actor_id,
        scheduled_date=scheduled_date,
        status=STATUS_PENDING,
        is_customized=False,
        updated_by=actor_id,
    )
    _apply_content(instance, content)
    db.add(instance)
    with translate_store_errors("create_manual_instance"):
        db.flush()
    return instance


def delete_pending_instances(
    db: Session,
    recurrence_rule_id: UUID,
    on_or_after: date,
    keep: Optional[Iterable[tuple]] = None,
) -> int:
    """
    Delete the rule's pending, non-customized instances dated on/after a day.

    `keep` is a set of (assignee_id, scheduled_date) pairs to leave in place.
    Completed, missed, and customized rows are history and are never deleted.
    """
    keep_set = set(keep or ())
    with translate_store_errors("delete_pending_instances"):
        rows = (
            db.query(TaskInstance)
            .filter(
                TaskInstance.recurrence_rule_id == recurrence_rule_id,
                TaskInstance.status == STATUS_PENDING,
                TaskInstance.is_customized.is_(False),
                TaskInstance.scheduled_date >= on_or_after,
            )
            .all()
        )
        deleted = 0
        for row in rows:
            if (row.assignee_id, row.scheduled_date) in keep_set:
                continue
            db.delete(row)
            deleted += 1
        db.flush()
    return deleted
