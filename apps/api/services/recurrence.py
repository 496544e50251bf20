"""
Recurrence Rule value types

Pure, immutable views of a recurrence rule used by the materializer:
- TaskContent: the content snapshot every generated instance starts from
- RulePattern: schedule + target + content, detached from the ORM session

`validate_rule` is the only behavior; it runs at create/edit time so that a
malformed rule never reaches materialization.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, time
from typing import FrozenSet, Iterable, Optional
from uuid import UUID

from core.exceptions import InvalidRuleError
from models import (
    RECURRENCE_CUSTOM_INTERVAL,
    RECURRENCE_TYPES,
    RECURRENCE_WEEKLY,
    RecurrenceRule,
    TaskTemplate,
)

# 0=Sunday .. 6=Saturday, matching the client calendar widgets
DAY_NAMES = ['Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday']


@dataclass(frozen=True)
class TaskContent:
    name: str
    description: Optional[str] = None
    duration_minutes: Optional[int] = None
    scheduled_time: Optional[time] = None


@dataclass(frozen=True)
class RulePattern:
    recurrence_type: str
    start_date: date
    content: TaskContent
    end_date: Optional[date] = None
    days_of_week: FrozenSet[int] = field(default_factory=frozenset)
    interval_days: Optional[int] = None
    is_active: bool = True
    assignee_id: Optional[UUID] = None
    group_id: Optional[UUID] = None
    rule_id: Optional[UUID] = None

    @classmethod
    def from_rule(cls, rule: RecurrenceRule, template: Optional[TaskTemplate] = None) -> "RulePattern":
        """Snapshot an ORM rule (and its template, if linked) into a value."""
        return cls(
            recurrence_type=rule.recurrence_type,
            start_date=rule.start_date,
            end_date=rule.end_date,
            days_of_week=frozenset(int(d) for d in (rule.days_of_week or [])),
            interval_days=rule.interval_days,
            is_active=bool(rule.is_active),
            assignee_id=rule.assignee_id,
            group_id=rule.group_id,
            rule_id=rule.id,
            content=content_for(rule, template),
        )


def content_for(rule: RecurrenceRule, template: Optional[TaskTemplate]) -> TaskContent:
    """
    Template fields take precedence over the rule's own content; the rule
    fills any gap and always owns the time of day.
    """
    if template is None:
        return TaskContent(
            name=rule.name,
            description=rule.description,
            duration_minutes=rule.duration_minutes,
            scheduled_time=rule.scheduled_time,
        )
    return TaskContent(
        name=template.name or rule.name,
        description=template.description if template.description is not None else rule.description,
        duration_minutes=template.duration_minutes if template.duration_minutes is not None else rule.duration_minutes,
        scheduled_time=rule.scheduled_time,
    )


def normalize_days_of_week(days: Optional[Iterable[int]]) -> list[int]:
    """Sorted, de-duplicated weekday list; raises on values outside 0..6."""
    out = set()
    for d in days or []:
        try:
            value = int(d)
        except (TypeError, ValueError):
            raise InvalidRuleError(f"Invalid day of week: {d!r}", field="days_of_week")
        if value < 0 or value > 6:
            raise InvalidRuleError(
                "days_of_week must be between 0 (Sunday) and 6 (Saturday)",
                field="days_of_week",
            )
        out.add(value)
    return sorted(out)


def validate_rule(rule: RulePattern) -> RulePattern:
    """
    Reject malformed rules with InvalidRuleError.

    Checks:
    - exactly one target (assignee or group)
    - known recurrence type
    - weekly requires at least one weekday (0..6)
    - custom_interval requires a positive interval_days
    - end_date, when set, is not before start_date
    """
    has_assignee = rule.assignee_id is not None
    has_group = rule.group_id is not None
    if has_assignee == has_group:
        raise InvalidRuleError(
            "Exactly one of assignee_id or group_id must be set",
            field="assignee_id" if has_assignee else "group_id",
        )

    if rule.recurrence_type not in RECURRENCE_TYPES:
        raise InvalidRuleError(
            f"recurrence_type must be one of: {', '.join(RECURRENCE_TYPES)}",
            field="recurrence_type",
        )

    if rule.recurrence_type == RECURRENCE_WEEKLY:
        if not rule.days_of_week:
            raise InvalidRuleError("Weekly rules require days_of_week", field="days_of_week")
        normalize_days_of_week(rule.days_of_week)

    if rule.recurrence_type == RECURRENCE_CUSTOM_INTERVAL:
        if rule.interval_days is None or rule.interval_days < 1:
            raise InvalidRuleError(
                "custom_interval rules require a positive interval_days",
                field="interval_days",
            )

    if rule.start_date is None:
        raise InvalidRuleError("start_date is required", field="start_date")

    if rule.end_date is not None and rule.end_date < rule.start_date:
        raise InvalidRuleError("end_date must not be before start_date", field="end_date")

    if not (rule.content.name or "").strip():
        raise InvalidRuleError("Task name is required", field="name")

    if rule.content.duration_minutes is not None and rule.content.duration_minutes <= 0:
        raise InvalidRuleError("duration_minutes must be positive", field="duration_minutes")

    return rule
