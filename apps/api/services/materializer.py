"""
Instance Materializer

Pure expansion of a RulePattern over an inclusive date window into the dated
task occurrences that should exist. No I/O, no clock, no hidden state: the
same (rule, window) always yields the same ordered list, so reconciliation can
simply re-run it to regenerate anything that failed to persist.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterator, List

from models import (
    RECURRENCE_CUSTOM_INTERVAL,
    RECURRENCE_DAILY,
    RECURRENCE_ONCE,
    RECURRENCE_WEEKLY,
)
from services.recurrence import RulePattern, TaskContent


@dataclass(frozen=True)
class MaterializedTask:
    scheduled_date: date
    content: TaskContent


def weekday_index(value: date) -> int:
    """0=Sunday .. 6=Saturday (Python's weekday() is 0=Monday)."""
    return (value.weekday() + 1) % 7


def _iter_days(start: date, end: date) -> Iterator[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def _effective_window(rule: RulePattern, window_from: date, window_to: date):
    lo = max(window_from, rule.start_date)
    hi = window_to if rule.end_date is None else min(window_to, rule.end_date)
    return lo, hi


def occurrence_dates(rule: RulePattern, window_from: date, window_to: date) -> List[date]:
    """Dates (ascending) the rule produces inside [window_from, window_to]."""
    if not rule.is_active or window_to < window_from:
        return []

    if rule.recurrence_type == RECURRENCE_ONCE:
        d = rule.start_date
        return [d] if window_from <= d <= window_to else []

    lo, hi = _effective_window(rule, window_from, window_to)
    if hi < lo:
        return []

    if rule.recurrence_type == RECURRENCE_DAILY:
        return list(_iter_days(lo, hi))

    if rule.recurrence_type == RECURRENCE_WEEKLY:
        days = rule.days_of_week
        return [d for d in _iter_days(lo, hi) if weekday_index(d) in days]

    if rule.recurrence_type == RECURRENCE_CUSTOM_INTERVAL:
        step = rule.interval_days or 0
        if step < 1:
            return []
        # First k >= 0 with start + k*step >= lo
        offset = (lo - rule.start_date).days
        k = -(-offset // step) if offset > 0 else 0
        first = rule.start_date + timedelta(days=k * step)
        out = []
        current = first
        while current <= hi:
            out.append(current)
            current += timedelta(days=step)
        return out

    return []


def materialize(rule: RulePattern, window_from: date, window_to: date) -> List[MaterializedTask]:
    """
    Expand a rule into (scheduled_date, content snapshot) pairs.

    Window bounds are inclusive; inactive rules produce nothing.
    """
    return [
        MaterializedTask(scheduled_date=d, content=rule.content)
        for d in occurrence_dates(rule, window_from, window_to)
    ]
