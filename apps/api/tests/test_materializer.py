"""
Materializer tests.

The materializer is pure: same rule + window -> same dates, no I/O.
Weekdays are 0=Sunday .. 6=Saturday.
"""
import random
import pytest
from datetime import date, timedelta
from uuid import uuid4

from services.materializer import materialize, occurrence_dates, weekday_index
from services.recurrence import RulePattern, TaskContent


CONTENT = TaskContent(name="Practice", duration_minutes=30)


def _rule(**overrides):
    data = dict(
        recurrence_type="daily",
        start_date=date(2024, 1, 1),
        content=CONTENT,
        assignee_id=uuid4(),
    )
    data.update(overrides)
    return RulePattern(**data)


class TestWeekdayIndex:
    def test_sunday_is_zero(self):
        assert weekday_index(date(2024, 1, 7)) == 0  # Sunday

    def test_monday_is_one(self):
        assert weekday_index(date(2024, 1, 1)) == 1

    def test_saturday_is_six(self):
        assert weekday_index(date(2024, 1, 6)) == 6


class TestWeekly:
    def test_monday_wednesday_over_two_weeks(self):
        """2024-01-01 was a Monday."""
        rule = _rule(recurrence_type="weekly", days_of_week=frozenset({1, 3}))
        dates = occurrence_dates(rule, date(2024, 1, 1), date(2024, 1, 14))
        assert dates == [
            date(2024, 1, 1),
            date(2024, 1, 3),
            date(2024, 1, 8),
            date(2024, 1, 10),
        ]

    def test_respects_end_date(self):
        rule = _rule(recurrence_type="weekly", days_of_week=frozenset({1, 3}),
                     end_date=date(2024, 1, 8))
        dates = occurrence_dates(rule, date(2024, 1, 1), date(2024, 1, 31))
        assert dates == [date(2024, 1, 1), date(2024, 1, 3), date(2024, 1, 8)]

    def test_window_before_start_is_empty(self):
        rule = _rule(recurrence_type="weekly", days_of_week=frozenset({0}),
                     start_date=date(2024, 2, 1))
        assert occurrence_dates(rule, date(2024, 1, 1), date(2024, 1, 31)) == []


class TestDaily:
    def test_every_day_in_window(self):
        dates = occurrence_dates(_rule(), date(2024, 1, 10), date(2024, 1, 12))
        assert dates == [date(2024, 1, 10), date(2024, 1, 11), date(2024, 1, 12)]

    def test_clamped_to_start(self):
        rule = _rule(start_date=date(2024, 1, 11))
        assert occurrence_dates(rule, date(2024, 1, 10), date(2024, 1, 12)) == [
            date(2024, 1, 11), date(2024, 1, 12),
        ]

    def test_single_day_window(self):
        assert occurrence_dates(_rule(), date(2024, 1, 5), date(2024, 1, 5)) == [date(2024, 1, 5)]

    def test_inverted_window_is_empty(self):
        assert occurrence_dates(_rule(), date(2024, 1, 5), date(2024, 1, 4)) == []


class TestCustomInterval:
    def test_every_third_day_anchored_on_start(self):
        rule = _rule(recurrence_type="custom_interval", interval_days=3)
        dates = occurrence_dates(rule, date(2024, 1, 1), date(2024, 1, 10))
        assert dates == [date(2024, 1, 1), date(2024, 1, 4), date(2024, 1, 7), date(2024, 1, 10)]

    def test_window_starting_mid_cycle(self):
        rule = _rule(recurrence_type="custom_interval", interval_days=3)
        dates = occurrence_dates(rule, date(2024, 1, 5), date(2024, 1, 12))
        assert dates == [date(2024, 1, 7), date(2024, 1, 10)]

    def test_window_on_cycle_boundary(self):
        rule = _rule(recurrence_type="custom_interval", interval_days=7)
        assert occurrence_dates(rule, date(2024, 1, 8), date(2024, 1, 8)) == [date(2024, 1, 8)]


class TestOnce:
    def test_inside_window(self):
        rule = _rule(recurrence_type="once", start_date=date(2024, 1, 9))
        assert occurrence_dates(rule, date(2024, 1, 1), date(2024, 1, 31)) == [date(2024, 1, 9)]

    def test_outside_window(self):
        rule = _rule(recurrence_type="once", start_date=date(2024, 2, 9))
        assert occurrence_dates(rule, date(2024, 1, 1), date(2024, 1, 31)) == []


class TestInactive:
    def test_inactive_rule_produces_nothing(self):
        rule = _rule(is_active=False)
        assert materialize(rule, date(2024, 1, 1), date(2024, 1, 31)) == []


class TestMaterialize:
    def test_content_snapshot_on_every_task(self):
        tasks = materialize(_rule(), date(2024, 1, 1), date(2024, 1, 3))
        assert [t.scheduled_date for t in tasks] == [date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 3)]
        assert all(t.content == CONTENT for t in tasks)


def _random_rule(rng):
    kind = rng.choice(["once", "daily", "weekly", "custom_interval"])
    start = date(2024, 1, 1) + timedelta(days=rng.randint(0, 60))
    end = None
    if rng.random() < 0.5:
        end = start + timedelta(days=rng.randint(0, 90))
    days = frozenset(rng.sample(range(7), rng.randint(1, 7))) if kind == "weekly" else frozenset()
    interval = rng.randint(1, 10) if kind == "custom_interval" else None
    return _rule(recurrence_type=kind, start_date=start, end_date=end,
                 days_of_week=days, interval_days=interval)


@pytest.mark.parametrize("seed", range(25))
def test_materialization_is_deterministic_and_bounded(seed):
    rng = random.Random(seed)
    rule = _random_rule(rng)
    window_from = date(2024, 1, 1) + timedelta(days=rng.randint(0, 90))
    window_to = window_from + timedelta(days=rng.randint(0, 60))

    first = materialize(rule, window_from, window_to)
    second = materialize(rule, window_from, window_to)
    assert first == second

    dates = [t.scheduled_date for t in first]
    assert dates == sorted(set(dates))
    for d in dates:
        assert window_from <= d <= window_to
        assert d >= rule.start_date
        if rule.end_date is not None:
            assert d <= rule.end_date
        if rule.recurrence_type == "weekly":
            assert weekday_index(d) in rule.days_of_week
        if rule.recurrence_type == "custom_interval":
            assert (d - rule.start_date).days % rule.interval_days == 0


@pytest.mark.parametrize("seed", range(10))
def test_split_windows_equal_whole_window(seed):
    rng = random.Random(1000 + seed)
    rule = _random_rule(rng)
    lo = date(2024, 1, 1)
    hi = lo + timedelta(days=120)
    mid = lo + timedelta(days=rng.randint(0, 119))

    whole = occurrence_dates(rule, lo, hi)
    split = occurrence_dates(rule, lo, mid) + occurrence_dates(rule, mid + timedelta(days=1), hi)
    assert whole == split
