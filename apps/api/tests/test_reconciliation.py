"""
Reconciliation Scheduler tests.

Organization:
    1. Idempotence - re-running never duplicates or changes status
    2. Customization protection - edited instances survive template changes
    3. Group fan-out - one instance per member per date
    4. Failure isolation - a failed upsert or rule does not abort the batch
"""
import pytest
from collections import Counter
from datetime import date, timedelta
from uuid import uuid4

from sqlalchemy.exc import OperationalError, SQLAlchemyError

from core.exceptions import InvalidRuleError, NotFoundError
from models import GroupMember, TaskGroup, TaskInstance, TaskTemplate
from services import reconciliation
from services.instance_store import customize_instance, set_status
from services.reconciliation import (
    forward_window,
    reconcile_active_rules,
    reconcile_rule,
    reconcile_rule_by_id,
    run_reconciliation_job,
)
from tests.scheduling_helpers import NOW, TODAY, make_rule


def _keys(db):
    return [
        (r.recurrence_rule_id, r.assignee_id, r.scheduled_date)
        for r in db.query(TaskInstance).all()
    ]


class TestIdempotence:
    def test_window_is_materialized(self, db_session):
        make_rule(db_session, owner_id=uuid4(), assignee_id=uuid4())
        db_session.commit()

        result = reconcile_active_rules(db_session, TODAY, 6)

        assert result.created == 7  # today .. today+6
        assert result.rules_processed == 1
        assert db_session.query(TaskInstance).count() == 7

    def test_rerun_creates_nothing_and_keeps_status(self, db_session):
        rule = make_rule(db_session, owner_id=uuid4(), assignee_id=uuid4())
        db_session.commit()
        reconcile_active_rules(db_session, TODAY, 6)

        first = db_session.query(TaskInstance).filter(TaskInstance.scheduled_date == TODAY).one()
        set_status(db_session, first.id, "completed", actor_id=rule.assignee_id, now=NOW)
        db_session.commit()

        second = reconcile_active_rules(db_session, TODAY, 6)

        assert second.created == 0
        assert second.updated == 0
        assert second.unchanged == 7
        assert db_session.query(TaskInstance).count() == 7
        db_session.refresh(first)
        assert first.status == "completed"

    def test_rolling_window_only_adds_new_days(self, db_session):
        make_rule(db_session, owner_id=uuid4(), assignee_id=uuid4())
        db_session.commit()
        reconcile_active_rules(db_session, TODAY, 6)

        result = reconcile_active_rules(db_session, TODAY + timedelta(days=1), 6)

        assert result.created == 1
        assert db_session.query(TaskInstance).count() == 8

    def test_inactive_and_expired_rules_are_skipped(self, db_session):
        owner = uuid4()
        make_rule(db_session, owner_id=owner, assignee_id=uuid4(), is_active=False)
        make_rule(
            db_session, owner_id=owner, assignee_id=uuid4(),
            start_date=TODAY - timedelta(days=30), end_date=TODAY - timedelta(days=1),
        )
        db_session.commit()

        result = reconcile_active_rules(db_session, TODAY, 6)

        assert result.rules_processed == 0
        assert db_session.query(TaskInstance).count() == 0


class TestCustomizationProtection:
    def test_template_change_skips_customized_instances(self, db_session):
        coach = uuid4()
        template = TaskTemplate(coach_id=coach, name="Scales", duration_minutes=15)
        db_session.add(template)
        db_session.flush()
        make_rule(db_session, owner_id=coach, assignee_id=uuid4(), template_id=template.id)
        db_session.commit()
        reconcile_active_rules(db_session, TODAY, 2)

        rows = db_session.query(TaskInstance).order_by(TaskInstance.scheduled_date).all()
        customize_instance(db_session, rows[0].id, {"name": "Scales (slow)", "duration_minutes": 30},
                           actor_id=coach)
        template.name = "Arpeggios"
        template.duration_minutes = 25
        db_session.commit()

        result = reconcile_active_rules(db_session, TODAY, 2)

        assert result.customized_skipped == 1
        assert result.updated == 2
        db_session.expire_all()
        rows = db_session.query(TaskInstance).order_by(TaskInstance.scheduled_date).all()
        assert (rows[0].name, rows[0].duration_minutes) == ("Scales (slow)", 30)
        assert all((r.name, r.duration_minutes) == ("Arpeggios", 25) for r in rows[1:])


class TestGroupFanOut:
    def test_one_instance_per_member_per_date(self, db_session):
        coach = uuid4()
        group = TaskGroup(coach_id=coach, name="Tuesday class")
        db_session.add(group)
        db_session.flush()
        members = [uuid4(), uuid4(), uuid4()]
        for m in members:
            db_session.add(GroupMember(group_id=group.id, user_id=m))
        make_rule(db_session, owner_id=coach, group_id=group.id,
                  recurrence_type="weekly", days_of_week=[2])
        db_session.commit()

        reconcile_active_rules(db_session, TODAY, 13)  # two Tuesdays after Wed 2026-03-04

        rows = db_session.query(TaskInstance).all()
        assert len(rows) == 6
        assert {r.assignee_id for r in rows} == set(members)
        assert {r.scheduled_date for r in rows} == {date(2026, 3, 10), date(2026, 3, 17)}

    def test_new_member_picked_up_on_next_run(self, db_session):
        coach = uuid4()
        group = TaskGroup(coach_id=coach, name="Choir")
        db_session.add(group)
        db_session.flush()
        db_session.add(GroupMember(group_id=group.id, user_id=uuid4()))
        make_rule(db_session, owner_id=coach, group_id=group.id)
        db_session.commit()
        reconcile_active_rules(db_session, TODAY, 1)

        db_session.add(GroupMember(group_id=group.id, user_id=uuid4()))
        db_session.commit()
        result = reconcile_active_rules(db_session, TODAY, 1)

        assert result.created == 2
        assert db_session.query(TaskInstance).count() == 4


class TestFailureIsolation:
    def test_failed_upsert_is_counted_and_regenerated_next_run(self, db_session, monkeypatch):
        make_rule(db_session, owner_id=uuid4(), assignee_id=uuid4())
        db_session.commit()
        bad_day = TODAY + timedelta(days=2)
        real_upsert = reconciliation.upsert_instance

        def flaky_upsert(db, candidate):
            if candidate.scheduled_date == bad_day:
                raise OperationalError("INSERT", {}, Exception("connection reset"))
            return real_upsert(db, candidate)

        monkeypatch.setattr(reconciliation, "upsert_instance", flaky_upsert)
        first = reconcile_active_rules(db_session, TODAY, 4)
        assert first.failed_instances == 1
        assert first.created == 4
        assert bad_day not in {r.scheduled_date for r in db_session.query(TaskInstance).all()}

        monkeypatch.setattr(reconciliation, "upsert_instance", real_upsert)
        second = reconcile_active_rules(db_session, TODAY, 4)

        assert second.created == 1
        assert db_session.query(TaskInstance).count() == 5

    def test_failed_rule_does_not_block_others(self, db_session, monkeypatch):
        owner = uuid4()
        broken = make_rule(db_session, owner_id=owner, assignee_id=uuid4())
        healthy = make_rule(db_session, owner_id=owner, assignee_id=uuid4())
        db_session.commit()
        real_reconcile = reconciliation.reconcile_rule

        def failing_reconcile(db, rule, window_from, window_to):
            if rule.id == broken.id:
                raise SQLAlchemyError("boom")
            return real_reconcile(db, rule, window_from, window_to)

        monkeypatch.setattr(reconciliation, "reconcile_rule", failing_reconcile)
        result = reconcile_active_rules(db_session, TODAY, 2)

        assert result.rules_failed == 1
        assert result.failed_rule_ids == [str(broken.id)]
        assert {r.recurrence_rule_id for r in db_session.query(TaskInstance).all()} == {healthy.id}


class TestUniqueness:
    @pytest.mark.parametrize("windows", [
        [(0, 5), (0, 5)],
        [(0, 3), (2, 8), (1, 4)],
        [(5, 9), (0, 10), (3, 3)],
    ])
    def test_no_duplicate_dates_after_any_sequence(self, db_session, windows):
        rule = make_rule(db_session, owner_id=uuid4(), assignee_id=uuid4(),
                         recurrence_type="custom_interval", interval_days=2)
        db_session.commit()

        for lo, hi in windows:
            reconcile_rule(db_session, rule, TODAY + timedelta(days=lo), TODAY + timedelta(days=hi))
            db_session.commit()

        counts = Counter(_keys(db_session))
        assert counts
        assert max(counts.values()) == 1


class TestOnDemand:
    def test_reconcile_rule_by_id_explicit_window(self, db_session):
        rule = make_rule(db_session, owner_id=uuid4(), assignee_id=uuid4(),
                         start_date=date(2026, 1, 1))
        result = reconcile_rule_by_id(db_session, rule.id, date(2026, 1, 1), date(2026, 1, 10))
        assert result.created == 10

    def test_unknown_rule(self, db_session):
        with pytest.raises(NotFoundError):
            reconcile_rule_by_id(db_session, uuid4(), TODAY, TODAY)

    def test_inverted_window_rejected(self, db_session):
        rule = make_rule(db_session, owner_id=uuid4(), assignee_id=uuid4())
        with pytest.raises(InvalidRuleError):
            reconcile_rule_by_id(db_session, rule.id, TODAY, TODAY - timedelta(days=1))

    def test_window_limit(self, db_session):
        rule = make_rule(db_session, owner_id=uuid4(), assignee_id=uuid4())
        with pytest.raises(InvalidRuleError):
            reconcile_rule_by_id(db_session, rule.id, TODAY, TODAY + timedelta(days=400))


class TestJobWrapper:
    def test_success_payload(self, db_session):
        make_rule(db_session, owner_id=uuid4(), assignee_id=uuid4())
        db_session.commit()

        payload = run_reconciliation_job(db_session, TODAY, 3).to_dict()

        assert payload["success"] is True
        assert payload["affectedCount"] == 4
        assert payload["created"] == 4
        assert isinstance(payload["executionTimeMs"], int)
        assert payload["date"] == TODAY.isoformat()

    def test_store_failure_marks_run_failed(self, db_session, monkeypatch):
        def unavailable(db, window_from, window_to):
            raise OperationalError("SELECT", {}, Exception("could not connect"))

        monkeypatch.setattr(reconciliation, "_active_rule_ids", unavailable)
        payload = run_reconciliation_job(db_session, TODAY, 3).to_dict()

        assert payload["success"] is False
        assert "error" in payload
        assert "affectedCount" not in payload


def test_forward_window():
    assert forward_window(TODAY, 30) == (TODAY, TODAY + timedelta(days=30))
    assert forward_window(TODAY, -1) == (TODAY, TODAY)
