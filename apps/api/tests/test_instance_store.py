"""
Instance store tests.

Covers idempotent upsert, customization protection, status transitions,
notes, and list ordering/pagination.
"""
import pytest
from datetime import date, time, timedelta
from uuid import uuid4

from core.exceptions import InvalidRuleError, InvalidTransitionError, NotFoundError
from models import TaskInstance
from services import instance_store
from services.instance_store import (
    UPSERT_CREATED,
    UPSERT_CUSTOMIZED,
    UPSERT_UNCHANGED,
    UPSERT_UPDATED,
    InstanceCandidate,
    InstanceFilter,
)
from services.recurrence import TaskContent
from tests.scheduling_helpers import NOW, TODAY, make_instance, make_rule


@pytest.fixture
def rule(db_session):
    return make_rule(db_session, owner_id=uuid4(), assignee_id=uuid4())


def _candidate(rule, scheduled_date=TODAY, **content):
    data = dict(name="Practice scales", duration_minutes=20)
    data.update(content)
    return InstanceCandidate(
        recurrence_rule_id=rule.id,
        assignee_id=rule.assignee_id,
        scheduled_date=scheduled_date,
        content=TaskContent(**data),
    )


class TestUpsert:
    def test_creates_pending_instance(self, db_session, rule):
        assert instance_store.upsert_instance(db_session, _candidate(rule)) == UPSERT_CREATED
        row = db_session.query(TaskInstance).one()
        assert row.status == "pending"
        assert row.completed_at is None
        assert row.is_customized is False
        assert row.name == "Practice scales"

    def test_second_upsert_is_unchanged(self, db_session, rule):
        instance_store.upsert_instance(db_session, _candidate(rule))
        assert instance_store.upsert_instance(db_session, _candidate(rule)) == UPSERT_UNCHANGED
        assert db_session.query(TaskInstance).count() == 1

    def test_refreshes_content_but_keeps_status(self, db_session, rule):
        instance_store.upsert_instance(db_session, _candidate(rule))
        row = db_session.query(TaskInstance).one()
        instance_store.set_status(db_session, row.id, "completed", actor_id=rule.assignee_id, now=NOW)

        outcome = instance_store.upsert_instance(db_session, _candidate(rule, name="Practice arpeggios"))

        assert outcome == UPSERT_UPDATED
        db_session.refresh(row)
        assert row.name == "Practice arpeggios"
        assert row.status == "completed"
        assert row.completed_at is not None

    def test_customized_instance_is_left_alone(self, db_session, rule):
        instance_store.upsert_instance(db_session, _candidate(rule))
        row = db_session.query(TaskInstance).one()
        instance_store.customize_instance(db_session, row.id, {"name": "Scales, slow"}, actor_id=uuid4())

        outcome = instance_store.upsert_instance(db_session, _candidate(rule, name="Practice arpeggios"))

        assert outcome == UPSERT_CUSTOMIZED
        db_session.refresh(row)
        assert row.name == "Scales, slow"

    def test_lost_insert_race_converges_on_existing_row(self, db_session, rule, monkeypatch):
        instance_store.upsert_instance(db_session, _candidate(rule))
        real_find = instance_store._find_materialized
        calls = {"n": 0}

        def stale_find(db, candidate):
            calls["n"] += 1
            if calls["n"] == 1:
                return None  # pretend the row was not there yet
            return real_find(db, candidate)

        monkeypatch.setattr(instance_store, "_find_materialized", stale_find)
        outcome = instance_store.upsert_instance(db_session, _candidate(rule))

        assert outcome == UPSERT_UNCHANGED
        assert db_session.query(TaskInstance).count() == 1


class TestSetStatus:
    def test_complete_sets_completed_at(self, db_session):
        row = make_instance(db_session, uuid4(), TODAY)
        actor = uuid4()
        instance_store.set_status(db_session, row.id, "completed", actor_id=actor, now=NOW)
        assert row.status == "completed"
        assert row.completed_at == NOW
        assert row.updated_by == actor

    def test_uncomplete_clears_completed_at(self, db_session):
        row = make_instance(db_session, uuid4(), TODAY, status="completed")
        instance_store.set_status(db_session, row.id, "pending", actor_id=uuid4(), now=NOW)
        assert row.status == "pending"
        assert row.completed_at is None

    def test_same_status_is_noop(self, db_session):
        row = make_instance(db_session, uuid4(), TODAY, status="completed")
        before = row.completed_at
        instance_store.set_status(db_session, row.id, "completed", actor_id=uuid4(), now=NOW + timedelta(hours=1))
        assert row.completed_at == before

    def test_direct_missed_rejected(self, db_session):
        row = make_instance(db_session, uuid4(), TODAY)
        with pytest.raises(InvalidTransitionError) as exc:
            instance_store.set_status(db_session, row.id, "missed", actor_id=uuid4(), now=NOW)
        assert exc.value.status_code == 409
        assert row.status == "pending"

    def test_missed_to_completed_rejected_for_student(self, db_session):
        row = make_instance(db_session, uuid4(), TODAY - timedelta(days=1), status="missed")
        with pytest.raises(InvalidTransitionError):
            instance_store.set_status(
                db_session, row.id, "completed", actor_id=row.assignee_id, now=NOW, actor_role="student",
            )
        assert row.status == "missed"

    def test_missed_to_completed_allowed_for_coach(self, db_session):
        row = make_instance(db_session, uuid4(), TODAY - timedelta(days=1), status="missed")
        instance_store.set_status(db_session, row.id, "completed", actor_id=uuid4(), now=NOW, actor_role="coach")
        assert row.status == "completed"
        assert row.completed_at == NOW

    def test_missed_to_pending_rejected(self, db_session):
        row = make_instance(db_session, uuid4(), TODAY - timedelta(days=1), status="missed")
        with pytest.raises(InvalidTransitionError):
            instance_store.set_status(db_session, row.id, "pending", actor_id=uuid4(), now=NOW, actor_role="coach")

    def test_unknown_status_rejected(self, db_session):
        row = make_instance(db_session, uuid4(), TODAY)
        with pytest.raises(InvalidTransitionError) as exc:
            instance_store.set_status(db_session, row.id, "skipped", actor_id=uuid4(), now=NOW)
        assert exc.value.current == "pending"

    def test_missing_instance(self, db_session):
        with pytest.raises(NotFoundError):
            instance_store.set_status(db_session, uuid4(), "completed", actor_id=uuid4(), now=NOW)


class TestNotes:
    def test_coach_note(self, db_session):
        row = make_instance(db_session, uuid4(), TODAY)
        instance_store.attach_note(db_session, row.id, "coach", "Nice work")
        assert row.coach_note == "Nice work"
        assert row.student_note is None

    def test_student_note_on_missed_instance(self, db_session):
        row = make_instance(db_session, uuid4(), TODAY - timedelta(days=2), status="missed")
        instance_store.attach_note(db_session, row.id, "student", "Was sick")
        assert row.student_note == "Was sick"
        assert row.status == "missed"

    def test_unknown_role(self, db_session):
        row = make_instance(db_session, uuid4(), TODAY)
        with pytest.raises(InvalidRuleError):
            instance_store.attach_note(db_session, row.id, "parent", "hi")


class TestCustomize:
    def test_no_change_does_not_mark_customized(self, db_session):
        row = make_instance(db_session, uuid4(), TODAY, name="Read chapter")
        instance_store.customize_instance(db_session, row.id, {"name": "Read chapter"}, actor_id=uuid4())
        assert row.is_customized is False

    def test_rejects_non_content_fields(self, db_session):
        row = make_instance(db_session, uuid4(), TODAY)
        with pytest.raises(InvalidRuleError):
            instance_store.customize_instance(db_session, row.id, {"status": "completed"}, actor_id=uuid4())


class TestListing:
    def test_ordered_by_date_then_time_untimed_last(self, db_session):
        who = uuid4()
        untimed = make_instance(db_session, who, TODAY, name="untimed")
        late = make_instance(db_session, who, TODAY, name="late", scheduled_time=time(18, 0))
        early = make_instance(db_session, who, TODAY, name="early", scheduled_time=time(7, 0))
        yesterday = make_instance(db_session, who, TODAY - timedelta(days=1), name="yesterday")

        rows = instance_store.list_instances(db_session, InstanceFilter(assignee_id=who))

        assert [r.id for r in rows] == [yesterday.id, early.id, late.id, untimed.id]

    def test_filters_and_pagination(self, db_session):
        who = uuid4()
        for i in range(5):
            make_instance(db_session, who, TODAY + timedelta(days=i))
        make_instance(db_session, uuid4(), TODAY)

        flt = InstanceFilter(assignee_id=who, date_from=TODAY + timedelta(days=1))
        page = instance_store.list_instances(db_session, flt, limit=2, offset=1)

        assert [r.scheduled_date for r in page] == [TODAY + timedelta(days=2), TODAY + timedelta(days=3)]
        assert instance_store.count_instances(db_session, flt) == 4

    def test_unknown_status_filter(self, db_session):
        with pytest.raises(InvalidRuleError):
            instance_store.list_instances(db_session, InstanceFilter(status="done"))


class TestDeletePending:
    def test_only_pending_uncustomized_rows_after_cutoff(self, db_session):
        rule = make_rule(db_session, owner_id=uuid4(), assignee_id=uuid4())
        who = rule.assignee_id
        past = make_instance(db_session, who, TODAY - timedelta(days=1), rule_id=rule.id)
        done = make_instance(db_session, who, TODAY + timedelta(days=1), status="completed", rule_id=rule.id)
        custom = make_instance(db_session, who, TODAY + timedelta(days=2), rule_id=rule.id, is_customized=True)
        kept = make_instance(db_session, who, TODAY + timedelta(days=3), rule_id=rule.id)
        gone = make_instance(db_session, who, TODAY + timedelta(days=4), rule_id=rule.id)

        removed = instance_store.delete_pending_instances(
            db_session, rule.id, TODAY, keep={(who, TODAY + timedelta(days=3))},
        )

        assert removed == 1
        remaining = {r.id for r in db_session.query(TaskInstance).all()}
        assert remaining == {past.id, done.id, custom.id, kept.id}
        assert gone.id not in remaining
