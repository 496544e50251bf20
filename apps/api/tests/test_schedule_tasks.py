"""
Celery task tests.

Tasks are called directly (no broker); they open their own sessions.
"""
from datetime import timedelta
from uuid import uuid4

from core.database import SessionLocal
from models import TaskInstance
from tests.scheduling_helpers import TODAY, make_instance, make_rule


def _freeze_today(monkeypatch):
    import tasks.schedule_tasks as schedule_tasks
    monkeypatch.setattr(schedule_tasks, "schedule_today", lambda: TODAY)
    return schedule_tasks


class TestScheduleTasks:
    def test_beat_schedule_registers_both_jobs(self):
        from tasks import celery_app

        scheduled = {entry["task"] for entry in celery_app.conf.beat_schedule.values()}
        assert scheduled == {"tasks.reconcile_recurring_tasks", "tasks.mark_missed_tasks"}
        assert "tasks.reconcile_recurring_tasks" in celery_app.tasks

    def test_beat_runs_on_scheduling_clock(self):
        from core.config import settings
        from tasks import celery_app

        assert celery_app.conf.timezone == settings.SCHEDULE_TIMEZONE
        assert celery_app.conf.enable_utc is True

    def test_mark_missed_tasks_task(self, seed_session, monkeypatch):
        schedule_tasks = _freeze_today(monkeypatch)
        with seed_session() as s:
            make_instance(s, uuid4(), TODAY - timedelta(days=1))

        result = schedule_tasks.mark_missed_tasks_task()

        assert result["success"] is True
        assert result["affectedCount"] == 1

    def test_reconcile_recurring_tasks_task(self, seed_session, monkeypatch):
        schedule_tasks = _freeze_today(monkeypatch)
        with seed_session() as s:
            make_rule(s, owner_id=uuid4(), assignee_id=uuid4())

        result = schedule_tasks.reconcile_recurring_tasks_task(window_days=2)

        assert result["success"] is True
        assert result["created"] == 3

    def test_reconcile_rule_task(self, seed_session, monkeypatch):
        schedule_tasks = _freeze_today(monkeypatch)
        with seed_session() as s:
            rule = make_rule(s, owner_id=uuid4(), assignee_id=uuid4())

        result = schedule_tasks.reconcile_rule_task(
            str(rule.id), TODAY.isoformat(), (TODAY + timedelta(days=4)).isoformat(),
        )

        assert result["status"] == "success"
        assert result["created"] == 5
        db = SessionLocal()
        try:
            assert db.query(TaskInstance).count() == 5
        finally:
            db.close()

    def test_reconcile_rule_task_unknown_rule(self, monkeypatch):
        schedule_tasks = _freeze_today(monkeypatch)
        result = schedule_tasks.reconcile_rule_task(str(uuid4()))
        assert result["status"] == "error"
