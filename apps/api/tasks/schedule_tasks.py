"""
Recurrence Scheduling Tasks

Nightly batch jobs run by Celery Beat (see celerybeat_schedule.py), plus an
on-demand single-rule reconcile the API can enqueue.

Task contract:
- Idempotent: safe to run any number of times per day
- No retry loop: a failed run is logged and the next scheduled run retries
- Return value is the same payload the HTTP cron entrypoint returns
"""

import logging
from datetime import date
from typing import Dict, Optional
from uuid import UUID

from celery import Task
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tasks import celery_app
from core.clock import schedule_today, utcnow
from core.config import settings
from core.database import get_db_sync
from core.exceptions import SchedulingError
from services.missed_task_sweeper import run_sweep_job
from services.reconciliation import forward_window, reconcile_rule_by_id, run_reconciliation_job

logger = logging.getLogger(__name__)


@celery_app.task(name="tasks.mark_missed_tasks")
def mark_missed_tasks_task() -> Dict:
    """Sweep stale pending instances into missed."""
    db: Session = get_db_sync()
    try:
        return run_sweep_job(db, schedule_today(), utcnow()).to_dict()
    finally:
        db.close()


@celery_app.task(name="tasks.reconcile_recurring_tasks")
def reconcile_recurring_tasks_task(window_days: Optional[int] = None) -> Dict:
    """Materialize the forward window for every active rule."""
    db: Session = get_db_sync()
    try:
        days = settings.RECONCILE_WINDOW_DAYS if window_days is None else int(window_days)
        return run_reconciliation_job(db, schedule_today(), days).to_dict()
    finally:
        db.close()


@celery_app.task(name="tasks.reconcile_rule", bind=True)
def reconcile_rule_task(
    self: Task,
    rule_id: str,
    from_date: Optional[str] = None,
    to_date: Optional[str] = None,
) -> Dict:
    """
    Reconcile one rule, e.g. after a bulk import of AI-generated plans.

    Dates are ISO strings (JSON serializer); defaults to the forward window.
    """
    default_from, default_to = forward_window(schedule_today(), settings.RECONCILE_WINDOW_DAYS)
    window_from = date.fromisoformat(from_date) if from_date else default_from
    window_to = date.fromisoformat(to_date) if to_date else default_to

    db: Session = get_db_sync()
    try:
        result = reconcile_rule_by_id(db, UUID(rule_id), window_from, window_to)
        db.commit()
        return {"status": "success", "rule_id": rule_id, **result.to_dict()}
    except (SQLAlchemyError, SchedulingError) as e:
        db.rollback()
        logger.error(
            f"Error reconciling rule {rule_id}: {e}",
            exc_info=True,
            extra={"extra_fields": {"recurrence_rule_id": rule_id, "task_id": self.request.id}},
        )
        return {"status": "error", "rule_id": rule_id, "message": str(e)}
    finally:
        db.close()
