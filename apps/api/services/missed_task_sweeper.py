"""
Missed-Task Sweeper

Nightly job: every pending instance scheduled before today becomes `missed`,
so old tasks do not sit in "pending" forever and skew completion rates.

The transition is a single bulk UPDATE committed as one transaction; a failed
run changes nothing and is simply retried by the next trigger. Re-running on
the same day affects zero rows.
"""

from __future__ import annotations

import logging
import time
from datetime import date, datetime

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.exceptions import SchedulingError
from core.logging import log_job_run
from models import STATUS_MISSED, STATUS_PENDING, TaskInstance
from services.instance_store import translate_store_errors
from services.job_result import JobRunResult, elapsed_ms

logger = logging.getLogger(__name__)

JOB_NAME = "mark-missed-tasks"


def mark_missed_tasks(db: Session, today: date, now: datetime) -> int:
    """
    UPDATE task_instance SET status='missed', updated_at=now
    WHERE status='pending' AND scheduled_date < today

    Returns the number of rows transitioned. Commits on success, rolls back
    on failure (all-or-nothing).
    """
    stmt = (
        update(TaskInstance)
        .where(
            TaskInstance.status == STATUS_PENDING,
            TaskInstance.scheduled_date < today,
        )
        .values(status=STATUS_MISSED, updated_at=now)
        .execution_options(synchronize_session="fetch")
    )
    try:
        with translate_store_errors("mark_missed_tasks"):
            affected = db.execute(stmt).rowcount or 0
            db.commit()
    except Exception:
        db.rollback()
        raise
    return affected


def run_sweep_job(db: Session, today: date, now: datetime) -> JobRunResult:
    """Job wrapper: times the sweep and turns failures into a failed run."""
    started = time.monotonic()
    logger.info(
        f"Missed-task sweep started for {today.isoformat()}",
        extra={"extra_fields": {"job": JOB_NAME, "today": today.isoformat()}},
    )
    try:
        affected = mark_missed_tasks(db, today, now)
    except (SQLAlchemyError, SchedulingError) as e:
        logger.warning("Missed-task sweep aborted", exc_info=True)
        run = JobRunResult(
            job=JOB_NAME, success=False, execution_time_ms=elapsed_ms(started), run_date=today, error=str(e),
        )
        log_job_run(logger, run)
        return run

    run = JobRunResult(
        job=JOB_NAME,
        success=True,
        affected_count=affected,
        execution_time_ms=elapsed_ms(started),
        run_date=today,
        details={"tasksMarkedMissed": affected},
    )
    log_job_run(logger, run, f"Marked {affected} tasks as missed in {run.execution_time_ms} ms")
    return run

