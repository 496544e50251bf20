"""
Scheduled Jobs API Router

HTTP entrypoints for the external cron trigger. No request body. Each returns
    {"success": true, "affectedCount": n, "executionTimeMs": ms, ...}
or, with status 500,
    {"success": false, "error": "..."}

Cron setup (nightly, reconcile first so the sweep sees today's rows):

    0 0 * * *  curl -X POST -H "X-Cron-Secret: $CRON_SECRET" $API/v1/jobs/reconcile
    5 0 * * *  curl -X POST -H "X-Cron-Secret: $CRON_SECRET" $API/v1/jobs/mark-missed-tasks
"""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from core.database import get_db_sync
from core.auth import require_cron
from core.clock import schedule_today, utcnow
from core.config import settings
from services.job_result import JobRunResult
from services.missed_task_sweeper import run_sweep_job
from services.reconciliation import run_reconciliation_job

router = APIRouter(prefix="/v1/jobs", tags=["jobs"])


def _job_response(result: JobRunResult) -> JSONResponse:
    return JSONResponse(
        status_code=200 if result.success else 500,
        content=result.to_dict(),
    )


def get_job_db():
    """
    Session for batch jobs.

    Jobs manage their own commits and report failures in the response body,
    so this does not wrap the request in a transaction.
    """
    db: Session = get_db_sync()
    try:
        yield db
    finally:
        db.close()


@router.post("/mark-missed-tasks", dependencies=[Depends(require_cron)])
def mark_missed_tasks_endpoint(db: Session = Depends(get_job_db)):
    """Mark every pending task scheduled before today as missed."""
    result = run_sweep_job(db, schedule_today(), utcnow())
    return _job_response(result)


@router.post("/reconcile", dependencies=[Depends(require_cron)])
def reconcile_endpoint(db: Session = Depends(get_job_db)):
    """Materialize the forward window for every active rule."""
    result = run_reconciliation_job(db, schedule_today(), settings.RECONCILE_WINDOW_DAYS)
    return _job_response(result)
