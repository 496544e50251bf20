"""
Celery tasks for background processing.

Tasks are defined here and imported by both the API (to enqueue on demand)
and the worker (to execute). Beat drives the nightly reconcile + sweep.
"""
from celery import Celery
from core.config import settings
from celerybeat_schedule import beat_schedule

# Create Celery app instance
celery_app = Celery(
    "routine_scheduler",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # crontab entries fire at local midnight of the scheduling zone
    timezone=settings.SCHEDULE_TIMEZONE,
    enable_utc=True,
    task_track_started=True,
    # Batch jobs are bounded by rule count x window size; a run that overshoots
    # is killed and the next cycle picks up where it left off.
    task_time_limit=30 * 60,
    task_soft_time_limit=25 * 60,
    beat_schedule=beat_schedule,
)

# Import tasks to register them
from . import schedule_tasks  # noqa: E402

__all__ = ["celery_app"]
