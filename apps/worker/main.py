"""
Celery worker entry point.

Imports the Celery app and the scheduling tasks from the API module; beat
runs in the same process for the nightly reconcile + sweep.

    celery -A main worker --beat --loglevel=info
"""
import os
import sys

# API directory: /api in the container, ../api in a checkout
API_DIR = os.getenv("API_DIR") or (
    "/api" if os.path.isdir("/api")
    else os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "api")
)
sys.path.insert(0, API_DIR)

from core.logging import setup_logging  # noqa: E402
from tasks import celery_app  # noqa: E402

setup_logging()

celery_app.autodiscover_tasks(['tasks'])


@celery_app.task(name="worker.health_check")
def health_check():
    """Liveness probe for the worker."""
    return {"status": "ok"}
