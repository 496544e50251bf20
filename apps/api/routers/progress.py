"""
Progress API Router

Completion statistics for an assignee over a date range. Only decided
instances (completed or missed) count toward the completion rate.
"""

import logging
from datetime import date, timedelta
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from core.database import get_db
from core.auth import Actor, get_current_actor
from core.clock import schedule_today
from core.exceptions import InvalidRuleError
from schemas import CompletionStatsResponse
from services.instance_api import check_assignee_access
from services.progress_service import get_completion_stats

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/progress", tags=["progress"])

DEFAULT_RANGE_DAYS = 30


@router.get("/completion", response_model=CompletionStatsResponse)
def completion_stats_endpoint(
    assignee_id: Optional[UUID] = Query(None, description="Defaults to the caller"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    """Completed / missed / pending counts; range defaults to the last 30 days."""
    target = assignee_id or actor.id
    check_assignee_access(actor, target)

    end = date_to or schedule_today()
    start = date_from or (end - timedelta(days=DEFAULT_RANGE_DAYS - 1))
    if end < start:
        raise InvalidRuleError("date_to must not be before date_from", field="date_to")

    return get_completion_stats(db, target, start, end)
