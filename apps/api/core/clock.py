"""
Wall-clock access for the scheduling engine.

Services take `today` / `now` as explicit parameters; only the entrypoints
(routers, Celery tasks) read the clock, through these helpers.
"""
from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from core.config import settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def schedule_today(tz_name: Optional[str] = None) -> date:
    """Current calendar date in the configured scheduling timezone."""
    tz = ZoneInfo(tz_name or settings.SCHEDULE_TIMEZONE)
    return utcnow().astimezone(tz).date()
