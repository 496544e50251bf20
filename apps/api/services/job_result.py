"""
Job run outcome shared by the batch jobs (reconciliation, missed-task sweep).

`to_dict()` is the cron entrypoint contract:
    {success, affectedCount, executionTimeMs, ...}  or  {success: false, error}
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Optional


@dataclass
class JobRunResult:
    job: str
    success: bool
    affected_count: int = 0
    execution_time_ms: int = 0
    run_date: Optional[date] = None
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        if not self.success:
            return {
                "success": False,
                "job": self.job,
                "error": self.error or "unknown error",
                "executionTimeMs": self.execution_time_ms,
            }
        out: Dict[str, Any] = {
            "success": True,
            "job": self.job,
            "affectedCount": self.affected_count,
            "executionTimeMs": self.execution_time_ms,
        }
        if self.run_date is not None:
            out["date"] = self.run_date.isoformat()
        out.update(self.details)
        return out


def elapsed_ms(started: float) -> int:
    """Milliseconds since a time.monotonic() reading."""
    return int(round((time.monotonic() - started) * 1000))
