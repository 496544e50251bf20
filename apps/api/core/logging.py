"""
Structured logging configuration.

Every structured field is passed as `extra={"extra_fields": {...}}`. In
production the fields become top-level keys of a JSON line so job runs
(affected counts, elapsed time) can be aggregated; in development they are
appended to the text line as key=value pairs.
"""
import logging
import sys
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from core.config import settings

NOISY_LOGGERS = {
    "sqlalchemy.engine": logging.WARNING,
    "celery": logging.INFO,
    "urllib3": logging.WARNING,
}


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    fields = getattr(record, "extra_fields", None)
    return fields if isinstance(fields, dict) else {}


class JSONFormatter(logging.Formatter):
    """One JSON object per line; extra_fields are merged in at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        log_data.update(_extra_fields(record))
        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines for local development."""

    def __init__(self):
        super().__init__("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = _extra_fields(record)
        if fields:
            line += " | " + " ".join(f"{k}={v}" for k, v in fields.items())
        return line


def log_job_run(logger: logging.Logger, result, message: Optional[str] = None) -> None:
    """
    Emit the single summary record for a batch job run.

    `result` is a services.job_result.JobRunResult; its cron payload is logged
    as structured fields so log lines and HTTP responses carry the same data.
    """
    payload = result.to_dict()
    if result.success:
        logger.info(
            message or f"{result.job} finished: {result.affected_count} affected in {result.execution_time_ms} ms",
            extra={"extra_fields": payload},
        )
    else:
        logger.error(
            message or f"{result.job} failed after {result.execution_time_ms} ms: {result.error}",
            extra={"extra_fields": payload},
        )


def setup_logging() -> logging.Logger:
    """
    Configure application-wide logging.

    JSON in production (or LOG_FORMAT=json), text otherwise.
    """
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    if settings.LOG_FORMAT == "json" or settings.ENVIRONMENT == "production":
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = TextFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    for name, level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    return root_logger
