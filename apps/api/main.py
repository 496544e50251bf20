"""
FastAPI application entry point.

Wires logging, Sentry, CORS, per-request logging, domain error rendering, and
the routers for rules, instances, templates/groups, progress, and the
cron-triggered jobs.
"""
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from routers import groups, instances, jobs, progress, rules
from core.clock import schedule_today
from core.config import settings
from core.database import check_db_connection
from core.exceptions import APIException, SchedulingError
from core.logging import setup_logging
from typing import List
import logging
import time
import uuid

setup_logging()
logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"

DEV_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
]


def _init_sentry() -> None:
    """Error tracking for the API process; the worker reports through the same DSN."""
    if not settings.SENTRY_DSN:
        return
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        send_default_pii=False,  # actor ids only, never note contents
    )
    logger.info(f"Sentry initialized for environment: {settings.ENVIRONMENT}")


def _cors_origins() -> List[str]:
    """CORS_ORIGINS (comma-separated) in production; anything goes with DEBUG."""
    if settings.DEBUG:
        return ["*"]
    if settings.CORS_ORIGINS:
        return [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]
    return DEV_ORIGINS


_init_sentry()

app = FastAPI(
    title="Routine Scheduling Engine API",
    description="Recurring task rules, dated task instances, and their pending/completed/missed lifecycle",
    version=APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Cron-Secret", "X-Request-ID"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Tag each request with an id and log method, path, status, and latency."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    started = time.perf_counter()
    fields = {"request_id": request_id, "method": request.method, "path": request.url.path}

    try:
        response = await call_next(request)
    except Exception:
        logger.error(
            f"Request failed: {request.method} {request.url.path}",
            exc_info=True,
            extra={"extra_fields": fields},
        )
        raise

    elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms} ms)",
        extra={"extra_fields": {**fields, "status_code": response.status_code, "process_time_ms": elapsed_ms}},
    )
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError):
    """
    Render domain errors as {detail, error_code, retryable[, field]}.

    Clients roll back optimistic updates on any of these; retryable errors
    also get a Retry-After hint.
    """
    log = logger.warning if exc.retryable or exc.status_code >= 500 else logger.info
    log(
        f"{exc.error_code}: {exc.detail}",
        extra={"extra_fields": {
            "method": request.method,
            "path": request.url.path,
            "error_code": exc.error_code,
        }},
    )
    headers = {"Retry-After": "5"} if exc.retryable else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(APIException)
async def api_error_handler(request: Request, exc: APIException):
    """Auth failures share the domain error body shape."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error_code": exc.error_code, "retryable": False},
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(
        f"Unhandled exception: {exc}",
        exc_info=True,
        extra={"extra_fields": {"method": request.method, "path": request.url.path}},
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error", "error_code": "INTERNAL_ERROR", "retryable": False},
    )


@app.get("/health")
async def health():
    """
    Readiness for load balancers.

    Returns:
        - 200 with the scheduling clock (timezone, today) when the store is reachable
        - 503 when the database is unavailable
    """
    if not check_db_connection():
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "database": "unavailable"},
        )
    return {
        "status": "healthy",
        "version": APP_VERSION,
        "schedule_timezone": settings.SCHEDULE_TIMEZONE,
        "today": schedule_today().isoformat(),
        "reconcile_window_days": settings.RECONCILE_WINDOW_DAYS,
    }


@app.get("/ping")
async def ping():
    """Liveness only; touches nothing."""
    return {"pong": True}


app.include_router(rules.router)
app.include_router(instances.router)
app.include_router(groups.templates_router)
app.include_router(groups.router)
app.include_router(progress.router)
app.include_router(jobs.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT)
