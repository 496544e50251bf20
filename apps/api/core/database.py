"""
Database engine, session factory, and request-scoped sessions.

PostgreSQL in production (QueuePool). Any other SQLAlchemy URL is accepted so
tests can run against in-memory SQLite.
"""
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool
from core.config import settings
import logging
import time

logger = logging.getLogger(__name__)

CONNECT_ATTEMPTS = 3
CONNECT_BACKOFF_SECONDS = 0.1


def _sqlite_engine(url: str) -> Engine:
    """
    One shared connection (StaticPool), with BEGIN emitted by SQLAlchemy so
    SAVEPOINTs nest the same way they do on PostgreSQL.
    """
    sqlite_engine = create_engine(
        url,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=settings.DEBUG,
    )

    @event.listens_for(sqlite_engine, "connect")
    def _on_connect(dbapi_conn, connection_record):
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(sqlite_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return sqlite_engine


def _postgres_engine(url: str) -> Engine:
    pg_engine = create_engine(
        url,
        poolclass=QueuePool,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,  # drop connections the server closed overnight
        echo=settings.DEBUG,
    )

    @event.listens_for(pg_engine, "checkout")
    def _on_checkout(dbapi_conn, connection_record, connection_proxy):
        logger.debug("Connection checked out from pool")

    @event.listens_for(pg_engine, "checkin")
    def _on_checkin(dbapi_conn, connection_record):
        logger.debug("Connection returned to pool")

    return pg_engine


def create_db_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        return _sqlite_engine(url)
    return _postgres_engine(url)


engine = create_db_engine(settings.database_url)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,  # responses are serialized after commit
)

Base = declarative_base()


def _open_session() -> Session:
    """
    Open a session and verify the connection, with exponential backoff.

    Raises TransientStoreError once every attempt has failed.
    """
    from core.exceptions import TransientStoreError

    for attempt in range(CONNECT_ATTEMPTS):
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
            return db
        except OperationalError as e:
            db.close()
            if attempt == CONNECT_ATTEMPTS - 1:
                logger.error(f"Failed to establish database connection after {CONNECT_ATTEMPTS} attempts: {e}")
                raise TransientStoreError("Database unavailable") from e
            logger.warning(f"Database connection attempt {attempt + 1} failed, retrying...")
            time.sleep(CONNECT_BACKOFF_SECONDS * (2 ** attempt))


def get_db():
    """
    FastAPI dependency: one session per request.

    Commits when the handler returns, rolls back on any exception. Domain and
    HTTP errors are expected outcomes and are not logged here.
    """
    from fastapi import HTTPException
    from core.exceptions import SchedulingError

    db = _open_session()
    try:
        yield db
        db.commit()
    except Exception as e:
        db.rollback()
        if not isinstance(e, (HTTPException, SchedulingError)):
            logger.error(f"Database transaction error: {e}")
        raise
    finally:
        db.close()


def get_db_sync() -> Session:
    """
    Session for Celery tasks and cron jobs.

    Does NOT auto-commit or auto-rollback; the job owns its transactions.
    """
    return SessionLocal()


def check_db_connection() -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except OperationalError as e:
        logger.error(f"Database connection check failed: {e}")
        return False
