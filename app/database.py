from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
import os
import time
import logging

logger = logging.getLogger(__name__)

# Timing logger is separate so DEBUG_QUERIES can be toggled on its own
query_logger = logging.getLogger("sqlalchemy.query_timing")
query_logger.setLevel(logging.DEBUG if os.getenv("DEBUG_QUERIES") else logging.WARNING)

SLOW_QUERY_THRESHOLD_MS = int(os.getenv("SLOW_QUERY_THRESHOLD_MS", "100"))
MAX_LOGGED_STATEMENT_CHARS = 500


def normalize_database_url(url: str) -> str:
    """Hosted Postgres providers hand out postgres://; SQLAlchemy wants postgresql://"""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def build_engine(url: str) -> Engine:
    """
    Create the engine for DATABASE_URL.

    SQLite (development and tests) gets foreign keys switched on, and an
    in-memory URL shares one connection so every session sees the same tables.
    Postgres gets a bounded pool sized from DB_POOL_SIZE / DB_MAX_OVERFLOW.
    """
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        sqlite_engine = create_engine(url, **kwargs)

        @event.listens_for(sqlite_engine, "connect")
        def enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return sqlite_engine

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_recycle=1800,
        pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
        max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
        pool_timeout=30,
    )


@event.listens_for(Engine, "before_cursor_execute")
def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    conn.info.setdefault("query_start_time", []).append(time.perf_counter())


@event.listens_for(Engine, "after_cursor_execute")
def after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    """Warn on statements slower than SLOW_QUERY_THRESHOLD_MS."""
    start_times = conn.info.get("query_start_time", [])
    if not start_times:
        return

    elapsed_ms = (time.perf_counter() - start_times.pop()) * 1000
    if elapsed_ms > SLOW_QUERY_THRESHOLD_MS:
        query_logger.warning(
            f"SLOW QUERY ({elapsed_ms:.2f}ms): {statement[:MAX_LOGGED_STATEMENT_CHARS]}"
        )


DATABASE_URL = normalize_database_url(os.getenv("DATABASE_URL", "sqlite:///./studyforge.db"))

engine = build_engine(DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dependency for FastAPI routes"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
