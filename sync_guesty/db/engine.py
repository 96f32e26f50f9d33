"""
SQLAlchemy engine singleton with production-ready connection pooling.

Pool sizing applies to server databases only; SQLite URLs (local runs and the
test suite) get the driver defaults plus cross-thread access.
"""

from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from sync_guesty.config import DATABASE_URL


def build_engine(url: str) -> Engine:
    """
    Create an engine for url.

    Args:
        url: SQLAlchemy database URL

    Returns:
        Engine: Configured engine
    """
    options: dict[str, Any] = {"future": True, "echo": False}
    if url.startswith("sqlite"):
        # Route handlers and background tasks run on worker threads
        options["connect_args"] = {"check_same_thread": False}
    else:
        options.update(
            pool_size=10,
            max_overflow=20,
            pool_pre_ping=True,
            pool_recycle=3600,
        )
    return create_engine(url, **options)


engine: Engine = build_engine(DATABASE_URL)  # type: ignore[arg-type]


def check_engine_health(target: Engine = engine) -> bool:
    """
    Check if database engine is healthy and connections are working.

    Used by the /ready endpoint to verify database connectivity before
    allowing traffic to the service.

    Returns:
        bool: True if database is reachable and healthy, False otherwise
    """
    try:
        with target.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
