"""
Dialect-aware upsert helper with IS DISTINCT FROM optimization.

Postgres in production, SQLite in tests: both support
INSERT ... ON CONFLICT DO UPDATE through their SQLAlchemy dialect insert().
"""

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection


def _dialect_insert(conn: Connection, table: type) -> Any:
    if conn.dialect.name == "sqlite":
        return sqlite.insert(table)
    return postgresql.insert(table)


def upsert_with_distinct_check(
    conn: Connection,
    table: type,
    rows: list[dict[str, Any]],
    conflict_column: str,
    distinct_column: str,
    update_columns: list[str] | None = None,
) -> None:
    """
    Perform upsert with IS DISTINCT FROM optimization.

    Only updates rows where the distinct_column value has actually changed,
    so an identical refresh does not rewrite the row.

    Args:
        conn: Active database connection (within transaction)
        table: SQLAlchemy ORM table class (e.g., AvailabilityCacheEntry)
        rows: List of row dicts to upsert
        conflict_column: Column name for ON CONFLICT (the primary key)
        distinct_column: Column to check for changes
        update_columns: Columns to update on conflict (default: [distinct_column, "updated_at"])

    Example:
        >>> with engine.begin() as conn:
        ...     upsert_with_distinct_check(
        ...         conn=conn,
        ...         table=OAuthTokenEntry,
        ...         rows=[{"provider": "guesty", "access_token": "...", ...}],
        ...         conflict_column="provider",
        ...         distinct_column="access_token",
        ...     )
    """
    if not rows:
        return

    if update_columns is None:
        update_columns = [distinct_column, "updated_at"]

    stmt = _dialect_insert(conn, table).values(rows)

    set_dict = {col: getattr(stmt.excluded, col) for col in update_columns}

    distinct_check = getattr(table, distinct_column).is_distinct_from(
        getattr(stmt.excluded, distinct_column)
    )

    stmt = stmt.on_conflict_do_update(
        index_elements=[conflict_column],
        set_=set_dict,
        where=distinct_check,
    )

    conn.execute(stmt)
