from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.engine import Connection

from sync_guesty.models.webhook_logs import WebhookLog, WebhookStatus

webhook_logs = WebhookLog.__table__


def is_duplicate_event(conn: Connection, source: str, event_id: Optional[str]) -> bool:
    """
    Check whether a delivery with this (source, event_id) was already processed.

    Events without a vendor id can't be de-duplicated and always return False.
    """
    if not event_id:
        return False
    result = conn.execute(
        select(webhook_logs.c.id)
        .where(
            webhook_logs.c.source == source,
            webhook_logs.c.event_id == event_id,
            webhook_logs.c.status == WebhookStatus.PROCESSED.value,
        )
        .limit(1)
    )
    return result.fetchone() is not None


def get_webhook_log(conn: Connection, log_id: int) -> Optional[dict[str, Any]]:
    row = (
        conn.execute(select(webhook_logs).where(webhook_logs.c.id == log_id))
        .mappings()
        .fetchone()
    )
    return dict(row) if row else None


def list_webhook_logs(
    conn: Connection,
    page: int = 1,
    limit: int = 20,
    status: Optional[str] = None,
    event_type: Optional[str] = None,
    source: Optional[str] = None,
) -> tuple[list[dict[str, Any]], int]:
    """
    Page through webhook log rows, newest first.

    Args:
        conn (Connection): An active SQLAlchemy database connection.
        page (int): 1-based page number.
        limit (int): Page size.
        status (Optional[str]): received / processed / failed filter.
        event_type (Optional[str]): Exact event type filter.
        source (Optional[str]): guesty / stripe filter.

    Returns:
        tuple[list[dict[str, Any]], int]: The page of rows and the total row count.
    """
    criteria = []
    if status:
        criteria.append(webhook_logs.c.status == status)
    if event_type:
        criteria.append(webhook_logs.c.event_type == event_type)
    if source:
        criteria.append(webhook_logs.c.source == source)

    total = conn.execute(
        select(func.count()).select_from(webhook_logs).where(*criteria)
    ).scalar_one()
    result = conn.execute(
        select(webhook_logs)
        .where(*criteria)
        .order_by(webhook_logs.c.received_at.desc(), webhook_logs.c.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return [dict(row) for row in result.mappings()], total
