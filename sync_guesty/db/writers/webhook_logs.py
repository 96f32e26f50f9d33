from typing import Any, Optional

import structlog
from sqlalchemy import insert, update
from sqlalchemy.engine import Connection

from sync_guesty.models.webhook_logs import WebhookLog, WebhookStatus
from sync_guesty.utils.datetime import utc_now

logger = structlog.get_logger(__name__)

webhook_logs = WebhookLog.__table__


def insert_webhook_log(
    conn: Connection,
    source: str,
    event_type: str,
    payload: Any,
    event_id: Optional[str] = None,
) -> int:
    """
    Append a webhook delivery to the audit log with status "received".

    Args:
        conn (Connection): Active connection inside a transaction.
        source (str): "guesty" or "stripe".
        event_type (str): Raw event type as sent by the vendor.
        payload (Any): Parsed JSON body (or a raw-text wrapper for unparsable bodies).
        event_id (Optional[str]): Vendor delivery id, used for de-duplication.

    Returns:
        int: The new log row id.
    """
    result = conn.execute(
        insert(webhook_logs).values(
            source=source,
            event_id=event_id,
            event_type=event_type,
            payload=payload,
            status=WebhookStatus.RECEIVED.value,
            received_at=utc_now(),
        )
    )
    log_id = result.inserted_primary_key[0]
    logger.debug("webhook_logged", log_id=log_id, source=source, event_type=event_type)
    return int(log_id)


def finish_webhook_log(
    conn: Connection,
    log_id: int,
    status: WebhookStatus,
    error: Optional[str] = None,
    notice: Optional[str] = None,
) -> None:
    """Record the processing outcome of a logged delivery."""
    conn.execute(
        update(webhook_logs)
        .where(webhook_logs.c.id == log_id)
        .values(status=status.value, error=error, notice=notice, processed_at=utc_now())
    )
