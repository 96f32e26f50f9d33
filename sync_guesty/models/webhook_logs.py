"""SQLAlchemy model for the inbound webhook audit log."""

from enum import Enum

from sqlalchemy import Column, DateTime, Index, Integer, String, Text
from sqlalchemy.sql import func

from sync_guesty.config import SCHEMA
from sync_guesty.models.base import Base, JSONType


class WebhookStatus(str, Enum):
    RECEIVED = "received"
    PROCESSED = "processed"
    FAILED = "failed"


class WebhookLog(Base):
    """
    ORM model for one inbound webhook delivery (Guesty or Stripe).

    Rows are inserted as "received" before processing and only ever updated to
    record the outcome (status, error, notice, processed_at). A processed row
    with the same (source, event_id) marks a later delivery as a duplicate.
    """

    __tablename__ = "webhook_logs"
    __table_args__ = (
        Index("ix_webhook_logs_source_event_id", "source", "event_id"),
        {"schema": SCHEMA},
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    source = Column(String(16), nullable=False)
    event_id = Column(String, nullable=True)
    event_type = Column(String, nullable=False, index=True)
    payload = Column(JSONType, nullable=True)
    status = Column(String(16), nullable=False, server_default=WebhookStatus.RECEIVED.value)
    error = Column(Text, nullable=True)
    notice = Column(Text, nullable=True)
    received_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
