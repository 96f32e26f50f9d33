"""SQLAlchemy models backing the persistent tiers of the availability and token caches."""

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.sql import func

from sync_guesty.config import SCHEMA
from sync_guesty.models.base import Base, JSONType


class AvailabilityCacheEntry(Base):
    """
    Last good blocked-date snapshot per property.

    Upserted on every successful refresh; readers ignore rows whose expires_at
    has passed.
    """

    __tablename__ = "availability_cache"
    __table_args__ = {"schema": SCHEMA}

    property_key = Column(String(32), primary_key=True)
    blocked_dates = Column(JSONType, nullable=False)
    range_start = Column(String(10), nullable=False)
    range_end = Column(String(10), nullable=False)
    refreshed_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class OAuthTokenEntry(Base):
    """Singleton row per provider holding the shared upstream bearer token."""

    __tablename__ = "oauth_tokens"
    __table_args__ = {"schema": SCHEMA}

    provider = Column(String(32), primary_key=True)
    access_token = Column(Text, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
