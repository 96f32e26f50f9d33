from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.engine import Connection

from sync_guesty.models.cache import AvailabilityCacheEntry, OAuthTokenEntry

availability_cache = AvailabilityCacheEntry.__table__
oauth_tokens = OAuthTokenEntry.__table__


def get_availability_entry(
    conn: Connection, property_key: str, now: datetime
) -> Optional[dict[str, Any]]:
    """
    Fetch the stored availability snapshot for a property if it has not expired.

    Args:
        conn (Connection): An active SQLAlchemy database connection.
        property_key (str): Local property key.
        now (datetime): Current UTC time for the expiry comparison.

    Returns:
        Optional[dict[str, Any]]: Row as a dict, or None when missing or expired.
    """
    row = (
        conn.execute(
            select(availability_cache).where(
                availability_cache.c.property_key == property_key,
                availability_cache.c.expires_at > now,
            )
        )
        .mappings()
        .fetchone()
    )
    return dict(row) if row else None


def get_oauth_token(conn: Connection, provider: str) -> Optional[dict[str, Any]]:
    row = (
        conn.execute(select(oauth_tokens).where(oauth_tokens.c.provider == provider))
        .mappings()
        .fetchone()
    )
    return dict(row) if row else None
