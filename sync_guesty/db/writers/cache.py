from datetime import datetime

from sqlalchemy.engine import Connection

from sync_guesty.db.writers._upsert import upsert_with_distinct_check
from sync_guesty.models.cache import AvailabilityCacheEntry, OAuthTokenEntry
from sync_guesty.utils.datetime import utc_now


def upsert_availability_entry(
    conn: Connection,
    property_key: str,
    blocked_dates: list[str],
    range_start: str,
    range_end: str,
    refreshed_at: datetime,
    expires_at: datetime,
) -> None:
    """
    Store the latest blocked-date snapshot for a property, keyed by property_key.

    Args:
        conn (Connection): Active connection inside a transaction.
        property_key (str): Local property key.
        blocked_dates (list[str]): Sorted ISO dates.
        range_start (str): First date covered (ISO).
        range_end (str): Last date covered (ISO).
        refreshed_at (datetime): When the snapshot was fetched.
        expires_at (datetime): After this the row is ignored by readers.
    """
    upsert_with_distinct_check(
        conn=conn,
        table=AvailabilityCacheEntry,
        rows=[
            {
                "property_key": property_key,
                "blocked_dates": blocked_dates,
                "range_start": range_start,
                "range_end": range_end,
                "refreshed_at": refreshed_at,
                "expires_at": expires_at,
                "updated_at": utc_now(),
            }
        ],
        conflict_column="property_key",
        distinct_column="refreshed_at",
        update_columns=[
            "blocked_dates",
            "range_start",
            "range_end",
            "refreshed_at",
            "expires_at",
            "updated_at",
        ],
    )


def upsert_oauth_token(
    conn: Connection, provider: str, access_token: str, expires_at: datetime
) -> None:
    upsert_with_distinct_check(
        conn=conn,
        table=OAuthTokenEntry,
        rows=[
            {
                "provider": provider,
                "access_token": access_token,
                "expires_at": expires_at,
                "updated_at": utc_now(),
            }
        ],
        conflict_column="provider",
        distinct_column="access_token",
        update_columns=["access_token", "expires_at", "updated_at"],
    )
