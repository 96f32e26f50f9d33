from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.engine import Connection

from sync_guesty.models.bookings import Booking, BookingStatus, SyncStatus

bookings = Booking.__table__


def _one(conn: Connection, *criteria: Any) -> Optional[dict[str, Any]]:
    row = conn.execute(select(bookings).where(*criteria).limit(1)).mappings().fetchone()
    return dict(row) if row else None


def get_booking(conn: Connection, booking_id: str) -> Optional[dict[str, Any]]:
    """
    Fetch a booking by primary key.

    Args:
        conn (Connection): An active SQLAlchemy database connection.
        booking_id (str): Booking UUID.

    Returns:
        Optional[dict[str, Any]]: Booking row as a dict, or None if not found.
    """
    return _one(conn, bookings.c.id == booking_id)


def get_booking_by_reference(conn: Connection, reference: str) -> Optional[dict[str, Any]]:
    return _one(conn, bookings.c.booking_reference == reference)


def get_booking_by_reservation_id(
    conn: Connection, reservation_id: str
) -> Optional[dict[str, Any]]:
    return _one(conn, bookings.c.guesty_reservation_id == reservation_id)


def find_unlinked_booking(
    conn: Connection,
    property_key: str,
    check_in: date,
    check_out: date,
    guest_email: Optional[str],
) -> Optional[dict[str, Any]]:
    """
    Match a Guesty reservation to a local booking that has not been linked yet.

    Matches on property and stay dates, plus guest email when Guesty sent one.
    Cancelled bookings are never matched.

    Args:
        conn (Connection): An active SQLAlchemy database connection.
        property_key (str): Local property key.
        check_in (date): Stay start.
        check_out (date): Stay end.
        guest_email (Optional[str]): Guest email from the reservation, if any.

    Returns:
        Optional[dict[str, Any]]: The oldest matching booking, or None.
    """
    criteria = [
        bookings.c.guesty_reservation_id.is_(None),
        bookings.c.property_key == property_key,
        bookings.c.check_in_date == check_in,
        bookings.c.check_out_date == check_out,
        bookings.c.status != BookingStatus.CANCELLED.value,
    ]
    if guest_email:
        criteria.append(func.lower(bookings.c.guest_email) == guest_email.strip().lower())
    row = (
        conn.execute(select(bookings).where(*criteria).order_by(bookings.c.created_at).limit(1))
        .mappings()
        .fetchone()
    )
    return dict(row) if row else None


def list_failed_booking_ids(conn: Connection) -> list[str]:
    result = conn.execute(
        select(bookings.c.id)
        .where(bookings.c.guesty_sync_status == SyncStatus.FAILED.value)
        .order_by(bookings.c.created_at)
    )
    return [row[0] for row in result]


def get_sync_counts(conn: Connection) -> dict[str, int]:
    """
    Count bookings per Guesty sync status.

    Returns:
        dict[str, int]: {"pending": n, "synced": n, "failed": n}; missing statuses are 0.
    """
    counts = {status.value: 0 for status in SyncStatus}
    result = conn.execute(
        select(bookings.c.guesty_sync_status, func.count()).group_by(
            bookings.c.guesty_sync_status
        )
    )
    for sync_status, count in result:
        counts[sync_status] = count
    return counts


def get_last_synced_at(conn: Connection) -> Optional[datetime]:
    return conn.execute(select(func.max(bookings.c.guesty_synced_at))).scalar()


def get_recent_failures(conn: Connection, limit: int = 5) -> list[dict[str, Any]]:
    result = conn.execute(
        select(
            bookings.c.id,
            bookings.c.booking_reference,
            bookings.c.guesty_sync_error,
            bookings.c.guesty_sync_attempts,
            bookings.c.updated_at,
        )
        .where(bookings.c.guesty_sync_status == SyncStatus.FAILED.value)
        .order_by(bookings.c.updated_at.desc())
        .limit(limit)
    )
    return [dict(row) for row in result.mappings()]


def list_sync_logs(
    conn: Connection,
    page: int = 1,
    limit: int = 20,
    sync_status: Optional[str] = None,
) -> tuple[list[dict[str, Any]], int]:
    """
    Page through bookings with their sync state, newest first.

    Args:
        conn (Connection): An active SQLAlchemy database connection.
        page (int): 1-based page number.
        limit (int): Page size.
        sync_status (Optional[str]): Restrict to one sync status.

    Returns:
        tuple[list[dict[str, Any]], int]: The page of rows and the total row count.
    """
    criteria = []
    if sync_status:
        criteria.append(bookings.c.guesty_sync_status == sync_status)

    total = conn.execute(select(func.count()).select_from(bookings).where(*criteria)).scalar_one()
    result = conn.execute(
        select(
            bookings.c.id,
            bookings.c.booking_reference,
            bookings.c.property_key,
            bookings.c.guest_first_name,
            bookings.c.guest_last_name,
            bookings.c.check_in_date,
            bookings.c.check_out_date,
            bookings.c.status,
            bookings.c.payment_status,
            bookings.c.guesty_reservation_id,
            bookings.c.guesty_sync_status,
            bookings.c.guesty_sync_attempts,
            bookings.c.guesty_sync_error,
            bookings.c.guesty_synced_at,
            bookings.c.created_at,
        )
        .where(*criteria)
        .order_by(bookings.c.created_at.desc(), bookings.c.id)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return [dict(row) for row in result.mappings()], total
