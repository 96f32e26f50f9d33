"""
Writers for the bookings table.

Each function runs inside the caller's transaction and touches only the columns
its flow owns: payment webhooks move payment_status/status, the sync engine
owns the guesty_* columns, Guesty webhooks mirror dates and status.
"""

import uuid
from datetime import date, datetime
from typing import Any, Optional

import structlog
from sqlalchemy import func, insert, select, update
from sqlalchemy.engine import Connection

from sync_guesty.models.bookings import (
    Booking,
    BookingStatus,
    PaymentStatus,
    SyncStatus,
)
from sync_guesty.utils.datetime import utc_now

logger = structlog.get_logger(__name__)

bookings = Booking.__table__


def insert_booking(conn: Connection, data: dict[str, Any]) -> str:
    """
    Insert a new booking and return its id.

    Args:
        conn (Connection): Active connection inside a transaction.
        data (dict[str, Any]): Column values; id, timestamps and defaults are filled in.

    Returns:
        str: The booking id.
    """
    now = utc_now()
    row = {
        "id": data.get("id") or str(uuid.uuid4()),
        "currency": "EUR",
        "adults": 1,
        "children": 0,
        "booking_source": "website",
        "payment_status": PaymentStatus.PENDING.value,
        "status": BookingStatus.PENDING.value,
        "guesty_sync_status": SyncStatus.PENDING.value,
        "guesty_sync_attempts": 0,
        "created_at": now,
        "updated_at": now,
        **data,
    }
    conn.execute(insert(bookings).values(row))
    logger.info(
        "booking_inserted",
        booking_id=row["id"],
        booking_reference=row.get("booking_reference"),
        source=row["booking_source"],
    )
    return str(row["id"])


def attach_payment_intent(conn: Connection, booking_id: str, intent_id: str) -> bool:
    """
    Set the Stripe payment intent on a booking that has none yet.

    The intent id is immutable once set, so this never overwrites.

    Returns:
        bool: True if the intent was attached.
    """
    result = conn.execute(
        update(bookings)
        .where(bookings.c.id == booking_id, bookings.c.stripe_payment_intent_id.is_(None))
        .values(stripe_payment_intent_id=intent_id, updated_at=utc_now())
    )
    return result.rowcount == 1


def confirm_payment(
    conn: Connection, intent_id: str, charge_id: Optional[str]
) -> Optional[str]:
    """
    Mark the booking for a succeeded payment intent as paid and confirmed.

    A booking that was cancelled meanwhile keeps its cancelled status; only its
    payment status is recorded.

    Args:
        conn (Connection): Active connection inside a transaction.
        intent_id (str): Stripe payment intent id.
        charge_id (Optional[str]): Stripe charge id (latest_charge).

    Returns:
        Optional[str]: The booking id, or None if no booking carries this intent.
    """
    now = utc_now()
    row = conn.execute(
        select(bookings.c.id, bookings.c.status, bookings.c.confirmed_at).where(
            bookings.c.stripe_payment_intent_id == intent_id
        )
    ).fetchone()
    if row is None:
        return None

    booking_id, booking_status, confirmed_at = row
    values: dict[str, Any] = {
        "payment_status": PaymentStatus.COMPLETED.value,
        "stripe_charge_id": charge_id,
        "updated_at": now,
    }
    if booking_status in (BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value):
        values["status"] = BookingStatus.CONFIRMED.value
        values["confirmed_at"] = confirmed_at or now
    conn.execute(update(bookings).where(bookings.c.id == booking_id).values(**values))
    return str(booking_id)


# Settled payments are never moved back by a late processing/failed event
SETTLED_PAYMENT_STATUSES = (PaymentStatus.COMPLETED.value, PaymentStatus.REFUNDED.value)


def set_payment_status(
    conn: Connection, intent_id: str, payment_status: PaymentStatus
) -> Optional[bool]:
    """
    Record a payment status for the booking carrying intent_id.

    Stripe does not order its deliveries, so a processing or payment_failed
    event can arrive after payment_intent.succeeded. A completed or refunded
    payment is left as it is.

    Returns:
        Optional[bool]: True if the booking was updated, False if its payment
        is already settled, None if no booking carries this intent.
    """
    result = conn.execute(
        update(bookings)
        .where(
            bookings.c.stripe_payment_intent_id == intent_id,
            bookings.c.payment_status.notin_(SETTLED_PAYMENT_STATUSES),
        )
        .values(payment_status=payment_status.value, updated_at=utc_now())
    )
    if result.rowcount > 0:
        return True
    exists = conn.execute(
        select(bookings.c.id).where(bookings.c.stripe_payment_intent_id == intent_id)
    ).fetchone()
    return False if exists is not None else None


def mark_sync_succeeded(conn: Connection, booking_id: str, reservation_id: str) -> None:
    conn.execute(
        update(bookings)
        .where(bookings.c.id == booking_id)
        .values(
            guesty_reservation_id=reservation_id,
            guesty_sync_status=SyncStatus.SYNCED.value,
            guesty_synced_at=utc_now(),
            guesty_sync_error=None,
            guesty_sync_attempts=bookings.c.guesty_sync_attempts + 1,
            updated_at=utc_now(),
        )
    )


def mark_sync_failed(conn: Connection, booking_id: str, error: str) -> None:
    conn.execute(
        update(bookings)
        .where(bookings.c.id == booking_id, bookings.c.guesty_reservation_id.is_(None))
        .values(
            guesty_sync_status=SyncStatus.FAILED.value,
            guesty_sync_error=error,
            guesty_sync_attempts=bookings.c.guesty_sync_attempts + 1,
            updated_at=utc_now(),
        )
    )


def link_reservation(conn: Connection, booking_id: str, reservation_id: str) -> None:
    """Link a booking to a reservation that Guesty reported through a webhook."""
    conn.execute(
        update(bookings)
        .where(bookings.c.id == booking_id, bookings.c.guesty_reservation_id.is_(None))
        .values(
            guesty_reservation_id=reservation_id,
            guesty_sync_status=SyncStatus.SYNCED.value,
            guesty_synced_at=utc_now(),
            guesty_sync_error=None,
            updated_at=utc_now(),
        )
    )


def mirror_reservation(
    conn: Connection,
    booking_id: str,
    check_in: Optional[date],
    check_out: Optional[date],
    status: Optional[BookingStatus],
) -> None:
    """
    Copy Guesty's view of dates and status onto the local booking.

    None means "Guesty didn't say", and the column is left unchanged.
    """
    values: dict[str, Any] = {"updated_at": utc_now()}
    if check_in is not None:
        values["check_in_date"] = check_in
    if check_out is not None:
        values["check_out_date"] = check_out
    if status is not None:
        values["status"] = status.value
        if status is BookingStatus.CONFIRMED:
            values["confirmed_at"] = func.coalesce(bookings.c.confirmed_at, utc_now())
    conn.execute(update(bookings).where(bookings.c.id == booking_id).values(**values))


def cancel_booking(conn: Connection, booking: dict[str, Any], cancelled_at: datetime) -> bool:
    """
    Cancel a booking; a paid booking's payment is marked refunded.

    Returns:
        bool: False when the booking was already cancelled (no change made).
    """
    values: dict[str, Any] = {
        "status": BookingStatus.CANCELLED.value,
        "cancelled_at": cancelled_at,
        "updated_at": cancelled_at,
    }
    if booking["payment_status"] == PaymentStatus.COMPLETED.value:
        values["payment_status"] = PaymentStatus.REFUNDED.value

    result = conn.execute(
        update(bookings)
        .where(
            bookings.c.id == booking["id"],
            bookings.c.status != BookingStatus.CANCELLED.value,
        )
        .values(**values)
    )
    return result.rowcount > 0
