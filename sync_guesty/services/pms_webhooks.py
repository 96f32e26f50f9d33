"""
Guesty webhook ingestion: authenticate, log, and reconcile local bookings.

Every delivery is written to webhook_logs as "received" before it is handled
and updated with the real outcome afterwards. Handlers are idempotent, so
replaying an event never double-applies it (a cancelled booking stays
cancelled with its original timestamp). Deliveries whose (source, event_id)
was already processed are skipped outright.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, Optional

import structlog
from sqlalchemy.engine import Connection, Engine

from sync_guesty.config import GUESTY_IMPORT_EXTERNAL_RESERVATIONS
from sync_guesty.db.readers.bookings import find_unlinked_booking, get_booking_by_reservation_id
from sync_guesty.db.readers.webhook_logs import is_duplicate_event
from sync_guesty.db.writers.bookings import (
    cancel_booking,
    insert_booking,
    link_reservation,
    mirror_reservation,
)
from sync_guesty.db.writers.webhook_logs import finish_webhook_log, insert_webhook_log
from sync_guesty.errors import WebhookVerificationError
from sync_guesty.metrics import webhook_events
from sync_guesty.models.bookings import BookingSource, BookingStatus, PaymentStatus, SyncStatus
from sync_guesty.models.webhook_logs import WebhookStatus
from sync_guesty.properties import PropertyCatalog
from sync_guesty.utils.datetime import parse_iso_date, utc_now

logger = structlog.get_logger(__name__)

SOURCE = "guesty"

GUESTY_STATUS_TO_BOOKING = {
    "confirmed": BookingStatus.CONFIRMED,
    "inquiry": BookingStatus.PENDING,
    "reserved": BookingStatus.PENDING,
    "canceled": BookingStatus.CANCELLED,
    "cancelled": BookingStatus.CANCELLED,
}


class MalformedEvent(ValueError):
    """The event is missing data its handler needs."""


@dataclass(frozen=True)
class WebhookOutcome:
    """
    Result of handling one delivery.

    Attributes:
        status: Final log status
        notice: Non-fatal remark (duplicate, unknown booking, unhandled type)
        error: Failure detail when status is failed
        refresh_property: Property whose availability should be refreshed out of cycle
        log_id: webhook_logs row for this delivery
    """

    status: WebhookStatus
    notice: Optional[str] = None
    error: Optional[str] = None
    refresh_property: Optional[str] = None
    log_id: Optional[int] = None


def verify_guesty_signature(raw_body: bytes, signature: Optional[str], secret: str) -> None:
    """
    Check an HMAC-SHA256 signature over the raw request body.

    The header may carry the bare hex digest or "sha256=<hex>".

    Raises:
        WebhookVerificationError: If the signature is missing or does not match
    """
    if not signature:
        raise WebhookVerificationError("Missing webhook signature")
    provided = signature.strip()
    if provided.lower().startswith("sha256="):
        provided = provided[len("sha256=") :]
    expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, provided.lower()):
        raise WebhookVerificationError("Invalid webhook signature")


def _reservation_id(data: Dict[str, Any]) -> Optional[str]:
    value = data.get("_id") or data.get("id") or data.get("reservationId")
    return str(value) if value else None


def _stay_date(data: Dict[str, Any], *fields: str) -> Optional[date]:
    for field in fields:
        value = data.get(field)
        if value:
            return parse_iso_date(value)
    return None


def _guest(data: Dict[str, Any]) -> Dict[str, Optional[str]]:
    guest = data.get("guest") if isinstance(data.get("guest"), dict) else {}
    first = guest.get("firstName")
    last = guest.get("lastName")
    if not first and not last:
        full = guest.get("fullName") or data.get("guestName") or ""
        first, _, last = str(full).strip().partition(" ")
    return {
        "first_name": first or "Guest",
        "last_name": last or "",
        "email": guest.get("email") or data.get("guestEmail"),
        "phone": guest.get("phone") or data.get("guestPhone"),
    }


def _external_reference(reservation_id: str) -> str:
    stamp = ""
    value = int(time.time() * 1000)
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    while value:
        value, rem = divmod(value, 36)
        stamp = digits[rem] + stamp
    return f"GST-{stamp}-{reservation_id[-6:]}".upper()


class PmsWebhookProcessor:
    """
    Handles parsed Guesty webhook bodies against the bookings table.

    Attributes:
        import_external: Create local bookings for reservations made directly in Guesty
    """

    def __init__(
        self,
        engine: Engine,
        catalog: PropertyCatalog,
        import_external: bool = GUESTY_IMPORT_EXTERNAL_RESERVATIONS,
    ):
        self._engine = engine
        self._catalog = catalog
        self.import_external = import_external
        self._handlers: Dict[str, Callable[[Connection, Dict[str, Any]], WebhookOutcome]] = {
            "reservation.created": self.handle_reservation_upsert,
            "reservation.new": self.handle_reservation_upsert,
            "reservation.updated": self.handle_reservation_upsert,
            "reservation.canceled": self.handle_reservation_canceled,
            "reservation.cancelled": self.handle_reservation_canceled,
            "listing.calendar.updated": self.handle_calendar_updated,
            "calendar.updated": self.handle_calendar_updated,
        }

    def process(self, body: Any, event_id: Optional[str] = None) -> WebhookOutcome:
        """
        Log and handle one delivery. Never raises for bad input or handler errors.

        Args:
            body: Parsed JSON body, or {"raw": text} when it did not parse
            event_id: Vendor delivery id from the headers, if any

        Returns:
            WebhookOutcome: Final status as recorded in webhook_logs
        """
        event_type = None
        if isinstance(body, dict):
            raw_type = body.get("event_type") or body.get("event") or body.get("eventType")
            event_type = str(raw_type) if raw_type else None
            event_id = event_id or body.get("event_id") or body.get("eventId") or body.get("id")
            event_id = str(event_id) if event_id else None

        with self._engine.begin() as conn:
            log_id = insert_webhook_log(
                conn, SOURCE, event_type or "unknown", body, event_id=event_id
            )
            duplicate = is_duplicate_event(conn, SOURCE, event_id)

        logger.info(
            "guesty_webhook_received", event_type=event_type, event_id=event_id, log_id=log_id
        )

        if duplicate:
            outcome = WebhookOutcome(WebhookStatus.PROCESSED, notice="duplicate delivery")
        elif event_type is None:
            outcome = WebhookOutcome(
                WebhookStatus.FAILED, error="Malformed payload: missing event type"
            )
        else:
            outcome = self._dispatch(event_type, body)

        with self._engine.begin() as conn:
            finish_webhook_log(
                conn, log_id, outcome.status, error=outcome.error, notice=outcome.notice
            )

        known = event_type if event_type in self._handlers else "other"
        webhook_events.labels(source=SOURCE, event_type=known, status=outcome.status.value).inc()
        return WebhookOutcome(
            status=outcome.status,
            notice=outcome.notice,
            error=outcome.error,
            refresh_property=outcome.refresh_property,
            log_id=log_id,
        )

    def _dispatch(self, event_type: str, body: Dict[str, Any]) -> WebhookOutcome:
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.warning("guesty_webhook_unhandled_event_type", event_type=event_type)
            return WebhookOutcome(WebhookStatus.PROCESSED, notice="unhandled event type")

        data = body.get("data")
        if data is None:
            data = body.get("reservation") or body.get("listing") or body.get("payload")
        if not isinstance(data, dict):
            logger.warning("guesty_webhook_missing_data", event_type=event_type)
            return WebhookOutcome(WebhookStatus.FAILED, error="Malformed payload: missing data")

        try:
            with self._engine.begin() as conn:
                return handler(conn, data)
        except MalformedEvent as e:
            logger.warning("guesty_webhook_malformed", event_type=event_type, error=str(e))
            return WebhookOutcome(WebhookStatus.FAILED, error=str(e))
        except Exception as e:
            logger.exception("guesty_webhook_processing_failed", event_type=event_type)
            return WebhookOutcome(WebhookStatus.FAILED, error=str(e))

    # -- handlers ----------------------------------------------------------------

    def _find_booking(
        self, conn: Connection, data: Dict[str, Any], reservation_id: str
    ) -> tuple[Optional[Dict[str, Any]], bool]:
        """Return (booking, newly_linked)."""
        booking = get_booking_by_reservation_id(conn, reservation_id)
        if booking is not None:
            return booking, False

        prop = self._catalog.by_listing_id(data.get("listingId"))
        check_in = _stay_date(data, "checkInDateLocalized", "checkIn")
        check_out = _stay_date(data, "checkOutDateLocalized", "checkOut")
        if prop is None or check_in is None or check_out is None:
            return None, False

        booking = find_unlinked_booking(
            conn, prop.key, check_in, check_out, _guest(data)["email"]
        )
        if booking is None:
            return None, False
        link_reservation(conn, booking["id"], reservation_id)
        logger.info(
            "guesty_reservation_linked",
            booking_id=booking["id"],
            reservation_id=reservation_id,
        )
        return booking, True

    def handle_reservation_upsert(self, conn: Connection, data: Dict[str, Any]) -> WebhookOutcome:
        """
        reservation.created / reservation.updated: mirror dates and status.

        Guesty's pending states (inquiry, reserved) only apply to bookings
        that are still pending locally; they never downgrade a confirmed one.
        """
        reservation_id = _reservation_id(data)
        if reservation_id is None:
            raise MalformedEvent("Reservation id missing")

        booking, _ = self._find_booking(conn, data, reservation_id)
        check_in = _stay_date(data, "checkInDateLocalized", "checkIn")
        check_out = _stay_date(data, "checkOutDateLocalized", "checkOut")
        status = GUESTY_STATUS_TO_BOOKING.get(str(data.get("status") or "").lower())

        if booking is None:
            return self._external_reservation(conn, data, reservation_id, check_in, check_out)

        if status is BookingStatus.CANCELLED:
            changed = cancel_booking(conn, booking, utc_now())
            logger.info(
                "guesty_reservation_cancelled_via_update",
                booking_id=booking["id"],
                changed=changed,
            )
            return WebhookOutcome(
                WebhookStatus.PROCESSED, notice=None if changed else "already cancelled"
            )

        if check_in and check_out and check_in >= check_out:
            raise MalformedEvent("Reservation check-in is not before check-out")

        if status is BookingStatus.PENDING and booking["status"] != BookingStatus.PENDING.value:
            status = None

        mirror_reservation(conn, booking["id"], check_in, check_out, status)
        logger.info(
            "guesty_reservation_mirrored",
            booking_id=booking["id"],
            reservation_id=reservation_id,
            status=status.value if status else None,
        )
        return WebhookOutcome(WebhookStatus.PROCESSED)

    def _external_reservation(
        self,
        conn: Connection,
        data: Dict[str, Any],
        reservation_id: str,
        check_in: Optional[date],
        check_out: Optional[date],
    ) -> WebhookOutcome:
        prop = self._catalog.by_listing_id(data.get("listingId"))
        if not self.import_external or prop is None or check_in is None or check_out is None:
            logger.warning(
                "guesty_external_reservation",
                reservation_id=reservation_id,
                listing_id=data.get("listingId"),
            )
            return WebhookOutcome(
                WebhookStatus.PROCESSED, notice="external reservation: no matching booking"
            )

        guest = _guest(data)
        money = data.get("money") if isinstance(data.get("money"), dict) else {}
        total = money.get("fareAccommodation") or money.get("totalPaid") or 0
        status = GUESTY_STATUS_TO_BOOKING.get(
            str(data.get("status") or "").lower(), BookingStatus.PENDING
        )
        booking_id = insert_booking(
            conn,
            {
                "booking_reference": _external_reference(reservation_id),
                "property_key": prop.key,
                "guest_first_name": guest["first_name"],
                "guest_last_name": guest["last_name"],
                "guest_email": guest["email"] or "",
                "guest_phone": guest["phone"],
                "check_in_date": check_in,
                "check_out_date": check_out,
                "adults": int(data.get("guestsCount") or 1),
                "total": total,
                "currency": money.get("currency") or "EUR",
                "booking_source": BookingSource.GUESTY.value,
                "payment_status": PaymentStatus.COMPLETED.value,
                "status": status.value,
                "guesty_reservation_id": reservation_id,
                "guesty_sync_status": SyncStatus.SYNCED.value,
                "guesty_synced_at": utc_now(),
            },
        )
        logger.info(
            "guesty_external_reservation_imported",
            booking_id=booking_id,
            reservation_id=reservation_id,
        )
        return WebhookOutcome(WebhookStatus.PROCESSED, notice="imported external reservation")

    def handle_reservation_canceled(
        self, conn: Connection, data: Dict[str, Any]
    ) -> WebhookOutcome:
        reservation_id = _reservation_id(data)
        if reservation_id is None:
            raise MalformedEvent("Reservation id missing")

        booking, _ = self._find_booking(conn, data, reservation_id)
        if booking is None:
            logger.warning("guesty_cancellation_unknown_booking", reservation_id=reservation_id)
            return WebhookOutcome(
                WebhookStatus.PROCESSED, notice="no matching booking for cancellation"
            )

        if not cancel_booking(conn, booking, utc_now()):
            logger.info("guesty_cancellation_already_applied", booking_id=booking["id"])
            return WebhookOutcome(WebhookStatus.PROCESSED, notice="already cancelled")

        logger.info(
            "guesty_reservation_cancelled",
            booking_id=booking["id"],
            reservation_id=reservation_id,
        )
        return WebhookOutcome(WebhookStatus.PROCESSED)

    def handle_calendar_updated(self, conn: Connection, data: Dict[str, Any]) -> WebhookOutcome:
        listing_id = data.get("listingId") or data.get("_id") or data.get("id")
        prop = self._catalog.by_listing_id(str(listing_id) if listing_id else None)
        if prop is None:
            logger.warning("guesty_calendar_update_unknown_listing", listing_id=listing_id)
            return WebhookOutcome(WebhookStatus.PROCESSED, notice="unknown listing")
        return WebhookOutcome(WebhookStatus.PROCESSED, refresh_property=prop.key)
