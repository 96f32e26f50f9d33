"""
Booking sync engine: pushes paid local bookings to Guesty as reservations.

A booking is pushed at most once. The presence of guesty_reservation_id means
"already synced", and concurrent calls for the same booking share one attempt.
Failures are recorded on the booking (status, attempt count, error) and raised
to operators through an alert; they are never raised to the caller, which is
usually a fire-and-forget background task behind a payment webhook.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import structlog
from sqlalchemy.engine import Engine

from sync_guesty.config import DRY_RUN, GUESTY_SYNC_ENABLED
from sync_guesty.db.readers.bookings import (
    get_booking,
    get_last_synced_at,
    get_recent_failures,
    get_sync_counts,
    list_failed_booking_ids,
)
from sync_guesty.db.writers.bookings import mark_sync_failed, mark_sync_succeeded
from sync_guesty.metrics import booking_syncs
from sync_guesty.models.bookings import BookingStatus, PaymentStatus
from sync_guesty.properties import PropertyCatalog
from sync_guesty.services.alerts import AlertNotifier
from sync_guesty.utils.datetime import ensure_utc
from sync_guesty.utils.single_flight import SingleFlight

logger = structlog.get_logger(__name__)

GUESTY_STATUS = {
    BookingStatus.PENDING.value: "inquiry",
    BookingStatus.CONFIRMED.value: "confirmed",
    BookingStatus.COMPLETED.value: "confirmed",
    BookingStatus.CANCELLED.value: "canceled",
}


@dataclass(frozen=True)
class SyncResult:
    """
    Outcome of one sync call.

    Attributes:
        success: The booking is (now) linked to a Guesty reservation
        reservation_id: Guesty reservation id when known
        error: Why the sync did not happen
        skipped: No upstream call was made (already synced, disabled or dry run)
    """

    success: bool
    reservation_id: Optional[str] = None
    error: Optional[str] = None
    skipped: bool = False


@dataclass(frozen=True)
class RetryAllResult:
    retried_count: int
    success_count: int
    failed_count: int
    skipped_count: int = 0


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    utc = ensure_utc(value)
    return utc.isoformat() if utc else None


def build_reservation_payload(booking: Dict[str, Any], listing_id: str) -> Dict[str, Any]:
    """
    Map a local booking onto a Guesty create-reservation body.

    Args:
        booking: Booking row as returned by the readers
        listing_id: Guesty listing id of the booked property

    Returns:
        Dict[str, Any]: JSON body for POST /reservations
    """
    guests = int(booking.get("adults") or 0) + int(booking.get("children") or 0)

    notes = [f"Booking reference: {booking['booking_reference']}"]
    if booking.get("special_requests"):
        notes.append(f"Special requests: {booking['special_requests']}")
    if booking.get("guest_country"):
        notes.append(f"Country: {booking['guest_country']}")

    return {
        "listingId": listing_id,
        "checkInDateLocalized": booking["check_in_date"].isoformat(),
        "checkOutDateLocalized": booking["check_out_date"].isoformat(),
        "status": GUESTY_STATUS.get(booking["status"], "inquiry"),
        "guestsCount": max(guests, 1),
        "source": "website",
        "money": {
            "fareAccommodation": float(booking["total"]),
            "currency": booking.get("currency") or "EUR",
        },
        "guest": {
            "firstName": booking["guest_first_name"],
            "lastName": booking["guest_last_name"],
            "email": booking["guest_email"],
            "phone": booking.get("guest_phone"),
        },
        "notes": "\n".join(notes),
    }


class BookingSyncService:
    """
    Process-scoped sync engine.

    Example:
        >>> service = BookingSyncService(engine, catalog, client.create_reservation)
        >>> service.sync_booking_to_guesty("7c9e...")
        SyncResult(success=True, reservation_id='res_456', error=None, skipped=False)
    """

    def __init__(
        self,
        engine: Engine,
        catalog: PropertyCatalog,
        create_reservation: Callable[[Dict[str, Any]], str],
        alerts: Optional[AlertNotifier] = None,
        enabled: bool = GUESTY_SYNC_ENABLED,
        dry_run: bool = DRY_RUN,
    ):
        self._engine = engine
        self._catalog = catalog
        self._create_reservation = create_reservation
        self._alerts = alerts or AlertNotifier()
        self.enabled = enabled
        self.dry_run = dry_run
        self._flight: SingleFlight[SyncResult] = SingleFlight()

    def sync_booking_to_guesty(self, booking_id: str) -> SyncResult:
        """
        Create the Guesty reservation for a paid booking, exactly once.

        Never raises: every failure becomes a SyncResult with success=False.

        Args:
            booking_id: Local booking id

        Returns:
            SyncResult: What happened
        """
        try:
            return self._flight.do(booking_id, lambda: self._sync(booking_id))
        except Exception as e:
            logger.exception("booking_sync_crashed", booking_id=booking_id)
            return SyncResult(success=False, error=str(e))

    def _sync(self, booking_id: str) -> SyncResult:
        if not self.enabled:
            booking_syncs.labels(status="disabled").inc()
            logger.info("booking_sync_disabled", booking_id=booking_id)
            return SyncResult(success=False, error="Guesty sync is disabled", skipped=True)

        with self._engine.connect() as conn:
            booking = get_booking(conn, booking_id)

        if booking is None:
            logger.warning("booking_sync_booking_not_found", booking_id=booking_id)
            return SyncResult(success=False, error="Booking not found")

        if booking["guesty_reservation_id"]:
            booking_syncs.labels(status="skipped").inc()
            logger.info(
                "booking_already_synced",
                booking_id=booking_id,
                reservation_id=booking["guesty_reservation_id"],
            )
            return SyncResult(
                success=True, reservation_id=booking["guesty_reservation_id"], skipped=True
            )

        if booking["payment_status"] != PaymentStatus.COMPLETED.value:
            logger.warning(
                "booking_sync_payment_incomplete",
                booking_id=booking_id,
                payment_status=booking["payment_status"],
            )
            return SyncResult(success=False, error="Payment not completed")

        try:
            prop = self._catalog.get(booking["property_key"])
            payload = build_reservation_payload(booking, prop.listing_id)

            if self.dry_run:
                logger.info("[DRY RUN] Would create Guesty reservation", payload=payload)
                return SyncResult(success=True, skipped=True)

            reservation_id = self._create_reservation(payload)
        except Exception as e:
            return self._record_failure(booking, str(e))

        try:
            with self._engine.begin() as conn:
                mark_sync_succeeded(conn, booking_id, reservation_id)
        except Exception as e:
            logger.exception(
                "booking_sync_link_failed", booking_id=booking_id, reservation_id=reservation_id
            )
            # The reservation exists in Guesty; an operator must link it by hand
            return self._record_failure(
                booking,
                f"Guesty reservation {reservation_id} was created "
                f"but could not be linked: {e}",
            )

        booking_syncs.labels(status="synced").inc()
        logger.info(
            "booking_synced",
            booking_id=booking_id,
            booking_reference=booking["booking_reference"],
            reservation_id=reservation_id,
        )
        return SyncResult(success=True, reservation_id=reservation_id)

    def _record_failure(self, booking: Dict[str, Any], error: str) -> SyncResult:
        with self._engine.begin() as conn:
            mark_sync_failed(conn, booking["id"], error)

        booking_syncs.labels(status="failed").inc()
        logger.error(
            "booking_sync_failed",
            booking_id=booking["id"],
            booking_reference=booking["booking_reference"],
            attempts=(booking["guesty_sync_attempts"] or 0) + 1,
            error=error,
        )

        try:
            self._alerts.sync_failed(booking, error)
        except Exception:
            logger.exception("admin_alert_failed", booking_id=booking["id"])

        return SyncResult(success=False, error=error)

    def retry_failed_sync(self, booking_id: str) -> SyncResult:
        """Retry one booking; the attempt counter keeps counting."""
        logger.info("booking_sync_retry", booking_id=booking_id)
        return self.sync_booking_to_guesty(booking_id)

    def retry_all_failed(self) -> RetryAllResult:
        """
        Retry every booking whose sync status is failed.

        Bookings are retried one after another and independently; one failure
        never stops the rest.

        Returns:
            RetryAllResult: Aggregate counts
        """
        with self._engine.connect() as conn:
            booking_ids = list_failed_booking_ids(conn)

        succeeded = skipped = 0
        for booking_id in booking_ids:
            result = self.retry_failed_sync(booking_id)
            # Dry run and disabled sync leave the booking failed
            if result.success and result.reservation_id:
                succeeded += 1
            elif result.skipped:
                skipped += 1

        summary = RetryAllResult(
            retried_count=len(booking_ids),
            success_count=succeeded,
            failed_count=len(booking_ids) - succeeded - skipped,
            skipped_count=skipped,
        )
        logger.info(
            "booking_sync_retry_all_completed",
            retried=summary.retried_count,
            succeeded=summary.success_count,
            failed=summary.failed_count,
            skipped=summary.skipped_count,
        )
        return summary

    def get_sync_statistics(self) -> Dict[str, Any]:
        """
        Counts and health of the sync pipeline for the admin dashboard.

        Returns:
            Dict[str, Any]: totalSynced, failedSyncs, pendingSyncs, lastSyncTime,
            successRate (percent of synced over synced + failed) and recentFailures.
        """
        with self._engine.connect() as conn:
            counts = get_sync_counts(conn)
            last_synced = get_last_synced_at(conn)
            failures = get_recent_failures(conn, limit=5)

        synced, failed = counts["synced"], counts["failed"]
        attempted = synced + failed
        return {
            "totalSynced": synced,
            "failedSyncs": failed,
            "pendingSyncs": counts["pending"],
            "lastSyncTime": _isoformat(last_synced),
            "successRate": round(synced / attempted * 100, 2) if attempted else 0.0,
            "recentFailures": [
                {
                    "bookingId": row["id"],
                    "bookingReference": row["booking_reference"],
                    "error": row["guesty_sync_error"],
                    "attempts": row["guesty_sync_attempts"],
                    "updatedAt": _isoformat(row["updated_at"]),
                }
                for row in failures
            ],
        }
