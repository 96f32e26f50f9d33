"""
Best-effort operator alerts for failed Guesty syncs.

Alerts go out only when ADMIN_ALERT_EMAIL is configured. The alert is always
written to the log; with ADMIN_ALERT_WEBHOOK_URL set it is also POSTed there
(a mail relay or chat webhook). A failed delivery is logged and dropped, it
never affects booking or sync state.
"""

from __future__ import annotations

from typing import Any, Optional

import requests
import structlog

from sync_guesty.config import (
    ADMIN_ALERT_EMAIL,
    ADMIN_ALERT_WEBHOOK_URL,
    GUESTY_REQUEST_TIMEOUT_SECONDS,
)

logger = structlog.get_logger(__name__)


class AlertNotifier:
    def __init__(
        self,
        recipient: Optional[str] = ADMIN_ALERT_EMAIL,
        webhook_url: Optional[str] = ADMIN_ALERT_WEBHOOK_URL,
        timeout: float = GUESTY_REQUEST_TIMEOUT_SECONDS,
    ):
        self.recipient = recipient
        self.webhook_url = webhook_url
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.recipient)

    def sync_failed(self, booking: dict[str, Any], error: str) -> None:
        """
        Tell operators that a booking could not be pushed to Guesty.

        Args:
            booking: Booking row as returned by the readers
            error: Error message recorded on the booking
        """
        if not self.enabled:
            return

        guest_name = f"{booking.get('guest_first_name', '')} {booking.get('guest_last_name', '')}"
        alert = {
            "to": self.recipient,
            "subject": f"Guesty sync failed for booking {booking.get('booking_reference')}",
            "booking_id": booking.get("id"),
            "booking_reference": booking.get("booking_reference"),
            "property_key": booking.get("property_key"),
            "guest": guest_name.strip(),
            "guest_email": booking.get("guest_email"),
            "check_in": str(booking.get("check_in_date")),
            "check_out": str(booking.get("check_out_date")),
            "attempts": (booking.get("guesty_sync_attempts") or 0) + 1,
            "error": error,
        }
        logger.error("admin_alert_sync_failed", **alert)

        if not self.webhook_url:
            return
        try:
            response = requests.post(self.webhook_url, json=alert, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.warning(
                "admin_alert_delivery_failed", error=str(e), booking_id=booking.get("id")
            )
