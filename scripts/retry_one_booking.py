import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import logging

from sync_guesty.db.engine import engine
from sync_guesty.db.readers.bookings import get_booking_by_reference
from sync_guesty.logging_config import setup_logging
from sync_guesty.state import build_services

setup_logging()
logger = logging.getLogger(__name__)


def main() -> None:
    """
    Retry the Guesty sync of one booking by reference, e.g. LFT-1001.
    """
    if len(sys.argv) != 2:
        raise SystemExit("usage: retry_one_booking.py <booking-reference>")
    reference = sys.argv[1]

    with engine.connect() as conn:
        booking = get_booking_by_reference(conn, reference)
    if booking is None:
        raise SystemExit(f"No booking with reference {reference}")

    logger.info("Retrying Guesty sync for %s (%s)", reference, booking["id"])
    result = build_services(engine).booking_sync.retry_failed_sync(booking["id"])
    if not result.success:
        logger.error("Sync failed for %s: %s", reference, result.error)
        raise SystemExit(1)
    logger.info("Synced %s as Guesty reservation %s", reference, result.reservation_id)


if __name__ == "__main__":
    main()
