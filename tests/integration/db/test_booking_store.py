"""
Integration tests for the bookings, webhook_logs and cache readers/writers on SQLite.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Callable

import pytest
from sqlalchemy.engine import Engine

from sync_guesty.db.readers.bookings import (
    find_unlinked_booking,
    get_booking,
    get_sync_counts,
    list_failed_booking_ids,
    list_sync_logs,
)
from sync_guesty.db.readers.cache import get_availability_entry, get_oauth_token
from sync_guesty.db.readers.webhook_logs import (
    get_webhook_log,
    is_duplicate_event,
    list_webhook_logs,
)
from sync_guesty.db.writers.bookings import (
    attach_payment_intent,
    cancel_booking,
    confirm_payment,
    mark_sync_failed,
    mark_sync_succeeded,
    mirror_reservation,
    set_payment_status,
)
from sync_guesty.db.writers.cache import upsert_availability_entry, upsert_oauth_token
from sync_guesty.db.writers.webhook_logs import finish_webhook_log, insert_webhook_log
from sync_guesty.models.bookings import BookingStatus, PaymentStatus
from sync_guesty.models.webhook_logs import WebhookStatus
from sync_guesty.utils.datetime import ensure_utc, utc_now


def _get(engine: Engine, booking_id: str) -> dict:
    with engine.connect() as conn:
        booking = get_booking(conn, booking_id)
    assert booking is not None
    return booking


@pytest.mark.integration
def test_payment_intent_is_immutable(db_engine: Engine, make_booking: Callable[..., str]) -> None:
    """Test that an attached payment intent can never be overwritten."""
    booking_id = make_booking(stripe_payment_intent_id=None, payment_status="pending")

    with db_engine.begin() as conn:
        assert attach_payment_intent(conn, booking_id, "pi_first") is True
        assert attach_payment_intent(conn, booking_id, "pi_second") is False

    assert _get(db_engine, booking_id)["stripe_payment_intent_id"] == "pi_first"


@pytest.mark.integration
def test_confirm_payment_sets_confirmed_and_charge(
    db_engine: Engine, make_booking: Callable[..., str]
) -> None:
    booking_id = make_booking(
        stripe_payment_intent_id="pi_123", payment_status="pending", status="pending"
    )

    with db_engine.begin() as conn:
        assert confirm_payment(conn, "pi_123", "ch_789") == booking_id
        assert confirm_payment(conn, "pi_unknown", None) is None

    booking = _get(db_engine, booking_id)
    assert booking["payment_status"] == PaymentStatus.COMPLETED.value
    assert booking["status"] == BookingStatus.CONFIRMED.value
    assert booking["stripe_charge_id"] == "ch_789"
    assert booking["confirmed_at"] is not None


@pytest.mark.integration
def test_confirm_payment_keeps_cancelled_status(
    db_engine: Engine, make_booking: Callable[..., str]
) -> None:
    booking_id = make_booking(stripe_payment_intent_id="pi_9", status="cancelled")

    with db_engine.begin() as conn:
        confirm_payment(conn, "pi_9", "ch_1")

    assert _get(db_engine, booking_id)["status"] == "cancelled"


@pytest.mark.integration
def test_set_payment_status(db_engine: Engine, make_booking: Callable[..., str]) -> None:
    booking_id = make_booking(stripe_payment_intent_id="pi_5", payment_status="pending")

    with db_engine.begin() as conn:
        assert set_payment_status(conn, "pi_5", PaymentStatus.FAILED) is True
        assert set_payment_status(conn, "pi_missing", PaymentStatus.FAILED) is None

    assert _get(db_engine, booking_id)["payment_status"] == "failed"


@pytest.mark.integration
@pytest.mark.parametrize("settled", ["completed", "refunded"])
def test_set_payment_status_keeps_settled_payment(
    db_engine: Engine, make_booking: Callable[..., str], settled: str
) -> None:
    booking_id = make_booking(stripe_payment_intent_id="pi_6", payment_status=settled)

    with db_engine.begin() as conn:
        assert set_payment_status(conn, "pi_6", PaymentStatus.PROCESSING) is False

    assert _get(db_engine, booking_id)["payment_status"] == settled


@pytest.mark.integration
def test_sync_bookkeeping(db_engine: Engine, make_booking: Callable[..., str]) -> None:
    """Test that failures count attempts and a later success clears the error."""
    booking_id = make_booking()

    with db_engine.begin() as conn:
        mark_sync_failed(conn, booking_id, "Guesty 503")
        mark_sync_failed(conn, booking_id, "Guesty 503 again")

    failed = _get(db_engine, booking_id)
    assert failed["guesty_sync_status"] == "failed"
    assert failed["guesty_sync_attempts"] == 2
    with db_engine.connect() as conn:
        assert list_failed_booking_ids(conn) == [booking_id]

    with db_engine.begin() as conn:
        mark_sync_succeeded(conn, booking_id, "res_1")
        # A late failure report never un-syncs a linked booking
        mark_sync_failed(conn, booking_id, "stale failure")

    synced = _get(db_engine, booking_id)
    assert synced["guesty_sync_status"] == "synced"
    assert synced["guesty_reservation_id"] == "res_1"
    assert synced["guesty_sync_error"] is None
    assert synced["guesty_sync_attempts"] == 3
    with db_engine.connect() as conn:
        assert get_sync_counts(conn) == {"pending": 0, "synced": 1, "failed": 0}


@pytest.mark.integration
def test_cancel_booking_is_idempotent(db_engine: Engine, make_booking: Callable[..., str]) -> None:
    """Test that a second cancellation changes nothing, including cancelled_at."""
    booking_id = make_booking()
    booking = _get(db_engine, booking_id)
    first_at = utc_now()

    with db_engine.begin() as conn:
        assert cancel_booking(conn, booking, first_at) is True
    with db_engine.begin() as conn:
        assert cancel_booking(conn, booking, first_at + timedelta(hours=1)) is False

    cancelled = _get(db_engine, booking_id)
    assert cancelled["status"] == "cancelled"
    assert cancelled["payment_status"] == "refunded"
    assert ensure_utc(cancelled["cancelled_at"]) == first_at


@pytest.mark.integration
def test_mirror_reservation_partial_update(
    db_engine: Engine, make_booking: Callable[..., str]
) -> None:
    booking_id = make_booking()

    with db_engine.begin() as conn:
        mirror_reservation(conn, booking_id, None, date(2026, 11, 5), None)

    booking = _get(db_engine, booking_id)
    assert booking["check_in_date"] == date(2026, 11, 1)
    assert booking["check_out_date"] == date(2026, 11, 5)
    assert booking["status"] == "confirmed"


@pytest.mark.integration
def test_find_unlinked_booking_matches_email_case_insensitive(
    db_engine: Engine, make_booking: Callable[..., str]
) -> None:
    booking_id = make_booking()
    make_booking(guesty_reservation_id="res_other")

    with db_engine.connect() as conn:
        match = find_unlinked_booking(
            conn, "kant", date(2026, 11, 1), date(2026, 11, 4), "ANNA@example.com"
        )
        miss = find_unlinked_booking(
            conn, "kant", date(2026, 11, 1), date(2026, 11, 4), "someone@else.com"
        )

    assert match is not None and match["id"] == booking_id
    assert miss is None


@pytest.mark.integration
def test_list_sync_logs_pagination(db_engine: Engine, make_booking: Callable[..., str]) -> None:
    for _ in range(3):
        make_booking()

    with db_engine.connect() as conn:
        page, total = list_sync_logs(conn, page=2, limit=2)

    assert total == 3
    assert len(page) == 1


@pytest.mark.integration
def test_webhook_log_lifecycle_and_duplicates(db_engine: Engine) -> None:
    """Test that only a processed (source, event_id) counts as a duplicate."""
    with db_engine.begin() as conn:
        log_id = insert_webhook_log(conn, "guesty", "reservation.updated", {"a": 1}, "evt-1")
        assert is_duplicate_event(conn, "guesty", "evt-1") is False

        finish_webhook_log(conn, log_id, WebhookStatus.PROCESSED, notice="ok")
        assert is_duplicate_event(conn, "guesty", "evt-1") is True
        assert is_duplicate_event(conn, "stripe", "evt-1") is False
        assert is_duplicate_event(conn, "guesty", None) is False

        row = get_webhook_log(conn, log_id)
        rows, total = list_webhook_logs(conn, source="guesty", status="processed")

    assert row is not None
    assert row["payload"] == {"a": 1}
    assert row["processed_at"] is not None
    assert total == 1 and rows[0]["id"] == log_id


@pytest.mark.integration
def test_availability_entry_upsert_and_expiry(db_engine: Engine) -> None:
    now = utc_now()
    with db_engine.begin() as conn:
        upsert_availability_entry(
            conn,
            "kant",
            ["2026-11-01"],
            "2026-10-19",
            "2027-04-19",
            now,
            now + timedelta(seconds=60),
        )
        upsert_availability_entry(
            conn,
            "kant",
            ["2026-11-02"],
            "2026-10-19",
            "2027-04-19",
            now + timedelta(seconds=1),
            now + timedelta(seconds=61),
        )

    with db_engine.connect() as conn:
        fresh = get_availability_entry(conn, "kant", now)
        expired = get_availability_entry(conn, "kant", now + timedelta(seconds=120))

    assert fresh is not None and fresh["blocked_dates"] == ["2026-11-02"]
    assert expired is None


@pytest.mark.integration
def test_oauth_token_singleton_row(db_engine: Engine) -> None:
    expires = utc_now() + timedelta(hours=23)
    with db_engine.begin() as conn:
        upsert_oauth_token(conn, "guesty", "tok-1", expires)
        upsert_oauth_token(conn, "guesty", "tok-2", expires)

    with db_engine.connect() as conn:
        row = get_oauth_token(conn, "guesty")

    assert row is not None and row["access_token"] == "tok-2"
