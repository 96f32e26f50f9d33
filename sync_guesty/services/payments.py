"""
Stripe payment events: record payment state on bookings and hand off to sync.

Verification happens in the route; this module sees an already-authenticated
event. The Guesty sync is not run here. A succeeded payment returns
trigger_sync=True and the caller schedules the sync after the transaction has
committed, so the webhook response never waits on Guesty.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import structlog
from sqlalchemy.engine import Engine

from sync_guesty.db.readers.webhook_logs import is_duplicate_event
from sync_guesty.db.writers.bookings import confirm_payment, set_payment_status
from sync_guesty.db.writers.webhook_logs import finish_webhook_log, insert_webhook_log
from sync_guesty.metrics import webhook_events
from sync_guesty.models.bookings import PaymentStatus
from sync_guesty.models.webhook_logs import WebhookStatus

logger = structlog.get_logger(__name__)

SOURCE = "stripe"

STATUS_EVENTS = {
    "payment_intent.payment_failed": PaymentStatus.FAILED,
    "payment_intent.processing": PaymentStatus.PROCESSING,
}
HANDLED_EVENTS = {"payment_intent.succeeded", *STATUS_EVENTS}


@dataclass(frozen=True)
class PaymentOutcome:
    status: WebhookStatus
    booking_id: Optional[str] = None
    trigger_sync: bool = False
    notice: Optional[str] = None
    error: Optional[str] = None


def handle_payment_event(
    engine: Engine,
    event_type: str,
    intent_id: Optional[str],
    charge_id: Optional[str] = None,
    event_id: Optional[str] = None,
    payload: Any = None,
) -> PaymentOutcome:
    """
    Apply one verified Stripe event to the bookings table.

    Args:
        engine: Database engine
        event_type: Stripe event type, e.g. "payment_intent.succeeded"
        intent_id: Payment intent id from event.data.object
        charge_id: latest_charge of the intent, if any
        event_id: Stripe event id, used for de-duplication
        payload: Event body to store in webhook_logs

    Returns:
        PaymentOutcome: trigger_sync is True only for a newly confirmed payment
    """
    with engine.begin() as conn:
        log_id = insert_webhook_log(conn, SOURCE, event_type, payload, event_id=event_id)
        duplicate = is_duplicate_event(conn, SOURCE, event_id)

    if duplicate:
        logger.info("stripe_webhook_duplicate", event_id=event_id, event_type=event_type)
        outcome = PaymentOutcome(WebhookStatus.PROCESSED, notice="duplicate delivery")
    elif event_type not in HANDLED_EVENTS:
        logger.info("stripe_webhook_unhandled_event_type", event_type=event_type)
        outcome = PaymentOutcome(WebhookStatus.PROCESSED, notice="unhandled event type")
    elif not intent_id:
        outcome = PaymentOutcome(WebhookStatus.FAILED, error="Payment intent id missing")
    else:
        try:
            outcome = _apply(engine, event_type, intent_id, charge_id)
        except Exception as e:
            logger.exception("stripe_webhook_processing_failed", event_type=event_type)
            outcome = PaymentOutcome(WebhookStatus.FAILED, error=str(e))

    with engine.begin() as conn:
        finish_webhook_log(conn, log_id, outcome.status, error=outcome.error, notice=outcome.notice)

    label = event_type if event_type in HANDLED_EVENTS else "other"
    webhook_events.labels(source=SOURCE, event_type=label, status=outcome.status.value).inc()
    return outcome


def _apply(
    engine: Engine, event_type: str, intent_id: str, charge_id: Optional[str]
) -> PaymentOutcome:
    if event_type == "payment_intent.succeeded":
        with engine.begin() as conn:
            booking_id = confirm_payment(conn, intent_id, charge_id)
        if booking_id is None:
            logger.warning("stripe_payment_unknown_intent", payment_intent_id=intent_id)
            return PaymentOutcome(
                WebhookStatus.PROCESSED, notice="no booking for payment intent"
            )
        logger.info(
            "booking_payment_confirmed",
            booking_id=booking_id,
            payment_intent_id=intent_id,
            charge_id=charge_id,
        )
        return PaymentOutcome(WebhookStatus.PROCESSED, booking_id=booking_id, trigger_sync=True)

    payment_status = STATUS_EVENTS[event_type]
    with engine.begin() as conn:
        updated = set_payment_status(conn, intent_id, payment_status)
    if updated is None:
        logger.warning("stripe_payment_unknown_intent", payment_intent_id=intent_id)
        return PaymentOutcome(WebhookStatus.PROCESSED, notice="no booking for payment intent")
    if not updated:
        logger.info(
            "stripe_payment_stale_event",
            payment_intent_id=intent_id,
            event_type=event_type,
        )
        return PaymentOutcome(WebhookStatus.PROCESSED, notice="stale event")
    logger.info(
        "booking_payment_status_updated",
        payment_intent_id=intent_id,
        payment_status=payment_status.value,
    )
    return PaymentOutcome(WebhookStatus.PROCESSED)
