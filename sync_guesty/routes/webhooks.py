"""Inbound webhook receivers for Guesty and Stripe."""

import json
from typing import Any

import stripe
import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from sync_guesty import config
from sync_guesty.dependencies import get_services
from sync_guesty.errors import ConfigurationError, WebhookVerificationError
from sync_guesty.services.payments import handle_payment_event
from sync_guesty.services.pms_webhooks import verify_guesty_signature
from sync_guesty.state import Services

router = APIRouter()
logger = structlog.get_logger(__name__)

GUESTY_SIGNATURE_HEADERS = ("X-Guesty-Signature", "X-Webhook-Signature")
GUESTY_EVENT_ID_HEADERS = ("X-Guesty-Event-Id", "X-Webhook-Id")


def _first_header(request: Request, names: tuple[str, ...]) -> str | None:
    for name in names:
        value = request.headers.get(name)
        if value:
            return value
    return None


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _parse_body(raw: bytes) -> Any:
    try:
        return json.loads(raw)
    except ValueError:
        return {"raw": raw.decode("utf-8", errors="replace")}


@router.post("/guesty")
async def receive_guesty_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    services: Services = Depends(get_services),
) -> JSONResponse:
    """
    Handle Guesty reservation and calendar events.

    Authentication: HMAC-SHA256 of the raw body with GUESTY_WEBHOOK_SECRET,
    sent as X-Guesty-Signature (or X-Webhook-Signature).

    Every authenticated delivery is acknowledged with 200 {"received": true};
    the processing outcome, including malformed payloads and unknown event
    types, is recorded in webhook_logs instead of the status code.

    Returns:
        JSONResponse: 200 acknowledgment, 401 bad signature,
            500 missing secret, 503 webhooks disabled
    """
    if not config.GUESTY_WEBHOOK_ENABLED:
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Guesty webhooks are disabled")

    try:
        secret = config.get_guesty_webhook_secret()
    except ConfigurationError:
        logger.error("guesty_webhook_secret_missing")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Webhook secret not configured")

    raw = await request.body()
    try:
        verify_guesty_signature(raw, _first_header(request, GUESTY_SIGNATURE_HEADERS), secret)
    except WebhookVerificationError as e:
        logger.warning("guesty_webhook_rejected", reason=str(e))
        return _error(status.HTTP_401_UNAUTHORIZED, "Unauthorized")

    outcome = await run_in_threadpool(
        services.pms_webhooks.process,
        _parse_body(raw),
        _first_header(request, GUESTY_EVENT_ID_HEADERS),
    )

    if outcome.refresh_property:
        services.pricing.cache.clear(outcome.refresh_property)
        background_tasks.add_task(
            services.availability.try_refresh_property, outcome.refresh_property
        )

    return JSONResponse(content={"received": True})


@router.post("/stripe")
async def receive_stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    services: Services = Depends(get_services),
) -> JSONResponse:
    """
    Handle Stripe payment intent events.

    A succeeded payment is committed first; the Guesty sync for the booking
    runs as a background task after the response, so a slow or failing
    Guesty never delays or fails the acknowledgment.

    Returns:
        JSONResponse: 200 acknowledgment, 400 bad payload or signature,
            500 missing secret
    """
    try:
        secret = config.get_stripe_webhook_secret()
    except ConfigurationError:
        logger.error("stripe_webhook_secret_missing")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Webhook secret not configured")

    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        return _error(status.HTTP_400_BAD_REQUEST, "Missing Stripe-Signature header")

    payload = await request.body()
    try:
        event = stripe.Webhook.construct_event(payload, sig_header, secret)
    except ValueError:
        logger.warning("stripe_webhook_invalid_payload")
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid payload")
    except stripe.SignatureVerificationError:
        logger.warning("stripe_webhook_invalid_signature")
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid signature")

    intent = event.data.object
    intent_id = getattr(intent, "id", None)
    charge = getattr(intent, "latest_charge", None)
    charge_id = charge if isinstance(charge, str) or charge is None else getattr(charge, "id", None)

    outcome = await run_in_threadpool(
        handle_payment_event,
        services.engine,
        event.type,
        intent_id,
        charge_id,
        event.id,
        _parse_body(payload),
    )

    if outcome.trigger_sync and outcome.booking_id:
        background_tasks.add_task(
            services.booking_sync.sync_booking_to_guesty, outcome.booking_id
        )
        logger.info("booking_sync_scheduled", booking_id=outcome.booking_id)

    return JSONResponse(content={"received": True})
