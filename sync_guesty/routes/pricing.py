from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, Query

from sync_guesty.dependencies import get_services
from sync_guesty.routes._helpers import parse_date_or_400, require_param_or_400, to_http_error
from sync_guesty.services.pricing import PriceQuote
from sync_guesty.state import Services

logger = structlog.get_logger(__name__)
router = APIRouter()


def quote_to_response(quote: PriceQuote) -> dict[str, Any]:
    return {
        "propertyId": quote.property_key,
        "checkIn": quote.check_in.isoformat(),
        "checkOut": quote.check_out.isoformat(),
        "guests": quote.guests,
        "nights": quote.nights,
        "nightlyRate": quote.nightly_rate,
        "accommodation": quote.accommodation,
        "discountPercent": quote.discount_percent,
        "discount": quote.discount,
        "cleaningFee": quote.cleaning_fee,
        "petFee": quote.pet_fee,
        "subtotal": quote.subtotal,
        "vat": quote.vat,
        "total": quote.total,
        "currency": quote.currency,
        "source": quote.source,
    }


@router.get("/pricing")
def get_pricing(
    property_id: Optional[str] = Query(None, alias="propertyId"),
    check_in: Optional[str] = Query(None, alias="checkIn"),
    check_out: Optional[str] = Query(None, alias="checkOut"),
    guests: int = Query(1),
    has_pet: bool = Query(False, alias="hasPet"),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """
    Price a stay. Live Guesty rates are cached briefly; when Guesty can't
    price the stay the response carries source "fallback".
    """
    key = require_param_or_400(property_id, "propertyId")
    start = parse_date_or_400(require_param_or_400(check_in, "checkIn"), "checkIn")
    end = parse_date_or_400(require_param_or_400(check_out, "checkOut"), "checkOut")

    try:
        quote = services.pricing.quote(
            key, start, end, guests=guests, has_pet=has_pet  # type: ignore[arg-type]
        )
    except Exception as e:
        if not isinstance(e, (KeyError, ValueError)):
            logger.exception("pricing_failed", property_key=key)
        raise to_http_error(e)

    return quote_to_response(quote)
