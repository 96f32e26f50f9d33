from typing import Any, Optional

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Query

from sync_guesty.dependencies import get_services
from sync_guesty.routes._helpers import parse_date_or_400, require_param_or_400, to_http_error
from sync_guesty.state import Services
from sync_guesty.utils.datetime import to_epoch_ms

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.get("/availability/cached")
def get_cached_availability(
    background_tasks: BackgroundTasks,
    property_id: Optional[str] = Query(None, alias="propertyId"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    include_meta: bool = Query(False, alias="includeMeta"),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """
    Serve blocked dates from the availability cache.

    A stale snapshot is still served; an out-of-cycle refresh is scheduled
    behind the response.

    Args:
        property_id: Property key or slug
        start_date: Optional lower bound (inclusive, YYYY-MM-DD)
        end_date: Optional upper bound (inclusive, YYYY-MM-DD)
        include_meta: Add freshness metadata to the response

    Returns:
        dict: {blockedDates, cached, lastUpdated} plus stale/range metadata on request
    """
    key = require_param_or_400(property_id, "propertyId")
    start = parse_date_or_400(start_date, "startDate")
    end = parse_date_or_400(end_date, "endDate")

    try:
        snapshot = services.availability.get_cached_blocked_dates(key, start, end)
    except Exception as e:
        if not isinstance(e, (KeyError, ValueError)):
            logger.exception("cached_availability_failed", property_key=key)
        raise to_http_error(e)

    stale = services.availability.is_stale(snapshot)
    if stale:
        background_tasks.add_task(
            services.availability.try_refresh_property, snapshot.property_key
        )

    body: dict[str, Any] = {
        "blockedDates": snapshot.between(start, end),
        "cached": True,
        "lastUpdated": to_epoch_ms(snapshot.refreshed_at),
    }
    if include_meta:
        body.update(
            {
                "propertyId": snapshot.property_key,
                "stale": stale,
                "rangeStart": snapshot.range_start.isoformat(),
                "rangeEnd": snapshot.range_end.isoformat(),
            }
        )
    return body


@router.get("/availability/check")
def check_availability(
    property_id: Optional[str] = Query(None, alias="propertyId"),
    check_in: Optional[str] = Query(None, alias="checkIn"),
    check_out: Optional[str] = Query(None, alias="checkOut"),
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """
    Live availability check for one stay, bypassing the cache.

    Returns:
        dict: {available, unavailableDates}
    """
    key = require_param_or_400(property_id, "propertyId")
    start = parse_date_or_400(require_param_or_400(check_in, "checkIn"), "checkIn")
    end = parse_date_or_400(require_param_or_400(check_out, "checkOut"), "checkOut")

    try:
        unavailable = services.availability.check_availability(
            key, start, end  # type: ignore[arg-type]
        )
    except Exception as e:
        if not isinstance(e, (KeyError, ValueError)):
            logger.exception("availability_check_failed", property_key=key)
        raise to_http_error(e)

    return {"available": not unavailable, "unavailableDates": unavailable}
