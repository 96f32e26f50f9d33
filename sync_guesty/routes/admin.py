"""Operator endpoints for the Guesty sync pipeline and the caches."""

from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from sync_guesty.db.readers.bookings import list_sync_logs
from sync_guesty.db.readers.webhook_logs import list_webhook_logs
from sync_guesty.dependencies import get_services, require_admin
from sync_guesty.models.bookings import SyncStatus
from sync_guesty.routes._helpers import validate_booking_exists_or_404
from sync_guesty.schemas.admin import LogPage, RetryAllResponse, RetrySyncPayload
from sync_guesty.state import Services

logger = structlog.get_logger(__name__)
router = APIRouter(dependencies=[Depends(require_admin)])

SYNC_FILTERS = {s.value for s in SyncStatus}


@router.post("/retry-sync")
def retry_sync(
    payload: RetrySyncPayload,
    services: Services = Depends(get_services),
) -> JSONResponse:
    """
    Retry the Guesty sync of one booking.

    Returns:
        JSONResponse: 200 {success, reservationId} on success,
            500 {success: false, error} when the sync failed again
    """
    if not payload.booking_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="bookingId is required")

    with services.engine.connect() as conn:
        validate_booking_exists_or_404(conn, payload.booking_id)

    result = services.booking_sync.retry_failed_sync(payload.booking_id)
    if result.success:
        return JSONResponse(
            content={"success": True, "reservationId": result.reservation_id}
        )

    logger.warning("admin_retry_sync_failed", booking_id=payload.booking_id, error=result.error)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": result.error},
    )


@router.post("/retry-all", response_model=RetryAllResponse)
def retry_all(services: Services = Depends(get_services)) -> RetryAllResponse:
    result = services.booking_sync.retry_all_failed()
    return RetryAllResponse(
        success=True,
        message=(
            f"Retried {result.retried_count} bookings: "
            f"{result.success_count} succeeded, {result.failed_count} failed, "
            f"{result.skipped_count} skipped"
        ),
        retriedCount=result.retried_count,
        successCount=result.success_count,
        failedCount=result.failed_count,
        skippedCount=result.skipped_count,
    )


@router.get("/stats")
def sync_stats(services: Services = Depends(get_services)) -> dict[str, Any]:
    return services.booking_sync.get_sync_statistics()


@router.get("/logs", response_model=LogPage)
def sync_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sync_filter: Optional[str] = Query(
        None, alias="filter", description="all, pending, synced or failed"
    ),
    services: Services = Depends(get_services),
) -> LogPage:
    """
    Page through bookings with their Guesty sync state.

    Args:
        page: 1-based page number
        limit: Page size (max 100)
        sync_filter: Sync status to restrict to; "all" or omitted means no filter
    """
    if sync_filter and sync_filter != "all" and sync_filter not in SYNC_FILTERS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"filter must be one of: all, {', '.join(sorted(SYNC_FILTERS))}",
        )

    with services.engine.connect() as conn:
        rows, total = list_sync_logs(
            conn, page=page, limit=limit, sync_status=None if sync_filter == "all" else sync_filter
        )
    return LogPage(logs=jsonable_encoder(rows), hasMore=page * limit < total, total=total)


@router.get("/webhook-logs", response_model=LogPage)
def webhook_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status_filter: Optional[str] = Query(None, alias="status"),
    event_type: Optional[str] = Query(None, alias="eventType"),
    source: Optional[str] = Query(None),
    services: Services = Depends(get_services),
) -> LogPage:
    with services.engine.connect() as conn:
        rows, total = list_webhook_logs(
            conn,
            page=page,
            limit=limit,
            status=status_filter,
            event_type=event_type,
            source=source,
        )
    return LogPage(logs=jsonable_encoder(rows), hasMore=page * limit < total, total=total)


@router.get("/cache-stats")
def cache_stats(services: Services = Depends(get_services)) -> dict[str, Any]:
    return {
        "availability": services.availability.get_cache_statistics(),
        "pricing": services.pricing.cache.statistics(),
        "token": services.token_cache.statistics(),
    }
