"""
Prometheus metrics endpoint.

Example:
    GET /metrics

    Response:
        # HELP guesty_booking_syncs_total Booking sync attempts by outcome
        # TYPE guesty_booking_syncs_total counter
        guesty_booking_syncs_total{status="synced"} 12.0
        ...
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter()


@router.get("/metrics", response_class=Response)
async def metrics() -> Any:
    """Expose every registered metric in the Prometheus text format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
