"""
Internal helpers shared by the route handlers.

Validation helpers raise HTTPException directly so handlers stay linear.
"""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy.engine import Connection

from sync_guesty.db.readers.bookings import get_booking
from sync_guesty.errors import (
    ConfigurationError,
    SyncGuestyError,
    UnknownPropertyError,
    UpstreamError,
)
from sync_guesty.utils.datetime import parse_iso_date


def require_param_or_400(value: Optional[str], name: str) -> str:
    """
    Validate that a query parameter is present, raise 400 if not.

    Raises:
        HTTPException: 400 if the value is missing or blank
    """
    if value is None or not value.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{name} is required",
        )
    return value.strip()


def parse_date_or_400(value: Optional[str], name: str) -> Optional[date]:
    """
    Parse an optional YYYY-MM-DD parameter, raise 400 if it is malformed.

    Returns:
        Optional[date]: None when the parameter was not given
    """
    if value is None or value == "":
        return None
    try:
        return parse_iso_date(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{name} must be a date in YYYY-MM-DD format",
        )


def validate_booking_exists_or_404(conn: Connection, booking_id: str) -> None:
    if get_booking(conn, booking_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Booking {booking_id} not found",
        )


def to_http_error(error: Exception) -> HTTPException:
    """
    Map a domain error onto the HTTP status the API reports for it.

    Args:
        error: UnknownPropertyError / ValueError (400), ConfigurationError (500),
            UpstreamError (502), anything else (500)
    """
    if isinstance(error, UnknownPropertyError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    if isinstance(error, ConfigurationError):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Service misconfigured"
        )
    if isinstance(error, UpstreamError):
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail="Guesty is unavailable"
        )
    if isinstance(error, ValueError) and not isinstance(error, SyncGuestyError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error"
    )
