from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class RetrySyncPayload(BaseModel):
    """
    Body of POST /api/admin/guesty/retry-sync.

    bookingId is optional in the schema so that a missing id gets a 400 with
    a clear message instead of a generic 422.
    """

    model_config = ConfigDict(populate_by_name=True)

    booking_id: Optional[str] = Field(None, alias="bookingId", description="Local booking id")


class RetryAllResponse(BaseModel):
    success: bool
    message: str
    retriedCount: int
    successCount: int
    failedCount: int
    skippedCount: int = 0


class LogPage(BaseModel):
    """A page of log rows, newest first."""

    logs: list[dict[str, Any]]
    hasMore: bool
    total: int
