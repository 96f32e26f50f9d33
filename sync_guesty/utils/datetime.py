"""UTC datetime and calendar-date utilities."""

from datetime import date, datetime, timezone

from dateutil.relativedelta import relativedelta


def utc_now() -> datetime:
    """
    Return current UTC time as timezone-aware datetime.

    This function should be used instead of datetime.now() or datetime.utcnow()
    to ensure all timestamps are timezone-aware and stored in UTC.

    Returns:
        Timezone-aware datetime in UTC
    """
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """
    Attach UTC to a naive datetime read back from the database.

    SQLite drops tzinfo on round trip; every timestamp this package writes is UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_iso_date(value: str | date) -> date:
    """
    Parse YYYY-MM-DD (or the date part of an ISO timestamp) into a date.

    Raises:
        ValueError: If the value is not a valid ISO date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def add_months(start: date, months: int) -> date:
    """Return the same calendar day `months` later, clamped to month end."""
    return start + relativedelta(months=months)


def to_epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)
