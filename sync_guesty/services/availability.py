"""
Availability cache: per-property blocked-date snapshots over a rolling horizon.

Reads are served from the last good snapshot; a background loop refreshes every
property on a fixed interval. Refreshes for the same property are coalesced so
that at most one calendar fetch per property is ever in flight. Snapshots are
immutable and swapped in whole, so readers see the old or the new one.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import structlog
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from sync_guesty.db.readers.cache import get_availability_entry
from sync_guesty.db.writers.cache import upsert_availability_entry
from sync_guesty.metrics import (
    availability_refresh_duration,
    availability_refreshes,
    blocked_dates,
)
from sync_guesty.properties import PropertyCatalog
from sync_guesty.utils.datetime import add_months, ensure_utc, parse_iso_date, utc_now
from sync_guesty.utils.single_flight import SingleFlight

logger = structlog.get_logger(__name__)

BLOCKED_STATUSES = frozenset({"booked", "blocked", "unavailable", "reserved"})

CalendarFetcher = Callable[[str, date, date], List[Dict[str, Any]]]


@dataclass(frozen=True)
class AvailabilitySnapshot:
    """
    Blocked dates for one property as of one refresh.

    Attributes:
        property_key: Local property key
        blocked_dates: Sorted ISO dates (YYYY-MM-DD)
        refreshed_at: When the calendar was fetched (UTC)
        range_start: First date covered
        range_end: Last date covered
    """

    property_key: str
    blocked_dates: tuple[str, ...]
    refreshed_at: datetime
    range_start: date
    range_end: date

    def between(self, start: Optional[date] = None, end: Optional[date] = None) -> list[str]:
        """Blocked dates with start <= date <= end (ISO strings compare like dates)."""
        low = start.isoformat() if start else None
        high = end.isoformat() if end else None
        return [
            d
            for d in self.blocked_dates
            if (low is None or d >= low) and (high is None or d <= high)
        ]


def is_blocked(day: Dict[str, Any]) -> bool:
    """
    Decide whether a Guesty calendar day is unavailable.

    A day is blocked when its status says so, or when it is explicitly flagged
    unavailable.
    """
    status = str(day.get("status") or "").lower()
    if status in BLOCKED_STATUSES:
        return True
    if day.get("available") is False or day.get("isAvailable") is False:
        return True
    return False


def blocked_dates_from_days(days: List[Dict[str, Any]]) -> list[str]:
    dates = set()
    for day in days:
        raw = day.get("date")
        if not raw or not is_blocked(day):
            continue
        try:
            dates.add(parse_iso_date(raw).isoformat())
        except ValueError:
            logger.warning("calendar_day_unparseable", date=raw)
    return sorted(dates)


class AvailabilityCache:
    """
    Process-scoped availability cache.

    Lifecycle: created empty at startup, filled by the refresh loop or by the
    first read per property, dropped at process exit. With an engine, snapshots
    are also upserted to the availability_cache table and a cold process reads
    them back before going upstream.
    """

    def __init__(
        self,
        catalog: PropertyCatalog,
        fetch_calendar: CalendarFetcher,
        refresh_interval_seconds: int = 210,
        horizon_months: int = 6,
        engine: Optional[Engine] = None,
        persist_ttl_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Args:
            catalog: Known properties
            fetch_calendar: (listing_id, start, end) -> calendar day dicts
            refresh_interval_seconds: Background refresh period; older snapshots are stale
            horizon_months: How far ahead each refresh looks
            engine: Optional database for the persistent tier
            persist_ttl_seconds: Lifetime of persisted rows (default: refresh interval + 90s)
            clock: Source of "now", injectable for tests
        """
        self._catalog = catalog
        self._fetch_calendar = fetch_calendar
        self.refresh_interval = timedelta(seconds=refresh_interval_seconds)
        self.horizon_months = horizon_months
        self._engine = engine
        self._persist_ttl = timedelta(
            seconds=persist_ttl_seconds
            if persist_ttl_seconds is not None
            else refresh_interval_seconds + 90
        )
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshots: Dict[str, AvailabilitySnapshot] = {}
        self._flight: SingleFlight[AvailabilitySnapshot] = SingleFlight()

    # -- refresh ---------------------------------------------------------------

    def refresh_property(self, property_key: str) -> AvailabilitySnapshot:
        """
        Fetch the live calendar for today..today+horizon and swap in a new snapshot.

        Concurrent calls for the same property share one fetch and all receive
        the same snapshot.

        Raises:
            UnknownPropertyError: If the key is not in the catalog
            UpstreamError: If the fetch fails; the previous snapshot stays in place
        """
        prop = self._catalog.get(property_key)
        return self._flight.do(prop.key, lambda: self._refresh(prop.key, prop.listing_id))

    def _refresh(self, property_key: str, listing_id: str) -> AvailabilitySnapshot:
        now = self._clock()
        start = now.date()
        end = add_months(start, self.horizon_months)
        started = time.time()

        try:
            days = self._fetch_calendar(listing_id, start, end)
        except Exception as e:
            availability_refreshes.labels(property_key=property_key, status="failure").inc()
            logger.warning(
                "availability_refresh_failed",
                property_key=property_key,
                listing_id=listing_id,
                error=str(e),
            )
            raise

        snapshot = AvailabilitySnapshot(
            property_key=property_key,
            blocked_dates=tuple(blocked_dates_from_days(days)),
            refreshed_at=now,
            range_start=start,
            range_end=end,
        )
        with self._lock:
            self._snapshots[property_key] = snapshot

        availability_refresh_duration.labels(property_key=property_key).observe(
            time.time() - started
        )
        availability_refreshes.labels(property_key=property_key, status="success").inc()
        blocked_dates.labels(property_key=property_key).set(len(snapshot.blocked_dates))
        logger.info(
            "availability_refreshed",
            property_key=property_key,
            blocked_dates=len(snapshot.blocked_dates),
            range_start=start.isoformat(),
            range_end=end.isoformat(),
        )

        self._persist(snapshot)
        return snapshot

    def try_refresh_property(self, property_key: str) -> bool:
        """Refresh one property for background callers; failures are logged, not raised."""
        try:
            self.refresh_property(property_key)
            return True
        except Exception:
            logger.exception("availability_refresh_property_failed", property_key=property_key)
            return False

    def refresh_all(self) -> dict[str, bool]:
        """
        Refresh every catalog property; one failure never stops the others.

        Returns:
            dict[str, bool]: Success flag per property key.
        """
        results = {key: self.try_refresh_property(key) for key in self._catalog.keys()}

        logger.info(
            "availability_refresh_all_completed",
            succeeded=sum(results.values()),
            failed=len(results) - sum(results.values()),
        )
        return results

    # -- reads -----------------------------------------------------------------

    def get_snapshot(self, property_key: str) -> Optional[AvailabilitySnapshot]:
        with self._lock:
            return self._snapshots.get(property_key)

    def get_cached_blocked_dates(
        self,
        property_key: str,
        range_start: Optional[date] = None,
        range_end: Optional[date] = None,
    ) -> AvailabilitySnapshot:
        """
        Return the cached snapshot for a property, loading it on a cold start.

        Callers filter with snapshot.between(range_start, range_end); the range
        arguments are only validated here.

        Raises:
            UnknownPropertyError: If the key is not in the catalog
            ValueError: If range_start is after range_end
            UpstreamError: On a cold start whose refresh failed
        """
        if range_start and range_end and range_start > range_end:
            raise ValueError("range start must not be after range end")

        prop = self._catalog.get(property_key)
        snapshot = self.get_snapshot(prop.key)
        if snapshot is not None:
            return snapshot

        snapshot = self._load_persisted(prop.key)
        if snapshot is not None:
            return snapshot

        logger.info("availability_cold_start", property_key=prop.key)
        return self.refresh_property(prop.key)

    def check_availability(
        self, property_key: str, check_in: date, check_out: date
    ) -> list[str]:
        """
        Live check: nights in [check_in, check_out) that are blocked upstream.

        The checkout day itself is not a night of the stay and is not checked.

        Returns:
            list[str]: Unavailable ISO dates, empty when the stay is bookable.
        """
        if check_in >= check_out:
            raise ValueError("check-in must be before check-out")
        prop = self._catalog.get(property_key)
        last_night = check_out - timedelta(days=1)
        days = self._fetch_calendar(prop.listing_id, check_in, last_night)
        low, high = check_in.isoformat(), last_night.isoformat()
        return [d for d in blocked_dates_from_days(days) if low <= d <= high]

    def is_stale(self, snapshot: AvailabilitySnapshot) -> bool:
        return self._clock() - snapshot.refreshed_at > self.refresh_interval

    def get_cache_statistics(self) -> dict[str, Any]:
        """
        Per-property freshness for observability.

        Returns:
            dict[str, Any]: {property_key: {blockedDatesCount, lastRefreshed,
            ageSeconds, isStale, refreshing}}; properties never loaded report
            lastRefreshed None and isStale True.
        """
        now = self._clock()
        stats: dict[str, Any] = {}
        for key in self._catalog.keys():
            snapshot = self.get_snapshot(key)
            refreshing = self._flight.in_flight(key)
            if snapshot is None:
                stats[key] = {
                    "blockedDatesCount": 0,
                    "lastRefreshed": None,
                    "ageSeconds": None,
                    "isStale": True,
                    "refreshing": refreshing,
                }
                continue
            stats[key] = {
                "blockedDatesCount": len(snapshot.blocked_dates),
                "lastRefreshed": snapshot.refreshed_at.isoformat(),
                "ageSeconds": int((now - snapshot.refreshed_at).total_seconds()),
                "isStale": self.is_stale(snapshot),
                "refreshing": refreshing,
            }
        return stats

    def clear(self) -> None:
        with self._lock:
            self._snapshots.clear()

    # -- persistent tier -------------------------------------------------------

    def _persist(self, snapshot: AvailabilitySnapshot) -> None:
        if self._engine is None:
            return
        try:
            with self._engine.begin() as conn:
                upsert_availability_entry(
                    conn,
                    property_key=snapshot.property_key,
                    blocked_dates=list(snapshot.blocked_dates),
                    range_start=snapshot.range_start.isoformat(),
                    range_end=snapshot.range_end.isoformat(),
                    refreshed_at=snapshot.refreshed_at,
                    expires_at=snapshot.refreshed_at + self._persist_ttl,
                )
        except SQLAlchemyError as e:
            logger.warning(
                "availability_persist_failed", property_key=snapshot.property_key, error=str(e)
            )

    def _load_persisted(self, property_key: str) -> Optional[AvailabilitySnapshot]:
        if self._engine is None:
            return None
        try:
            with self._engine.connect() as conn:
                row = get_availability_entry(conn, property_key, self._clock())
        except SQLAlchemyError as e:
            logger.warning("availability_load_failed", property_key=property_key, error=str(e))
            return None
        if row is None:
            return None

        snapshot = AvailabilitySnapshot(
            property_key=property_key,
            blocked_dates=tuple(sorted(row["blocked_dates"] or [])),
            refreshed_at=ensure_utc(row["refreshed_at"]),  # type: ignore[arg-type]
            range_start=parse_iso_date(row["range_start"]),
            range_end=parse_iso_date(row["range_end"]),
        )
        with self._lock:
            # A concurrent live refresh wins over the stored copy
            current = self._snapshots.setdefault(property_key, snapshot)
        logger.info("availability_loaded_from_store", property_key=property_key)
        return current
