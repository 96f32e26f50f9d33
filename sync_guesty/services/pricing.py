"""
Pricing: live quotes computed from Guesty nightly rates and a short-TTL cache in front.

A quote sums the nightly prices Guesty reports for each night of the stay (the
checkout day is not a night), then applies the local fee schedule: a
length-of-stay discount, cleaning fee, pet fee and VAT. When Guesty can't
price the stay, the quote falls back to the catalog nightly rate and is not
cached, so the next request tries Guesty again.
"""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import structlog

from sync_guesty.errors import ConfigurationError, UpstreamError
from sync_guesty.metrics import pricing_cache_hits, pricing_cache_misses
from sync_guesty.properties import Property, PropertyCatalog
from sync_guesty.utils.datetime import parse_iso_date, utc_now
from sync_guesty.utils.single_flight import SingleFlight

logger = structlog.get_logger(__name__)

VAT_RATE = 0.19
DEFAULT_CURRENCY = "EUR"
# (minimum nights, discount percent), checked in order
LENGTH_OF_STAY_DISCOUNTS = ((28, 20), (7, 10))

CalendarFetcher = Callable[[str, date, date], List[Dict[str, Any]]]


@dataclass(frozen=True)
class PriceKey:
    property_key: str
    check_in: date
    check_out: date
    guests: int = 1
    has_pet: bool = False


@dataclass(frozen=True)
class PriceQuote:
    """
    Full price breakdown for one stay.

    Attributes:
        nightly_rate: Average nightly rate, rounded to whole currency units
        accommodation: Sum of nightly rates before discount
        discount_percent: Length-of-stay discount applied (0, 10 or 20)
        subtotal: accommodation - discount + cleaning_fee + pet_fee
        vat: VAT on subtotal
        total: subtotal + vat
        source: "guesty" for live rates, "fallback" for catalog rates
    """

    property_key: str
    check_in: date
    check_out: date
    guests: int
    nights: int
    nightly_rate: float
    accommodation: float
    discount_percent: int
    discount: float
    cleaning_fee: float
    pet_fee: float
    subtotal: float
    vat: float
    total: float
    currency: str
    source: str

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["check_in"] = self.check_in.isoformat()
        data["check_out"] = self.check_out.isoformat()
        return data


def discount_percent_for(nights: int) -> int:
    for min_nights, percent in LENGTH_OF_STAY_DISCOUNTS:
        if nights >= min_nights:
            return percent
    return 0


def build_quote(
    prop: Property,
    key: PriceKey,
    nightly_prices: list[float],
    currency: str,
    source: str,
) -> PriceQuote:
    """
    Apply the fee schedule to a list of nightly prices.

    Args:
        prop: Property being priced
        key: Stay being priced
        nightly_prices: One price per night of the stay
        currency: ISO currency code
        source: "guesty" or "fallback"

    Returns:
        PriceQuote: Rounded breakdown
    """
    nights = len(nightly_prices)
    accommodation = round(sum(nightly_prices), 2)
    percent = discount_percent_for(nights)
    discount = round(accommodation * percent / 100, 2)
    cleaning_fee = prop.cleaning_fee
    pet_fee = prop.pet_fee if key.has_pet and prop.pets_allowed else 0.0
    subtotal = round(accommodation - discount + cleaning_fee + pet_fee, 2)
    vat = round(subtotal * VAT_RATE, 2)
    return PriceQuote(
        property_key=prop.key,
        check_in=key.check_in,
        check_out=key.check_out,
        guests=key.guests,
        nights=nights,
        nightly_rate=float(round(accommodation / nights)) if nights else 0.0,
        accommodation=accommodation,
        discount_percent=percent,
        discount=discount,
        cleaning_fee=cleaning_fee,
        pet_fee=pet_fee,
        subtotal=subtotal,
        vat=vat,
        total=round(subtotal + vat, 2),
        currency=currency,
        source=source,
    )


class PricingCache:
    """
    Short-TTL memo of price quotes keyed by PriceKey.

    An entry is served while its age is strictly below the TTL and never after;
    concurrent misses for the same key share one computation.
    """

    def __init__(self, ttl_seconds: int = 300, clock: Callable[[], datetime] = utc_now):
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[PriceKey, tuple[PriceQuote, datetime]] = {}
        self._flight: SingleFlight[PriceQuote] = SingleFlight()
        self._hits = 0
        self._misses = 0

    def _fresh(self, key: PriceKey) -> Optional[PriceQuote]:
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        quote, cached_at = entry
        if self._clock() - cached_at < self.ttl:
            return quote
        return None

    def get_price(
        self,
        key: PriceKey,
        compute: Callable[[], PriceQuote],
        should_cache: Callable[[PriceQuote], bool] = lambda quote: True,
    ) -> PriceQuote:
        """
        Return the cached quote for key, or compute, store and return a new one.

        Args:
            key: Cache key
            compute: Produces a live quote
            should_cache: Quotes for which this returns False are returned but not stored
        """
        quote = self._fresh(key)
        if quote is not None:
            with self._lock:
                self._hits += 1
            pricing_cache_hits.inc()
            return quote

        with self._lock:
            self._misses += 1

        def compute_and_store() -> PriceQuote:
            fresh = compute()
            if should_cache(fresh):
                with self._lock:
                    self._entries[key] = (fresh, self._clock())
            return fresh

        return self._flight.do(key, compute_and_store)

    def clear(self, property_key: Optional[str] = None) -> int:
        """Drop all entries, or only those for one property. Returns the number dropped."""
        with self._lock:
            if property_key is None:
                dropped = len(self._entries)
                self._entries.clear()
                return dropped
            stale = [k for k in self._entries if k.property_key == property_key]
            for k in stale:
                del self._entries[k]
            return len(stale)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, at) in self._entries.items() if now - at >= self.ttl]
            for k in expired:
                del self._entries[k]
        return len(expired)

    def statistics(self) -> dict[str, Any]:
        with self._lock:
            hits, misses, size = self._hits, self._misses, len(self._entries)
        total = hits + misses
        return {
            "hits": hits,
            "misses": misses,
            "totalRequests": total,
            "hitRate": round(hits / total * 100, 2) if total else 0.0,
            "size": size,
            "ttlSeconds": int(self.ttl.total_seconds()),
        }


class PricingService:
    """Quotes stays, preferring cached live prices and degrading to catalog rates."""

    def __init__(
        self,
        catalog: PropertyCatalog,
        fetch_calendar: CalendarFetcher,
        cache: PricingCache,
    ):
        self._catalog = catalog
        self._fetch_calendar = fetch_calendar
        self.cache = cache

    def quote(
        self,
        property_key: str,
        check_in: date,
        check_out: date,
        guests: int = 1,
        has_pet: bool = False,
    ) -> PriceQuote:
        """
        Price a stay.

        Raises:
            UnknownPropertyError: If the property is not in the catalog
            ValueError: On invalid dates or guest count
        """
        prop = self._catalog.get(property_key)
        if check_in >= check_out:
            raise ValueError("check-in must be before check-out")
        if guests < 1 or guests > prop.max_guests:
            raise ValueError(f"guests must be between 1 and {prop.max_guests}")
        # A pet at a no-pets property is priced without a pet fee
        key = PriceKey(prop.key, check_in, check_out, guests, has_pet and prop.pets_allowed)
        return self.cache.get_price(
            key,
            lambda: self._compute(prop, key),
            should_cache=lambda quote: quote.source == "guesty",
        )

    def _compute(self, prop: Property, key: PriceKey) -> PriceQuote:
        try:
            prices, currency = self._live_nightly_prices(prop, key)
        except ConfigurationError:
            raise
        except Exception as e:
            pricing_cache_misses.labels(source="fallback").inc()
            logger.warning(
                "pricing_fallback",
                property_key=prop.key,
                check_in=key.check_in.isoformat(),
                check_out=key.check_out.isoformat(),
                error=str(e),
            )
            nights = (key.check_out - key.check_in).days
            return build_quote(
                prop, key, [prop.fallback_nightly_rate] * nights, DEFAULT_CURRENCY, "fallback"
            )

        pricing_cache_misses.labels(source="guesty").inc()
        return build_quote(prop, key, prices, currency, "guesty")

    def _live_nightly_prices(self, prop: Property, key: PriceKey) -> tuple[list[float], str]:
        last_night = key.check_out - timedelta(days=1)
        days = self._fetch_calendar(prop.listing_id, key.check_in, last_night)

        by_date: dict[date, dict[str, Any]] = {}
        for day in days:
            if day.get("date"):
                by_date[parse_iso_date(day["date"])] = day

        prices: list[float] = []
        currency = DEFAULT_CURRENCY
        night = key.check_in
        while night < key.check_out:
            day = by_date.get(night)
            price = day.get("price") if day else None
            if price is None:
                raise UpstreamError(f"No Guesty price for {night.isoformat()}", "calendar")
            prices.append(float(price))
            currency = str(day.get("currency") or currency)  # type: ignore[union-attr]
            night += timedelta(days=1)
        return prices, currency
