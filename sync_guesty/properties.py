"""
Property catalog: local property keys, public slugs, Guesty listing ids and the
local fee schedule used for price breakdowns and fallback quotes.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, Iterator

from sync_guesty.config import GUESTY_LISTING_IDS_RAW
from sync_guesty.errors import UnknownPropertyError


@dataclass(frozen=True)
class Property:
    """
    A rentable unit known to both the website and Guesty.

    Attributes:
        key: Short key used in bookings and cache keys (e.g. "kant")
        slugs: Public URL slugs that resolve to this property
        name: Display name
        listing_id: Guesty listing id
        fallback_nightly_rate: Nightly rate used when Guesty pricing is unavailable
        cleaning_fee: Flat cleaning fee per stay
        pet_fee: Flat pet fee per stay, applied only when pets are allowed
        pets_allowed: Whether the property accepts pets
        max_guests: Maximum guests (adults + children)
    """

    key: str
    slugs: tuple[str, ...]
    name: str
    listing_id: str
    fallback_nightly_rate: float
    cleaning_fee: float
    pet_fee: float
    pets_allowed: bool
    max_guests: int


DEFAULT_PROPERTIES: tuple[Property, ...] = (
    Property(
        key="kant",
        slugs=("kantstrasse",),
        name="Kantstrasse",
        listing_id="68e0da429e441d00129131d7",
        fallback_nightly_rate=120.0,
        cleaning_fee=50.0,
        pet_fee=0.0,
        pets_allowed=False,
        max_guests=4,
    ),
    Property(
        key="hinden",
        slugs=("hindenburgufer", "hindenburgdamm"),
        name="Hindenburgdamm",
        listing_id="68e0da486cf6cf001162ee98",
        fallback_nightly_rate=95.0,
        cleaning_fee=40.0,
        pet_fee=20.0,
        pets_allowed=True,
        max_guests=4,
    ),
    Property(
        key="kotti",
        slugs=("kottbusserdamm",),
        name="Kottbusser Damm",
        listing_id="68e0da5866b8a40012e6ec15",
        fallback_nightly_rate=140.0,
        cleaning_fee=60.0,
        pet_fee=25.0,
        pets_allowed=True,
        max_guests=6,
    ),
)


class PropertyCatalog:
    """Lookup of properties by key, slug or Guesty listing id."""

    def __init__(self, properties: Iterable[Property]):
        self._by_key: dict[str, Property] = {}
        self._by_alias: dict[str, Property] = {}
        self._by_listing: dict[str, Property] = {}
        for prop in properties:
            self._by_key[prop.key] = prop
            self._by_alias[prop.key] = prop
            for slug in prop.slugs:
                self._by_alias[slug] = prop
            self._by_listing[prop.listing_id] = prop

    def keys(self) -> list[str]:
        return list(self._by_key)

    def __iter__(self) -> Iterator[Property]:
        return iter(self._by_key.values())

    def get(self, key_or_slug: str) -> Property:
        """
        Resolve a property key or public slug.

        Raises:
            UnknownPropertyError: If nothing matches
        """
        prop = self._by_alias.get((key_or_slug or "").strip().lower())
        if prop is None:
            raise UnknownPropertyError(key_or_slug)
        return prop

    def by_listing_id(self, listing_id: str | None) -> Property | None:
        if not listing_id:
            return None
        return self._by_listing.get(str(listing_id))


def parse_listing_overrides(raw: str) -> dict[str, str]:
    """
    Parse "kant=abc,hinden=def" into {"kant": "abc", "hinden": "def"}.

    Raises:
        ValueError: On an entry without "="
    """
    overrides: dict[str, str] = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        if "=" not in entry:
            raise ValueError(f"Invalid GUESTY_LISTING_IDS entry: {entry!r}")
        key, listing_id = entry.split("=", 1)
        overrides[key.strip()] = listing_id.strip()
    return overrides


def load_catalog(overrides_raw: str = GUESTY_LISTING_IDS_RAW) -> PropertyCatalog:
    overrides = parse_listing_overrides(overrides_raw)
    properties = [
        replace(prop, listing_id=overrides.get(prop.key, prop.listing_id))
        for prop in DEFAULT_PROPERTIES
    ]
    return PropertyCatalog(properties)
