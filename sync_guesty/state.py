"""
Process-scoped service container.

Everything that holds state across requests (token cache, availability and
pricing caches, sync engine, refresh loop) is built once here and stored on
app.state at startup. Routes receive it through dependencies.get_services.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from sync_guesty.cache import TokenCache
from sync_guesty.config import (
    AVAILABILITY_HORIZON_MONTHS,
    AVAILABILITY_REFRESH_INTERVAL_SECONDS,
    PRICING_CACHE_TTL_SECONDS,
)
from sync_guesty.network.auth import build_token_cache
from sync_guesty.network.client import GuestyClient
from sync_guesty.properties import PropertyCatalog, load_catalog
from sync_guesty.services.alerts import AlertNotifier
from sync_guesty.services.availability import AvailabilityCache
from sync_guesty.services.booking_sync import BookingSyncService
from sync_guesty.services.pms_webhooks import PmsWebhookProcessor
from sync_guesty.services.pricing import PricingCache, PricingService
from sync_guesty.services.refresh_loop import RefreshLoop


@dataclass
class Services:
    engine: Engine
    catalog: PropertyCatalog
    token_cache: TokenCache
    client: GuestyClient
    availability: AvailabilityCache
    pricing: PricingService
    booking_sync: BookingSyncService
    pms_webhooks: PmsWebhookProcessor
    refresher: RefreshLoop

    def shutdown(self) -> None:
        self.refresher.stop()


def build_services(engine: Engine, catalog: Optional[PropertyCatalog] = None) -> Services:
    """
    Wire the service graph for one process.

    Args:
        engine: Database engine shared by all services
        catalog: Property catalog; defaults to the built-in one with env overrides

    Returns:
        Services: Fully wired container; the refresh loop is not started
    """
    catalog = catalog or load_catalog()
    token_cache = build_token_cache(engine)
    client = GuestyClient(token_cache.get_token, on_unauthorized=token_cache.invalidate)
    availability = AvailabilityCache(
        catalog,
        client.get_calendar,
        refresh_interval_seconds=AVAILABILITY_REFRESH_INTERVAL_SECONDS,
        horizon_months=AVAILABILITY_HORIZON_MONTHS,
        engine=engine,
    )
    pricing_cache = PricingCache(ttl_seconds=PRICING_CACHE_TTL_SECONDS)
    return Services(
        engine=engine,
        catalog=catalog,
        token_cache=token_cache,
        client=client,
        availability=availability,
        pricing=PricingService(catalog, client.get_calendar, pricing_cache),
        booking_sync=BookingSyncService(
            engine, catalog, client.create_reservation, alerts=AlertNotifier()
        ),
        pms_webhooks=PmsWebhookProcessor(engine, catalog),
        refresher=RefreshLoop(
            availability, pricing_cache, AVAILABILITY_REFRESH_INTERVAL_SECONDS
        ),
    )
