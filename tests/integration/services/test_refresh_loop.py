"""
Integration tests for the background availability refresh loop.
"""

from __future__ import annotations

import pytest
from conftest import KANT_LISTING, FakeGuesty, wait_until
from sqlalchemy.engine import Engine

from sync_guesty.properties import PropertyCatalog
from sync_guesty.services.availability import AvailabilityCache
from sync_guesty.services.pricing import PricingCache
from sync_guesty.services.refresh_loop import RefreshLoop
from sync_guesty.utils.datetime import utc_now


@pytest.fixture
def availability(
    catalog: PropertyCatalog, fake_guesty: FakeGuesty, db_engine: Engine
) -> AvailabilityCache:
    return AvailabilityCache(catalog, fake_guesty.get_calendar, engine=db_engine)


@pytest.mark.integration
def test_run_once_refreshes_every_property(
    availability: AvailabilityCache, fake_guesty: FakeGuesty
) -> None:
    today = utc_now().date()
    fake_guesty.set_calendar(KANT_LISTING, today, 5, blocked=(today,))
    loop = RefreshLoop(availability, PricingCache(ttl_seconds=300), interval_seconds=210)

    results = loop.run_once()

    assert results == {"kant": True, "hinden": True, "kotti": True}
    snapshot = availability.get_snapshot("kant")
    assert snapshot is not None
    assert snapshot.blocked_dates == (today.isoformat(),)


@pytest.mark.integration
def test_run_once_isolates_failures(
    availability: AvailabilityCache, fake_guesty: FakeGuesty
) -> None:
    fake_guesty.failing_listings.add(KANT_LISTING)
    loop = RefreshLoop(availability, None, interval_seconds=210)

    results = loop.run_once()

    assert results["kant"] is False
    assert results["hinden"] is True


@pytest.mark.integration
def test_start_and_stop(availability: AvailabilityCache, fake_guesty: FakeGuesty) -> None:
    loop = RefreshLoop(availability, None, interval_seconds=3600)

    loop.start()
    try:
        assert loop.running
        assert wait_until(lambda: len(fake_guesty.calendar_calls) == 3)
    finally:
        loop.stop(timeout=2)

    assert not loop.running
