"""
Shared fixtures.

Environment is set before anything from sync_guesty is imported, because
sync_guesty.config reads it at import time.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import os
import threading
import time
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Generator, Optional

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ALLOWED_ORIGINS"] = "*"
os.environ["GUESTY_CLIENT_ID"] = "test-client-id"
os.environ["GUESTY_CLIENT_SECRET"] = "test-client-secret"
os.environ["GUESTY_WEBHOOK_SECRET"] = "guesty-test-secret"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["ADMIN_API_TOKEN"] = "admin-test-token"
os.environ["AVAILABILITY_REFRESH_ENABLED"] = "false"
os.environ["GUESTY_LISTING_IDS"] = ""
os.environ.pop("ADMIN_ALERT_EMAIL", None)
os.environ.pop("ADMIN_ALERT_WEBHOOK_URL", None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.engine import Engine  # noqa: E402

from sync_guesty.cache import IssuedToken, TokenCache  # noqa: E402
from sync_guesty.db.engine import build_engine  # noqa: E402
from sync_guesty.db.writers.bookings import insert_booking  # noqa: E402
from sync_guesty.errors import UpstreamError  # noqa: E402
from sync_guesty.models.base import Base  # noqa: E402
from sync_guesty.models.bookings import Booking  # noqa: E402, F401
from sync_guesty.models.cache import AvailabilityCacheEntry, OAuthTokenEntry  # noqa: E402, F401
from sync_guesty.models.webhook_logs import WebhookLog  # noqa: E402, F401
from sync_guesty.network.client import GuestyClient  # noqa: E402
from sync_guesty.properties import PropertyCatalog, load_catalog  # noqa: E402
from sync_guesty.services.alerts import AlertNotifier  # noqa: E402
from sync_guesty.services.availability import AvailabilityCache  # noqa: E402
from sync_guesty.services.booking_sync import BookingSyncService  # noqa: E402
from sync_guesty.services.pms_webhooks import PmsWebhookProcessor  # noqa: E402
from sync_guesty.services.pricing import PricingCache, PricingService  # noqa: E402
from sync_guesty.services.refresh_loop import RefreshLoop  # noqa: E402
from sync_guesty.state import Services  # noqa: E402

GUESTY_SECRET = os.environ["GUESTY_WEBHOOK_SECRET"]
STRIPE_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]
ADMIN_TOKEN = os.environ["ADMIN_API_TOKEN"]

KANT_LISTING = "68e0da429e441d00129131d7"
HINDEN_LISTING = "68e0da486cf6cf001162ee98"
KOTTI_LISTING = "68e0da5866b8a40012e6ec15"


class FakeClock:
    """Mutable UTC clock for TTL and staleness tests."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeGuesty:
    """
    In-memory stand-in for the Guesty calendar and reservation endpoints.

    Attributes:
        calendars: Day objects per listing id
        failing_listings: Listings whose calendar fetch raises UpstreamError
        create_error: Raised by create_reservation when set
        created_count: Reservations handed out so far (res_456, res_457, ...)
        calendar_gate / create_gate: Block the call until set, for coalescing tests
    """

    def __init__(self) -> None:
        self.calendars: dict[str, list[dict[str, Any]]] = {}
        self.failing_listings: set[str] = set()
        self.calendar_calls: list[tuple[str, date, date]] = []
        self.create_calls: list[dict[str, Any]] = []
        self.create_error: Optional[Exception] = None
        self.created_count = 0
        self.on_create: Optional[Callable[[dict[str, Any]], None]] = None
        self.calendar_gate: Optional[threading.Event] = None
        self.create_gate: Optional[threading.Event] = None
        self._lock = threading.Lock()

    @staticmethod
    def day(day: date, status: str = "available", price: float = 100.0) -> dict[str, Any]:
        return {"date": day.isoformat(), "status": status, "price": price, "currency": "EUR"}

    def set_calendar(
        self,
        listing_id: str,
        start: date,
        nights: int,
        price: float = 100.0,
        blocked: tuple[date, ...] = (),
    ) -> None:
        self.calendars[listing_id] = [
            self.day(
                start + timedelta(days=i),
                "booked" if start + timedelta(days=i) in blocked else "available",
                price,
            )
            for i in range(nights)
        ]

    def get_calendar(self, listing_id: str, start: date, end: date) -> list[dict[str, Any]]:
        with self._lock:
            self.calendar_calls.append((listing_id, start, end))
        if self.calendar_gate is not None:
            self.calendar_gate.wait(5)
        if listing_id in self.failing_listings:
            raise UpstreamError("calendar unavailable", "calendar", 503)
        low, high = start.isoformat(), end.isoformat()
        return [d for d in self.calendars.get(listing_id, []) if low <= d["date"] <= high]

    def create_reservation(self, payload: dict[str, Any]) -> str:
        with self._lock:
            self.create_calls.append(payload)
        if self.on_create is not None:
            self.on_create(payload)
        if self.create_gate is not None:
            self.create_gate.wait(5)
        if self.create_error is not None:
            raise self.create_error
        with self._lock:
            reservation_id = f"res_{456 + self.created_count}"
            self.created_count += 1
        return reservation_id


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture
def db_engine(tmp_path: Any) -> Generator[Engine, None, None]:
    """File-backed SQLite database with the full schema, fresh per test."""
    engine = build_engine(f"sqlite:///{tmp_path / 'sync_guesty_test.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def catalog() -> PropertyCatalog:
    return load_catalog("")


@pytest.fixture
def fake_guesty() -> FakeGuesty:
    return FakeGuesty()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_booking(db_engine: Engine) -> Callable[..., str]:
    """
    Factory inserting a paid, confirmed website booking (LFT-1001 / pi_123 by default).

    Keyword arguments override any column.
    """
    counter = {"n": 1000}

    def _make(**overrides: Any) -> str:
        counter["n"] += 1
        data: dict[str, Any] = {
            "booking_reference": f"LFT-{counter['n']}",
            "property_key": "kant",
            "guest_first_name": "Anna",
            "guest_last_name": "Schmidt",
            "guest_email": "anna@example.com",
            "guest_phone": "+49 30 1234567",
            "check_in_date": date(2026, 11, 1),
            "check_out_date": date(2026, 11, 4),
            "adults": 2,
            "children": 0,
            "total": 450,
            "payment_status": "completed",
            "status": "confirmed",
            "stripe_payment_intent_id": f"pi_{counter['n']}",
        }
        data.update(overrides)
        with db_engine.begin() as conn:
            return insert_booking(conn, data)

    return _make


@pytest.fixture
def services(
    db_engine: Engine, catalog: PropertyCatalog, fake_guesty: FakeGuesty
) -> Services:
    """Service container wired to the test database and FakeGuesty."""
    token_cache = TokenCache(issuer=lambda: IssuedToken("test-token", 86400))
    availability = AvailabilityCache(catalog, fake_guesty.get_calendar, engine=db_engine)
    pricing_cache = PricingCache(ttl_seconds=300)
    return Services(
        engine=db_engine,
        catalog=catalog,
        token_cache=token_cache,
        client=GuestyClient(token_cache.get_token, on_unauthorized=token_cache.invalidate),
        availability=availability,
        pricing=PricingService(catalog, fake_guesty.get_calendar, pricing_cache),
        booking_sync=BookingSyncService(
            db_engine,
            catalog,
            fake_guesty.create_reservation,
            alerts=AlertNotifier(recipient=None),
            enabled=True,
            dry_run=False,
        ),
        pms_webhooks=PmsWebhookProcessor(db_engine, catalog, import_external=False),
        refresher=RefreshLoop(availability, pricing_cache, 210),
    )


@pytest.fixture
def api_client(services: Services) -> Generator[TestClient, None, None]:
    """
    TestClient for the real app with the service container overridden.

    Sends the admin bearer token on every request; the webhook and public
    routes ignore it.
    """
    from sync_guesty.dependencies import get_services
    from sync_guesty.main import app

    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app, headers={"Authorization": f"Bearer {ADMIN_TOKEN}"})
    app.dependency_overrides.clear()


def _guesty_signature(body: bytes, secret: str = GUESTY_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def _stripe_signature(payload: str, secret: str = STRIPE_SECRET) -> str:
    timestamp = int(time.time())
    signed = hmac.new(
        secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256
    ).hexdigest()
    return f"t={timestamp},v1={signed}"


@pytest.fixture
def post_guesty(api_client: TestClient) -> Callable[..., Any]:
    """POST a signed Guesty webhook; returns the response."""

    def _post(body: Any, event_id: Optional[str] = None, signature: Optional[str] = None) -> Any:
        raw = body if isinstance(body, bytes) else json.dumps(body).encode()
        headers = {
            "Content-Type": "application/json",
            "X-Guesty-Signature": signature if signature is not None else _guesty_signature(raw),
        }
        if event_id:
            headers["X-Guesty-Event-Id"] = event_id
        return api_client.post("/api/webhooks/guesty", content=raw, headers=headers)

    return _post


@pytest.fixture
def post_stripe(api_client: TestClient) -> Callable[..., Any]:
    """POST a signed Stripe payment_intent event; returns the response."""

    def _post(
        event_type: str,
        intent_id: str,
        event_id: str = "evt_1",
        latest_charge: Optional[str] = "ch_789",
        signature: Optional[str] = None,
    ) -> Any:
        payload = json.dumps(
            {
                "id": event_id,
                "object": "event",
                "type": event_type,
                "data": {
                    "object": {
                        "id": intent_id,
                        "object": "payment_intent",
                        "latest_charge": latest_charge,
                    }
                },
            }
        )
        headers = {
            "Content-Type": "application/json",
            "Stripe-Signature": signature if signature is not None else _stripe_signature(payload),
        }
        return api_client.post("/api/webhooks/stripe", content=payload, headers=headers)

    return _post
