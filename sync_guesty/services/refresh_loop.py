"""Background thread that keeps the availability cache warm."""

from __future__ import annotations

import threading
from typing import Optional

import structlog

from sync_guesty.services.availability import AvailabilityCache
from sync_guesty.services.pricing import PricingCache

logger = structlog.get_logger(__name__)


class RefreshLoop:
    """
    Refreshes every property once at start, then every `interval_seconds`.

    Each cycle also drops expired price quotes. stop() wakes the thread
    immediately instead of waiting out the interval.
    """

    def __init__(
        self,
        availability: AvailabilityCache,
        pricing_cache: Optional[PricingCache],
        interval_seconds: float,
    ):
        self._availability = availability
        self._pricing_cache = pricing_cache
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="availability-refresh", daemon=True
        )
        self._thread.start()
        logger.info("refresh_loop_started", interval_seconds=self.interval_seconds)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("refresh_loop_stopped")

    def run_once(self) -> dict[str, bool]:
        results = self._availability.refresh_all()
        if self._pricing_cache is not None:
            purged = self._pricing_cache.purge_expired()
            if purged:
                logger.debug("pricing_cache_purged", purged=purged)
        return results

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception:
                # refresh_all isolates per-property failures; anything here is unexpected
                logger.exception("refresh_loop_cycle_failed")
            self._stop.wait(self.interval_seconds)
