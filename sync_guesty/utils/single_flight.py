"""
Keyed single-flight execution.

Concurrent callers asking for the same key share one underlying call: the first
caller (the leader) runs the function, every other caller blocks on the same
Future and receives the leader's result or exception. Once the call settles the
key is released, so the next call starts fresh. A failure is never cached.

Used for the OAuth token refresh (one global key), per-property availability
refreshes, per-key price computation and per-booking PMS sync.

Example:
    >>> flight: SingleFlight[str] = SingleFlight()
    >>> flight.do("token", issue_token)
    'eyJhbGciOi...'
"""

from __future__ import annotations

import threading
from concurrent.futures import Future
from typing import Callable, Generic, Hashable, TypeVar

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """
    Coalesce concurrent calls per key into a single execution.

    Attributes:
        _calls: In-flight futures by key
        _waiters: Number of followers currently attached to each key
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._calls: dict[Hashable, Future[T]] = {}
        self._waiters: dict[Hashable, int] = {}

    def do(self, key: Hashable, fn: Callable[[], T]) -> T:
        """
        Run fn for key, or wait for the run already in flight for key.

        Args:
            key: Coalescing key
            fn: Zero-argument callable producing the value

        Returns:
            The value produced by whichever caller led this flight

        Raises:
            Exception: Whatever fn raised, re-raised in every caller
        """
        with self._lock:
            future = self._calls.get(key)
            leader = future is None
            if future is None:
                future = Future()
                self._calls[key] = future
            else:
                self._waiters[key] = self._waiters.get(key, 0) + 1

        if not leader:
            try:
                return future.result()
            finally:
                with self._lock:
                    remaining = self._waiters.get(key, 1) - 1
                    if remaining > 0:
                        self._waiters[key] = remaining
                    else:
                        self._waiters.pop(key, None)

        try:
            result = fn()
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._calls.pop(key, None)

    def in_flight(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._calls

    def waiting(self, key: Hashable) -> int:
        """Number of callers currently blocked on the flight for key."""
        with self._lock:
            return self._waiters.get(key, 0)
