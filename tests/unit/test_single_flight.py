"""
Unit tests for keyed single-flight execution.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from conftest import wait_until

from sync_guesty.utils.single_flight import SingleFlight


@pytest.mark.unit
def test_concurrent_callers_share_one_execution() -> None:
    """Test that callers arriving while a flight is running get the leader's result."""
    flight: SingleFlight[int] = SingleFlight()
    gate = threading.Event()
    calls = []

    def work() -> int:
        calls.append(1)
        gate.wait(5)
        return 42

    with ThreadPoolExecutor(max_workers=5) as pool:
        futures = [pool.submit(flight.do, "k", work) for _ in range(5)]
        assert wait_until(lambda: flight.waiting("k") == 4)
        gate.set()
        results = [f.result(timeout=5) for f in futures]

    assert results == [42] * 5
    assert len(calls) == 1
    assert not flight.in_flight("k")


@pytest.mark.unit
def test_failure_is_shared_and_not_cached() -> None:
    """Test that a failed flight raises in every caller and the next call runs again."""
    flight: SingleFlight[str] = SingleFlight()

    def boom() -> str:
        raise RuntimeError("upstream down")

    with pytest.raises(RuntimeError, match="upstream down"):
        flight.do("k", boom)

    assert flight.do("k", lambda: "ok") == "ok"


@pytest.mark.unit
def test_different_keys_do_not_coalesce() -> None:
    """Test that flights for distinct keys run independently."""
    flight: SingleFlight[str] = SingleFlight()

    assert flight.do("a", lambda: "A") == "A"
    assert flight.do("b", lambda: "B") == "B"
