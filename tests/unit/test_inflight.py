"""Tests for mesh_certs.certificates.inflight — SingleFlight."""
from __future__ import annotations

import threading
import time

import pytest

from mesh_certs.certificates.inflight import SingleFlight


class TestSingleFlight:
    def test_returns_function_result(self) -> None:
        flight: SingleFlight[int] = SingleFlight()
        assert flight.do("k", lambda: 42) == 42

    def test_key_cleared_after_call(self) -> None:
        flight: SingleFlight[int] = SingleFlight()
        flight.do("k", lambda: 1)
        assert not flight.in_flight("k")

    def test_sequential_calls_each_run(self) -> None:
        flight: SingleFlight[int] = SingleFlight()
        runs: list[int] = []
        flight.do("k", lambda: runs.append(1) or 1)
        flight.do("k", lambda: runs.append(2) or 2)
        assert runs == [1, 2]

    def test_concurrent_callers_share_one_run(self) -> None:
        flight: SingleFlight[object] = SingleFlight()
        release = threading.Event()
        started = threading.Event()
        runs: list[int] = []
        marker = object()

        def slow() -> object:
            runs.append(1)
            started.set()
            release.wait(5)
            return marker

        results: list[object] = []
        leader = threading.Thread(target=lambda: results.append(flight.do("k", slow)))
        leader.start()
        assert started.wait(5)

        followers = [
            threading.Thread(target=lambda: results.append(flight.do("k", slow)))
            for _ in range(5)
        ]
        for t in followers:
            t.start()
        # Give every follower time to join the leader's call.
        time.sleep(0.2)
        assert flight.in_flight("k")
        release.set()
        for t in [leader, *followers]:
            t.join(5)

        assert len(runs) == 1
        assert len(results) == 6
        assert all(r is marker for r in results)

    def test_error_propagates(self) -> None:
        flight: SingleFlight[int] = SingleFlight()

        def boom() -> int:
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            flight.do("k", boom)
        assert not flight.in_flight("k")

    def test_distinct_keys_do_not_block(self) -> None:
        flight: SingleFlight[str] = SingleFlight()
        assert flight.do("a", lambda: flight.do("b", lambda: "inner")) == "inner"
