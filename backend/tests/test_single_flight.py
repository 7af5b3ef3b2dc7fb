from concurrent.futures import ThreadPoolExecutor
import threading
import time

import pytest

from app.services.single_flight import SingleFlight


def _wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached")
        time.sleep(0.005)


def test_concurrent_callers_share_one_execution():
    flight = SingleFlight()
    release = threading.Event()
    calls = []

    def slow_call():
        calls.append(1)
        release.wait(2)
        return "token-pair"

    with ThreadPoolExecutor(max_workers=6) as executor:
        leader = executor.submit(flight.do, "refresh", slow_call)
        _wait_until(lambda: flight.in_flight("refresh"))
        followers = [executor.submit(flight.do, "refresh", slow_call) for _ in range(5)]
        time.sleep(0.1)
        release.set()
        results = [leader.result()] + [f.result() for f in followers]

    assert results == ["token-pair"] * 6
    assert len(calls) == 1
    assert not flight.in_flight("refresh")


def test_failure_is_shared_and_slot_cleared():
    flight = SingleFlight()
    release = threading.Event()
    calls = []

    def failing_call():
        calls.append(1)
        release.wait(2)
        raise ValueError("refresh rejected")

    with ThreadPoolExecutor(max_workers=3) as executor:
        leader = executor.submit(flight.do, "refresh", failing_call)
        _wait_until(lambda: flight.in_flight("refresh"))
        follower = executor.submit(flight.do, "refresh", failing_call)
        time.sleep(0.1)
        release.set()
        for future in (leader, follower):
            with pytest.raises(ValueError, match="refresh rejected"):
                future.result()

    assert len(calls) == 1
    assert not flight.in_flight("refresh")


def test_settled_call_is_not_reused():
    flight = SingleFlight()
    counter = iter(range(10))

    assert flight.do("refresh", lambda: next(counter)) == 0
    assert flight.do("refresh", lambda: next(counter)) == 1


def test_keys_are_independent():
    flight = SingleFlight()
    release = threading.Event()

    with ThreadPoolExecutor(max_workers=2) as executor:
        blocked = executor.submit(flight.do, "client-a", lambda: release.wait(2) and "a")
        _wait_until(lambda: flight.in_flight("client-a"))
        assert flight.do("client-b", lambda: "b") == "b"
        release.set()
        assert blocked.result() == "a"


def test_waiting_caller_times_out():
    flight = SingleFlight()
    release = threading.Event()

    with ThreadPoolExecutor(max_workers=1) as executor:
        executor.submit(flight.do, "refresh", lambda: release.wait(2))
        _wait_until(lambda: flight.in_flight("refresh"))
        with pytest.raises(TimeoutError):
            flight.do("refresh", lambda: None, timeout=0.05)
        release.set()
