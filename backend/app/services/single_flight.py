"""Collapse concurrent identical calls into one."""
from collections.abc import Callable, Hashable
import threading
from typing import Any


class _Call:
    def __init__(self):
        self.done = threading.Event()
        self.result: Any = None
        self.error: BaseException | None = None


class SingleFlight:
    """At most one in-flight call per key; latecomers wait for and share its outcome.

    The slot for a key is cleared as soon as the call settles, so a later call
    starts a fresh execution.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._calls: dict[Hashable, _Call] = {}

    def do(self, key: Hashable, fn: Callable[[], Any], timeout: float | None = None) -> Any:
        with self._lock:
            call = self._calls.get(key)
            leader = call is None
            if leader:
                call = _Call()
                self._calls[key] = call

        if not leader:
            if not call.done.wait(timeout):
                raise TimeoutError(f"Timed out waiting for in-flight call {key!r}")
            if call.error is not None:
                raise call.error
            return call.result

        try:
            call.result = fn()
        except BaseException as exc:
            call.error = exc
            raise
        finally:
            with self._lock:
                self._calls.pop(key, None)
            call.done.set()
        return call.result

    def in_flight(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._calls
