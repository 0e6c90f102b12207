"""Per-key de-duplication of concurrent calls.

When several threads ask for the same key at once, only the first (the
leader) runs the supplied function; the others wait for it and receive the
same return value or the same exception.
"""
from __future__ import annotations

import threading
from typing import Callable, Generic, TypeVar

T = TypeVar("T")


class _Call(Generic[T]):
    def __init__(self) -> None:
        self.done = threading.Event()
        self.result: T | None = None
        self.error: BaseException | None = None


class SingleFlight(Generic[T]):
    """Registry of in-flight calls keyed by string."""

    def __init__(self) -> None:
        self._calls: dict[str, _Call[T]] = {}
        self._lock = threading.Lock()

    def do(self, key: str, fn: Callable[[], T]) -> T:
        """Run *fn* for *key* unless a call for *key* is already running.

        Parameters
        ----------
        key:
            De-duplication key.
        fn:
            Zero-argument callable executed by the leader only.

        Returns
        -------
        T
            The leader's result, shared by every caller that joined it.
        """
        with self._lock:
            call = self._calls.get(key)
            if call is not None:
                leader = False
            else:
                call = _Call()
                self._calls[key] = call
                leader = True

        if not leader:
            call.done.wait()
            if call.error is not None:
                raise call.error
            return call.result  # type: ignore[return-value]

        try:
            call.result = fn()
        except BaseException as exc:
            call.error = exc
            raise
        finally:
            with self._lock:
                del self._calls[key]
            call.done.set()
        return call.result

    def in_flight(self, key: str) -> bool:
        """Return True if a call for *key* is currently running."""
        with self._lock:
            return key in self._calls
