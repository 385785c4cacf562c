"""Small concurrency helpers: shared in-flight results and a debouncer."""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import timedelta
from typing import Generic, TypeVar

T = TypeVar("T")


class InflightRequest(Generic[T]):
    """A result that one worker produces and any number of others wait for."""

    def __init__(self) -> None:
        self._done = threading.Event()
        self._result: T | None = None
        self._error: BaseException | None = None

    def complete(self, result: T | None, error: BaseException | None = None) -> None:
        self._result = result
        self._error = error
        self._done.set()

    def wait(self) -> T | None:
        """Block until completed; return the result or raise the error."""
        self._done.wait()
        if self._error is not None:
            raise self._error
        return self._result


class Debouncer(Generic[T]):
    """Runs the callback once, with the latest value, after calls go quiet."""

    def __init__(self, delay: float | timedelta, callback: Callable[[T], None]) -> None:
        self.delay = delay.total_seconds() if isinstance(delay, timedelta) else float(delay)
        self._callback = callback
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._generation = 0
        self._stopped = False

    def call(self, value: T) -> None:
        with self._lock:
            if self._stopped:
                return
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            timer = threading.Timer(self.delay, self._fire, args=(self._generation, value))
            timer.daemon = True
            self._timer = timer
            timer.start()

    def _fire(self, generation: int, value: T) -> None:
        with self._lock:
            if self._stopped or generation != self._generation:
                return
            self._timer = None
        self._callback(value)

    def stop(self) -> None:
        """Cancel any pending call and ignore later ones."""
        with self._lock:
            self._stopped = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None