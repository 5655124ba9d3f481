"""
Main Loop
=========

Single-threaded cooperative dispatcher. Every registry and application
mutation runs on the thread that drives this loop; other threads (process
watchers, OS signal handlers) only post callbacks onto it.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Any, Callable

logger = logging.getLogger(__name__)


class MainLoop:
    """FIFO callback queue drained by one thread."""

    def __init__(self) -> None:
        self._queue: "queue.SimpleQueue[tuple]" = queue.SimpleQueue()
        self._stop = threading.Event()
        self._dispatched = 0

    def post(self, callback: Callable[..., Any], *args: Any) -> None:
        """Queue a callback. Safe to call from any thread or signal handler."""
        self._queue.put((callback, args))

    def process_pending(self, timeout: float = 0.0) -> int:
        """
        Run queued callbacks until the queue is empty.

        If timeout > 0, waits up to that long for the first callback.
        Returns the number of callbacks dispatched.
        """
        count = 0
        block = timeout > 0
        while True:
            try:
                callback, args = self._queue.get(block=block, timeout=timeout if block else None)
            except queue.Empty:
                return count
            block = False
            self._dispatch(callback, args)
            count += 1

    def wait_for(
        self,
        predicate: Callable[[], bool],
        timeout: float = 5.0,
        interval: float = 0.05,
    ) -> bool:
        """Process callbacks until predicate() holds or timeout elapses."""
        deadline = time.monotonic() + timeout
        while True:
            if predicate():
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return predicate()
            self.process_pending(timeout=min(interval, remaining))

    def run(self) -> None:
        """Dispatch callbacks until stop() is called."""
        self._stop.clear()
        logger.debug("Main loop started")
        while not self._stop.is_set():
            self.process_pending(timeout=0.5)
        # Drain whatever was posted before stop()
        self.process_pending()
        logger.debug(f"Main loop stopped ({self._dispatched} callbacks dispatched)")

    def stop(self) -> None:
        """Ask run() to return. Safe to call from any thread."""
        self._stop.set()
        # Wake the dispatcher if it is blocked on an empty queue
        self.post(lambda: None)

    def _dispatch(self, callback: Callable[..., Any], args: tuple) -> None:
        self._dispatched += 1
        try:
            callback(*args)
        except Exception as e:
            logger.exception(f"Main loop callback {callback!r} failed: {e}")
