"""
Trade Console Event Bus — Result Notification Channel
=======================================================
Fire-and-forget delivery of AnalysisResult packets. Nothing here may
block the engine's submit() path.

ResultDispatcher: bounded queue + daemon thread that fans results out to
registered callbacks in the order they were queued.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from contextlib import suppress
from typing import Callable, List, Optional

from tradeconsole.events import AnalysisResult

logger = logging.getLogger(__name__)

ResultCallback = Callable[[AnalysisResult], None]


# ---------------------------------------------------------------------------
# In-process dispatcher
# ---------------------------------------------------------------------------

class ResultDispatcher:
    """
    Hands results to subscribers on a background thread.

    Usage:
        dispatcher = ResultDispatcher()
        dispatcher.add_callback(board.apply)
        dispatcher.start()
        dispatcher.dispatch(result)     # never blocks; drops when the queue is full
        dispatcher.stop()
    """

    def __init__(self, max_queue: int = 10_000):
        self._queue: "queue.Queue[Optional[AnalysisResult]]" = queue.Queue(maxsize=max_queue)
        self._callbacks: List[ResultCallback] = []
        self._callbacks_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._pending = 0
        self._idle = threading.Condition()
        self.dropped = 0

    def add_callback(self, callback: ResultCallback) -> None:
        with self._callbacks_lock:
            self._callbacks.append(callback)

    def remove_callback(self, callback: ResultCallback) -> bool:
        with self._callbacks_lock:
            try:
                self._callbacks.remove(callback)
                return True
            except ValueError:
                return False

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(
            target=self._dispatch_loop, daemon=True, name="tc-result-dispatch"
        )
        self._thread.start()
        logger.info("ResultDispatcher started")

    def stop(self, timeout: float = 2.0) -> None:
        if not self._running:
            return
        self._running = False
        with suppress(queue.Full):
            self._queue.put_nowait(None)    # wake the loop
        if self._thread:
            self._thread.join(timeout=timeout)
        logger.info("ResultDispatcher stopped (dropped=%d)", self.dropped)

    def dispatch(self, result: AnalysisResult) -> bool:
        """Queue a result. Returns False when the queue is full and the result was dropped."""
        with self._idle:
            self._pending += 1
        try:
            self._queue.put_nowait(result)
            return True
        except queue.Full:
            with self._idle:
                self.dropped += 1
                dropped = self.dropped
            self._done()
            logger.warning(
                "Result queue full, dropped update for %s (total dropped=%d)",
                result.instrument_id, dropped,
            )
            return False

    def wait_idle(self, timeout: float = 2.0) -> bool:
        """Block until every queued result was delivered. Test and shutdown helper."""
        deadline = time.monotonic() + timeout
        with self._idle:
            while self._pending > 0:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._idle.wait(remaining)
        return True

    def _done(self) -> None:
        with self._idle:
            self._pending -= 1
            if self._pending <= 0:
                self._idle.notify_all()

    def _dispatch_loop(self) -> None:
        while self._running or not self._queue.empty():
            try:
                result = self._queue.get(timeout=0.5)
            except queue.Empty:
                continue
            if result is None:
                continue
            with self._callbacks_lock:
                callbacks = list(self._callbacks)
            for callback in callbacks:
                try:
                    callback(result)
                except Exception as e:
                    logger.error(
                        "Result callback error for %s: %s",
                        result.instrument_id, e, exc_info=True,
                    )
            self._done()

