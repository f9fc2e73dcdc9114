# src/player/progress_clock.py
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ProgressClock:
    """
    Periodic tick on a daemon thread, owned by the playback engine.

    One instance covers one stretch of Playing: the engine creates a fresh
    clock on every transition into Playing and cancels it on the way out.
    A cancelled clock cannot be restarted.

    Cancelling is two steps so the owner can hold its lock for the first one:
      - cancel(): sets the stop flag; no tick *starts* after this.
      - join():   waits for the thread to exit (no-op from the clock's own
                  thread, i.e. when cancelling from inside a tick).
    """

    def __init__(self, on_tick: Callable[["ProgressClock"], None], interval_s: float = 0.1, name: str = "progress-clock"):
        self.interval_s = max(0.01, float(interval_s))
        self._on_tick = on_tick
        self._name = name
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    def start(self) -> None:
        if self._thread is not None or self._stop.is_set():
            return
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def cancel(self) -> None:
        self._stop.set()

    def join(self, timeout_s: float = 2.0) -> None:
        t = self._thread
        if t is None or t is threading.current_thread():
            return
        t.join(timeout_s)
        if t.is_alive():
            logger.error("Progress clock thread %s did not stop within %.1fs", self._name, timeout_s)

    def _run(self) -> None:
        # Event.wait doubles as the sleep, so cancel() wakes us immediately.
        while not self._stop.wait(self.interval_s):
            try:
                self._on_tick(self)
            except Exception:
                logger.exception("Progress clock tick failed")
