"""
code_clock.py -- One-second tick driver for an active code.

Each tick dispatches a Tick action into the runtime; the runtime's lock
is the serialization point, so ticks and user actions never interleave.
No drift correction: every tick counts as exactly one elapsed second.

The driver only runs while the session is active.  `sync(active)` is
called after every dispatch and starts or stops the thread to match.
"""

import logging
import threading

import config

logger = logging.getLogger(__name__)


class CodeClock:
    def __init__(self, on_tick, interval_sec: float = None):
        """
        Args:
            on_tick:      Zero-arg callable invoked once per interval.
                          Returns False to stop the clock.
            interval_sec: Real seconds between ticks (default from config).
        """
        self._on_tick = on_tick
        self.interval_sec = float(interval_sec if interval_sec is not None else config.TICK_INTERVAL_SEC)
        self._thread: threading.Thread = None
        self._stop = threading.Event()
        self._guard = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        with self._guard:
            if self.running:
                return
            self._stop = threading.Event()
            self._thread = threading.Thread(
                target=self._loop, args=(self._stop,), daemon=True, name="code-clock"
            )
            self._thread.start()
            logger.info("Code clock started (every %.2fs)", self.interval_sec)

    def stop(self):
        with self._guard:
            if self._thread is None:
                return
            self._stop.set()
            thread = self._thread
            self._thread = None
        # A tick may be the caller; never join our own thread.
        if thread is not threading.current_thread():
            thread.join(timeout=self.interval_sec * 2)
        logger.info("Code clock stopped")

    def sync(self, active: bool):
        """Start or stop the clock to match the session's is_active flag."""
        if active and not self.running:
            self.start()
        elif not active and self._thread is not None:
            self.stop()

    def _loop(self, stop: threading.Event):
        while not stop.wait(self.interval_sec):
            try:
                if self._on_tick() is False:
                    break
            except Exception as e:
                logger.warning("Clock tick failed: %s", e)
