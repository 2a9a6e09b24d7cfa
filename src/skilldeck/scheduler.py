from __future__ import annotations

import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)


class RefreshScheduler:
    """
    Debounce change notifications into refresh calls.

    Every `notify()` restarts the timer; when it fires the callback runs. At
    most one callback runs at a time: a refresh requested while one is in
    flight is queued once and run right after it.
    """

    def __init__(self, callback: Callable[[], object], *, interval: float = 0.5) -> None:
        self._callback = callback
        self.interval = interval
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._running = False
        self._pending = False
        self._closed = False

    def notify(self) -> None:
        with self._lock:
            if self._closed:
                return
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.interval, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def flush(self) -> None:
        """Run a pending refresh now instead of waiting for the timer."""
        with self._lock:
            if self._timer is None:
                return
            self._timer.cancel()
            self._timer = None
        self._fire()

    def close(self) -> None:
        with self._lock:
            self._closed = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
            if self._running:
                self._pending = True
                return
            self._running = True

        while True:
            try:
                self._callback()
            except Exception:
                logger.exception("Refresh failed")
            with self._lock:
                if not self._pending or self._closed:
                    self._running = False
                    self._pending = False
                    return
                self._pending = False
