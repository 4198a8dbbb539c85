from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class ReadinessGate:
    """
    Two independent readiness flags reported by the map widget.

    Rendering is enabled exactly when both `layout_done` and `engine_ready` are set.
    An optional fallback timer forces readiness after `timeout_s`; it is cancelled by
    `close()` and never fires afterwards.
    """

    timeout_s: float | None = None
    layout_done: bool = False
    engine_ready: bool = False
    _closed: bool = field(default=False, repr=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)
    _timer: threading.Timer | None = field(default=None, repr=False)

    @property
    def is_ready(self) -> bool:
        with self._lock:
            return self.layout_done and self.engine_ready

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        with self._lock:
            if self._closed or self._timer is not None or self.timeout_s is None:
                return
            if self.layout_done and self.engine_ready:
                return
            self._timer = threading.Timer(self.timeout_s, self._force)
            self._timer.daemon = True
            self._timer.start()

    def mark_layout_done(self) -> bool:
        """
        Returns True when this call made the gate ready.
        """
        with self._lock:
            was_ready = self.layout_done and self.engine_ready
            self.layout_done = True
            return self._settle(was_ready)

    def mark_engine_ready(self) -> bool:
        with self._lock:
            was_ready = self.layout_done and self.engine_ready
            self.engine_ready = True
            return self._settle(was_ready)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._cancel_timer()

    def _settle(self, was_ready: bool) -> bool:
        ready = self.layout_done and self.engine_ready
        if ready:
            self._cancel_timer()
        return ready and not was_ready

    def _cancel_timer(self) -> None:
        t = self._timer
        self._timer = None
        if t is not None:
            t.cancel()

    def _force(self) -> None:
        with self._lock:
            if self._closed or (self.layout_done and self.engine_ready):
                return
            logger.warning(
                "map widget readiness not reported within %.1fs (layout_done=%s engine_ready=%s); forcing",
                self.timeout_s,
                self.layout_done,
                self.engine_ready,
            )
            self.layout_done = True
            self.engine_ready = True
            self._timer = None
