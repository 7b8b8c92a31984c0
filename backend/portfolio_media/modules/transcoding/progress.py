"""Throttled, monotonic progress reporting."""

import logging
import time
from typing import Callable, Optional

from portfolio_media.core.logging import log_warning

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

# Percentage held back until finalization completes
MAX_RUNNING_PERCENT = 99.0


class ProgressReporter:
    """Forwards pipeline progress to a caller callback.

    Running values are clamped to ``[0, 99]``, never decrease, and are
    forwarded at most once per ``interval`` seconds. ``complete()`` always
    forwards exactly 100. A callback that raises is logged and does not
    interrupt the run.
    """

    def __init__(
        self,
        callback: Optional[ProgressCallback],
        interval: float = 0.8,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._callback = callback
        self._interval = interval
        self._clock = clock
        self._last_emit_at: Optional[float] = None
        self._percent = 0.0
        self._completed = False

    @property
    def percent(self) -> float:
        return self._percent

    def update(self, current_time: float, duration: float) -> None:
        """Recompute progress from the source position."""
        if self._completed:
            return

        total = duration if duration and duration > 0 else 1.0
        value = min(max(current_time / total * 100.0, 0.0), MAX_RUNNING_PERCENT)
        if value < self._percent:
            return
        self._percent = value

        now = self._clock()
        if self._last_emit_at is not None and now - self._last_emit_at < self._interval:
            return
        self._last_emit_at = now
        self._emit(value)

    def complete(self) -> None:
        """Snap to 100 and forward it once."""
        if self._completed:
            return
        self._completed = True
        self._percent = 100.0
        self._emit(100.0)

    def _emit(self, value: float) -> None:
        if self._callback is None:
            return
        try:
            self._callback(value)
        except Exception as e:
            log_warning(logger, f"Progress callback failed at {value:.1f}%: {e}")
