"""
Welcome countdown: hides the new-member welcome after a fixed delay.

The countdown shows whole seconds. ``start`` sets the remaining time to
``ceil(auto_hide_delay_ms / 1000)`` and each one-second tick decrements it;
reaching zero stops the ticks and fires the expiry callbacks exactly once.
Without a positive delay no timer runs and the welcome stays until the
user dismisses it.
"""

from __future__ import annotations

import math
from collections.abc import Callable

import structlog

from member_onboarding.scheduler import Cancel, SchedulerTicker, Ticker

log = structlog.get_logger()


class WelcomeCountdown:
    def __init__(self, auto_hide_delay_ms: int | None, ticker: Ticker | None = None) -> None:
        self._delay_ms = auto_hide_delay_ms
        self._ticker = ticker
        self._owned_ticker: SchedulerTicker | None = None
        self._callbacks: list[Callable[[], None]] = []
        self._cancel: Cancel | None = None
        self._remaining: int | None = None
        self._expired = False

    @property
    def enabled(self) -> bool:
        return self._delay_ms is not None and self._delay_ms > 0

    @property
    def is_active(self) -> bool:
        return self._cancel is not None

    @property
    def remaining(self) -> int | None:
        """Seconds left while running, 0 once expired, None before start."""
        return self._remaining

    def on_expire(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    def start(self) -> bool:
        """Start counting down. Returns False when no timer was started."""
        if not self.enabled or self.is_active or self._expired:
            return False
        assert self._delay_ms is not None
        self._remaining = math.ceil(self._delay_ms / 1000)
        if self._ticker is None:
            self._ticker = self._owned_ticker = SchedulerTicker()
        self._cancel = self._ticker.schedule(self.tick, 1.0)
        log.info("welcome_countdown.started", seconds=self._remaining)
        return True

    def tick(self) -> None:
        if not self.is_active or self._remaining is None:
            return
        self._remaining -= 1
        if self._remaining > 0:
            return
        self._remaining = 0
        self._stop()
        self._expired = True
        log.info("welcome_countdown.expired")
        for callback in list(self._callbacks):
            callback()

    def cancel(self) -> None:
        """Stop ticking without firing the expiry callbacks."""
        if self.is_active:
            self._stop()
            log.debug("welcome_countdown.cancelled", remaining=self._remaining)

    def reset(self) -> None:
        """Cancel and allow a fresh ``start``."""
        self.cancel()
        self._remaining = None
        self._expired = False

    def dispose(self) -> None:
        self.cancel()
        self._callbacks.clear()
        owned, self._owned_ticker = self._owned_ticker, None
        if owned is not None:
            owned.shutdown()
            self._ticker = None

    def _stop(self) -> None:
        cancel, self._cancel = self._cancel, None
        if cancel is not None:
            cancel()
