"""Wall-clock helpers. Everything time-dependent takes a Clock so tests can freeze it."""

from __future__ import annotations

import time
from datetime import UTC, datetime


def system_clock() -> int:
    """Current time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


def to_iso(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000, tz=UTC).isoformat()
