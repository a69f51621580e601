"""Strictly increasing timestamps for the in-process stores."""

from __future__ import annotations

import time

# Smallest step used when the wall clock has not moved since the last tick.
CLOCK_STEP = 1e-6


class MonotonicClock:
    """Hands out ``(timestamp, seq)`` pairs that never repeat or go backwards."""

    def __init__(self) -> None:
        self._last: float = 0.0
        self._seq: int = 0

    def tick(self) -> tuple[float, int]:
        now = time.time()
        if now <= self._last:
            now = self._last + CLOCK_STEP
        self._last = now
        self._seq += 1
        return now, self._seq
