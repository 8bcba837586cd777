"""Injectable time sources."""

from __future__ import annotations

import time
from typing import Callable

Clock = Callable[[], float]
"""Zero-argument callable returning the current unix time in seconds."""

system_clock: Clock = time.time


class FixedClock:
    """A clock frozen at a given instant, moved only by :meth:`advance`."""

    def __init__(self, now: float) -> None:
        self._now = float(now)

    def __call__(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += seconds
