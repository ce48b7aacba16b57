from __future__ import annotations

import time
from typing import Callable, Dict, Tuple


CooldownKey = Tuple[str, str]


class CooldownGuard:
    """
    Per-account, per-game rate limiter.

    Only in memory: restarting the process forgets every cooldown, which is
    acceptable for a soft abuse guard.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._last_played: Dict[CooldownKey, float] = {}

    def remaining(self, key: CooldownKey, window: float) -> float:
        """Seconds left before `key` may play again; 0 means allowed."""

        last = self._last_played.get(key)
        if last is None:
            return 0.0
        return max(0.0, last + window - self._clock())

    def record(self, key: CooldownKey) -> None:
        self._last_played[key] = self._clock()

    def clear(self) -> None:
        self._last_played.clear()
