"""Time sources. Every operation accepts an explicit `now`; these are fallbacks."""

import time
from typing import Callable, Optional

TimeProvider = Callable[[], int]


def system_time() -> int:
    return int(time.time())


class ManualClock:
    """Deterministic clock for simulations and tests"""

    def __init__(self, start: int = 1_700_000_000):
        self.current = int(start)

    def __call__(self) -> int:
        return self.current

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("Clock cannot move backwards")
        self.current += int(seconds)
        return self.current

    def set(self, timestamp: int) -> int:
        if timestamp < self.current:
            raise ValueError("Clock cannot move backwards")
        self.current = int(timestamp)
        return self.current


def resolve_now(now: Optional[int], provider: TimeProvider) -> int:
    timestamp = provider() if now is None else now
    try:
        return int(timestamp)
    except (TypeError, ValueError) as exc:
        raise ValueError("time provider must return an integer timestamp") from exc
