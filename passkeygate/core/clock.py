import time
from typing import Callable

# Seconds since the epoch. Injected wherever expiry or timestamps matter.
Clock = Callable[[], float]

system_clock: Clock = time.time


def now_ms(clock: Clock) -> int:
    """Entity timestamps are integer milliseconds."""
    return int(clock() * 1000)
