"""Wall clock in epoch milliseconds."""

import time
from typing import Callable

Clock = Callable[[], int]


def now_ms() -> int:
    return int(time.time() * 1000)
