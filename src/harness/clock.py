"""Clock abstraction used by the poll loop.

Trials capture t0/t1 through ``now_ms`` and pace polls through ``sleep`` so
tests can substitute a fake clock instead of really sleeping.
"""

import time
from typing import Protocol


class Clock(Protocol):
    def now_ms(self) -> int: ...

    def sleep(self, seconds: float) -> None: ...


class MonotonicClock:
    """Millisecond clock backed by ``time.monotonic``."""

    def now_ms(self) -> int:
        return int(time.monotonic() * 1000)

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


def wall_clock_ms() -> int:
    """Epoch milliseconds, for persisted timestamps only."""
    return int(time.time() * 1000)
