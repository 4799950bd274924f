"""Clock sources for timelock checks.

The engines never read wall time directly. They are handed a clock whose
``now()`` is monotonically non-decreasing across operations.
"""

from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    def now(self) -> int: ...


class SystemClock:
    """Unix time in whole seconds."""

    def now(self) -> int:
        return int(time.time())


class ManualClock:
    """Explicitly driven clock (ledger sequence, block height, tests)."""

    def __init__(self, start: int = 0) -> None:
        if start < 0:
            msg = f"Clock cannot start before zero: {start}"
            raise ValueError(msg)
        self._now = start

    def now(self) -> int:
        return self._now

    def advance(self, ticks: int = 1) -> int:
        if ticks < 0:
            msg = f"Clock cannot move backwards ({ticks} ticks)"
            raise ValueError(msg)
        self._now += ticks
        return self._now

    def set(self, value: int) -> int:
        if value < self._now:
            msg = f"Clock cannot move backwards: {value} < {self._now}"
            raise ValueError(msg)
        self._now = value
        return self._now
