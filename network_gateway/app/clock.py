"""
Injectable time source.
"""

import time
from typing import Protocol


class Clock(Protocol):
    def now(self) -> float:
        """Current time in seconds."""
        ...


class SystemClock:
    """Wall-clock time via ``time.time()``."""

    def now(self) -> float:
        return time.time()
