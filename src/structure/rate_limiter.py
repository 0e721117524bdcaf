"""
Request weight budget for exchange REST APIs.

Binance limits IP traffic by request *weight* per rolling window
(6000 per minute on api.binance.com) rather than by request count, and
reports the weight already spent in the X-MBX-USED-WEIGHT-1M header.
WeightBudget tracks weight spent locally, waits when a request would
overrun the window and adopts the server figure when it is higher
(e.g. other processes share the IP).
"""

import asyncio
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional, Tuple

import structlog

logger = structlog.get_logger()

DEFAULT_WEIGHT_LIMIT = 6000
DEFAULT_WINDOW_SECONDS = 60.0


class WeightBudget:
    """Rolling-window request weight budget."""

    def __init__(
        self,
        max_weight: int = DEFAULT_WEIGHT_LIMIT,
        window: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize budget.

        Args:
            max_weight: Weight allowed per window
            window: Window length in seconds
            clock: Time source in seconds (monotonic by default)
        """
        if max_weight <= 0 or window <= 0:
            raise ValueError(f"invalid weight budget: max_weight={max_weight} window={window}")
        self.max_weight = max_weight
        self.window = window
        self._clock = clock
        self._spent: Deque[Tuple[float, int]] = deque()
        self._lock = asyncio.Lock()

    def _expire(self, now: float) -> None:
        while self._spent and self._spent[0][0] + self.window <= now:
            self._spent.popleft()

    @property
    def used_weight(self) -> int:
        """Weight spent inside the current window."""
        self._expire(self._clock())
        return sum(weight for _, weight in self._spent)

    async def acquire(self, weight: int = 1) -> None:
        """Reserve weight, sleeping until the window has room for it."""
        if weight <= 0 or weight > self.max_weight:
            raise ValueError(f"request weight must be in 1..{self.max_weight}, got {weight}")

        async with self._lock:
            while True:
                now = self._clock()
                self._expire(now)
                used = sum(w for _, w in self._spent)
                if used + weight <= self.max_weight:
                    self._spent.append((now, weight))
                    return

                wait = self._spent[0][0] + self.window - now
                logger.info("Request weight exhausted, waiting", used=used, weight=weight, wait=round(wait, 2))
                await asyncio.sleep(wait)

    def sync(self, server_used: Optional[int]) -> None:
        """
        Align with the weight the server reports as used.

        Only ever raises the local figure: weight the server counted but this
        process did not (other clients on the same IP) is booked as spent now.
        """
        if server_used is None:
            return
        local = self.used_weight
        if server_used > local:
            self._spent.append((self._clock(), server_used - local))


_budgets: Dict[str, WeightBudget] = {}


def get_weight_budget(
    provider: str,
    max_weight: int = DEFAULT_WEIGHT_LIMIT,
    window: float = DEFAULT_WINDOW_SECONDS,
) -> WeightBudget:
    """
    Shared budget per provider.

    All clients of one provider in this process draw from the same budget;
    limits passed after the first call are ignored.
    """
    if provider not in _budgets:
        _budgets[provider] = WeightBudget(max_weight, window)
    return _budgets[provider]


def reset_weight_budgets() -> None:
    """Drop all shared budgets (used in tests)."""
    _budgets.clear()
