"""
Moving Average Cross Monitor.

Tracks 20/50 and 50/200 SMA crosses (Golden Cross / Death Cross) per timeframe.
"""

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np


GOLDEN_CROSS = "Golden Cross"
DEATH_CROSS = "Death Cross"

# Extra candles required beyond the slow period
MA_CROSS_EXTRA_CANDLES = 5

MA_PAIRS = {
    "ma20_50": (20, 50),
    "ma50_200": (50, 200),
}


@dataclass(frozen=True)
class MACross:
    """Fast/slow SMA state on one timeframe."""

    fast_period: int
    slow_period: int
    ma_fast: Optional[float] = None
    ma_slow: Optional[float] = None
    cross_type: Optional[str] = None
    status: Optional[str] = None

    @property
    def periods(self) -> str:
        return f"{self.fast_period}/{self.slow_period}"

    @property
    def is_bullish(self) -> Optional[bool]:
        if self.ma_fast is None or self.ma_slow is None:
            return None
        return self.ma_fast > self.ma_slow

    def to_dict(self) -> Dict:
        return {
            "periods": self.periods,
            "ma_fast": self.ma_fast,
            "ma_slow": self.ma_slow,
            "cross_type": self.cross_type,
            "is_bullish": self.is_bullish,
            "status": self.status,
        }


def _sma(values: np.ndarray, period: int) -> float:
    return float(np.mean(values[-period:]))


def detect_ma_cross(closes: Sequence[float], fast_period: int, slow_period: int) -> MACross:
    """
    Detect a fast/slow SMA cross on the last candle.

    Args:
        closes: Close prices, oldest to newest
        fast_period: Fast SMA period
        slow_period: Slow SMA period

    Returns:
        MACross; status "Insufficient data" when fewer than slow_period + 5 closes
    """
    if fast_period >= slow_period:
        raise ValueError(f"fast period must be below slow period: {fast_period} >= {slow_period}")

    if len(closes) < slow_period + MA_CROSS_EXTRA_CANDLES:
        return MACross(fast_period, slow_period, status="Insufficient data")

    prices = np.asarray(closes, dtype=float)
    previous = prices[:-1]

    ma_fast = _sma(prices, fast_period)
    ma_slow = _sma(prices, slow_period)
    prev_fast = _sma(previous, fast_period)
    prev_slow = _sma(previous, slow_period)

    cross_type = None
    if prev_fast < prev_slow and ma_fast > ma_slow:
        cross_type = GOLDEN_CROSS
    elif prev_fast > prev_slow and ma_fast < ma_slow:
        cross_type = DEATH_CROSS

    return MACross(
        fast_period,
        slow_period,
        ma_fast=round(ma_fast, 8),
        ma_slow=round(ma_slow, 8),
        cross_type=cross_type,
        status="Bullish" if ma_fast > ma_slow else "Bearish",
    )


def analyze_ma_crosses(closes: Sequence[float]) -> Dict[str, MACross]:
    """All configured MA pairs for one timeframe."""
    return {
        name: detect_ma_cross(closes, fast, slow)
        for name, (fast, slow) in MA_PAIRS.items()
    }


def recent_crosses(crosses: Mapping[str, Mapping[str, MACross]]) -> List[Dict]:
    """Crosses that happened on the last candle, 50/200 first."""
    recent = []
    for timeframe, pairs in crosses.items():
        for name in ("ma50_200", "ma20_50"):
            cross = pairs.get(name)
            if cross and cross.cross_type:
                recent.append({
                    "timeframe": timeframe,
                    "type": cross.cross_type,
                    "ma": cross.periods,
                })
    return recent


def trend_confirmation(crosses: Mapping[str, Mapping[str, MACross]]) -> str:
    """Majority vote of 50/200 alignment across timeframes."""
    bullish = 0
    bearish = 0
    for pairs in crosses.values():
        cross = pairs.get("ma50_200")
        if cross is None or cross.is_bullish is None:
            continue
        if cross.is_bullish:
            bullish += 1
        else:
            bearish += 1

    if bullish > bearish:
        return "Bullish trend confirmed"
    if bearish > bullish:
        return "Bearish trend confirmed"
    return "Mixed signals"
