"""
Data models for technical structure analysis.

Candles, pivots, support/resistance levels, RSI readings and divergence
candidates shared by the analysis engines.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple


class MarketType(str, Enum):
    """Market a symbol trades on."""

    CRYPTO = "crypto"
    FOREX = "forex"
    STOCK = "stock"


class PivotKind(str, Enum):
    """Local extremum type."""

    HIGH = "high"
    LOW = "low"


class LevelKind(str, Enum):
    """Role of a swing point when it was observed."""

    SUPPORT = "support"
    RESISTANCE = "resistance"


class RSIStatus(str, Enum):
    """RSI zone."""

    OVERSOLD = "Oversold"
    NEUTRAL = "Neutral"
    OVERBOUGHT = "Overbought"


class DivergenceType(str, Enum):
    """Divergence patterns between price and RSI."""

    REGULAR_BULLISH = "Regular Bullish Divergence"
    REGULAR_BEARISH = "Regular Bearish Divergence"
    HIDDEN_BULLISH = "Hidden Bullish Divergence"
    HIDDEN_BEARISH = "Hidden Bearish Divergence"


class Confidence(str, Enum):
    """Divergence confidence grade."""

    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


@dataclass(frozen=True)
class Candle:
    """
    One OHLCV bar.

    Attributes:
        open_time: Open time in milliseconds since epoch
        open: Open price
        high: High price
        low: Low price
        close: Close price
        volume: Base asset volume
    """

    open_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float

    @classmethod
    def from_binance(cls, row: Sequence) -> "Candle":
        """
        Build a candle from a Binance kline row.

        Binance returns: [open_time, open, high, low, close, volume, close_time, ...]
        """
        return cls(
            open_time=int(row[0]),
            open=float(row[1]),
            high=float(row[2]),
            low=float(row[3]),
            close=float(row[4]),
            volume=float(row[5]),
        )


@dataclass(frozen=True)
class Pivot:
    """Local extremum of a series."""

    index: int
    value: float
    kind: PivotKind


@dataclass(frozen=True)
class LevelObservation:
    """Swing price seen on one timeframe."""

    price: float
    kind: LevelKind
    timeframe: str


@dataclass(frozen=True)
class Level:
    """
    Support/resistance level built from clustered swing points.

    Attributes:
        price: Mean price of all clustered swing points
        timeframes: Distinct contributing timeframes
        touches: Number of swing points in the cluster
        kinds: Roles the swing points had (support, resistance or both)
    """

    price: float
    timeframes: Tuple[str, ...]
    touches: int
    kinds: FrozenSet[LevelKind] = frozenset()

    @property
    def confluence_count(self) -> int:
        """Number of distinct timeframes agreeing on this level."""
        return len(self.timeframes)

    @property
    def is_confluent(self) -> bool:
        return self.confluence_count >= 2

    def distance_pct(self, current_price: float) -> float:
        """Distance from current price in percent."""
        if current_price <= 0:
            return 0.0
        return (self.price - current_price) / current_price * 100

    def to_dict(self, current_price: Optional[float] = None) -> Dict:
        result = {
            "price": self.price,
            "timeframes": list(self.timeframes),
            "confluence_count": self.confluence_count,
            "is_confluent": self.is_confluent,
            "touches": self.touches,
            "kinds": sorted(kind.value for kind in self.kinds),
        }
        if current_price:
            result["distance_pct"] = round(self.distance_pct(current_price), 2)
        return result


@dataclass(frozen=True)
class TimeframeRSI:
    """RSI reading for one timeframe."""

    timeframe: str
    value: float
    status: RSIStatus
    weight: float
    is_flat: bool = False

    def to_dict(self) -> Dict:
        return {
            "value": self.value,
            "status": self.status.value,
            "weight": self.weight,
            "is_flat": self.is_flat,
        }


@dataclass(frozen=True)
class DivergenceThresholds:
    """
    Divergence scanner parameters.

    Attributes:
        min_price_delta_pct: Minimum |price change| between pivots, percent
        min_rsi_delta: Minimum |RSI change| between matched RSI pivots
        min_bars_apart: Minimum distance between the two price pivots
        max_age_bars: Maximum age of the latest pivot, counted from the last candle
        match_tolerance: Maximum distance between a price pivot and its RSI pivot
        pivot_window: Bars on each side used for pivot detection
    """

    min_price_delta_pct: float = 0.8
    min_rsi_delta: float = 6.0
    min_bars_apart: int = 10
    max_age_bars: int = 80
    match_tolerance: int = 10
    pivot_window: int = 5

    def to_dict(self) -> Dict:
        return {
            "min_price_delta_pct": self.min_price_delta_pct,
            "min_rsi_delta": self.min_rsi_delta,
            "min_bars_apart": self.min_bars_apart,
            "max_age_bars": self.max_age_bars,
            "match_tolerance": self.match_tolerance,
            "pivot_window": self.pivot_window,
        }


@dataclass(frozen=True)
class DivergenceCandidate:
    """Pair of price pivots with matched RSI pivots."""

    type: DivergenceType
    pivot1_index: int
    pivot2_index: int
    price1: float
    price2: float
    price_delta_pct: float
    rsi1: float
    rsi2: float
    rsi_delta: float
    bars_apart: int
    confirmed: bool = False

    def to_dict(self) -> Dict:
        return {
            "type": self.type.value,
            "pivot1_index": self.pivot1_index,
            "pivot2_index": self.pivot2_index,
            "price1": self.price1,
            "price2": self.price2,
            "price_delta_pct": round(self.price_delta_pct, 4),
            "rsi1": round(self.rsi1, 2),
            "rsi2": round(self.rsi2, 2),
            "rsi_delta": round(self.rsi_delta, 2),
            "bars_apart": self.bars_apart,
            "confirmed": self.confirmed,
        }


@dataclass
class PivotMetadata:
    """Pivot statistics reported with every divergence scan."""

    candles: int
    pivot_window: int
    price_pivot_lows: int = 0
    price_pivot_highs: int = 0
    rsi_pivot_lows: int = 0
    rsi_pivot_highs: int = 0
    last_pivot_low_age: Optional[int] = None
    last_pivot_high_age: Optional[int] = None
    notes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "candles": self.candles,
            "pivot_window": self.pivot_window,
            "price_pivot_lows": self.price_pivot_lows,
            "price_pivot_highs": self.price_pivot_highs,
            "rsi_pivot_lows": self.rsi_pivot_lows,
            "rsi_pivot_highs": self.rsi_pivot_highs,
            "last_pivot_low_age": self.last_pivot_low_age,
            "last_pivot_high_age": self.last_pivot_high_age,
            "notes": list(self.notes),
        }
