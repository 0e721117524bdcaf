"""
Support/Resistance Level Clustering.

Swing points detected on several timeframes are merged into price levels:
- Greedy clustering against each cluster's mean price (±0.3% by default)
- Confluence = number of distinct timeframes in a cluster
- Ranking by confluence, then proximity to current price
- Split into supports/resistances and an active band around price
"""

import math
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Sequence, Tuple

from structure.models import Candle, Level, LevelKind, LevelObservation, PivotKind
from structure.pivots import detect_pivots


# Constants for level clustering
DEFAULT_CLUSTER_TOLERANCE = 0.003  # 0.3%
DEFAULT_ACTIVE_BAND = 0.15  # ±15% of current price
DEFAULT_SWING_WINDOW = 10
MAX_LEVELS_PER_TIMEFRAME = 5
LIQUIDITY_ZONES_COUNT = 3


@dataclass(frozen=True)
class LevelCluster:
    """
    Immutable cluster of swing prices.

    Keeps (sum, count) and derives the mean on read, so the level price is the
    centroid of every clustered swing regardless of arrival order.
    """

    price_sum: float
    count: int
    timeframes: Tuple[str, ...]
    kinds: FrozenSet[LevelKind]

    @classmethod
    def start(cls, observation: LevelObservation) -> "LevelCluster":
        return cls(
            price_sum=observation.price,
            count=1,
            timeframes=(observation.timeframe,),
            kinds=frozenset({observation.kind}),
        )

    @property
    def price(self) -> float:
        return self.price_sum / self.count

    def accepts(self, price: float, tolerance: float) -> bool:
        """Check if price lies within tolerance of the cluster mean."""
        return abs(price - self.price) / self.price <= tolerance

    def absorb(self, observation: LevelObservation) -> "LevelCluster":
        timeframes = self.timeframes
        if observation.timeframe not in timeframes:
            timeframes = timeframes + (observation.timeframe,)
        return LevelCluster(
            price_sum=self.price_sum + observation.price,
            count=self.count + 1,
            timeframes=timeframes,
            kinds=self.kinds | {observation.kind},
        )

    def merge(self, other: "LevelCluster") -> "LevelCluster":
        timeframes = self.timeframes + tuple(
            tf for tf in other.timeframes if tf not in self.timeframes
        )
        return LevelCluster(
            price_sum=self.price_sum + other.price_sum,
            count=self.count + other.count,
            timeframes=timeframes,
            kinds=self.kinds | other.kinds,
        )

    def to_level(self) -> Level:
        return Level(
            price=self.price,
            timeframes=self.timeframes,
            touches=self.count,
            kinds=self.kinds,
        )


@dataclass
class LevelBands:
    """Levels split around the current price."""

    supports: List[Level] = field(default_factory=list)
    resistances: List[Level] = field(default_factory=list)
    macro_supports: List[Level] = field(default_factory=list)
    macro_resistances: List[Level] = field(default_factory=list)

    @property
    def nearest_support(self):
        return self.supports[0] if self.supports else None

    @property
    def nearest_resistance(self):
        return self.resistances[0] if self.resistances else None


def _consolidate(clusters: List[LevelCluster], tolerance: float) -> List[LevelCluster]:
    """Merge clusters whose means drifted within tolerance of each other."""
    clusters = list(clusters)
    merged = True
    while merged:
        merged = False
        for i in range(len(clusters)):
            for j in range(i + 1, len(clusters)):
                if clusters[i].accepts(clusters[j].price, tolerance):
                    clusters[i] = clusters[i].merge(clusters[j])
                    del clusters[j]
                    merged = True
                    break
            if merged:
                break
    return clusters


def cluster_levels(
    observations: Iterable[LevelObservation],
    current_price: float,
    tolerance: float = DEFAULT_CLUSTER_TOLERANCE,
) -> List[Level]:
    """
    Cluster swing observations into ranked levels.

    Args:
        observations: Swing prices tagged with kind and timeframe
        current_price: Price used to break confluence ties (closest first)
        tolerance: Relative distance to a cluster mean that joins the cluster

    Returns:
        List[Level] sorted by confluence desc, then distance to current price asc
    """
    if tolerance < 0:
        raise ValueError(f"tolerance must be non-negative, got {tolerance}")

    clusters: List[LevelCluster] = []

    for observation in observations:
        if not math.isfinite(observation.price) or observation.price <= 0:
            raise ValueError(f"invalid level price: {observation.price}")

        for i, cluster in enumerate(clusters):
            if cluster.accepts(observation.price, tolerance):
                clusters[i] = cluster.absorb(observation)
                break
        else:
            clusters.append(LevelCluster.start(observation))

    levels = [cluster.to_level() for cluster in _consolidate(clusters, tolerance)]
    levels.sort(key=lambda level: (-level.confluence_count, abs(level.price - current_price)))
    return levels


def partition_levels(
    levels: Sequence[Level],
    current_price: float,
    active_band: float = DEFAULT_ACTIVE_BAND,
) -> LevelBands:
    """
    Split levels into supports (below price) and resistances (above price).

    Each side is ordered closest first. The active lists keep only levels
    within active_band of the current price; the macro lists keep all of them.
    """
    supports = sorted(
        (level for level in levels if level.price < current_price),
        key=lambda level: current_price - level.price,
    )
    resistances = sorted(
        (level for level in levels if level.price > current_price),
        key=lambda level: level.price - current_price,
    )

    def in_band(level: Level) -> bool:
        if current_price <= 0:
            return False
        return abs(level.price - current_price) / current_price <= active_band

    return LevelBands(
        supports=[level for level in supports if in_band(level)],
        resistances=[level for level in resistances if in_band(level)],
        macro_supports=supports,
        macro_resistances=resistances,
    )


def swing_observations(
    highs: Sequence[float],
    lows: Sequence[float],
    timeframe: str,
    window: int = DEFAULT_SWING_WINDOW,
) -> List[LevelObservation]:
    """
    Collect swing highs (resistance) and swing lows (support) of one timeframe.

    Duplicate prices are reported once; non-positive prices are ignored.
    """
    if len(highs) != len(lows):
        raise ValueError(f"highs and lows differ in length: {len(highs)} != {len(lows)}")

    observations = []
    for series, pivot_kind, level_kind in (
        (highs, PivotKind.HIGH, LevelKind.RESISTANCE),
        (lows, PivotKind.LOW, LevelKind.SUPPORT),
    ):
        seen = set()
        for price in detect_pivots(series, window, window, pivot_kind).values():
            if price <= 0 or price in seen:
                continue
            seen.add(price)
            observations.append(LevelObservation(price=price, kind=level_kind, timeframe=timeframe))

    return observations


def timeframe_levels(
    observations: Sequence[LevelObservation],
    reference_price: float,
    limit: int = MAX_LEVELS_PER_TIMEFRAME,
) -> Dict[str, List[float]]:
    """Swing supports/resistances of one timeframe, closest to reference price first."""
    support = [o.price for o in observations if o.kind is LevelKind.SUPPORT]
    resistance = [o.price for o in observations if o.kind is LevelKind.RESISTANCE]
    return {
        "support": sorted(support, key=lambda price: abs(price - reference_price))[:limit],
        "resistance": sorted(resistance, key=lambda price: abs(price - reference_price))[:limit],
    }


def identify_liquidity_zones(
    candles: Sequence[Candle],
    top_n: int = LIQUIDITY_ZONES_COUNT,
) -> List[Dict]:
    """
    Highest-volume candles as liquidity zones.

    Returns:
        List[Dict]: [{"price_range": [low, high], "volume": float}, ...]
    """
    zones = [
        {"price_range": [candle.low, candle.high], "volume": candle.volume}
        for candle in candles
        if candle.volume > 0
    ]
    zones.sort(key=lambda zone: zone["volume"], reverse=True)
    return zones[:top_n]
