"""
RSI Divergence Scanner.

Cross-references price pivots with RSI pivots on one timeframe:
- Regular Bullish: price makes a lower low, RSI makes a higher low
- Regular Bearish: price makes a higher high, RSI makes a lower high

Hidden divergences are not implemented and are reported as such.
A candidate is confirmed only when both the price move and the RSI move
reach their minimum thresholds; otherwise it is kept as the best candidate
together with the reason it was rejected.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from structure.models import (
    Confidence,
    DivergenceCandidate,
    DivergenceThresholds,
    DivergenceType,
    MarketType,
    Pivot,
    PivotKind,
    PivotMetadata,
)
from structure.pivots import find_pivots
from structure.rsi import RSI_DEFAULT_PERIOD, calculate_rsi_series


# Constants for divergence detection
MIN_DIVERGENCE_CANDLES = 50
MIN_PRICE_DELTA_PCT = {
    MarketType.CRYPTO: 0.8,
    MarketType.STOCK: 0.8,
    MarketType.FOREX: 0.25,
}

# Confidence grading
HIGH_CONFIDENCE_RATIO = 1.5  # both deltas above 1.5x their minimum
LOW_CONFIDENCE_RATIO = 1.1  # either delta within 10% of its minimum

UNSUPPORTED_TYPES = [DivergenceType.HIDDEN_BULLISH, DivergenceType.HIDDEN_BEARISH]


def thresholds_for_market(market_type: MarketType, **overrides) -> DivergenceThresholds:
    """
    Divergence thresholds for a market.

    Forex moves are smaller, so the minimum price delta is 0.25% instead of 0.8%.
    """
    params = {"min_price_delta_pct": MIN_PRICE_DELTA_PCT[MarketType(market_type)]}
    params.update(overrides)
    return DivergenceThresholds(**params)


@dataclass
class DivergenceScan:
    """Result of one divergence scan."""

    current_price: Optional[float] = None
    current_rsi: Optional[float] = None
    divergence: Optional[DivergenceCandidate] = None
    best_candidate: Optional[DivergenceCandidate] = None
    pivot_metadata: Optional[PivotMetadata] = None
    thresholds: DivergenceThresholds = field(default_factory=DivergenceThresholds)
    confidence: Optional[Confidence] = None
    confidence_reason: Optional[str] = None
    reason: str = ""
    error: Optional[str] = None

    @property
    def has_divergence(self) -> bool:
        return self.divergence is not None

    def to_dict(self) -> Dict:
        if self.error:
            return {"error": self.error}
        return {
            "current_price": self.current_price,
            "current_rsi": self.current_rsi,
            "has_divergence": self.has_divergence,
            "divergence": self.divergence.to_dict() if self.divergence else None,
            "best_candidate": self.best_candidate.to_dict() if self.best_candidate else None,
            "pivot_metadata": self.pivot_metadata.to_dict() if self.pivot_metadata else None,
            "thresholds": self.thresholds.to_dict(),
            "confidence": self.confidence.value if self.confidence else None,
            "confidence_reason": self.confidence_reason,
            "reason": self.reason,
            "unsupported_types": [t.value for t in UNSUPPORTED_TYPES],
        }


@dataclass
class _TypeCheck:
    """Outcome of checking one divergence type."""

    candidate: Optional[DivergenceCandidate]
    reason: str

    @property
    def confirmed(self) -> bool:
        return self.candidate is not None and self.candidate.confirmed


def _validate_prices(name: str, values: Sequence[float]) -> None:
    for value in values:
        if not math.isfinite(value) or value <= 0:
            raise ValueError(f"{name} contain invalid price: {value}")


def nearest_pivot(pivots: Sequence[Pivot], index: int, tolerance: int) -> Optional[Pivot]:
    """Closest pivot to index within tolerance bars (earlier pivot wins a tie)."""
    in_range = [p for p in pivots if abs(p.index - index) <= tolerance]
    if not in_range:
        return None
    return min(in_range, key=lambda p: (abs(p.index - index), p.index))


class DivergenceScanner:
    """Detector for regular bullish/bearish RSI divergence."""

    def __init__(
        self,
        thresholds: Optional[DivergenceThresholds] = None,
        rsi_period: int = RSI_DEFAULT_PERIOD,
    ):
        self.thresholds = thresholds or DivergenceThresholds()
        self.rsi_period = rsi_period

    def scan(
        self,
        highs: Sequence[float],
        lows: Sequence[float],
        closes: Sequence[float],
        rsi_series: Optional[Sequence[float]] = None,
    ) -> DivergenceScan:
        """
        Scan one symbol/timeframe for divergence.

        Args:
            highs: High prices, oldest to newest
            lows: Low prices, same length as highs
            closes: Close prices, same length as highs
            rsi_series: Precomputed RSI aligned to the tail of the candles
                (rsi_series[i] belongs to candle len(closes) - len(rsi_series) + i).
                Computed from closes when omitted.

        Returns:
            DivergenceScan with the confirmed divergence, or the best candidate
            and the reason nothing was confirmed
        """
        count = len(closes)
        if len(highs) != count or len(lows) != count:
            raise ValueError(
                f"price arrays differ in length: highs={len(highs)} lows={len(lows)} closes={count}"
            )

        if count < MIN_DIVERGENCE_CANDLES:
            return DivergenceScan(
                thresholds=self.thresholds,
                error=f"Insufficient data: {count} candles, need at least {MIN_DIVERGENCE_CANDLES}",
            )

        _validate_prices("highs", highs)
        _validate_prices("lows", lows)
        _validate_prices("closes", closes)

        if rsi_series is None:
            rsi = calculate_rsi_series(closes, self.rsi_period)
        else:
            rsi = [float(value) for value in rsi_series]
        if len(rsi) > count:
            raise ValueError(f"RSI series longer than price series: {len(rsi)} > {count}")
        if not rsi:
            return DivergenceScan(
                thresholds=self.thresholds,
                error=f"Insufficient data: RSI({self.rsi_period}) unavailable for {count} candles",
            )

        window = self.thresholds.pivot_window
        offset = count - len(rsi)
        last_index = count - 1

        price_lows = find_pivots(lows, window, PivotKind.LOW)
        price_highs = find_pivots(highs, window, PivotKind.HIGH)
        rsi_lows = find_pivots(rsi, window, PivotKind.LOW, offset=offset)
        rsi_highs = find_pivots(rsi, window, PivotKind.HIGH, offset=offset)

        metadata = PivotMetadata(
            candles=count,
            pivot_window=window,
            price_pivot_lows=len(price_lows),
            price_pivot_highs=len(price_highs),
            rsi_pivot_lows=len(rsi_lows),
            rsi_pivot_highs=len(rsi_highs),
            last_pivot_low_age=last_index - price_lows[-1].index if price_lows else None,
            last_pivot_high_age=last_index - price_highs[-1].index if price_highs else None,
            notes=["Hidden bullish/bearish divergence detection is not implemented"],
        )

        result = DivergenceScan(
            current_price=float(closes[-1]),
            current_rsi=round(rsi[-1], 2),
            pivot_metadata=metadata,
            thresholds=self.thresholds,
        )

        bullish = self._check(DivergenceType.REGULAR_BULLISH, price_lows, rsi_lows, last_index)
        if bullish.confirmed:
            result.divergence = bullish.candidate
            result.reason = bullish.reason
        else:
            bearish = self._check(DivergenceType.REGULAR_BEARISH, price_highs, rsi_highs, last_index)
            if bearish.confirmed:
                result.divergence = bearish.candidate
                result.reason = bearish.reason
            else:
                candidates = [c.candidate for c in (bullish, bearish) if c.candidate]
                if candidates:
                    result.best_candidate = max(candidates, key=self.threshold_score)
                result.reason = (
                    f"No confirmed divergence - bullish: {bullish.reason}; bearish: {bearish.reason}"
                )

        graded = result.divergence or result.best_candidate
        if graded:
            result.confidence, result.confidence_reason = self.grade_confidence(graded)

        return result

    def _check(
        self,
        divergence_type: DivergenceType,
        price_pivots: List[Pivot],
        rsi_pivots: List[Pivot],
        last_index: int,
    ) -> _TypeCheck:
        t = self.thresholds
        bullish = divergence_type is DivergenceType.REGULAR_BULLISH
        label = "low" if bullish else "high"

        if not price_pivots:
            return _TypeCheck(None, f"no price pivot {label}s detected")
        if len(price_pivots) < 2:
            return _TypeCheck(None, f"only 1 price pivot {label} detected (need 2)")

        first, second = price_pivots[-2], price_pivots[-1]

        age = last_index - second.index
        if age > t.max_age_bars:
            return _TypeCheck(None, f"last pivot {label} is {age} bars old (max {t.max_age_bars})")

        bars_apart = second.index - first.index
        if bars_apart < t.min_bars_apart:
            return _TypeCheck(
                None,
                f"last two pivot {label}s are {bars_apart} bars apart (min {t.min_bars_apart})",
            )

        price_delta_pct = (second.value - first.value) / first.value * 100
        if bullish and not price_delta_pct < 0:
            return _TypeCheck(None, f"price did not make a lower low ({price_delta_pct:+.2f}%)")
        if not bullish and not price_delta_pct > 0:
            return _TypeCheck(None, f"price did not make a higher high ({price_delta_pct:+.2f}%)")

        rsi_first = nearest_pivot(rsi_pivots, first.index, t.match_tolerance)
        rsi_second = nearest_pivot(rsi_pivots, second.index, t.match_tolerance)
        for price_pivot, rsi_pivot in ((first, rsi_first), (second, rsi_second)):
            if rsi_pivot is None:
                return _TypeCheck(
                    None,
                    f"no RSI pivot {label} within {t.match_tolerance} bars "
                    f"of price pivot at bar {price_pivot.index}",
                )

        rsi_delta = rsi_second.value - rsi_first.value
        if bullish and not rsi_delta > 0:
            return _TypeCheck(None, f"RSI did not make a higher low ({rsi_delta:+.2f})")
        if not bullish and not rsi_delta < 0:
            return _TypeCheck(None, f"RSI did not make a lower high ({rsi_delta:+.2f})")

        price_ok = abs(price_delta_pct) >= t.min_price_delta_pct
        rsi_ok = abs(rsi_delta) >= t.min_rsi_delta

        candidate = DivergenceCandidate(
            type=divergence_type,
            pivot1_index=first.index,
            pivot2_index=second.index,
            price1=first.value,
            price2=second.value,
            price_delta_pct=price_delta_pct,
            rsi1=rsi_first.value,
            rsi2=rsi_second.value,
            rsi_delta=rsi_delta,
            bars_apart=bars_apart,
            confirmed=price_ok and rsi_ok,
        )

        if candidate.confirmed:
            if bullish:
                reason = (
                    f"Price made a lower low ({price_delta_pct:+.2f}%) "
                    f"while RSI made a higher low ({rsi_delta:+.2f})"
                )
            else:
                reason = (
                    f"Price made a higher high ({price_delta_pct:+.2f}%) "
                    f"while RSI made a lower high ({rsi_delta:+.2f})"
                )
            return _TypeCheck(candidate, reason)

        shortfalls = []
        if not price_ok:
            shortfalls.append(
                f"price delta {abs(price_delta_pct):.2f}% below minimum {t.min_price_delta_pct:.2f}%"
            )
        if not rsi_ok:
            shortfalls.append(f"RSI delta {abs(rsi_delta):.2f} below minimum {t.min_rsi_delta:.2f}")
        return _TypeCheck(
            candidate,
            f"{divergence_type.value} candidate did not meet thresholds ({' and '.join(shortfalls)})",
        )

    def _ratios(self, candidate: DivergenceCandidate) -> Tuple[float, float]:
        return (
            abs(candidate.price_delta_pct) / self.thresholds.min_price_delta_pct,
            abs(candidate.rsi_delta) / self.thresholds.min_rsi_delta,
        )

    def threshold_score(self, candidate: DivergenceCandidate) -> float:
        """Weakest delta relative to its minimum; 1.0 means exactly at threshold."""
        return min(self._ratios(candidate))

    def grade_confidence(self, candidate: DivergenceCandidate) -> Tuple[Confidence, str]:
        """
        Grade a candidate.

        High when both deltas exceed 1.5x their minimum, Low when either delta
        is within 10% of its minimum (or below it), Medium otherwise.
        """
        price_ratio, rsi_ratio = self._ratios(candidate)
        summary = (
            f"price delta {price_ratio:.2f}x minimum, RSI delta {rsi_ratio:.2f}x minimum"
        )

        if price_ratio > HIGH_CONFIDENCE_RATIO and rsi_ratio > HIGH_CONFIDENCE_RATIO:
            return Confidence.HIGH, f"{summary}: both exceed {HIGH_CONFIDENCE_RATIO}x"

        weak = []
        if price_ratio <= LOW_CONFIDENCE_RATIO:
            weak.append("price delta")
        if rsi_ratio <= LOW_CONFIDENCE_RATIO:
            weak.append("RSI delta")
        if weak:
            return Confidence.LOW, f"{summary}: {' and '.join(weak)} within 10% of minimum"

        return Confidence.MEDIUM, f"{summary}: not both above {HIGH_CONFIDENCE_RATIO}x"
