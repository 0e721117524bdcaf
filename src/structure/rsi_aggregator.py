"""
Multi-Timeframe RSI Aggregation.

Computes RSI(14) per timeframe and combines the readings into a weighted
overall RSI that favours higher timeframes (1D 40%, 4H 30%, 1H 20%, 5M 10%).
Timeframes without enough data are dropped from the weighted sum and
reported as failed instead of being read as neutral.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from structure.models import RSIStatus, TimeframeRSI
from structure.rsi import RSI_DEFAULT_PERIOD, classify_rsi, is_flat_window, latest_rsi


DEFAULT_TIMEFRAME_WEIGHTS: Dict[str, float] = {
    "5m": 0.10,
    "1h": 0.20,
    "4h": 0.30,
    "1d": 0.40,
}

# RSI spread (max - min) at which timeframes are considered in disagreement
HIGH_DISPERSION_SPREAD = 25.0

# Count of extreme timeframes behind the "strong" insights
STRONG_SIGNAL_COUNT = 3


@dataclass
class MultiTimeframeRSI:
    """Weighted multi-timeframe RSI reading."""

    symbol: str
    readings: Dict[str, TimeframeRSI] = field(default_factory=dict)
    failed_timeframes: List[str] = field(default_factory=list)
    overall_rsi: Optional[float] = None
    overall_status: Optional[RSIStatus] = None
    explanation: str = ""
    insight: str = ""
    calculation_method: str = ""
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict:
        if self.error:
            return {
                "error": self.error,
                "failed_timeframes": list(self.failed_timeframes),
            }
        return {
            "rsi_by_timeframe": {tf: reading.to_dict() for tf, reading in self.readings.items()},
            "overall_rsi": self.overall_rsi,
            "overall_status": self.overall_status.value,
            "overall_explanation": self.explanation,
            "insight": self.insight,
            "calculation_method": self.calculation_method,
            "failed_timeframes": list(self.failed_timeframes),
            "warnings": list(self.warnings),
        }


def describe_weights(weights: Mapping[str, float]) -> str:
    """Formula text, e.g. 'Weighted average: 1D (40%) + 4H (30%) + 1H (20%) + 5M (10%)'."""
    parts = [
        f"{tf.upper()} ({round(weight * 100)}%)"
        for tf, weight in sorted(weights.items(), key=lambda item: item[1], reverse=True)
    ]
    return "Weighted average: " + " + ".join(parts)


def explain_readings(readings: Sequence[TimeframeRSI], overall: float, status: RSIStatus) -> str:
    """
    Deterministic explanation of a set of RSI readings.

    Majority oversold, majority overbought, high dispersion (spread of at least
    HIGH_DISPERSION_SPREAD points) or clustered, checked in that order.
    """
    total = len(readings)
    oversold = sum(1 for r in readings if r.status is RSIStatus.OVERSOLD)
    overbought = sum(1 for r in readings if r.status is RSIStatus.OVERBOUGHT)

    lowest = min(readings, key=lambda r: r.value)
    highest = max(readings, key=lambda r: r.value)
    spread = highest.value - lowest.value

    if oversold > total / 2:
        return (
            f"{oversold}/{total} timeframes are Oversold (RSI < 30). "
            f"Weighted RSI is {overall:.2f} ({status.value}), pointing to broad selling exhaustion."
        )
    if overbought > total / 2:
        return (
            f"{overbought}/{total} timeframes are Overbought (RSI > 70). "
            f"Weighted RSI is {overall:.2f} ({status.value}), pointing to stretched buying momentum."
        )
    if spread >= HIGH_DISPERSION_SPREAD:
        return (
            f"Momentum diverges across timeframes: RSI ranges from {lowest.value:.2f} ({lowest.timeframe}) "
            f"to {highest.value:.2f} ({highest.timeframe}). "
            f"Weighted RSI is {overall:.2f} ({status.value})."
        )
    return (
        f"RSI readings are clustered within {spread:.2f} points across {total} timeframes. "
        f"Weighted RSI is {overall:.2f} ({status.value})."
    )


def rsi_insight(readings: Sequence[TimeframeRSI]) -> str:
    """Short recommendation based on how many timeframes sit in extreme zones."""
    overbought = sum(1 for r in readings if r.status is RSIStatus.OVERBOUGHT)
    oversold = sum(1 for r in readings if r.status is RSIStatus.OVERSOLD)

    if overbought >= STRONG_SIGNAL_COUNT:
        return "Strong overbought conditions - consider taking profits"
    if oversold >= STRONG_SIGNAL_COUNT:
        return "Strong oversold conditions - potential buy opportunity"
    if overbought >= 1:
        return "Some overbought signals - monitor for reversal"
    if oversold >= 1:
        return "Some oversold signals - watch for bounce"
    return "RSI levels are balanced across timeframes"


class MultiTimeframeRSIAggregator:
    """Weighted RSI across a fixed set of timeframes."""

    def __init__(
        self,
        weights: Optional[Mapping[str, float]] = None,
        period: int = RSI_DEFAULT_PERIOD,
    ):
        """
        Initialize aggregator.

        Args:
            weights: Timeframe -> weight, must be positive and sum to 1.0
            period: RSI period
        """
        weights = dict(weights or DEFAULT_TIMEFRAME_WEIGHTS)
        if not weights or any(w <= 0 for w in weights.values()):
            raise ValueError("timeframe weights must be positive")
        if not math.isclose(math.fsum(weights.values()), 1.0, abs_tol=1e-9):
            raise ValueError(f"timeframe weights must sum to 1.0, got {math.fsum(weights.values())}")

        self.weights = weights
        self.period = period

    @property
    def timeframes(self) -> List[str]:
        return list(self.weights)

    def aggregate(
        self,
        symbol: str,
        closes_by_timeframe: Mapping[str, Optional[Sequence[float]]],
    ) -> MultiTimeframeRSI:
        """
        Aggregate RSI readings.

        Args:
            symbol: Symbol used in messages
            closes_by_timeframe: Close prices per timeframe; missing or None
                entries count as failed timeframes

        Returns:
            MultiTimeframeRSI with either readings or an error
        """
        result = MultiTimeframeRSI(symbol=symbol, calculation_method=describe_weights(self.weights))
        raw_values: Dict[str, float] = {}

        for tf, weight in self.weights.items():
            closes = closes_by_timeframe.get(tf)
            value = latest_rsi(closes, self.period) if closes else None
            if value is None:
                result.failed_timeframes.append(tf)
                continue

            flat = is_flat_window(closes, self.period)
            raw_values[tf] = value
            result.readings[tf] = TimeframeRSI(
                timeframe=tf,
                value=round(value, 2),
                status=classify_rsi(value),
                weight=weight,
                is_flat=flat,
            )
            if flat:
                result.warnings.append(f"{tf}: flat price data, RSI 50 reflects no price movement")

        if not result.readings:
            result.error = f"Insufficient data for {symbol}; ensure sufficient trading history"
            return result

        if result.failed_timeframes:
            result.warnings.append(
                f"RSI unavailable for {', '.join(result.failed_timeframes)} (insufficient data)"
            )

        present_weight = math.fsum(self.weights[tf] for tf in raw_values)
        overall = math.fsum(
            value * (self.weights[tf] / present_weight) for tf, value in raw_values.items()
        )

        readings = list(result.readings.values())
        result.overall_rsi = round(overall, 2)
        result.overall_status = classify_rsi(overall)
        result.explanation = explain_readings(readings, result.overall_rsi, result.overall_status)
        result.insight = rsi_insight(readings)
        return result
