"""
Serpo Structure - RSI

Расчёт серии RSI по ценам закрытия и классификация зон RSI.
"""

from typing import List, Optional, Sequence

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from structure.models import RSIStatus


# Constants for indicator calculations
RSI_DEFAULT_PERIOD = 14
RSI_MAX_VALUE = 100.0
RSI_NEUTRAL_VALUE = 50.0
RSI_OVERBOUGHT_THRESHOLD = 70
RSI_OVERSOLD_THRESHOLD = 30


def _as_prices(prices: Sequence[float]) -> np.ndarray:
    prices_array = np.asarray(prices, dtype=float)
    if prices_array.ndim != 1:
        raise ValueError("prices must be a one-dimensional sequence")
    if not np.all(np.isfinite(prices_array)):
        raise ValueError("prices contain non-finite values")
    return prices_array


def calculate_rsi_series(
    prices: Sequence[float],
    period: int = RSI_DEFAULT_PERIOD,
) -> List[float]:
    """
    Расчёт RSI для каждой свечи начиная с индекса period.

    Каждое значение использует простые средние прироста и падения
    по окну из period последовательных изменений цены.

    Args:
        prices: Список цен закрытия (от старых к новым)
        period: Период расчёта (по умолчанию 14)

    Returns:
        List[float]: len(prices) - period значений, series[i] соответствует
        свече prices[i + period]. Пустой список если недостаточно данных.
    """
    if period < 1:
        raise ValueError(f"period must be positive, got {period}")

    prices_array = _as_prices(prices)
    if len(prices_array) < period + 1:
        return []

    deltas = np.diff(prices_array)
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    avg_gains = sliding_window_view(gains, period).mean(axis=1)
    avg_losses = sliding_window_view(losses, period).mean(axis=1)

    series = []
    for avg_gain, avg_loss in zip(avg_gains, avg_losses):
        if avg_loss == 0:
            # Flat window reads neutral, pure uptrend reads 100
            rsi_value = RSI_NEUTRAL_VALUE if avg_gain == 0 else RSI_MAX_VALUE
        else:
            rs = avg_gain / avg_loss
            rsi_value = RSI_MAX_VALUE - (RSI_MAX_VALUE / (1 + rs))
        series.append(float(rsi_value))

    return series


def latest_rsi(
    prices: Sequence[float],
    period: int = RSI_DEFAULT_PERIOD,
) -> Optional[float]:
    """
    Последнее значение RSI.

    Returns:
        float или None если недостаточно данных
    """
    series = calculate_rsi_series(prices, period)
    if not series:
        return None
    return series[-1]


def is_flat_window(prices: Sequence[float], period: int = RSI_DEFAULT_PERIOD) -> bool:
    """Проверка, что последние period + 1 цен не менялись (RSI 50 из-за плоских данных)."""
    tail = _as_prices(prices)[-(period + 1):]
    if len(tail) < period + 1:
        return False
    return bool(np.all(tail == tail[0]))


def classify_rsi(value: float) -> RSIStatus:
    """
    Зона RSI.

    Returns:
        RSIStatus: Oversold (< 30), Overbought (> 70) или Neutral
    """
    if value < RSI_OVERSOLD_THRESHOLD:
        return RSIStatus.OVERSOLD
    elif value > RSI_OVERBOUGHT_THRESHOLD:
        return RSIStatus.OVERBOUGHT
    return RSIStatus.NEUTRAL
