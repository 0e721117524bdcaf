"""
Pivot Detection.

Finds local highs and lows in any numeric series (prices or RSI) using a
symmetric lookback window. A point is a pivot high when no neighbour inside
the window exceeds it; ties count as pivots.
"""

from typing import Dict, List, Sequence, Union

from structure.models import Pivot, PivotKind


def detect_pivots(
    series: Sequence[float],
    left: int,
    right: int,
    kind: Union[PivotKind, str],
) -> Dict[int, float]:
    """
    Detect pivots in a series.

    Args:
        series: Values ordered oldest to newest
        left: Bars before the candidate that must not exceed it
        right: Bars after the candidate that must not exceed it
        kind: PivotKind.HIGH or PivotKind.LOW (or "high"/"low")

    Returns:
        Mapping of series index to pivot value, in index order
    """
    if left < 1 or right < 1:
        raise ValueError(f"pivot window must be positive, got left={left} right={right}")

    kind = PivotKind(kind)
    values = list(series)
    pivots: Dict[int, float] = {}

    for i in range(left, len(values) - right):
        current = values[i]
        is_pivot = True

        for j in range(i - left, i + right + 1):
            if j == i:
                continue

            if kind is PivotKind.HIGH and values[j] > current:
                is_pivot = False
                break
            elif kind is PivotKind.LOW and values[j] < current:
                is_pivot = False
                break

        if is_pivot:
            pivots[i] = current

    return pivots


def find_pivots(
    series: Sequence[float],
    window: int,
    kind: Union[PivotKind, str],
    offset: int = 0,
) -> List[Pivot]:
    """
    Detect pivots with a symmetric window and wrap them as Pivot objects.

    Args:
        series: Values ordered oldest to newest
        window: Bars on each side
        kind: Pivot kind
        offset: Added to every index (maps a tail-aligned series, such as
            RSI, back onto candle indices)

    Returns:
        List[Pivot] ordered by index
    """
    kind = PivotKind(kind)
    return [
        Pivot(index=index + offset, value=value, kind=kind)
        for index, value in detect_pivots(series, window, window, kind).items()
    ]
