"""
Serpo Structure - Модуль технической структуры

Уровни поддержки/сопротивления, мультитаймфрейм RSI и дивергенции RSI.
"""

from structure.cache import AnalysisCache, get_analysis_cache
from structure.candle_source import BinanceCandleSource, CandleSource
from structure.divergence import DivergenceScanner, thresholds_for_market
from structure.levels import cluster_levels, partition_levels
from structure.pivots import detect_pivots
from structure.rsi import calculate_rsi_series, classify_rsi
from structure.rsi_aggregator import MultiTimeframeRSIAggregator
from structure.service import TechnicalStructureService

__all__ = [
    "AnalysisCache",
    "get_analysis_cache",
    "BinanceCandleSource",
    "CandleSource",
    "DivergenceScanner",
    "thresholds_for_market",
    "cluster_levels",
    "partition_levels",
    "detect_pivots",
    "calculate_rsi_series",
    "classify_rsi",
    "MultiTimeframeRSIAggregator",
    "TechnicalStructureService",
]
