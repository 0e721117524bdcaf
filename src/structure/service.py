"""
Technical Structure Service.

Advanced technical structure and momentum analysis for the bot layer:
- Smart support/resistance (multi-timeframe swing clustering)
- RSI heatmap (weighted multi-timeframe RSI)
- RSI divergence scanner
- Moving average cross monitor

Every operation returns a plain dict, either with data or with an "error"
key explaining why no analysis is available. Successful results are cached
for a few minutes.
"""

from typing import Dict, List, Optional, Sequence, Union

import structlog

from config import Settings, get_settings
from structure.cache import AnalysisCache, get_analysis_cache, make_cache_key
from structure.candle_source import CandleSource
from structure.divergence import DivergenceScanner, thresholds_for_market
from structure.levels import (
    cluster_levels,
    identify_liquidity_zones,
    partition_levels,
    swing_observations,
    timeframe_levels,
)
from structure.ma_cross import analyze_ma_crosses, recent_crosses, trend_confirmation
from structure.market import detect_market_type
from structure.models import Candle, MarketType
from structure.rsi_aggregator import DEFAULT_TIMEFRAME_WEIGHTS, MultiTimeframeRSIAggregator

logger = structlog.get_logger()


RSI_CANDLE_LIMIT = 100
MA_CROSS_CANDLE_LIMIT = 260
MA_CROSS_TIMEFRAMES = ("1h", "4h", "1d")
LIQUIDITY_TIMEFRAME = "1h"
DEFAULT_DIVERGENCE_TIMEFRAME = "4h"


def _is_cacheable(result: Dict) -> bool:
    return "error" not in result


class TechnicalStructureService:
    """Technical structure analysis over a candle source."""

    def __init__(
        self,
        candle_source: CandleSource,
        cache: Optional[AnalysisCache] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize service.

        Args:
            candle_source: Provider of candles and prices
            cache: Result cache (global analysis cache by default)
            settings: Application settings (global settings by default)
        """
        self.candle_source = candle_source
        self.cache = cache if cache is not None else get_analysis_cache()
        self.settings = settings or get_settings()
        self.rsi_aggregator = MultiTimeframeRSIAggregator(
            weights=DEFAULT_TIMEFRAME_WEIGHTS,
            period=self.settings.rsi_period,
        )

    # ===== HELPERS =====

    @staticmethod
    def _resolve_market(symbol: str, market_type: Optional[Union[MarketType, str]]) -> MarketType:
        if market_type is None:
            return detect_market_type(symbol)
        return MarketType(market_type)

    async def _fetch_candles(self, symbol: str, timeframe: str, limit: int) -> List[Candle]:
        """Fetch candles; a failed fetch counts as no data for that timeframe."""
        try:
            candles = await self.candle_source.get_candles(symbol, timeframe, limit)
        except Exception as e:
            logger.warning(
                "Candle fetch failed",
                symbol=symbol,
                timeframe=timeframe,
                error=str(e),
            )
            return []
        return list(candles or [])

    async def _current_price(self, symbol: str, fallback: Sequence[Candle]) -> Optional[float]:
        """Ticker price, or the last close when the ticker is unavailable."""
        try:
            price = await self.candle_source.get_price(symbol)
        except Exception as e:
            logger.warning("Price fetch failed", symbol=symbol, error=str(e))
            price = None

        if price:
            return float(price)
        if fallback:
            return fallback[-1].close
        return None

    @staticmethod
    def _insufficient_data_error(symbol: str, market_type: MarketType) -> str:
        message = f"Insufficient data for {symbol}; ensure sufficient trading history"
        if market_type is not MarketType.CRYPTO:
            message += f" (no real historical data available for {market_type.value} symbols)"
        return message

    # ===== SUPPORT / RESISTANCE =====

    async def support_resistance(
        self,
        symbol: str,
        market_type: Optional[Union[MarketType, str]] = None,
        show_macro: bool = False,
    ) -> Dict:
        """
        Smart support & resistance analysis.

        Swing highs/lows from every timeframe are clustered into levels ranked
        by confluence. Levels within the active band (±15%) are returned as
        support/resistance; the full lists are added when show_macro is set.
        """
        market = self._resolve_market(symbol, market_type)
        kind = "sr_macro" if show_macro else "sr"

        async def compute() -> Dict:
            return await self._compute_support_resistance(symbol, market, show_macro)

        return await self.cache.get_or_compute(
            make_cache_key(kind, symbol, market_type=market),
            self.settings.sr_cache_ttl,
            compute,
            should_cache=_is_cacheable,
        )

    async def _compute_support_resistance(
        self,
        symbol: str,
        market: MarketType,
        show_macro: bool,
    ) -> Dict:
        s = self.settings
        window = s.sr_pivot_window
        min_candles = 2 * window + 1

        observations_by_tf = {}
        candles_by_tf: Dict[str, List[Candle]] = {}
        failed_timeframes = []

        for tf in s.sr_timeframes:
            candles = await self._fetch_candles(symbol, tf, s.sr_candle_limit)
            if len(candles) < min_candles:
                failed_timeframes.append(tf)
                continue

            candles_by_tf[tf] = candles
            observations_by_tf[tf] = swing_observations(
                [c.high for c in candles],
                [c.low for c in candles],
                tf,
                window,
            )

        if not candles_by_tf:
            logger.warning("S/R analysis without data", symbol=symbol, failed=failed_timeframes)
            return {
                "error": self._insufficient_data_error(symbol, market),
                "failed_timeframes": failed_timeframes,
            }

        finest = next(iter(candles_by_tf.values()))
        current_price = await self._current_price(symbol, finest)

        observations = [o for tf_obs in observations_by_tf.values() for o in tf_obs]
        levels = cluster_levels(observations, current_price, s.level_cluster_tolerance)
        bands = partition_levels(levels, current_price, s.active_band_pct)

        active = {id(level) for level in bands.supports + bands.resistances}
        confluent = [level for level in levels if level.is_confluent and id(level) in active]

        liquidity_candles = candles_by_tf.get(LIQUIDITY_TIMEFRAME, finest)

        result = {
            "symbol": symbol,
            "market_type": market.value,
            "current_price": current_price,
            "nearest_support": (
                bands.nearest_support.to_dict(current_price) if bands.nearest_support else None
            ),
            "nearest_resistance": (
                bands.nearest_resistance.to_dict(current_price) if bands.nearest_resistance else None
            ),
            "confluent_levels": [level.to_dict(current_price) for level in confluent],
            "support_levels": [level.to_dict(current_price) for level in bands.supports],
            "resistance_levels": [level.to_dict(current_price) for level in bands.resistances],
            "levels_by_timeframe": {
                tf: timeframe_levels(tf_obs, current_price)
                for tf, tf_obs in observations_by_tf.items()
            },
            "liquidity_zones": identify_liquidity_zones(liquidity_candles),
            "active_band_pct": s.active_band_pct * 100,
            "failed_timeframes": failed_timeframes,
        }

        if show_macro:
            result["macro_supports"] = [level.to_dict(current_price) for level in bands.macro_supports]
            result["macro_resistances"] = [
                level.to_dict(current_price) for level in bands.macro_resistances
            ]

        logger.info(
            "S/R analysis complete",
            symbol=symbol,
            levels=len(levels),
            confluent=len(confluent),
            failed_timeframes=failed_timeframes,
        )
        return result

    # ===== RSI HEATMAP =====

    async def rsi_multi_timeframe(
        self,
        symbol: str,
        market_type: Optional[Union[MarketType, str]] = None,
    ) -> Dict:
        """
        RSI heatmap across 5m, 1h, 4h and 1d with a weighted overall RSI.
        """
        market = self._resolve_market(symbol, market_type)

        async def compute() -> Dict:
            return await self._compute_rsi(symbol, market)

        return await self.cache.get_or_compute(
            make_cache_key("rsi", symbol, market_type=market),
            self.settings.rsi_cache_ttl,
            compute,
            should_cache=_is_cacheable,
        )

    async def _compute_rsi(self, symbol: str, market: MarketType) -> Dict:
        candles_by_tf = {}
        for tf in self.rsi_aggregator.timeframes:
            candles_by_tf[tf] = await self._fetch_candles(symbol, tf, RSI_CANDLE_LIMIT)

        analysis = self.rsi_aggregator.aggregate(
            symbol,
            {tf: [c.close for c in candles] for tf, candles in candles_by_tf.items() if candles},
        )

        if not analysis.success:
            logger.warning(
                "RSI heatmap without data",
                symbol=symbol,
                failed=analysis.failed_timeframes,
            )
            return {
                "error": self._insufficient_data_error(symbol, market),
                "failed_timeframes": analysis.failed_timeframes,
            }

        fallback = next(candles_by_tf[tf] for tf in analysis.readings)
        current_price = await self._current_price(symbol, fallback)

        result = {
            "symbol": symbol,
            "market_type": market.value,
            "current_price": current_price,
            "rsi_period": self.rsi_aggregator.period,
            "weights": dict(self.rsi_aggregator.weights),
        }
        result.update(analysis.to_dict())

        logger.info(
            "RSI heatmap complete",
            symbol=symbol,
            overall_rsi=analysis.overall_rsi,
            failed_timeframes=analysis.failed_timeframes,
        )
        return result

    # ===== DIVERGENCE =====

    async def divergence_scan(
        self,
        symbol: str,
        market_type: Optional[Union[MarketType, str]] = None,
        timeframe: str = DEFAULT_DIVERGENCE_TIMEFRAME,
    ) -> Dict:
        """
        Regular RSI divergence scan on one timeframe.
        """
        market = self._resolve_market(symbol, market_type)

        async def compute() -> Dict:
            return await self._compute_divergence(symbol, market, timeframe)

        return await self.cache.get_or_compute(
            make_cache_key("divergence", symbol, timeframe, market_type=market),
            self.settings.divergence_cache_ttl,
            compute,
            should_cache=_is_cacheable,
        )

    def _divergence_scanner(self, market: MarketType) -> DivergenceScanner:
        s = self.settings
        min_price_delta = (
            s.divergence_min_price_delta_forex
            if market is MarketType.FOREX
            else s.divergence_min_price_delta_crypto
        )
        thresholds = thresholds_for_market(
            market,
            min_price_delta_pct=min_price_delta,
            min_rsi_delta=s.divergence_min_rsi_delta,
            min_bars_apart=s.divergence_min_bars_apart,
            max_age_bars=s.divergence_max_age_bars,
            match_tolerance=s.divergence_match_tolerance,
            pivot_window=s.divergence_pivot_window,
        )
        return DivergenceScanner(thresholds, rsi_period=s.rsi_period)

    async def _compute_divergence(self, symbol: str, market: MarketType, timeframe: str) -> Dict:
        candles = await self._fetch_candles(symbol, timeframe, self.settings.divergence_candle_limit)
        if not candles:
            return {"error": self._insufficient_data_error(symbol, market)}

        scan = self._divergence_scanner(market).scan(
            [c.high for c in candles],
            [c.low for c in candles],
            [c.close for c in candles],
        )
        if scan.error:
            logger.info("Divergence scan skipped", symbol=symbol, timeframe=timeframe, reason=scan.error)
            return {"error": f"{scan.error} for {symbol} ({timeframe})"}

        result = {
            "symbol": symbol,
            "market_type": market.value,
            "timeframe": timeframe,
        }
        result.update(scan.to_dict())
        result["current_price"] = await self._current_price(symbol, candles)

        logger.info(
            "Divergence scan complete",
            symbol=symbol,
            timeframe=timeframe,
            has_divergence=scan.has_divergence,
            confidence=result["confidence"],
        )
        return result

    # ===== MA CROSS =====

    async def ma_cross(
        self,
        symbol: str,
        market_type: Optional[Union[MarketType, str]] = None,
    ) -> Dict:
        """
        Moving average cross monitor (20/50 and 50/200) on 1h, 4h and 1d.
        """
        market = self._resolve_market(symbol, market_type)

        async def compute() -> Dict:
            return await self._compute_ma_cross(symbol, market)

        return await self.cache.get_or_compute(
            make_cache_key("ma_cross", symbol, market_type=market),
            self.settings.ma_cross_cache_ttl,
            compute,
            should_cache=_is_cacheable,
        )

    async def _compute_ma_cross(self, symbol: str, market: MarketType) -> Dict:
        crosses = {}
        last_candles: List[Candle] = []
        failed_timeframes = []

        for tf in MA_CROSS_TIMEFRAMES:
            candles = await self._fetch_candles(symbol, tf, MA_CROSS_CANDLE_LIMIT)
            if not candles:
                failed_timeframes.append(tf)
                continue
            last_candles = last_candles or candles
            crosses[tf] = analyze_ma_crosses([c.close for c in candles])

        if not crosses:
            return {
                "error": self._insufficient_data_error(symbol, market),
                "failed_timeframes": failed_timeframes,
            }

        return {
            "symbol": symbol,
            "market_type": market.value,
            "current_price": await self._current_price(symbol, last_candles),
            "crosses": {
                tf: {name: cross.to_dict() for name, cross in pairs.items()}
                for tf, pairs in crosses.items()
            },
            "recent_crosses": recent_crosses(crosses),
            "trend_confirmation": trend_confirmation(crosses),
            "failed_timeframes": failed_timeframes,
        }
