"""
Tests for TechnicalStructureService.

The candle source is faked so every scenario is deterministic and offline.
"""

import os
import sys
from unittest.mock import AsyncMock

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from config import Settings
from structure.cache import AnalysisCache
from structure.models import Candle
from structure.service import TechnicalStructureService


def make_candles(highs, lows, volumes=None):
    volumes = volumes or [1.0] * len(highs)
    return [
        Candle(open_time=i, open=(h + l) / 2, high=h, low=l, close=(h + l) / 2, volume=v)
        for i, (h, l, v) in enumerate(zip(highs, lows, volumes))
    ]


def closes_to_candles(closes):
    return [
        Candle(open_time=i, open=c, high=c + 1, low=c - 1, close=c, volume=1.0)
        for i, c in enumerate(closes)
    ]


# Single pivot high at 105 and single pivot low at 93 (window 2)
SWING_HIGHS = [100.0, 101.0, 102.0, 105.0, 102.0, 101.0, 100.0, 101.0, 102.0, 103.0, 104.0]
SWING_LOWS = [99.0, 98.0, 97.0, 96.0, 95.0, 94.0, 93.0, 98.0, 99.0, 100.0, 101.0]

RISING = closes_to_candles([100.0 + i for i in range(30)])


class FakeCandleSource:
    """Candle source serving fixed candles per timeframe."""

    def __init__(self, candles_by_tf, price=None):
        self.candles_by_tf = candles_by_tf
        self.get_candles = AsyncMock(side_effect=self._candles)
        self.get_price = AsyncMock(return_value=price)

    async def _candles(self, symbol, timeframe, limit):
        data = self.candles_by_tf.get(timeframe, [])
        if isinstance(data, Exception):
            raise data
        return data[-limit:]


@pytest.fixture
def settings():
    return Settings(sr_timeframes=["1h", "4h", "1d"], sr_pivot_window=2)


def make_service(source, settings):
    return TechnicalStructureService(source, cache=AnalysisCache(), settings=settings)


class TestSupportResistance:
    """Tests for support_resistance."""

    @pytest.mark.asyncio
    async def test_levels_with_confluence(self, settings):
        swing = make_candles(SWING_HIGHS, SWING_LOWS)
        source = FakeCandleSource({"1h": swing, "4h": swing}, price=100.0)
        service = make_service(source, settings)

        result = await service.support_resistance("BTCUSDT")

        assert result["symbol"] == "BTCUSDT"
        assert result["market_type"] == "crypto"
        assert result["current_price"] == 100.0
        assert result["failed_timeframes"] == ["1d"]

        assert result["nearest_support"]["price"] == pytest.approx(93.0)
        assert result["nearest_support"]["confluence_count"] == 2
        assert result["nearest_resistance"]["price"] == pytest.approx(105.0)
        assert [l["price"] for l in result["confluent_levels"]] == [
            pytest.approx(105.0),
            pytest.approx(93.0),
        ]
        assert result["levels_by_timeframe"]["1h"] == {"support": [93.0], "resistance": [105.0]}
        assert result["active_band_pct"] == pytest.approx(15.0)
        assert "macro_supports" not in result

    @pytest.mark.asyncio
    async def test_macro_levels(self, settings):
        swing = make_candles(SWING_HIGHS, SWING_LOWS)
        source = FakeCandleSource({"1h": swing}, price=100.0)
        service = make_service(source, settings)

        result = await service.support_resistance("BTCUSDT", show_macro=True)

        assert [l["price"] for l in result["macro_supports"]] == [pytest.approx(93.0)]
        assert [l["price"] for l in result["macro_resistances"]] == [pytest.approx(105.0)]

    @pytest.mark.asyncio
    async def test_result_cached(self, settings):
        """Repeated requests within TTL reuse the first result."""
        swing = make_candles(SWING_HIGHS, SWING_LOWS)
        source = FakeCandleSource({"1h": swing, "4h": swing, "1d": swing}, price=100.0)
        service = make_service(source, settings)

        first = await service.support_resistance("BTCUSDT")
        second = await service.support_resistance("BTCUSDT")

        assert first == second
        assert source.get_candles.await_count == 3

    @pytest.mark.asyncio
    async def test_no_data_error_not_cached(self, settings):
        source = FakeCandleSource({})
        service = make_service(source, settings)

        result = await service.support_resistance("AAPL")
        await service.support_resistance("AAPL")

        assert result["error"] == (
            "Insufficient data for AAPL; ensure sufficient trading history "
            "(no real historical data available for stock symbols)"
        )
        assert result["failed_timeframes"] == ["1h", "4h", "1d"]
        assert source.get_candles.await_count == 6

    @pytest.mark.asyncio
    async def test_fetch_exception_counts_as_failed(self, settings):
        swing = make_candles(SWING_HIGHS, SWING_LOWS)
        source = FakeCandleSource(
            {"1h": swing, "4h": RuntimeError("timeout"), "1d": swing},
            price=100.0,
        )
        service = make_service(source, settings)

        result = await service.support_resistance("BTCUSDT")
        assert result["failed_timeframes"] == ["4h"]

    @pytest.mark.asyncio
    async def test_price_falls_back_to_last_close(self, settings):
        swing = make_candles(SWING_HIGHS, SWING_LOWS)
        source = FakeCandleSource({"1h": swing}, price=None)
        service = make_service(source, settings)

        result = await service.support_resistance("BTCUSDT")
        assert result["current_price"] == pytest.approx(swing[-1].close)


class TestRSIHeatmap:
    """Tests for rsi_multi_timeframe."""

    @pytest.mark.asyncio
    async def test_all_timeframes(self, settings):
        source = FakeCandleSource({tf: RISING for tf in ("5m", "1h", "4h", "1d")}, price=129.0)
        service = make_service(source, settings)

        result = await service.rsi_multi_timeframe("BTCUSDT")

        assert result["overall_rsi"] == 100.0
        assert result["overall_status"] == "Overbought"
        assert set(result["rsi_by_timeframe"]) == {"5m", "1h", "4h", "1d"}
        assert result["failed_timeframes"] == []
        assert result["insight"] == "Strong overbought conditions - consider taking profits"
        assert result["rsi_period"] == 14
        assert result["current_price"] == 129.0

    @pytest.mark.asyncio
    async def test_idempotent_within_ttl(self, settings):
        source = FakeCandleSource({tf: RISING for tf in ("5m", "1h", "4h", "1d")}, price=129.0)
        service = make_service(source, settings)

        first = await service.rsi_multi_timeframe("BTCUSDT")
        second = await service.rsi_multi_timeframe("btcusdt")

        assert first == second
        assert source.get_candles.await_count == 4

    @pytest.mark.asyncio
    async def test_failed_timeframe_reported(self, settings):
        source = FakeCandleSource({"1h": RISING, "4h": RISING, "1d": RISING}, price=129.0)
        service = make_service(source, settings)

        result = await service.rsi_multi_timeframe("BTCUSDT")

        assert result["failed_timeframes"] == ["5m"]
        assert "5m" not in result["rsi_by_timeframe"]
        assert "RSI unavailable for 5m (insufficient data)" in result["warnings"]

    @pytest.mark.asyncio
    async def test_forex_without_data(self, settings):
        source = FakeCandleSource({})
        service = make_service(source, settings)

        result = await service.rsi_multi_timeframe("EURUSD")

        assert "error" in result
        assert "no real historical data available for forex symbols" in result["error"]
        assert "overall_rsi" not in result


class TestDivergenceScan:
    """Tests for divergence_scan."""

    def _candles(self, n=60):
        lows = [100.0 + abs(i - 20) if i < 30 else 95.0 + abs(i - 40) for i in range(n)]
        return make_candles([low + 1 for low in lows], lows)

    @pytest.mark.asyncio
    async def test_scan_result_shape(self, settings):
        source = FakeCandleSource({"4h": self._candles()}, price=123.0)
        service = make_service(source, settings)

        result = await service.divergence_scan("BTCUSDT")

        assert result["symbol"] == "BTCUSDT"
        assert result["timeframe"] == "4h"
        assert result["current_price"] == 123.0
        assert result["pivot_metadata"]["price_pivot_lows"] == 2
        assert result["thresholds"]["min_price_delta_pct"] == 0.8
        assert "Hidden Bullish Divergence" in result["unsupported_types"]
        assert isinstance(result["has_divergence"], bool)

    @pytest.mark.asyncio
    async def test_forex_thresholds(self, settings):
        source = FakeCandleSource({"1h": self._candles()}, price=1.1)
        service = make_service(source, settings)

        result = await service.divergence_scan("EURUSD", market_type="forex", timeframe="1h")

        assert result["market_type"] == "forex"
        assert result["thresholds"]["min_price_delta_pct"] == 0.25

    @pytest.mark.asyncio
    async def test_insufficient_candles(self, settings):
        source = FakeCandleSource({"4h": self._candles(30)})
        service = make_service(source, settings)

        result = await service.divergence_scan("BTCUSDT")

        assert result == {
            "error": "Insufficient data: 30 candles, need at least 50 for BTCUSDT (4h)"
        }

    @pytest.mark.asyncio
    async def test_cache_key_includes_timeframe(self, settings):
        candles = self._candles()
        source = FakeCandleSource({"4h": candles, "1h": candles}, price=123.0)
        service = make_service(source, settings)

        await service.divergence_scan("BTCUSDT", timeframe="4h")
        await service.divergence_scan("BTCUSDT", timeframe="1h")
        await service.divergence_scan("BTCUSDT", timeframe="4h")

        assert source.get_candles.await_count == 2

    @pytest.mark.asyncio
    async def test_market_types_cached_separately(self, settings):
        """A crypto scan of a symbol is not served for a forex request."""
        source = FakeCandleSource({"4h": self._candles()}, price=1.1)
        service = make_service(source, settings)

        as_crypto = await service.divergence_scan("EURUSD", market_type="crypto")
        as_forex = await service.divergence_scan("EURUSD", market_type="forex")

        assert (as_crypto["market_type"], as_forex["market_type"]) == ("crypto", "forex")
        assert as_crypto["thresholds"]["min_price_delta_pct"] == 0.8
        assert as_forex["thresholds"]["min_price_delta_pct"] == 0.25
        assert source.get_candles.await_count == 2

        await service.divergence_scan("EURUSD", market_type="forex")
        assert source.get_candles.await_count == 2


class TestMACross:
    """Tests for ma_cross."""

    @pytest.mark.asyncio
    async def test_uptrend(self, settings):
        candles = closes_to_candles([100.0 + i for i in range(260)])
        source = FakeCandleSource({"1h": candles, "4h": candles}, price=359.0)
        service = make_service(source, settings)

        result = await service.ma_cross("BTCUSDT")

        assert result["failed_timeframes"] == ["1d"]
        assert result["crosses"]["1h"]["ma50_200"]["status"] == "Bullish"
        assert result["recent_crosses"] == []
        assert result["trend_confirmation"] == "Bullish trend confirmed"

    @pytest.mark.asyncio
    async def test_no_data(self, settings):
        service = make_service(FakeCandleSource({}), settings)

        result = await service.ma_cross("BTCUSDT")

        assert result["error"] == "Insufficient data for BTCUSDT; ensure sufficient trading history"
        assert result["failed_timeframes"] == ["1h", "4h", "1d"]
