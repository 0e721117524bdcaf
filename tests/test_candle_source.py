"""
Tests for the Binance candle source.

HTTP is never touched: _request is patched with AsyncMock.
"""

import os
import sys
from unittest.mock import AsyncMock, patch

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from structure.candle_source import BinanceCandleSource
from structure.models import Candle
from structure.rate_limiter import reset_weight_budgets


KLINES = [
    [1700000000000, "100.0", "105.0", "99.0", "104.0", "12.5", 1700003599999, "0", 10, "0", "0", "0"],
    [1700003600000, "104.0", "106.0", "103.0", "105.5", "8.0", 1700007199999, "0", 8, "0", "0", "0"],
    [1700007200000, "0", "0", "0", "0", "0", 1700010799999, "0", 0, "0", "0", "0"],
    ["bad"],
]


@pytest.fixture
def source():
    reset_weight_budgets()
    yield BinanceCandleSource()
    reset_weight_budgets()


class TestBinanceCandleSource:
    """Tests for BinanceCandleSource."""

    @pytest.mark.asyncio
    async def test_parses_klines(self, source):
        with patch.object(source, "_request", AsyncMock(return_value=KLINES)) as request:
            candles = await source.get_candles("btc", "1h", limit=4)

        request.assert_awaited_once_with(
            "/api/v3/klines",
            {"symbol": "BTCUSDT", "interval": "1h", "limit": 4},
            weight=1,
        )
        # Zero-price and malformed rows are skipped
        assert candles == [
            Candle(open_time=1700000000000, open=100.0, high=105.0, low=99.0, close=104.0, volume=12.5),
            Candle(open_time=1700003600000, open=104.0, high=106.0, low=103.0, close=105.5, volume=8.0),
        ]

    @pytest.mark.asyncio
    async def test_limit_capped(self, source):
        with patch.object(source, "_request", AsyncMock(return_value=[])) as request:
            await source.get_candles("BTCUSDT", "1d", limit=5000)

        assert request.await_args.args[1]["limit"] == BinanceCandleSource.MAX_LIMIT
        assert request.await_args.kwargs["weight"] == 5

    @pytest.mark.asyncio
    async def test_http_error_gives_empty_list(self, source):
        with patch.object(source, "_request", AsyncMock(return_value=None)):
            assert await source.get_candles("BTCUSDT", "4h") == []

    @pytest.mark.asyncio
    async def test_non_crypto_symbols_have_no_candles(self, source):
        """Forex and stocks get no candles instead of synthesized data."""
        with patch.object(source, "_request", AsyncMock()) as request:
            assert await source.get_candles("EURUSD", "1h") == []
            assert await source.get_candles("AAPL", "1d") == []
            assert await source.get_price("EURUSD") is None

        request.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unsupported_timeframe(self, source):
        with pytest.raises(ValueError):
            await source.get_candles("BTCUSDT", "7m")

    @pytest.mark.asyncio
    async def test_get_price(self, source):
        payload = {"symbol": "ETHUSDT", "price": "2345.67"}
        with patch.object(source, "_request", AsyncMock(return_value=payload)) as request:
            assert await source.get_price("ETH") == pytest.approx(2345.67)

        request.assert_awaited_once_with("/api/v3/ticker/price", {"symbol": "ETHUSDT"}, weight=2)

    @pytest.mark.asyncio
    async def test_get_price_bad_payload(self, source):
        with patch.object(source, "_request", AsyncMock(return_value={"code": -1121})):
            assert await source.get_price("BTCUSDT") is None

    @pytest.mark.asyncio
    async def test_close_without_session(self, source):
        await source.close()
        assert source.session is None

    @pytest.mark.parametrize("limit,weight", [(1, 1), (99, 1), (100, 2), (200, 2), (500, 5), (1000, 5)])
    def test_klines_weight(self, limit, weight):
        assert BinanceCandleSource.klines_weight(limit) == weight

    def test_used_weight_header_syncs_budget(self, source):
        """Weight reported by the server is adopted when above the local count."""
        source._record_used_weight({"X-MBX-USED-WEIGHT-1M": "120"})
        assert source.weight_budget.used_weight == 120

        source._record_used_weight({"X-MBX-USED-WEIGHT-1M": "not-a-number"})
        source._record_used_weight({})
        assert source.weight_budget.used_weight == 120
