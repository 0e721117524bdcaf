"""
Candle Sources.

CandleSource is the interface the analysis service consumes:
- get_candles(symbol, timeframe, limit) -> List[Candle]; empty list when the
  provider has no data, exceptions only for transport faults
- get_price(symbol) -> Optional[float]

BinanceCandleSource implements it on top of the Binance Spot REST API.
Forex and stock symbols get no candles: nothing is synthesized when a real
historical feed is unavailable.
"""

import asyncio
from typing import Dict, List, Optional, Protocol

import aiohttp
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from structure.market import detect_market_type, normalize_crypto_symbol
from structure.models import Candle, MarketType
from structure.rate_limiter import DEFAULT_WEIGHT_LIMIT, DEFAULT_WINDOW_SECONDS, get_weight_budget

logger = structlog.get_logger()


class CandleSource(Protocol):
    """Provider of OHLCV candles and last prices."""

    async def get_candles(self, symbol: str, timeframe: str, limit: int) -> List[Candle]:
        ...

    async def get_price(self, symbol: str) -> Optional[float]:
        ...


class BinanceCandleSource:
    """
    Binance Spot candle source.

    API: https://api.binance.com/api/v3/klines
    """

    BASE_URL = "https://api.binance.com"

    SUPPORTED_TIMEFRAMES = frozenset({
        "1m", "3m", "5m", "15m", "30m",
        "1h", "2h", "4h", "6h", "8h", "12h",
        "1d", "3d", "1w", "1M",
    })

    MAX_LIMIT = 1000

    # Request weights (GET /api/v3/klines by limit, GET /api/v3/ticker/price per symbol)
    KLINES_WEIGHTS = ((100, 1), (500, 2), (1000, 5))
    TICKER_PRICE_WEIGHT = 2
    USED_WEIGHT_HEADER = "X-MBX-USED-WEIGHT-1M"

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 10.0,
        weight_limit: int = DEFAULT_WEIGHT_LIMIT,
        weight_window: float = DEFAULT_WINDOW_SECONDS,
    ):
        """
        Initialize Binance candle source.

        Args:
            base_url: API base URL (default https://api.binance.com)
            timeout: Request timeout in seconds
            weight_limit: Request weight allowed per window (shared per process)
            weight_window: Weight window in seconds
        """
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.weight_budget = get_weight_budget("binance", weight_limit, weight_window)
        self.session: Optional[aiohttp.ClientSession] = None

    async def _ensure_session(self):
        """Ensure aiohttp session exists."""
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self):
        """Close HTTP session."""
        if self.session and not self.session.closed:
            await self.session.close()

    @classmethod
    def klines_weight(cls, limit: int) -> int:
        """Request weight of a klines call for the given limit."""
        for upper, weight in cls.KLINES_WEIGHTS:
            if limit < upper:
                return weight
        return cls.KLINES_WEIGHTS[-1][1]

    def _record_used_weight(self, headers) -> None:
        raw = headers.get(self.USED_WEIGHT_HEADER)
        if raw is None:
            return
        try:
            self.weight_budget.sync(int(raw))
        except ValueError:
            logger.debug("Unparseable used weight header", value=raw)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((aiohttp.ClientError, asyncio.TimeoutError)),
        reraise=True,
    )
    async def _request(self, endpoint: str, params: Dict, weight: int = 1) -> Optional[object]:
        """
        Make a weight-budgeted GET request.

        Returns:
            Decoded JSON, or None for non-200 responses
        """
        await self.weight_budget.acquire(weight)
        await self._ensure_session()

        url = f"{self.base_url}{endpoint}"
        async with self.session.get(url, params=params) as response:
            self._record_used_weight(response.headers)
            if response.status != 200:
                logger.warning(
                    "Binance HTTP error",
                    endpoint=endpoint,
                    status=response.status,
                    symbol=params.get("symbol"),
                )
                return None
            return await response.json()

    def _resolve_symbol(self, symbol: str) -> Optional[str]:
        market_type = detect_market_type(symbol)
        if market_type is not MarketType.CRYPTO:
            logger.info(
                "No real historical data for market",
                symbol=symbol,
                market_type=market_type.value,
            )
            return None
        return normalize_crypto_symbol(symbol)

    async def get_candles(self, symbol: str, timeframe: str, limit: int = 200) -> List[Candle]:
        """
        Fetch candles, oldest first.

        Args:
            symbol: Symbol (e.g., "BTCUSDT", "btc", "ETH/BTC")
            timeframe: Binance interval ("5m", "1h", "4h", "1d", ...)
            limit: Number of candles (max 1000)

        Returns:
            List[Candle]; empty when the symbol/timeframe has no data
        """
        if timeframe not in self.SUPPORTED_TIMEFRAMES:
            raise ValueError(f"Unsupported timeframe: {timeframe}")

        pair = self._resolve_symbol(symbol)
        if pair is None:
            return []

        limit = min(limit, self.MAX_LIMIT)
        data = await self._request(
            "/api/v3/klines",
            {"symbol": pair, "interval": timeframe, "limit": limit},
            weight=self.klines_weight(limit),
        )
        if not data or not isinstance(data, list):
            logger.warning("No candles returned", symbol=pair, timeframe=timeframe)
            return []

        candles = []
        for row in data:
            try:
                candle = Candle.from_binance(row)
            except (IndexError, TypeError, ValueError) as e:
                logger.warning("Failed to parse candle", symbol=pair, error=str(e))
                continue
            if min(candle.open, candle.high, candle.low, candle.close) <= 0:
                continue
            candles.append(candle)

        logger.debug("Fetched candles", symbol=pair, timeframe=timeframe, count=len(candles))
        return candles

    async def get_price(self, symbol: str) -> Optional[float]:
        """
        Last traded price.

        API: https://api.binance.com/api/v3/ticker/price
        """
        pair = self._resolve_symbol(symbol)
        if pair is None:
            return None

        data = await self._request(
            "/api/v3/ticker/price",
            {"symbol": pair},
            weight=self.TICKER_PRICE_WEIGHT,
        )
        if not data or not isinstance(data, dict):
            return None

        try:
            price = float(data["price"])
        except (KeyError, TypeError, ValueError):
            logger.warning("Unexpected ticker payload", symbol=pair)
            return None
        return price if price > 0 else None
