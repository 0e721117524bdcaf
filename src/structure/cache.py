"""
Serpo Structure - Analysis Results Cache

Caches analysis results (support/resistance, RSI heatmap, divergences)
for a few minutes to avoid refetching candles for every request.

Features:
- Per-entry TTL
- get_or_compute memoization for async computations
- Hit/miss statistics
- Automatic expiration
"""

import copy
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import structlog

logger = structlog.get_logger()

# Cache constants
DEFAULT_TTL_SECONDS = 300  # 5 minutes


def make_cache_key(
    kind: str,
    symbol: str,
    timeframe: Optional[str] = None,
    market_type: Optional[str] = None,
) -> str:
    """
    Build cache key from analysis kind, market, symbol and optional timeframe.

    Examples:
        make_cache_key("sr", "BTCUSDT") -> "sr_BTCUSDT"
        make_cache_key("sr", "BTCUSDT", market_type="crypto") -> "sr_crypto_BTCUSDT"
        make_cache_key("divergence", "EURUSD", "4h", "forex") -> "divergence_forex_EURUSD_4h"
    """
    key = kind
    if market_type:
        key = f"{key}_{getattr(market_type, 'value', market_type)}"
    key = f"{key}_{symbol.upper()}"
    if timeframe:
        key = f"{key}_{timeframe}"
    return key


class AnalysisCache:
    """
    In-memory TTL cache for analysis results.

    Concurrent callers that miss at the same time may both compute; the last
    result written wins. Values are copied on the way in and on the way out,
    so callers may mutate what they receive without touching the stored entry.
    """

    def __init__(
        self,
        default_ttl: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize analysis cache.

        Args:
            default_ttl: TTL used when get_or_compute is called without one
            clock: Time source in seconds (monotonic by default)
        """
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._default_ttl = default_ttl
        self._clock = clock
        self._hits = 0
        self._misses = 0

        logger.info(
            "Analysis cache initialized",
            default_ttl=default_ttl,
        )

    def get(self, key: str) -> Optional[Any]:
        """
        Get cached value.

        Returns:
            Copy of the cached value, or None if not cached/expired
        """
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            logger.debug("Cache miss", key=key)
            return None

        value, expires_at = entry
        now = self._clock()
        if now >= expires_at:
            del self._entries[key]
            self._misses += 1
            logger.debug("Cache expired", key=key)
            return None

        self._hits += 1
        logger.debug("Cache hit", key=key, ttl_left=int(expires_at - now))
        return copy.deepcopy(value)

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Store value for ttl seconds."""
        ttl = self._default_ttl if ttl is None else ttl
        self._entries[key] = (copy.deepcopy(value), self._clock() + ttl)
        logger.debug("Cache set", key=key, ttl=ttl)

    async def get_or_compute(
        self,
        key: str,
        ttl: Optional[int],
        compute: Callable[[], Awaitable[Any]],
        should_cache: Optional[Callable[[Any], bool]] = None,
    ) -> Any:
        """
        Return the cached value or compute, store and return a fresh one.

        Args:
            key: Cache key (see make_cache_key)
            ttl: Freshness window in seconds (default TTL when None)
            compute: Coroutine function producing the value
            should_cache: Predicate deciding whether a computed value is stored

        Returns:
            Cached or freshly computed value
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        value = await compute()
        if should_cache is None or should_cache(value):
            self.set(key, value, ttl)
        else:
            logger.debug("Result not cached", key=key)
        return value

    def invalidate(self, key: Optional[str] = None) -> None:
        """
        Invalidate one key or the whole cache.

        Args:
            key: Key to invalidate, or None to clear all
        """
        if key is None:
            count = len(self._entries)
            self._entries.clear()
            logger.info("Cache cleared", removed_count=count)
        elif key in self._entries:
            del self._entries[key]
            logger.debug("Cache invalidated", key=key)

    def cleanup_expired(self) -> int:
        """
        Remove expired entries.

        Returns:
            int: Number of entries removed
        """
        now = self._clock()
        expired_keys = [
            key for key, (_, expires_at) in self._entries.items()
            if now >= expires_at
        ]

        for key in expired_keys:
            del self._entries[key]

        if expired_keys:
            logger.debug("Expired cache entries removed", count=len(expired_keys))

        return len(expired_keys)

    def get_stats(self) -> dict:
        """
        Get cache statistics.

        Returns:
            dict: hits, misses, hit_rate, size
        """
        total = self._hits + self._misses
        hit_rate = (self._hits / total * 100) if total > 0 else 0

        return {
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": f"{hit_rate:.1f}%",
            "size": len(self._entries),
        }


# Global analysis cache instance
_analysis_cache: Optional[AnalysisCache] = None


def get_analysis_cache() -> AnalysisCache:
    """
    Get the global analysis cache instance.

    Creates cache on first access (lazy initialization).
    """
    global _analysis_cache

    if _analysis_cache is None:
        _analysis_cache = AnalysisCache()

    return _analysis_cache


def reset_analysis_cache() -> None:
    """
    Reset the global analysis cache instance.

    Used for testing or re-initialization.
    """
    global _analysis_cache
    _analysis_cache = None
