"""
Tests for application settings.
"""

import os
import sys

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from config import Settings


def test_defaults():
    s = Settings()

    assert s.sr_timeframes == ["15m", "1h", "4h", "1d", "1w", "1M"]
    assert s.sr_pivot_window == 10
    assert s.rsi_cache_ttl == 180
    assert s.binance_weight_limit == 6000


def test_timeframes_from_comma_separated_env(monkeypatch):
    monkeypatch.setenv("SR_TIMEFRAMES", "1h, 4h,1d")

    assert Settings().sr_timeframes == ["1h", "4h", "1d"]


def test_numeric_env_overrides(monkeypatch):
    monkeypatch.setenv("DIVERGENCE_MIN_RSI_DELTA", "4.5")
    monkeypatch.setenv("BINANCE_WEIGHT_LIMIT", "1200")

    s = Settings()
    assert s.divergence_min_rsi_delta == 4.5
    assert s.binance_weight_limit == 1200


def test_timeframes_passed_as_list():
    assert Settings(sr_timeframes=["4h"]).sr_timeframes == ["4h"]
