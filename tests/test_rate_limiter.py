"""
Tests for the request weight budget.
"""

import os
import sys
from unittest.mock import AsyncMock, patch

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from structure.rate_limiter import WeightBudget, get_weight_budget, reset_weight_budgets


class FakeClock:
    """Manually advanced time source."""

    def __init__(self):
        self.now = 500.0

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def budget(clock):
    return WeightBudget(max_weight=10, window=60.0, clock=clock)


class TestWeightBudget:
    """Tests for WeightBudget."""

    def test_invalid_limits(self):
        with pytest.raises(ValueError):
            WeightBudget(max_weight=0)
        with pytest.raises(ValueError):
            WeightBudget(max_weight=10, window=0)

    @pytest.mark.asyncio
    async def test_within_budget_does_not_wait(self, budget, clock):
        with patch("structure.rate_limiter.asyncio.sleep", AsyncMock(side_effect=clock.sleep)) as sleep:
            await budget.acquire(5)
            await budget.acquire(5)

        sleep.assert_not_awaited()
        assert budget.used_weight == 10

    @pytest.mark.asyncio
    async def test_waits_for_oldest_weight_to_expire(self, budget, clock):
        """An overrunning request sleeps until the first spend leaves the window."""
        with patch("structure.rate_limiter.asyncio.sleep", AsyncMock(side_effect=clock.sleep)) as sleep:
            await budget.acquire(6)
            clock.now += 20
            await budget.acquire(4)
            await budget.acquire(2)

        sleep.assert_awaited_once_with(40.0)
        # The 6 from t=500 expired at t=560; 4 + 2 remain
        assert budget.used_weight == 6

    @pytest.mark.asyncio
    async def test_weight_above_limit_rejected(self, budget):
        with pytest.raises(ValueError):
            await budget.acquire(11)
        with pytest.raises(ValueError):
            await budget.acquire(0)

    def test_sync_raises_to_server_figure(self, budget):
        budget.sync(7)
        assert budget.used_weight == 7

        # Lower or missing server figures never reduce the local count
        budget.sync(3)
        budget.sync(None)
        assert budget.used_weight == 7

    def test_window_expiry(self, budget, clock):
        budget.sync(4)
        clock.now += 60
        assert budget.used_weight == 0


class TestSharedBudgets:
    """Tests for the per-provider registry."""

    def setup_method(self):
        reset_weight_budgets()

    def teardown_method(self):
        reset_weight_budgets()

    def test_same_provider_shares_budget(self):
        first = get_weight_budget("binance", 6000)
        assert get_weight_budget("binance", 1200) is first
        assert first.max_weight == 6000
        assert get_weight_budget("other") is not first

    def test_reset_drops_budgets(self):
        first = get_weight_budget("binance")
        reset_weight_budgets()
        assert get_weight_budget("binance") is not first
