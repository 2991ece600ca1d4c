"""
Pytest configuration and fixtures.

Shared fixtures for all tests: seeded synthetic bar frames, evaluation
contexts, and small deterministic strategies whose trades are known in
advance.
"""

import pytest
import os
from pathlib import Path
import tempfile
import shutil

import numpy as np
import pandas as pd

from cryptolab.errors import SimulationError
from cryptolab.indicators.technical import rsi
from cryptolab.models import EvaluationContext, StrategyParameters
from cryptolab.strategy.base import Strategy

# Set test environment
os.environ["ENVIRONMENT"] = "test"


def build_bars(closes, start="2024-01-01", freq="h") -> pd.DataFrame:
    """Bar frame around a close series; high/low bracket the close by 0.5%."""
    closes = np.asarray(closes, dtype=float)
    timestamps = pd.date_range(start=start, periods=len(closes), freq=freq, tz="UTC")
    return pd.DataFrame({
        "timestamp": timestamps,
        "open": closes,
        "high": closes * 1.005,
        "low": closes * 0.995,
        "close": closes,
        "volume": np.full(len(closes), 1000.0),
    })


class ScriptedStrategy(Strategy):
    """Buys and sells at fixed bar indices."""

    def __init__(self, buy_at=(), sell_at=(), name="scripted"):
        super().__init__(name)
        self.buy_at = set(buy_at)
        self.sell_at = set(sell_at)

    def should_buy(self, bars, params):
        return len(bars) - 1 in self.buy_at

    def should_sell(self, bars, entry_price, params):
        return len(bars) - 1 in self.sell_at


class AlwaysBuyStrategy(Strategy):
    def __init__(self):
        super().__init__("always_buy")

    def should_buy(self, bars, params):
        return True

    def should_sell(self, bars, entry_price, params):
        return False


class NeverBuyStrategy(Strategy):
    def __init__(self):
        super().__init__("never_buy")

    def should_buy(self, bars, params):
        return False

    def should_sell(self, bars, entry_price, params):
        return False


class FailingStrategy(Strategy):
    """Raises on every decision."""

    def __init__(self):
        super().__init__("failing")

    def should_buy(self, bars, params):
        raise SimulationError("indicator exploded")

    def should_sell(self, bars, entry_price, params):
        raise SimulationError("indicator exploded")


class RsiThresholdStrategy(Strategy):
    """Buy below rsi_buy_threshold, sell above rsi_sell_threshold."""

    def __init__(self, name="rsi_threshold"):
        super().__init__(name)

    def should_buy(self, bars, params):
        return rsi(bars["close"], params.rsi_period) < params.rsi_buy_threshold

    def should_sell(self, bars, entry_price, params):
        return rsi(bars["close"], params.rsi_period) > params.rsi_sell_threshold

    def get_strategy_parameters(self, symbol=None):
        return StrategyParameters(minimum_candles=30)


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path)


@pytest.fixture
def bar_factory():
    """Build a bar frame from a close series."""
    return build_bars


@pytest.fixture
def make_context():
    """Build an EvaluationContext from closes or a bar frame."""
    def _make(data, symbol="XBTUSD", period=60, metadata=None):
        bars = data if isinstance(data, pd.DataFrame) else build_bars(data)
        return EvaluationContext(symbol=symbol, period=period, bars=bars, metadata=metadata or {})
    return _make


@pytest.fixture
def sample_bars():
    """600 hourly bars of a seeded oscillating random walk."""
    rng = np.random.default_rng(42)
    n = 600
    cycle = 8.0 * np.sin(np.arange(n) / 15.0)
    noise = np.cumsum(rng.normal(0.0, 0.6, n))
    closes = 100.0 + cycle + noise
    return build_bars(closes)


@pytest.fixture
def sample_context(sample_bars):
    return EvaluationContext(symbol="XBTUSD", period=60, bars=sample_bars)


@pytest.fixture
def plain_params():
    """Parameters with no warm-up so decisions start at bar 0."""
    return StrategyParameters(minimum_candles=0)


@pytest.fixture
def regime_bars():
    """
    Three clearly different 5-minute regimes back to back.

    Calm uptrend, then violent ranging, then calm downtrend; each long
    enough to survive the default minimum regime length.
    """
    rng = np.random.default_rng(7)
    length = 20_000

    up = 100.0 * np.exp(np.linspace(0.0, 0.6, length)) * (1 + rng.normal(0, 0.0005, length))
    base = up[-1]
    violent = base * (1 + 0.08 * np.sin(np.arange(length) / 40.0) + rng.normal(0, 0.01, length))
    down = violent[-1] * np.exp(np.linspace(0.0, -0.6, length))
    down = down * (1 + rng.normal(0, 0.0005, length))

    closes = np.concatenate([up, violent, down])
    return build_bars(closes, freq="5min")
