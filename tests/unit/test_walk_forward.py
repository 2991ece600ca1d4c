"""
Tests for walk-forward optimization.

The search must never see the held-out bars.
"""

import numpy as np
import pytest

from cryptolab.config import WalkForwardConfig
from cryptolab.errors import ConfigurationError, DataError
from cryptolab.models import StrategyParameters
from research.backtesting.engine import BacktestEngine
from research.backtesting.walk_forward import WalkForwardOptimizer

from conftest import NeverBuyStrategy, ScriptedStrategy


class RecordingOptimizer:
    """Returns fixed parameters and remembers what it was given."""

    def __init__(self):
        self.contexts = []

    def optimize_parameters(self, context):
        self.contexts.append(context)
        return StrategyParameters(minimum_candles=0)


class TestSplit:
    """Chronological train/test split."""

    def test_seventy_thirty_by_position(self, make_context):
        context = make_context(np.arange(1, 101, dtype=float))

        train, test = WalkForwardOptimizer(RecordingOptimizer()).split(context)

        assert len(train) == 70
        assert len(test) == 30
        assert train.bars["close"].iloc[-1] == 70.0
        assert test.bars["close"].iloc[0] == 71.0
        assert test.bars.index[0] == 0

    def test_split_rounds_down(self, make_context):
        train, test = WalkForwardOptimizer(RecordingOptimizer()).split(
            make_context(np.ones(15))
        )

        assert len(train) == 10
        assert len(test) == 5

    def test_split_keeps_symbol_and_period(self, make_context):
        context = make_context(np.ones(20), symbol="ETHUSD", period=15)

        train, test = WalkForwardOptimizer().split(context)

        assert (train.symbol, train.period) == ("ETHUSD", 15)
        assert (test.symbol, test.period) == ("ETHUSD", 15)

    def test_invalid_fraction(self):
        with pytest.raises(ConfigurationError):
            WalkForwardConfig(train_fraction=1.0)


class TestOptimizeParameters:
    """Delegation to the wrapped optimizer."""

    def test_optimizer_only_sees_training_bars(self, make_context):
        optimizer = RecordingOptimizer()
        context = make_context(np.arange(1, 101, dtype=float))

        params = WalkForwardOptimizer(optimizer).optimize_parameters(context)

        assert params == StrategyParameters(minimum_candles=0)
        assert len(optimizer.contexts) == 1
        assert optimizer.contexts[0].bars["close"].max() == 70.0

    def test_without_optimizer(self, make_context):
        with pytest.raises(ConfigurationError):
            WalkForwardOptimizer().optimize_parameters(make_context(np.ones(10)))


class TestValidate:
    """In-sample vs out-of-sample comparison."""

    def test_no_trades_passes_default_thresholds(self, make_context, plain_params):
        context = make_context(np.full(100, 100.0))

        result = WalkForwardOptimizer().validate(
            context, BacktestEngine(NeverBuyStrategy()), plain_params
        )

        assert result.train_bars == 70
        assert result.test_bars == 30
        assert result.degradation == 0.0
        assert result.passed is True
        assert result.out_of_sample.ending_capital == 1000.0

    def test_large_out_of_sample_drawdown_fails(self, make_context, plain_params):
        """Buy at the start of the test part and ride a 50% fall."""
        closes = np.concatenate([np.full(70, 100.0), np.linspace(100.0, 50.0, 30)])
        engine = BacktestEngine(ScriptedStrategy(buy_at={0}))

        result = WalkForwardOptimizer().validate(make_context(closes), engine, plain_params)

        assert result.out_of_sample.max_drawdown_percent == pytest.approx(50.0)
        assert result.passed is False

    def test_empty_test_part(self, make_context, plain_params):
        with pytest.raises(DataError):
            WalkForwardOptimizer().validate(
                make_context([]), BacktestEngine(NeverBuyStrategy()), plain_params
            )

    def test_result_serializes(self, make_context, plain_params):
        result = WalkForwardOptimizer().validate(
            make_context(np.full(20, 100.0)), BacktestEngine(NeverBuyStrategy()), plain_params
        )

        d = result.to_dict()
        assert d["passed"] is True
        assert d["out_of_sample"]["total_trades"] == 0
