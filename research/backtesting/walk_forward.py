"""
Walk-forward optimization.

Parameters are searched on the chronologically earlier part of the data
only. The later part is never seen during the search and is kept for
out-of-sample validation.

Protocol:
- Train on the first 70% of bars (by position)
- Validate on the remaining 30%
- Report in-sample vs out-of-sample degradation
"""

from dataclasses import dataclass
from typing import Optional, Protocol
import structlog

from cryptolab.config import WalkForwardConfig
from cryptolab.errors import ConfigurationError, DataError
from cryptolab.models import EvaluationContext, StrategyParameters
from research.backtesting.engine import BacktestEngine, BacktestResult

logger = structlog.get_logger(__name__)


class ParameterOptimizer(Protocol):
    """Anything that turns an evaluation context into parameters."""

    def optimize_parameters(self, context: EvaluationContext) -> StrategyParameters:
        ...


@dataclass(frozen=True)
class WalkForwardResult:
    """In-sample vs out-of-sample results of one parameter set."""
    symbol: str
    train_bars: int
    test_bars: int
    train_period: str
    test_period: str

    in_sample: BacktestResult

    # Out-of-sample results (never seen by the search)
    out_of_sample: BacktestResult

    # How much worse the out-of-sample Sharpe is than the in-sample Sharpe
    degradation: float

    passed: bool

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "train_bars": self.train_bars,
            "test_bars": self.test_bars,
            "train_period": self.train_period,
            "test_period": self.test_period,
            "in_sample": self.in_sample.to_dict(),
            "out_of_sample": self.out_of_sample.to_dict(),
            "degradation": self.degradation,
            "passed": self.passed,
        }


def _period_label(context: EvaluationContext) -> str:
    if len(context) == 0:
        return "empty"
    timestamps = context.bars["timestamp"]
    return f"{timestamps.iloc[0]} to {timestamps.iloc[-1]}"


class WalkForwardOptimizer:
    """
    Wraps an optimizer so it only ever sees the training part of the data.

    Args:
        optimizer: Optimizer run on the training part (None when only validating)
        config: Split fraction and validation thresholds
    """

    def __init__(
        self,
        optimizer: Optional[ParameterOptimizer] = None,
        config: Optional[WalkForwardConfig] = None,
    ):
        self.optimizer = optimizer
        self.config = config or WalkForwardConfig()

        logger.info(
            "walk_forward_optimizer_initialized",
            train_fraction=self.config.train_fraction,
        )

    def split(self, context: EvaluationContext) -> tuple[EvaluationContext, EvaluationContext]:
        """
        Chronological split into (train, test) contexts.

        The first int(len * train_fraction) bars train; the rest test.
        Both keep the parent's symbol and period.
        """
        bars = context.bars
        cut = int(len(bars) * self.config.train_fraction)

        train = context.with_bars(bars.iloc[:cut].reset_index(drop=True))
        test = context.with_bars(bars.iloc[cut:].reset_index(drop=True))
        return train, test

    def optimize_parameters(self, context: EvaluationContext) -> StrategyParameters:
        """Optimize on the training part only."""
        if self.optimizer is None:
            raise ConfigurationError("WalkForwardOptimizer has no optimizer to train")

        train, test = self.split(context)

        logger.info(
            "walk_forward_training",
            symbol=context.symbol,
            train_bars=len(train),
            test_bars=len(test),
            train_period=_period_label(train),
        )

        return self.optimizer.optimize_parameters(train)

    def validate(
        self,
        context: EvaluationContext,
        engine: BacktestEngine,
        params: StrategyParameters,
        initial_capital: float = 1000.0,
    ) -> WalkForwardResult:
        """
        Compare parameters on the training and out-of-sample parts.

        Args:
            context: Full series (split the same way as during optimization)
            engine: Engine wrapping the strategy the parameters belong to
            params: Parameters to validate
            initial_capital: Starting capital of both simulations

        Returns:
            WalkForwardResult; passes when the out-of-sample Sharpe and
            drawdown are within the configured limits
        """
        train, test = self.split(context)
        if len(test) == 0:
            raise DataError(f"No out-of-sample bars for {context.symbol}")

        in_sample = engine.run_simulation(train, params, initial_capital)
        out_of_sample = engine.run_simulation(test, params, initial_capital)

        degradation = in_sample.sharpe_ratio - out_of_sample.sharpe_ratio
        passed = (
            out_of_sample.sharpe_ratio >= self.config.min_oos_sharpe
            and out_of_sample.max_drawdown_percent <= self.config.max_oos_drawdown_percent
        )

        result = WalkForwardResult(
            symbol=context.symbol,
            train_bars=len(train),
            test_bars=len(test),
            train_period=_period_label(train),
            test_period=_period_label(test),
            in_sample=in_sample,
            out_of_sample=out_of_sample,
            degradation=degradation,
            passed=passed,
        )

        logger.info(
            "walk_forward_validation_complete",
            symbol=context.symbol,
            is_sharpe=in_sample.sharpe_ratio,
            oos_sharpe=out_of_sample.sharpe_ratio,
            oos_max_dd=out_of_sample.max_drawdown_percent,
            degradation=degradation,
            passed=passed,
        )
        return result
