"""
Fitness functions for the genetic search.

Fitness rewards risk-adjusted return and consistency:
    fitness = sharpe_ratio * (1 + win_rate)

Any exception during an evaluation is absorbed and scored as
PENALTY_FITNESS so one bad individual never aborts a run.
"""

from typing import Sequence
import structlog

import numpy as np

from cryptolab.models import EvaluationContext, StrategyParameters
from research.backtesting.engine import BacktestEngine, BacktestResult

logger = structlog.get_logger(__name__)

PENALTY_FITNESS = -1.0

# Weights of the average and the worst regime in the robust score
AVERAGE_WEIGHT = 0.6
WORST_WEIGHT = 0.4


def score(result: BacktestResult) -> float:
    """Fitness of a single backtest result."""
    value = result.sharpe_ratio * (1.0 + result.win_rate)
    return float(value) if np.isfinite(value) else PENALTY_FITNESS


class FitnessEvaluator:
    """
    Scores parameters on one evaluation context.

    Holds its context, engine and capital explicitly, so concurrent
    evaluations share nothing mutable.

    Args:
        engine: Backtest engine wrapping the strategy under search
        context: Bars to simulate on
        initial_capital: Starting capital of each simulation
    """

    def __init__(
        self,
        engine: BacktestEngine,
        context: EvaluationContext,
        initial_capital: float = 1000.0,
    ):
        self.engine = engine
        self.context = context
        self.initial_capital = initial_capital

    def __call__(self, params: StrategyParameters) -> float:
        try:
            result = self.engine.run_simulation(self.context, params, self.initial_capital)
            return score(result)
        except Exception as e:
            logger.warning(
                "fitness_evaluation_failed",
                symbol=self.context.symbol,
                strategy=self.engine.strategy.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return PENALTY_FITNESS


class RegimeRobustFitness:
    """
    Scores parameters across several market regimes.

    fitness = 0.6 * mean(regime fitness) + 0.4 * min(regime fitness)

    Parameters that shine in one regime and fail in another are pulled
    down by the worst-case term. A failure in any regime scores the
    penalty.

    Args:
        engine: Backtest engine wrapping the strategy under search
        contexts: One context per regime segment
        initial_capital: Starting capital of each simulation
    """

    def __init__(
        self,
        engine: BacktestEngine,
        contexts: Sequence[EvaluationContext],
        initial_capital: float = 1000.0,
    ):
        if not contexts:
            raise ValueError("RegimeRobustFitness needs at least one context")
        self.engine = engine
        self.contexts = list(contexts)
        self.initial_capital = initial_capital

    @property
    def context(self) -> EvaluationContext:
        return self.contexts[0]

    def __call__(self, params: StrategyParameters) -> float:
        scores = []
        for context in self.contexts:
            try:
                result = self.engine.run_simulation(context, params, self.initial_capital)
            except Exception as e:
                logger.warning(
                    "fitness_evaluation_failed",
                    symbol=context.symbol,
                    strategy=self.engine.strategy.name,
                    regime=context.metadata.get("regime_type"),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return PENALTY_FITNESS
            scores.append(score(result))

        return AVERAGE_WEIGHT * float(np.mean(scores)) + WORST_WEIGHT * float(min(scores))
