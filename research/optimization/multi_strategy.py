"""
Multi-strategy selection.

Runs the genetic search once per candidate strategy and keeps the
strategy/parameter pair whose parameters score best on the full
evaluation context. The winner is recorded in the StrategySelector so
downstream persistence and live trading pick it up by coin.
"""

from dataclasses import dataclass, field, replace
from threading import Lock
from typing import Optional, Sequence
import structlog

from cryptolab.config import BacktestConfig, GeneticConfig
from cryptolab.errors import ConfigurationError
from cryptolab.models import EvaluationContext, StrategyParameters
from cryptolab.regime.segmenter import RegimeSegmenter
from cryptolab.strategy.registry import StrategySelector
from research.optimization.codec import ParameterCodec, get_codec
from research.optimization.fitness import FitnessEvaluator
from research.optimization.genetic import GeneticOptimizer, OptimizationResult

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StrategySelection:
    """Winning strategy for one symbol."""
    symbol: str
    strategy_name: str
    parameters: StrategyParameters
    fitness: float

    # Full-context fitness of every candidate, in evaluation order
    candidates: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "strategy_name": self.strategy_name,
            "parameters": self.parameters.to_dict(),
            "fitness": self.fitness,
            "candidates": dict(self.candidates),
        }


class MultiStrategyOptimizer:
    """
    Picks the best strategy per symbol.

    Args:
        selector: Registry holding the candidate strategies
        strategy_names: Candidates to try (defaults to every registered strategy)
        config: Genetic search settings; candidate i searches with seed + i
        backtest_config: Simulation settings
        segmenter: Passed to each search for regime-robust fitness
        codec: Genotype layout shared by every candidate (defaults to the
            full multi_strategy codec for the symbol)

    Raises:
        ConfigurationError: If there are no candidates or one is not registered
    """

    def __init__(
        self,
        selector: StrategySelector,
        strategy_names: Optional[Sequence[str]] = None,
        config: Optional[GeneticConfig] = None,
        backtest_config: Optional[BacktestConfig] = None,
        segmenter: Optional[RegimeSegmenter] = None,
        codec: Optional[ParameterCodec] = None,
    ):
        self.selector = selector
        self.strategy_names = list(strategy_names or selector.names())
        if not self.strategy_names:
            raise ConfigurationError("Multi-strategy optimization needs at least one strategy")
        for name in self.strategy_names:
            selector.get_strategy(name)

        self.config = config or GeneticConfig()
        self.backtest_config = backtest_config or BacktestConfig(
            initial_capital=self.config.initial_capital
        )
        self.segmenter = segmenter
        self.codec = codec

        self._selections: dict[str, StrategySelection] = {}
        self._lock = Lock()
        self._active: Optional[GeneticOptimizer] = None
        self._cancelled = False

        logger.info(
            "multi_strategy_optimizer_initialized",
            candidates=self.strategy_names,
        )

    def cancel(self) -> None:
        """Stop the running search and skip the remaining candidates."""
        self._cancelled = True
        active = self._active
        if active is not None:
            active.cancel()

    def _candidate_config(self, index: int) -> GeneticConfig:
        if self.config.seed is None:
            return self.config
        return replace(self.config, seed=self.config.seed + index)

    def codec_for(self, symbol: str) -> ParameterCodec:
        """Genotype layout every candidate is searched with for `symbol`."""
        return self.codec or get_codec("multi_strategy", symbol)

    def select(self, context: EvaluationContext) -> StrategySelection:
        """
        Optimize every candidate and return the winner.

        Each candidate's best parameters are re-scored on the full context
        with the plain single-context fitness, so candidates searched with
        regime-robust fitness are compared on equal terms. Ties keep the
        earlier candidate.
        """
        best: Optional[OptimizationResult] = None
        best_fitness = float("-inf")
        candidates: dict[str, float] = {}
        codec = self.codec_for(context.symbol)

        for index, name in enumerate(self.strategy_names):
            if self._cancelled and best is not None:
                logger.info("multi_strategy_cancelled", symbol=context.symbol, skipped=name)
                break

            strategy = self.selector.get_strategy(name)
            optimizer = GeneticOptimizer(
                strategy,
                codec=codec,
                config=self._candidate_config(index),
                backtest_config=self.backtest_config,
                segmenter=self.segmenter,
            )
            self._active = optimizer
            if self._cancelled:
                optimizer.cancel()

            try:
                result = optimizer.run(context)
            finally:
                self._active = None

            evaluator = FitnessEvaluator(
                optimizer.engine, context, self.backtest_config.initial_capital
            )
            fitness = evaluator(result.parameters)
            candidates[name] = fitness

            logger.info(
                "strategy_candidate_evaluated",
                symbol=context.symbol,
                strategy=name,
                search_fitness=result.fitness,
                full_context_fitness=fitness,
            )

            if best is None or fitness > best_fitness:
                best = result
                best_fitness = fitness

        selection = StrategySelection(
            symbol=context.symbol,
            strategy_name=best.strategy_name,
            parameters=best.parameters,
            fitness=best_fitness,
            candidates=candidates,
        )

        self.selector.set_best_strategy_for_coin(context.symbol, selection.strategy_name)
        with self._lock:
            self._selections[context.symbol] = selection

        logger.info(
            "best_strategy_selected",
            symbol=context.symbol,
            strategy=selection.strategy_name,
            fitness=selection.fitness,
        )
        return selection

    def run(self, context: EvaluationContext) -> StrategySelection:
        """Same as select; lets the runner drive either optimizer."""
        return self.select(context)

    def optimize_parameters(self, context: EvaluationContext) -> StrategyParameters:
        """Winning parameters for the context's symbol."""
        return self.select(context).parameters

    def best_strategy_name(self, symbol: str) -> str:
        """Name of the strategy selected for `symbol` (the selector default if none)."""
        return self.selector.get_best_strategy_for_coin(symbol).name

    def best_results_report(self) -> dict[str, dict]:
        """Per-symbol summary of every selection made so far."""
        with self._lock:
            return {
                symbol: selection.to_dict()
                for symbol, selection in self._selections.items()
            }
