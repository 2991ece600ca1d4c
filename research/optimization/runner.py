"""
Multi-symbol optimization runner.

Outer parallelism layer: every symbol is loaded once up front, then
each symbol gets its own optimizer (own random source, own population)
and symbols are optimized in a bounded thread pool. A data failure
aborts only the affected symbol.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Iterable, Optional, Protocol
import structlog

import pandas as pd

from cryptolab.config import BacktestConfig, WalkForwardConfig
from cryptolab.errors import ConfigurationError, CryptoLabError
from cryptolab.models import EvaluationContext, StrategyParameters
from cryptolab.storage.parameter_store import JsonlParameterStore, ParameterRecord
from cryptolab.strategy.registry import StrategySelector
from research.backtesting.engine import BacktestEngine
from research.backtesting.walk_forward import WalkForwardOptimizer, WalkForwardResult

logger = structlog.get_logger(__name__)


class HistoricalDataService(Protocol):
    def query_historical_data(self, symbols: Iterable[str], period: int) -> dict[str, pd.DataFrame]:
        ...


class SymbolOptimizer(Protocol):
    """GeneticOptimizer or MultiStrategyOptimizer."""

    def run(self, context: EvaluationContext) -> Any:
        ...

    def optimize_parameters(self, context: EvaluationContext) -> StrategyParameters:
        ...

    def cancel(self) -> None:
        ...


@dataclass
class SymbolReport:
    """Outcome of one symbol's optimization."""
    symbol: str
    status: str  # "optimized", "failed"
    strategy_name: Optional[str] = None
    parameters: Optional[StrategyParameters] = None
    fitness: Optional[float] = None
    bars_count: int = 0
    validation: Optional[WalkForwardResult] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "status": self.status,
            "strategy_name": self.strategy_name,
            "parameters": self.parameters.to_dict() if self.parameters else None,
            "fitness": self.fitness,
            "bars_count": self.bars_count,
            "validation": self.validation.to_dict() if self.validation else None,
            "error": self.error,
        }


class OptimizationRunner:
    """
    Optimizes a list of symbols and persists the winners.

    Args:
        data_service: Source of historical bars
        optimizer_factory: Builds a fresh optimizer for a symbol
        period: Candle period in minutes
        store: Where winning parameters are appended (optional)
        max_workers: Symbols optimized concurrently
        walk_forward: When set, optimize on the training split and validate
            on the held-out part
        selector: Strategy lookup for walk-forward validation
        backtest_config: Simulation settings for walk-forward validation
    """

    def __init__(
        self,
        data_service: HistoricalDataService,
        optimizer_factory: Callable[[str], SymbolOptimizer],
        period: int = 60,
        store: Optional[JsonlParameterStore] = None,
        max_workers: int = 1,
        walk_forward: Optional[WalkForwardConfig] = None,
        selector: Optional[StrategySelector] = None,
        backtest_config: Optional[BacktestConfig] = None,
    ):
        if max_workers < 1:
            raise ConfigurationError("max_workers must be positive")
        if walk_forward is not None and selector is None:
            raise ConfigurationError("walk-forward validation needs a strategy selector")

        self.data_service = data_service
        self.optimizer_factory = optimizer_factory
        self.period = period
        self.store = store
        self.max_workers = max_workers
        self.walk_forward = walk_forward
        self.selector = selector
        self.backtest_config = backtest_config or BacktestConfig()

        self._active: dict[str, SymbolOptimizer] = {}
        self._lock = Lock()
        self._cancelled = False

        logger.info(
            "optimization_runner_initialized",
            period=period,
            max_workers=max_workers,
            walk_forward=walk_forward is not None,
        )

    def cancel(self) -> None:
        """Stop every running search; best-so-far results are still reported."""
        self._cancelled = True
        with self._lock:
            active = list(self._active.values())
        for optimizer in active:
            optimizer.cancel()
        logger.warning("optimization_run_cancelled", running=len(active))

    def load(self, symbols: Iterable[str]) -> tuple[dict[str, EvaluationContext], list[SymbolReport]]:
        """Read every symbol once; failures become reports instead of contexts."""
        contexts: dict[str, EvaluationContext] = {}
        failures: list[SymbolReport] = []

        for symbol in symbols:
            try:
                bars = self.data_service.query_historical_data([symbol], self.period)[symbol]
            except (CryptoLabError, KeyError) as e:
                logger.error("symbol_data_failed", symbol=symbol, error=str(e))
                failures.append(SymbolReport(symbol=symbol, status="failed", error=str(e)))
                continue
            contexts[symbol] = EvaluationContext(symbol=symbol, period=self.period, bars=bars)

        return contexts, failures

    def run(self, symbols: Iterable[str]) -> list[SymbolReport]:
        """
        Optimize every symbol.

        Returns:
            One report per symbol, in the order given
        """
        symbols = list(dict.fromkeys(symbols))
        contexts, failures = self.load(symbols)
        reports = {r.symbol: r for r in failures}

        logger.info(
            "optimization_run_starting",
            symbols=list(contexts),
            failed_to_load=[r.symbol for r in failures],
        )

        if self.max_workers == 1 or len(contexts) <= 1:
            for symbol, context in contexts.items():
                reports[symbol] = self._optimize_symbol(context)
        else:
            with ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="symbol"
            ) as executor:
                futures = {
                    symbol: executor.submit(self._optimize_symbol, context)
                    for symbol, context in contexts.items()
                }
                for symbol, future in futures.items():
                    reports[symbol] = future.result()

        ordered = [reports[s] for s in symbols]
        logger.info(
            "optimization_run_complete",
            optimized=sum(1 for r in ordered if r.status == "optimized"),
            failed=sum(1 for r in ordered if r.status == "failed"),
        )
        return ordered

    def _optimize_symbol(self, context: EvaluationContext) -> SymbolReport:
        symbol = context.symbol
        optimizer = self.optimizer_factory(symbol)
        with self._lock:
            self._active[symbol] = optimizer
        if self._cancelled:
            optimizer.cancel()

        wf = WalkForwardOptimizer(optimizer, self.walk_forward) if self.walk_forward else None

        try:
            train = wf.split(context)[0] if wf else context
            outcome = optimizer.run(train)

            validation = None
            if wf is not None:
                engine = BacktestEngine(
                    self.selector.get_strategy(outcome.strategy_name),
                    lookback_window=self.backtest_config.lookback_window,
                    adjust_time_frame=self.backtest_config.adjust_time_frame,
                )
                validation = wf.validate(
                    context, engine, outcome.parameters, self.backtest_config.initial_capital
                )
        except Exception as e:
            # One symbol's failure never aborts the others
            logger.error(
                "symbol_optimization_failed",
                symbol=symbol,
                error=str(e),
                error_type=type(e).__name__,
            )
            return SymbolReport(
                symbol=symbol, status="failed", bars_count=len(context), error=str(e)
            )
        finally:
            with self._lock:
                self._active.pop(symbol, None)

        if self.store is not None:
            self.store.save(
                ParameterRecord(
                    symbol=symbol,
                    strategy_name=outcome.strategy_name,
                    parameters=outcome.parameters,
                    fitness=outcome.fitness,
                )
            )

        return SymbolReport(
            symbol=symbol,
            status="optimized",
            strategy_name=outcome.strategy_name,
            parameters=outcome.parameters,
            fitness=outcome.fitness,
            bars_count=len(context),
            validation=validation,
        )
