"""
Backtesting engine.

Replays a strategy bar by bar over one evaluation context. The book is
either flat or fully invested in a single long position; there is no
partial sizing and no fee model. At bar i the strategy only ever sees
bars[: i + 1], so no decision can peek at the future.
"""

from dataclasses import dataclass, asdict
from typing import Optional
import structlog

import numpy as np

from cryptolab.models import EvaluationContext, StrategyParameters
from cryptolab.strategy.base import Strategy

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class BacktestResult:
    """Results from a backtest run."""
    total_profit_percent: float
    total_trades: int
    sharpe_ratio: float
    max_drawdown_percent: float
    win_rate: float
    ending_capital: float

    # Percent return of each completed trade, in order
    trade_returns: tuple[float, ...] = ()

    @classmethod
    def empty(cls, initial_capital: float) -> "BacktestResult":
        """Result of a simulation that never ran."""
        return cls(
            total_profit_percent=0.0,
            total_trades=0,
            sharpe_ratio=0.0,
            max_drawdown_percent=0.0,
            win_rate=0.0,
            ending_capital=initial_capital,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for reports."""
        d = asdict(self)
        d["trade_returns"] = list(self.trade_returns)
        return d


class BacktestEngine:
    """
    Single-position, long-only bar replay.

    Key principles:
    - Decisions see only the prefix ending at the current bar
    - Flat: only the buy rule is consulted; in position: only the sell rule
    - Equity is marked to market at every simulated bar
    - A position still open at the end is valued, not closed

    Args:
        strategy: Strategy whose decisions are replayed
        lookback_window: If set, strategies see at most this many trailing bars
        adjust_time_frame: Scale hourly-tuned periods to the context's candle period
    """

    def __init__(
        self,
        strategy: Strategy,
        lookback_window: Optional[int] = None,
        adjust_time_frame: bool = True,
    ):
        if lookback_window is not None and lookback_window < 1:
            raise ValueError("lookback_window must be positive")

        self.strategy = strategy
        self.lookback_window = lookback_window
        self.adjust_time_frame = adjust_time_frame

        logger.debug(
            "backtest_engine_initialized",
            strategy=strategy.name,
            lookback_window=lookback_window,
        )

    def run_simulation(
        self,
        context: EvaluationContext,
        params: StrategyParameters,
        initial_capital: float,
    ) -> BacktestResult:
        """
        Run the strategy over the context's bars.

        Args:
            context: Symbol, candle period and bars to replay
            params: Strategy parameters (tuned for hourly candles)
            initial_capital: Starting cash

        Returns:
            BacktestResult; the empty result when the series is shorter than
            the warm-up. Exceptions raised by the strategy propagate.
        """
        if self.adjust_time_frame:
            params = params.scaled_to_period(context.period)

        bars = context.bars
        n = len(bars)
        warmup = params.minimum_candles

        if n == 0 or n < warmup:
            logger.debug(
                "backtest_skipped_insufficient_data",
                symbol=context.symbol,
                bars_count=n,
                required=warmup,
            )
            return BacktestResult.empty(initial_capital)

        close = bars["close"].to_numpy(dtype=float)

        capital = initial_capital
        in_position = False
        entry_price = 0.0
        position_size = 0.0

        trade_returns: list[float] = []
        wins = 0
        equity_curve = [initial_capital]

        for i in range(warmup, n):
            start = 0 if self.lookback_window is None else max(0, i + 1 - self.lookback_window)
            prefix = bars.iloc[start:i + 1]
            price = close[i]

            if not in_position:
                if self.strategy.should_buy(prefix, params) and price > 0:
                    entry_price = price
                    position_size = capital / entry_price
                    in_position = True
            elif self.strategy.should_sell(prefix, entry_price, params):
                trade_return = (price - entry_price) / entry_price * 100.0
                capital = position_size * price
                trade_returns.append(trade_return)
                if trade_return > 0:
                    wins += 1
                in_position = False
                position_size = 0.0

            equity_curve.append(position_size * price if in_position else capital)

        final_capital = equity_curve[-1]
        total_trades = len(trade_returns)

        result = BacktestResult(
            total_profit_percent=(final_capital - initial_capital) / initial_capital * 100.0
            if initial_capital
            else 0.0,
            total_trades=total_trades,
            sharpe_ratio=self._calculate_sharpe(trade_returns),
            max_drawdown_percent=self._calculate_max_drawdown(equity_curve),
            win_rate=wins / total_trades if total_trades else 0.0,
            ending_capital=final_capital,
            trade_returns=tuple(trade_returns),
        )

        logger.debug(
            "backtest_complete",
            symbol=context.symbol,
            strategy=self.strategy.name,
            trades=total_trades,
            profit_percent=result.total_profit_percent,
            open_position=in_position,
        )
        return result

    @staticmethod
    def _calculate_sharpe(trade_returns: list[float]) -> float:
        """Mean over population std of per-trade returns; 0 when undefined."""
        if len(trade_returns) < 2:
            return 0.0

        returns = np.asarray(trade_returns, dtype=float)
        std = float(returns.std())
        if std == 0.0 or not np.isfinite(std):
            return 0.0

        sharpe = float(returns.mean()) / std
        return sharpe if np.isfinite(sharpe) else 0.0

    @staticmethod
    def _calculate_max_drawdown(equity_curve: list[float]) -> float:
        """Largest peak-to-trough decline of the equity curve, in percent."""
        if len(equity_curve) < 2:
            return 0.0

        equity = np.asarray(equity_curve, dtype=float)
        running_max = np.maximum.accumulate(equity)
        with np.errstate(divide="ignore", invalid="ignore"):
            drawdown = np.where(running_max > 0, (running_max - equity) / running_max, 0.0)

        return float(drawdown.max() * 100.0)
