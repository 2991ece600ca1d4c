"""
Strategy interface.

A strategy answers two questions about the newest bar of a prefix:
should a flat book buy, and should an open position sell. Decisions
must be pure functions of (bars, entry price, parameters) so the same
prefix always yields the same answer, in backtests and live.
"""

from abc import ABC, abstractmethod
from typing import Optional

import pandas as pd

from cryptolab.models import StrategyParameters


class Strategy(ABC):
    """
    Base class for trading strategies.

    Args:
        name: Registry name of the strategy
    """

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    def should_buy(self, bars: pd.DataFrame, params: StrategyParameters) -> bool:
        """Decide whether to open a position at the last bar of `bars`."""

    @abstractmethod
    def should_sell(
        self,
        bars: pd.DataFrame,
        entry_price: float,
        params: StrategyParameters,
    ) -> bool:
        """Decide whether to close a position opened at `entry_price`."""

    def get_strategy_parameters(self, symbol: Optional[str] = None) -> StrategyParameters:
        """Default parameters; strategies override with their tuned set."""
        return StrategyParameters()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
