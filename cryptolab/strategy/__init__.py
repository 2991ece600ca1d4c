"""
Trading strategies.

Strategies compose indicators from cryptolab.indicators and expose
should_buy / should_sell decisions over a bar prefix.
"""

from cryptolab.strategy.base import Strategy
from cryptolab.strategy.buy_low_sell_high import BuyLowSellHighStrategy
from cryptolab.strategy.consolidation import SupportResistanceConsolidationStrategy
from cryptolab.strategy.momentum import MultiIndexMomentumStrategy
from cryptolab.strategy.registry import StrategySelector, build_default_selector
from cryptolab.strategy.scalper import MovingAverageScalperStrategy

__all__ = [
    "Strategy",
    "StrategySelector",
    "build_default_selector",
    "BuyLowSellHighStrategy",
    "MovingAverageScalperStrategy",
    "MultiIndexMomentumStrategy",
    "SupportResistanceConsolidationStrategy",
]
