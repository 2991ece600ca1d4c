"""
Multi-index momentum strategy.

Enters only when MACD crossover, MFI and RSI all agree. Exits when all
three agree on a sell or the risk limits trigger. Tuned on 15-minute
candles.
"""

import structlog

from cryptolab.indicators import (
    MacdCrossoverIndicator,
    MfiIndicator,
    RiskManagementIndicator,
    RsiIndicator,
)
from cryptolab.models import StrategyParameters
from cryptolab.strategy.base import Strategy

logger = structlog.get_logger(__name__)


class MultiIndexMomentumStrategy(Strategy):
    """Unanimous MACD/MFI/RSI momentum entries with stop-loss and take-profit exits."""

    def __init__(self):
        super().__init__(name="multi_index_momentum")
        self.indicators = [MacdCrossoverIndicator(), MfiIndicator(), RsiIndicator()]
        self.risk = RiskManagementIndicator()

    def should_buy(self, bars, params):
        return all(indicator.is_buy_signal(bars, params) for indicator in self.indicators)

    def should_sell(self, bars, entry_price, params):
        if self.risk.is_sell_signal(bars, entry_price, params):
            logger.debug("momentum_risk_exit", entry_price=entry_price)
            return True
        return all(
            indicator.is_sell_signal(bars, entry_price, params)
            for indicator in self.indicators
        )

    def get_strategy_parameters(self, symbol=None):
        return StrategyParameters(
            rsi_buy_threshold=50, rsi_sell_threshold=50, rsi_period=14,
            macd_fast_period=12, macd_slow_period=26, macd_signal_period=9,
            mfi_period=20, mfi_oversold_threshold=40, mfi_overbought_threshold=50,
            loss_percent=5, profit_percent=5,
            minimum_candles=26,
        )
