"""
Support/resistance consolidation strategy.

Buys near a support pivot while volatility contracts and RSI and MACD
agree; sells near a resistance pivot under the mirrored conditions.
"""

import structlog

from cryptolab.indicators import MacdTrendIndicator, RsiIndicator, VolatilityRegimeAnalyzer
from cryptolab.indicators import technical
from cryptolab.models import StrategyParameters
from cryptolab.strategy.base import Strategy

logger = structlog.get_logger(__name__)


class SupportResistanceConsolidationStrategy(Strategy):
    """Mean reversion between pivot levels during volatility contraction."""

    def __init__(self):
        super().__init__(name="support_resistance_consolidation")
        self.rsi = RsiIndicator()
        self.macd = MacdTrendIndicator()
        self.volatility = VolatilityRegimeAnalyzer()

    def should_buy(self, bars, params):
        price = float(bars["close"].iloc[-1])
        supports = technical.support_levels(bars["close"], params.lookback_period)
        near_support = technical.is_near_level(price, supports, params.support_resistance_threshold)
        if not near_support:
            return False

        contracting = self.volatility.is_volatility_decreasing(
            bars, params.volatility_period, params.lookback_period
        )
        return (
            contracting
            and self.rsi.is_buy_signal(bars, params)
            and self.macd.is_buy_signal(bars, params)
        )

    def should_sell(self, bars, entry_price, params):
        price = float(bars["close"].iloc[-1])
        resistances = technical.resistance_levels(bars["close"], params.lookback_period)
        near_resistance = technical.is_near_level(
            price, resistances, params.support_resistance_threshold
        )
        if not near_resistance:
            return False

        contracting = self.volatility.is_volatility_decreasing(
            bars, params.volatility_period, params.lookback_period
        )
        return (
            contracting
            and self.rsi.is_sell_signal(bars, entry_price, params)
            and self.macd.is_sell_signal(bars, entry_price, params)
        )

    def get_strategy_parameters(self, symbol=None):
        return StrategyParameters(
            support_resistance_threshold=1.1, support_resistance_period=20,
            rsi_buy_threshold=35, rsi_sell_threshold=70, rsi_period=14,
            macd_fast_period=12, macd_slow_period=26, macd_signal_period=9,
            volatility_period=14,
            lookback_period=10,
            minimum_candles=150,
        )
