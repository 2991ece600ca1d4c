"""
Moving average scalper.

Switches between two playbooks depending on the market:
- Range-bound: counter-trend EMA crossover entries confirmed by RSI,
  exits at the top of the range or when overbought in profit
- Trending: EMA crossover with the 50/100 trend intact, exits on
  crossover reversal, take-profit, or a tightening stop
"""

import structlog

from cryptolab.indicators import (
    MovingAverageCrossoverIndicator,
    RiskManagementIndicator,
    RsiIndicator,
    VolatilityRegimeAnalyzer,
)
from cryptolab.models import StrategyParameters
from cryptolab.strategy.base import Strategy

logger = structlog.get_logger(__name__)


class MovingAverageScalperStrategy(Strategy):
    """EMA crossover scalper that adapts to range-bound versus trending markets."""

    def __init__(self):
        super().__init__(name="moving_average_scalper")
        self.moving_average = MovingAverageCrossoverIndicator()
        self.rsi = RsiIndicator()
        self.risk = RiskManagementIndicator()
        self.regime = VolatilityRegimeAnalyzer()

    def _is_range_bound(self, bars, params) -> bool:
        return self.regime.is_low_volatility(bars, params) or self.regime.is_in_defined_range(bars)

    def should_buy(self, bars, params):
        if not self.moving_average.is_buy_signal(bars, params):
            return False

        ma50_below_100 = self.moving_average.is_short_below_long(bars, 50, 100)

        if self._is_range_bound(bars, params):
            return ma50_below_100 and self.rsi.is_buy_signal(bars, params)

        ma100_near_200 = self.moving_average.within_threshold(
            bars, 100, 200, params.high_volatility_threshold
        )
        return not ma50_below_100 and ma100_near_200

    def should_sell(self, bars, entry_price, params):
        price = float(bars["close"].iloc[-1])
        window = params.lookback_period
        peak = max(float(bars["close"].iloc[-window:].max()), entry_price)

        stop_loss = self.risk.stop_loss_hit(entry_price, price, params.loss_percent)
        trailing = self.risk.trailing_stop_hit(bars, entry_price, params.loss_percent, window)

        if self._is_range_bound(bars, params):
            range_profit = price >= self.risk.range_take_profit(bars, entry_price)
            overbought_in_profit = (
                price > entry_price and self.rsi.is_sell_signal(bars, entry_price, params)
            )
            sell = stop_loss or range_profit or trailing or overbought_in_profit
        else:
            take_profit = self.risk.take_profit_hit(entry_price, price, params.profit_percent)
            reversal = self.moving_average.is_sell_signal(bars, entry_price, params)
            dynamic = self.risk.dynamic_stop_hit(entry_price, price, params.profit_percent, peak)
            sell = stop_loss or take_profit or trailing or reversal or dynamic

        if sell:
            logger.debug("scalper_exit", entry_price=entry_price, price=price)
        return sell

    def get_strategy_parameters(self, symbol=None):
        return StrategyParameters(
            moving_average_buy_short_period=4, moving_average_buy_long_period=20,
            moving_average_sell_short_period=7, moving_average_sell_long_period=47,
            rsi_buy_threshold=28, rsi_sell_threshold=66, rsi_period=8,
            loss_percent=2, profit_percent=14,
            atr_period=3, atr_threshold=3,
            high_volatility_threshold=2,
            minimum_candles=300,
        )
