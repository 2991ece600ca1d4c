"""
Buy-low-sell-high strategy.

Buys the first signs of a reversal inside a downtrend: short EMA below
long EMA, a run of strong bullish candles, RSI recovering or volume
confirming, acceptable volatility, MACD above signal and a market that
is not stuck in a tight channel. Exits purely on risk limits.
"""

from cryptolab.indicators import (
    MacdTrendIndicator,
    MovingAverageCrossoverIndicator,
    MovingTrendIndicator,
    RiskManagementIndicator,
    RsiRangeIndicator,
    VolatilityIndicator,
    VolumeIndicator,
)
from cryptolab.indicators.signals import has_bullish_sequence
from cryptolab.models import StrategyParameters
from cryptolab.strategy.base import Strategy


class BuyLowSellHighStrategy(Strategy):
    """Downtrend reversal entries, stop-loss/take-profit exits."""

    def __init__(self):
        super().__init__(name="buy_low_sell_high")
        self.rsi = RsiRangeIndicator()
        self.volume = VolumeIndicator()
        self.volatility = VolatilityIndicator()
        self.macd = MacdTrendIndicator()
        self.moving_trend = MovingTrendIndicator()
        self.risk = RiskManagementIndicator()

    def _is_downtrend(self, bars, params) -> bool:
        return MovingAverageCrossoverIndicator.is_short_below_long(
            bars,
            params.moving_average_buy_short_period,
            params.moving_average_buy_long_period,
        )

    def _is_bullish(self, bars, params) -> bool:
        if not has_bullish_sequence(bars, params.lookback_period):
            return False
        return self.rsi.is_buy_signal(bars, params) or self.volume.is_buy_signal(bars, params)

    def should_buy(self, bars, params):
        return (
            self._is_downtrend(bars, params)
            and self._is_bullish(bars, params)
            and self.volatility.is_buy_signal(bars, params)
            and self.macd.is_buy_signal(bars, params)
            and self.moving_trend.is_buy_signal(bars, params)
        )

    def should_sell(self, bars, entry_price, params):
        return self.risk.is_sell_signal(bars, entry_price, params)

    def get_strategy_parameters(self, symbol=None):
        return StrategyParameters(
            moving_average_buy_short_period=15, moving_average_buy_long_period=53,
            rsi_period=13, rsi_buy_threshold=42, rsi_sell_threshold=66,
            macd_fast_period=13, macd_slow_period=20, macd_signal_period=8,
            volume_period=24, above_average_threshold=39,
            loss_percent=2, profit_percent=17.8,
            contraction_threshold=4.1,
            atr_period=17, lookback_period=7,
            low_volatility_threshold=0.87, high_volatility_threshold=1.32,
            minimum_candles=159,
        )
