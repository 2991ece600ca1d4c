"""
Buy/sell signal indicators.

Every indicator has the same shape:
- is_buy_signal(bars, params) -> bool
- is_sell_signal(bars, entry_price, params) -> bool

`bars` is the prefix of the series ending at the bar being decided.
Indicators are stateless; strategies compose them.
"""

from abc import ABC, abstractmethod
import math

import numpy as np
import pandas as pd

from cryptolab.indicators import technical
from cryptolab.models import StrategyParameters


# Bars inspected by the range-bound market checks
RANGE_WINDOW = 72


class Indicator(ABC):
    """Base class for signal indicators."""

    name: str = "indicator"

    @abstractmethod
    def is_buy_signal(self, bars: pd.DataFrame, params: StrategyParameters) -> bool:
        """True when the indicator supports entering a position."""

    @abstractmethod
    def is_sell_signal(
        self,
        bars: pd.DataFrame,
        entry_price: float,
        params: StrategyParameters,
    ) -> bool:
        """True when the indicator supports leaving a position opened at entry_price."""


def _crossed_above(fast: pd.Series, slow: pd.Series) -> bool:
    """fast was at or below slow on the previous bar and is above it now."""
    if len(fast) < 2:
        return False
    return bool(fast.iloc[-2] <= slow.iloc[-2] and fast.iloc[-1] > slow.iloc[-1])


class MovingAverageCrossoverIndicator(Indicator):
    """
    EMA crossover.

    Buy when the short EMA crosses above the long EMA (buy periods).
    Sell when the long EMA crosses above the short EMA (sell periods).
    """

    name = "moving_average_crossover"

    def is_buy_signal(self, bars, params):
        close = bars["close"]
        return _crossed_above(
            technical.ema(close, params.moving_average_buy_short_period),
            technical.ema(close, params.moving_average_buy_long_period),
        )

    def is_sell_signal(self, bars, entry_price, params):
        close = bars["close"]
        return _crossed_above(
            technical.ema(close, params.moving_average_sell_long_period),
            technical.ema(close, params.moving_average_sell_short_period),
        )

    @staticmethod
    def is_short_below_long(bars: pd.DataFrame, short_period: int, long_period: int) -> bool:
        close = bars["close"]
        short = technical.ema(close, short_period).iloc[-1]
        long = technical.ema(close, long_period).iloc[-1]
        return bool(short < long)

    @staticmethod
    def within_threshold(
        bars: pd.DataFrame,
        short_period: int,
        long_period: int,
        threshold_percent: float,
    ) -> bool:
        """True when the two EMAs are within threshold_percent of each other."""
        close = bars["close"]
        short = float(technical.ema(close, short_period).iloc[-1])
        long = float(technical.ema(close, long_period).iloc[-1])
        if long == 0:
            return False
        return abs(short - long) / long * 100.0 <= threshold_percent


class RsiIndicator(Indicator):
    """Oversold below the buy threshold, overbought above the sell threshold."""

    name = "rsi"

    def is_buy_signal(self, bars, params):
        return technical.rsi(bars["close"], params.rsi_period) < params.rsi_buy_threshold

    def is_sell_signal(self, bars, entry_price, params):
        return technical.rsi(bars["close"], params.rsi_period) > params.rsi_sell_threshold


class RsiRangeIndicator(Indicator):
    """
    RSI recovering inside the neutral band.

    Buy when RSI rose on each of the last `lookback_period` bars and now
    sits within [buy threshold, sell threshold). Sell when overbought.
    """

    name = "rsi_range"

    def is_buy_signal(self, bars, params):
        values = technical.rsi_series(bars["close"], params.rsi_period, params.lookback_period)
        if not values:
            return False

        improving = all(b > a for a, b in zip(values, values[1:]))
        latest = values[-1]
        within = params.rsi_buy_threshold <= latest < params.rsi_sell_threshold
        return improving and within

    def is_sell_signal(self, bars, entry_price, params):
        return technical.rsi(bars["close"], params.rsi_period) > params.rsi_sell_threshold


class MacdCrossoverIndicator(Indicator):
    """Buy on a MACD cross above its signal line, sell on a cross below."""

    name = "macd_crossover"

    def is_buy_signal(self, bars, params):
        line, signal = technical.macd(
            bars["close"], params.macd_fast_period, params.macd_slow_period, params.macd_signal_period
        )
        return _crossed_above(line, signal)

    def is_sell_signal(self, bars, entry_price, params):
        line, signal = technical.macd(
            bars["close"], params.macd_fast_period, params.macd_slow_period, params.macd_signal_period
        )
        return _crossed_above(signal, line)


class MacdTrendIndicator(Indicator):
    """Buy while MACD is above its signal line, sell while below."""

    name = "macd_trend"

    def is_buy_signal(self, bars, params):
        line, signal = technical.macd(
            bars["close"], params.macd_fast_period, params.macd_slow_period, params.macd_signal_period
        )
        return bool(line.iloc[-1] > signal.iloc[-1])

    def is_sell_signal(self, bars, entry_price, params):
        line, signal = technical.macd(
            bars["close"], params.macd_fast_period, params.macd_slow_period, params.macd_signal_period
        )
        return bool(line.iloc[-1] < signal.iloc[-1])


class MfiIndicator(Indicator):
    """Money Flow Index oversold/overbought."""

    name = "mfi"

    def is_buy_signal(self, bars, params):
        return technical.mfi(bars, params.mfi_period) < params.mfi_oversold_threshold

    def is_sell_signal(self, bars, entry_price, params):
        return technical.mfi(bars, params.mfi_period) > params.mfi_overbought_threshold


class VolumeIndicator(Indicator):
    """
    Volume confirmation.

    Buy when volume is above average and rising, or when price jumped
    more than 0.5% over two bars with either volume condition. Sell when
    volume spikes above average or starts fading.
    """

    name = "volume"

    def is_buy_signal(self, bars, params):
        above_average = self._above_average(bars, params)
        increasing = self._volume_slope(bars, params.volume_period) > 0

        price_change = 0.0
        if len(bars) >= 3:
            current = float(bars["close"].iloc[-1])
            previous = float(bars["close"].iloc[-3])
            if previous:
                price_change = (current / previous - 1.0) * 100.0
        strong_move = price_change > 0.5

        return (above_average and increasing) or (strong_move and (above_average or increasing))

    def is_sell_signal(self, bars, entry_price, params):
        return self._above_average(bars, params) or self._volume_slope(bars, params.volume_period) < 0

    @staticmethod
    def _above_average(bars: pd.DataFrame, params: StrategyParameters) -> bool:
        volume = bars["volume"]
        average = float(volume.iloc[-params.volume_period:].mean())
        return float(volume.iloc[-1]) > average * (1 + params.above_average_threshold / 100.0)

    @staticmethod
    def _volume_slope(bars: pd.DataFrame, period: int) -> float:
        if len(bars) <= period:
            return 0.0
        return technical.linear_slope(bars["volume"].iloc[-period:].to_numpy())


class VolatilityIndicator(Indicator):
    """
    ATR-percent volatility gate.

    Buy when volatility is below the low threshold, below a threshold
    loosened by a strong recent uptrend, or below 1.3x its recent
    average. Sell when volatility exceeds the high threshold.
    """

    name = "volatility"

    # Assumes hourly candles: five days of history
    HISTORY_BARS = 5 * 24

    def is_buy_signal(self, bars, params):
        current = technical.atr_percent(bars, params.atr_period)
        if current < params.low_volatility_threshold:
            return True

        strength = self._trend_strength(bars)
        dynamic_threshold = params.low_volatility_threshold * (1 + 0.5 * strength)
        if strength > 0.6 and current < dynamic_threshold:
            return True

        return current < self._historical_volatility(bars, params) * 1.3

    def is_sell_signal(self, bars, entry_price, params):
        return technical.atr_percent(bars, params.atr_period) > params.high_volatility_threshold

    def _historical_volatility(self, bars: pd.DataFrame, params: StrategyParameters) -> float:
        """Mean ATR percent of the trailing windows over the last five days."""
        period = params.atr_period
        count = min(self.HISTORY_BARS, len(bars) - period - 1)
        if count <= 0:
            return params.low_volatility_threshold

        atr = technical.atr_series(bars, period).to_numpy()
        close = bars["close"].to_numpy(dtype=float)
        idx = np.arange(len(bars) - count - 1, len(bars) - 1)
        return float(np.mean(atr[idx] / close[idx] * 100.0))

    @staticmethod
    def _trend_strength(bars: pd.DataFrame) -> float:
        """Normalized slope of the last 10 closes, clipped to [0, 1]."""
        if len(bars) < 10:
            return 0.0
        recent = bars["close"].iloc[-10:].to_numpy(dtype=float)
        mean = recent.mean()
        if mean == 0:
            return 0.0
        normalized = technical.linear_slope(recent) / mean * 100.0
        return min(1.0, max(0.0, normalized / 0.5))


class MovingTrendIndicator(Indicator):
    """
    Rejects sideways markets.

    A market is sideways when the short-period high/low channel is
    narrower than 3% and the Bollinger bandwidth is below 4%. The signal
    is the same for buying and selling: True unless sideways.
    """

    name = "moving_trend"

    CHANNEL_THRESHOLD = 3.0
    BANDWIDTH_THRESHOLD = 4.0

    def is_buy_signal(self, bars, params):
        return self._is_moving(bars, params.moving_average_buy_short_period)

    def is_sell_signal(self, bars, entry_price, params):
        return self._is_moving(bars, params.moving_average_buy_short_period)

    def _is_moving(self, bars: pd.DataFrame, period: int) -> bool:
        return not (self._in_channel(bars, period) and self._contracted(bars, period))

    def _in_channel(self, bars: pd.DataFrame, period: int) -> bool:
        if len(bars) < period:
            return False
        recent = bars.iloc[-period:]
        highest = float(recent["high"].max())
        lowest = float(recent["low"].min())
        mid = (highest + lowest) / 2
        if mid == 0:
            return False
        return (highest - lowest) / mid * 100.0 < self.CHANNEL_THRESHOLD

    def _contracted(self, bars: pd.DataFrame, period: int) -> bool:
        if len(bars) < period + 10:
            return False
        bandwidth = technical.bollinger_bandwidth(bars["close"], period)
        return bool(bandwidth.iloc[-1] < self.BANDWIDTH_THRESHOLD)


class RiskManagementIndicator(Indicator):
    """
    Stop-loss and take-profit exits.

    The price tested against the thresholds is the close minus
    `high_volatility_threshold` ATRs, so volatile bars exit earlier on
    the downside and later on the upside. Never blocks an entry.
    """

    name = "risk_management"

    def is_buy_signal(self, bars, params):
        return True

    def is_sell_signal(self, bars, entry_price, params):
        price = self.volatility_adjusted_price(bars, params)
        return (
            self.stop_loss_hit(entry_price, price, params.loss_percent)
            or self.take_profit_hit(entry_price, price, params.profit_percent)
        )

    @staticmethod
    def volatility_adjusted_price(bars: pd.DataFrame, params: StrategyParameters) -> float:
        close = float(bars["close"].iloc[-1])
        if len(bars) <= params.atr_period:
            return close
        return close - params.high_volatility_threshold * technical.atr(bars, params.atr_period)

    @staticmethod
    def stop_loss_hit(entry_price: float, price: float, loss_percent: float) -> bool:
        return price <= entry_price * (1 - loss_percent / 100.0)

    @staticmethod
    def take_profit_hit(entry_price: float, price: float, profit_percent: float) -> bool:
        return price >= entry_price * (1 + profit_percent / 100.0)

    @staticmethod
    def trailing_stop_hit(
        bars: pd.DataFrame,
        entry_price: float,
        loss_percent: float,
        window: int,
    ) -> bool:
        """
        Price fell loss_percent below the highest close of the last `window`
        bars while that peak was above entry.
        """
        recent = bars["close"].iloc[-window:]
        peak = float(recent.max())
        price = float(recent.iloc[-1])
        if peak <= entry_price:
            return False
        return price <= peak * (1 - loss_percent / 100.0)

    @staticmethod
    def dynamic_stop_hit(entry_price: float, price: float, profit_percent: float, peak: float) -> bool:
        """
        Once the peak gain passed half the profit target, exit if price gives
        back to a quarter of the target.
        """
        if entry_price <= 0:
            return False
        peak_gain = (peak - entry_price) / entry_price * 100.0
        gain = (price - entry_price) / entry_price * 100.0
        return peak_gain >= profit_percent / 2 and gain <= profit_percent / 4

    @staticmethod
    def range_take_profit(bars: pd.DataFrame, entry_price: float) -> float:
        """Target just below the top of the recent trading range."""
        recent = bars.iloc[-RANGE_WINDOW:]
        highest = float(recent["high"].max())
        lowest = float(recent["low"].min())
        target = highest - 0.1 * (highest - lowest)
        return max(target, entry_price * 1.005)


class VolatilityRegimeAnalyzer:
    """Range-bound market checks over the last RANGE_WINDOW bars."""

    # Historical ATR period compared against the strategy's volatility period
    HISTORICAL_ATR_PERIOD = 30

    def is_low_volatility(self, bars: pd.DataFrame, params: StrategyParameters) -> bool:
        """Recent ATR is at least 35% below the longer-period ATR."""
        recent = bars.iloc[-RANGE_WINDOW:]
        if len(recent) <= max(params.volatility_period, self.HISTORICAL_ATR_PERIOD):
            return False
        recent_atr = technical.atr(recent, params.volatility_period)
        historical_atr = technical.atr(recent, self.HISTORICAL_ATR_PERIOD)
        return recent_atr < historical_atr * 0.65

    def is_in_defined_range(self, bars: pd.DataFrame) -> bool:
        """
        Narrow range (< 7.5%) whose boundaries were both tested, with no
        significant linear trend (> 2.5% over the window).
        """
        recent = bars.iloc[-RANGE_WINDOW:]
        if recent.empty:
            return False

        highest = float(recent["high"].max())
        lowest = float(recent["low"].min())
        if lowest <= 0:
            return False

        range_percent = (highest - lowest) / lowest * 100.0
        test_band = 0.02 * (highest - lowest)
        tested_upper = bool(((highest - recent["high"]) < test_band).any())
        tested_lower = bool(((recent["low"] - lowest) < test_band).any())
        trending = abs(technical.slope_percent(recent["close"].to_numpy())) > 2.5

        return range_percent < 7.5 and tested_upper and tested_lower and not trending

    @staticmethod
    def is_volatility_decreasing(bars: pd.DataFrame, atr_period: int, lookback: int) -> bool:
        """Current ATR below the mean ATR of the previous `lookback` bars."""
        if len(bars) <= lookback + 1:
            return False
        series = technical.atr_series(bars, atr_period)
        previous = series.iloc[-(lookback + 1):-1]
        return bool(series.iloc[-1] < previous.mean())


def bullish_candle_count(bars: pd.DataFrame, lookback: int) -> int:
    """
    Number of strong bullish candles in the last `lookback` bars.

    A strong bullish candle closes above its open, with a body over 30%
    of the range and an upper wick under 10% of it.
    """
    recent = bars.iloc[-lookback:]
    spread = recent["high"] - recent["low"]
    bullish = (
        (recent["close"] > recent["open"])
        & ((recent["high"] - recent["close"]) < 0.1 * spread)
        & ((recent["close"] - recent["open"]) > 0.3 * spread)
    )
    return int(bullish.sum())


def has_bullish_sequence(bars: pd.DataFrame, lookback: int) -> bool:
    """At least 60% of the last `lookback` candles are strong bullish candles."""
    if len(bars) < lookback:
        return False
    return bullish_candle_count(bars, lookback) >= math.ceil(0.6 * lookback)
