"""
Technical indicator math.

Pure functions over the bar DataFrame or a close-price Series. Nothing
here keeps state between calls, so a function may be applied to any
prefix of a series and return the same value the live path would see.

Functions returning a single float give the value at the last bar.
"""

from typing import Sequence

import numpy as np
import pandas as pd

from cryptolab.errors import InsufficientDataError


def _require(name: str, available: int, required: int) -> None:
    if available < required:
        raise InsufficientDataError(name, required, available)


def ema(values: pd.Series, period: int) -> pd.Series:
    """Exponential moving average seeded with the first value (alpha = 2 / (n + 1))."""
    return values.ewm(span=period, adjust=False).mean()


def wilder_smooth(values: pd.Series, period: int) -> pd.Series:
    """Wilder's moving average (alpha = 1 / n)."""
    return values.ewm(alpha=1.0 / period, adjust=False).mean()


def sma(values: pd.Series, period: int) -> pd.Series:
    return values.rolling(window=period).mean()


def rsi(close: pd.Series, period: int) -> float:
    """
    Relative Strength Index at the last bar, Wilder smoothing.

    Returns 100 when there were gains but no losses and 0 when the
    price never moved.
    """
    _require("rsi", len(close), period + 1)

    delta = close.diff().fillna(0.0)
    gains = delta.clip(lower=0.0)
    losses = (-delta).clip(lower=0.0)

    avg_gain = float(wilder_smooth(gains, period).iloc[-1])
    avg_loss = float(wilder_smooth(losses, period).iloc[-1])

    if avg_loss == 0.0:
        return 100.0 if avg_gain > 0.0 else 0.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def rsi_series(close: pd.Series, period: int, count: int) -> list[float]:
    """RSI of each of the last `count` prefixes, oldest first."""
    values = []
    for end in range(len(close) - count + 1, len(close) + 1):
        if end < period + 1:
            continue
        values.append(rsi(close.iloc[:end], period))
    return values


def macd(
    close: pd.Series,
    fast_period: int,
    slow_period: int,
    signal_period: int,
) -> tuple[pd.Series, pd.Series]:
    """
    MACD line and its signal line.

    Returns:
        (macd, signal) where macd = EMA(fast) - EMA(slow) and signal = EMA(macd)
    """
    _require("macd", len(close), 2)
    line = ema(close, fast_period) - ema(close, slow_period)
    signal = ema(line, signal_period)
    return line, signal


def true_range(bars: pd.DataFrame) -> np.ndarray:
    """True range per bar; the first bar uses high - low."""
    high = bars["high"].to_numpy(dtype=float)
    low = bars["low"].to_numpy(dtype=float)
    close = bars["close"].to_numpy(dtype=float)

    tr1 = high - low
    tr2 = np.abs(high - np.roll(close, 1))
    tr3 = np.abs(low - np.roll(close, 1))

    tr = np.maximum(tr1, np.maximum(tr2, tr3))
    if len(tr):
        tr[0] = tr1[0]
    return tr


def atr_series(bars: pd.DataFrame, period: int) -> pd.Series:
    """Average True Range for every bar, Wilder smoothing."""
    return wilder_smooth(pd.Series(true_range(bars)), period)


def atr(bars: pd.DataFrame, period: int) -> float:
    """
    Average True Range at the last bar.

    Seeded with the simple mean of the first `period` true ranges (from
    the second bar on), then Wilder-smoothed.
    """
    _require("atr", len(bars), period + 1)

    tr = true_range(bars)
    value = float(np.mean(tr[1:period + 1]))
    for current in tr[period + 1:]:
        value = ((period - 1) * value + current) / period
    return value


def atr_percent(bars: pd.DataFrame, period: int) -> float:
    """ATR as a percentage of the last close."""
    price = float(bars["close"].iloc[-1])
    if price <= 0:
        return 0.0
    return atr(bars, period) / price * 100.0


def adx(bars: pd.DataFrame, period: int) -> float:
    """
    Average Directional Index at the last bar.

    ADX measures trend strength, not direction.
    """
    _require("adx", len(bars), 2 * period)

    high = bars["high"].to_numpy(dtype=float)
    low = bars["low"].to_numpy(dtype=float)

    plus_dm = high - np.roll(high, 1)
    minus_dm = np.roll(low, 1) - low
    plus_dm[0] = 0
    minus_dm[0] = 0

    plus_dm = np.where((plus_dm > minus_dm) & (plus_dm > 0), plus_dm, 0)
    minus_dm = np.where((minus_dm > plus_dm) & (minus_dm > 0), minus_dm, 0)

    tr = pd.Series(true_range(bars))
    plus_di = pd.Series(plus_dm).rolling(window=period).mean()
    minus_di = pd.Series(minus_dm).rolling(window=period).mean()
    avg_tr = tr.rolling(window=period).mean()

    plus_di_pct = (plus_di / avg_tr) * 100
    minus_di_pct = (minus_di / avg_tr) * 100

    dx = 100 * np.abs(plus_di_pct - minus_di_pct) / (plus_di_pct + minus_di_pct)
    value = dx.rolling(window=period, min_periods=1).mean().iloc[-1]

    return float(value) if not pd.isna(value) else 0.0


def mfi(bars: pd.DataFrame, period: int) -> float:
    """
    Money Flow Index at the last bar.

    Returns 100 when there was no negative money flow in the window.
    """
    _require("mfi", len(bars), period + 1)

    window = bars.iloc[-(period + 1):]
    typical = ((window["high"] + window["low"] + window["close"]) / 3.0).to_numpy(dtype=float)
    volume = window["volume"].to_numpy(dtype=float)

    change = np.diff(typical)
    flow = typical[1:] * volume[1:]

    positive = float(flow[change > 0].sum())
    negative = float(flow[change < 0].sum())

    if negative == 0.0:
        return 100.0
    ratio = positive / negative
    return 100.0 - 100.0 / (1.0 + ratio)


def linear_slope(values: Sequence[float]) -> float:
    """Ordinary least squares slope of values against their index."""
    y = np.asarray(values, dtype=float)
    n = len(y)
    if n < 2:
        return 0.0
    x = np.arange(n, dtype=float)
    denominator = n * np.sum(x * x) - np.sum(x) ** 2
    if abs(denominator) < 1e-10:
        return 0.0
    return float((n * np.sum(x * y) - np.sum(x) * np.sum(y)) / denominator)


def slope_percent(values: Sequence[float]) -> float:
    """Total regression change over the window as a percent of the mean."""
    y = np.asarray(values, dtype=float)
    if len(y) < 2:
        return 0.0
    mean = float(y.mean())
    if mean == 0.0:
        return 0.0
    return linear_slope(y) * len(y) / mean * 100.0


def resistance_levels(close: pd.Series, lookback: int) -> list[float]:
    """Closes that are the highest within `lookback` bars on both sides."""
    window = 2 * lookback + 1
    if len(close) < window:
        return []
    rolling_max = close.rolling(window=window, center=True).max()
    mask = (close >= rolling_max) & rolling_max.notna()
    return close[mask].astype(float).tolist()


def support_levels(close: pd.Series, lookback: int) -> list[float]:
    """Closes that are the lowest within `lookback` bars on both sides."""
    window = 2 * lookback + 1
    if len(close) < window:
        return []
    rolling_min = close.rolling(window=window, center=True).min()
    mask = (close <= rolling_min) & rolling_min.notna()
    return close[mask].astype(float).tolist()


def is_near_level(price: float, levels: Sequence[float], threshold_percent: float) -> bool:
    """True when price is within threshold_percent of any level."""
    return any(
        level != 0 and abs(price - level) / level <= threshold_percent / 100.0
        for level in levels
    )


def bollinger_bandwidth(close: pd.Series, period: int) -> pd.Series:
    """Width of 2-sigma Bollinger bands as a percent of the middle band."""
    middle = close.rolling(window=period).mean()
    std = close.rolling(window=period).std(ddof=0)
    return (4.0 * std) / middle * 100.0
