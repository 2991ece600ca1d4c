"""
Core data model.

Bars travel through the system as a pandas DataFrame with columns
timestamp, open, high, low, close, volume (ascending, RangeIndex).
Everything else here is an immutable value object so a single context
can be shared by concurrent fitness evaluations.
"""

from dataclasses import dataclass, field, fields, asdict, replace as dc_replace
from datetime import datetime
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

import pandas as pd

from cryptolab.errors import ConfigurationError, DataError

BAR_COLUMNS = ["timestamp", "open", "high", "low", "close", "volume"]

# Parameter sets are tuned on hourly candles
BASE_PERIOD_MINUTES = 60


@dataclass(frozen=True)
class Bar:
    """One OHLCV candle; timestamp marks the end of the period."""
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float
    period_minutes: int = BASE_PERIOD_MINUTES


def bars_to_frame(bars: Iterable[Bar]) -> pd.DataFrame:
    """Convert a sequence of Bar objects to the canonical bar DataFrame."""
    rows = [
        {
            "timestamp": b.timestamp,
            "open": b.open,
            "high": b.high,
            "low": b.low,
            "close": b.close,
            "volume": b.volume,
        }
        for b in bars
    ]
    if not rows:
        return pd.DataFrame(columns=BAR_COLUMNS)
    return normalize_bars(pd.DataFrame(rows))


def normalize_bars(bars: pd.DataFrame) -> pd.DataFrame:
    """
    Validate and normalize a bar frame.

    Sorts by timestamp and resets the index so positional and label
    indexing agree.

    Raises:
        DataError: If a required column is missing
    """
    missing = [c for c in BAR_COLUMNS if c not in bars.columns]
    if missing:
        raise DataError(f"Bars missing columns: {missing}")

    frame = bars[BAR_COLUMNS].sort_values("timestamp", kind="stable")
    return frame.reset_index(drop=True)


@dataclass(frozen=True)
class EvaluationContext:
    """
    Input to a simulation: one symbol's bars at one candle period.

    Read-only after construction. `metadata` carries regime labels and
    statistics attached by the segmenter.
    """
    symbol: str
    period: int
    bars: pd.DataFrame
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.period <= 0:
            raise ConfigurationError(f"period must be positive, got {self.period}")
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    def __len__(self) -> int:
        return len(self.bars)

    def with_bars(
        self,
        bars: pd.DataFrame,
        symbol: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> "EvaluationContext":
        """Derive a context over different bars, keeping the period."""
        return EvaluationContext(
            symbol=symbol if symbol is not None else self.symbol,
            period=self.period,
            bars=bars,
            metadata=metadata if metadata is not None else dict(self.metadata),
        )


@dataclass(frozen=True)
class StrategyParameters:
    """
    Complete numeric configuration consumed by strategies and indicators.

    Fields are grouped by indicator family. Every `*_period` must be
    positive and `minimum_candles` (the warm-up before the first
    decision) must be non-negative.
    """
    # Moving average
    moving_average_buy_short_period: int = 9
    moving_average_buy_long_period: int = 21
    moving_average_sell_short_period: int = 9
    moving_average_sell_long_period: int = 26

    # RSI
    rsi_period: int = 14
    rsi_buy_threshold: float = 30.0
    rsi_sell_threshold: float = 70.0

    # MACD
    macd_fast_period: int = 12
    macd_slow_period: int = 26
    macd_signal_period: int = 9

    # Volume
    volume_period: int = 24
    above_average_threshold: float = 20.0

    # Risk (percent of entry price)
    loss_percent: float = 5.0
    profit_percent: float = 10.0

    # ADX
    adx_period: int = 14
    adx_bullish_threshold: float = 25.0
    adx_bearish_threshold: float = 30.0

    # Volatility
    volatility_period: int = 20
    contraction_threshold: float = 4.0
    low_volatility_threshold: float = 0.8
    high_volatility_threshold: float = 1.5

    # MFI
    mfi_period: int = 20
    mfi_overbought_threshold: float = 50.0
    mfi_oversold_threshold: float = 40.0

    # ATR
    atr_period: int = 14
    atr_threshold: float = 3.0

    # Support / resistance
    support_resistance_period: int = 50
    support_resistance_threshold: float = 1.0

    lookback_period: int = 10
    minimum_candles: int = 26

    def __post_init__(self):
        for name in self.period_fields():
            value = getattr(self, name)
            if value <= 0:
                raise ConfigurationError(f"{name} must be positive, got {value}")
        if self.minimum_candles < 0:
            raise ConfigurationError(
                f"minimum_candles must be non-negative, got {self.minimum_candles}"
            )

    @classmethod
    def period_fields(cls) -> list[str]:
        """Names of the look-back length fields."""
        return [f.name for f in fields(cls) if f.name.endswith("_period")]

    @classmethod
    def field_names(cls) -> list[str]:
        return [f.name for f in fields(cls)]

    def max_period(self) -> int:
        """Longest look-back any indicator will ask for."""
        return max(getattr(self, name) for name in self.period_fields())

    def replace(self, **changes: Any) -> "StrategyParameters":
        return dc_replace(self, **changes)

    def scaled_to_period(self, period_minutes: int) -> "StrategyParameters":
        """
        Rescale look-back lengths from hourly candles to another period.

        A 15-minute series needs four times as many bars to cover the same
        wall-clock window. Only periods that divide an hour are scaled;
        thresholds never change.
        """
        if period_minutes <= 0 or period_minutes >= BASE_PERIOD_MINUTES:
            return self
        if BASE_PERIOD_MINUTES % period_minutes != 0:
            return self

        multiplier = BASE_PERIOD_MINUTES // period_minutes
        changes = {name: getattr(self, name) * multiplier for name in self.period_fields()}
        changes["minimum_candles"] = self.minimum_candles * multiplier
        return dc_replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for storage."""
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "StrategyParameters":
        """
        Create parameters from a dictionary.

        Missing fields fall back to defaults; unknown keys are rejected.
        """
        known = set(cls.field_names())
        unknown = set(d) - known
        if unknown:
            raise ConfigurationError(f"Unknown parameter fields: {sorted(unknown)}")

        values = {}
        for f in fields(cls):
            if f.name in d:
                values[f.name] = int(d[f.name]) if f.type in (int, "int") else float(d[f.name])
        return cls(**values)
