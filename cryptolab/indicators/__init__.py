"""
Technical indicators.

technical: pure indicator math (EMA, RSI, MACD, ATR, ADX, MFI, ...)
signals: buy/sell indicators composed by strategies
"""

from cryptolab.indicators.signals import (
    Indicator,
    MacdCrossoverIndicator,
    MacdTrendIndicator,
    MfiIndicator,
    MovingAverageCrossoverIndicator,
    MovingTrendIndicator,
    RiskManagementIndicator,
    RsiIndicator,
    RsiRangeIndicator,
    VolatilityIndicator,
    VolatilityRegimeAnalyzer,
    VolumeIndicator,
)

__all__ = [
    "Indicator",
    "MacdCrossoverIndicator",
    "MacdTrendIndicator",
    "MfiIndicator",
    "MovingAverageCrossoverIndicator",
    "MovingTrendIndicator",
    "RiskManagementIndicator",
    "RsiIndicator",
    "RsiRangeIndicator",
    "VolatilityIndicator",
    "VolatilityRegimeAnalyzer",
    "VolumeIndicator",
]
