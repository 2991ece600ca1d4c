"""
CryptoLab - strategy parameter research for crypto OHLCV series.

The research loop assumes:
- Backtests are only as honest as their out-of-sample split
- One lucky market period proves nothing
- Parameters that only work in one regime are overfit

The goal is parameter sets that survive every regime the history shows,
with logs that explain how they were found.
"""

__version__ = "0.1.0"
__author__ = "CryptoLab Team"
