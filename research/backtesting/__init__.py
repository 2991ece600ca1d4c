"""
Backtesting framework with walk-forward validation.

Key principles:
- No lookahead: decisions only see bars up to the current one
- Chronological train/test split, test data never seen by the search
- Regime-segmented evaluation
"""

from research.backtesting.engine import BacktestEngine, BacktestResult
from research.backtesting.walk_forward import WalkForwardOptimizer, WalkForwardResult

__all__ = [
    "BacktestEngine",
    "BacktestResult",
    "WalkForwardOptimizer",
    "WalkForwardResult",
]
