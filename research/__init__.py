"""
Research and optimization modules.

This layer is for:
- Backtesting strategies bar by bar
- Walk-forward splits and out-of-sample validation
- Genetic parameter search, per strategy and across strategies

Parameters are only trusted after out-of-sample validation.
"""
