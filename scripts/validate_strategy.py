#!/usr/bin/env python3
"""
Backtest stored or default parameters on historical data.

Usage:
    python scripts/validate_strategy.py --symbol XBTUSD

    # Hand-tuned defaults of a specific strategy
    python scripts/validate_strategy.py --symbol ETHUSD --strategy buy_low_sell_high --defaults

    # Compare the training part with the held-out part
    python scripts/validate_strategy.py --symbol XBTUSD --walk-forward
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import structlog
from dotenv import load_dotenv

from cryptolab.config import load_settings
from cryptolab.data.csv_loader import CsvHistoricalDataService
from cryptolab.errors import CryptoLabError
from cryptolab.models import EvaluationContext
from cryptolab.storage.parameter_store import JsonlParameterStore
from cryptolab.strategy.registry import build_default_selector
from cryptolab.utils.logging import setup_logging
from research.backtesting.engine import BacktestEngine
from research.backtesting.walk_forward import WalkForwardOptimizer

logger = structlog.get_logger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Backtest strategy parameters")
    parser.add_argument("--config", default="config/settings.yaml", help="Settings YAML file")
    parser.add_argument("--symbol", required=True, help="Symbol to backtest (e.g. XBTUSD)")
    parser.add_argument("--period", type=int, help="Candle period in minutes")
    parser.add_argument("--strategy", type=str, help="Strategy name (default: stored winner)")
    parser.add_argument("--defaults", action="store_true", help="Ignore stored parameters")
    parser.add_argument("--walk-forward", action="store_true", help="In-sample vs out-of-sample")
    parser.add_argument("--output", type=str, help="Output JSON file for results")
    parser.add_argument("--console-logs", action="store_true", help="Human-readable logs")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    load_dotenv()
    setup_logging(json_output=not args.console_logs)

    try:
        settings = load_settings(args.config)
        period = args.period or settings.period
        selector = build_default_selector()

        record = None
        if not args.defaults:
            record = JsonlParameterStore(settings.parameter_store_path).load_latest(args.symbol)
            if record is not None and args.strategy and record.strategy_name != args.strategy:
                logger.warning(
                    "stored_parameters_for_other_strategy",
                    symbol=args.symbol,
                    stored=record.strategy_name,
                    requested=args.strategy,
                )
                record = None

        strategy_name = args.strategy or (
            record.strategy_name if record else selector.default_strategy
        )
        strategy = selector.get_strategy(strategy_name)
        params = record.parameters if record else strategy.get_strategy_parameters(args.symbol)

        bars = CsvHistoricalDataService(settings.data_dir).query_historical_data(
            [args.symbol], period
        )[args.symbol]
    except CryptoLabError as e:
        logger.error("validation_setup_failed", symbol=args.symbol, error=str(e))
        sys.exit(1)

    context = EvaluationContext(symbol=args.symbol, period=period, bars=bars)
    engine = BacktestEngine(
        strategy,
        lookback_window=settings.backtest.lookback_window,
        adjust_time_frame=settings.backtest.adjust_time_frame,
    )

    logger.info(
        "validation_starting",
        symbol=args.symbol,
        strategy=strategy_name,
        parameters_source="store" if record else "defaults",
        bars_count=len(context),
    )

    try:
        result = engine.run_simulation(context, params, settings.backtest.initial_capital)
    except CryptoLabError as e:
        logger.error("backtest_failed", symbol=args.symbol, strategy=strategy_name, error=str(e))
        sys.exit(1)

    output = {
        "symbol": args.symbol,
        "strategy": strategy_name,
        "parameters": params.to_dict(),
        "backtest": result.to_dict(),
    }

    logger.info(
        "backtest_complete",
        total_profit_percent=result.total_profit_percent,
        sharpe=result.sharpe_ratio,
        max_drawdown=result.max_drawdown_percent,
        win_rate=result.win_rate,
        num_trades=result.total_trades,
    )

    passed = True
    if args.walk_forward:
        try:
            validation = WalkForwardOptimizer(config=settings.walk_forward).validate(
                context, engine, params, settings.backtest.initial_capital
            )
        except CryptoLabError as e:
            logger.error("walk_forward_failed", symbol=args.symbol, error=str(e))
            sys.exit(1)
        output["walk_forward"] = validation.to_dict()
        passed = validation.passed
        if not passed:
            logger.warning("strategy_failed_walk_forward_validation", symbol=args.symbol)

    print("\n" + "=" * 80)
    print(f"BACKTEST: {args.symbol} / {strategy_name}")
    print("=" * 80)
    print(f"Return:       {result.total_profit_percent:.2f}%")
    print(f"Sharpe:       {result.sharpe_ratio:.3f}")
    print(f"Max Drawdown: {result.max_drawdown_percent:.2f}%")
    print(f"Win Rate:     {result.win_rate:.1%}")
    print(f"Trades:       {result.total_trades}")
    if "walk_forward" in output:
        print(f"Walk-Forward: {'PASSED' if passed else 'FAILED'}")
    print("=" * 80)

    if args.output:
        with open(args.output, "w") as f:
            json.dump(output, f, indent=2, default=str)
        logger.info("results_written", path=args.output)

    if not passed:
        sys.exit(1)


if __name__ == "__main__":
    main()
