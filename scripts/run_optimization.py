#!/usr/bin/env python3
"""
Optimize strategy parameters for a list of symbols.

Usage:
    python scripts/run_optimization.py --symbols XBTUSD,ETHUSD --period 60

    # One strategy instead of multi-strategy selection
    python scripts/run_optimization.py --strategy moving_average_scalper --seed 42

    # Optimize on the first 70% and validate on the rest
    python scripts/run_optimization.py --walk-forward --output results.json

Ctrl-C stops every search after its current generation; the best
parameters found so far are still stored.
"""

import argparse
import json
import signal
import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import structlog
from dotenv import load_dotenv

from cryptolab.config import load_settings
from cryptolab.data.csv_loader import CsvHistoricalDataService
from cryptolab.errors import ConfigurationError
from cryptolab.regime.segmenter import RegimeSegmenter, RegimeSegmenterConfig
from cryptolab.storage.parameter_store import JsonlParameterStore
from cryptolab.strategy.registry import build_default_selector
from cryptolab.utils.logging import setup_logging
from research.optimization.genetic import GeneticOptimizer
from research.optimization.multi_strategy import MultiStrategyOptimizer
from research.optimization.runner import OptimizationRunner

logger = structlog.get_logger(__name__)

MULTI_STRATEGY = "multi_strategy"


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Genetic parameter optimization")
    parser.add_argument("--config", default="config/settings.yaml", help="Settings YAML file")
    parser.add_argument("--symbols", type=str, help="Comma-separated symbols (e.g. XBTUSD,ETHUSD)")
    parser.add_argument("--period", type=int, help="Candle period in minutes")
    parser.add_argument("--strategy", type=str, help=f"Strategy name or '{MULTI_STRATEGY}'")
    parser.add_argument("--generations", type=int, help="Maximum generations")
    parser.add_argument("--population", type=int, help="Population size")
    parser.add_argument("--seed", type=int, help="Random seed for reproducible runs")
    parser.add_argument("--workers", type=int, help="Threads per generation")
    parser.add_argument("--walk-forward", action="store_true", help="Validate out of sample")
    parser.add_argument("--no-regimes", action="store_true", help="Disable regime-robust fitness")
    parser.add_argument("--no-store", action="store_true", help="Do not persist parameters")
    parser.add_argument("--output", type=str, help="Output JSON file for the summary")
    parser.add_argument("--console-logs", action="store_true", help="Human-readable logs")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    load_dotenv()
    try:
        settings = load_settings(args.config)
    except ConfigurationError as e:
        setup_logging(json_output=not args.console_logs)
        logger.error("invalid_configuration", error=str(e))
        sys.exit(2)

    setup_logging(settings.log_level, json_output=not args.console_logs)

    symbols = (
        [s.strip() for s in args.symbols.split(",") if s.strip()]
        if args.symbols
        else list(settings.symbols)
    )
    period = args.period or settings.period
    strategy_name = args.strategy or settings.strategy

    genetic_overrides = {
        key: value
        for key, value in (
            ("max_generations", args.generations),
            ("population_size", args.population),
            ("seed", args.seed),
            ("max_workers", args.workers),
        )
        if value is not None
    }
    try:
        genetic = replace(settings.genetic, **genetic_overrides)
        segmenter = (
            None
            if args.no_regimes or not settings.use_regimes
            else RegimeSegmenter(RegimeSegmenterConfig.for_period(period, **settings.regime))
        )
        selector = build_default_selector()
        if strategy_name != MULTI_STRATEGY:
            selector.get_strategy(strategy_name)
    except ConfigurationError as e:
        logger.error("invalid_configuration", error=str(e))
        sys.exit(2)

    def optimizer_factory(symbol: str):
        if strategy_name == MULTI_STRATEGY:
            return MultiStrategyOptimizer(
                selector,
                strategy_names=settings.candidate_strategies or None,
                config=genetic,
                backtest_config=settings.backtest,
                segmenter=segmenter,
            )
        return GeneticOptimizer(
            selector.get_strategy(strategy_name),
            config=genetic,
            backtest_config=settings.backtest,
            segmenter=segmenter,
        )

    runner = OptimizationRunner(
        data_service=CsvHistoricalDataService(settings.data_dir),
        optimizer_factory=optimizer_factory,
        period=period,
        store=None if args.no_store else JsonlParameterStore(settings.parameter_store_path),
        max_workers=settings.max_symbol_workers,
        walk_forward=settings.walk_forward if args.walk_forward else None,
        selector=selector,
        backtest_config=settings.backtest,
    )

    def handle_interrupt(signum, frame):
        logger.warning("interrupt_received_cancelling")
        runner.cancel()

    signal.signal(signal.SIGINT, handle_interrupt)

    logger.info(
        "optimization_starting",
        symbols=symbols,
        period=period,
        strategy=strategy_name,
        walk_forward=args.walk_forward,
    )

    try:
        reports = runner.run(symbols)
    except Exception as e:
        logger.exception("optimization_crashed", error=str(e))
        sys.exit(1)

    summary = {
        "timestamp": datetime.now().isoformat(),
        "period": period,
        "strategy": strategy_name,
        "best_strategies": selector.best_strategies(),
        "results": [r.to_dict() for r in reports],
    }

    if args.output:
        with open(args.output, "w") as f:
            json.dump(summary, f, indent=2, default=str)
        logger.info("summary_written", path=args.output)

    print("\n" + "=" * 80)
    print("OPTIMIZATION SUMMARY")
    print("=" * 80)
    for report in reports:
        if report.status != "optimized":
            print(f"\n{report.symbol}: FAILED ({report.error})")
            continue
        print(f"\n{report.symbol}: {report.strategy_name} (fitness {report.fitness:.4f})")
        if report.validation is not None:
            oos = report.validation.out_of_sample
            status = "PASSED" if report.validation.passed else "FAILED"
            print(
                f"  Walk-Forward: {status} "
                f"(OOS sharpe {oos.sharpe_ratio:.3f}, max DD {oos.max_drawdown_percent:.2f}%)"
            )
    print("\n" + "=" * 80)

    if any(r.status != "optimized" for r in reports):
        sys.exit(1)


if __name__ == "__main__":
    main()
