"""
Tests for fitness scoring and the genetic search.
"""

from concurrent.futures import ThreadPoolExecutor
import math
import random

from deap import creator
import numpy as np
import pytest

from cryptolab.config import GeneticConfig
from cryptolab.errors import ConfigurationError
from cryptolab.models import StrategyParameters
from cryptolab.regime.segmenter import RegimeSegmenter
from research.backtesting.engine import BacktestEngine, BacktestResult
from research.optimization.codec import Gene, ParameterCodec
from research.optimization.fitness import (
    PENALTY_FITNESS,
    FitnessEvaluator,
    RegimeRobustFitness,
    score,
)
from research.optimization.genetic import GeneticOptimizer, mutate_fresh_alleles

from conftest import FailingStrategy, RsiThresholdStrategy, ScriptedStrategy


@pytest.fixture
def rsi_codec():
    return ParameterCodec(
        "rsi_test",
        [
            Gene("rsi_period", 5, 20),
            Gene("rsi_buy_threshold", 20, 45, kind="float"),
            Gene("rsi_sell_threshold", 55, 80, kind="float"),
        ],
        StrategyParameters(minimum_candles=0),
        lambda params: params.rsi_period + 1,
    )


@pytest.fixture
def small_config():
    return GeneticConfig(
        population_size=8,
        tournament_size=3,
        max_generations=3,
        steady_generations=10,
        seed=1234,
    )


@pytest.fixture
def short_context(sample_bars, make_context):
    return make_context(sample_bars.iloc[:200].reset_index(drop=True))


class TestFitness:
    """Fitness scoring and penalty mapping."""

    def test_score_formula(self):
        result = BacktestResult(
            total_profit_percent=4.5,
            total_trades=2,
            sharpe_ratio=0.5,
            max_drawdown_percent=1.0,
            win_rate=0.5,
            ending_capital=1045.0,
        )

        assert score(result) == pytest.approx(0.75)

    def test_score_of_empty_result_is_zero(self):
        assert score(BacktestResult.empty(1000.0)) == 0.0

    def test_failing_strategy_scores_penalty(self, sample_context, plain_params):
        evaluator = FitnessEvaluator(BacktestEngine(FailingStrategy()), sample_context)

        assert evaluator(plain_params) == PENALTY_FITNESS == -1.0

    def test_regime_robust_weights_mean_and_worst(self, make_context, plain_params):
        """Scores 0.5 and 0.0 give 0.6 * 0.25 + 0.4 * 0.0."""
        engine = BacktestEngine(ScriptedStrategy(buy_at={0, 2}, sell_at={1, 3}))
        trending = make_context([100.0, 110.0, 100.0, 95.0, 95.0])
        flat = make_context([100.0] * 5)

        fitness = RegimeRobustFitness(engine, [trending, flat])

        assert FitnessEvaluator(engine, trending)(plain_params) == pytest.approx(0.5)
        assert FitnessEvaluator(engine, flat)(plain_params) == pytest.approx(0.0)
        assert fitness(plain_params) == pytest.approx(0.15)

    def test_regime_robust_penalty_on_any_failure(self, sample_context, plain_params):
        fitness = RegimeRobustFitness(
            BacktestEngine(FailingStrategy()), [sample_context, sample_context]
        )

        assert fitness(plain_params) == PENALTY_FITNESS

    def test_regime_robust_needs_contexts(self):
        with pytest.raises(ValueError):
            RegimeRobustFitness(BacktestEngine(FailingStrategy()), [])


class TestGeneticOptimizer:
    """Generational search behavior."""

    def test_deterministic_for_seed(self, short_context, rsi_codec, small_config):
        first = GeneticOptimizer(RsiThresholdStrategy(), rsi_codec, small_config)
        second = GeneticOptimizer(RsiThresholdStrategy(), rsi_codec, small_config)

        first = first.run(short_context)
        second = second.run(short_context)

        assert first.parameters == second.parameters
        assert first.fitness == second.fitness
        assert first.history == second.history

    def test_parallel_evaluation_matches_sequential(self, short_context, rsi_codec, small_config):
        from dataclasses import replace

        sequential = GeneticOptimizer(RsiThresholdStrategy(), rsi_codec, small_config).run(
            short_context
        )
        parallel = GeneticOptimizer(
            RsiThresholdStrategy(), rsi_codec, replace(small_config, max_workers=4)
        ).run(short_context)

        assert parallel.parameters == sequential.parameters
        assert parallel.fitness == sequential.fitness

    def test_failing_strategy_completes_with_penalty(self, sample_context, rsi_codec, small_config):
        result = GeneticOptimizer(FailingStrategy(), rsi_codec, small_config).run(sample_context)

        assert result.fitness == PENALTY_FITNESS
        assert result.generations == small_config.max_generations
        assert result.stop_reason == "max_generations"
        assert all(stats.worst_fitness == PENALTY_FITNESS for stats in result.history)

    def test_elitism_never_loses_the_best(self, short_context, rsi_codec):
        """Generation best fitness never decreases and the result is the best ever seen."""
        config = GeneticConfig(
            population_size=10, tournament_size=3, max_generations=6, steady_generations=10, seed=7
        )

        result = GeneticOptimizer(RsiThresholdStrategy(), rsi_codec, config).run(
            short_context, fitness=lambda params: params.rsi_buy_threshold
        )

        bests = [stats.best_fitness for stats in result.history]
        assert bests == sorted(bests)
        assert result.fitness == max(bests)
        assert result.parameters.rsi_buy_threshold == pytest.approx(result.fitness)

    def test_prefers_the_trading_genotype(self, make_context):
        """Gene value 1 trades a profitable script, 0 never trades."""

        class GatedStrategy(ScriptedStrategy):
            def should_buy(self, bars, params):
                return params.lookback_period == 2 and super().should_buy(bars, params)

        closes = [100.0, 110.0, 100.0, 95.0, 95.0]
        codec = ParameterCodec(
            "gate",
            [Gene("lookback_period", 1, 2)],
            StrategyParameters(minimum_candles=0),
        )
        config = GeneticConfig(
            population_size=10, tournament_size=3, max_generations=4, steady_generations=10, seed=3
        )

        result = GeneticOptimizer(
            GatedStrategy(buy_at={0, 2}, sell_at={1, 3}), codec, config
        ).run(make_context(closes))

        assert result.parameters.lookback_period == 2
        assert result.fitness == pytest.approx(0.5)

    def test_stops_after_steady_generations(self, short_context, rsi_codec):
        config = GeneticConfig(
            population_size=6, tournament_size=2, max_generations=10, steady_generations=2, seed=5
        )

        result = GeneticOptimizer(RsiThresholdStrategy(), rsi_codec, config).run(
            short_context, fitness=lambda params: 1.0
        )

        assert result.stop_reason == "steady_fitness"
        assert result.generations == 3

    def test_cancel_keeps_best_so_far(self, short_context, rsi_codec, small_config):
        optimizer = GeneticOptimizer(RsiThresholdStrategy(), rsi_codec, small_config)
        calls = []

        def fitness(params):
            calls.append(params)
            optimizer.cancel()
            return float(params.rsi_period)

        result = optimizer.run(short_context, fitness=fitness)

        assert result.cancelled is True
        assert result.stop_reason == "cancelled"
        assert result.generations == 1
        assert result.fitness == max(float(p.rsi_period) for p in calls)

    def test_default_codec_follows_strategy(self, short_context, small_config):
        optimizer = GeneticOptimizer(RsiThresholdStrategy(), config=small_config)

        result = optimizer.run(short_context, fitness=lambda params: 0.0)

        assert result.parameters.minimum_candles == 300

    def test_short_series_uses_single_context_fitness(self, short_context, rsi_codec):
        optimizer = GeneticOptimizer(
            RsiThresholdStrategy(), rsi_codec, segmenter=RegimeSegmenter()
        )

        assert isinstance(optimizer.build_fitness(short_context), FitnessEvaluator)

    def test_optimize_parameters_returns_decoded_parameters(
        self, short_context, rsi_codec, small_config
    ):
        params = GeneticOptimizer(
            RsiThresholdStrategy(), rsi_codec, small_config
        ).optimize_parameters(short_context)

        assert 5 <= params.rsi_period <= 20
        assert 20.0 <= params.rsi_buy_threshold <= 45.0
        assert params.minimum_candles == params.rsi_period + 1
        assert math.isfinite(params.rsi_sell_threshold)


class TestBreeding:
    """DEAP toolbox and random stream isolation."""

    def test_toolbox_builds_unevaluated_individuals(self, rsi_codec, small_config):
        optimizer = GeneticOptimizer(RsiThresholdStrategy(), rsi_codec, small_config)

        population = optimizer.build_toolbox(rsi_codec, random.Random(1)).population(n=4)

        assert len(population) == 4
        for ind in population:
            assert len(ind) == len(rsi_codec)
            assert not ind.fitness.valid
            assert 5 <= ind[0] <= 20

    def test_mutation_draws_fresh_in_bounds_alleles(self, rsi_codec):
        individual = creator.ParameterIndividual([5, 20.0, 55.0])
        random.seed(3)

        mutant, = mutate_fresh_alleles(individual, rsi_codec, indpb=1.0)

        assert mutant is individual
        assert isinstance(mutant[0], int)
        for gene, allele in zip(rsi_codec.genes, mutant):
            assert gene.low <= allele <= gene.high

    def test_module_random_state_untouched(self, short_context, rsi_codec, small_config):
        random.seed(99)
        before = random.getstate()

        GeneticOptimizer(RsiThresholdStrategy(), rsi_codec, small_config).run(
            short_context, fitness=lambda params: params.rsi_buy_threshold
        )

        assert random.getstate() == before

    def test_concurrent_searches_match_sequential(self, short_context, rsi_codec):
        configs = [
            GeneticConfig(
                population_size=10, tournament_size=3, max_generations=5,
                steady_generations=10, seed=seed,
            )
            for seed in (1, 2, 3, 4)
        ]

        def search(config):
            return GeneticOptimizer(RsiThresholdStrategy(), rsi_codec, config).run(
                short_context, fitness=lambda params: params.rsi_buy_threshold
            )

        sequential = [search(config) for config in configs]
        with ThreadPoolExecutor(max_workers=4) as executor:
            concurrent = list(executor.map(search, configs))

        assert [r.history for r in concurrent] == [r.history for r in sequential]
        assert [r.parameters for r in concurrent] == [r.parameters for r in sequential]


class TestGeneticConfig:
    """Search settings validation."""

    def test_defaults(self):
        config = GeneticConfig()

        assert config.population_size == 50
        assert config.tournament_size == 5
        assert config.crossover_probability == 0.7
        assert config.mutation_probability == 0.2
        assert config.elite_count == 2
        assert config.max_generations == 15
        assert config.steady_generations == 10

    @pytest.mark.parametrize(
        "overrides",
        [
            {"population_size": 1},
            {"tournament_size": 0},
            {"elite_count": 50},
            {"crossover_probability": 1.5},
            {"max_workers": 0},
        ],
    )
    def test_invalid_settings(self, overrides):
        with pytest.raises(ConfigurationError):
            GeneticConfig(**overrides)
