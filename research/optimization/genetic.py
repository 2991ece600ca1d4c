"""
Genetic parameter search.

Evolves a population of genotypes with DEAP, scoring each by simulating
the strategy with the decoded parameters. The search is deterministic
for a given seed: every optimizer owns a random.Random, and parallel
evaluation returns fitness in population order.

Per generation:
1. Evaluate every individual (optionally in a thread pool)
2. Update the hall of fame with the best individual ever seen
3. Copy the elites, fill the rest by tournament selection,
   single-point crossover and per-gene mutation
4. Stop at max_generations, after steady_generations without
   improvement, or on cancellation
"""

from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from functools import partial
import math
import random
import threading
from typing import Callable, Optional, Sequence
import structlog

from deap import base, creator, tools
import numpy as np

from cryptolab.config import BacktestConfig, GeneticConfig
from cryptolab.models import EvaluationContext, StrategyParameters
from cryptolab.regime.segmenter import RegimeSegmenter
from cryptolab.strategy.base import Strategy
from research.backtesting.engine import BacktestEngine
from research.optimization.codec import Genotype, ParameterCodec, codec_for_strategy
from research.optimization.fitness import FitnessEvaluator, RegimeRobustFitness

logger = structlog.get_logger(__name__)

FitnessFunction = Callable[[StrategyParameters], float]

# DEAP registers created classes on its creator module, once per process
if not hasattr(creator, "ParameterFitness"):
    creator.create("ParameterFitness", base.Fitness, weights=(1.0,))
if not hasattr(creator, "ParameterIndividual"):
    creator.create("ParameterIndividual", list, fitness=creator.ParameterFitness)

# DEAP operators draw from the module-level random generator
_global_random_lock = threading.Lock()


@contextmanager
def _seeded_global_random(rng: random.Random):
    """Run DEAP operators on `rng`'s stream, isolated from other optimizers."""
    with _global_random_lock:
        saved = random.getstate()
        random.setstate(rng.getstate())
        try:
            yield
        finally:
            rng.setstate(random.getstate())
            random.setstate(saved)


@dataclass(frozen=True)
class GenerationStats:
    """Fitness summary of one generation."""
    generation: int
    best_fitness: float
    mean_fitness: float
    worst_fitness: float
    best_ever_fitness: float


@dataclass
class OptimizationResult:
    """Outcome of a genetic search."""
    strategy_name: str
    symbol: str
    parameters: StrategyParameters
    fitness: float
    generations: int
    stop_reason: str
    cancelled: bool = False
    history: list[GenerationStats] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "strategy_name": self.strategy_name,
            "symbol": self.symbol,
            "parameters": self.parameters.to_dict(),
            "fitness": self.fitness,
            "generations": self.generations,
            "stop_reason": self.stop_reason,
            "cancelled": self.cancelled,
        }


def mutate_fresh_alleles(individual, codec: ParameterCodec, indpb: float):
    """Replace each gene, with probability `indpb`, by a fresh in-bounds allele."""
    for i in range(len(individual)):
        if random.random() < indpb:
            individual[i] = codec.random_gene(i, random)
    return (individual,)


class GeneticOptimizer:
    """
    Genetic optimizer for one strategy.

    Args:
        strategy: Strategy whose parameters are searched
        codec: Genotype layout (defaults to the strategy's registered codec)
        config: Search settings
        backtest_config: Simulation settings used by the fitness function
        segmenter: When given, fitness is scored across regime segments
    """

    def __init__(
        self,
        strategy: Strategy,
        codec: Optional[ParameterCodec] = None,
        config: Optional[GeneticConfig] = None,
        backtest_config: Optional[BacktestConfig] = None,
        segmenter: Optional[RegimeSegmenter] = None,
    ):
        self.strategy = strategy
        self.codec = codec
        self.config = config or GeneticConfig()
        self.backtest_config = backtest_config or BacktestConfig(
            initial_capital=self.config.initial_capital
        )
        self.segmenter = segmenter
        self.engine = BacktestEngine(
            strategy,
            lookback_window=self.backtest_config.lookback_window,
            adjust_time_frame=self.backtest_config.adjust_time_frame,
        )
        self._cancel = threading.Event()

        logger.info(
            "genetic_optimizer_initialized",
            strategy=strategy.name,
            population_size=self.config.population_size,
            max_generations=self.config.max_generations,
            seed=self.config.seed,
        )

    def cancel(self) -> None:
        """Ask a running search to stop after the current generation."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def build_fitness(self, context: EvaluationContext) -> FitnessFunction:
        """Fitness over the whole context, or across its regimes when segmenting."""
        capital = self.config.initial_capital
        if self.segmenter is not None:
            contexts = self.segmenter.create_regime_contexts(context)
            if len(contexts) > 1:
                logger.info(
                    "regime_robust_fitness_enabled",
                    symbol=context.symbol,
                    regimes=[c.metadata.get("regime_type") for c in contexts],
                )
                return RegimeRobustFitness(self.engine, contexts, capital)
        return FitnessEvaluator(self.engine, context, capital)

    def build_toolbox(self, codec: ParameterCodec, rng: random.Random) -> base.Toolbox:
        """DEAP toolbox wiring the codec into initialization and the operators."""
        cfg = self.config
        toolbox = base.Toolbox()
        toolbox.register(
            "individual",
            tools.initIterate,
            creator.ParameterIndividual,
            partial(codec.random_genotype, rng),
        )
        toolbox.register("population", tools.initRepeat, list, toolbox.individual)
        toolbox.register("mate", tools.cxOnePoint)
        toolbox.register(
            "mutate", mutate_fresh_alleles, codec=codec, indpb=cfg.mutation_probability
        )
        toolbox.register("select", tools.selTournament, tournsize=cfg.tournament_size)
        toolbox.register("elites", tools.selBest, k=cfg.elite_count)
        return toolbox

    def optimize_parameters(self, context: EvaluationContext) -> StrategyParameters:
        """Search for the best parameters on `context`."""
        return self.run(context).parameters

    def run(
        self,
        context: EvaluationContext,
        fitness: Optional[FitnessFunction] = None,
    ) -> OptimizationResult:
        """
        Run the genetic search.

        Args:
            context: Bars to optimize on
            fitness: Override the fitness function (defaults to build_fitness)

        Returns:
            OptimizationResult holding the best individual seen in any generation
        """
        cfg = self.config
        codec = self.codec or codec_for_strategy(self.strategy.name, context.symbol)
        fitness = fitness or self.build_fitness(context)
        rng = random.Random(cfg.seed)
        toolbox = self.build_toolbox(codec, rng)
        cache: dict[Genotype, float] = {}

        stats = tools.Statistics(key=lambda ind: ind.fitness.values[0])
        stats.register("max", np.max)
        stats.register("mean", np.mean)
        stats.register("min", np.min)
        hall_of_fame = tools.HallOfFame(1)

        logger.info(
            "optimization_starting",
            symbol=context.symbol,
            strategy=self.strategy.name,
            codec=codec.name,
            bars=len(context),
        )

        population = toolbox.population(n=cfg.population_size)
        best_fitness = -math.inf
        stall = 0
        history: list[GenerationStats] = []
        stop_reason = "max_generations"
        cancelled = False

        executor = (
            ThreadPoolExecutor(max_workers=cfg.max_workers, thread_name_prefix="fitness")
            if cfg.max_workers > 1
            else None
        )
        try:
            for generation in range(1, cfg.max_generations + 1):
                if generation > 1 and self._cancel.is_set():
                    stop_reason = "cancelled"
                    cancelled = True
                    break

                self._evaluate(population, codec, fitness, cache, executor)
                hall_of_fame.update(population)

                if hall_of_fame[0].fitness.values[0] > best_fitness:
                    best_fitness = hall_of_fame[0].fitness.values[0]
                    stall = 0
                else:
                    stall += 1

                record = stats.compile(population)
                generation_stats = GenerationStats(
                    generation=generation,
                    best_fitness=float(record["max"]),
                    mean_fitness=float(record["mean"]),
                    worst_fitness=float(record["min"]),
                    best_ever_fitness=float(best_fitness),
                )
                history.append(generation_stats)
                logger.info(
                    "generation_complete",
                    symbol=context.symbol,
                    strategy=self.strategy.name,
                    generation=generation,
                    best_fitness=generation_stats.best_fitness,
                    mean_fitness=generation_stats.mean_fitness,
                    best_ever_fitness=generation_stats.best_ever_fitness,
                )

                if stall >= cfg.steady_generations:
                    stop_reason = "steady_fitness"
                    break
                if generation == cfg.max_generations:
                    break

                with _seeded_global_random(rng):
                    population = self._next_generation(population, codec, toolbox)
        finally:
            if executor is not None:
                executor.shutdown(wait=True)

        parameters = codec.decode(hall_of_fame[0])
        logger.info(
            "optimization_complete",
            symbol=context.symbol,
            strategy=self.strategy.name,
            best_fitness=best_fitness,
            generations=len(history),
            stop_reason=stop_reason,
        )

        return OptimizationResult(
            strategy_name=self.strategy.name,
            symbol=context.symbol,
            parameters=parameters,
            fitness=float(best_fitness),
            generations=len(history),
            stop_reason=stop_reason,
            cancelled=cancelled,
            history=history,
        )

    def _evaluate(
        self,
        population: Sequence,
        codec: ParameterCodec,
        fitness: FitnessFunction,
        cache: dict[Genotype, float],
        executor: Optional[ThreadPoolExecutor],
    ) -> None:
        """Assign fitness to every individual; unseen genotypes are scored in order."""
        genotypes = [tuple(ind) for ind in population]
        pending = [g for g in dict.fromkeys(genotypes) if g not in cache]

        def evaluate(genotype: Genotype) -> float:
            return fitness(codec.decode(genotype))

        if executor is None:
            results = [evaluate(g) for g in pending]
        else:
            results = list(executor.map(evaluate, pending))

        cache.update(zip(pending, results))
        for ind, genotype in zip(population, genotypes):
            ind.fitness.values = (cache[genotype],)

    def _next_generation(
        self,
        population: list,
        codec: ParameterCodec,
        toolbox: base.Toolbox,
    ) -> list:
        """Elites plus bred offspring; must run under _seeded_global_random."""
        cfg = self.config
        elites = list(map(toolbox.clone, toolbox.elites(population)))
        needed = cfg.population_size - len(elites)

        parents = toolbox.select(population, needed + needed % 2)
        children = list(map(toolbox.clone, parents))

        for first, second in zip(children[::2], children[1::2]):
            if len(codec) > 1 and random.random() < cfg.crossover_probability:
                toolbox.mate(first, second)

        for child in children:
            toolbox.mutate(child)
            del child.fitness.values

        return elites + children[:needed]
