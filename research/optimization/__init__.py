"""
Parameter optimization.

codec: genotype layouts per strategy family
fitness: scoring of simulated parameters
genetic: generational search for one strategy
multi_strategy: best strategy per symbol
runner: many symbols, persisted results
"""

from research.optimization.codec import Gene, ParameterCodec, codec_for_strategy, get_codec
from research.optimization.fitness import PENALTY_FITNESS, FitnessEvaluator, RegimeRobustFitness
from research.optimization.genetic import GeneticOptimizer, OptimizationResult
from research.optimization.multi_strategy import MultiStrategyOptimizer, StrategySelection
from research.optimization.runner import OptimizationRunner, SymbolReport

__all__ = [
    "FitnessEvaluator",
    "Gene",
    "GeneticOptimizer",
    "MultiStrategyOptimizer",
    "OptimizationResult",
    "OptimizationRunner",
    "PENALTY_FITNESS",
    "ParameterCodec",
    "RegimeRobustFitness",
    "StrategySelection",
    "SymbolReport",
    "codec_for_strategy",
    "get_codec",
]
