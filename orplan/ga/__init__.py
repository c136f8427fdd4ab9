"""
Genetic search over order -> (bucket, lines) assignments.

Usage:
    from orplan.ga import GeneticOptimizer, GAConfig
    optimizer = GeneticOptimizer(model, GAConfig(population_size=30, generations=20, seed=1))
    result = optimizer.optimize()
"""

from .individual import Individual, OrderAssignment
from .tracker import CapacityTracker
from .evaluator import FitnessBreakdown, FitnessConfig, FitnessEvaluator
from .ga_core import (
    CapacityValidationError,
    GAConfig,
    GeneticOptimizer,
    OptimizationCancelled,
    OptimizationResult,
    Population,
)

__all__ = [
    # representation
    "Individual",
    "OrderAssignment",
    "CapacityTracker",
    # fitness
    "FitnessBreakdown",
    "FitnessConfig",
    "FitnessEvaluator",
    # GA
    "GAConfig",
    "GeneticOptimizer",
    "OptimizationResult",
    "Population",
    # errors
    "CapacityValidationError",
    "OptimizationCancelled",
]
