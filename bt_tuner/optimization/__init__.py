"""Parameter optimization and A/B testing."""

from .engine import (
    CancellationToken,
    ObjectiveFunction,
    OptimizationEngine,
    OptimizationError,
    OptimizationResult,
    OptimizationRun,
    RunState,
)
from .experiment import ABTestRunner, ExperimentGroup, ExperimentResult, ExperimentSession
from .space import Dataset, ParameterSpace, ParameterVector, PerformanceMetric
from .strategies import Genetic, GridSearch, HeuristicBayesian, RandomSearch, create_generator

__all__ = [
    "CancellationToken",
    "ObjectiveFunction",
    "OptimizationEngine",
    "OptimizationError",
    "OptimizationResult",
    "OptimizationRun",
    "RunState",
    "ABTestRunner",
    "ExperimentGroup",
    "ExperimentResult",
    "ExperimentSession",
    "Dataset",
    "ParameterSpace",
    "ParameterVector",
    "PerformanceMetric",
    "Genetic",
    "GridSearch",
    "HeuristicBayesian",
    "RandomSearch",
    "create_generator",
]
