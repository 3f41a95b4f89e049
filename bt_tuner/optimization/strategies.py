"""
Candidate generators for parameter optimization.

Every generator proposes a flat vector in the ``ParameterSpace`` order,
clamped to bounds with integer genes rounded. Each owns a
``random.Random`` so runs are reproducible under a fixed seed.
"""
from __future__ import annotations

import logging
import random
from typing import Dict, List, Optional, Type

from .space import Dataset, ParameterSpace

logger = logging.getLogger(__name__)


class CandidateGenerator:
    """Base class; subclasses implement ``propose``."""

    name = "base"

    def __init__(self, rng: Optional[random.Random] = None, max_iterations: int = 100):
        self.rng = rng or random.Random()
        self.max_iterations = max_iterations

    def propose(self, space: ParameterSpace, dataset: Dataset, iteration: int) -> List[float]:
        raise NotImplementedError

    def random_candidate(self, space: ParameterSpace) -> List[float]:
        return [self._random_gene(lo, hi, is_int) for lo, hi, is_int in space.bounds()]

    def _random_gene(self, lo: float, hi: float, is_int: bool) -> float:
        value = self.rng.uniform(lo, hi)
        return float(round(value)) if is_int else value


class RandomSearch(CandidateGenerator):
    """Uniform random sample of every parameter."""

    name = "random"

    def propose(self, space: ParameterSpace, dataset: Dataset, iteration: int) -> List[float]:
        return self.random_candidate(space)


class GridSearch(CandidateGenerator):
    """
    Walk a regular grid.

    The grid has ``floor(max_iterations ** (1 / n))`` steps per dimension
    (at least 2). Parameter ``k`` uses digit ``k`` of the iteration number
    written in that base, so consecutive iterations sweep the first
    parameter fastest.
    """

    name = "grid"

    def grid_size(self, total: int) -> int:
        if total <= 0:
            return 2
        return max(2, int(self.max_iterations ** (1.0 / total)))

    def propose(self, space: ParameterSpace, dataset: Dataset, iteration: int) -> List[float]:
        bounds = space.bounds()
        size = self.grid_size(len(bounds))

        candidate: List[float] = []
        for k, (lo, hi, is_int) in enumerate(bounds):
            index = (iteration // size ** k) % size
            value = lo + (hi - lo) * index / (size - 1)
            candidate.append(float(round(value)) if is_int else value)
        return candidate


class HeuristicBayesian(CandidateGenerator):
    """
    Mean of the best-performing points plus noise.

    Not a Gaussian process: averages the parameters of the top 20% of
    points by efficiency and perturbs each gene by up to 10% of its range.
    Falls back to random sampling below ``min_points``.
    """

    name = "bayesian"
    min_points = 5
    noise = 0.1

    def propose(self, space: ParameterSpace, dataset: Dataset, iteration: int) -> List[float]:
        total = space.total_count
        points = [p for p in dataset.points if len(p.parameters) == total]
        if len(points) < self.min_points:
            return self.random_candidate(space)

        top = sorted(points, key=lambda p: p.metric.efficiency, reverse=True)
        top = top[:max(1, len(points) // 5)]

        candidate: List[float] = []
        for k, (lo, hi, is_int) in enumerate(space.bounds()):
            mean = sum(p.parameters[k] for p in top) / len(top)
            value = mean + self.rng.uniform(-self.noise, self.noise) * (hi - lo)
            value = max(lo, min(hi, value))
            candidate.append(float(round(value)) if is_int else value)
        return candidate


class Genetic(CandidateGenerator):
    """
    One child per iteration from the elite half of the dataset.

    Two parents are drawn from the top 50% by efficiency, crossed over at a
    single random point and mutated gene by gene.
    """

    name = "genetic"
    min_points = 10
    mutation_rate = 0.1

    def propose(self, space: ParameterSpace, dataset: Dataset, iteration: int) -> List[float]:
        total = space.total_count
        points = [p for p in dataset.points if len(p.parameters) == total]
        if len(points) < self.min_points:
            return self.random_candidate(space)

        elites = sorted(points, key=lambda p: p.metric.efficiency, reverse=True)
        elites = elites[:max(1, len(points) // 2)]
        parent1 = self.rng.choice(elites).parameters
        parent2 = self.rng.choice(elites).parameters

        crossover = self.rng.randint(1, total - 1) if total > 1 else 1
        child = list(parent1[:crossover]) + list(parent2[crossover:])

        for k, (lo, hi, is_int) in enumerate(space.bounds()):
            if self.rng.random() < self.mutation_rate:
                child[k] = self._random_gene(lo, hi, is_int)
        return space.coerce(child)


GENERATORS: Dict[str, Type[CandidateGenerator]] = {
    cls.name: cls for cls in (RandomSearch, GridSearch, HeuristicBayesian, Genetic)
}


def create_generator(
    algorithm: str,
    rng: Optional[random.Random] = None,
    max_iterations: int = 100,
) -> CandidateGenerator:
    """
    Build a generator by name.

    Raises:
        ValueError: Unknown algorithm
    """
    try:
        cls = GENERATORS[algorithm]
    except KeyError:
        raise ValueError(
            f"Unknown optimization algorithm {algorithm!r}; expected one of {sorted(GENERATORS)}"
        ) from None
    logger.debug(f"Using {cls.__name__} candidate generator")
    return cls(rng=rng, max_iterations=max_iterations)
