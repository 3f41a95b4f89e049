"""
Optimization Engine - tunes node parameters from live performance data.

The engine samples a per-tree ``PerformanceMetric`` on a fixed interval,
keeps a (parameters, metric) dataset per tree, and runs optimization
searches as explicit state machines advanced once per tick. Parameters are
only ever written through the ``ParameterArena``.

Example:
    >>> engine = OptimizationEngine(OptimizerConfig(), arena, events=bus, monitor=monitor)
    >>> engine.register_tree("duelist")
    >>> run = engine.start_optimization("duelist", algorithm="grid", now=0.0)
    >>> for tick in range(...):
    ...     engine.update(now)
"""
from __future__ import annotations

import logging
import random
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Deque, Dict, List, Optional

from ..config import OBJECTIVES, OptimizerConfig
from ..core.parameters import ParameterArena
from ..events import EventBus, EventType
from ..metrics import get_metrics, record_error
from .experiment import ABTestRunner, ExperimentResult, ExperimentSession
from .space import Dataset, ParameterSpace, PerformanceMetric
from .strategies import CandidateGenerator, create_generator

logger = logging.getLogger(__name__)


class OptimizationError(Exception):
    """Raised for invalid optimization requests, e.g. a second run on one tree."""


class ObjectiveFunction(str, Enum):
    SUCCESS_RATE = "success_rate"
    EXECUTION_SPEED = "execution_speed"
    EFFICIENCY = "efficiency"
    MEMORY_EFFICIENCY = "memory_efficiency"
    OVERALL = "overall"


def evaluate_objective(metrics: List[PerformanceMetric], objective: ObjectiveFunction) -> float:
    """Score a window of metrics; 0 without data."""
    if not metrics:
        return 0.0
    n = len(metrics)
    success = sum(m.success_rate for m in metrics) / n
    speed = 1.0 / max(sum(m.execution_time for m in metrics) / n, 0.001)
    memory = 1.0 / max(sum(m.memory_usage for m in metrics) / n, 0.001)

    if objective == ObjectiveFunction.SUCCESS_RATE:
        return success
    if objective == ObjectiveFunction.EXECUTION_SPEED:
        return speed
    if objective == ObjectiveFunction.EFFICIENCY:
        return sum(m.efficiency for m in metrics) / n
    if objective == ObjectiveFunction.MEMORY_EFFICIENCY:
        return memory
    return 0.5 * success + 0.3 * speed + 0.2 * memory


def population_variance(values: List[float]) -> float:
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return sum((v - mean) ** 2 for v in values) / len(values)


def has_converged(scores: List[float], threshold: float) -> bool:
    """Scores have settled when their population variance drops below ``threshold``."""
    if len(scores) < 3:
        return False
    return population_variance(scores) < threshold


class CancellationToken:
    """Cooperative cancellation flag checked by a run on every step."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class RunState(str, Enum):
    PROPOSE_CANDIDATE = "propose_candidate"
    AWAIT_TELEMETRY = "await_telemetry"
    EVALUATE = "evaluate"
    CHECK_CONVERGENCE = "check_convergence"
    DONE = "done"


@dataclass
class OptimizationResult:
    tree_id: str
    algorithm: str
    objective: str
    initial_score: float
    final_score: float
    improvement_percentage: float
    iterations: int
    parameters: List[float] = field(default_factory=list)
    converged: bool = False
    cancelled: bool = False
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict:
        return {
            "tree_id": self.tree_id,
            "algorithm": self.algorithm,
            "objective": self.objective,
            "initial_score": self.initial_score,
            "final_score": self.final_score,
            "improvement_percentage": self.improvement_percentage,
            "iterations": self.iterations,
            "parameters": list(self.parameters),
            "converged": self.converged,
            "cancelled": self.cancelled,
            "timestamp": self.timestamp,
        }


class OptimizationRun:
    """
    One optimization search on one tree.

    States: PROPOSE_CANDIDATE writes a candidate through the arena,
    AWAIT_TELEMETRY waits two collection intervals, EVALUATE scores the
    candidate, CHECK_CONVERGENCE loops back or finishes. ``step`` runs
    transitions until it has to wait or the run is done.
    """

    def __init__(
        self,
        engine: "OptimizationEngine",
        tree_id: str,
        objective: ObjectiveFunction,
        generator: CandidateGenerator,
        token: Optional[CancellationToken] = None,
        now: float = 0.0,
    ):
        self.engine = engine
        self.tree_id = tree_id
        self.objective = objective
        self.generator = generator
        self.token = token or CancellationToken()
        self.config = engine.config

        self.state = RunState.PROPOSE_CANDIDATE
        self.started_at = now
        self.iteration = 0
        self.scores: List[float] = []
        self.candidate: List[float] = []
        self._wait_until = now

        self.initial_score = engine.objective_score(tree_id, objective)
        self.best_score = self.initial_score
        self.best_parameters = engine.space(tree_id).current_values()
        self.result: Optional[OptimizationResult] = None

    @property
    def done(self) -> bool:
        return self.state == RunState.DONE

    def cancel(self) -> None:
        self.token.cancel()

    def step(self, now: float) -> RunState:
        if self.done:
            return self.state
        if self.token.cancelled:
            self._finish(converged=False, cancelled=True)
            return self.state

        while not self.done:
            if self.state == RunState.PROPOSE_CANDIDATE:
                proposed = self.generator.propose(
                    self.engine.space(self.tree_id),
                    self.engine.dataset(self.tree_id),
                    self.iteration,
                )
                self.candidate = self.engine.apply_parameters(self.tree_id, proposed)
                self._wait_until = now + 2 * self.config.data_collection_interval
                self.state = RunState.AWAIT_TELEMETRY

            elif self.state == RunState.AWAIT_TELEMETRY:
                if now < self._wait_until:
                    break
                self.state = RunState.EVALUATE

            elif self.state == RunState.EVALUATE:
                score = self.engine.objective_score(self.tree_id, self.objective)
                self.scores.append(score)
                if score > self.best_score:
                    self.best_score = score
                    self.best_parameters = list(self.candidate)
                    logger.debug(f"{self.tree_id}: new best {score:.4f} at iteration {self.iteration}")
                self.iteration += 1
                self.state = RunState.CHECK_CONVERGENCE

            elif self.state == RunState.CHECK_CONVERGENCE:
                window = self.scores[-self.config.convergence_window:]
                if (
                    self.iteration > self.config.convergence_min_iterations
                    and has_converged(window, self.config.convergence_threshold)
                ):
                    logger.info(f"{self.tree_id}: optimization converged after {self.iteration} iterations")
                    self._finish(converged=True)
                elif self.iteration >= self.config.max_iterations:
                    self._finish(converged=False)
                else:
                    self.state = RunState.PROPOSE_CANDIDATE

        return self.state

    def _finish(self, converged: bool, cancelled: bool = False) -> None:
        self.engine.apply_parameters(self.tree_id, self.best_parameters)

        if self.initial_score != 0:
            improvement = (self.best_score - self.initial_score) / abs(self.initial_score) * 100.0
        else:
            improvement = 0.0

        self.result = OptimizationResult(
            tree_id=self.tree_id,
            algorithm=self.generator.name,
            objective=self.objective.value,
            initial_score=self.initial_score,
            final_score=self.best_score,
            improvement_percentage=improvement,
            iterations=self.iteration,
            parameters=list(self.best_parameters),
            converged=converged,
            cancelled=cancelled,
        )
        self.state = RunState.DONE
        self.engine._run_finished(self)


class OptimizationEngine:
    """
    Per-tree metric collection, optimization runs and A/B tests.

    Example:
        >>> engine = OptimizationEngine(config, arena, events=bus)
        >>> engine.register_tree("duelist")
        >>> engine.collect("duelist", PerformanceMetric.measure(0.0, 0.8, 16.0))
        >>> engine.objective_score("duelist", ObjectiveFunction.SUCCESS_RATE)
        0.8
    """

    def __init__(
        self,
        config: Optional[OptimizerConfig] = None,
        arena: Optional[ParameterArena] = None,
        events: Optional[EventBus] = None,
        monitor=None,
    ):
        self.config = config or OptimizerConfig()
        self.arena = arena or ParameterArena()
        self.events = events
        self.monitor = monitor
        self.rng = random.Random(self.config.prng_seed)

        self._spaces: Dict[str, ParameterSpace] = {}
        self._datasets: Dict[str, Dataset] = {}
        self._history: Dict[str, Deque[PerformanceMetric]] = {}
        self._last_counts: Dict[str, tuple] = {}
        self._runs: Dict[str, OptimizationRun] = {}
        self._results: List[OptimizationResult] = []
        self.experiments = ABTestRunner(self, events=events, critical_value=self.config.critical_value)

        self.now = 0.0
        self._last_collection: Optional[float] = None

    def attach_monitor(self, monitor) -> None:
        self.monitor = monitor

    # -- trees -----------------------------------------------------------

    def register_tree(self, tree_id: str) -> ParameterSpace:
        """
        Start tracking a tree whose nodes are registered in the arena.

        Raises:
            KeyError: The arena has no parameters for ``tree_id``
        """
        space = ParameterSpace.from_arena(self.arena, tree_id)
        self._spaces[tree_id] = space
        self._datasets.setdefault(tree_id, Dataset(tree_id, self.config.max_data_points))
        self._history.setdefault(tree_id, deque(maxlen=self.config.max_data_points))
        logger.info(f"Optimizer tracking {tree_id} ({space.total_count} parameters)")
        return space

    def unregister_tree(self, tree_id: str) -> bool:
        if tree_id not in self._spaces:
            return False
        self.cancel_optimization(tree_id)
        self._runs.pop(tree_id, None)
        for store in (self._spaces, self._datasets, self._history, self._last_counts):
            store.pop(tree_id, None)
        return True

    def tree_ids(self) -> List[str]:
        return list(self._spaces.keys())

    def space(self, tree_id: str) -> ParameterSpace:
        if tree_id not in self._spaces:
            raise KeyError(f"Tree {tree_id!r} is not registered with the optimizer")
        return self._spaces[tree_id]

    def dataset(self, tree_id: str) -> Dataset:
        self.space(tree_id)
        return self._datasets[tree_id]

    def apply_parameters(self, tree_id: str, vector: List[float]) -> List[float]:
        """Write a flat vector through the arena; returns the stored (clamped) values."""
        space = self.space(tree_id)
        stored = self.arena.apply_flat(tree_id, vector)
        space.set_current(stored)
        if self.events is not None:
            self.events.emit(
                EventType.PARAMETER_UPDATED,
                tree_id,
                dict(zip(space.flat_names(), stored)),
            )
        return stored

    # -- data collection -------------------------------------------------

    def collect(self, tree_id: str, metric: PerformanceMetric, telemetry=None) -> None:
        """
        Record a metric together with the tree's current parameters.

        Each parameter value is also paired with the metric's efficiency
        in the tree's telemetry, which tracks how each parameter
        correlates with performance.
        """
        space = self.space(tree_id)
        values = space.current_values()
        self._history[tree_id].append(metric)
        self._datasets[tree_id].add(values, metric)

        if telemetry is None and self.monitor is not None:
            telemetry = self.monitor.telemetry(tree_id)
        if telemetry is not None:
            for (node_id, name), value in zip(space.entries(), values):
                telemetry.record_parameter_sample(node_id, name, value, metric.efficiency)

    def collect_from_monitor(self, monitor=None, now: Optional[float] = None) -> int:
        """
        Sample one metric per tree from the monitor.

        Success rate is windowed: completions since the previous sample,
        falling back to the cumulative rate when nothing completed.
        Returns the number of trees sampled.
        """
        monitor = monitor or self.monitor
        if monitor is None:
            return 0
        now = self.now if now is None else now
        status = monitor.current_status()

        sampled = 0
        for tree_id in self.tree_ids():
            telemetry = monitor.telemetry(tree_id)
            if telemetry is None:
                success = status.average_success_rate
            else:
                success = self._windowed_success(tree_id, telemetry)

            metric = PerformanceMetric.measure(
                timestamp=now,
                success_rate=success,
                frame_time_ms=monitor.frame_time_ms,
                memory_mb=monitor.memory_mb,
                fps=monitor.current_fps,
            )
            self.collect(tree_id, metric, telemetry)
            sampled += 1
        return sampled

    def _windowed_success(self, tree_id: str, telemetry) -> float:
        previous = self._last_counts.get(tree_id, (0, 0))
        current = (telemetry.success_count, telemetry.failure_count)
        self._last_counts[tree_id] = current

        successes = current[0] - previous[0]
        failures = current[1] - previous[1]
        if successes < 0 or failures < 0 or successes + failures == 0:
            return telemetry.success_rate
        return successes / (successes + failures)

    def performance_history(self, tree_id: str, count: int = -1) -> List[PerformanceMetric]:
        """Latest ``count`` metrics of a tree, oldest first; all when count <= 0."""
        history = list(self._history.get(tree_id, ()))
        if count <= 0:
            return history
        return history[-count:]

    def latest_metric(self, tree_id: str) -> Optional[PerformanceMetric]:
        history = self._history.get(tree_id)
        return history[-1] if history else None

    def objective_score(self, tree_id: str, objective) -> float:
        objective = ObjectiveFunction(objective)
        return evaluate_objective(self.performance_history(tree_id, self.config.objective_window), objective)

    # -- ticking ---------------------------------------------------------

    def update(self, now: float) -> None:
        """Collect if due, then advance runs and experiments."""
        self.now = now
        if self._last_collection is None:
            self._last_collection = now
        if now - self._last_collection >= self.config.data_collection_interval:
            self.collect_from_monitor(now=now)
            self._last_collection = now

        for tree_id, run in list(self._runs.items()):
            try:
                run.step(now)
            except Exception as e:
                logger.error(f"Optimization run on {tree_id} failed: {e}")
                record_error("optimizer", type(e).__name__)
                self._runs.pop(tree_id, None)

        self.experiments.update(now)

    # -- optimization ----------------------------------------------------

    def start_optimization(
        self,
        tree_id: str,
        objective: Optional[str] = None,
        algorithm: Optional[str] = None,
        token: Optional[CancellationToken] = None,
        now: Optional[float] = None,
    ) -> OptimizationRun:
        """
        Begin an optimization run on a tree.

        Raises:
            KeyError: Tree not registered
            ValueError: Unknown objective or algorithm
            OptimizationError: A run is already active on this tree
        """
        self.space(tree_id)
        if self.is_optimizing(tree_id):
            raise OptimizationError(f"Optimization already running on {tree_id!r}")

        objective_name = objective or self.config.objective
        if objective_name not in OBJECTIVES:
            raise ValueError(f"Unknown objective {objective_name!r}; expected one of {list(OBJECTIVES)}")
        generator = create_generator(
            algorithm or self.config.algorithm,
            rng=random.Random(self.rng.random()) if self.config.prng_seed is not None else None,
            max_iterations=self.config.max_iterations,
        )

        now = self.now if now is None else now
        run = OptimizationRun(self, tree_id, ObjectiveFunction(objective_name), generator, token, now)
        self._runs[tree_id] = run
        get_metrics().increment("runs_started", subsystem="optimizer")
        logger.info(
            f"Optimization started on {tree_id}: {generator.name}/{objective_name}, "
            f"initial score {run.initial_score:.4f}"
        )
        return run

    def is_optimizing(self, tree_id: Optional[str] = None) -> bool:
        if tree_id is None:
            return bool(self._runs)
        return tree_id in self._runs

    def cancel_optimization(self, tree_id: str) -> bool:
        """Request cancellation; the run finishes on its next step."""
        run = self._runs.get(tree_id)
        if run is None:
            return False
        run.cancel()
        return True

    def active_runs(self) -> List[OptimizationRun]:
        return list(self._runs.values())

    def _run_finished(self, run: OptimizationRun) -> None:
        self._runs.pop(run.tree_id, None)
        result = run.result
        self._results.append(result)
        get_metrics().increment("runs_completed", subsystem="optimizer")
        logger.info(
            f"Optimization on {run.tree_id} finished after {result.iterations} iterations: "
            f"{result.initial_score:.4f} -> {result.final_score:.4f} "
            f"({result.improvement_percentage:+.1f}%)"
        )
        if self.events is not None:
            self.events.emit(EventType.OPTIMIZATION_COMPLETED, run.tree_id, result)

    def optimization_history(self) -> List[OptimizationResult]:
        return list(self._results)

    # -- A/B testing -----------------------------------------------------

    def start_ab_test(
        self,
        tree_id: str,
        test_name: str,
        params_a: List[float],
        params_b: List[float],
        duration: Optional[float] = None,
        now: Optional[float] = None,
    ) -> ExperimentSession:
        """
        Raises:
            KeyError: Tree not registered
            ValueError: Test name already running, or a vector of the wrong length
        """
        space = self.space(tree_id)
        for label, params in (("A", params_a), ("B", params_b)):
            if len(params) != space.total_count:
                raise ValueError(
                    f"Group {label}: expected {space.total_count} values, got {len(params)}"
                )
        return self.experiments.start(
            tree_id,
            test_name,
            params_a,
            params_b,
            duration if duration is not None else self.config.experiment_duration,
            self.now if now is None else now,
        )

    def active_experiments(self) -> List[ExperimentSession]:
        return self.experiments.active()

    def experiment_results(self) -> List[ExperimentResult]:
        return self.experiments.results()

    # -- reporting -------------------------------------------------------

    def generate_report(self) -> str:
        lines = [
            "=== Optimization Report ===",
            f"Registered trees: {len(self._spaces)}",
            f"Total data points: {sum(len(d) for d in self._datasets.values())}",
            f"Completed optimizations: {len(self._results)}",
            f"Active optimizations: {len(self._runs)}",
            f"Active experiments: {len(self.experiments.active())}",
            "",
        ]
        for tree_id in self.tree_ids():
            latest = self.latest_metric(tree_id)
            if latest is None:
                lines.append(f"{tree_id}: no data")
            else:
                lines.append(
                    f"{tree_id}: efficiency {latest.efficiency:.3f}, "
                    f"success {latest.success_rate:.1%}"
                )

        if self._results:
            last = self._results[-1]
            lines += [
                "",
                "Latest optimization:",
                f"  Tree: {last.tree_id}",
                f"  Algorithm: {last.algorithm}",
                f"  Objective: {last.objective}",
                f"  Improvement: {last.improvement_percentage:.2f}%",
                f"  Iterations: {last.iterations}",
            ]
        return "\n".join(lines)

    def to_dict(self) -> Dict:
        return {
            "trees": {
                tree_id: {
                    "parameters": dict(zip(space.flat_names(), space.current_values())),
                    "data_points": len(self._datasets[tree_id]),
                    "optimizing": tree_id in self._runs,
                }
                for tree_id, space in self._spaces.items()
            },
            "history": [r.to_dict() for r in self._results],
            "experiments": [s.to_dict() for s in self.experiments.active()],
        }
