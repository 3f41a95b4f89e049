"""
Tests for candidate generators and the optimization engine.
"""
import random
from types import SimpleNamespace

import pytest

from bt_tuner.config import OptimizerConfig
from bt_tuner.core import NodeState
from bt_tuner.core.parameters import NodeHandle, ParameterArena, ParameterRecord, ParameterSpec
from bt_tuner.events import EventBus, EventType
from bt_tuner.optimization import (
    CancellationToken,
    Dataset,
    Genetic,
    GridSearch,
    HeuristicBayesian,
    ObjectiveFunction,
    OptimizationEngine,
    OptimizationError,
    ParameterSpace,
    PerformanceMetric,
    RandomSearch,
    RunState,
    create_generator,
)
from bt_tuner.optimization.engine import evaluate_objective, has_converged, population_variance
from bt_tuner.telemetry import TreeTelemetry

HANDLE = NodeHandle("duelist", "attack")
SCHEMA = (
    ParameterSpec("range", 0.0, 10.0, 5.0),
    ParameterSpec("count", 1, 5, 3, is_integer=True),
)


class ArenaMonitor:
    """Monitor stand-in whose success rate is the attack range / 10."""

    frame_time_ms = 1.0
    memory_mb = 100.0
    current_fps = 60.0

    def __init__(self, arena, fixed=None):
        self.arena = arena
        self.fixed = fixed

    def current_status(self):
        if self.fixed is not None:
            return SimpleNamespace(average_success_rate=self.fixed)
        return SimpleNamespace(average_success_rate=self.arena.get(HANDLE, "range") / 10.0)

    def telemetry(self, tree_id):
        return None


@pytest.fixture
def arena():
    arena = ParameterArena()
    arena.register(HANDLE, ParameterRecord(SCHEMA))
    return arena


@pytest.fixture
def space(arena):
    return ParameterSpace.from_arena(arena, "duelist")


@pytest.fixture
def bus():
    return EventBus()


def make_engine(arena, bus=None, monitor=None, **overrides):
    settings = dict(algorithm="grid", data_collection_interval=1.0, objective_window=1, prng_seed=7)
    settings.update(overrides)
    engine = OptimizationEngine(OptimizerConfig(**settings), arena, events=bus, monitor=monitor)
    engine.register_tree("duelist")
    return engine


class TestParameterSpace:

    def test_from_arena(self, space):
        assert space.total_count == 2
        assert space.flat_names() == ["attack.range", "attack.count"]
        assert space.bounds() == [(0.0, 10.0, False), (1.0, 5.0, True)]
        assert space.current_values() == [5.0, 3.0]

    def test_unknown_tree(self, arena):
        with pytest.raises(KeyError):
            ParameterSpace.from_arena(arena, "nobody")

    def test_coerce(self, space):
        assert space.coerce([12.0, 2.6]) == [10.0, 3.0]

    def test_dataset_best_points(self):
        dataset = Dataset("duelist", max_points=3)
        for i, success in enumerate((0.2, 0.9, 0.5, 0.7)):
            dataset.add([float(i)], PerformanceMetric.measure(float(i), success, 1.0))

        assert len(dataset) == 3
        assert [p.parameters for p in dataset.best_by_efficiency(2)] == [[1.0], [3.0]]


class TestGenerators:
    """Candidate proposals stay inside the space."""

    def test_grid_walk(self, space):
        grid = GridSearch(max_iterations=9)
        dataset = Dataset("duelist")

        assert grid.grid_size(2) == 3
        assert grid.propose(space, dataset, 0) == [0.0, 1.0]
        assert grid.propose(space, dataset, 1) == [5.0, 1.0]
        assert grid.propose(space, dataset, 3) == [0.0, 3.0]
        assert grid.propose(space, dataset, 5) == [10.0, 3.0]

    def test_grid_size_floor(self):
        assert GridSearch(max_iterations=3).grid_size(2) == 2
        assert GridSearch(max_iterations=100).grid_size(0) == 2

    @pytest.mark.parametrize("cls", [RandomSearch, HeuristicBayesian, Genetic])
    def test_random_fallback_in_bounds(self, cls, space):
        generator = cls(rng=random.Random(1))
        for i in range(20):
            value, count = generator.propose(space, Dataset("duelist"), i)
            assert 0.0 <= value <= 10.0
            assert count in (1.0, 2.0, 3.0, 4.0, 5.0)

    def test_seeded_generators_repeat(self, space):
        first = RandomSearch(rng=random.Random(42)).propose(space, Dataset("duelist"), 0)
        second = RandomSearch(rng=random.Random(42)).propose(space, Dataset("duelist"), 0)
        assert first == second

    def test_bayesian_centers_on_best_points(self, space):
        dataset = Dataset("duelist")
        for i in range(2):
            dataset.add([8.0, 4.0], PerformanceMetric.measure(float(i), 0.9, 1.0))
        for i in range(8):
            dataset.add([1.0, 2.0], PerformanceMetric.measure(float(i), 0.1, 1.0))

        value, count = HeuristicBayesian(rng=random.Random(3)).propose(space, dataset, 0)

        assert 7.0 <= value <= 9.0
        assert count == 4.0

    def test_genetic_children_come_from_elites(self, space):
        dataset = Dataset("duelist")
        for i in range(10):
            dataset.add([9.0, 5.0] if i < 5 else [0.0, 1.0], PerformanceMetric.measure(float(i), 0.9 if i < 5 else 0.1, 1.0))

        genetic = Genetic(rng=random.Random(5))
        genetic.mutation_rate = 0.0

        assert genetic.propose(space, dataset, 0) == [9.0, 5.0]

    def test_create_generator(self):
        assert isinstance(create_generator("grid"), GridSearch)
        assert create_generator("bayesian").name == "bayesian"
        with pytest.raises(ValueError):
            create_generator("annealing")


class TestObjectives:

    def test_empty_window(self):
        assert evaluate_objective([], ObjectiveFunction.OVERALL) == 0.0

    def test_each_objective(self):
        metrics = [
            PerformanceMetric.measure(0.0, 0.8, 2.0, memory_mb=4.0),
            PerformanceMetric.measure(1.0, 0.6, 2.0, memory_mb=4.0),
        ]

        assert evaluate_objective(metrics, ObjectiveFunction.SUCCESS_RATE) == pytest.approx(0.7)
        assert evaluate_objective(metrics, ObjectiveFunction.EXECUTION_SPEED) == pytest.approx(0.5)
        assert evaluate_objective(metrics, ObjectiveFunction.EFFICIENCY) == pytest.approx(0.35)
        assert evaluate_objective(metrics, ObjectiveFunction.MEMORY_EFFICIENCY) == pytest.approx(0.25)
        assert evaluate_objective(metrics, ObjectiveFunction.OVERALL) == pytest.approx(0.5 * 0.7 + 0.3 * 0.5 + 0.2 * 0.25)

    def test_convergence(self):
        assert has_converged([0.50, 0.51, 0.49, 0.50, 0.50], 0.001)
        assert not has_converged([0.2, 0.8, 0.5], 0.001)
        assert not has_converged([0.5, 0.5], 0.001)
        assert population_variance([1.0, 3.0]) == pytest.approx(1.0)


class TestEngine:
    """Registration, collection and parameter writes."""

    def test_register_unknown_tree(self, arena):
        engine = OptimizationEngine(OptimizerConfig(), arena)
        with pytest.raises(KeyError):
            engine.register_tree("nobody")

    def test_apply_parameters_clamps_and_emits(self, arena, bus):
        updates = []
        bus.subscribe(EventType.PARAMETER_UPDATED, updates.append)
        engine = make_engine(arena, bus)

        stored = engine.apply_parameters("duelist", [20.0, 2.4])

        assert stored == [10.0, 2.0]
        assert arena.get(HANDLE, "range") == 10.0
        assert engine.space("duelist").current_values() == [10.0, 2.0]
        assert updates[0].payload == {"attack.range": 10.0, "attack.count": 2.0}

    def test_collect_on_interval(self, arena):
        engine = make_engine(arena, monitor=ArenaMonitor(arena))

        for t in range(4):
            engine.update(float(t))

        history = engine.performance_history("duelist")
        assert [m.timestamp for m in history] == [1.0, 2.0, 3.0]
        assert history[0].success_rate == pytest.approx(0.5)
        assert len(engine.dataset("duelist")) == 3
        assert engine.objective_score("duelist", "success_rate") == pytest.approx(0.5)

    def test_windowed_success_from_telemetry(self, arena):
        engine = make_engine(arena)
        telemetry = SimpleNamespace(success_count=8, failure_count=2, success_rate=0.8)
        monitor = SimpleNamespace(
            current_status=lambda: SimpleNamespace(average_success_rate=0.0),
            telemetry=lambda tree_id: telemetry,
            frame_time_ms=1.0, memory_mb=0.0, current_fps=60.0,
        )
        telemetry.record_parameter_sample = lambda *sample: None

        engine.collect_from_monitor(monitor, now=1.0)
        telemetry.success_count, telemetry.failure_count = 9, 11
        engine.collect_from_monitor(monitor, now=2.0)

        rates = [m.success_rate for m in engine.performance_history("duelist")]
        assert rates == [pytest.approx(0.8), pytest.approx(0.1)]

    def test_collect_feeds_parameter_correlations(self, arena):
        telemetry = TreeTelemetry("duelist")
        monitor = ArenaMonitor(arena)
        monitor.telemetry = lambda tree_id: telemetry
        engine = make_engine(arena, monitor=monitor)

        for t, attack_range in enumerate((2.0, 4.0, 6.0, 8.0), start=1):
            engine.apply_parameters("duelist", [attack_range, 3.0])
            for _ in range(int(attack_range)):
                telemetry.record_execution(NodeState.SUCCESS, 1.0)
            for _ in range(10 - int(attack_range)):
                telemetry.record_execution(NodeState.FAILURE, 1.0)
            engine.collect_from_monitor(now=float(t))

        correlation = telemetry.correlations[("attack", "range")]
        assert list(correlation.values) == [2.0, 4.0, 6.0, 8.0]
        assert correlation.coefficient == pytest.approx(1.0)
        assert list(telemetry.correlations[("attack", "count")].values) == [3.0] * 4
        assert telemetry.correlations[("attack", "count")].coefficient == 0.0

    def test_report_and_dict(self, arena):
        engine = make_engine(arena)
        engine.collect("duelist", PerformanceMetric.measure(0.0, 0.8, 16.0))

        assert "Registered trees: 1" in engine.generate_report()
        data = engine.to_dict()
        assert data["trees"]["duelist"]["data_points"] == 1
        assert data["trees"]["duelist"]["parameters"]["attack.range"] == 5.0


class TestOptimizationRun:
    """Run state machine driven by engine ticks."""

    def test_grid_run_keeps_best_candidate(self, arena, bus):
        completed = []
        bus.subscribe(EventType.OPTIMIZATION_COMPLETED, completed.append)
        engine = make_engine(arena, bus, ArenaMonitor(arena), max_iterations=4)

        run = engine.start_optimization("duelist", now=0.0)
        assert engine.is_optimizing("duelist")

        for t in range(9):
            engine.update(float(t))

        assert run.done
        assert not engine.is_optimizing()
        result = run.result
        assert result.iterations == 4
        assert result.final_score == pytest.approx(1.0)
        assert result.parameters == [10.0, 1.0]
        assert not result.converged
        assert arena.get(HANDLE, "range") == 10.0
        assert completed[0].payload is result
        assert engine.optimization_history() == [result]

    def test_waits_for_telemetry(self, arena):
        engine = make_engine(arena, monitor=ArenaMonitor(arena))
        run = engine.start_optimization("duelist", now=0.0)

        assert run.step(0.0) == RunState.AWAIT_TELEMETRY
        assert run.step(1.0) == RunState.AWAIT_TELEMETRY
        assert run.iteration == 0

    def test_converges_on_flat_scores(self, arena):
        engine = make_engine(
            arena,
            monitor=ArenaMonitor(arena, fixed=0.5),
            algorithm="random",
            max_iterations=50,
            convergence_min_iterations=2,
        )
        run = engine.start_optimization("duelist", now=0.0)

        t = 0
        while not run.done and t < 200:
            engine.update(float(t))
            t += 1

        assert run.result.converged
        assert run.result.iterations == 3

    def test_cancellation(self, arena):
        engine = make_engine(arena, monitor=ArenaMonitor(arena))
        token = CancellationToken()
        run = engine.start_optimization("duelist", token=token, now=0.0)
        engine.update(0.0)

        token.cancel()
        engine.update(1.0)

        assert run.result.cancelled
        assert not engine.is_optimizing("duelist")
        assert arena.get(HANDLE, "range") == 5.0

    def test_cancel_through_engine(self, arena):
        engine = make_engine(arena)
        engine.start_optimization("duelist", now=0.0)

        assert engine.cancel_optimization("duelist")
        engine.update(0.0)

        assert not engine.cancel_optimization("duelist")
        assert engine.optimization_history()[0].cancelled

    def test_invalid_requests(self, arena):
        engine = make_engine(arena)
        with pytest.raises(KeyError):
            engine.start_optimization("nobody")
        with pytest.raises(ValueError):
            engine.start_optimization("duelist", algorithm="annealing")
        with pytest.raises(ValueError):
            engine.start_optimization("duelist", objective="happiness")

        engine.start_optimization("duelist")
        with pytest.raises(OptimizationError):
            engine.start_optimization("duelist")

    def test_unregister_cancels(self, arena):
        engine = make_engine(arena)
        engine.start_optimization("duelist")

        assert engine.unregister_tree("duelist")
        assert engine.tree_ids() == []
