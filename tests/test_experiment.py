"""
Tests for A/B experiments.
"""
from types import SimpleNamespace

import pytest

from bt_tuner.config import OptimizerConfig
from bt_tuner.core.parameters import NodeHandle, ParameterArena, ParameterRecord, ParameterSpec
from bt_tuner.events import EventBus, EventType
from bt_tuner.optimization import ExperimentGroup, ExperimentSession, OptimizationEngine, PerformanceMetric
from bt_tuner.optimization.experiment import SWITCHES_PER_TEST, analyze_experiment

HANDLE = NodeHandle("duelist", "attack")


def efficiency_metrics(center, count=20):
    return [
        PerformanceMetric(timestamp=float(i), efficiency=center + 0.01 * ((i % 3) - 1))
        for i in range(count)
    ]


def session(metrics_a, metrics_b):
    return ExperimentSession(
        test_name="range_test",
        tree_id="duelist",
        start_time=0.0,
        duration=8.0,
        params_a=[9.0],
        params_b=[3.0],
        metrics_a=metrics_a,
        metrics_b=metrics_b,
    )


class TestAnalysis:
    """Comparing group efficiency."""

    def test_clear_winner(self):
        result = analyze_experiment(session(efficiency_metrics(0.9), efficiency_metrics(0.6)))

        assert result.winner == ExperimentGroup.A
        assert result.is_significant
        assert result.improvement_percentage == pytest.approx(50.0, abs=0.5)
        assert result.winning_params == [9.0]
        assert result.sample_size_a == result.sample_size_b == 20

    def test_b_can_win(self):
        result = analyze_experiment(session(efficiency_metrics(0.4), efficiency_metrics(0.8)))

        assert result.winner == ExperimentGroup.B
        assert result.winning_params == [3.0]

    def test_tie_has_no_winner(self):
        same = efficiency_metrics(0.5)
        result = analyze_experiment(session(same, list(same)))

        assert result.winner is None
        assert result.improvement_percentage == 0.0
        assert not result.is_significant
        assert result.to_dict()["winner"] is None

    def test_noisy_groups_not_significant(self):
        a = [PerformanceMetric(timestamp=0.0, efficiency=v) for v in (0.5, 0.7, 0.4, 0.8, 0.6)]
        b = [PerformanceMetric(timestamp=0.0, efficiency=v) for v in (0.55, 0.65, 0.45, 0.75, 0.62)]

        assert not analyze_experiment(session(a, b)).is_significant


class TestSession:

    def test_switch_schedule(self):
        s = session([], [])

        assert s.switch_interval == 8.0 / SWITCHES_PER_TEST
        assert not s.due_for_switch(1.0)
        assert s.due_for_switch(2.0)
        assert s.switch() == ExperimentGroup.B
        assert s.current_params == [3.0]
        assert not s.due_for_switch(3.0)
        assert s.is_complete(8.0)

    def test_metric_recorded_once_and_only_after_switch(self):
        s = session([], [])

        assert not s.record(PerformanceMetric(timestamp=0.0, efficiency=0.5))
        assert s.record(PerformanceMetric(timestamp=1.0, efficiency=0.5))
        assert not s.record(PerformanceMetric(timestamp=1.0, efficiency=0.5))

        s.switch(2.0)
        assert not s.record(PerformanceMetric(timestamp=2.0, efficiency=0.4))
        assert s.record(PerformanceMetric(timestamp=2.5, efficiency=0.4))
        assert len(s.metrics_a) == 1
        assert len(s.metrics_b) == 1


@pytest.fixture
def arena():
    arena = ParameterArena()
    arena.register(HANDLE, ParameterRecord((ParameterSpec("range", 0.0, 10.0, 5.0),)))
    return arena


@pytest.fixture
def engine(arena):
    monitor = SimpleNamespace(
        current_status=lambda: SimpleNamespace(average_success_rate=arena.get(HANDLE, "range") / 10.0),
        telemetry=lambda tree_id: None,
        frame_time_ms=1.0,
        memory_mb=0.0,
        current_fps=60.0,
    )
    engine = OptimizationEngine(
        OptimizerConfig(data_collection_interval=1.0, prng_seed=1),
        arena,
        events=EventBus(),
        monitor=monitor,
    )
    engine.register_tree("duelist")
    return engine


class TestRunner:
    """A/B sessions driven by engine ticks."""

    def test_runs_to_completion(self, engine, arena):
        completed = []
        engine.events.subscribe(EventType.EXPERIMENT_COMPLETED, completed.append)

        s = engine.start_ab_test("duelist", "range_test", [9.0], [3.0], duration=8.0, now=0.0)
        assert arena.get(HANDLE, "range") == 9.0

        for t in range(9):
            engine.update(float(t))

        assert s.switch_count == 3
        assert engine.active_experiments() == []
        result = engine.experiment_results()[0]
        assert result.winner == ExperimentGroup.A
        # metrics collected at the switch instants 2, 4 and 6 are left out
        assert [m.timestamp for m in s.metrics_a] == [1.0, 5.0]
        assert [m.timestamp for m in s.metrics_b] == [3.0, 7.0, 8.0]
        assert result.sample_size_a + result.sample_size_b == 5
        assert arena.get(HANDLE, "range") == 9.0
        assert completed[0].payload is result

    def test_frame_rate_ticks_count_each_metric_once(self, engine):
        s = engine.start_ab_test("duelist", "range_test", [9.0], [3.0], duration=8.0, now=0.0)

        for frame in range(8 * 60 + 1):
            engine.update(frame / 60)

        result = engine.experiment_results()[0]
        assert len(engine.performance_history("duelist")) == 8
        assert result.sample_size_a == 2
        assert result.sample_size_b == 3
        assert all(m.success_rate == pytest.approx(0.9) for m in s.metrics_a)
        assert all(m.success_rate == pytest.approx(0.3) for m in s.metrics_b)

    def test_switches_parameters(self, engine, arena):
        engine.start_ab_test("duelist", "range_test", [9.0], [3.0], duration=8.0, now=0.0)

        engine.update(0.0)
        engine.update(2.0)

        assert arena.get(HANDLE, "range") == 3.0

    def test_duplicate_name_rejected(self, engine):
        engine.start_ab_test("duelist", "range_test", [9.0], [3.0], now=0.0)
        with pytest.raises(ValueError):
            engine.start_ab_test("duelist", "range_test", [8.0], [2.0], now=0.0)

    def test_wrong_vector_length(self, engine):
        with pytest.raises(ValueError):
            engine.start_ab_test("duelist", "bad", [9.0, 1.0], [3.0], now=0.0)

    def test_unknown_tree(self, engine):
        with pytest.raises(KeyError):
            engine.start_ab_test("nobody", "t", [1.0], [2.0])
