"""
Tests for the performance monitor.
"""
import pytest

from bt_tuner.config import MonitorConfig
from bt_tuner.core import NodeState
from bt_tuner.events import EventBus, EventType
from bt_tuner.monitoring import AlertSeverity, AlertType, PerformanceMonitor
from bt_tuner.monitoring.monitor import is_decreasing, is_increasing
from bt_tuner.telemetry import TreeTelemetry


class FakeEngine:
    """Records optimization requests."""

    def __init__(self):
        self.started = []

    def is_optimizing(self, tree_id=None):
        return False

    def start_optimization(self, tree_id, now=None, **kwargs):
        self.started.append((tree_id, now))


def fill(telemetry, successes, failures, ms=0.1):
    for _ in range(successes):
        telemetry.record_execution(NodeState.SUCCESS, ms)
    for _ in range(failures):
        telemetry.record_execution(NodeState.FAILURE, ms)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def telemetry():
    return TreeTelemetry("duelist", node_count=5, depth=3)


@pytest.fixture
def monitor(bus, telemetry):
    monitor = PerformanceMonitor(MonitorConfig(log_warnings=False), events=bus)
    monitor.register_tree("duelist", telemetry)
    monitor.start(now=0.0)
    monitor.record_frame(1 / 60, memory_mb=100.0)
    return monitor


class TestAlerts:
    """Alert creation, deduplication and resolution."""

    def test_healthy_tree_raises_nothing(self, monitor, telemetry):
        fill(telemetry, 20, 0)
        monitor.run_cycle(1.0)
        assert monitor.active_alerts() == []

    def test_fresh_tree_has_no_failure_alert(self, monitor):
        monitor.run_cycle(1.0)
        assert monitor.active_alerts() == []

    def test_failure_rate_alert(self, monitor, telemetry, bus):
        received = []
        bus.subscribe(EventType.PERFORMANCE_ALERT, received.append)
        fill(telemetry, 5, 5)

        monitor.run_cycle(1.0)

        alerts = monitor.active_alerts()
        assert [a.type for a in alerts] == [AlertType.HIGH_FAILURE_RATE]
        assert alerts[0].source == "duelist"
        assert alerts[0].severity == AlertSeverity.MEDIUM
        assert len(received) == 1
        assert received[0].payload is alerts[0]

    def test_alerts_are_deduplicated(self, monitor, telemetry):
        """An unresolved alert of the same type and source is not raised twice."""
        fill(telemetry, 5, 5)
        monitor.run_cycle(1.0)
        monitor.run_cycle(2.0)

        assert len(monitor.all_alerts()) == 1

    def test_alert_resolves_after_recovery(self, monitor, telemetry):
        fill(telemetry, 5, 5)
        monitor.run_cycle(1.0)

        fill(telemetry, 40, 0)
        monitor.run_cycle(2.0)

        assert monitor.active_alerts() == []
        resolved = monitor.all_alerts()[0]
        assert resolved.resolved
        assert resolved.resolved_time == 2.0

    def test_resolved_alerts_are_purged(self, monitor, telemetry):
        fill(telemetry, 5, 5)
        monitor.run_cycle(1.0)
        fill(telemetry, 40, 0)
        monitor.run_cycle(2.0)

        monitor.run_cycle(100.0)

        assert monitor.all_alerts() == []

    def test_low_fps(self, monitor):
        for _ in range(5):
            monitor.record_frame(0.5)
        monitor.run_cycle(1.0)

        alert = monitor.active_alerts()[0]
        assert alert.type == AlertType.LOW_FPS
        assert alert.source == "System"
        assert alert.severity == AlertSeverity.HIGH

    def test_high_memory(self, monitor):
        monitor.record_frame(1 / 60, memory_mb=600.0)
        monitor.run_cycle(1.0)

        assert [a.type for a in monitor.active_alerts()] == [AlertType.HIGH_MEMORY_USAGE]

    def test_high_execution_time(self, monitor, telemetry):
        fill(telemetry, 10, 0, ms=9.0)
        monitor.run_cycle(1.0)

        assert AlertType.HIGH_EXECUTION_TIME in [a.type for a in monitor.active_alerts()]

    def test_memory_trend(self, bus, telemetry):
        monitor = PerformanceMonitor(MonitorConfig(trend_window=3, log_warnings=False), events=bus)
        monitor.start(0.0)
        for i, memory in enumerate((100.0, 120.0, 140.0)):
            monitor.record_frame(1 / 60, memory_mb=memory)
            monitor.run_cycle(float(i + 1))

        assert AlertType.MEMORY_LEAK in [a.type for a in monitor.active_alerts()]


def active_types(monitor):
    return [a.type for a in monitor.active_alerts()]


def trend_monitor(bus):
    monitor = PerformanceMonitor(MonitorConfig(trend_window=3, log_warnings=False), events=bus)
    monitor.start(0.0)
    return monitor


class TestRecovery:
    """Every alert type resolves once its condition clears."""

    def test_memory_leak_resolves_when_flat(self, bus):
        monitor = trend_monitor(bus)
        for t, memory in enumerate((100.0, 120.0, 140.0, 140.0), start=1):
            monitor.record_frame(1 / 60, memory_mb=memory)
            monitor.run_cycle(float(t))
        assert AlertType.MEMORY_LEAK in active_types(monitor)

        monitor.record_frame(1 / 60, memory_mb=140.0)
        monitor.run_cycle(5.0)

        assert AlertType.MEMORY_LEAK not in active_types(monitor)

    def test_degradation_resolves_when_fps_steadies(self, bus):
        monitor = trend_monitor(bus)
        for t, fps in enumerate((60.0, 50.0, 40.0, 40.0), start=1):
            monitor.record_frame(1 / fps, memory_mb=100.0)
            monitor.run_cycle(float(t))
        assert AlertType.PERFORMANCE_DEGRADATION in active_types(monitor)

        monitor.record_frame(1 / 40, memory_mb=100.0)
        monitor.run_cycle(5.0)

        assert AlertType.PERFORMANCE_DEGRADATION not in active_types(monitor)

    def test_low_efficiency_resolves(self, monitor, telemetry):
        fill(telemetry, 12, 0, ms=20.0)
        monitor.run_cycle(1.0)
        assert AlertType.LOW_EFFICIENCY in active_types(monitor)

        fill(telemetry, 200, 0, ms=0.1)
        monitor.run_cycle(2.0)

        assert AlertType.LOW_EFFICIENCY not in active_types(monitor)

    def test_bottleneck_resolves(self, monitor, telemetry, bus):
        found = []
        bus.subscribe(EventType.BOTTLENECK_DETECTED, found.append)
        for _ in range(10):
            telemetry.record_node("attack", "action", NodeState.FAILURE, 0.1)
        telemetry.identify_bottlenecks()
        monitor.run_cycle(1.0)
        assert AlertType.PERFORMANCE_BOTTLENECK in active_types(monitor)
        assert found[0].payload == "duelist.attack"

        for _ in range(40):
            telemetry.record_node("attack", "action", NodeState.SUCCESS, 0.1)
        telemetry.identify_bottlenecks()
        monitor.run_cycle(2.0)

        assert AlertType.PERFORMANCE_BOTTLENECK not in active_types(monitor)

    def test_resolved_trend_can_fire_again(self, bus):
        monitor = trend_monitor(bus)
        memory = (100.0, 120.0, 140.0, 140.0, 140.0, 160.0, 180.0)
        for t, value in enumerate(memory, start=1):
            monitor.record_frame(1 / 60, memory_mb=value)
            monitor.run_cycle(float(t))

        leaks = [a for a in monitor.all_alerts() if a.type == AlertType.MEMORY_LEAK]
        assert len(leaks) == 2
        assert leaks[0].resolved
        assert not leaks[1].resolved


class TestTrendHelpers:

    def test_exact_ten_percent_counts(self):
        assert is_increasing([100.0, 105.0, 110.0], 0.1)
        assert is_decreasing([60.0, 57.0, 54.0], 0.1)

    def test_below_threshold(self):
        assert not is_increasing([100.0, 109.9], 0.1)
        assert not is_decreasing([60.0, 54.1], 0.1)

    def test_degenerate_series(self):
        assert not is_increasing([100.0], 0.1)
        assert not is_increasing([0.0, 5.0], 0.1)
        assert not is_decreasing([0.0, 0.0], 0.1)

    def test_exact_ten_percent_memory_growth_alerts(self, bus):
        monitor = trend_monitor(bus)
        for t, memory in enumerate((100.0, 105.0, 110.0), start=1):
            monitor.record_frame(1 / 60, memory_mb=memory)
            monitor.run_cycle(float(t))

        assert AlertType.MEMORY_LEAK in active_types(monitor)


class TestCycles:
    """Scheduling and history."""

    def test_update_respects_interval(self, monitor):
        assert not monitor.update(0.5)
        assert monitor.update(1.0)
        assert monitor.cycle_count == 1

    def test_update_requires_start(self, telemetry):
        monitor = PerformanceMonitor(MonitorConfig(log_warnings=False))
        assert not monitor.update(5.0)

    def test_history(self, monitor, telemetry):
        fill(telemetry, 3, 1)
        for t in range(1, 6):
            monitor.run_cycle(float(t))

        history = monitor.history(3)
        assert [s.timestamp for s in history] == [3.0, 4.0, 5.0]
        assert history[-1].total_tree_executions == 4
        assert history[-1].average_success_rate == pytest.approx(0.75)
        assert len(monitor.history()) == 5

    def test_status_and_report(self, monitor, telemetry):
        fill(telemetry, 10, 0)
        monitor.run_cycle(1.0)

        status = monitor.current_status()
        assert status.monitored_tree_count == 1
        assert status.fps == pytest.approx(60.0)
        assert "duelist" in monitor.generate_report()

    def test_unregister(self, monitor):
        assert monitor.unregister_tree("duelist")
        assert not monitor.unregister_tree("duelist")
        assert monitor.tree_ids() == []


class TestAutoOptimization:

    def test_poor_tree_triggers_optimization(self, bus, telemetry):
        engine = FakeEngine()
        requests = []
        bus.subscribe(EventType.OPTIMIZATION_REQUESTED, requests.append)
        config = MonitorConfig(
            auto_optimization=True,
            optimization_trigger=0.5,
            optimization_cooldown=0.0,
            log_warnings=False,
        )
        monitor = PerformanceMonitor(config, events=bus, engine=engine)
        monitor.register_tree("duelist", telemetry)
        monitor.start(0.0)
        monitor.record_frame(1 / 60)
        fill(telemetry, 2, 8, ms=10.0)

        monitor.run_cycle(1.0)

        assert engine.started == [("duelist", 1.0)]
        assert requests[0].payload["tree_id"] == "duelist"
        assert requests[0].payload["score"] >= 0.5

    def test_optimization_score_bounds(self, monitor, telemetry):
        assert monitor.optimization_score(telemetry) <= 1.0
        fill(telemetry, 0, 10, ms=50.0)
        assert monitor.optimization_score(telemetry) == 1.0
