"""
Tests for events, metrics, health checks and logging.
"""
import json
import logging

import pytest

from bt_tuner.events import EventBus, EventType
from bt_tuner.health import HealthChecker, HealthStatus, engine_health_check, monitor_health_check
from bt_tuner.logging_config import HumanFormatter, JSONFormatter, configure_logging, log_event
from bt_tuner.metrics import LatencyStats, MetricsCollector, get_metrics, time_operation


class TestEventBus:

    def test_typed_and_wildcard_delivery(self):
        bus = EventBus()
        typed, everything = [], []
        bus.subscribe(EventType.PERFORMANCE_ALERT, typed.append)
        bus.subscribe("*", everything.append)

        bus.emit(EventType.PERFORMANCE_ALERT, "System", "payload")
        bus.emit(EventType.ANALYSIS_COMPLETED, "duelist")

        assert [e.payload for e in typed] == ["payload"]
        assert [e.type for e in everything] == [EventType.PERFORMANCE_ALERT, EventType.ANALYSIS_COMPLETED]
        assert bus.emitted_count == 2

    def test_failing_handler_is_isolated(self):
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(EventType.REGRESSION_DETECTED, broken)
        bus.subscribe(EventType.REGRESSION_DETECTED, received.append)

        bus.emit(EventType.REGRESSION_DETECTED, "duelist")

        assert len(received) == 1
        assert get_metrics().get_error_count("events", "RuntimeError") == 1

    def test_unsubscribe(self):
        bus = EventBus()
        handler = lambda e: None  # noqa: E731
        bus.subscribe(EventType.PARAMETER_UPDATED, handler)

        assert bus.subscriber_count(EventType.PARAMETER_UPDATED) == 1
        assert bus.unsubscribe(EventType.PARAMETER_UPDATED, handler)
        assert not bus.unsubscribe(EventType.PARAMETER_UPDATED, handler)

    def test_events_are_counted(self):
        EventBus().emit(EventType.EXPERIMENT_COMPLETED, "duelist")
        assert get_metrics().get_event_count("experiment_completed") == 1


class TestMetrics:
    """Metrics collection."""

    def test_latency_stats(self):
        stats = LatencyStats()
        for ms in (1.0, 2.0, 3.0, 4.0):
            stats.record(ms)

        assert stats.avg_ms == pytest.approx(2.5)
        assert stats.min_ms == 1.0
        assert stats.p50 == 3.0
        assert stats.to_dict()["count"] == 4

    def test_counters_and_errors(self):
        metrics = MetricsCollector()
        metrics.increment("runs_started", subsystem="optimizer")
        metrics.increment("runs_started", subsystem="optimizer")
        metrics.record_error("node", "ZeroDivisionError")

        assert metrics.get_counter("optimizer.runs_started") == 2
        assert metrics.get_total_errors() == 1
        assert metrics.summary()["errors"] == {"node.ZeroDivisionError": 1}

    def test_time_operation(self):
        with time_operation("tree_tick") as ctx:
            pass

        assert ctx.elapsed_ms >= 0.0
        assert get_metrics().get_latency_stats("tree_tick").count == 1

    def test_singleton(self):
        assert get_metrics() is MetricsCollector.get_instance()

    def test_export(self, tmp_path):
        metrics = MetricsCollector()
        metrics.record_latency("monitor_cycle", 0.5)
        path = tmp_path / "out" / "metrics.json"

        metrics.export_json(str(path))

        data = json.loads(path.read_text())
        assert data["latencies"]["monitor_cycle"]["count"] == 1
        assert "exported_at" in data


class FakeAlert:

    def __init__(self, severity):
        self.severity = type("Severity", (), {"value": severity})()


class TestHealth:

    def test_default_checks(self):
        health = HealthChecker().run_all()
        names = [c.name for c in health.checks]

        assert names == ["python_version", "dependencies"]
        assert health.healthy
        assert health.to_dict()["healthy"]

    def test_failing_check_is_reported(self):
        checker = HealthChecker()

        def broken():
            raise RuntimeError("down")

        checker.add_check("broken", broken)
        status = checker.run_check("broken")

        assert not status.healthy
        assert "down" in status.message
        assert not checker.run_all().healthy

    def test_unknown_check(self):
        assert not HealthChecker().run_check("nope").healthy

    def test_monitor_check(self):
        class Monitor:
            is_monitoring = True
            alerts = []

            def active_alerts(self):
                return self.alerts

            def tree_ids(self):
                return ["duelist"]

        monitor = Monitor()
        check = monitor_health_check(monitor)
        assert check().healthy

        monitor.alerts = [FakeAlert("medium"), FakeAlert("high")]
        status = check()
        assert not status.healthy
        assert status.details["high_alerts"] == 1

    def test_engine_check(self):
        class Engine:
            def tree_ids(self):
                return ["duelist"]

            def latest_metric(self, tree_id):
                return None

            def active_runs(self):
                return []

            def optimization_history(self):
                return []

            def active_experiments(self):
                return []

        status = engine_health_check(Engine())()
        assert not status.healthy
        assert status.details["trees_without_data"] == ["duelist"]

    def test_status_replaced_by_name(self):
        checker = HealthChecker()
        checker.add_check("dependencies", lambda: HealthStatus("dependencies", False, "mocked"))
        assert checker.run_check("dependencies").message == "mocked"


def make_record(**fields):
    record = logging.LogRecord("bt_tuner.test", logging.INFO, "", 0, "tick done", (), None)
    for key, value in fields.items():
        setattr(record, key, value)
    return record


class TestLogging:
    """Formatters and setup."""

    def test_json_formatter(self):
        line = JSONFormatter().format(make_record(subsystem="core", tree_id="duelist", tick=12, latency_ms=0.4))
        data = json.loads(line)

        assert data["message"] == "tick done"
        assert data["tree_id"] == "duelist"
        assert data["tick"] == 12
        assert data["latency_ms"] == 0.4

    def test_human_formatter(self):
        line = HumanFormatter(use_colors=False).format(make_record(subsystem="monitor", node_id="attack"))

        assert "[monitor]" in line
        assert "node=attack" in line
        assert line.endswith("tick done")

    def test_log_event_on_plain_logger(self, caplog):
        logger = logging.Logger("plain")
        logger.addHandler(caplog.handler)

        log_event(logger, "alert", "fps dropped", tree_id="duelist")

        record = caplog.records[-1]
        assert record.event_type == "alert"
        assert record.tree_id == "duelist"

    def test_configure_writes_files(self, tmp_path):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            configure_logging("DEBUG", log_dir=str(tmp_path))
            logging.getLogger("bt_tuner.test").info("hello")
            for handler in root.handlers:
                handler.flush()

            assert (tmp_path / "bt_tuner.log").exists()
            assert "hello" in (tmp_path / "bt_tuner.json.log").read_text()
        finally:
            for handler in root.handlers:
                handler.close()
            root.handlers = saved_handlers
            root.setLevel(saved_level)
            logging.setLoggerClass(logging.Logger)
