"""
Runtime performance monitor.

Samples frame time and memory every tick and, once per monitoring
interval, takes a snapshot, checks every registered tree and the system
against static thresholds and recent trends, and raises deduplicated,
auto-resolving alerts. Optionally requests optimization of the tree that
needs it most.

Time is passed in explicitly (``update(now)``) so the monitor runs the
same under a simulation clock and under wall time.
"""
from __future__ import annotations

import logging
import math
import uuid
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Dict, List, Optional

from ..config import MonitorConfig
from ..events import EventBus, EventType
from ..logging_config import log_event
from ..metrics import get_metrics
from ..util import clamp01

logger = logging.getLogger(__name__)

SYSTEM_SOURCE = "System"


class AlertType(str, Enum):
    LOW_FPS = "low_fps"
    HIGH_MEMORY_USAGE = "high_memory_usage"
    HIGH_EXECUTION_TIME = "high_execution_time"
    HIGH_FAILURE_RATE = "high_failure_rate"
    PERFORMANCE_BOTTLENECK = "performance_bottleneck"
    LOW_EFFICIENCY = "low_efficiency"
    PERFORMANCE_DEGRADATION = "performance_degradation"
    MEMORY_LEAK = "memory_leak"


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


ALERT_SEVERITY: Dict[AlertType, AlertSeverity] = {
    AlertType.LOW_FPS: AlertSeverity.HIGH,
    AlertType.HIGH_MEMORY_USAGE: AlertSeverity.HIGH,
    AlertType.PERFORMANCE_BOTTLENECK: AlertSeverity.HIGH,
    AlertType.HIGH_EXECUTION_TIME: AlertSeverity.MEDIUM,
    AlertType.HIGH_FAILURE_RATE: AlertSeverity.MEDIUM,
    AlertType.PERFORMANCE_DEGRADATION: AlertSeverity.MEDIUM,
}

_LOG_LEVEL = {
    AlertSeverity.LOW: logging.INFO,
    AlertSeverity.MEDIUM: logging.WARNING,
    AlertSeverity.HIGH: logging.ERROR,
}


def alert_severity(alert_type: AlertType) -> AlertSeverity:
    return ALERT_SEVERITY.get(alert_type, AlertSeverity.LOW)


@dataclass
class PerformanceSnapshot:
    """System-wide performance at one monitoring cycle."""
    timestamp: float
    fps: float
    frame_time_ms: float
    memory_mb: float
    active_tree_count: int
    total_tree_executions: int
    average_success_rate: float

    def to_dict(self) -> Dict:
        return {
            "timestamp": self.timestamp,
            "fps": round(self.fps, 3),
            "frame_time_ms": round(self.frame_time_ms, 3),
            "memory_mb": round(self.memory_mb, 3),
            "active_tree_count": self.active_tree_count,
            "total_tree_executions": self.total_tree_executions,
            "average_success_rate": round(self.average_success_rate, 4),
        }


@dataclass
class PerformanceAlert:
    """A raised alert; ``resolved_time`` is set once the metric recovers."""
    id: str
    type: AlertType
    source: str
    severity: AlertSeverity
    message: str
    timestamp: float
    resolved: bool = False
    resolved_time: Optional[float] = None

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "source": self.source,
            "severity": self.severity.value,
            "message": self.message,
            "timestamp": self.timestamp,
            "resolved": self.resolved,
            "resolved_time": self.resolved_time,
        }


@dataclass
class PerformanceStatus:
    fps: float
    frame_time_ms: float
    memory_mb: float
    monitored_tree_count: int
    active_alert_count: int
    average_success_rate: float

    def to_dict(self) -> Dict:
        return {
            "fps": round(self.fps, 3),
            "frame_time_ms": round(self.frame_time_ms, 3),
            "memory_mb": round(self.memory_mb, 3),
            "monitored_tree_count": self.monitored_tree_count,
            "active_alert_count": self.active_alert_count,
            "average_success_rate": round(self.average_success_rate, 4),
        }


class PerformanceMonitor:
    """
    Threshold-based alerting over tree telemetry and frame metrics.

    Example:
        >>> monitor = PerformanceMonitor(MonitorConfig(), events=bus)
        >>> monitor.register_tree("duelist", aggregator["duelist"])
        >>> monitor.start(now=0.0)
        >>> monitor.record_frame(1 / 60, memory_mb=120.0)
        >>> monitor.update(now=1.0)
    """

    def __init__(
        self,
        config: Optional[MonitorConfig] = None,
        events: Optional[EventBus] = None,
        engine=None,
    ):
        self.config = config or MonitorConfig()
        self.events = events
        self.engine = engine

        self._trees: Dict[str, object] = {}
        self._history: Deque[PerformanceSnapshot] = deque(maxlen=self.config.history_size)
        self._alerts: List[PerformanceAlert] = []

        self.current_fps = 0.0
        self.frame_time_ms = 0.0
        self.memory_mb = 0.0
        self._frame_count = 0
        self._fps_sum = 0.0

        self.is_monitoring = False
        self.now = 0.0
        self._last_cycle = 0.0
        self._last_optimization = 0.0
        self.cycle_count = 0

    # -- control ---------------------------------------------------------

    def start(self, now: float = 0.0) -> None:
        if self.is_monitoring:
            return
        self.is_monitoring = True
        self.now = now
        self._last_cycle = now
        self._last_optimization = now
        self._frame_count = 0
        self._fps_sum = 0.0
        logger.info("Performance monitoring started")

    def stop(self) -> None:
        if not self.is_monitoring:
            return
        self.is_monitoring = False
        logger.info("Performance monitoring stopped")

    def attach_engine(self, engine) -> None:
        self.engine = engine

    def register_tree(self, tree_id: str, telemetry) -> None:
        """Monitor a tree through its ``TreeTelemetry``."""
        if not tree_id or telemetry is None:
            return
        self._trees[tree_id] = telemetry
        logger.info(f"Monitoring tree {tree_id}")

    def unregister_tree(self, tree_id: str) -> bool:
        if self._trees.pop(tree_id, None) is None:
            return False
        logger.info(f"Stopped monitoring tree {tree_id}")
        return True

    def tree_ids(self) -> List[str]:
        return list(self._trees.keys())

    def telemetry(self, tree_id: str):
        return self._trees.get(tree_id)

    # -- sampling --------------------------------------------------------

    def record_frame(self, delta_time: float, memory_mb: Optional[float] = None) -> None:
        """
        Record one frame.

        FPS is the running average of 1/dt since the last cycle; frame
        time is the latest frame in milliseconds.
        """
        self._frame_count += 1
        if delta_time > 0:
            self._fps_sum += 1.0 / delta_time
            self.current_fps = self._fps_sum / self._frame_count
            self.frame_time_ms = delta_time * 1000.0
        if memory_mb is not None:
            self.memory_mb = memory_mb

    def update(self, now: float) -> bool:
        """Run a monitoring cycle if the interval has elapsed. Returns True if one ran."""
        if not self.is_monitoring or not self.config.enabled:
            return False
        self.now = now
        if now - self._last_cycle < self.config.interval:
            return False
        self.run_cycle(now)
        self._last_cycle = now
        return True

    def run_cycle(self, now: float) -> PerformanceSnapshot:
        self.now = now
        self.cycle_count += 1
        get_metrics().increment("cycles", subsystem="monitor")

        snapshot = self._snapshot(now)
        self._history.append(snapshot)

        for tree_id, stats in list(self._trees.items()):
            self._check_tree(tree_id, stats)

        self._check_system(snapshot)
        self._process_alerts(now)

        if self.config.auto_optimization and now - self._last_optimization > self.config.optimization_cooldown:
            self._check_auto_optimization(now)

        self._frame_count = 0
        self._fps_sum = 0.0
        return snapshot

    def _snapshot(self, now: float) -> PerformanceSnapshot:
        trees = list(self._trees.values())
        return PerformanceSnapshot(
            timestamp=now,
            fps=self.current_fps,
            frame_time_ms=self.frame_time_ms,
            memory_mb=self.memory_mb,
            active_tree_count=len(trees),
            total_tree_executions=sum(t.total_executions for t in trees),
            average_success_rate=self._average_success_rate(),
        )

    def _average_success_rate(self) -> float:
        if not self._trees:
            return 0.0
        return sum(t.success_rate for t in self._trees.values()) / len(self._trees)

    # -- checks ----------------------------------------------------------

    def _check_tree(self, tree_id: str, stats) -> None:
        cfg = self.config

        if stats.average_execution_time_ms > cfg.exec_time_warning_ms:
            self._raise(AlertType.HIGH_EXECUTION_TIME, tree_id,
                        f"Average execution time {stats.average_execution_time_ms:.2f}ms exceeds "
                        f"{cfg.exec_time_warning_ms}ms")

        if stats.completed_executions > 0 and stats.success_rate < 1.0 - cfg.failure_rate_warning:
            self._raise(AlertType.HIGH_FAILURE_RATE, tree_id,
                        f"Success rate is low: {stats.success_rate:.1%}")

        if stats.bottlenecks:
            worst = max(stats.bottlenecks, key=lambda b: b.severity)
            if worst.severity > cfg.bottleneck_alert_severity:
                self._raise(AlertType.PERFORMANCE_BOTTLENECK, tree_id,
                            f"Severe bottleneck: {worst.node_id} - {worst.description}")
                if self.events is not None:
                    self.events.emit(EventType.BOTTLENECK_DETECTED, tree_id, f"{tree_id}.{worst.node_id}")

        if stats.efficiency < cfg.low_efficiency_threshold and stats.total_executions > cfg.low_efficiency_min_executions:
            self._raise(AlertType.LOW_EFFICIENCY, tree_id,
                        f"Execution efficiency is low: {stats.efficiency:.3f}")

    def _check_system(self, snapshot: PerformanceSnapshot) -> None:
        cfg = self.config

        if snapshot.fps < cfg.fps_warning:
            self._raise(AlertType.LOW_FPS, SYSTEM_SOURCE,
                        f"FPS {snapshot.fps:.1f} below {cfg.fps_warning}")

        if snapshot.memory_mb > cfg.memory_warning_mb:
            self._raise(AlertType.HIGH_MEMORY_USAGE, SYSTEM_SOURCE,
                        f"Memory usage {snapshot.memory_mb:.1f}MB above {cfg.memory_warning_mb}MB")

        if len(self._history) >= cfg.trend_window:
            recent = list(self._history)[-cfg.trend_window:]
            self._check_trends(recent)

    def _check_trends(self, recent: List[PerformanceSnapshot]) -> None:
        change = self.config.trend_change

        if is_decreasing([s.fps for s in recent], change):
            self._raise(AlertType.PERFORMANCE_DEGRADATION, SYSTEM_SOURCE,
                        "FPS is trending down")

        if is_increasing([s.memory_mb for s in recent], change):
            self._raise(AlertType.MEMORY_LEAK, SYSTEM_SOURCE,
                        "Memory usage keeps growing; check for a leak")

    # -- alerts ----------------------------------------------------------

    def _raise(self, alert_type: AlertType, source: str, message: str) -> Optional[PerformanceAlert]:
        """Create an alert unless an unresolved one with the same type and source exists."""
        for existing in self._alerts:
            if existing.type == alert_type and existing.source == source and not existing.resolved:
                return None

        alert = PerformanceAlert(
            id=str(uuid.uuid4()),
            type=alert_type,
            source=source,
            severity=alert_severity(alert_type),
            message=message,
            timestamp=self.now,
        )
        self._alerts.append(alert)
        get_metrics().increment("alerts", subsystem="monitor")

        if self.config.log_warnings:
            log_event(
                logger,
                alert_type.value,
                f"[{alert.severity.value}] {source}: {message}",
                level=_LOG_LEVEL[alert.severity],
                subsystem="monitor",
                tree_id=None if source == "System" else source,
            )

        if self.events is not None:
            self.events.emit(EventType.PERFORMANCE_ALERT, source, alert)
        return alert

    def _process_alerts(self, now: float) -> None:
        kept: List[PerformanceAlert] = []
        for alert in self._alerts:
            if not alert.resolved and self._should_resolve(alert):
                alert.resolved = True
                alert.resolved_time = now
                if self.config.log_warnings:
                    logger.info(f"Alert resolved: {alert.message}")

            if alert.resolved and now - alert.resolved_time > self.config.resolved_purge_after:
                continue
            kept.append(alert)
        self._alerts = kept

    def _should_resolve(self, alert: PerformanceAlert) -> bool:
        cfg = self.config
        margin = cfg.recovery_margin

        if alert.type == AlertType.LOW_FPS:
            return self.current_fps >= cfg.fps_warning * (1.0 + margin)
        if alert.type == AlertType.HIGH_MEMORY_USAGE:
            return self.memory_mb <= cfg.memory_warning_mb * (1.0 - margin)
        if alert.type == AlertType.PERFORMANCE_DEGRADATION:
            return not is_decreasing(self._recent("fps"), cfg.trend_change)
        if alert.type == AlertType.MEMORY_LEAK:
            return not is_increasing(self._recent("memory_mb"), cfg.trend_change)

        stats = self._trees.get(alert.source)
        if stats is None:
            return False
        if alert.type == AlertType.HIGH_EXECUTION_TIME:
            return stats.average_execution_time_ms <= cfg.exec_time_warning_ms * (1.0 - margin)
        if alert.type == AlertType.HIGH_FAILURE_RATE:
            return stats.success_rate >= (1.0 - cfg.failure_rate_warning) + margin
        if alert.type == AlertType.LOW_EFFICIENCY:
            return stats.efficiency >= cfg.low_efficiency_threshold * (1.0 + margin)
        if alert.type == AlertType.PERFORMANCE_BOTTLENECK:
            worst = max((b.severity for b in stats.bottlenecks), default=0.0)
            return worst <= cfg.bottleneck_alert_severity * (1.0 - margin)
        return False

    def _recent(self, attr: str) -> List[float]:
        """``attr`` over the last trend window of snapshots."""
        return [getattr(s, attr) for s in list(self._history)[-self.config.trend_window:]]

    # -- auto optimization -----------------------------------------------

    def optimization_score(self, stats) -> float:
        """How badly a tree needs tuning, in [0, 1]."""
        cfg = self.config
        score = 0.0

        if stats.average_execution_time_ms > cfg.exec_time_warning_ms:
            score += 0.4 * (stats.average_execution_time_ms / cfg.exec_time_warning_ms)

        if stats.success_rate < 0.8:
            score += 0.3 * (1.0 - stats.success_rate)

        if stats.bottlenecks:
            worst = max(b.severity for b in stats.bottlenecks)
            score += 0.2 * min(worst / 3.0, 1.0)

        if stats.efficiency < 0.2:
            score += 0.1 * (0.2 - stats.efficiency) / 0.2

        return clamp01(score)

    def _check_auto_optimization(self, now: float) -> Optional[str]:
        for tree_id, stats in self._trees.items():
            score = self.optimization_score(stats)
            if score < self.config.optimization_trigger:
                continue

            self._last_optimization = now
            node_id = stats.top_priority_node()
            logger.info(f"Auto-optimization for {tree_id}: score {score:.3f}, top node {node_id}")

            if self.events is not None:
                self.events.emit(EventType.OPTIMIZATION_REQUESTED, tree_id, {
                    "tree_id": tree_id,
                    "node_id": node_id,
                    "score": score,
                    "priority": stats.optimization_priorities.get(node_id, 0.0) if node_id else 0.0,
                })

            if self.engine is not None and not self.engine.is_optimizing(tree_id):
                try:
                    self.engine.start_optimization(tree_id, now=now)
                except Exception as e:
                    logger.warning(f"Could not start optimization of {tree_id}: {e}")
                    get_metrics().record_error("monitor", type(e).__name__)
            return tree_id
        return None

    # -- queries ---------------------------------------------------------

    def current_status(self) -> PerformanceStatus:
        return PerformanceStatus(
            fps=self.current_fps,
            frame_time_ms=self.frame_time_ms,
            memory_mb=self.memory_mb,
            monitored_tree_count=len(self._trees),
            active_alert_count=len(self.active_alerts()),
            average_success_rate=self._average_success_rate(),
        )

    def active_alerts(self) -> List[PerformanceAlert]:
        return [a for a in self._alerts if not a.resolved]

    def all_alerts(self) -> List[PerformanceAlert]:
        return list(self._alerts)

    def history(self, count: int = -1) -> List[PerformanceSnapshot]:
        """Last ``count`` snapshots (all when ``count <= 0``)."""
        snapshots = list(self._history)
        if count <= 0 or count >= len(snapshots):
            return snapshots
        return snapshots[-count:]

    def generate_report(self) -> str:
        active = self.active_alerts()
        lines = [
            "=== Performance monitor report ===",
            f"Time: {self.now:.1f}s",
            f"FPS: {self.current_fps:.1f}",
            f"Memory: {self.memory_mb:.1f}MB",
            f"Monitored trees: {len(self._trees)}",
            f"Active alerts: {len(active)}",
            "",
            "Trees:",
        ]
        for tree_id, stats in self._trees.items():
            lines.append(
                f"- {tree_id}: success {stats.success_rate:.1%}, "
                f"avg time {stats.average_execution_time_ms:.2f}ms"
            )
        if active:
            lines.append("")
            lines.append("Recent alerts:")
            for alert in active[:5]:
                lines.append(f"- [{alert.severity.value}] {alert.source}: {alert.message}")
        return "\n".join(lines)


def _relative_change(values: List[float]) -> Optional[float]:
    if len(values) < 2 or values[0] <= 0:
        return None
    return (values[-1] - values[0]) / values[0]


def is_decreasing(values: List[float], change: float) -> bool:
    """Last value at least ``change`` (a fraction) below the first."""
    delta = _relative_change(values)
    if delta is None:
        return False
    return -delta >= change or math.isclose(-delta, change)


def is_increasing(values: List[float], change: float) -> bool:
    """Last value at least ``change`` (a fraction) above the first."""
    delta = _relative_change(values)
    if delta is None:
        return False
    return delta >= change or math.isclose(delta, change)
