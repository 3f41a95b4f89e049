"""
Statistical performance analyzer.

Pulls a window of performance points per tree from the monitor (system
snapshots) and the optimization engine (per-tree metrics), then computes
descriptive statistics, regression verdicts, recommendations and chart
data. Runs on its own interval and also on demand when alerts arrive.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from ..config import AnalyzerConfig
from ..events import Event, EventBus, EventType
from ..metrics import get_metrics
from . import statistics as st
from .models import (
    METRICS,
    AnalysisReport,
    AnalysisSummary,
    AnalysisTask,
    AnalysisTaskType,
    MetricRegression,
    OptimizationRecommendation,
    OverallStatistics,
    PerformanceDataPoint,
    RegressionAnalysisResult,
    StatisticalAnalysisResult,
    TrendAnalysis,
)
from .recommendations import generate_recommendation
from .visualization import VisualizationDataSet, build_visualization

logger = logging.getLogger(__name__)

MERGE_TOLERANCE_S = 1.0
REANALYSIS_DELAY_S = 60.0

# (metric, sign): execution time is negated so that "lower is worse" for all
REGRESSION_METRICS = (("success_rate", 1.0), ("execution_time", -1.0), ("fps", 1.0))


def _efficiency(success_rate: float, frame_time_ms: float) -> float:
    return success_rate / max(frame_time_ms, 0.001)


class PerformanceAnalyzer:
    """
    Periodic statistical analysis of every known tree.

    Example:
        >>> analyzer = PerformanceAnalyzer(AnalyzerConfig(), events=bus, monitor=monitor, engine=engine)
        >>> analyzer.update(now)           # once per tick
        >>> analyzer.regression_result("duelist").has_regression
    """

    def __init__(
        self,
        config: Optional[AnalyzerConfig] = None,
        events: Optional[EventBus] = None,
        monitor=None,
        engine=None,
    ):
        self.config = config or AnalyzerConfig()
        self.events = events
        self.monitor = monitor
        self.engine = engine

        self._trees: List[str] = []
        self._statistical: Dict[str, StatisticalAnalysisResult] = {}
        self._regression: Dict[str, RegressionAnalysisResult] = {}
        self._recommendations: Dict[str, OptimizationRecommendation] = {}
        self._visualization: Dict[str, VisualizationDataSet] = {}
        self._pending: List[AnalysisTask] = []
        self._report: Optional[AnalysisReport] = None

        self.now = 0.0
        self._last_cycle = 0.0
        self.last_analysis_time: Optional[float] = None
        self._analyzing = False

        if events is not None:
            events.subscribe(EventType.PERFORMANCE_ALERT, self._on_alert_event)
            events.subscribe(EventType.OPTIMIZATION_COMPLETED, self._on_optimization_event)

    # -- wiring ----------------------------------------------------------

    def attach_monitor(self, monitor) -> None:
        self.monitor = monitor

    def attach_engine(self, engine) -> None:
        self.engine = engine

    def register_tree(self, tree_id: str) -> None:
        if tree_id not in self._trees:
            self._trees.append(tree_id)

    def registered_trees(self) -> List[str]:
        """Explicit trees plus every tree known to the monitor or engine."""
        trees = list(self._trees)
        sources = []
        if self.monitor is not None:
            sources.append(self.monitor.tree_ids())
        if self.engine is not None:
            sources.append(self.engine.tree_ids())
        for ids in sources:
            for tree_id in ids:
                if tree_id not in trees:
                    trees.append(tree_id)
        return trees

    # -- scheduling ------------------------------------------------------

    def start(self, now: float = 0.0) -> None:
        self.now = now
        self._last_cycle = now

    def update(self, now: float) -> None:
        """Run a full cycle when the interval elapsed, then at most one pending task."""
        if not self.config.enabled:
            return
        self.now = now
        if now - self._last_cycle >= self.config.analysis_interval:
            self.run_cycle(now)
            self._last_cycle = now
        self._process_pending(now)

    def run_cycle(self, now: Optional[float] = None) -> Optional[AnalysisReport]:
        """Analyze every registered tree and regenerate the report."""
        if self._analyzing:
            return None
        if now is not None:
            self.now = now
        self._analyzing = True
        try:
            with get_metrics().time_operation("analysis_cycle"):
                for tree_id in self.registered_trees():
                    self.analyze_tree(tree_id)
                report = self.generate_report()
            return report
        except Exception as e:
            logger.exception(f"Analysis cycle failed: {e}")
            get_metrics().record_error("analyzer", type(e).__name__)
            return None
        finally:
            self._analyzing = False

    def schedule(self, task_type: AnalysisTaskType, tree_id: str, priority: int, at: float) -> None:
        for task in self._pending:
            if task.task_type == task_type and task.tree_id == tree_id:
                task.priority = min(task.priority, priority)
                task.scheduled_time = min(task.scheduled_time, at)
                break
        else:
            self._pending.append(AnalysisTask(task_type, tree_id, priority, at))
        self._pending.sort(key=lambda t: (t.priority, t.scheduled_time))

    def pending_tasks(self) -> List[AnalysisTask]:
        return list(self._pending)

    def _process_pending(self, now: float) -> None:
        for i, task in enumerate(self._pending):
            if task.scheduled_time <= now:
                del self._pending[i]
                self._run_task(task)
                return

    def _run_task(self, task: AnalysisTask) -> None:
        try:
            if task.task_type == AnalysisTaskType.REGRESSION_DETECTION:
                points = self.collect_data(task.tree_id)
                if len(points) >= self.config.minimum_data_points:
                    self._regression[task.tree_id] = self.detect_regression(task.tree_id, points)
            else:
                self.analyze_tree(task.tree_id)
        except Exception as e:
            logger.exception(f"Analysis task {task.task_type.value} for {task.tree_id} failed: {e}")
            get_metrics().record_error("analyzer", type(e).__name__)

    def _on_alert_event(self, event: Event) -> None:
        self.on_performance_alert(event.payload)

    def _on_optimization_event(self, event: Event) -> None:
        self.on_optimization_completed(event.source)

    def on_performance_alert(self, alert) -> None:
        """Schedule an analysis of the alert's source (every tree for system alerts)."""
        priority = 1 if getattr(alert.severity, "value", alert.severity) == "high" else 2
        known = self.registered_trees()
        targets = [alert.source] if alert.source in known else known
        for tree_id in targets:
            self.schedule(AnalysisTaskType.STATISTICAL_ANALYSIS, tree_id, priority, self.now)

    def on_optimization_completed(self, tree_id: str) -> None:
        """Re-analyze a tree a while after its parameters changed."""
        self.schedule(AnalysisTaskType.STATISTICAL_ANALYSIS, tree_id, 1, self.now + REANALYSIS_DELAY_S)

    # -- data ------------------------------------------------------------

    def collect_data(self, tree_id: str) -> List[PerformanceDataPoint]:
        """
        Merge monitor snapshots and engine metrics, sorted by timestamp.

        An engine metric is dropped when a monitor point lies within 1 s of it.
        """
        window = self.config.window_size
        points: List[PerformanceDataPoint] = []

        if self.monitor is not None:
            for snap in self.monitor.history(window):
                points.append(PerformanceDataPoint(
                    timestamp=snap.timestamp,
                    success_rate=snap.average_success_rate,
                    execution_time=snap.frame_time_ms,
                    memory_usage=snap.memory_mb,
                    fps=snap.fps,
                    efficiency=_efficiency(snap.average_success_rate, snap.frame_time_ms),
                ))

        if self.engine is not None and tree_id in self.engine.tree_ids():
            for metric in self.engine.performance_history(tree_id, window):
                if any(abs(p.timestamp - metric.timestamp) < MERGE_TOLERANCE_S for p in points):
                    continue
                points.append(PerformanceDataPoint(
                    timestamp=metric.timestamp,
                    success_rate=metric.success_rate,
                    execution_time=metric.execution_time,
                    memory_usage=metric.memory_usage,
                    fps=metric.fps,
                    efficiency=metric.efficiency,
                ))

        points.sort(key=lambda p: p.timestamp)
        return points

    # -- analysis --------------------------------------------------------

    def analyze_tree(
        self,
        tree_id: str,
        points: Optional[Sequence[PerformanceDataPoint]] = None,
    ) -> Optional[StatisticalAnalysisResult]:
        """Full analysis of one tree; None when there is too little data."""
        points = list(points) if points is not None else self.collect_data(tree_id)
        if len(points) < self.config.minimum_data_points:
            logger.debug(f"Skipping analysis of {tree_id}: {len(points)} points")
            return None

        cfg = self.config
        result = self.statistical_analysis(tree_id, points)
        self._statistical[tree_id] = result
        self._emit(EventType.ANALYSIS_COMPLETED, tree_id, result)

        if cfg.enable_regression_detection:
            regression = self.detect_regression(tree_id, points)
            self._regression[tree_id] = regression
            if regression.has_regression:
                logger.warning(
                    f"Regression in {tree_id}: "
                    + ", ".join(f"{r.metric} {r.change_percentage:+.1f}%" for r in regression.regressions)
                )
                self._emit(EventType.REGRESSION_DETECTED, tree_id, regression)

        if cfg.enable_optimization_analysis:
            recommendation = generate_recommendation(result, cfg.max_suggestions)
            self._recommendations[tree_id] = recommendation
            self._emit(EventType.RECOMMENDATION_READY, tree_id, recommendation)

        if cfg.enable_visualization:
            data_set = build_visualization(tree_id, points, result, cfg.chart_points)
            self._visualization[tree_id] = data_set
            self._emit(EventType.VISUALIZATION_DATA_UPDATED, tree_id, data_set)

        self.last_analysis_time = self.now
        get_metrics().increment("trees_analyzed", subsystem="analyzer")
        return result

    def statistical_analysis(self, tree_id: str, points: Sequence[PerformanceDataPoint]) -> StatisticalAnalysisResult:
        cfg = self.config
        result = StatisticalAnalysisResult(tree_id=tree_id, data_point_count=len(points))
        if not points:
            return result

        series = {m: [p.value(m) for p in points] for m in METRICS}
        success = series["success_rate"]

        result.stats = {m: st.describe(values) for m, values in series.items()}
        result.success_rate_ci = st.confidence_interval(success, cfg.confidence_level)
        result.execution_time_ci = st.confidence_interval(series["execution_time"], cfg.confidence_level)
        result.success_rate_moving_average = st.moving_average(success, cfg.moving_average_window)
        result.execution_time_moving_average = st.moving_average(series["execution_time"], cfg.moving_average_window)
        result.correlation = st.correlation_matrix(points)
        result.distribution = st.analyze_distribution(success, cfg.histogram_bins)
        result.outliers = st.iqr_outliers(
            success, [p.timestamp for p in points], "success_rate", cfg.outlier_threshold
        )
        result.seasonality = st.seasonality(success, cfg.seasonality_period)
        result.trend = st.linear_trend(success)
        return result

    def detect_regression(self, tree_id: str, points: Sequence[PerformanceDataPoint]) -> RegressionAnalysisResult:
        """
        Compare the two halves of the last ``regression_lookback`` points.

        Pure function of ``points``: identical input gives an identical verdict.
        """
        cfg = self.config
        result = RegressionAnalysisResult(tree_id=tree_id)
        n = len(points)
        lookback = cfg.regression_lookback
        if n < lookback:
            return result

        half = lookback // 2
        recent = points[n - half:]
        previous = points[n - lookback:n - half]
        flag_below = -cfg.regression_threshold * cfg.regression_sensitivity

        for metric, sign in REGRESSION_METRICS:
            recent_values = [sign * p.value(metric) for p in recent]
            previous_values = [sign * p.value(metric) for p in previous]
            recent_mean = sum(recent_values) / len(recent_values)
            previous_mean = sum(previous_values) / len(previous_values)
            if previous_mean == 0:
                continue

            change = (recent_mean - previous_mean) / abs(previous_mean)
            if change < flag_below:
                result.regressions.append(MetricRegression(
                    metric=metric,
                    previous_value=sign * previous_mean,
                    current_value=sign * recent_mean,
                    change_percentage=change * 100,
                    severity=abs(change),
                    is_significant=st.two_sample_t_test(recent_values, previous_values, cfg.critical_value),
                ))

        # every recorded regression is already past threshold x sensitivity
        result.has_regression = any(r.is_significant for r in result.regressions)
        return result

    # -- reports ---------------------------------------------------------

    def generate_report(self) -> AnalysisReport:
        results = list(self._statistical.values())
        suggestions = [s for rec in self._recommendations.values() for s in rec.suggestions]

        overall = OverallStatistics()
        if results:
            overall = OverallStatistics(
                total_trees_analyzed=len(results),
                average_success_rate=sum(r.success_rate_stats.mean for r in results) / len(results),
                average_execution_time=sum(r.execution_time_stats.mean for r in results) / len(results),
                trees_with_regressions=sum(1 for r in self._regression.values() if r.has_regression),
                total_suggestions=len(suggestions),
                high_priority_issues=sum(1 for s in suggestions if s.priority > 0.8),
            )

        findings: List[str] = []
        low = [t for t, r in self._statistical.items() if r.success_rate_stats.mean < 0.6]
        if low:
            findings.append(f"{len(low)} tree(s) below 60% success rate")
        regressed = [t for t, r in self._regression.items() if r.has_regression]
        if regressed:
            findings.append(f"Performance regression detected in {len(regressed)} tree(s)")
        high_impact = [s for s in suggestions if s.expected_impact > 20]
        if high_impact:
            findings.append(f"{len(high_impact)} high-impact optimization opportunities")

        top = sorted(suggestions, key=lambda s: s.priority, reverse=True)[:5]
        report = AnalysisReport(
            analyzed_trees=list(self._statistical.keys()),
            overall=overall,
            key_findings=findings,
            recommendations=[f"{s.title}: {s.description}" for s in top],
        )
        self._report = report
        self._emit(EventType.ANALYSIS_REPORT_GENERATED, "analyzer", report)
        return report

    def summary(self) -> AnalysisSummary:
        results = list(self._statistical.values())
        regressions = sum(1 for r in self._regression.values() if r.has_regression)
        issues = regressions + sum(
            1 for rec in self._recommendations.values() for s in rec.suggestions if s.priority > 0.5
        )
        return AnalysisSummary(
            last_analysis_time=self.last_analysis_time,
            analyzed_tree_count=len(results),
            total_issues_found=issues,
            average_system_performance=(
                sum(r.success_rate_stats.mean for r in results) / len(results) if results else 0.0
            ),
        )

    # -- queries ---------------------------------------------------------

    def statistical_result(self, tree_id: str) -> Optional[StatisticalAnalysisResult]:
        return self._statistical.get(tree_id)

    def regression_result(self, tree_id: str) -> Optional[RegressionAnalysisResult]:
        return self._regression.get(tree_id)

    def recommendation(self, tree_id: str) -> Optional[OptimizationRecommendation]:
        return self._recommendations.get(tree_id)

    def visualization(self, tree_id: str) -> Optional[VisualizationDataSet]:
        return self._visualization.get(tree_id)

    def trend(self, tree_id: str) -> Optional[TrendAnalysis]:
        result = self._statistical.get(tree_id)
        return result.trend if result is not None else None

    @property
    def report(self) -> Optional[AnalysisReport]:
        return self._report

    def _emit(self, event_type: EventType, source: str, payload) -> None:
        if self.events is not None:
            self.events.emit(event_type, source, payload)
