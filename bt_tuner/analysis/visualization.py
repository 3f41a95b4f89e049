"""
Chart-ready data derived from an analysis cycle.

Nothing here draws; the data sets are plain lists meant for an external
dashboard (or the HTTP API).
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Dict, List, Sequence

from .models import (
    METRICS,
    HistogramBin,
    PerformanceDataPoint,
    StatisticalAnalysisResult,
    TrendAnalysis,
    TrendDirection,
)

METRIC_LABELS = {
    "success_rate": "SuccessRate",
    "execution_time": "ExecutionTime",
    "memory_usage": "MemoryUsage",
    "fps": "FPS",
    "efficiency": "Efficiency",
}


@dataclass
class TimeSeriesChartData:
    timestamps: List[float] = field(default_factory=list)
    success_rates: List[float] = field(default_factory=list)
    execution_times: List[float] = field(default_factory=list)
    memory_usages: List[float] = field(default_factory=list)
    fps_values: List[float] = field(default_factory=list)
    efficiencies: List[float] = field(default_factory=list)


@dataclass
class HistogramChartData:
    bin_labels: List[str] = field(default_factory=list)
    frequencies: List[float] = field(default_factory=list)
    counts: List[int] = field(default_factory=list)


@dataclass
class HeatmapData:
    x_labels: List[str] = field(default_factory=list)
    y_labels: List[str] = field(default_factory=list)
    values: List[List[float]] = field(default_factory=list)
    min_value: float = -1.0
    max_value: float = 1.0


@dataclass
class BoxPlotData:
    metric_names: List[str] = field(default_factory=list)
    minimums: List[float] = field(default_factory=list)
    quartile1s: List[float] = field(default_factory=list)
    medians: List[float] = field(default_factory=list)
    quartile3s: List[float] = field(default_factory=list)
    maximums: List[float] = field(default_factory=list)


@dataclass
class TrendLineData:
    has_valid_trend: bool = False
    x_values: List[float] = field(default_factory=list)
    trend_values: List[float] = field(default_factory=list)
    slope: float = 0.0
    r_squared: float = 0.0
    direction: str = TrendDirection.STABLE.value


@dataclass
class ScatterSeries:
    x_values: List[float]
    y_values: List[float]
    x_label: str
    y_label: str


@dataclass
class VisualizationDataSet:
    tree_id: str
    time_series: TimeSeriesChartData
    histogram: HistogramChartData
    correlation_heatmap: HeatmapData
    box_plot: BoxPlotData
    trend_line: TrendLineData
    scatter: Dict[str, ScatterSeries]
    last_updated: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict:
        return asdict(self)


def sample_points(points: Sequence[PerformanceDataPoint], target: int) -> List[PerformanceDataPoint]:
    """Evenly spaced subset of at most ``target`` points."""
    n = len(points)
    if n <= target:
        return list(points)
    return [points[int(i * n / target)] for i in range(target)]


def time_series(points: Sequence[PerformanceDataPoint], target: int = 50) -> TimeSeriesChartData:
    sampled = sample_points(points, target)
    return TimeSeriesChartData(
        timestamps=[p.timestamp for p in sampled],
        success_rates=[p.success_rate for p in sampled],
        execution_times=[p.execution_time for p in sampled],
        memory_usages=[p.memory_usage for p in sampled],
        fps_values=[p.fps for p in sampled],
        efficiencies=[p.efficiency for p in sampled],
    )


def histogram_chart(bins: Sequence[HistogramBin]) -> HistogramChartData:
    return HistogramChartData(
        bin_labels=[f"{b.lower_bound:.2f}-{b.upper_bound:.2f}" for b in bins],
        frequencies=[b.frequency for b in bins],
        counts=[b.count for b in bins],
    )


def correlation_heatmap(result: StatisticalAnalysisResult) -> HeatmapData:
    labels = [METRIC_LABELS[m] for m in METRICS]
    values = [[result.correlation.get(a, b) for b in METRICS] for a in METRICS]
    return HeatmapData(x_labels=labels, y_labels=list(labels), values=values)


def box_plot(result: StatisticalAnalysisResult) -> BoxPlotData:
    stats = [result.metric(m) for m in METRICS]
    return BoxPlotData(
        metric_names=[METRIC_LABELS[m] for m in METRICS],
        minimums=[s.minimum for s in stats],
        quartile1s=[s.quartile1 for s in stats],
        medians=[s.median for s in stats],
        quartile3s=[s.quartile3 for s in stats],
        maximums=[s.maximum for s in stats],
    )


def trend_line(points: Sequence[PerformanceDataPoint], trend: TrendAnalysis) -> TrendLineData:
    """Fitted success-rate line; only for significant trends."""
    n = len(points)
    if not trend.is_significant or n < 2:
        return TrendLineData()

    xs = [float(i) for i in range(n)]
    mean_x = sum(xs) / n
    mean_y = sum(p.success_rate for p in points) / n
    intercept = mean_y - trend.slope * mean_x
    return TrendLineData(
        has_valid_trend=True,
        x_values=xs,
        trend_values=[trend.slope * x + intercept for x in xs],
        slope=trend.slope,
        r_squared=trend.r_squared,
        direction=trend.direction.value,
    )


def scatter_series(points: Sequence[PerformanceDataPoint]) -> Dict[str, ScatterSeries]:
    return {
        "success_rate_vs_execution_time": ScatterSeries(
            [p.success_rate for p in points], [p.execution_time for p in points],
            "Success Rate", "Execution Time (ms)",
        ),
        "memory_usage_vs_fps": ScatterSeries(
            [p.memory_usage for p in points], [p.fps for p in points],
            "Memory Usage (MB)", "FPS",
        ),
        "efficiency_vs_success_rate": ScatterSeries(
            [p.efficiency for p in points], [p.success_rate for p in points],
            "Efficiency", "Success Rate",
        ),
    }


def build_visualization(
    tree_id: str,
    points: Sequence[PerformanceDataPoint],
    result: StatisticalAnalysisResult,
    chart_points: int = 50,
) -> VisualizationDataSet:
    return VisualizationDataSet(
        tree_id=tree_id,
        time_series=time_series(points, chart_points),
        histogram=histogram_chart(result.distribution.histogram),
        correlation_heatmap=correlation_heatmap(result),
        box_plot=box_plot(result),
        trend_line=trend_line(points, result.trend),
        scatter=scatter_series(points),
    )
