"""
Result types of the statistical analyzer.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

METRICS = ("success_rate", "execution_time", "memory_usage", "fps", "efficiency")


@dataclass
class PerformanceDataPoint:
    """One merged sample of a tree's performance."""
    timestamp: float
    success_rate: float = 0.0
    execution_time: float = 0.0
    memory_usage: float = 0.0
    fps: float = 0.0
    efficiency: float = 0.0

    def value(self, metric: str) -> float:
        return getattr(self, metric)

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class BasicStatistics:
    count: int = 0
    mean: float = 0.0
    median: float = 0.0
    mode: float = 0.0
    standard_deviation: float = 0.0
    variance: float = 0.0
    minimum: float = 0.0
    maximum: float = 0.0
    range: float = 0.0
    quartile1: float = 0.0
    quartile3: float = 0.0
    interquartile_range: float = 0.0
    skewness: float = 0.0
    kurtosis: float = 0.0

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class ConfidenceInterval:
    mean: float = 0.0
    lower_bound: float = 0.0
    upper_bound: float = 0.0
    confidence_level: float = 0.95
    margin_of_error: float = 0.0

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class CorrelationMatrix:
    """Pairwise Pearson correlations over ``labels`` (symmetric, unit diagonal)."""
    labels: List[str] = field(default_factory=lambda: list(METRICS))
    values: List[List[float]] = field(default_factory=list)

    def get(self, a: str, b: str) -> float:
        if not self.values:
            return 0.0
        return self.values[self.labels.index(a)][self.labels.index(b)]

    @property
    def success_rate_vs_execution_time(self) -> float:
        return self.get("success_rate", "execution_time")

    @property
    def memory_usage_vs_fps(self) -> float:
        return self.get("memory_usage", "fps")

    @property
    def efficiency_vs_success_rate(self) -> float:
        return self.get("efficiency", "success_rate")

    def to_dict(self) -> Dict:
        return {"labels": list(self.labels), "values": [list(row) for row in self.values]}


class DistributionType(str, Enum):
    NORMAL = "normal"
    RIGHT_SKEWED = "right_skewed"
    LEFT_SKEWED = "left_skewed"
    LEPTOKURTIC = "leptokurtic"
    PLATYKURTIC = "platykurtic"
    UNKNOWN = "unknown"


@dataclass
class HistogramBin:
    lower_bound: float
    upper_bound: float
    count: int = 0
    frequency: float = 0.0

    @property
    def midpoint(self) -> float:
        return (self.lower_bound + self.upper_bound) / 2

    def to_dict(self) -> Dict:
        d = asdict(self)
        d["midpoint"] = self.midpoint
        return d


@dataclass
class DistributionAnalysis:
    distribution_type: DistributionType = DistributionType.UNKNOWN
    is_normal: bool = False
    normality_p_value: float = 0.0
    histogram: List[HistogramBin] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "distribution_type": self.distribution_type.value,
            "is_normal": self.is_normal,
            "normality_p_value": self.normality_p_value,
            "histogram": [b.to_dict() for b in self.histogram],
        }


class OutlierType(str, Enum):
    LOW = "low"
    HIGH = "high"


@dataclass
class OutlierInfo:
    index: int
    timestamp: float
    value: float
    metric: str
    outlier_type: OutlierType
    severity: float

    def to_dict(self) -> Dict:
        d = asdict(self)
        d["outlier_type"] = self.outlier_type.value
        return d


@dataclass
class SeasonalityAnalysis:
    has_seasonality: bool = False
    period: int = 0
    strength: float = 0.0
    autocorrelations: List[float] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return asdict(self)


class TrendDirection(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


@dataclass
class TrendAnalysis:
    direction: TrendDirection = TrendDirection.STABLE
    slope: float = 0.0
    r_squared: float = 0.0
    strength: float = 0.0
    is_significant: bool = False

    def to_dict(self) -> Dict:
        d = asdict(self)
        d["direction"] = self.direction.value
        return d


@dataclass
class StatisticalAnalysisResult:
    """Everything the analyzer computes for one tree in one cycle."""
    tree_id: str
    data_point_count: int = 0
    analysis_time: str = field(default_factory=lambda: datetime.now().isoformat())
    stats: Dict[str, BasicStatistics] = field(default_factory=dict)
    success_rate_ci: ConfidenceInterval = field(default_factory=ConfidenceInterval)
    execution_time_ci: ConfidenceInterval = field(default_factory=ConfidenceInterval)
    success_rate_moving_average: List[float] = field(default_factory=list)
    execution_time_moving_average: List[float] = field(default_factory=list)
    correlation: CorrelationMatrix = field(default_factory=CorrelationMatrix)
    distribution: DistributionAnalysis = field(default_factory=DistributionAnalysis)
    outliers: List[OutlierInfo] = field(default_factory=list)
    seasonality: SeasonalityAnalysis = field(default_factory=SeasonalityAnalysis)
    trend: TrendAnalysis = field(default_factory=TrendAnalysis)

    def metric(self, name: str) -> BasicStatistics:
        return self.stats.get(name, BasicStatistics())

    @property
    def success_rate_stats(self) -> BasicStatistics:
        return self.metric("success_rate")

    @property
    def execution_time_stats(self) -> BasicStatistics:
        return self.metric("execution_time")

    def to_dict(self) -> Dict:
        return {
            "tree_id": self.tree_id,
            "data_point_count": self.data_point_count,
            "analysis_time": self.analysis_time,
            "stats": {k: v.to_dict() for k, v in self.stats.items()},
            "success_rate_ci": self.success_rate_ci.to_dict(),
            "execution_time_ci": self.execution_time_ci.to_dict(),
            "success_rate_moving_average": list(self.success_rate_moving_average),
            "execution_time_moving_average": list(self.execution_time_moving_average),
            "correlation": self.correlation.to_dict(),
            "distribution": self.distribution.to_dict(),
            "outliers": [o.to_dict() for o in self.outliers],
            "seasonality": self.seasonality.to_dict(),
            "trend": self.trend.to_dict(),
        }


@dataclass
class MetricRegression:
    metric: str
    previous_value: float
    current_value: float
    change_percentage: float
    severity: float
    is_significant: bool

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class RegressionAnalysisResult:
    tree_id: str
    has_regression: bool = False
    regressions: List[MetricRegression] = field(default_factory=list)
    analysis_time: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict:
        return {
            "tree_id": self.tree_id,
            "has_regression": self.has_regression,
            "regressions": [r.to_dict() for r in self.regressions],
            "analysis_time": self.analysis_time,
        }


class OptimizationType(str, Enum):
    PARAMETER_TUNING = "parameter_tuning"
    PERFORMANCE_OPTIMIZATION = "performance_optimization"
    STABILITY_IMPROVEMENT = "stability_improvement"
    OUTLIER_HANDLING = "outlier_handling"
    DISTRIBUTION_OPTIMIZATION = "distribution_optimization"
    TREND_CORRECTION = "trend_correction"
    CORRELATION_OPTIMIZATION = "correlation_optimization"
    MEMORY_OPTIMIZATION = "memory_optimization"


class ImplementationEffort(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class OptimizationStrategy(str, Enum):
    PERFORMANCE_FOCUSED = "performance_focused"
    STABILITY_FOCUSED = "stability_focused"
    BALANCED = "balanced"
    QUICK_WINS = "quick_wins"


@dataclass
class OptimizationSuggestion:
    type: OptimizationType
    title: str
    description: str
    expected_impact: float
    effort: ImplementationEffort
    affected_components: List[str] = field(default_factory=list)
    priority: float = 0.0

    def to_dict(self) -> Dict:
        return {
            "type": self.type.value,
            "title": self.title,
            "description": self.description,
            "expected_impact": round(self.expected_impact, 4),
            "effort": self.effort.value,
            "affected_components": list(self.affected_components),
            "priority": round(self.priority, 4),
        }


@dataclass
class OptimizationRecommendation:
    tree_id: str
    strategy: OptimizationStrategy = OptimizationStrategy.BALANCED
    suggestions: List[OptimizationSuggestion] = field(default_factory=list)
    generation_time: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict:
        return {
            "tree_id": self.tree_id,
            "strategy": self.strategy.value,
            "suggestions": [s.to_dict() for s in self.suggestions],
            "generation_time": self.generation_time,
        }


class AnalysisTaskType(str, Enum):
    STATISTICAL_ANALYSIS = "statistical_analysis"
    REGRESSION_DETECTION = "regression_detection"
    OPTIMIZATION_ANALYSIS = "optimization_analysis"


@dataclass
class AnalysisTask:
    task_type: AnalysisTaskType
    tree_id: str
    priority: int
    scheduled_time: float


@dataclass
class OverallStatistics:
    total_trees_analyzed: int = 0
    average_success_rate: float = 0.0
    average_execution_time: float = 0.0
    trees_with_regressions: int = 0
    total_suggestions: int = 0
    high_priority_issues: int = 0

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class AnalysisReport:
    analyzed_trees: List[str] = field(default_factory=list)
    overall: OverallStatistics = field(default_factory=OverallStatistics)
    key_findings: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    generation_time: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict:
        return {
            "analyzed_trees": list(self.analyzed_trees),
            "overall": self.overall.to_dict(),
            "key_findings": list(self.key_findings),
            "recommendations": list(self.recommendations),
            "generation_time": self.generation_time,
        }

    def to_text(self) -> str:
        o = self.overall
        lines = [
            "=== Analysis report ===",
            f"Trees analyzed: {o.total_trees_analyzed}",
            f"Average success rate: {o.average_success_rate:.1%}",
            f"Average execution time: {o.average_execution_time:.3f}",
            f"Trees with regressions: {o.trees_with_regressions}",
            f"Suggestions: {o.total_suggestions} ({o.high_priority_issues} high priority)",
        ]
        if self.key_findings:
            lines.append("")
            lines.append("Key findings:")
            lines.extend(f"- {f}" for f in self.key_findings)
        if self.recommendations:
            lines.append("")
            lines.append("Top recommendations:")
            lines.extend(f"- {r}" for r in self.recommendations)
        return "\n".join(lines)


@dataclass
class AnalysisSummary:
    last_analysis_time: Optional[float] = None
    analyzed_tree_count: int = 0
    total_issues_found: int = 0
    average_system_performance: float = 0.0

    def to_dict(self) -> Dict:
        return asdict(self)
