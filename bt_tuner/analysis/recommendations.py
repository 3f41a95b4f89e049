"""
Rule-based optimization recommendations.

Each rule inspects a ``StatisticalAnalysisResult`` and may emit one
suggestion with an expected impact and an effort tier. Suggestions are
ranked by ``impact * effort weight * type weight / 100``.
"""
from __future__ import annotations

import logging
from typing import Dict, List

from .models import (
    ImplementationEffort,
    OptimizationRecommendation,
    OptimizationStrategy,
    OptimizationSuggestion,
    OptimizationType,
    StatisticalAnalysisResult,
    TrendDirection,
)

logger = logging.getLogger(__name__)

EFFORT_WEIGHTS: Dict[ImplementationEffort, float] = {
    ImplementationEffort.LOW: 1.0,
    ImplementationEffort.MEDIUM: 0.7,
    ImplementationEffort.HIGH: 0.4,
}

TYPE_WEIGHTS: Dict[OptimizationType, float] = {
    OptimizationType.PERFORMANCE_OPTIMIZATION: 1.2,
    OptimizationType.STABILITY_IMPROVEMENT: 1.1,
    OptimizationType.PARAMETER_TUNING: 1.0,
}
DEFAULT_TYPE_WEIGHT = 0.8


def suggestion_priority(suggestion: OptimizationSuggestion) -> float:
    effort = EFFORT_WEIGHTS.get(suggestion.effort, 0.5)
    kind = TYPE_WEIGHTS.get(suggestion.type, DEFAULT_TYPE_WEIGHT)
    return suggestion.expected_impact * effort * kind / 100.0


def performance_suggestions(result: StatisticalAnalysisResult) -> List[OptimizationSuggestion]:
    out: List[OptimizationSuggestion] = []
    success = result.success_rate_stats
    exec_time = result.execution_time_stats

    if success.mean < 0.7:
        out.append(OptimizationSuggestion(
            type=OptimizationType.PARAMETER_TUNING,
            title="Improve success rate",
            description=(
                f"Success rate is low ({success.mean:.1%}). "
                "Tune action ranges or condition thresholds."
            ),
            expected_impact=(0.8 - success.mean) * 100,
            effort=ImplementationEffort.MEDIUM,
            affected_components=["ActionNode", "ConditionNode"],
        ))

    if exec_time.mean > 10:
        out.append(OptimizationSuggestion(
            type=OptimizationType.PERFORMANCE_OPTIMIZATION,
            title="Reduce execution time",
            description=(
                f"Average execution time is high ({exec_time.mean:.2f}ms). "
                "Enable result caching or add early exits."
            ),
            expected_impact=(exec_time.mean - 5) / exec_time.mean * 100,
            effort=ImplementationEffort.HIGH,
            affected_components=["Node", "Sequence", "Selector"],
        ))

    if success.standard_deviation > 0.2:
        out.append(OptimizationSuggestion(
            type=OptimizationType.STABILITY_IMPROVEMENT,
            title="Stabilize performance",
            description=(
                f"Success rate varies widely (stdev {success.standard_deviation:.3f}). "
                "Make condition checks more stable."
            ),
            expected_impact=success.standard_deviation * 50,
            effort=ImplementationEffort.MEDIUM,
            affected_components=["ConditionNode", "MovementNode"],
        ))
    return out


def statistical_suggestions(result: StatisticalAnalysisResult) -> List[OptimizationSuggestion]:
    out: List[OptimizationSuggestion] = []
    n = result.data_point_count

    if n > 0 and len(result.outliers) > n * 0.1:
        out.append(OptimizationSuggestion(
            type=OptimizationType.OUTLIER_HANDLING,
            title="Handle outliers",
            description=f"{len(result.outliers)} outliers found. Add handling for exceptional situations.",
            expected_impact=len(result.outliers) / n * 30,
            effort=ImplementationEffort.LOW,
            affected_components=["ErrorHandling", "Validation"],
        ))

    if not result.distribution.is_normal:
        out.append(OptimizationSuggestion(
            type=OptimizationType.DISTRIBUTION_OPTIMIZATION,
            title="Normalize performance distribution",
            description="Performance is not normally distributed. Narrow parameter ranges for more predictable results.",
            expected_impact=20.0,
            effort=ImplementationEffort.MEDIUM,
            affected_components=["ParameterConfiguration"],
        ))

    trend = result.trend
    if trend.is_significant and trend.direction == TrendDirection.DECREASING:
        out.append(OptimizationSuggestion(
            type=OptimizationType.TREND_CORRECTION,
            title="Counter declining trend",
            description="Performance keeps declining. Find the root cause.",
            expected_impact=abs(trend.slope) * 100,
            effort=ImplementationEffort.HIGH,
            affected_components=["Monitoring"],
        ))
    return out


def correlation_suggestions(result: StatisticalAnalysisResult) -> List[OptimizationSuggestion]:
    out: List[OptimizationSuggestion] = []
    corr = result.correlation

    r = corr.success_rate_vs_execution_time
    if r < -0.6:
        out.append(OptimizationSuggestion(
            type=OptimizationType.CORRELATION_OPTIMIZATION,
            title="Speed up decisions",
            description="Execution time and success rate are strongly negatively correlated. Add faster decision paths.",
            expected_impact=abs(r) * 25,
            effort=ImplementationEffort.MEDIUM,
            affected_components=["DecisionLogic"],
        ))

    r = corr.memory_usage_vs_fps
    if r < -0.5:
        out.append(OptimizationSuggestion(
            type=OptimizationType.MEMORY_OPTIMIZATION,
            title="Reduce memory usage",
            description="Memory usage is hurting FPS. Reduce allocations.",
            expected_impact=abs(r) * 20,
            effort=ImplementationEffort.HIGH,
            affected_components=["MemoryManagement"],
        ))
    return out


def generate_recommendation(
    result: StatisticalAnalysisResult,
    max_suggestions: int = 10,
    strategy: OptimizationStrategy = OptimizationStrategy.BALANCED,
) -> OptimizationRecommendation:
    """Run every rule, rank by priority and keep the top ``max_suggestions``."""
    suggestions = (
        performance_suggestions(result)
        + statistical_suggestions(result)
        + correlation_suggestions(result)
    )
    for s in suggestions:
        s.priority = suggestion_priority(s)

    suggestions.sort(key=lambda s: s.priority, reverse=True)
    suggestions = suggestions[:max_suggestions]

    if suggestions:
        logger.debug(f"{result.tree_id}: {len(suggestions)} suggestions, top '{suggestions[0].title}'")
    return OptimizationRecommendation(tree_id=result.tree_id, strategy=strategy, suggestions=suggestions)
