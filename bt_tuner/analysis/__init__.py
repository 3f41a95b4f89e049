"""
Statistical analysis of collected performance data.

The analyzer merges monitor snapshots with optimizer metrics per tree and
produces descriptive statistics, regression checks, ranked
recommendations and chart-ready data sets.
"""

from .analyzer import PerformanceAnalyzer
from .models import (
    AnalysisReport,
    AnalysisSummary,
    BasicStatistics,
    OptimizationRecommendation,
    OptimizationSuggestion,
    PerformanceDataPoint,
    RegressionAnalysisResult,
    StatisticalAnalysisResult,
    TrendAnalysis,
    TrendDirection,
)
from .visualization import VisualizationDataSet

__all__ = [
    "PerformanceAnalyzer",

    # Results
    "AnalysisReport",
    "AnalysisSummary",
    "BasicStatistics",
    "OptimizationRecommendation",
    "OptimizationSuggestion",
    "PerformanceDataPoint",
    "RegressionAnalysisResult",
    "StatisticalAnalysisResult",
    "TrendAnalysis",
    "TrendDirection",
    "VisualizationDataSet",
]
