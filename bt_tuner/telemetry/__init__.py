"""Per-node and per-tree execution statistics."""

from .aggregator import (
    Bottleneck,
    BottleneckType,
    BranchPattern,
    NodeStatistics,
    ParameterCorrelation,
    TelemetryAggregator,
    TreeTelemetry,
)

__all__ = [
    "Bottleneck",
    "BottleneckType",
    "BranchPattern",
    "NodeStatistics",
    "ParameterCorrelation",
    "TelemetryAggregator",
    "TreeTelemetry",
]
