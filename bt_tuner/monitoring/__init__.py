"""Threshold-based performance alerting."""

from .monitor import (
    AlertSeverity,
    AlertType,
    PerformanceAlert,
    PerformanceMonitor,
    PerformanceSnapshot,
    PerformanceStatus,
)

__all__ = [
    "AlertSeverity",
    "AlertType",
    "PerformanceAlert",
    "PerformanceMonitor",
    "PerformanceSnapshot",
    "PerformanceStatus",
]
