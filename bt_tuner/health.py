"""
Health checks for the tuning layer.

Provides:
- Interpreter and dependency checks
- Factories for monitor and optimizer checks
- A process-wide checker used by the HTTP API
"""
from __future__ import annotations

import logging
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class HealthStatus:
    """Status of a health check."""
    name: str
    healthy: bool
    message: str = ""
    latency_ms: float = 0.0
    details: Dict = field(default_factory=dict)


@dataclass
class SystemHealth:
    """Overall system health."""
    healthy: bool
    checks: List[HealthStatus]
    timestamp: str

    def to_dict(self) -> Dict:
        return {
            "healthy": self.healthy,
            "timestamp": self.timestamp,
            "checks": [
                {
                    "name": c.name,
                    "healthy": c.healthy,
                    "message": c.message,
                    "latency_ms": round(c.latency_ms, 2),
                    **c.details,
                }
                for c in self.checks
            ],
        }


class HealthChecker:
    """
    Runs named health checks.

    Example:
        >>> checker = HealthChecker()
        >>> checker.add_check("monitor", monitor_health_check(monitor))
        >>> health = checker.run_all()
        >>> print(health.healthy)
    """

    def __init__(self):
        self._checks: Dict[str, Callable[[], HealthStatus]] = {}
        self._add_default_checks()

    def _add_default_checks(self) -> None:
        self.add_check("python_version", self._check_python_version)
        self.add_check("dependencies", self._check_dependencies)

    def add_check(self, name: str, check_fn: Callable[[], HealthStatus]) -> None:
        """Add (or replace) a health check."""
        self._checks[name] = check_fn

    def remove_check(self, name: str) -> bool:
        return self._checks.pop(name, None) is not None

    def check_names(self) -> List[str]:
        return list(self._checks.keys())

    def run_check(self, name: str) -> HealthStatus:
        """Run a single health check."""
        if name not in self._checks:
            return HealthStatus(
                name=name,
                healthy=False,
                message=f"Unknown check: {name}",
            )

        start = time.perf_counter()
        try:
            status = self._checks[name]()
            status.latency_ms = (time.perf_counter() - start) * 1000
            return status
        except Exception as e:
            logger.warning(f"Health check {name} raised: {e}")
            return HealthStatus(
                name=name,
                healthy=False,
                message=f"Check failed: {str(e)}",
                latency_ms=(time.perf_counter() - start) * 1000,
            )

    def run_all(self) -> SystemHealth:
        """Run all health checks."""
        checks = [self.run_check(name) for name in self._checks]
        return SystemHealth(
            healthy=all(c.healthy for c in checks),
            checks=checks,
            timestamp=datetime.now().isoformat(),
        )

    def _check_python_version(self) -> HealthStatus:
        version = sys.version_info
        required = (3, 9)
        return HealthStatus(
            name="python_version",
            healthy=version >= required,
            message=f"Python {version.major}.{version.minor}.{version.micro}",
            details={
                "version": f"{version.major}.{version.minor}.{version.micro}",
                "required": f"{required[0]}.{required[1]}+",
            },
        )

    def _check_dependencies(self) -> HealthStatus:
        """numpy is required; yaml and fastapi are optional."""
        missing = []
        optional_missing = []

        try:
            import numpy
            numpy_version = numpy.__version__
        except ImportError:
            missing.append("numpy")
            numpy_version = None

        try:
            import yaml  # noqa: F401
            yaml_available = True
        except ImportError:
            yaml_available = False
            optional_missing.append("PyYAML")

        try:
            import fastapi  # noqa: F401
            api_available = True
        except ImportError:
            api_available = False
            optional_missing.append("fastapi")

        healthy = not missing
        return HealthStatus(
            name="dependencies",
            healthy=healthy,
            message="OK" if healthy else f"Missing: {', '.join(missing)}",
            details={
                "numpy": numpy_version,
                "yaml_available": yaml_available,
                "api_available": api_available,
                "optional_missing": optional_missing,
            },
        )


def monitor_health_check(monitor) -> Callable[[], HealthStatus]:
    """Unhealthy while the monitor has unresolved High alerts."""

    def check() -> HealthStatus:
        active = monitor.active_alerts()
        high = [a for a in active if a.severity.value == "high"]
        return HealthStatus(
            name="monitor",
            healthy=not high,
            message=f"{len(active)} active alerts ({len(high)} high)",
            details={
                "monitoring": monitor.is_monitoring,
                "trees": len(monitor.tree_ids()),
                "active_alerts": len(active),
                "high_alerts": len(high),
            },
        )

    return check


def engine_health_check(engine) -> Callable[[], HealthStatus]:
    """Healthy unless the engine has trees registered but no data for any of them."""

    def check() -> HealthStatus:
        trees = engine.tree_ids()
        starved = [t for t in trees if engine.latest_metric(t) is None]
        healthy = not trees or len(starved) < len(trees)
        return HealthStatus(
            name="optimizer",
            healthy=healthy,
            message=f"{len(trees)} trees, {len(engine.active_runs())} runs active",
            details={
                "trees": len(trees),
                "trees_without_data": starved,
                "completed_runs": len(engine.optimization_history()),
                "active_experiments": len(engine.active_experiments()),
            },
        )

    return check


# Global health checker instance
_health_checker: Optional[HealthChecker] = None


def get_health_checker() -> HealthChecker:
    """Get the global health checker."""
    global _health_checker
    if _health_checker is None:
        _health_checker = HealthChecker()
    return _health_checker
