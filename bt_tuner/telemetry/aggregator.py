"""
Per-tree execution telemetry.

Aggregates what the node core reports: tree executions, per-node
statistics, selector branch choices and parameter/performance samples.
Derived analytics (node utilization, branching factor, bottlenecks and
optimization priorities) are refreshed every few executions.
"""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Dict, List, Optional, Tuple

from ..analysis.statistics import pearson
from ..config import TelemetryConfig

logger = logging.getLogger(__name__)


def _is_success(state) -> bool:
    return getattr(state, "value", state) == "success"


def _is_failure(state) -> bool:
    return getattr(state, "value", state) == "failure"


@dataclass
class NodeStatistics:
    """Execution counts and timings of one node within a tree."""
    node_id: str
    node_type: str = "node"
    execution_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    running_count: int = 0
    last_execution_time_ms: float = 0.0
    total_execution_time_ms: float = 0.0

    def record(self, state, elapsed_ms: float) -> None:
        self.execution_count += 1
        self.last_execution_time_ms = elapsed_ms
        self.total_execution_time_ms += elapsed_ms
        if _is_success(state):
            self.success_count += 1
        elif _is_failure(state):
            self.failure_count += 1
        else:
            self.running_count += 1

    @property
    def average_execution_time_ms(self) -> float:
        return self.total_execution_time_ms / self.execution_count if self.execution_count else 0.0

    @property
    def success_rate(self) -> float:
        completed = self.success_count + self.failure_count
        return self.success_count / completed if completed else 0.0

    @property
    def failure_rate(self) -> float:
        completed = self.success_count + self.failure_count
        return self.failure_count / completed if completed else 0.0

    def reset(self) -> None:
        self.execution_count = 0
        self.success_count = 0
        self.failure_count = 0
        self.running_count = 0
        self.last_execution_time_ms = 0.0
        self.total_execution_time_ms = 0.0

    def to_dict(self) -> Dict:
        return {
            "node_id": self.node_id,
            "node_type": self.node_type,
            "execution_count": self.execution_count,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "running_count": self.running_count,
            "success_rate": round(self.success_rate, 4),
            "failure_rate": round(self.failure_rate, 4),
            "average_execution_time_ms": round(self.average_execution_time_ms, 4),
        }


@dataclass
class BranchPattern:
    """How often a selector picked each of its children."""
    selector_id: str
    branch_count: int = 0
    total_selections: int = 0
    selections: Dict[int, int] = field(default_factory=dict)

    def record(self, branch_index: int, branch_count: int) -> None:
        self.branch_count = branch_count
        self.total_selections += 1
        self.selections[branch_index] = self.selections.get(branch_index, 0) + 1

    @property
    def probabilities(self) -> Dict[int, float]:
        if self.total_selections == 0:
            return {}
        return {i: n / self.total_selections for i, n in self.selections.items()}

    def reset(self) -> None:
        self.total_selections = 0
        self.selections.clear()

    def to_dict(self) -> Dict:
        return {
            "selector_id": self.selector_id,
            "branch_count": self.branch_count,
            "total_selections": self.total_selections,
            "probabilities": {str(k): round(v, 4) for k, v in sorted(self.probabilities.items())},
        }


@dataclass
class ParameterCorrelation:
    """(parameter value, performance) samples for one node parameter; the oldest drop out."""
    node_id: str
    parameter: str
    min_points: int = 3
    max_points: int = 500
    coefficient: float = 0.0
    values: Deque[float] = field(init=False)
    performance: Deque[float] = field(init=False)

    def __post_init__(self):
        self.values = deque(maxlen=self.max_points)
        self.performance = deque(maxlen=self.max_points)

    def add(self, value: float, performance: float) -> None:
        self.values.append(value)
        self.performance.append(performance)
        if len(self.values) >= self.min_points:
            self.coefficient = pearson(self.values, self.performance)

    def to_dict(self) -> Dict:
        return {
            "node_id": self.node_id,
            "parameter": self.parameter,
            "samples": len(self.values),
            "coefficient": round(self.coefficient, 4),
        }


class BottleneckType(str, Enum):
    HIGH_EXECUTION_TIME = "high_execution_time"
    HIGH_FAILURE_RATE = "high_failure_rate"


@dataclass
class Bottleneck:
    """A node exceeding a time or failure-rate threshold."""
    node_id: str
    type: BottleneckType
    severity: float
    description: str

    def to_dict(self) -> Dict:
        return {
            "node_id": self.node_id,
            "type": self.type.value,
            "severity": round(self.severity, 4),
            "description": self.description,
        }


@dataclass
class ExecutionSnapshot:
    timestamp: float
    result: str
    execution_time_ms: float
    executed_nodes: int
    depth: int
    success_rate: float


class TreeTelemetry:
    """
    Execution statistics of one behavior tree.

    Example:
        >>> telemetry = TreeTelemetry("duelist", node_count=7)
        >>> telemetry.record_execution(NodeState.SUCCESS, 0.4, executed_nodes=3, depth=2)
        >>> telemetry.success_rate
        1.0
    """

    def __init__(
        self,
        tree_id: str,
        node_count: int = 0,
        depth: int = 0,
        config: Optional[TelemetryConfig] = None,
    ):
        self.tree_id = tree_id
        self.node_count = node_count
        self.depth = depth
        self.config = config or TelemetryConfig()

        self.total_executions = 0
        self.success_count = 0
        self.failure_count = 0
        self.total_execution_time_ms = 0.0
        self.average_nodes_per_execution = 0.0
        self.max_execution_depth = 0

        self.node_stats: Dict[str, NodeStatistics] = {}
        self.node_type_distribution: Dict[str, int] = {}
        self.branch_patterns: Dict[str, BranchPattern] = {}
        self.correlations: Dict[Tuple[str, str], ParameterCorrelation] = {}
        self.history: Deque[ExecutionSnapshot] = deque(maxlen=self.config.max_history)

        # Refreshed by update_analytics()
        self.node_utilization = 0.0
        self.average_branching_factor = 0.0
        self.bottlenecks: List[Bottleneck] = []
        self.optimization_priorities: Dict[str, float] = {}

    # -- recording -------------------------------------------------------

    def record_node(self, node_id: str, node_type: str, state, elapsed_ms: float) -> None:
        stats = self.node_stats.get(node_id)
        if stats is None:
            stats = self.node_stats[node_id] = NodeStatistics(node_id, node_type)
        stats.record(state, elapsed_ms)
        self.node_type_distribution[node_type] = self.node_type_distribution.get(node_type, 0) + 1

    def record_branch(self, selector_id: str, branch_index: int, branch_count: int) -> None:
        pattern = self.branch_patterns.get(selector_id)
        if pattern is None:
            pattern = self.branch_patterns[selector_id] = BranchPattern(selector_id)
        pattern.record(branch_index, branch_count)

    def record_parameter_sample(self, node_id: str, parameter: str, value: float, performance: float) -> None:
        key = (node_id, parameter)
        corr = self.correlations.get(key)
        if corr is None:
            corr = self.correlations[key] = ParameterCorrelation(
                node_id,
                parameter,
                min_points=self.config.min_correlation_points,
                max_points=self.config.max_correlation_points,
            )
        corr.add(value, performance)

    def record_execution(
        self,
        result,
        execution_time_ms: float,
        executed_nodes: int = 0,
        depth: int = 0,
        timestamp: float = 0.0,
    ) -> None:
        """
        Record one full tree evaluation at logical time ``timestamp``.

        RUNNING counts as an execution but not as completed.
        """
        self.total_executions += 1
        self.total_execution_time_ms += execution_time_ms

        if _is_success(result):
            self.success_count += 1
        elif _is_failure(result):
            self.failure_count += 1

        self.max_execution_depth = max(self.max_execution_depth, depth)
        n = self.total_executions
        self.average_nodes_per_execution = (self.average_nodes_per_execution * (n - 1) + executed_nodes) / n

        self.history.append(ExecutionSnapshot(
            timestamp=timestamp,
            result=getattr(result, "value", str(result)),
            execution_time_ms=execution_time_ms,
            executed_nodes=executed_nodes,
            depth=depth,
            success_rate=self.success_rate,
        ))

        if n % self.config.analytics_every == 0:
            self.update_analytics()

    # -- derived values --------------------------------------------------

    @property
    def completed_executions(self) -> int:
        return self.success_count + self.failure_count

    @property
    def success_rate(self) -> float:
        completed = self.completed_executions
        return self.success_count / completed if completed else 0.0

    @property
    def failure_rate(self) -> float:
        completed = self.completed_executions
        return self.failure_count / completed if completed else 0.0

    @property
    def average_execution_time_ms(self) -> float:
        return self.total_execution_time_ms / self.total_executions if self.total_executions else 0.0

    @property
    def efficiency(self) -> float:
        """Success rate per millisecond of average execution time."""
        avg = self.average_execution_time_ms
        return self.success_rate / avg if avg > 0 else 0.0

    def identify_bottlenecks(
        self,
        time_threshold: Optional[float] = None,
        failure_rate_threshold: Optional[float] = None,
    ) -> List[Bottleneck]:
        """Nodes over the time or failure-rate threshold, severest first."""
        time_threshold = time_threshold if time_threshold is not None else self.config.bottleneck_time_threshold_ms
        failure_rate_threshold = (
            failure_rate_threshold if failure_rate_threshold is not None
            else self.config.bottleneck_failure_rate_threshold
        )

        found: List[Bottleneck] = []
        for stats in self.node_stats.values():
            if stats.average_execution_time_ms > time_threshold:
                found.append(Bottleneck(
                    stats.node_id,
                    BottleneckType.HIGH_EXECUTION_TIME,
                    stats.average_execution_time_ms / time_threshold,
                    f"average execution time {stats.average_execution_time_ms:.2f}ms exceeds {time_threshold}ms",
                ))
            if stats.failure_rate > failure_rate_threshold:
                found.append(Bottleneck(
                    stats.node_id,
                    BottleneckType.HIGH_FAILURE_RATE,
                    stats.failure_rate / failure_rate_threshold,
                    f"failure rate {stats.failure_rate:.1%} exceeds {failure_rate_threshold:.1%}",
                ))

        found.sort(key=lambda b: b.severity, reverse=True)
        self.bottlenecks = found
        return found

    def calculate_optimization_priorities(self) -> Dict[str, float]:
        """
        Rank nodes by frequency x improvement potential x relative cost.

        Normalized so the top node has priority 1.0.
        """
        priorities: Dict[str, float] = {}
        tree_avg = self.average_execution_time_ms
        total = self.total_executions

        for stats in self.node_stats.values():
            frequency = stats.execution_count / total if total else 0.0
            potential = 1.0 - stats.success_rate
            impact = stats.average_execution_time_ms / tree_avg if tree_avg > 0 else 0.0
            priorities[stats.node_id] = frequency * potential * impact

        top = max(priorities.values(), default=0.0)
        if top > 0:
            priorities = {k: v / top for k, v in priorities.items()}

        self.optimization_priorities = priorities
        return priorities

    def top_priority_node(self) -> Optional[str]:
        if not self.optimization_priorities:
            return None
        return max(self.optimization_priorities.items(), key=lambda kv: kv[1])[0]

    def update_analytics(self) -> None:
        active = sum(1 for s in self.node_stats.values() if s.execution_count > 0)
        self.node_utilization = active / self.node_count if self.node_count else 0.0

        if self.branch_patterns:
            counts = [p.branch_count for p in self.branch_patterns.values()]
            self.average_branching_factor = sum(counts) / len(counts)

        self.identify_bottlenecks()
        self.calculate_optimization_priorities()

    def reset(self) -> None:
        """Clear all statistics (tree structure is kept)."""
        self.total_executions = 0
        self.success_count = 0
        self.failure_count = 0
        self.total_execution_time_ms = 0.0
        self.average_nodes_per_execution = 0.0
        self.max_execution_depth = 0
        for stats in self.node_stats.values():
            stats.reset()
        for pattern in self.branch_patterns.values():
            pattern.reset()
        self.node_type_distribution.clear()
        self.correlations.clear()
        self.history.clear()
        self.node_utilization = 0.0
        self.average_branching_factor = 0.0
        self.bottlenecks = []
        self.optimization_priorities = {}

    # -- export ----------------------------------------------------------

    def summary_report(self) -> str:
        lines = [
            f"=== Tree telemetry: {self.tree_id} ===",
            f"Depth: {self.depth}, nodes: {self.node_count}",
            "",
            f"Executions: {self.total_executions}",
            f"Success rate: {self.success_rate:.1%} ({self.success_count}/{self.completed_executions})",
            f"Average execution time: {self.average_execution_time_ms:.3f}ms",
            f"Efficiency: {self.efficiency:.3f}",
            f"Node utilization: {self.node_utilization:.1%}",
            "",
            "Bottlenecks:",
        ]
        if self.bottlenecks:
            for b in self.bottlenecks[:3]:
                lines.append(f"- {b.node_id}: {b.description} (severity {b.severity:.2f})")
        else:
            lines.append("none")

        lines.append("")
        lines.append("Optimization priorities (top 5):")
        ranked = sorted(self.optimization_priorities.items(), key=lambda kv: kv[1], reverse=True)[:5]
        for node_id, priority in ranked:
            lines.append(f"- {node_id}: {priority:.3f}")

        return "\n".join(lines)

    def to_dict(self) -> Dict:
        return {
            "tree_id": self.tree_id,
            "node_count": self.node_count,
            "depth": self.depth,
            "total_executions": self.total_executions,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "success_rate": round(self.success_rate, 4),
            "failure_rate": round(self.failure_rate, 4),
            "average_execution_time_ms": round(self.average_execution_time_ms, 4),
            "efficiency": round(self.efficiency, 4),
            "average_nodes_per_execution": round(self.average_nodes_per_execution, 3),
            "max_execution_depth": self.max_execution_depth,
            "node_utilization": round(self.node_utilization, 4),
            "average_branching_factor": round(self.average_branching_factor, 3),
            "nodes": {k: v.to_dict() for k, v in self.node_stats.items()},
            "branches": {k: v.to_dict() for k, v in self.branch_patterns.items()},
            "correlations": [c.to_dict() for c in self.correlations.values()],
            "bottlenecks": [b.to_dict() for b in self.bottlenecks],
            "optimization_priorities": {k: round(v, 4) for k, v in self.optimization_priorities.items()},
        }


class TelemetryAggregator:
    """Registry of ``TreeTelemetry`` by tree id."""

    def __init__(self, config: Optional[TelemetryConfig] = None):
        self.config = config or TelemetryConfig()
        self._trees: Dict[str, TreeTelemetry] = {}

    def register(self, tree_id: str, node_count: int = 0, depth: int = 0) -> TreeTelemetry:
        """Get or create the telemetry of a tree."""
        telemetry = self._trees.get(tree_id)
        if telemetry is None:
            telemetry = TreeTelemetry(tree_id, node_count, depth, self.config)
            self._trees[tree_id] = telemetry
            logger.debug(f"Telemetry registered for tree {tree_id}")
        else:
            telemetry.node_count = node_count or telemetry.node_count
            telemetry.depth = depth or telemetry.depth
        return telemetry

    def unregister(self, tree_id: str) -> bool:
        return self._trees.pop(tree_id, None) is not None

    def get(self, tree_id: str) -> Optional[TreeTelemetry]:
        return self._trees.get(tree_id)

    def __getitem__(self, tree_id: str) -> TreeTelemetry:
        return self._trees[tree_id]

    def __contains__(self, tree_id: str) -> bool:
        return tree_id in self._trees

    def tree_ids(self) -> List[str]:
        return list(self._trees.keys())

    def all(self) -> List[TreeTelemetry]:
        return list(self._trees.values())

    def to_dict(self) -> Dict:
        return {tree_id: t.to_dict() for tree_id, t in self._trees.items()}
