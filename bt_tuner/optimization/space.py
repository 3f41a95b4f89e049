"""
Parameter space and training data of the optimizer.
"""
from __future__ import annotations

import time
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Deque, Dict, List, Optional, Tuple

from ..core.parameters import ParameterArena, ParameterRecord
from ..util import clamp


@dataclass
class ParameterVector:
    """Bounds and current values of one node's parameters."""
    node_id: str
    names: List[str] = field(default_factory=list)
    min_values: List[float] = field(default_factory=list)
    max_values: List[float] = field(default_factory=list)
    is_integer: List[bool] = field(default_factory=list)
    current: List[float] = field(default_factory=list)

    @classmethod
    def from_record(cls, node_id: str, record: ParameterRecord) -> "ParameterVector":
        specs = record.specs()
        return cls(
            node_id=node_id,
            names=[s.name for s in specs],
            min_values=[float(s.min_value) for s in specs],
            max_values=[float(s.max_value) for s in specs],
            is_integer=[s.is_integer for s in specs],
            current=record.as_vector(),
        )

    def __len__(self) -> int:
        return len(self.names)

    def coerce(self, i: int, value: float) -> float:
        value = clamp(value, self.min_values[i], self.max_values[i])
        return float(round(value)) if self.is_integer[i] else value


Bound = Tuple[float, float, bool]


@dataclass
class ParameterSpace:
    """
    All tunable parameters of one tree, in a fixed flat order.

    The order is the arena's registration order, so a flat vector from
    here can be written back with ``ParameterArena.apply_flat``.
    """
    tree_id: str
    vectors: List[ParameterVector] = field(default_factory=list)

    @classmethod
    def from_arena(cls, arena: ParameterArena, tree_id: str) -> "ParameterSpace":
        handles = arena.handles(tree_id)
        if not handles:
            raise KeyError(f"No parameters registered for tree {tree_id!r}")
        return cls(tree_id, [ParameterVector.from_record(h.node_id, arena.record(h)) for h in handles])

    def add(self, vector: ParameterVector) -> None:
        self.vectors.append(vector)

    @property
    def total_count(self) -> int:
        return sum(len(v) for v in self.vectors)

    def bounds(self) -> List[Bound]:
        return [
            (v.min_values[i], v.max_values[i], v.is_integer[i])
            for v in self.vectors
            for i in range(len(v))
        ]

    def flat_names(self) -> List[str]:
        return [f"{v.node_id}.{name}" for v in self.vectors for name in v.names]

    def entries(self) -> List[Tuple[str, str]]:
        """(node id, parameter name) pairs in flat order."""
        return [(v.node_id, name) for v in self.vectors for name in v.names]

    def current_values(self) -> List[float]:
        return [x for v in self.vectors for x in v.current]

    def set_current(self, values: List[float]) -> None:
        offset = 0
        for v in self.vectors:
            v.current = list(values[offset:offset + len(v)])
            offset += len(v)

    def coerce(self, values: List[float]) -> List[float]:
        out: List[float] = []
        offset = 0
        for v in self.vectors:
            out.extend(v.coerce(i, values[offset + i]) for i in range(len(v)))
            offset += len(v)
        return out


@dataclass
class PerformanceMetric:
    """One sample of a tree's performance."""
    timestamp: float
    success_rate: float = 0.0
    execution_time: float = 0.0
    memory_usage: float = 0.0
    fps: float = 0.0
    efficiency: float = 0.0

    @classmethod
    def measure(
        cls,
        timestamp: float,
        success_rate: float,
        frame_time_ms: float,
        memory_mb: float = 0.0,
        fps: float = 0.0,
    ) -> "PerformanceMetric":
        """Build a metric; efficiency is success rate per millisecond of frame time."""
        return cls(
            timestamp=timestamp,
            success_rate=success_rate,
            execution_time=frame_time_ms,
            memory_usage=memory_mb,
            fps=fps,
            efficiency=success_rate / max(frame_time_ms, 0.001),
        )

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class DataPoint:
    parameters: List[float]
    metric: PerformanceMetric
    timestamp: float = field(default_factory=time.time)


class Dataset:
    """Bounded (parameters, metric) history of one tree."""

    def __init__(self, tree_id: str, max_points: int = 10000):
        self.tree_id = tree_id
        self._points: Deque[DataPoint] = deque(maxlen=max_points)

    def add(self, parameters: List[float], metric: PerformanceMetric, timestamp: Optional[float] = None) -> DataPoint:
        point = DataPoint(
            list(parameters),
            metric,
            timestamp if timestamp is not None else metric.timestamp,
        )
        self._points.append(point)
        return point

    @property
    def points(self) -> List[DataPoint]:
        return list(self._points)

    def __len__(self) -> int:
        return len(self._points)

    def best_by_efficiency(self, count: int) -> List[DataPoint]:
        """Top ``count`` points by efficiency, best first."""
        ranked = sorted(self._points, key=lambda p: p.metric.efficiency, reverse=True)
        return ranked[:count]

    def clear(self) -> None:
        self._points.clear()
