"""
Parameter arena for tunable node parameters.

Every node owns one ``ParameterRecord`` of bounded numeric values. Once a
tree is registered, its records live in a shared ``ParameterArena`` under a
``NodeHandle(tree_id, node_id)``. The arena's ``set`` is the only mutator:
values are clamped to their declared range and integer parameters are
rounded, so optimizer proposals can never leave the declared bounds.

Boolean flags are integer parameters in [0, 1].
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ..util import clamp, is_finite

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NodeHandle:
    """Address of a node's parameter record."""
    tree_id: str
    node_id: str

    def __str__(self) -> str:
        return f"{self.tree_id}/{self.node_id}"


@dataclass(frozen=True)
class ParameterSpec:
    """
    Declared constraint for one parameter.

    Attributes:
        name: Parameter name
        min_value: Lower bound (inclusive)
        max_value: Upper bound (inclusive)
        default: Initial value
        is_integer: Whole-number parameter (flags, enums, priorities)
    """
    name: str
    min_value: float
    max_value: float
    default: float
    is_integer: bool = False

    def __post_init__(self):
        if self.min_value > self.max_value:
            raise ValueError(f"{self.name}: min {self.min_value} > max {self.max_value}")

    def coerce(self, value: float) -> float:
        """Clamp to [min, max], then round if integer-constrained."""
        value = float(value)
        if not is_finite(value):
            logger.warning(f"Non-finite value for {self.name}, using default {self.default}")
            value = self.default
        value = clamp(value, self.min_value, self.max_value)
        if self.is_integer:
            value = float(round(value))
        return value


def flag(name: str, default: bool) -> ParameterSpec:
    """Boolean flag as an integer parameter in [0, 1]."""
    return ParameterSpec(name, 0, 1, 1 if default else 0, is_integer=True)


ACTION_SCHEMA: Tuple[ParameterSpec, ...] = (
    ParameterSpec("range", 0.5, 10.0, 2.0),
    ParameterSpec("optimal_range", 0.0, 5.0, 1.5),
    ParameterSpec("cooldown_threshold", 0.0, 1.0, 0.1),
    ParameterSpec("hp_threshold", 0.0, 100.0, 0.0),
    ParameterSpec("execution_time", 0.1, 5.0, 1.0),
    ParameterSpec("interrupt_chance", 0.0, 1.0, 0.2),
    ParameterSpec("intensity", 0.0, 2.0, 1.0),
    ParameterSpec("execution_cost", 0.0, 1.0, 0.3),
    ParameterSpec("expected_effect", 0.0, 2.0, 1.0),
    ParameterSpec("priority", 1, 10, 5, is_integer=True),
    flag("allow_chaining", True),
    flag("can_interrupt", True),
    flag("adaptive_range", False),
    flag("adaptive_intensity", False),
)

CONDITION_SCHEMA: Tuple[ParameterSpec, ...] = (
    ParameterSpec("primary_threshold", 0.0, 100.0, 30.0),
    ParameterSpec("secondary_threshold", 0.0, 100.0, 0.0),
    ParameterSpec("tolerance_range", 0.0, 10.0, 0.0),
    # 0 Less, 1 LessEqual, 2 Equal, 3 GreaterEqual, 4 Greater
    ParameterSpec("comparison_type", 0, 4, 1, is_integer=True),
    ParameterSpec("priority", 1, 10, 5, is_integer=True),
    ParameterSpec("check_cost", 0.0, 1.0, 0.1),
    ParameterSpec("learning_rate", 0.0, 1.0, 0.1),
    ParameterSpec("confidence", 0.0, 1.0, 0.8),
    flag("use_absolute_value", False),
    flag("invert_result", False),
    flag("enable_caching", True),
    flag("enable_quick_check", True),
    flag("adaptive_threshold", False),
)

MOVEMENT_SCHEMA: Tuple[ParameterSpec, ...] = (
    ParameterSpec("stopping_distance", 0.1, 10.0, 2.0),
    ParameterSpec("max_range", 1.0, 20.0, 8.0),
    ParameterSpec("safe_distance", 0.1, 5.0, 3.0),
    ParameterSpec("move_speed", 0.1, 2.0, 1.0),
    # 0 Direct, 1 Smooth, 2 Tactical
    ParameterSpec("pathfinding_type", 0, 2, 0, is_integer=True),
    ParameterSpec("path_update_interval", 0.05, 2.0, 0.2),
    ParameterSpec("evasion_distance", 0.5, 5.0, 2.0),
    ParameterSpec("boundary_padding", 0.0, 5.0, 1.0),
    ParameterSpec("priority", 1, 10, 5, is_integer=True),
    ParameterSpec("prediction_time", 0.0, 2.0, 0.5),
    ParameterSpec("adaptation_rate", 0.0, 1.0, 0.1),
    flag("respect_arena_bounds", True),
    flag("enable_prediction", False),
    flag("adaptive_speed", False),
)


class ParameterRecord:
    """
    Current values of one node's parameters.

    Reading is free; writing goes through ``ParameterArena.set`` (or the
    validated overrides given at construction).
    """

    def __init__(
        self,
        specs: Iterable[ParameterSpec],
        overrides: Optional[Dict[str, float]] = None,
    ):
        self._specs: Dict[str, ParameterSpec] = {s.name: s for s in specs}
        self._values: Dict[str, float] = {
            name: spec.coerce(spec.default) for name, spec in self._specs.items()
        }
        for name, value in (overrides or {}).items():
            self._write(name, value)

    def __getitem__(self, name: str) -> float:
        return self._values[name]

    def __contains__(self, name: str) -> bool:
        return name in self._specs

    def __len__(self) -> int:
        return len(self._specs)

    def get(self, name: str) -> float:
        return self._values[name]

    def flag(self, name: str) -> bool:
        """Read an integer [0, 1] parameter as a boolean."""
        return self._values[name] >= 0.5

    def spec(self, name: str) -> ParameterSpec:
        return self._specs[name]

    def names(self) -> List[str]:
        return list(self._specs.keys())

    def specs(self) -> List[ParameterSpec]:
        return list(self._specs.values())

    def as_vector(self) -> List[float]:
        return [self._values[n] for n in self._specs]

    def to_dict(self) -> Dict[str, float]:
        return dict(self._values)

    def reset_defaults(self) -> None:
        for name, spec in self._specs.items():
            self._values[name] = spec.coerce(spec.default)

    def _write(self, name: str, value: float) -> float:
        if name not in self._specs:
            raise KeyError(f"Unknown parameter: {name}")
        stored = self._specs[name].coerce(value)
        self._values[name] = stored
        return stored


ChangeListener = Callable[[NodeHandle, str, float, float], None]


class ParameterArena:
    """
    Registry of parameter records addressed by ``NodeHandle``.

    Example:
        >>> arena = ParameterArena()
        >>> handle = NodeHandle("duelist", "attack")
        >>> arena.register(handle, ParameterRecord(ACTION_SCHEMA))
        >>> arena.set(handle, "range", 42.0)
        10.0
    """

    def __init__(self):
        self._records: Dict[NodeHandle, ParameterRecord] = {}
        self._listeners: List[ChangeListener] = []

    def register(self, handle: NodeHandle, record: ParameterRecord) -> ParameterRecord:
        """Adopt a record under ``handle``; re-registering replaces the old record."""
        if handle in self._records and self._records[handle] is not record:
            logger.debug(f"Replacing parameter record for {handle}")
        self._records[handle] = record
        return record

    def unregister_tree(self, tree_id: str) -> int:
        """Drop all records of a tree. Returns how many were removed."""
        handles = self.handles(tree_id)
        for handle in handles:
            del self._records[handle]
        return len(handles)

    def record(self, handle: NodeHandle) -> ParameterRecord:
        return self._records[handle]

    def __contains__(self, handle: NodeHandle) -> bool:
        return handle in self._records

    def handles(self, tree_id: Optional[str] = None) -> List[NodeHandle]:
        """Handles in registration order, optionally filtered by tree."""
        return [h for h in self._records if tree_id is None or h.tree_id == tree_id]

    def tree_ids(self) -> List[str]:
        seen: Dict[str, None] = {}
        for h in self._records:
            seen.setdefault(h.tree_id, None)
        return list(seen)

    def get(self, handle: NodeHandle, name: str) -> float:
        return self._records[handle][name]

    def set(self, handle: NodeHandle, name: str, value: float) -> float:
        """
        Write one parameter.

        The value is clamped to the declared range and rounded if the
        parameter is integer-constrained.

        Returns:
            The value actually stored

        Raises:
            KeyError: Unknown handle or parameter name
        """
        record = self._records[handle]
        old = record[name] if name in record else None
        stored = record._write(name, value)

        if old is not None and old != stored:
            for listener in list(self._listeners):
                listener(handle, name, old, stored)

        return stored

    def set_vector(self, handle: NodeHandle, values: Sequence[float]) -> List[float]:
        """Write a record's parameters in declaration order."""
        record = self._records[handle]
        names = record.names()
        if len(values) != len(names):
            raise ValueError(
                f"{handle}: expected {len(names)} values, got {len(values)}"
            )
        return [self.set(handle, name, v) for name, v in zip(names, values)]

    def vector(self, tree_id: str) -> List[float]:
        """Flat parameter vector of a tree, in registration order."""
        out: List[float] = []
        for handle in self.handles(tree_id):
            out.extend(self._records[handle].as_vector())
        return out

    def apply_flat(self, tree_id: str, vector: Sequence[float]) -> List[float]:
        """Write a flat vector across all of a tree's records."""
        handles = self.handles(tree_id)
        total = sum(len(self._records[h]) for h in handles)
        if len(vector) != total:
            raise ValueError(f"{tree_id}: expected {total} values, got {len(vector)}")

        stored: List[float] = []
        offset = 0
        for handle in handles:
            n = len(self._records[handle])
            stored.extend(self.set_vector(handle, vector[offset:offset + n]))
            offset += n
        return stored

    def add_listener(self, listener: ChangeListener) -> None:
        """Called as ``listener(handle, name, old, new)`` for every changed value."""
        self._listeners.append(listener)

    def to_dict(self, tree_id: Optional[str] = None) -> Dict[str, Dict[str, float]]:
        return {str(h): self._records[h].to_dict() for h in self.handles(tree_id)}
