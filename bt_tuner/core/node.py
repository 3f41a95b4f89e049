"""
Base behavior node.

A node evaluates an ``Observation`` against a ``LogicalClock`` and returns
SUCCESS, FAILURE or RUNNING. The base class owns everything that is the
same for every node:

- result caching (tick window + observation similarity)
- failure isolation (any exception becomes FAILURE)
- execution metadata (counts, timings, success rate)
- parameter record
- listeners for telemetry

Concrete capabilities implement ``_evaluate`` only.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from ..config import CacheConfig
from ..metrics import record_error
from ..types import Actuator, Observation
from .clock import LogicalClock
from .parameters import ParameterRecord, ParameterSpec

logger = logging.getLogger(__name__)


class NodeState(str, Enum):
    """Result of a node evaluation."""
    SUCCESS = "success"
    FAILURE = "failure"
    RUNNING = "running"


@dataclass
class NodeMetadata:
    """
    Execution statistics of one node.

    Invariant: success_count + failure_count + running_count == execution_count.
    """
    execution_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    running_count: int = 0
    last_execution_time_ms: float = 0.0
    total_execution_time_ms: float = 0.0
    cache_hits: int = 0

    def record(self, state: NodeState, elapsed_ms: float, cache_hit: bool = False) -> None:
        self.execution_count += 1
        if state == NodeState.SUCCESS:
            self.success_count += 1
        elif state == NodeState.FAILURE:
            self.failure_count += 1
        else:
            self.running_count += 1

        if cache_hit:
            self.cache_hits += 1

        self.last_execution_time_ms = elapsed_ms
        self.total_execution_time_ms += elapsed_ms

    @property
    def average_execution_time_ms(self) -> float:
        if self.execution_count == 0:
            return 0.0
        return self.total_execution_time_ms / self.execution_count

    @property
    def success_rate(self) -> float:
        """Success over completed evaluations (RUNNING excluded)."""
        completed = self.success_count + self.failure_count
        if completed == 0:
            return 0.0
        return self.success_count / completed

    def reset(self) -> None:
        self.execution_count = 0
        self.success_count = 0
        self.failure_count = 0
        self.running_count = 0
        self.last_execution_time_ms = 0.0
        self.total_execution_time_ms = 0.0
        self.cache_hits = 0

    def to_dict(self) -> Dict:
        return {
            "execution_count": self.execution_count,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "running_count": self.running_count,
            "success_rate": round(self.success_rate, 4),
            "last_execution_time_ms": round(self.last_execution_time_ms, 4),
            "average_execution_time_ms": round(self.average_execution_time_ms, 4),
            "cache_hits": self.cache_hits,
        }


@dataclass
class CachePolicy:
    """
    Result cache settings of a node.

    A cached result is valid when fewer than ``window_ticks`` ticks have
    passed and the observation is similar to the cached one.
    """
    enabled: bool = True
    window_ticks: int = 6
    position_tolerance: float = 0.1
    hp_tolerance: float = 1.0

    @classmethod
    def from_config(cls, config: CacheConfig) -> "CachePolicy":
        return cls(
            enabled=config.enabled,
            window_ticks=config.window_ticks,
            position_tolerance=config.position_tolerance,
            hp_tolerance=config.hp_tolerance,
        )

    @classmethod
    def disabled(cls) -> "CachePolicy":
        return cls(enabled=False)


# listener(node, state, elapsed_ms)
NodeListener = Callable[["Node", NodeState, float], None]


class Node:
    """
    Base class for all behavior nodes.

    Subclasses declare ``SCHEMA`` (their tunable parameters) and implement
    ``_evaluate``. Everything else is handled here.
    """

    SCHEMA: Tuple[ParameterSpec, ...] = ()
    NODE_TYPE = "node"

    def __init__(
        self,
        name: str,
        params: Optional[Dict[str, float]] = None,
        cache: Optional[CachePolicy] = None,
        node_id: Optional[str] = None,
    ):
        self.name = name
        self.node_id = node_id or name
        self.tree_id: Optional[str] = None
        self.params = ParameterRecord(self.SCHEMA, params)
        self.cache = cache if cache is not None else CachePolicy()
        self.metadata = NodeMetadata()
        self.state = NodeState.RUNNING
        self.is_active = True
        self.actuator: Optional[Actuator] = None

        self._cached_state: Optional[NodeState] = None
        self._cached_tick = -1
        self._cached_observation: Optional[Observation] = None
        self._listeners: List[NodeListener] = []

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.node_id!r})"

    # -- structure -------------------------------------------------------

    def children(self) -> List["Node"]:
        return []

    def walk(self) -> Iterator["Node"]:
        """This node and all descendants, depth first."""
        yield self
        for child in self.children():
            yield from child.walk()

    def initialize(self, actuator: Optional[Actuator]) -> None:
        """Attach the actuator to this node and its children."""
        self.actuator = actuator
        for child in self.children():
            child.initialize(actuator)

    def add_listener(self, listener: NodeListener) -> None:
        self._listeners.append(listener)

    # -- evaluation ------------------------------------------------------

    def evaluate(self, observation: Observation, clock: LogicalClock) -> NodeState:
        """
        Evaluate the node for this tick.

        Never raises: faults in the node logic are logged, counted and
        reported as FAILURE.
        """
        start = time.perf_counter()
        cache_hit = False

        try:
            if self._cache_valid(observation, clock):
                state = self._cached_state
                cache_hit = True
            else:
                state = self._evaluate(observation, clock)
                if not isinstance(state, NodeState):
                    raise TypeError(f"{self.node_id} returned {state!r}, expected NodeState")
                self._store_cache(observation, clock, state)
        except Exception as e:
            logger.exception(
                f"Node fault in tree={self.tree_id} node={self.node_id}: {type(e).__name__}: {e}"
            )
            record_error("node", type(e).__name__)
            self.invalidate_cache()
            state = NodeState.FAILURE

        elapsed_ms = (time.perf_counter() - start) * 1000
        self.state = state
        self.metadata.record(state, elapsed_ms, cache_hit=cache_hit)

        for listener in self._listeners:
            try:
                listener(self, state, elapsed_ms)
            except Exception as e:
                logger.warning(f"Node listener failed for {self.node_id}: {e}")
                record_error("telemetry", type(e).__name__)

        return state

    def _evaluate(self, observation: Observation, clock: LogicalClock) -> NodeState:
        raise NotImplementedError

    def on_parameters_changed(self) -> None:
        """Called after the arena wrote one of this node's parameters."""
        self.invalidate_cache()

    def reset(self) -> None:
        """Return to RUNNING and drop cached results; metadata is kept."""
        self.state = NodeState.RUNNING
        self.invalidate_cache()
        for child in self.children():
            child.reset()

    # -- caching ---------------------------------------------------------

    def caching_enabled(self) -> bool:
        return self.cache.enabled

    def _cache_valid(self, observation: Observation, clock: LogicalClock) -> bool:
        if not self.caching_enabled() or self._cached_state is None:
            return False
        if clock.tick - self._cached_tick >= self.cache.window_ticks:
            return False
        if clock.tick < self._cached_tick:
            return False
        return self._observation_similar(observation, self._cached_observation)

    def _observation_similar(self, current: Observation, cached: Optional[Observation]) -> bool:
        if cached is None:
            return False
        position_delta = current.self_position.distance(cached.self_position)
        hp_delta = abs(current.self_hp - cached.self_hp)
        return position_delta < self.cache.position_tolerance and hp_delta < self.cache.hp_tolerance

    def _store_cache(self, observation: Observation, clock: LogicalClock, state: NodeState) -> None:
        # RUNNING is never cached: a replayed RUNNING would stall progress
        if not self.caching_enabled() or state == NodeState.RUNNING:
            self.invalidate_cache()
            return
        self._cached_state = state
        self._cached_tick = clock.tick
        self._cached_observation = observation

    def invalidate_cache(self) -> None:
        self._cached_state = None
        self._cached_tick = -1
        self._cached_observation = None

    @property
    def has_cached_result(self) -> bool:
        return self._cached_state is not None

    def to_dict(self) -> Dict:
        return {
            "node_id": self.node_id,
            "name": self.name,
            "type": self.NODE_TYPE,
            "state": self.state.value,
            "active": self.is_active,
            "metadata": self.metadata.to_dict(),
            "parameters": self.params.to_dict(),
        }
