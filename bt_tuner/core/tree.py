"""
Behavior tree runner.

Owns a root node, registers every node's parameter record in a
``ParameterArena`` and reports each full evaluation to telemetry.
"""
from __future__ import annotations

import logging
import time
from typing import Dict, List, Optional

from ..metrics import get_metrics
from ..types import Actuator, Observation
from .clock import LogicalClock
from .composites import CompositeNode
from .node import Node, NodeState
from .parameters import NodeHandle, ParameterArena

logger = logging.getLogger(__name__)


class BehaviorTree:
    """
    A named tree of nodes wired into the parameter arena and telemetry.

    Node ids must be unique within a tree; they address the node's
    parameters (``NodeHandle(tree_id, node_id)``) and its statistics.

    Example:
        >>> tree = BehaviorTree("duelist", Selector("root", [attack, chase]), arena)
        >>> tree.initialize(actuator)
        >>> tree.tick(observation, clock)
    """

    def __init__(
        self,
        tree_id: str,
        root: Node,
        arena: Optional[ParameterArena] = None,
        telemetry=None,
    ):
        self.tree_id = tree_id
        self.root = root
        self.arena = arena if arena is not None else ParameterArena()
        self.telemetry = telemetry
        self.last_result: Optional[NodeState] = None
        self.tick_count = 0

        self._nodes: Dict[str, Node] = {}
        self._depths: Dict[str, int] = {}
        self._executed = 0
        self._max_depth = 0

        self._register(root, 1)
        self.depth = max(self._depths.values())
        self.arena.add_listener(self._on_parameter_changed)

        if telemetry is not None:
            self.tree_telemetry = telemetry.register(tree_id, len(self._nodes), self.depth)
        else:
            self.tree_telemetry = None

        logger.info(f"Behavior tree {tree_id} built: {len(self._nodes)} nodes, depth {self.depth}")

    def _register(self, node: Node, depth: int) -> None:
        if node.node_id in self._nodes:
            raise ValueError(f"Duplicate node id {node.node_id!r} in tree {self.tree_id}")

        node.tree_id = self.tree_id
        self._nodes[node.node_id] = node
        self._depths[node.node_id] = depth
        self.arena.register(NodeHandle(self.tree_id, node.node_id), node.params)
        node.add_listener(self._on_node_evaluated)
        if isinstance(node, CompositeNode):
            node.add_branch_listener(self._on_branch)

        for child in node.children():
            self._register(child, depth + 1)

    # -- listeners -------------------------------------------------------

    def _on_node_evaluated(self, node: Node, state: NodeState, elapsed_ms: float) -> None:
        self._executed += 1
        self._max_depth = max(self._max_depth, self._depths.get(node.node_id, 0))
        if self.tree_telemetry is not None:
            self.tree_telemetry.record_node(node.node_id, node.NODE_TYPE, state, elapsed_ms)

    def _on_branch(self, composite: Node, child: Node) -> None:
        if self.tree_telemetry is None:
            return
        children = composite.children()
        index = next((i for i, c in enumerate(children) if c is child), -1)
        self.tree_telemetry.record_branch(composite.node_id, index, len(children))

    def _on_parameter_changed(self, handle: NodeHandle, name: str, old: float, new: float) -> None:
        if handle.tree_id != self.tree_id:
            return
        node = self._nodes.get(handle.node_id)
        if node is not None:
            node.on_parameters_changed()

    # -- lifecycle -------------------------------------------------------

    def initialize(self, actuator: Optional[Actuator]) -> None:
        self.root.initialize(actuator)

    def tick(self, observation: Observation, clock: LogicalClock) -> NodeState:
        """Evaluate the root once and report the execution to telemetry."""
        self._executed = 0
        self._max_depth = 0

        start = time.perf_counter()
        with get_metrics().time_operation("tree_tick"):
            state = self.root.evaluate(observation, clock)
        elapsed_ms = (time.perf_counter() - start) * 1000

        self.tick_count += 1
        self.last_result = state
        if self.tree_telemetry is not None:
            self.tree_telemetry.record_execution(
                state, elapsed_ms, self._executed, self._max_depth, timestamp=clock.time
            )
        return state

    def reset(self, reset_statistics: bool = False) -> None:
        """
        Reset every node (episode boundary).

        With ``reset_statistics`` the per-node metadata starts over too;
        aggregated telemetry is kept.
        """
        self.root.reset()
        self.last_result = None
        if reset_statistics:
            for node in self._nodes.values():
                node.metadata.reset()
            logger.debug(f"Tree {self.tree_id}: node statistics reset")

    # -- queries ---------------------------------------------------------

    def nodes(self) -> List[Node]:
        return list(self._nodes.values())

    def find(self, node_id: str) -> Optional[Node]:
        return self._nodes.get(node_id)

    def handle(self, node_id: str) -> NodeHandle:
        if node_id not in self._nodes:
            raise KeyError(f"Unknown node {node_id!r} in tree {self.tree_id}")
        return NodeHandle(self.tree_id, node_id)

    def node_depth(self, node_id: str) -> int:
        return self._depths[node_id]

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    def to_dict(self) -> Dict:
        return {
            "tree_id": self.tree_id,
            "node_count": self.node_count,
            "depth": self.depth,
            "tick_count": self.tick_count,
            "last_result": self.last_result.value if self.last_result else None,
            "nodes": [n.to_dict() for n in self._nodes.values()],
        }
