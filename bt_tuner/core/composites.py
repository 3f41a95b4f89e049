"""
Composite and decorator nodes.

Composites are ordinary nodes, so they get failure isolation, metadata
and (opt-in) caching like any leaf. Caching is off by default here since a
composite's result depends on its children's internal state.
"""
from __future__ import annotations

import logging
import random
from typing import Callable, Dict, Iterable, List, Optional

from ..types import Observation
from .clock import LogicalClock
from .node import CachePolicy, Node, NodeState
from .parameters import ParameterSpec

logger = logging.getLogger(__name__)

# listener(composite, chosen_child)
BranchListener = Callable[[Node, Node], None]


class CompositeNode(Node):
    """Node with an ordered list of children."""

    NODE_TYPE = "composite"

    def __init__(
        self,
        name: str,
        children: Optional[Iterable[Node]] = None,
        cache: Optional[CachePolicy] = None,
        node_id: Optional[str] = None,
        params: Optional[Dict[str, float]] = None,
    ):
        super().__init__(
            name,
            params=params,
            cache=cache if cache is not None else CachePolicy.disabled(),
            node_id=node_id,
        )
        self._children: List[Node] = list(children or [])
        self._branch_listeners: List[BranchListener] = []

    def children(self) -> List[Node]:
        return list(self._children)

    def add_child(self, child: Node) -> "CompositeNode":
        self._children.append(child)
        return self

    def add_branch_listener(self, listener: BranchListener) -> None:
        self._branch_listeners.append(listener)

    def _report_branch(self, child: Node) -> None:
        for listener in self._branch_listeners:
            try:
                listener(self, child)
            except Exception as e:
                logger.warning(f"Branch listener failed for {self.node_id}: {e}")


class Selector(CompositeNode):
    """First child that succeeds or is running wins; FAILURE if none (or no children)."""

    NODE_TYPE = "selector"

    def _evaluate(self, observation: Observation, clock: LogicalClock) -> NodeState:
        return self._select(self._children, observation, clock)

    def _select(self, order: Iterable[Node], observation: Observation, clock: LogicalClock) -> NodeState:
        for child in order:
            state = child.evaluate(observation, clock)
            if state in (NodeState.SUCCESS, NodeState.RUNNING):
                self._report_branch(child)
                return state
        return NodeState.FAILURE


class RandomSelector(Selector):
    """Selector over a freshly shuffled child order each evaluation."""

    NODE_TYPE = "random_selector"

    def __init__(
        self,
        name: str,
        children: Optional[Iterable[Node]] = None,
        seed: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(name, children, **kwargs)
        self.rng = random.Random(seed)

    def _evaluate(self, observation: Observation, clock: LogicalClock) -> NodeState:
        order = list(self._children)
        self.rng.shuffle(order)
        return self._select(order, observation, clock)


class Sequence(CompositeNode):
    """
    Children in order; FAILURE stops immediately.

    A RUNNING child does not stop the sequence: it is remembered and the
    remaining children are still evaluated. Result is RUNNING if any child
    ran, else SUCCESS (also for an empty sequence).
    """

    NODE_TYPE = "sequence"

    def _evaluate(self, observation: Observation, clock: LogicalClock) -> NodeState:
        any_running = False
        for child in self._children:
            state = child.evaluate(observation, clock)
            if state == NodeState.FAILURE:
                return NodeState.FAILURE
            if state == NodeState.RUNNING:
                any_running = True
        return NodeState.RUNNING if any_running else NodeState.SUCCESS


class Parallel(CompositeNode):
    """
    Evaluates every child each tick.

    SUCCESS once ``success_threshold`` children succeed; FAILURE once so
    many failed that the threshold can no longer be met; RUNNING otherwise.
    """

    NODE_TYPE = "parallel"

    def __init__(
        self,
        name: str,
        children: Optional[Iterable[Node]] = None,
        success_threshold: int = 1,
        **kwargs,
    ):
        super().__init__(name, children, **kwargs)
        self.success_threshold = max(1, success_threshold)

    def _evaluate(self, observation: Observation, clock: LogicalClock) -> NodeState:
        successes = 0
        failures = 0
        for child in self._children:
            state = child.evaluate(observation, clock)
            if state == NodeState.SUCCESS:
                successes += 1
            elif state == NodeState.FAILURE:
                failures += 1

        if successes >= self.success_threshold:
            return NodeState.SUCCESS
        if failures > len(self._children) - self.success_threshold:
            return NodeState.FAILURE
        return NodeState.RUNNING


class Decorator(CompositeNode):
    """Composite with exactly one child."""

    def __init__(self, name: str, child: Node, **kwargs):
        super().__init__(name, [child], **kwargs)

    @property
    def child(self) -> Node:
        return self._children[0]


class Inverter(Decorator):
    NODE_TYPE = "inverter"

    def _evaluate(self, observation: Observation, clock: LogicalClock) -> NodeState:
        state = self.child.evaluate(observation, clock)
        if state == NodeState.SUCCESS:
            return NodeState.FAILURE
        if state == NodeState.FAILURE:
            return NodeState.SUCCESS
        return NodeState.RUNNING


class Repeater(Decorator):
    """
    Re-runs its child until it has succeeded ``count`` times.

    ``count < 0`` repeats forever. A child failure ends the repetition with
    FAILURE.
    """

    NODE_TYPE = "repeater"

    def __init__(self, name: str, child: Node, count: int = -1, **kwargs):
        super().__init__(name, child, **kwargs)
        self.count = count
        self.completed = 0

    @property
    def forever(self) -> bool:
        return self.count < 0

    def _evaluate(self, observation: Observation, clock: LogicalClock) -> NodeState:
        if not self.forever and self.completed >= self.count:
            return NodeState.SUCCESS

        state = self.child.evaluate(observation, clock)
        if state == NodeState.FAILURE:
            return NodeState.FAILURE
        if state == NodeState.SUCCESS:
            self.completed += 1
            if self.forever or self.completed < self.count:
                return NodeState.RUNNING
            return NodeState.SUCCESS
        return NodeState.RUNNING

    def reset(self) -> None:
        super().reset()
        self.completed = 0


class Cooldown(Decorator):
    """Fails without evaluating the child until ``cooldown`` seconds after its last success."""

    NODE_TYPE = "cooldown"
    SCHEMA = (ParameterSpec("cooldown", 0.0, 60.0, 1.0),)

    def __init__(self, name: str, child: Node, cooldown: float = 1.0, **kwargs):
        params = dict(kwargs.pop("params", None) or {})
        params.setdefault("cooldown", cooldown)
        super().__init__(name, child, params=params, **kwargs)
        self._last_success_tick: Optional[int] = None

    def remaining(self, clock: LogicalClock) -> float:
        if self._last_success_tick is None:
            return 0.0
        return max(0.0, self.params["cooldown"] - clock.elapsed_since(self._last_success_tick))

    def _evaluate(self, observation: Observation, clock: LogicalClock) -> NodeState:
        if self.remaining(clock) > 0:
            return NodeState.FAILURE

        state = self.child.evaluate(observation, clock)
        if state == NodeState.SUCCESS:
            self._last_success_tick = clock.tick
        return state

    def reset(self) -> None:
        super().reset()
        self._last_success_tick = None
