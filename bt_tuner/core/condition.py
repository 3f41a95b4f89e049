"""
Condition capability.

A ``ConditionNode`` reads one value from the observation through its
``ConditionStrategy`` and compares it against a tunable threshold.
Supports quick-check prefiltering, a coarse observation-hash cache and an
adaptive threshold that drifts toward observed values.
"""
from __future__ import annotations

import logging
from enum import IntEnum
from typing import Dict, List, Optional

from ..types import ActionType, Observation
from ..util import lerp
from .clock import LogicalClock
from .node import CachePolicy, Node, NodeState
from .parameters import CONDITION_SCHEMA, ParameterRecord

logger = logging.getLogger(__name__)

MAX_CONSECUTIVE_FAILURES = 5
ADAPTATION_SAMPLES = 10


class Comparison(IntEnum):
    """Values of the ``comparison_type`` parameter."""
    LESS = 0
    LESS_EQUAL = 1
    EQUAL = 2
    GREATER_EQUAL = 3
    GREATER = 4

    @property
    def symbol(self) -> str:
        return ("<", "<=", "==", ">=", ">")[self.value]


def compare(value: float, threshold: float, comparison: Comparison, tolerance: float = 0.0) -> bool:
    """Threshold comparison with a tolerance band."""
    if comparison == Comparison.LESS:
        return value < threshold - tolerance
    if comparison == Comparison.LESS_EQUAL:
        return value <= threshold + tolerance
    if comparison == Comparison.EQUAL:
        return abs(value - threshold) <= tolerance
    if comparison == Comparison.GREATER_EQUAL:
        return value >= threshold - tolerance
    if comparison == Comparison.GREATER:
        return value > threshold + tolerance
    return False


class ConditionStrategy:
    """Which value a condition node measures."""

    description = "value"

    def value(self, observation: Observation) -> float:
        raise NotImplementedError

    def quick_check(self, observation: Observation, params: ParameterRecord) -> bool:
        return True


class SelfHealthStrategy(ConditionStrategy):
    description = "self hp"

    def value(self, observation):
        return observation.self_hp


class EnemyHealthStrategy(ConditionStrategy):
    description = "enemy hp"

    def value(self, observation):
        return observation.enemy_hp

    def quick_check(self, observation, params):
        return observation.enemy_hp > 0


class EnemyDistanceStrategy(ConditionStrategy):
    description = "distance to enemy"

    def value(self, observation):
        return observation.distance_to_enemy


class CooldownRemainingStrategy(ConditionStrategy):
    """Remaining cooldown of one action, in seconds."""

    def __init__(self, action_type: ActionType):
        self.action_type = action_type
        self.description = f"{action_type.value} cooldown"

    def value(self, observation):
        cooldowns = observation.cooldowns
        if self.action_type == ActionType.ATTACK:
            return cooldowns.attack_cooldown
        if self.action_type == ActionType.DEFEND:
            return cooldowns.defend_cooldown
        if self.action_type == ActionType.DODGE:
            return cooldowns.dodge_cooldown
        return 0.0


def observation_hash(observation: Observation) -> str:
    """Coarse key of the values conditions usually depend on."""
    return (
        f"{observation.self_hp:.1f}_{observation.enemy_hp:.1f}_"
        f"{observation.distance_to_enemy:.1f}_{observation.current_state.value}"
    )


class ConditionNode(Node):
    """Leaf that returns SUCCESS when its condition holds, FAILURE otherwise."""

    SCHEMA = CONDITION_SCHEMA
    NODE_TYPE = "condition"

    def __init__(
        self,
        name: str,
        strategy: ConditionStrategy,
        params: Optional[Dict[str, float]] = None,
        cache: Optional[CachePolicy] = None,
        node_id: Optional[str] = None,
    ):
        super().__init__(name, params=params, cache=cache, node_id=node_id)
        self.strategy = strategy
        self.consecutive_failures = 0
        self.adaptive_threshold = self.params["primary_threshold"]
        self._adaptation_sum = 0.0
        self._adaptation_samples = 0
        self.last_value: Optional[float] = None

    def _evaluate(self, observation: Observation, clock: LogicalClock) -> NodeState:
        if self.params.flag("enable_quick_check") and not self.quick_check(observation):
            self.consecutive_failures += 1
            return NodeState.FAILURE

        met = self.check(observation)

        if self.params.flag("adaptive_threshold"):
            self._adapt(self.last_value)

        if met:
            self.consecutive_failures = 0
            return NodeState.SUCCESS

        self.consecutive_failures += 1
        return NodeState.FAILURE

    def quick_check(self, observation: Observation) -> bool:
        if not self.is_active:
            return False
        if self.consecutive_failures > MAX_CONSECUTIVE_FAILURES:
            return False
        return self.strategy.quick_check(observation, self.params)

    def check(self, observation: Observation) -> bool:
        """Full condition check (no quick check, no cache)."""
        value = self.strategy.value(observation)
        if self.params.flag("use_absolute_value"):
            value = abs(value)
        self.last_value = value

        result = compare(
            value,
            self.effective_threshold,
            Comparison(int(self.params["comparison_type"])),
            self.params["tolerance_range"],
        )
        if self.params.flag("invert_result"):
            result = not result
        return result

    @property
    def effective_threshold(self) -> float:
        if self.params.flag("adaptive_threshold"):
            return self.adaptive_threshold
        return self.params["primary_threshold"]

    def _adapt(self, value: Optional[float]) -> None:
        if value is None:
            return
        self._adaptation_sum += value
        self._adaptation_samples += 1

        if self._adaptation_samples >= ADAPTATION_SAMPLES:
            mean = self._adaptation_sum / self._adaptation_samples
            self.adaptive_threshold = lerp(self.adaptive_threshold, mean, self.params["learning_rate"])
            self._adaptation_sum = 0.0
            self._adaptation_samples = 0
            logger.debug(f"{self.node_id}: adaptive threshold -> {self.adaptive_threshold:.2f}")

    def reset_adaptive_threshold(self) -> None:
        self.adaptive_threshold = self.params["primary_threshold"]
        self._adaptation_sum = 0.0
        self._adaptation_samples = 0

    def on_parameters_changed(self) -> None:
        super().on_parameters_changed()
        self.reset_adaptive_threshold()

    def caching_enabled(self) -> bool:
        return self.cache.enabled and self.params.flag("enable_caching")

    def _observation_similar(self, current, cached) -> bool:
        if cached is None:
            return False
        return observation_hash(current) == observation_hash(cached)

    def describe(self) -> str:
        comparison = Comparison(int(self.params["comparison_type"]))
        text = f"{self.strategy.description} {comparison.symbol} {self.effective_threshold:.1f}"
        if self.params.flag("invert_result"):
            text = f"NOT ({text})"
        return text

    @property
    def priority(self) -> int:
        return int(self.params["priority"])

    @property
    def check_cost(self) -> float:
        return self.params["check_cost"]

    def thresholds(self) -> List[float]:
        return self.params.as_vector()

    def reset(self) -> None:
        super().reset()
        self.consecutive_failures = 0
        self.last_value = None
        self.reset_adaptive_threshold()
