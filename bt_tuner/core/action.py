"""
Action capability.

An ``ActionNode`` gates an action on cooldown, range and HP, dispatches it
through the actuator and then tracks its execution in logical time. What
the action actually *is* comes from an injected ``ActionStrategy``.
"""
from __future__ import annotations

import logging
from typing import Dict, FrozenSet, List, Optional

from ..types import ActionResult, ActionType, AgentAction, Observation, Vec3
from .clock import LogicalClock
from .node import CachePolicy, Node, NodeState
from .parameters import ACTION_SCHEMA, ParameterRecord

logger = logging.getLogger(__name__)


# Which action types may follow a given one when chaining is allowed
CHAIN_RULES: Dict[ActionType, FrozenSet[ActionType]] = {
    ActionType.ATTACK: frozenset({ActionType.DODGE, ActionType.DEFEND}),
    ActionType.DEFEND: frozenset({ActionType.ATTACK, ActionType.DODGE}),
    ActionType.DODGE: frozenset({ActionType.ATTACK}),
}


def is_valid_chain(current: ActionType, following: ActionType) -> bool:
    allowed = CHAIN_RULES.get(current)
    return True if allowed is None else following in allowed


class ActionStrategy:
    """
    What an action node does.

    Subclasses set ``action_type`` and override ``create_action``; the two
    checks are optional.
    """

    action_type: ActionType = ActionType.IDLE

    def create_action(self, observation: Observation, params: ParameterRecord) -> AgentAction:
        return AgentAction(self.action_type, intensity=params["intensity"])

    def can_execute(self, observation: Observation, params: ParameterRecord) -> bool:
        return True

    def should_interrupt(self, observation: Observation, params: ParameterRecord) -> bool:
        return False


class AttackStrategy(ActionStrategy):
    """Melee attack; refuses point-blank range and dead targets."""

    action_type = ActionType.ATTACK
    MIN_DISTANCE = 0.5

    def __init__(self, damage_multiplier: float = 1.0):
        self.damage_multiplier = damage_multiplier

    def create_action(self, observation, params):
        direction = (observation.enemy_position - observation.self_position).flat().normalized()
        return AgentAction(
            ActionType.ATTACK,
            direction=direction,
            intensity=self.damage_multiplier * params["intensity"],
        )

    def can_execute(self, observation, params):
        return observation.distance_to_enemy >= self.MIN_DISTANCE and observation.enemy_hp > 0


class DefendStrategy(ActionStrategy):
    action_type = ActionType.DEFEND


class DodgeStrategy(ActionStrategy):
    """Sidestep perpendicular to the enemy."""

    action_type = ActionType.DODGE

    def __init__(self, to_right: bool = True):
        self.to_right = to_right

    def create_action(self, observation, params):
        toward = (observation.enemy_position - observation.self_position).flat().normalized()
        side = Vec3(toward.z, 0.0, -toward.x) if self.to_right else Vec3(-toward.z, 0.0, toward.x)
        return AgentAction(ActionType.DODGE, direction=side, intensity=params["intensity"])


class ActionNode(Node):
    """
    Leaf that performs a timed action.

    First evaluation that passes the gate dispatches the action and returns
    RUNNING. Following evaluations report RUNNING until ``execution_time``
    seconds of logical time have passed (SUCCESS) or the action is
    interrupted (FAILURE).
    """

    SCHEMA = ACTION_SCHEMA
    NODE_TYPE = "action"

    def __init__(
        self,
        name: str,
        strategy: ActionStrategy,
        params: Optional[Dict[str, float]] = None,
        cache: Optional[CachePolicy] = None,
        node_id: Optional[str] = None,
        allow_interruption: bool = True,
    ):
        super().__init__(name, params=params, cache=cache, node_id=node_id)
        self.strategy = strategy
        self.allow_interruption = allow_interruption

        self.is_executing = False
        self._start_tick = 0
        self.last_result: Optional[ActionResult] = None
        self.last_executed: ActionType = ActionType.IDLE

    @property
    def action_type(self) -> ActionType:
        return self.strategy.action_type

    def _evaluate(self, observation: Observation, clock: LogicalClock) -> NodeState:
        if self.is_executing:
            return self._check_progress(observation, clock)

        if not self.can_execute(observation):
            return NodeState.FAILURE

        result = self._dispatch(observation)
        self.last_result = result

        if not result.success:
            logger.debug(f"{self.node_id}: dispatch failed: {result.message}")
            return NodeState.FAILURE

        self.is_executing = True
        self._start_tick = clock.tick
        self.last_executed = self.action_type
        return NodeState.RUNNING

    def _cache_valid(self, observation, clock) -> bool:
        if self.is_executing:
            return False
        return super()._cache_valid(observation, clock)

    def can_execute(self, observation: Observation) -> bool:
        """Gate: active, cooldown ready, in range, enough HP, strategy check."""
        if not self.is_active:
            return False
        if not observation.cooldowns.is_ready(self.action_type):
            return False
        if observation.distance_to_enemy > self.params["range"]:
            return False
        if observation.self_hp < self.params["hp_threshold"]:
            return False
        return self.strategy.can_execute(observation, self.params)

    def blocking_conditions(self, observation: Observation) -> List[str]:
        """Human-readable reasons the gate is closed (empty when executable)."""
        reasons = []
        if not self.is_active:
            reasons.append("node inactive")
        if not observation.cooldowns.is_ready(self.action_type):
            reasons.append(f"{self.action_type.value} on cooldown")
        if observation.distance_to_enemy > self.params["range"]:
            reasons.append(
                f"out of range ({observation.distance_to_enemy:.1f} > {self.params['range']:.1f})"
            )
        if observation.self_hp < self.params["hp_threshold"]:
            reasons.append(
                f"hp too low ({observation.self_hp:.1f} < {self.params['hp_threshold']:.1f})"
            )
        return reasons

    def _dispatch(self, observation: Observation) -> ActionResult:
        if self.actuator is None:
            return ActionResult.failure(self.action_type, "no actuator attached")
        action = self.strategy.create_action(observation, self.params)
        return self.actuator.dispatch(action)

    def _check_progress(self, observation: Observation, clock: LogicalClock) -> NodeState:
        if clock.elapsed_since(self._start_tick) >= self.params["execution_time"]:
            self.is_executing = False
            return NodeState.SUCCESS

        if self._should_interrupt(observation):
            self.interrupt()
            self.is_executing = False
            return NodeState.FAILURE

        return NodeState.RUNNING

    def _should_interrupt(self, observation: Observation) -> bool:
        if observation.self_hp <= 0 or not self.is_active:
            return True
        return self.strategy.should_interrupt(observation, self.params)

    def can_interrupt(self) -> bool:
        return self.allow_interruption and self.params.flag("can_interrupt")

    def interrupt(self) -> bool:
        """Stop a running action. Returns True if one was interrupted."""
        if not self.is_executing or not self.can_interrupt():
            return False
        self.is_executing = False
        logger.debug(f"{self.node_id}: action interrupted")
        return True

    def can_chain_with(self, following: ActionType) -> bool:
        if not self.params.flag("allow_chaining"):
            return False
        return is_valid_chain(self.action_type, following)

    @property
    def duration(self) -> float:
        return self.params["execution_time"]

    @property
    def execution_cost(self) -> float:
        return self.params["execution_cost"]

    @property
    def expected_effect(self) -> float:
        return self.params["expected_effect"]

    def reset(self) -> None:
        super().reset()
        self.is_executing = False
        self._start_tick = 0
        self.last_result = None
