"""
Movement capability.

A ``MovementNode`` steers the agent toward a target supplied by its
``MovementStrategy``: it plans a short waypoint path, keeps inside the
arena, sidesteps when blocked or stuck and reports RUNNING until the
target is within stopping distance.
"""
from __future__ import annotations

import logging
from enum import IntEnum
from typing import Dict, List, Optional

from ..types import UP, AgentAction, AgentState, Observation, Vec3
from ..util import clamp, lerp
from .clock import LogicalClock
from .node import CachePolicy, Node, NodeState
from .parameters import MOVEMENT_SCHEMA, ParameterRecord

logger = logging.getLogger(__name__)

STUCK_PROGRESS_EPSILON = 0.1
STUCK_REPLAN_SECONDS = 1.0
TARGET_MOVED_REPLAN = 2.0
WAYPOINT_REACHED = 1.0
OBSTACLE_LOOKAHEAD = 2.0


class PathfindingType(IntEnum):
    DIRECT = 0
    SMOOTH = 1
    TACTICAL = 2


class MovementStrategy:
    """Where a movement node is heading."""

    def target(self, observation: Observation, params: ParameterRecord) -> Vec3:
        raise NotImplementedError

    def can_move(self, observation: Observation, params: ParameterRecord) -> bool:
        return True

    def has_obstacle(self, observation: Observation, direction: Vec3, distance: float) -> bool:
        return False


class ChaseStrategy(MovementStrategy):
    """Close in on the enemy."""

    def target(self, observation, params):
        return observation.enemy_position


class RetreatStrategy(MovementStrategy):
    """Back off to ``max_range`` from the enemy."""

    def target(self, observation, params):
        away = (observation.self_position - observation.enemy_position).flat().normalized()
        if away.magnitude == 0:
            away = Vec3(0.0, 0.0, -1.0)
        return observation.enemy_position + away * params["max_range"]


def perpendicular(direction: Vec3) -> Vec3:
    """Right-hand perpendicular on the ground plane."""
    return UP.cross(direction).normalized()


class MovementNode(Node):
    """Leaf that moves the agent; SUCCESS once the target is reached."""

    SCHEMA = MOVEMENT_SCHEMA
    NODE_TYPE = "movement"

    def __init__(
        self,
        name: str,
        strategy: MovementStrategy,
        params: Optional[Dict[str, float]] = None,
        cache: Optional[CachePolicy] = None,
        node_id: Optional[str] = None,
        enable_pathfinding: bool = True,
        enable_avoidance: bool = True,
    ):
        super().__init__(name, params=params, cache=cache, node_id=node_id)
        self.strategy = strategy
        self.enable_pathfinding = enable_pathfinding
        self.enable_avoidance = enable_avoidance
        self._clear_motion()

    def _clear_motion(self) -> None:
        self.is_moving = False
        self.current_target: Optional[Vec3] = None
        self.path: List[Vec3] = []
        self.path_index = 0
        self._last_path_tick: Optional[int] = None
        self.stuck_time = 0.0
        self._last_progress: Optional[float] = None
        self._last_position: Optional[Vec3] = None
        self.distance_traveled = 0.0
        self.path_recalculations = 0
        self.avoidance_count = 0

    # -- targets ---------------------------------------------------------

    def target_position(self, observation: Observation) -> Vec3:
        target = self.strategy.target(observation, self.params)
        if self.params.flag("enable_prediction") and observation.enemy_velocity is not None:
            target = target + observation.enemy_velocity * self.params["prediction_time"]
        return target

    def is_target_reached(self, observation: Observation, target: Optional[Vec3] = None) -> bool:
        target = target if target is not None else self.target_position(observation)
        return observation.self_position.distance(target) <= self.params["stopping_distance"]

    def can_move(self, observation: Observation) -> bool:
        if not self.is_active:
            return False
        if observation.self_hp <= 0 or observation.current_state == AgentState.DEAD:
            return False
        return self.strategy.can_move(observation, self.params)

    def is_valid_position(self, position: Vec3, observation: Observation) -> bool:
        if not self.params.flag("respect_arena_bounds"):
            return True
        limit = observation.arena_radius - self.params["boundary_padding"]
        return position.distance(observation.arena_center) <= limit

    # -- evaluation ------------------------------------------------------

    def _evaluate(self, observation: Observation, clock: LogicalClock) -> NodeState:
        target = self.target_position(observation)

        if self.is_target_reached(observation, target):
            self.is_moving = False
            return NodeState.SUCCESS

        if not self.can_move(observation):
            return NodeState.FAILURE

        stuck = self.stuck_time > STUCK_REPLAN_SECONDS
        if self._should_update_path(target, clock):
            self._update_path(observation, target, clock, stuck)

        if self.actuator is None:
            return NodeState.FAILURE

        direction = self.move_direction(observation, target, stuck)
        speed = self.move_speed(observation, target)
        result = self.actuator.dispatch(AgentAction.move(direction, intensity=speed))

        if not result.success:
            logger.debug(f"{self.node_id}: move rejected: {result.message}")
            return NodeState.FAILURE

        self.is_moving = True
        self._track(observation, target, clock)
        return NodeState.RUNNING

    def _should_update_path(self, target: Vec3, clock: LogicalClock) -> bool:
        if self._last_path_tick is None or self.current_target is None:
            return True
        if clock.elapsed_since(self._last_path_tick) > self.params["path_update_interval"]:
            return True
        if self.stuck_time > STUCK_REPLAN_SECONDS:
            return True
        return target.distance(self.current_target) > TARGET_MOVED_REPLAN

    def _update_path(self, observation: Observation, target: Vec3, clock: LogicalClock, stuck: bool = False) -> None:
        self.current_target = target
        self._last_path_tick = clock.tick
        self.path_recalculations += 1
        if self.enable_pathfinding:
            self.path = self.plan_path(observation.self_position, target, observation)
            self.path_index = 0
        # routine refreshes keep the stuck timer running
        if stuck:
            self.stuck_time = 0.0

    def plan_path(self, start: Vec3, target: Vec3, observation: Observation) -> List[Vec3]:
        """Waypoints from ``start`` to ``target`` for the configured path type."""
        kind = PathfindingType(int(self.params["pathfinding_type"]))

        if kind == PathfindingType.SMOOTH:
            midpoint = (start + target) * 0.5
            offset = (target - start).normalized().cross(UP) * 2.0
            return [midpoint + offset, target]

        if kind == PathfindingType.TACTICAL:
            to_enemy = (observation.enemy_position - start).normalized()
            side = to_enemy.cross(UP).normalized()
            return [start + side * self.params["safe_distance"], target]

        return [target]

    def move_direction(self, observation: Observation, target: Vec3, stuck: bool = False) -> Vec3:
        """
        Heading for this tick.

        Follows the planned waypoints when there are any, else heads
        straight at the target. Either heading gives way to a sidestep
        when it is blocked or the node is stuck.
        """
        position = observation.self_position

        direction = Vec3()
        if self.enable_pathfinding and self.path:
            direction = self._path_direction(position)
        if direction.magnitude == 0:
            direction = (target - position).normalized()

        if self.enable_avoidance and (stuck or self._blocked(observation, target, direction)):
            direction = self.avoidance_direction(observation, target)
            self.avoidance_count += 1

        return direction

    def _path_direction(self, position: Vec3) -> Vec3:
        if self.path_index >= len(self.path):
            return Vec3()

        waypoint = self.path[self.path_index]
        if position.distance(waypoint) < WAYPOINT_REACHED:
            self.path_index += 1
            if self.path_index >= len(self.path):
                return Vec3()
            waypoint = self.path[self.path_index]
        return (waypoint - position).normalized()

    def _blocked(self, observation: Observation, target: Vec3, direction: Vec3) -> bool:
        distance = observation.self_position.distance(target)
        if self.params.flag("respect_arena_bounds"):
            lookahead = observation.self_position + direction * min(distance, OBSTACLE_LOOKAHEAD)
            if not self.is_valid_position(lookahead, observation):
                return True
        return self.strategy.has_obstacle(observation, direction, distance)

    def avoidance_direction(self, observation: Observation, target: Vec3) -> Vec3:
        """
        Sidestep direction.

        Tries right and left perpendiculars at ``evasion_distance``; if both
        land inside the arena the one closer to the target wins, otherwise
        whichever is valid, otherwise step back.
        """
        position = observation.self_position
        direct = (target - position).normalized()
        right = perpendicular(direct)
        left = -right
        evasion = self.params["evasion_distance"]

        right_pos = position + right * evasion
        left_pos = position + left * evasion
        right_ok = self.is_valid_position(right_pos, observation)
        left_ok = self.is_valid_position(left_pos, observation)

        if right_ok and left_ok:
            return right if right_pos.distance(target) < left_pos.distance(target) else left
        if right_ok:
            return right
        if left_ok:
            return left
        return -direct

    def move_speed(self, observation: Observation, target: Optional[Vec3] = None) -> float:
        target = target if target is not None else self.target_position(observation)
        speed = self.params["move_speed"]

        if self.params.flag("adaptive_speed"):
            speed *= lerp(1.5, 0.8, observation.self_hp / 100.0)

        if observation.self_position.distance(target) < self.params["stopping_distance"] * 2:
            speed *= 0.5

        return clamp(speed, 0.1, 2.0)

    def estimated_travel_time(self, observation: Observation) -> float:
        target = self.target_position(observation)
        distance = observation.self_position.distance(target)
        return distance / max(self.move_speed(observation, target), 0.1)

    def _track(self, observation: Observation, target: Vec3, clock: LogicalClock) -> None:
        position = observation.self_position
        if self._last_position is not None:
            self.distance_traveled += position.distance(self._last_position)
        self._last_position = position

        progress = position.distance(target)
        if self._last_progress is not None and abs(progress - self._last_progress) < STUCK_PROGRESS_EPSILON:
            self.stuck_time += clock.dt
        else:
            self.stuck_time = 0.0
        self._last_progress = progress

    def on_parameters_changed(self) -> None:
        super().on_parameters_changed()
        self.path = []
        self.path_index = 0

    def reset(self) -> None:
        super().reset()
        self._clear_motion()
