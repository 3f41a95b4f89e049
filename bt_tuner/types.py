"""
Shared value types for the combat decision core.

The observation snapshot is produced externally once per tick and read by
every node. Actions leave the core through the ``Actuator`` protocol.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Protocol


@dataclass(frozen=True)
class Vec3:
    """Immutable 3D vector (y is up)."""
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def __add__(self, other: "Vec3") -> "Vec3":
        return Vec3(self.x + other.x, self.y + other.y, self.z + other.z)

    def __sub__(self, other: "Vec3") -> "Vec3":
        return Vec3(self.x - other.x, self.y - other.y, self.z - other.z)

    def __mul__(self, k: float) -> "Vec3":
        return Vec3(self.x * k, self.y * k, self.z * k)

    __rmul__ = __mul__

    def __neg__(self) -> "Vec3":
        return Vec3(-self.x, -self.y, -self.z)

    @property
    def magnitude(self) -> float:
        return math.sqrt(self.x * self.x + self.y * self.y + self.z * self.z)

    def normalized(self) -> "Vec3":
        m = self.magnitude
        if m < 1e-9:
            return Vec3()
        return Vec3(self.x / m, self.y / m, self.z / m)

    def distance(self, other: "Vec3") -> float:
        return (self - other).magnitude

    def cross(self, other: "Vec3") -> "Vec3":
        return Vec3(
            self.y * other.z - self.z * other.y,
            self.z * other.x - self.x * other.z,
            self.x * other.y - self.y * other.x,
        )

    def flat(self) -> "Vec3":
        """Project onto the ground plane."""
        return Vec3(self.x, 0.0, self.z)

    def to_list(self):
        return [self.x, self.y, self.z]

    @classmethod
    def from_seq(cls, values) -> "Vec3":
        x, y, z = (list(values) + [0.0, 0.0, 0.0])[:3]
        return cls(float(x), float(y), float(z))


UP = Vec3(0.0, 1.0, 0.0)


class AgentState(str, Enum):
    """Coarse animation/logic state of an agent."""
    IDLE = "idle"
    ATTACKING = "attacking"
    DEFENDING = "defending"
    DODGING = "dodging"
    MOVING = "moving"
    STUNNED = "stunned"
    DEAD = "dead"


class ActionType(str, Enum):
    """Actions an agent can request from its actuator."""
    IDLE = "idle"
    ATTACK = "attack"
    DEFEND = "defend"
    DODGE = "dodge"
    MOVE_FORWARD = "move_forward"
    MOVE_BACK = "move_back"
    MOVE_LEFT = "move_left"
    MOVE_RIGHT = "move_right"


@dataclass(frozen=True)
class CooldownState:
    """
    Remaining cooldown per action, in seconds.

    An action is ready when its remaining cooldown is <= 0.
    """
    attack_cooldown: float = 0.0
    defend_cooldown: float = 0.0
    dodge_cooldown: float = 0.0
    attack_max_time: float = 1.0
    defend_max_time: float = 1.0
    dodge_max_time: float = 1.0

    @property
    def can_attack(self) -> bool:
        return self.attack_cooldown <= 0.0

    @property
    def can_defend(self) -> bool:
        return self.defend_cooldown <= 0.0

    @property
    def can_dodge(self) -> bool:
        return self.dodge_cooldown <= 0.0

    def is_ready(self, action_type: ActionType) -> bool:
        """Cooldown readiness for an action; non-combat actions are always ready."""
        if action_type == ActionType.ATTACK:
            return self.can_attack
        if action_type == ActionType.DEFEND:
            return self.can_defend
        if action_type == ActionType.DODGE:
            return self.can_dodge
        return True


@dataclass(frozen=True)
class Observation:
    """
    Immutable per-tick snapshot of the world as seen by one agent.

    Attributes:
        self_position: Agent position
        enemy_position: Opponent position
        self_hp: Agent health (0-100)
        enemy_hp: Opponent health (0-100)
        cooldowns: Per-action cooldown state
        distance_to_enemy: Precomputed distance (derived from positions if None)
        current_state: Agent's current state
        arena_center: Center of the circular arena
        arena_radius: Radius of the arena
        enemy_velocity: Optional opponent velocity for movement prediction
    """
    self_position: Vec3 = field(default_factory=Vec3)
    enemy_position: Vec3 = field(default_factory=Vec3)
    self_hp: float = 100.0
    enemy_hp: float = 100.0
    cooldowns: CooldownState = field(default_factory=CooldownState)
    distance_to_enemy: Optional[float] = None
    current_state: AgentState = AgentState.IDLE
    arena_center: Vec3 = field(default_factory=Vec3)
    arena_radius: float = 20.0
    enemy_velocity: Optional[Vec3] = None

    def __post_init__(self):
        if self.distance_to_enemy is None:
            object.__setattr__(
                self,
                "distance_to_enemy",
                self.self_position.distance(self.enemy_position),
            )

    def with_changes(self, **changes: Any) -> "Observation":
        """Copy with some fields replaced (distance recomputed unless given)."""
        if "distance_to_enemy" not in changes and (
            "self_position" in changes or "enemy_position" in changes
        ):
            changes["distance_to_enemy"] = None
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "self_position": self.self_position.to_list(),
            "enemy_position": self.enemy_position.to_list(),
            "self_hp": self.self_hp,
            "enemy_hp": self.enemy_hp,
            "distance_to_enemy": self.distance_to_enemy,
            "current_state": self.current_state.value,
            "arena_radius": self.arena_radius,
        }


@dataclass(frozen=True)
class AgentAction:
    """Request sent to the actuator."""
    type: ActionType
    direction: Vec3 = field(default_factory=Vec3)
    intensity: float = 1.0

    @classmethod
    def move(cls, direction: Vec3, intensity: float = 1.0) -> "AgentAction":
        """Movement request; the action type follows the dominant direction."""
        if direction.z > 0.5:
            action_type = ActionType.MOVE_FORWARD
        elif direction.z < -0.5:
            action_type = ActionType.MOVE_BACK
        elif direction.x > 0.5:
            action_type = ActionType.MOVE_RIGHT
        elif direction.x < -0.5:
            action_type = ActionType.MOVE_LEFT
        else:
            action_type = ActionType.IDLE
        return cls(type=action_type, direction=direction, intensity=intensity)


@dataclass(frozen=True)
class ActionResult:
    """Outcome of an actuator dispatch."""
    success: bool
    action_type: ActionType
    message: str = ""
    damage: float = 0.0
    target: Optional[str] = None

    @classmethod
    def ok(cls, action_type: ActionType, damage: float = 0.0, target: Optional[str] = None) -> "ActionResult":
        return cls(True, action_type, f"{action_type.value} ok", damage, target)

    @classmethod
    def failure(cls, action_type: ActionType, reason: str) -> "ActionResult":
        return cls(False, action_type, reason)


class Actuator(Protocol):
    """Capability that turns a requested action into simulated effects."""

    def dispatch(self, action: AgentAction) -> ActionResult:
        ...
