"""
Arena duel harness.

A toy one-on-one fight on a circular arena: a behavior-tree agent against
a scripted opponent that walks in and swings. It exists to drive the
monitor, analyzer and optimizer with realistic-looking telemetry; none of
the physics is meant to be accurate.

Example:
    >>> sim = DuelSimulation(TunerPresets.deterministic_test(), seed=7)
    >>> sim.run(3600)
    >>> print(sim.monitor.generate_report())
"""
from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass, field
from typing import Dict, Optional

from .analysis.analyzer import PerformanceAnalyzer
from .config import TunerConfig
from .core.action import ActionNode, AttackStrategy
from .core.clock import DEFAULT_DT, LogicalClock
from .core.composites import Selector, Sequence
from .core.condition import Comparison, ConditionNode, EnemyDistanceStrategy, SelfHealthStrategy
from .core.movement import ChaseStrategy, MovementNode, RetreatStrategy
from .core.node import CachePolicy, Node, NodeState
from .core.parameters import ParameterArena
from .core.tree import BehaviorTree
from .events import EventBus
from .monitoring.monitor import PerformanceMonitor
from .optimization.engine import OptimizationEngine
from .telemetry.aggregator import TelemetryAggregator
from .types import (
    ActionResult,
    ActionType,
    AgentAction,
    AgentState,
    CooldownState,
    Observation,
    Vec3,
)

logger = logging.getLogger(__name__)

ARENA_RADIUS = 20.0
AGENT_SPEED = 4.0
ENEMY_SPEED = 2.5
ATTACK_REACH = 3.0
ATTACK_DAMAGE = 10.0
ATTACK_COOLDOWN = 1.0
DEFEND_COOLDOWN = 2.0
DODGE_COOLDOWN = 1.5
DODGE_DISTANCE = 2.0
ENEMY_REACH = 1.8
ENEMY_DAMAGE = 6.0
ENEMY_ATTACKS_PER_SECOND = 0.8
HP_REGEN_PER_SECOND = 1.0
SPAWN_DISTANCE = 10.0


@dataclass
class Fighter:
    position: Vec3 = field(default_factory=Vec3)
    hp: float = 100.0
    attack_cooldown: float = 0.0
    defend_cooldown: float = 0.0
    dodge_cooldown: float = 0.0
    defending_for: float = 0.0
    state: AgentState = AgentState.IDLE

    def tick_cooldowns(self, dt: float) -> None:
        self.attack_cooldown = max(0.0, self.attack_cooldown - dt)
        self.defend_cooldown = max(0.0, self.defend_cooldown - dt)
        self.dodge_cooldown = max(0.0, self.dodge_cooldown - dt)
        self.defending_for = max(0.0, self.defending_for - dt)


def keep_inside(position: Vec3, radius: float = ARENA_RADIUS) -> Vec3:
    flat = position.flat()
    if flat.magnitude <= radius:
        return flat
    return flat.normalized() * radius


class DuelWorld:
    """State of both fighters plus the scripted opponent."""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()
        self.agent = Fighter(position=Vec3(0.0, 0.0, 0.0))
        self.enemy = Fighter(position=self._spawn_point())
        self.enemy_velocity = Vec3()
        self.kills = 0
        self.deaths = 0
        self.damage_dealt = 0.0
        self.damage_taken = 0.0

    def _spawn_point(self) -> Vec3:
        angle = self.rng.uniform(0.0, 2 * math.pi)
        return Vec3(math.cos(angle) * SPAWN_DISTANCE, 0.0, math.sin(angle) * SPAWN_DISTANCE)

    def observation(self) -> Observation:
        a = self.agent
        return Observation(
            self_position=a.position,
            enemy_position=self.enemy.position,
            self_hp=a.hp,
            enemy_hp=self.enemy.hp,
            cooldowns=CooldownState(
                attack_cooldown=a.attack_cooldown,
                defend_cooldown=a.defend_cooldown,
                dodge_cooldown=a.dodge_cooldown,
                attack_max_time=ATTACK_COOLDOWN,
                defend_max_time=DEFEND_COOLDOWN,
                dodge_max_time=DODGE_COOLDOWN,
            ),
            current_state=a.state,
            arena_radius=ARENA_RADIUS,
            enemy_velocity=self.enemy_velocity,
        )

    def step(self, dt: float) -> None:
        """Advance the opponent, cooldowns and respawns by ``dt`` seconds."""
        self.agent.tick_cooldowns(dt)
        self.enemy.tick_cooldowns(dt)
        self.agent.hp = min(100.0, self.agent.hp + HP_REGEN_PER_SECOND * dt)

        offset = self.agent.position - self.enemy.position
        if offset.magnitude > ENEMY_REACH:
            self.enemy_velocity = offset.flat().normalized() * ENEMY_SPEED
            self.enemy.position = keep_inside(self.enemy.position + self.enemy_velocity * dt)
        else:
            self.enemy_velocity = Vec3()
            if self.rng.random() < ENEMY_ATTACKS_PER_SECOND * dt:
                damage = ENEMY_DAMAGE * (0.3 if self.agent.defending_for > 0 else 1.0)
                self.agent.hp -= damage
                self.damage_taken += damage

        if self.enemy.hp <= 0:
            self.kills += 1
            logger.debug(f"Opponent down ({self.kills} total)")
            self.enemy = Fighter(position=self._spawn_point())
        if self.agent.hp <= 0:
            self.deaths += 1
            logger.debug(f"Agent down ({self.deaths} total)")
            self.agent = Fighter(position=Vec3())

    def to_dict(self) -> Dict:
        return {
            "agent_hp": round(self.agent.hp, 2),
            "enemy_hp": round(self.enemy.hp, 2),
            "distance": round(self.agent.position.distance(self.enemy.position), 2),
            "kills": self.kills,
            "deaths": self.deaths,
            "damage_dealt": round(self.damage_dealt, 2),
            "damage_taken": round(self.damage_taken, 2),
        }


class ArenaActuator:
    """Applies agent actions to a ``DuelWorld``."""

    def __init__(self, world: DuelWorld, dt: float = DEFAULT_DT):
        self.world = world
        self.dt = dt
        self.dispatched = 0

    def dispatch(self, action: AgentAction) -> ActionResult:
        self.dispatched += 1
        agent = self.world.agent
        enemy = self.world.enemy

        if action.type == ActionType.ATTACK:
            if agent.attack_cooldown > 0:
                return ActionResult.failure(ActionType.ATTACK, "attack on cooldown")
            if agent.position.distance(enemy.position) > ATTACK_REACH:
                return ActionResult.failure(ActionType.ATTACK, "target out of reach")
            damage = ATTACK_DAMAGE * action.intensity
            enemy.hp -= damage
            self.world.damage_dealt += damage
            agent.attack_cooldown = ATTACK_COOLDOWN
            agent.state = AgentState.ATTACKING
            return ActionResult.ok(ActionType.ATTACK, damage=damage, target="opponent")

        if action.type == ActionType.DEFEND:
            if agent.defend_cooldown > 0:
                return ActionResult.failure(ActionType.DEFEND, "defend on cooldown")
            agent.defend_cooldown = DEFEND_COOLDOWN
            agent.defending_for = 1.0
            agent.state = AgentState.DEFENDING
            return ActionResult.ok(ActionType.DEFEND)

        if action.type == ActionType.DODGE:
            if agent.dodge_cooldown > 0:
                return ActionResult.failure(ActionType.DODGE, "dodge on cooldown")
            agent.position = keep_inside(agent.position + action.direction.flat().normalized() * DODGE_DISTANCE)
            agent.dodge_cooldown = DODGE_COOLDOWN
            agent.state = AgentState.DODGING
            return ActionResult.ok(ActionType.DODGE)

        if action.type == ActionType.IDLE and action.direction.magnitude == 0:
            agent.state = AgentState.IDLE
            return ActionResult.ok(ActionType.IDLE)

        step = action.direction.flat().normalized() * (AGENT_SPEED * action.intensity * self.dt)
        agent.position = keep_inside(agent.position + step)
        agent.state = AgentState.MOVING
        return ActionResult.ok(action.type)


def build_duel_tree(cache: Optional[CachePolicy] = None) -> Node:
    """
    Retreat when hurt, attack when close, otherwise chase.

    Quick checks are off for the conditions: a condition that fails often
    (distance checks do) would otherwise lock itself out after a few misses.
    """
    no_quick = {"enable_quick_check": 0}
    return Selector("root", [
        Sequence("survive", [
            ConditionNode(
                "low_health", SelfHealthStrategy(),
                params={"primary_threshold": 25.0, "comparison_type": int(Comparison.LESS), **no_quick},
                cache=cache,
            ),
            MovementNode("retreat", RetreatStrategy(), params={"max_range": 8.0}, cache=cache),
        ]),
        Sequence("engage", [
            ConditionNode(
                "enemy_close", EnemyDistanceStrategy(),
                params={"primary_threshold": 2.5, "comparison_type": int(Comparison.LESS_EQUAL), **no_quick},
                cache=cache,
            ),
            ActionNode("attack", AttackStrategy(), params={"range": 2.5, "execution_time": 0.4}, cache=cache),
        ]),
        MovementNode("chase", ChaseStrategy(), params={"stopping_distance": 1.5}, cache=cache),
    ])


class DuelSimulation:
    """
    One agent tree wired to telemetry, monitor, analyzer and optimizer.

    Logical time drives everything: each ``step`` ticks the tree, advances
    the world by one clock step and then updates the monitor, the
    optimizer and the analyzer in that order.
    """

    def __init__(
        self,
        config: Optional[TunerConfig] = None,
        seed: Optional[int] = None,
        dt: float = DEFAULT_DT,
        tree_id: str = "duelist",
    ):
        self.config = config or TunerConfig()
        self.rng = random.Random(seed)
        self.clock = LogicalClock(dt=dt)
        self.events = EventBus()
        self.arena = ParameterArena()
        self.telemetry = TelemetryAggregator(self.config.telemetry)

        self.world = DuelWorld(random.Random(self.rng.random()))
        self.actuator = ArenaActuator(self.world, dt)
        self.tree = BehaviorTree(
            tree_id,
            build_duel_tree(CachePolicy.from_config(self.config.cache)),
            self.arena,
            self.telemetry,
        )
        self.tree.initialize(self.actuator)

        self.monitor = PerformanceMonitor(self.config.monitor, events=self.events)
        self.engine = OptimizationEngine(self.config.optimizer, self.arena, events=self.events, monitor=self.monitor)
        self.monitor.attach_engine(self.engine)
        self.analyzer = PerformanceAnalyzer(
            self.config.analyzer, events=self.events, monitor=self.monitor, engine=self.engine,
        )

        self.monitor.register_tree(tree_id, self.tree.tree_telemetry)
        self.engine.register_tree(tree_id)
        self.analyzer.register_tree(tree_id)

        self.results: Dict[str, int] = {s.value: 0 for s in NodeState}
        self.episodes = 0
        self._started = False

    @property
    def tree_id(self) -> str:
        return self.tree.tree_id

    @property
    def now(self) -> float:
        return self.clock.time

    def start(self) -> None:
        if self._started:
            return
        self.monitor.start(now=self.now)
        self.analyzer.start(now=self.now)
        self._started = True
        logger.info(f"Duel simulation started (dt={self.clock.dt:.4f}s)")

    def step(self) -> NodeState:
        if not self._started:
            self.start()

        state = self.tree.tick(self.world.observation(), self.clock)
        self.results[state.value] += 1

        self.clock.advance()
        rounds = self.world.kills + self.world.deaths
        self.world.step(self.clock.dt)
        if self.world.kills + self.world.deaths != rounds:
            self.end_episode()

        frame = self.clock.dt * self.rng.uniform(0.95, 1.15)
        self.monitor.record_frame(frame, memory_mb=96.0 + self.rng.uniform(0.0, 8.0))

        now = self.now
        self.monitor.update(now)
        self.engine.update(now)
        self.analyzer.update(now)
        return state

    def end_episode(self) -> None:
        """A fighter went down: start the tree and its node statistics over."""
        self.episodes += 1
        self.tree.reset(reset_statistics=True)
        logger.debug(f"Episode {self.episodes} ended at t={self.now:.2f}s")

    def run(self, ticks: int) -> Dict:
        """Run ``ticks`` steps and return a summary."""
        for _ in range(max(0, ticks)):
            self.step()
        return self.summary()

    def summary(self) -> Dict:
        return {
            "ticks": self.clock.tick,
            "time": round(self.now, 3),
            "results": dict(self.results),
            "episodes": self.episodes,
            "world": self.world.to_dict(),
        }
