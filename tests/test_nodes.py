"""
Tests for behavior nodes: caching, metadata, actions, conditions, movement.
"""
import pytest

from bt_tuner.core import (
    ActionNode,
    AttackStrategy,
    CachePolicy,
    ChaseStrategy,
    Comparison,
    ConditionNode,
    ConditionStrategy,
    DefendStrategy,
    MovementNode,
    NodeState,
    RetreatStrategy,
    SelfHealthStrategy,
)
from bt_tuner.core.condition import compare, observation_hash
from bt_tuner.metrics import get_metrics
from bt_tuner.types import ActionType, AgentState, CooldownState, Observation, Vec3


class CountingStrategy(ConditionStrategy):
    """Reports self hp and counts how often it was asked."""

    def __init__(self):
        self.calls = 0

    def value(self, observation):
        self.calls += 1
        return observation.self_hp


class ExplodingStrategy(ConditionStrategy):
    def value(self, observation):
        raise RuntimeError("sensor offline")


class TestNodeMetadata:
    """Execution counters stay consistent."""

    def test_counts_add_up(self, clock, actuator, close_observation):
        """success + failure + running always equals execution count."""
        node = ActionNode("attack", AttackStrategy(), cache=CachePolicy.disabled())
        node.initialize(actuator)

        for _ in range(90):
            node.evaluate(close_observation, clock)
            clock.advance()

        meta = node.metadata
        assert meta.execution_count == 90
        assert meta.success_count + meta.failure_count + meta.running_count == 90
        assert meta.success_count >= 1

    def test_success_rate_ignores_running(self):
        node = ConditionNode("low_hp", SelfHealthStrategy())
        node.metadata.record(NodeState.SUCCESS, 0.1)
        node.metadata.record(NodeState.RUNNING, 0.1)
        node.metadata.record(NodeState.FAILURE, 0.1)

        assert node.metadata.success_rate == 0.5


class TestCaching:
    """Result cache behavior of the base node."""

    def test_repeated_observation_hits_cache(self, clock):
        """Second evaluation within the window does not recompute."""
        strategy = CountingStrategy()
        node = ConditionNode("low_hp", strategy)
        obs = Observation(self_hp=20.0)

        first = node.evaluate(obs, clock)
        clock.advance()
        second = node.evaluate(obs, clock)

        assert first == second == NodeState.SUCCESS
        assert strategy.calls == 1
        assert node.metadata.cache_hits == 1

    def test_cache_expires_after_window(self, clock):
        strategy = CountingStrategy()
        node = ConditionNode("low_hp", strategy, cache=CachePolicy(window_ticks=3))
        obs = Observation(self_hp=20.0)

        node.evaluate(obs, clock)
        clock.advance(3)
        node.evaluate(obs, clock)

        assert strategy.calls == 2

    def test_different_observation_misses_cache(self, clock):
        strategy = CountingStrategy()
        node = ConditionNode("low_hp", strategy)

        node.evaluate(Observation(self_hp=20.0), clock)
        node.evaluate(Observation(self_hp=80.0), clock)

        assert strategy.calls == 2

    def test_caching_flag_disables_cache(self, clock):
        strategy = CountingStrategy()
        node = ConditionNode("low_hp", strategy, params={"enable_caching": 0})
        obs = Observation(self_hp=20.0)

        node.evaluate(obs, clock)
        node.evaluate(obs, clock)

        assert strategy.calls == 2
        assert not node.has_cached_result

    def test_running_is_never_cached(self, clock, actuator, close_observation):
        node = ActionNode("attack", AttackStrategy())
        node.initialize(actuator)

        assert node.evaluate(close_observation, clock) == NodeState.RUNNING
        assert not node.has_cached_result

    def test_reset_clears_cache(self, clock):
        """Reset returns to RUNNING and drops the cached result."""
        node = ConditionNode("low_hp", SelfHealthStrategy())
        node.evaluate(Observation(self_hp=20.0), clock)
        assert node.has_cached_result

        node.reset()

        assert node.state == NodeState.RUNNING
        assert not node.has_cached_result

    def test_parameter_change_invalidates_cache(self, clock):
        node = ConditionNode("low_hp", SelfHealthStrategy())
        node.evaluate(Observation(self_hp=20.0), clock)

        node.on_parameters_changed()

        assert not node.has_cached_result


class TestFailureIsolation:
    """A fault inside a node becomes FAILURE."""

    def test_exception_becomes_failure(self, clock):
        node = ConditionNode("broken", ExplodingStrategy())

        state = node.evaluate(Observation(), clock)

        assert state == NodeState.FAILURE
        assert node.metadata.failure_count == 1
        assert get_metrics().get_error_count("node", "RuntimeError") == 1

    def test_failure_is_not_cached(self, clock):
        node = ConditionNode("broken", ExplodingStrategy())
        node.evaluate(Observation(), clock)

        assert not node.has_cached_result


class TestActionNode:
    """Gate, dispatch and timed execution."""

    def test_cooldown_blocks_attack(self, clock, actuator):
        """An attack still on cooldown fails without dispatching."""
        node = ActionNode("attack", AttackStrategy())
        node.initialize(actuator)
        obs = Observation(
            self_position=Vec3(),
            enemy_position=Vec3(0.0, 0.0, 1.5),
            cooldowns=CooldownState(attack_cooldown=1.0),
        )

        state = node.evaluate(obs, clock)

        assert state == NodeState.FAILURE
        assert node.metadata.execution_count == 1
        assert node.metadata.success_count == 0
        assert actuator.actions == []
        assert "attack on cooldown" in node.blocking_conditions(obs)

    def test_out_of_range(self, clock, actuator):
        node = ActionNode("attack", AttackStrategy(), params={"range": 2.0})
        node.initialize(actuator)
        obs = Observation(enemy_position=Vec3(0.0, 0.0, 5.0))

        assert node.evaluate(obs, clock) == NodeState.FAILURE
        assert not node.can_execute(obs)

    def test_hp_threshold(self, clock, actuator, close_observation):
        node = ActionNode("attack", AttackStrategy(), params={"hp_threshold": 50.0})
        node.initialize(actuator)

        assert node.evaluate(close_observation.with_changes(self_hp=40.0), clock) == NodeState.FAILURE

    def test_runs_for_execution_time(self, clock, actuator, close_observation):
        """RUNNING until execution_time of logical time has passed, then SUCCESS."""
        node = ActionNode("attack", AttackStrategy(), params={"execution_time": 0.5})
        node.initialize(actuator)

        assert node.evaluate(close_observation, clock) == NodeState.RUNNING
        assert len(actuator.actions) == 1
        assert actuator.actions[0].type == ActionType.ATTACK

        clock.advance(10)
        assert node.evaluate(close_observation, clock) == NodeState.RUNNING

        clock.advance(25)
        assert node.evaluate(close_observation, clock) == NodeState.SUCCESS
        assert not node.is_executing
        assert len(actuator.actions) == 1

    def test_no_actuator_fails(self, clock, close_observation):
        node = ActionNode("defend", DefendStrategy())

        assert node.evaluate(close_observation, clock) == NodeState.FAILURE

    def test_rejected_dispatch_fails(self, clock, actuator, close_observation):
        actuator.accept = False
        node = ActionNode("attack", AttackStrategy())
        node.initialize(actuator)

        assert node.evaluate(close_observation, clock) == NodeState.FAILURE
        assert not node.is_executing

    def test_dead_agent_interrupts(self, clock, actuator, close_observation):
        node = ActionNode("attack", AttackStrategy())
        node.initialize(actuator)
        node.evaluate(close_observation, clock)
        clock.advance()

        state = node.evaluate(close_observation.with_changes(self_hp=0.0), clock)

        assert state == NodeState.FAILURE
        assert not node.is_executing

    def test_attack_refuses_dead_target(self, clock, actuator, close_observation):
        node = ActionNode("attack", AttackStrategy())
        node.initialize(actuator)

        assert node.evaluate(close_observation.with_changes(enemy_hp=0.0), clock) == NodeState.FAILURE

    def test_chaining_rules(self):
        node = ActionNode("attack", AttackStrategy())
        assert node.can_chain_with(ActionType.DODGE)
        assert not node.can_chain_with(ActionType.ATTACK)

        solo = ActionNode("solo", AttackStrategy(), params={"allow_chaining": 0})
        assert not solo.can_chain_with(ActionType.DODGE)


class TestConditionNode:
    """Threshold comparisons and condition options."""

    def test_low_health(self, clock):
        node = ConditionNode("low_hp", SelfHealthStrategy(), params={"primary_threshold": 30.0})

        assert node.evaluate(Observation(self_hp=25.0), clock) == NodeState.SUCCESS
        assert node.evaluate(Observation(self_hp=90.0), clock) == NodeState.FAILURE

    def test_invert_result(self, clock):
        node = ConditionNode(
            "healthy", SelfHealthStrategy(),
            params={"primary_threshold": 30.0, "invert_result": 1},
        )

        assert node.evaluate(Observation(self_hp=90.0), clock) == NodeState.SUCCESS
        assert node.describe().startswith("NOT")

    def test_quick_check_locks_out_after_repeated_failures(self, clock):
        """Past the consecutive failure limit the quick check fails on its own."""
        node = ConditionNode(
            "low_hp", SelfHealthStrategy(),
            params={"primary_threshold": 30.0, "enable_caching": 0},
        )
        for _ in range(6):
            node.evaluate(Observation(self_hp=90.0), clock)

        assert node.evaluate(Observation(self_hp=10.0), clock) == NodeState.FAILURE

        node.reset()
        assert node.evaluate(Observation(self_hp=10.0), clock) == NodeState.SUCCESS

    @pytest.mark.parametrize("comparison,value,expected", [
        (Comparison.LESS, 29.0, True),
        (Comparison.LESS, 30.0, False),
        (Comparison.LESS_EQUAL, 30.0, True),
        (Comparison.EQUAL, 31.0, False),
        (Comparison.GREATER_EQUAL, 30.0, True),
        (Comparison.GREATER, 30.0, False),
    ])
    def test_compare(self, comparison, value, expected):
        assert compare(value, 30.0, comparison) is expected

    def test_tolerance_widens_equal(self):
        assert compare(31.0, 30.0, Comparison.EQUAL, tolerance=1.5)

    def test_adaptive_threshold_moves_toward_observed_values(self, clock):
        node = ConditionNode(
            "low_hp", SelfHealthStrategy(),
            params={"primary_threshold": 30.0, "adaptive_threshold": 1,
                    "learning_rate": 0.5, "enable_caching": 0, "enable_quick_check": 0},
        )
        for _ in range(10):
            node.evaluate(Observation(self_hp=70.0), clock)

        assert node.adaptive_threshold == pytest.approx(50.0)

        node.reset()
        assert node.adaptive_threshold == 30.0

    def test_observation_hash_is_coarse(self):
        a = Observation(self_hp=50.01)
        b = Observation(self_hp=50.04)
        assert observation_hash(a) == observation_hash(b)


class TestMovementNode:
    """Chase and retreat movement."""

    def test_target_reached_succeeds(self, clock, actuator):
        node = MovementNode("chase", ChaseStrategy(), params={"stopping_distance": 2.0})
        node.initialize(actuator)
        obs = Observation(enemy_position=Vec3(0.0, 0.0, 1.0))

        assert node.evaluate(obs, clock) == NodeState.SUCCESS
        assert actuator.actions == []

    def test_far_target_dispatches_move(self, clock, actuator):
        node = MovementNode("chase", ChaseStrategy(), params={"stopping_distance": 1.0})
        node.initialize(actuator)
        obs = Observation(enemy_position=Vec3(0.0, 0.0, 8.0))

        assert node.evaluate(obs, clock) == NodeState.RUNNING
        assert len(actuator.actions) == 1
        assert actuator.actions[0].type == ActionType.MOVE_FORWARD
        assert node.is_moving

    def test_no_actuator_fails(self, clock):
        node = MovementNode("chase", ChaseStrategy(), params={"stopping_distance": 1.0})
        obs = Observation(enemy_position=Vec3(0.0, 0.0, 8.0))

        assert node.evaluate(obs, clock) == NodeState.FAILURE

    def test_dead_agent_cannot_move(self, clock, actuator):
        node = MovementNode("chase", ChaseStrategy(), params={"stopping_distance": 1.0})
        node.initialize(actuator)
        obs = Observation(enemy_position=Vec3(0.0, 0.0, 8.0), current_state=AgentState.DEAD)

        assert node.evaluate(obs, clock) == NodeState.FAILURE

    def test_retreat_target_is_away_from_enemy(self):
        node = MovementNode("retreat", RetreatStrategy(), params={"max_range": 8.0})
        obs = Observation(self_position=Vec3(0.0, 0.0, -1.0), enemy_position=Vec3())

        target = node.target_position(obs)

        assert target.z == pytest.approx(-8.0)
