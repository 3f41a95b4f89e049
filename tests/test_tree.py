"""
Tests for composites and the tree runner.
"""
import pytest

from bt_tuner.core import (
    ActionNode,
    AttackStrategy,
    BehaviorTree,
    CachePolicy,
    ConditionNode,
    Cooldown,
    Inverter,
    Node,
    NodeState,
    Parallel,
    ParameterArena,
    RandomSelector,
    Repeater,
    Selector,
    SelfHealthStrategy,
    Sequence,
)
from bt_tuner.telemetry import TelemetryAggregator
from bt_tuner.types import Observation


class Fixed(Node):
    """Leaf that always returns the same state."""

    def __init__(self, name, state):
        super().__init__(name, cache=CachePolicy.disabled())
        self.result = state
        self.calls = 0

    def _evaluate(self, observation, clock):
        self.calls += 1
        return self.result


S, F, R = NodeState.SUCCESS, NodeState.FAILURE, NodeState.RUNNING


class TestSelector:

    def test_first_success_wins(self, clock):
        a, b, c = Fixed("a", F), Fixed("b", S), Fixed("c", S)
        root = Selector("root", [a, b, c])

        assert root.evaluate(Observation(), clock) == S
        assert c.calls == 0

    def test_running_stops_selection(self, clock):
        a, b = Fixed("a", R), Fixed("b", S)
        assert Selector("root", [a, b]).evaluate(Observation(), clock) == R
        assert b.calls == 0

    def test_all_fail(self, clock):
        assert Selector("root", [Fixed("a", F), Fixed("b", F)]).evaluate(Observation(), clock) == F

    def test_empty_fails(self, clock):
        assert Selector("root").evaluate(Observation(), clock) == F

    def test_random_selector_is_seeded(self, clock):
        picks = []
        for _ in range(2):
            children = [Fixed(str(i), S) for i in range(5)]
            RandomSelector("root", children, seed=3).evaluate(Observation(), clock)
            picks.append([c.calls for c in children])
        assert picks[0] == picks[1]


class TestSequence:

    def test_failure_stops(self, clock):
        a, b = Fixed("a", F), Fixed("b", S)
        assert Sequence("seq", [a, b]).evaluate(Observation(), clock) == F
        assert b.calls == 0

    def test_running_child_does_not_stop(self, clock):
        """Children after a RUNNING child are still evaluated."""
        a, b = Fixed("a", R), Fixed("b", S)
        assert Sequence("seq", [a, b]).evaluate(Observation(), clock) == R
        assert b.calls == 1

    def test_all_succeed(self, clock):
        assert Sequence("seq", [Fixed("a", S), Fixed("b", S)]).evaluate(Observation(), clock) == S

    def test_empty_succeeds(self, clock):
        assert Sequence("seq").evaluate(Observation(), clock) == S


class TestParallel:

    def test_threshold_met(self, clock):
        node = Parallel("par", [Fixed("a", S), Fixed("b", S), Fixed("c", F)], success_threshold=2)
        assert node.evaluate(Observation(), clock) == S

    def test_threshold_unreachable(self, clock):
        node = Parallel("par", [Fixed("a", S), Fixed("b", F), Fixed("c", F)], success_threshold=2)
        assert node.evaluate(Observation(), clock) == F

    def test_still_running(self, clock):
        node = Parallel("par", [Fixed("a", S), Fixed("b", R), Fixed("c", F)], success_threshold=2)
        assert node.evaluate(Observation(), clock) == R


class TestDecorators:

    def test_inverter(self, clock):
        assert Inverter("inv", Fixed("a", S)).evaluate(Observation(), clock) == F
        assert Inverter("inv", Fixed("a", F)).evaluate(Observation(), clock) == S
        assert Inverter("inv", Fixed("a", R)).evaluate(Observation(), clock) == R

    def test_repeater_counts_successes(self, clock):
        node = Repeater("rep", Fixed("a", S), count=2)
        assert node.evaluate(Observation(), clock) == R
        assert node.evaluate(Observation(), clock) == S

        node.reset()
        assert node.completed == 0

    def test_repeater_stops_on_failure(self, clock):
        assert Repeater("rep", Fixed("a", F), count=3).evaluate(Observation(), clock) == F

    def test_cooldown_blocks_until_elapsed(self, clock):
        child = Fixed("a", S)
        node = Cooldown("cd", child, cooldown=1.0)

        assert node.evaluate(Observation(), clock) == S
        clock.advance(30)
        assert node.evaluate(Observation(), clock) == F
        assert child.calls == 1

        clock.advance(31)
        assert node.evaluate(Observation(), clock) == S


def build_tree(arena=None, telemetry=None):
    low_hp = ConditionNode("low_hp", SelfHealthStrategy(), params={"primary_threshold": 30.0})
    attack = ActionNode("attack", AttackStrategy())
    root = Selector("root", [Sequence("flee", [low_hp, Fixed("retreat", S)]), attack])
    return BehaviorTree("duelist", root, arena=arena, telemetry=telemetry)


class TestBehaviorTree:
    """Tree construction and ticking."""

    def test_structure(self):
        tree = build_tree()

        assert tree.node_count == 5
        assert tree.depth == 3
        assert tree.node_depth("root") == 1
        assert tree.node_depth("low_hp") == 3
        assert tree.find("attack") is not None
        assert tree.find("nope") is None

    def test_duplicate_ids_rejected(self):
        with pytest.raises(ValueError):
            BehaviorTree("t", Sequence("root", [Fixed("a", S), Fixed("a", S)]))

    def test_unknown_handle_raises(self):
        with pytest.raises(KeyError):
            build_tree().handle("nope")

    def test_parameters_registered_in_arena(self):
        arena = ParameterArena()
        tree = build_tree(arena=arena)

        assert len(arena.handles("duelist")) == tree.node_count
        assert arena.get(tree.handle("low_hp"), "primary_threshold") == 30.0

    def test_arena_write_invalidates_node_cache(self, clock):
        arena = ParameterArena()
        tree = build_tree(arena=arena)
        tree.tick(Observation(self_hp=20.0), clock)
        low_hp = tree.find("low_hp")
        assert low_hp.has_cached_result

        arena.set(tree.handle("low_hp"), "primary_threshold", 10.0)

        assert not low_hp.has_cached_result

    def test_tick_reports_to_telemetry(self, clock, actuator):
        aggregator = TelemetryAggregator()
        tree = build_tree(telemetry=aggregator)
        tree.initialize(actuator)

        assert tree.tick(Observation(self_hp=20.0), clock) == S

        telemetry = aggregator["duelist"]
        assert telemetry.total_executions == 1
        assert telemetry.success_count == 1
        assert telemetry.node_stats["low_hp"].success_count == 1
        assert telemetry.branch_patterns["root"].selections == {0: 1}
        assert tree.last_result == S

    def test_to_dict(self, clock):
        tree = build_tree()
        tree.tick(Observation(self_hp=90.0), clock)

        data = tree.to_dict()

        assert data["tree_id"] == "duelist"
        assert data["tick_count"] == 1
        assert data["last_result"] == "failure"
        assert len(data["nodes"]) == 5

    def test_telemetry_history_uses_logical_time(self, clock, actuator):
        aggregator = TelemetryAggregator()
        tree = build_tree(telemetry=aggregator)
        tree.initialize(actuator)

        tree.tick(Observation(self_hp=20.0), clock)
        clock.advance(30)
        tree.tick(Observation(self_hp=20.0), clock)

        history = aggregator["duelist"].history
        assert [s.timestamp for s in history] == [0.0, pytest.approx(30 * clock.dt)]


class TestEpisodeReset:

    def test_plain_reset_keeps_statistics(self, clock):
        tree = build_tree()
        tree.tick(Observation(self_hp=20.0), clock)

        tree.reset()

        assert tree.find("low_hp").metadata.execution_count == 1
        assert tree.last_result is None

    def test_statistics_reset_clears_every_node(self, clock, actuator):
        aggregator = TelemetryAggregator()
        tree = build_tree(telemetry=aggregator)
        tree.initialize(actuator)
        tree.tick(Observation(self_hp=20.0), clock)
        assert tree.find("low_hp").has_cached_result

        tree.reset(reset_statistics=True)

        assert all(n.metadata.execution_count == 0 for n in tree.nodes())
        assert not tree.find("low_hp").has_cached_result
        assert aggregator["duelist"].total_executions == 1
