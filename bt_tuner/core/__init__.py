"""
Decision core: nodes, composites, the parameter arena and the tree runner.

Every node evaluates to SUCCESS, FAILURE or RUNNING and never raises;
tunable parameters are declared per node type and addressed through
``NodeHandle(tree_id, node_id)``.
"""

from .clock import LogicalClock, DEFAULT_DT
from .node import Node, NodeState, NodeMetadata, CachePolicy
from .parameters import (
    ACTION_SCHEMA,
    CONDITION_SCHEMA,
    MOVEMENT_SCHEMA,
    NodeHandle,
    ParameterArena,
    ParameterRecord,
    ParameterSpec,
)
from .action import ActionNode, ActionStrategy, AttackStrategy, DefendStrategy, DodgeStrategy
from .condition import (
    Comparison,
    ConditionNode,
    ConditionStrategy,
    CooldownRemainingStrategy,
    EnemyDistanceStrategy,
    EnemyHealthStrategy,
    SelfHealthStrategy,
)
from .movement import ChaseStrategy, MovementNode, MovementStrategy, PathfindingType, RetreatStrategy
from .composites import (
    CompositeNode,
    Cooldown,
    Decorator,
    Inverter,
    Parallel,
    RandomSelector,
    Repeater,
    Selector,
    Sequence,
)
from .tree import BehaviorTree

__all__ = [
    # Evaluation
    "LogicalClock",
    "DEFAULT_DT",
    "Node",
    "NodeState",
    "NodeMetadata",
    "CachePolicy",
    "BehaviorTree",

    # Parameters
    "ACTION_SCHEMA",
    "CONDITION_SCHEMA",
    "MOVEMENT_SCHEMA",
    "NodeHandle",
    "ParameterArena",
    "ParameterRecord",
    "ParameterSpec",

    # Leaves
    "ActionNode",
    "ActionStrategy",
    "AttackStrategy",
    "DefendStrategy",
    "DodgeStrategy",
    "Comparison",
    "ConditionNode",
    "ConditionStrategy",
    "CooldownRemainingStrategy",
    "EnemyDistanceStrategy",
    "EnemyHealthStrategy",
    "SelfHealthStrategy",
    "ChaseStrategy",
    "MovementNode",
    "MovementStrategy",
    "PathfindingType",
    "RetreatStrategy",

    # Composites
    "CompositeNode",
    "Cooldown",
    "Decorator",
    "Inverter",
    "Parallel",
    "RandomSelector",
    "Repeater",
    "Selector",
    "Sequence",
]
