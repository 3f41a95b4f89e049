"""
Shared fixtures for the test suite.
"""
import pytest

from bt_tuner.core import LogicalClock
from bt_tuner.metrics import get_metrics
from bt_tuner.types import ActionResult, Observation, Vec3


class RecordingActuator:
    """Actuator that accepts every action and remembers it."""

    def __init__(self, accept: bool = True):
        self.accept = accept
        self.actions = []

    def dispatch(self, action):
        self.actions.append(action)
        if not self.accept:
            return ActionResult.failure(action.type, "rejected")
        return ActionResult.ok(action.type)


@pytest.fixture(autouse=True)
def fresh_metrics():
    get_metrics().reset()
    yield
    get_metrics().reset()


@pytest.fixture
def clock():
    return LogicalClock()


@pytest.fixture
def actuator():
    return RecordingActuator()


@pytest.fixture
def close_observation():
    """Enemy 1.5 units ahead, everything off cooldown."""
    return Observation(
        self_position=Vec3(0.0, 0.0, 0.0),
        enemy_position=Vec3(0.0, 0.0, 1.5),
    )
