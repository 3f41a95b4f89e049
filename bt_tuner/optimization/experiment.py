"""
A/B testing of two parameter vectors on one tree.

The runner alternates the tree between the two vectors four times over
the test duration, attributes each newly collected engine metric to
whichever group is live, and on completion compares mean efficiency of
the groups. Metrics collected at or before a switch are left out.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from ..analysis.statistics import two_sample_t_test
from ..events import EventBus, EventType
from .space import PerformanceMetric

logger = logging.getLogger(__name__)

SWITCHES_PER_TEST = 4


class ExperimentGroup(str, Enum):
    A = "group_a"
    B = "group_b"


@dataclass
class ExperimentSession:
    """An A/B test in progress."""
    test_name: str
    tree_id: str
    start_time: float
    duration: float
    params_a: List[float]
    params_b: List[float]
    current_group: ExperimentGroup = ExperimentGroup.A
    switch_count: int = 0
    metrics_a: List[PerformanceMetric] = field(default_factory=list)
    metrics_b: List[PerformanceMetric] = field(default_factory=list)
    last_switch_time: Optional[float] = None
    last_recorded_time: Optional[float] = None

    def __post_init__(self):
        if self.last_switch_time is None:
            self.last_switch_time = self.start_time

    @property
    def switch_interval(self) -> float:
        return self.duration / SWITCHES_PER_TEST

    @property
    def current_params(self) -> List[float]:
        return self.params_a if self.current_group == ExperimentGroup.A else self.params_b

    def elapsed(self, now: float) -> float:
        return now - self.start_time

    def due_for_switch(self, now: float) -> bool:
        return self.elapsed(now) >= (self.switch_count + 1) * self.switch_interval

    def is_complete(self, now: float) -> bool:
        return self.elapsed(now) >= self.duration

    def switch(self, now: Optional[float] = None) -> ExperimentGroup:
        self.current_group = ExperimentGroup.B if self.current_group == ExperimentGroup.A else ExperimentGroup.A
        self.switch_count += 1
        if now is not None:
            self.last_switch_time = now
        return self.current_group

    def accepts(self, metric: PerformanceMetric) -> bool:
        """
        A metric counts once, and only when it was collected after the
        live group's parameters went in.
        """
        if metric.timestamp <= self.last_switch_time:
            return False
        return self.last_recorded_time is None or metric.timestamp > self.last_recorded_time

    def record(self, metric: PerformanceMetric) -> bool:
        """Attribute ``metric`` to the live group; False when it was skipped."""
        if not self.accepts(metric):
            return False
        if self.current_group == ExperimentGroup.A:
            self.metrics_a.append(metric)
        else:
            self.metrics_b.append(metric)
        self.last_recorded_time = metric.timestamp
        return True

    def to_dict(self) -> Dict:
        return {
            "test_name": self.test_name,
            "tree_id": self.tree_id,
            "start_time": self.start_time,
            "duration": self.duration,
            "current_group": self.current_group.value,
            "switch_count": self.switch_count,
            "samples_a": len(self.metrics_a),
            "samples_b": len(self.metrics_b),
        }


@dataclass
class ExperimentResult:
    test_name: str
    tree_id: str
    mean_a: float
    mean_b: float
    variance_a: float
    variance_b: float
    sample_size_a: int
    sample_size_b: int
    winner: Optional[ExperimentGroup]
    improvement_percentage: float
    is_significant: bool
    winning_params: List[float] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "test_name": self.test_name,
            "tree_id": self.tree_id,
            "mean_a": self.mean_a,
            "mean_b": self.mean_b,
            "variance_a": self.variance_a,
            "variance_b": self.variance_b,
            "sample_size_a": self.sample_size_a,
            "sample_size_b": self.sample_size_b,
            "winner": self.winner.value if self.winner else None,
            "improvement_percentage": self.improvement_percentage,
            "is_significant": self.is_significant,
            "winning_params": list(self.winning_params),
        }


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _variance(values: List[float]) -> float:
    if not values:
        return 0.0
    m = _mean(values)
    return sum((v - m) ** 2 for v in values) / len(values)


def analyze_experiment(session: ExperimentSession, critical_value: float = 2.0) -> ExperimentResult:
    """Compare the groups' efficiency samples."""
    a = [m.efficiency for m in session.metrics_a]
    b = [m.efficiency for m in session.metrics_b]
    mean_a, mean_b = _mean(a), _mean(b)

    if mean_a > mean_b:
        winner, best, worst, params = ExperimentGroup.A, mean_a, mean_b, session.params_a
    elif mean_b > mean_a:
        winner, best, worst, params = ExperimentGroup.B, mean_b, mean_a, session.params_b
    else:
        winner, best, worst, params = None, mean_a, mean_b, []

    improvement = (best - worst) / worst * 100.0 if winner is not None and worst != 0 else 0.0

    return ExperimentResult(
        test_name=session.test_name,
        tree_id=session.tree_id,
        mean_a=mean_a,
        mean_b=mean_b,
        variance_a=_variance(a),
        variance_b=_variance(b),
        sample_size_a=len(a),
        sample_size_b=len(b),
        winner=winner,
        improvement_percentage=improvement,
        is_significant=two_sample_t_test(a, b, critical_value),
        winning_params=list(params),
    )


class ABTestRunner:
    """
    Runs A/B sessions on behalf of an ``OptimizationEngine``.

    The engine supplies ``apply_parameters(tree_id, vector)`` and
    ``latest_metric(tree_id)``.
    """

    def __init__(self, engine, events: Optional[EventBus] = None, critical_value: float = 2.0):
        self.engine = engine
        self.events = events
        self.critical_value = critical_value
        self._sessions: Dict[str, ExperimentSession] = {}
        self._results: List[ExperimentResult] = []

    def start(
        self,
        tree_id: str,
        test_name: str,
        params_a: List[float],
        params_b: List[float],
        duration: float,
        now: float,
    ) -> ExperimentSession:
        """
        Start a test and switch the tree to group A.

        Raises:
            ValueError: A test with this name is already running
        """
        if test_name in self._sessions:
            raise ValueError(f"A/B test {test_name!r} is already running")

        session = ExperimentSession(
            test_name=test_name,
            tree_id=tree_id,
            start_time=now,
            duration=duration,
            params_a=list(params_a),
            params_b=list(params_b),
        )
        self.engine.apply_parameters(tree_id, session.params_a)
        self._sessions[test_name] = session
        logger.info(f"A/B test {test_name} started on {tree_id} ({duration:.0f}s)")
        return session

    def update(self, now: float) -> List[ExperimentResult]:
        """Advance every session; returns the results of sessions that finished."""
        finished: List[ExperimentResult] = []
        for name, session in list(self._sessions.items()):
            if session.due_for_switch(now) and not session.is_complete(now):
                group = session.switch(now)
                self.engine.apply_parameters(session.tree_id, session.current_params)
                logger.debug(f"A/B test {name}: switched to {group.value}")

            metric = self.engine.latest_metric(session.tree_id)
            if metric is not None:
                session.record(metric)

            if session.is_complete(now):
                del self._sessions[name]
                finished.append(self._complete(session))
        return finished

    def _complete(self, session: ExperimentSession) -> ExperimentResult:
        result = analyze_experiment(session, self.critical_value)
        self._results.append(result)

        if result.winner is not None:
            self.engine.apply_parameters(session.tree_id, result.winning_params)

        winner = result.winner.value if result.winner else "none"
        logger.info(
            f"A/B test {session.test_name} completed: winner={winner}, "
            f"improvement={result.improvement_percentage:.1f}%, significant={result.is_significant}"
        )
        if self.events is not None:
            self.events.emit(EventType.EXPERIMENT_COMPLETED, session.tree_id, result)
        return result

    def active(self) -> List[ExperimentSession]:
        return list(self._sessions.values())

    def results(self) -> List[ExperimentResult]:
        return list(self._results)
