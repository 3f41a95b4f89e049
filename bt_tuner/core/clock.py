"""
Logical clock for deterministic tree evaluation.

Nodes never read wall time for cache or duration decisions; the host
advances the clock once per tick and passes it into every evaluation.
"""
from __future__ import annotations

from dataclasses import dataclass

DEFAULT_DT = 1.0 / 60.0


@dataclass
class LogicalClock:
    """
    Monotonic tick counter with a fixed step.

    Attributes:
        dt: Seconds of logical time per tick
        tick: Ticks elapsed since creation
    """
    dt: float = DEFAULT_DT
    tick: int = 0

    def __post_init__(self):
        if self.dt <= 0:
            raise ValueError(f"dt must be positive, got {self.dt}")
        self.tick = max(0, int(self.tick))

    def advance(self, n: int = 1) -> int:
        """Advance by ``n`` ticks and return the new tick."""
        if n < 0:
            raise ValueError("LogicalClock cannot move backwards")
        self.tick += n
        return self.tick

    @property
    def time(self) -> float:
        """Logical time in seconds."""
        return self.tick * self.dt

    def elapsed_since(self, tick: int) -> float:
        """Seconds of logical time since ``tick``."""
        return (self.tick - tick) * self.dt
