"""
bt_tuner - self-instrumenting behavior trees for combat agents.

The core (``bt_tuner.core``) evaluates composable decision nodes whose
parameters live in a shared arena. Around it sit telemetry, a threshold
monitor, a statistical analyzer and a parameter optimizer that writes
tuned values back through the arena.
"""
from .version import __version__

__all__ = ["__version__"]
