"""
Output events.

Monitor, analyzer and optimizer publish their results here; external
dashboards and loggers subscribe. Delivery is synchronous and in
subscription order. A failing subscriber is logged and skipped so it can
never break the publisher.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Union

from .metrics import get_metrics

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Events published by the self-instrumenting layer."""

    # Analyzer
    ANALYSIS_COMPLETED = "analysis_completed"
    REGRESSION_DETECTED = "regression_detected"
    RECOMMENDATION_READY = "recommendation_ready"
    VISUALIZATION_DATA_UPDATED = "visualization_data_updated"
    ANALYSIS_REPORT_GENERATED = "analysis_report_generated"

    # Monitor
    PERFORMANCE_ALERT = "performance_alert"
    BOTTLENECK_DETECTED = "bottleneck_detected"
    OPTIMIZATION_REQUESTED = "optimization_requested"

    # Optimizer
    OPTIMIZATION_COMPLETED = "optimization_completed"
    EXPERIMENT_COMPLETED = "experiment_completed"
    PARAMETER_UPDATED = "parameter_updated"


WILDCARD = "*"

Handler = Callable[["Event"], None]


@dataclass
class Event:
    """
    A published event.

    Attributes:
        type: Event type
        source: Tree id or subsystem that produced the event
        payload: Event-specific result object (alert, analysis result, ...)
        timestamp: Wall-clock creation time
    """
    type: EventType
    source: str
    payload: Any = None
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())


class EventBus:
    """
    Minimal synchronous publish/subscribe hub.

    Example:
        >>> bus = EventBus()
        >>> bus.subscribe(EventType.PERFORMANCE_ALERT, lambda e: print(e.payload))
        >>> bus.emit(EventType.PERFORMANCE_ALERT, "System", alert)
    """

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)
        self._emitted = 0

    def subscribe(self, event_type: Union[EventType, str], handler: Handler) -> None:
        """Subscribe to one event type, or to all with ``"*"``."""
        self._handlers[self._key(event_type)].append(handler)

    def unsubscribe(self, event_type: Union[EventType, str], handler: Handler) -> bool:
        """Remove a handler. Returns True if it was subscribed."""
        handlers = self._handlers.get(self._key(event_type), [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def emit(self, event_type: EventType, source: str, payload: Any = None) -> Event:
        """Publish an event to its subscribers and to wildcard subscribers."""
        event = Event(type=event_type, source=source, payload=payload)
        self._emitted += 1
        get_metrics().record_event(event_type.value)

        for handler in list(self._handlers.get(event_type.value, [])) + list(self._handlers.get(WILDCARD, [])):
            try:
                handler(event)
            except Exception as e:
                logger.warning(f"Event handler failed for {event_type.value} from {source}: {e}")
                get_metrics().record_error("events", type(e).__name__)

        return event

    def subscriber_count(self, event_type: Union[EventType, str]) -> int:
        return len(self._handlers.get(self._key(event_type), []))

    @property
    def emitted_count(self) -> int:
        return self._emitted

    def clear(self) -> None:
        self._handlers.clear()

    @staticmethod
    def _key(event_type: Union[EventType, str]) -> str:
        return event_type.value if isinstance(event_type, EventType) else str(event_type)
