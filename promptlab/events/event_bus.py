"""
Event bus for promptlab components.

Events form a closed set of kinds, each bound to exactly one payload
dataclass. ``create_event`` rejects a payload of the wrong type, so
subscribers can rely on the payload shape for the kind they subscribed to.

Event kinds:
- Analytics: execution recorded, anomalies detected, metric registered
- Experiments: created, started, paused, completed, auto-optimized, variant
  assigned, execution recorded, traffic adjusted
- Optimization: strategy registered, pattern registered, analyzed, applied
- Storage: persistence failure
"""

from __future__ import annotations

import threading
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Deque, Dict, List, Optional, Type

from promptlab.logging import get_component_logger

if TYPE_CHECKING:
    from promptlab.experiments.schemas import ExperimentResult
    from promptlab.optimization.schemas import OptimizationResult
    from promptlab.telemetry.schemas import AnomalyRecord, ExecutionRecord

log = get_component_logger("events")


class EventType(Enum):
    """Closed set of notification kinds."""

    EXECUTION_RECORDED = "execution_recorded"
    ANOMALIES_DETECTED = "anomalies_detected"
    METRIC_REGISTERED = "metric_registered"
    EXPERIMENT_CREATED = "experiment_created"
    EXPERIMENT_STARTED = "experiment_started"
    EXPERIMENT_PAUSED = "experiment_paused"
    EXPERIMENT_COMPLETED = "experiment_completed"
    EXPERIMENT_AUTO_OPTIMIZED = "experiment_auto_optimized"
    VARIANT_ASSIGNED = "variant_assigned"
    EXPERIMENT_EXECUTION_RECORDED = "experiment_execution_recorded"
    TRAFFIC_ADJUSTED = "traffic_adjusted"
    STRATEGY_REGISTERED = "strategy_registered"
    PATTERN_REGISTERED = "pattern_registered"
    OPTIMIZATION_ANALYZED = "optimization_analyzed"
    OPTIMIZATION_APPLIED = "optimization_applied"
    STORAGE_ERROR = "storage_error"


class ComponentType(Enum):
    """Components that publish events."""

    ANALYTICS = "analytics"
    EXPERIMENTS = "experiments"
    OPTIMIZATION = "optimization"


# =============================================================================
# Payloads
# =============================================================================


@dataclass(frozen=True)
class ExecutionRecordedPayload:
    template_id: str
    record: "ExecutionRecord"


@dataclass(frozen=True)
class AnomaliesDetectedPayload:
    template_id: str
    anomalies: List["AnomalyRecord"]


@dataclass(frozen=True)
class MetricRegisteredPayload:
    name: str
    unit: str
    higher_is_better: bool


@dataclass(frozen=True)
class ExperimentLifecyclePayload:
    """Shared by created, started and paused events."""

    experiment_id: str
    name: str
    status: str


@dataclass(frozen=True)
class ExperimentCompletedPayload:
    experiment_id: str
    result: "ExperimentResult"


@dataclass(frozen=True)
class ExperimentAutoOptimizedPayload:
    experiment_id: str
    winner_id: str
    significance: float


@dataclass(frozen=True)
class VariantAssignedPayload:
    experiment_id: str
    subject_id: str
    variant_id: str


@dataclass(frozen=True)
class ExperimentExecutionRecordedPayload:
    experiment_id: str
    variant_id: str
    record: "ExecutionRecord"


@dataclass(frozen=True)
class TrafficAdjustedPayload:
    experiment_id: str
    weights: Dict[str, float]


@dataclass(frozen=True)
class StrategyRegisteredPayload:
    strategy_id: str
    name: str


@dataclass(frozen=True)
class PatternRegisteredPayload:
    name: str


@dataclass(frozen=True)
class OptimizationAnalyzedPayload:
    template_id: str
    result: "OptimizationResult"


@dataclass(frozen=True)
class OptimizationAppliedPayload:
    template_id: str
    recommendation_id: str
    recommendation_type: str
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StorageErrorPayload:
    operation: str
    key: Optional[str]
    error: str


PAYLOAD_TYPES: Dict[EventType, Type[Any]] = {
    EventType.EXECUTION_RECORDED: ExecutionRecordedPayload,
    EventType.ANOMALIES_DETECTED: AnomaliesDetectedPayload,
    EventType.METRIC_REGISTERED: MetricRegisteredPayload,
    EventType.EXPERIMENT_CREATED: ExperimentLifecyclePayload,
    EventType.EXPERIMENT_STARTED: ExperimentLifecyclePayload,
    EventType.EXPERIMENT_PAUSED: ExperimentLifecyclePayload,
    EventType.EXPERIMENT_COMPLETED: ExperimentCompletedPayload,
    EventType.EXPERIMENT_AUTO_OPTIMIZED: ExperimentAutoOptimizedPayload,
    EventType.VARIANT_ASSIGNED: VariantAssignedPayload,
    EventType.EXPERIMENT_EXECUTION_RECORDED: ExperimentExecutionRecordedPayload,
    EventType.TRAFFIC_ADJUSTED: TrafficAdjustedPayload,
    EventType.STRATEGY_REGISTERED: StrategyRegisteredPayload,
    EventType.PATTERN_REGISTERED: PatternRegisteredPayload,
    EventType.OPTIMIZATION_ANALYZED: OptimizationAnalyzedPayload,
    EventType.OPTIMIZATION_APPLIED: OptimizationAppliedPayload,
    EventType.STORAGE_ERROR: StorageErrorPayload,
}


@dataclass(frozen=True)
class Event:
    """An event published on the bus."""

    event_id: str
    event_type: EventType
    source_component: ComponentType
    timestamp: datetime
    payload: Any

    def to_dict(self) -> Dict[str, Any]:
        """Serialize event metadata (payload is referenced by type name)."""
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "source_component": self.source_component.value,
            "timestamp": self.timestamp.isoformat(),
            "payload_type": type(self.payload).__name__,
        }


EventHandler = Callable[[Event], None]


@dataclass
class Subscription:
    """A subscription to events."""

    subscription_id: str
    event_type: EventType
    handler: EventHandler
    created_at: datetime = field(default_factory=datetime.now)


class EventBus:
    """Publish/subscribe bus shared by analytics, experiments and optimization.

    Handler failures are logged and never prevent delivery to the remaining
    subscribers.

    Example:
        >>> bus = EventBus()
        >>> bus.subscribe(EventType.PATTERN_REGISTERED, lambda e: print(e.payload.name))
        >>> bus.publish(create_event(
        ...     EventType.PATTERN_REGISTERED,
        ...     ComponentType.OPTIMIZATION,
        ...     PatternRegisteredPayload(name="vague-instructions"),
        ... ))
    """

    def __init__(self, max_history: int = 1000):
        self._subscriptions: Dict[EventType, List[Subscription]] = defaultdict(list)
        self._history: Deque[Event] = deque(maxlen=max_history)
        self._lock = threading.RLock()

    def subscribe(self, event_type: EventType, handler: EventHandler) -> str:
        """Subscribe to events of a specific type.

        Returns:
            Subscription ID that can be used to unsubscribe
        """
        subscription_id = f"sub_{uuid.uuid4().hex[:12]}"
        with self._lock:
            self._subscriptions[event_type].append(
                Subscription(
                    subscription_id=subscription_id,
                    event_type=event_type,
                    handler=handler,
                )
            )
        return subscription_id

    def subscribe_all(self, handler: EventHandler) -> List[str]:
        """Subscribe to every event type."""
        return [self.subscribe(event_type, handler) for event_type in EventType]

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription. Returns True if it existed."""
        with self._lock:
            for subscriptions in self._subscriptions.values():
                for i, sub in enumerate(subscriptions):
                    if sub.subscription_id == subscription_id:
                        subscriptions.pop(i)
                        return True
        return False

    def publish(self, event: Event) -> int:
        """Publish an event to all subscribers.

        Returns:
            Number of handlers that received the event
        """
        with self._lock:
            self._history.append(event)
            subscriptions = list(self._subscriptions.get(event.event_type, []))

        handlers_called = 0
        for subscription in subscriptions:
            try:
                subscription.handler(event)
                handlers_called += 1
            except Exception as e:
                log.error(
                    f"Handler {subscription.subscription_id} failed on "
                    f"{event.event_type.value}: {e}"
                )
        return handlers_called

    def emit(self, event_type: EventType, source: ComponentType, payload: Any) -> int:
        """Create and publish an event in one step."""
        return self.publish(create_event(event_type, source, payload))

    def get_history(
        self, event_type: Optional[EventType] = None, limit: Optional[int] = None
    ) -> List[Event]:
        """Get published events, oldest first."""
        with self._lock:
            events = list(self._history)
        if event_type is not None:
            events = [e for e in events if e.event_type == event_type]
        if limit is not None:
            events = events[-limit:]
        return events

    def get_subscription_count(self, event_type: Optional[EventType] = None) -> int:
        with self._lock:
            if event_type is not None:
                return len(self._subscriptions.get(event_type, []))
            return sum(len(subs) for subs in self._subscriptions.values())

    def clear(self) -> None:
        """Detach all subscribers and drop history."""
        with self._lock:
            self._subscriptions.clear()
            self._history.clear()


def create_event(
    event_type: EventType, source_component: ComponentType, payload: Any
) -> Event:
    """Factory function to create an Event.

    Raises:
        TypeError: If the payload is not the type bound to ``event_type``
    """
    expected = PAYLOAD_TYPES[event_type]
    if not isinstance(payload, expected):
        raise TypeError(
            f"{event_type.value} expects {expected.__name__}, "
            f"got {type(payload).__name__}"
        )
    return Event(
        event_id=f"evt_{uuid.uuid4().hex[:12]}",
        event_type=event_type,
        source_component=source_component,
        timestamp=datetime.now(),
        payload=payload,
    )
