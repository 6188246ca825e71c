"""
Typed notification stream shared by promptlab components.
"""

from promptlab.events.event_bus import (
    PAYLOAD_TYPES,
    AnomaliesDetectedPayload,
    ComponentType,
    Event,
    EventBus,
    EventHandler,
    EventType,
    ExecutionRecordedPayload,
    ExperimentAutoOptimizedPayload,
    ExperimentCompletedPayload,
    ExperimentExecutionRecordedPayload,
    ExperimentLifecyclePayload,
    MetricRegisteredPayload,
    OptimizationAnalyzedPayload,
    OptimizationAppliedPayload,
    PatternRegisteredPayload,
    StorageErrorPayload,
    StrategyRegisteredPayload,
    Subscription,
    TrafficAdjustedPayload,
    VariantAssignedPayload,
    create_event,
)

__all__ = [
    "PAYLOAD_TYPES",
    "AnomaliesDetectedPayload",
    "ComponentType",
    "Event",
    "EventBus",
    "EventHandler",
    "EventType",
    "ExecutionRecordedPayload",
    "ExperimentAutoOptimizedPayload",
    "ExperimentCompletedPayload",
    "ExperimentExecutionRecordedPayload",
    "ExperimentLifecyclePayload",
    "MetricRegisteredPayload",
    "OptimizationAnalyzedPayload",
    "OptimizationAppliedPayload",
    "PatternRegisteredPayload",
    "StorageErrorPayload",
    "StrategyRegisteredPayload",
    "Subscription",
    "TrafficAdjustedPayload",
    "VariantAssignedPayload",
    "create_event",
]
