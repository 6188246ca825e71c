"""
A/B experiments over prompt template variants.
"""

from promptlab.experiments.schemas import (
    ALLOWED_TRANSITIONS,
    AllocationMethod,
    Experiment,
    ExperimentDefinition,
    ExperimentResult,
    ExperimentStatus,
    ResultStatus,
    Variant,
    VariantStatistics,
    can_transition,
    validate_transition,
)
from promptlab.experiments.storage import (
    ExperimentStore,
    InMemoryExperimentStore,
    JsonFileExperimentStore,
    SqlAlchemyExperimentStore,
)
from promptlab.experiments.monitor import ExperimentMonitor
from promptlab.experiments.manager import ExperimentManager

__all__ = [
    "ALLOWED_TRANSITIONS",
    "AllocationMethod",
    "Experiment",
    "ExperimentDefinition",
    "ExperimentManager",
    "ExperimentMonitor",
    "ExperimentResult",
    "ExperimentStatus",
    "ExperimentStore",
    "InMemoryExperimentStore",
    "JsonFileExperimentStore",
    "ResultStatus",
    "SqlAlchemyExperimentStore",
    "Variant",
    "VariantStatistics",
    "can_transition",
    "validate_transition",
]
