"""
Data schemas for A/B experiments.

Contains the experiment status machine, variant and experiment definitions
and the analysis result types.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from promptlab.errors import InvalidTransitionError, NotFoundError
from promptlab.metrics import TargetMetric


# =============================================================================
# Enums
# =============================================================================


class ExperimentStatus(Enum):
    """Lifecycle status of an experiment."""

    DRAFT = "draft"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self is ExperimentStatus.COMPLETED


ALLOWED_TRANSITIONS: Dict[ExperimentStatus, FrozenSet[ExperimentStatus]] = {
    ExperimentStatus.DRAFT: frozenset({ExperimentStatus.RUNNING}),
    ExperimentStatus.RUNNING: frozenset(
        {ExperimentStatus.PAUSED, ExperimentStatus.COMPLETED}
    ),
    ExperimentStatus.PAUSED: frozenset(
        {ExperimentStatus.RUNNING, ExperimentStatus.COMPLETED}
    ),
    ExperimentStatus.COMPLETED: frozenset(),
}


def can_transition(current: ExperimentStatus, target: ExperimentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def validate_transition(
    experiment_id: str, current: ExperimentStatus, target: ExperimentStatus
) -> None:
    """Raise InvalidTransitionError unless ``current -> target`` is allowed."""
    if not can_transition(current, target):
        raise InvalidTransitionError(experiment_id, current.value, target.value)


class AllocationMethod(Enum):
    """Traffic allocation policies."""

    WEIGHTED_RANDOM = "weighted_random"
    DETERMINISTIC_HASH = "deterministic_hash"
    ROUND_ROBIN = "round_robin"


class ResultStatus(Enum):
    """Outcome of an experiment analysis."""

    INSUFFICIENT_DATA = "insufficient_data"
    NO_WINNER = "no_winner"
    WINNER_FOUND = "winner_found"


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class Variant:
    """One treatment arm of an experiment.

    Attributes:
        id: Variant identifier, unique within the experiment
        name: Human-readable name
        template_id: Template this arm executes
        template_version: Version of the template
        weight: Traffic share in percent (0-100)
        is_control: Whether this is the baseline arm
        metadata: Free-form data
    """

    id: str
    name: str
    template_id: str
    template_version: str = "1.0.0"
    weight: float = 50.0
    is_control: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "template_id": self.template_id,
            "template_version": self.template_version,
            "weight": self.weight,
            "is_control": self.is_control,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Variant":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            template_id=data["template_id"],
            template_version=data.get("template_version", "1.0.0"),
            weight=float(data.get("weight", 0.0)),
            is_control=bool(data.get("is_control", False)),
            metadata=dict(data.get("metadata", {})),
        )


@dataclass
class ExperimentDefinition:
    """Input to ``ExperimentManager.create_test``.

    Optional fields fall back to the manager's configuration.
    """

    name: str
    variants: List[Variant]
    target_metric: Any = TargetMetric.SUCCESS_RATE
    minimum_sample_size: Optional[int] = None
    confidence_level: Optional[float] = None
    description: str = ""
    created_by: Optional[str] = None
    allocation_method: Optional[AllocationMethod] = None
    minimum_duration_hours: Optional[float] = None
    enable_auto_optimization: Optional[bool] = None
    enable_bandit: Optional[bool] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class VariantStatistics:
    """Target-metric statistics for one variant."""

    variant_id: str
    sample_size: int
    mean: float
    std_dev: float
    confidence_interval: Tuple[float, float]
    improvement: Optional[float] = None
    meets_minimum: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "variant_id": self.variant_id,
            "sample_size": self.sample_size,
            "mean": self.mean,
            "std_dev": self.std_dev,
            "confidence_interval": list(self.confidence_interval),
            "improvement": self.improvement,
            "meets_minimum": self.meets_minimum,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VariantStatistics":
        low, high = data["confidence_interval"]
        return cls(
            variant_id=data["variant_id"],
            sample_size=int(data["sample_size"]),
            mean=float(data["mean"]),
            std_dev=float(data["std_dev"]),
            confidence_interval=(float(low), float(high)),
            improvement=data.get("improvement"),
            meets_minimum=bool(data.get("meets_minimum", False)),
        )


@dataclass
class ExperimentResult:
    """Analysis of an experiment at a point in time."""

    experiment_id: str
    status: ResultStatus
    variant_statistics: Dict[str, VariantStatistics] = field(default_factory=dict)
    winner_id: Optional[str] = None
    statistical_significance: float = 0.0
    recommended_action: str = ""
    analyzed_at: datetime = field(default_factory=datetime.now)

    @property
    def winner_improvement(self) -> Optional[float]:
        if self.winner_id is None:
            return None
        stats = self.variant_statistics.get(self.winner_id)
        return stats.improvement if stats else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "experiment_id": self.experiment_id,
            "status": self.status.value,
            "variant_statistics": {
                k: v.to_dict() for k, v in self.variant_statistics.items()
            },
            "winner_id": self.winner_id,
            "statistical_significance": self.statistical_significance,
            "recommended_action": self.recommended_action,
            "analyzed_at": self.analyzed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExperimentResult":
        return cls(
            experiment_id=data["experiment_id"],
            status=ResultStatus(data["status"]),
            variant_statistics={
                k: VariantStatistics.from_dict(v)
                for k, v in data.get("variant_statistics", {}).items()
            },
            winner_id=data.get("winner_id"),
            statistical_significance=float(data.get("statistical_significance", 0.0)),
            recommended_action=data.get("recommended_action", ""),
            analyzed_at=datetime.fromisoformat(data["analyzed_at"]),
        )


@dataclass
class Experiment:
    """An A/B experiment over template variants."""

    id: str
    name: str
    variants: List[Variant]
    target_metric: TargetMetric
    minimum_sample_size: int
    confidence_level: float
    allocation_method: AllocationMethod
    minimum_duration_hours: float
    enable_auto_optimization: bool = True
    enable_bandit: bool = False
    status: ExperimentStatus = ExperimentStatus.DRAFT
    description: str = ""
    created_by: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    result: Optional[ExperimentResult] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def control(self) -> Variant:
        for variant in self.variants:
            if variant.is_control:
                return variant
        raise NotFoundError(f"Experiment {self.id} has no control", "variant", "control")

    def get_variant(self, variant_id: str) -> Optional[Variant]:
        for variant in self.variants:
            if variant.id == variant_id:
                return variant
        return None

    @property
    def template_ids(self) -> List[str]:
        return sorted({v.template_id for v in self.variants})

    def references_template(self, template_id: str) -> bool:
        return any(v.template_id == template_id for v in self.variants)

    @property
    def weights(self) -> Dict[str, float]:
        return {v.id: v.weight for v in self.variants}

    def snapshot(self) -> "Experiment":
        """Deep copy safe to hand to callers and stores."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status.value,
            "variants": [v.to_dict() for v in self.variants],
            "target_metric": self.target_metric.value,
            "minimum_sample_size": self.minimum_sample_size,
            "confidence_level": self.confidence_level,
            "allocation_method": self.allocation_method.value,
            "minimum_duration_hours": self.minimum_duration_hours,
            "enable_auto_optimization": self.enable_auto_optimization,
            "enable_bandit": self.enable_bandit,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "result": self.result.to_dict() if self.result else None,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Experiment":
        """Deserialize from dictionary."""
        start_date = data.get("start_date")
        end_date = data.get("end_date")
        result = data.get("result")
        return cls(
            id=data["id"],
            name=data["name"],
            description=data.get("description", ""),
            status=ExperimentStatus(data["status"]),
            variants=[Variant.from_dict(v) for v in data["variants"]],
            target_metric=TargetMetric(data["target_metric"]),
            minimum_sample_size=int(data["minimum_sample_size"]),
            confidence_level=float(data["confidence_level"]),
            allocation_method=AllocationMethod(
                data.get("allocation_method", AllocationMethod.WEIGHTED_RANDOM.value)
            ),
            minimum_duration_hours=float(data.get("minimum_duration_hours", 24.0)),
            enable_auto_optimization=bool(data.get("enable_auto_optimization", True)),
            enable_bandit=bool(data.get("enable_bandit", False)),
            created_by=data.get("created_by"),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            start_date=datetime.fromisoformat(start_date) if start_date else None,
            end_date=datetime.fromisoformat(end_date) if end_date else None,
            result=ExperimentResult.from_dict(result) if result else None,
            metadata=dict(data.get("metadata", {})),
        )
