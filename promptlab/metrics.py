"""
Metric definitions with unit and directionality.

Every metric, built-in or registered at runtime, declares whether higher
values are better. Analytics trends, experiment winner selection and
optimization projections all read directionality from here.
"""

from __future__ import annotations

import math
import statistics
import threading
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Sequence, Union

from promptlab.errors import ValidationError

if TYPE_CHECKING:
    from promptlab.telemetry.schemas import ExecutionRecord

MetricCalculator = Callable[[Sequence["ExecutionRecord"]], Optional[float]]


@dataclass(frozen=True)
class MetricDefinition:
    """A named aggregate over execution records."""

    name: str
    unit: str
    higher_is_better: bool
    calculator: MetricCalculator
    description: str = ""
    builtin: bool = False

    def compute(self, records: Sequence[ExecutionRecord]) -> Optional[float]:
        if not records:
            return None
        return self.calculator(records)


def percentile(sorted_values: Sequence[float], pct: float) -> float:
    """Linear-interpolated percentile of already sorted values."""
    if not sorted_values:
        return 0.0
    if len(sorted_values) == 1:
        return float(sorted_values[0])
    rank = (len(sorted_values) - 1) * pct / 100.0
    lower = math.floor(rank)
    upper = math.ceil(rank)
    if lower == upper:
        return float(sorted_values[lower])
    fraction = rank - lower
    return sorted_values[lower] + (sorted_values[upper] - sorted_values[lower]) * fraction


def latency_stability(records: Sequence[ExecutionRecord]) -> Optional[float]:
    """1 - coefficient of variation of latency, floored at 0."""
    if len(records) < 2:
        return None
    values = [r.response_time_ms for r in records]
    mean = statistics.mean(values)
    if mean == 0:
        return 1.0
    return max(0.0, 1.0 - statistics.stdev(values) / mean)


def _avg_response_time(records: Sequence[ExecutionRecord]) -> float:
    return statistics.mean(r.response_time_ms for r in records)


def _p95_response_time(records: Sequence[ExecutionRecord]) -> float:
    return percentile(sorted(r.response_time_ms for r in records), 95)


def _success_rate(records: Sequence[ExecutionRecord]) -> float:
    return sum(1 for r in records if r.success) / len(records)


def _error_rate(records: Sequence[ExecutionRecord]) -> float:
    return sum(1 for r in records if not r.success) / len(records)


def _avg_token_usage(records: Sequence[ExecutionRecord]) -> float:
    return statistics.mean(r.token_usage.total for r in records)


def _avg_cost(records: Sequence[ExecutionRecord]) -> float:
    return statistics.mean(r.cost for r in records)


def _total_cost(records: Sequence[ExecutionRecord]) -> float:
    return sum(r.cost for r in records)


def _quality_score(records: Sequence[ExecutionRecord]) -> Optional[float]:
    scores = [r.quality_score for r in records if r.quality_score is not None]
    return statistics.mean(scores) if scores else None


def _total_executions(records: Sequence[ExecutionRecord]) -> float:
    return float(len(records))


BUILTIN_METRICS: List[MetricDefinition] = [
    MetricDefinition(
        name="avg_response_time",
        unit="ms",
        higher_is_better=False,
        calculator=_avg_response_time,
        description="Mean response latency",
        builtin=True,
    ),
    MetricDefinition(
        name="p95_response_time",
        unit="ms",
        higher_is_better=False,
        calculator=_p95_response_time,
        description="95th percentile response latency",
        builtin=True,
    ),
    MetricDefinition(
        name="success_rate",
        unit="ratio",
        higher_is_better=True,
        calculator=_success_rate,
        description="Fraction of successful executions",
        builtin=True,
    ),
    MetricDefinition(
        name="error_rate",
        unit="ratio",
        higher_is_better=False,
        calculator=_error_rate,
        description="Fraction of failed executions",
        builtin=True,
    ),
    MetricDefinition(
        name="avg_token_usage",
        unit="tokens",
        higher_is_better=False,
        calculator=_avg_token_usage,
        description="Mean total tokens per execution",
        builtin=True,
    ),
    MetricDefinition(
        name="avg_cost",
        unit="usd",
        higher_is_better=False,
        calculator=_avg_cost,
        description="Mean cost per execution",
        builtin=True,
    ),
    MetricDefinition(
        name="total_cost",
        unit="usd",
        higher_is_better=False,
        calculator=_total_cost,
        description="Summed cost",
        builtin=True,
    ),
    MetricDefinition(
        name="quality_score",
        unit="score",
        higher_is_better=True,
        calculator=_quality_score,
        description="Mean quality score of scored executions",
        builtin=True,
    ),
    MetricDefinition(
        name="total_executions",
        unit="count",
        higher_is_better=True,
        calculator=_total_executions,
        description="Number of executions",
        builtin=True,
    ),
    MetricDefinition(
        name="stability",
        unit="ratio",
        higher_is_better=True,
        calculator=latency_stability,
        description="Latency consistency",
        builtin=True,
    ),
]


class TargetMetric(Enum):
    """Per-execution metrics an experiment can optimize."""

    SUCCESS_RATE = "success_rate"
    RESPONSE_TIME = "response_time"
    TOKEN_USAGE = "token_usage"
    COST = "cost"
    QUALITY_SCORE = "quality_score"

    @property
    def higher_is_better(self) -> bool:
        return self in (TargetMetric.SUCCESS_RATE, TargetMetric.QUALITY_SCORE)

    @property
    def summary_metric(self) -> str:
        """Name of the matching aggregate in a performance summary."""
        return _SUMMARY_NAMES[self]

    def extract(self, record: ExecutionRecord) -> Optional[float]:
        """Value of this metric for one execution (None when not measured)."""
        if self is TargetMetric.SUCCESS_RATE:
            return 1.0 if record.success else 0.0
        if self is TargetMetric.RESPONSE_TIME:
            return float(record.response_time_ms)
        if self is TargetMetric.TOKEN_USAGE:
            return float(record.token_usage.total)
        if self is TargetMetric.COST:
            return float(record.cost)
        if record.quality_score is None:
            return None
        return float(record.quality_score)

    @classmethod
    def parse(cls, value: Union[TargetMetric, str]) -> TargetMetric:
        if isinstance(value, TargetMetric):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(f"Unknown target metric: {value}", field="target_metric")


_SUMMARY_NAMES = {
    TargetMetric.SUCCESS_RATE: "success_rate",
    TargetMetric.RESPONSE_TIME: "avg_response_time",
    TargetMetric.TOKEN_USAGE: "avg_token_usage",
    TargetMetric.COST: "avg_cost",
    TargetMetric.QUALITY_SCORE: "quality_score",
}


class MetricRegistry:
    """Built-in and custom metric definitions, keyed by name."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._metrics: Dict[str, MetricDefinition] = {m.name: m for m in BUILTIN_METRICS}

    def register(self, definition: MetricDefinition) -> MetricDefinition:
        """Add a custom metric.

        Raises:
            ValidationError: If the name is empty or already registered
        """
        if not definition.name:
            raise ValidationError("Metric name must not be empty", field="name")
        with self._lock:
            if definition.name in self._metrics:
                raise ValidationError(
                    f"Metric already registered: {definition.name}", field="name"
                )
            self._metrics[definition.name] = definition
        return definition

    def get(self, name: str) -> MetricDefinition:
        with self._lock:
            definition = self._metrics.get(name)
        if definition is None:
            raise ValidationError(f"Unknown metric: {name}", field="metric")
        return definition

    def has(self, name: str) -> bool:
        with self._lock:
            return name in self._metrics

    def higher_is_better(self, name: str) -> bool:
        return self.get(name).higher_is_better

    def custom(self) -> List[MetricDefinition]:
        with self._lock:
            return [m for m in self._metrics.values() if not m.builtin]

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._metrics)

    def reset(self) -> None:
        """Drop custom metrics."""
        with self._lock:
            self._metrics = {m.name: m for m in BUILTIN_METRICS}
