"""
Data schemas for the optimization engine.

Recommendations, strategies with their applicability conditions, prompt
patterns, template descriptors and the result of an analysis.
"""

import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Pattern, Union

from promptlab.errors import ValidationError
from promptlab.telemetry.schemas import PerformanceSummary, Priority

ChangeType = Literal[
    "template_modification",
    "parameter_adjustment",
    "model_switch",
    "add_cache",
    "add_fallback",
]
Effort = Literal["low", "medium", "high"]

PRIORITY_ORDER: Dict[str, int] = {"critical": 4, "high": 3, "medium": 2, "low": 1}

VARIABLE_PATTERN = re.compile(r"\{(\w+)\}")


class RecommendationType(Enum):
    """Kinds of optimization recommendations."""

    PROMPT_REFINEMENT = "prompt_refinement"
    MODEL_CHANGE = "model_change"
    PARAMETER_TUNING = "parameter_tuning"
    CACHING = "caching"
    FALLBACK_STRATEGY = "fallback_strategy"


class ComparisonOperator(Enum):
    """Operators usable in strategy conditions."""

    GT = "gt"
    LT = "lt"
    EQ = "eq"
    GTE = "gte"
    LTE = "lte"

    def compare(self, value: float, threshold: float) -> bool:
        if self is ComparisonOperator.GT:
            return value > threshold
        if self is ComparisonOperator.LT:
            return value < threshold
        if self is ComparisonOperator.GTE:
            return value >= threshold
        if self is ComparisonOperator.LTE:
            return value <= threshold
        return math.isclose(value, threshold, rel_tol=1e-9, abs_tol=1e-12)


# =============================================================================
# Templates
# =============================================================================


@dataclass
class PromptTemplate:
    """A prompt template descriptor from the template library.

    Attributes:
        id: Template identifier (matches ``ExecutionRecord.template_id``)
        name: Human-readable name
        template: Text with ``{variable}`` placeholders
        variables: Declared variables; extracted from the text when None
        category: Library category (e.g. "summary", "faq")
        tags: Free-form tags
        version: Template version
        is_active: Whether the template is in use
    """

    id: str
    name: str
    template: str
    variables: Optional[List[str]] = None
    category: str = "general"
    tags: List[str] = field(default_factory=list)
    version: str = "1.0.0"
    is_active: bool = True

    def __post_init__(self) -> None:
        if self.variables is None:
            self.variables = extract_variables(self.template)

    @property
    def estimated_tokens(self) -> float:
        """Rough token estimate (characters / 4)."""
        return len(self.template) / 4

    def render(self, **kwargs: Any) -> str:
        """Render the template with provided variables."""
        result = self.template
        for var, value in kwargs.items():
            result = result.replace(f"{{{var}}}", str(value))
        return result

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "template": self.template,
            "variables": list(self.variables or []),
            "category": self.category,
            "tags": list(self.tags),
            "version": self.version,
            "is_active": self.is_active,
        }


def extract_variables(text: str) -> List[str]:
    """Placeholder names in order of first appearance."""
    seen: List[str] = []
    for name in VARIABLE_PATTERN.findall(text):
        if name not in seen:
            seen.append(name)
    return seen


# =============================================================================
# Recommendations
# =============================================================================


@dataclass
class ExpectedImpact:
    """Expected effect of a recommendation on one metric."""

    metric: str
    current_value: float
    expected_value: float
    improvement_percent: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric": self.metric,
            "current_value": self.current_value,
            "expected_value": self.expected_value,
            "improvement_percent": self.improvement_percent,
        }


@dataclass
class SuggestedChange:
    """A concrete change proposed by a recommendation."""

    type: ChangeType
    description: str
    before: Optional[str] = None
    after: Optional[str] = None
    parameters: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "description": self.description,
            "before": self.before,
            "after": self.after,
            "parameters": dict(self.parameters),
        }


@dataclass
class OptimizationRecommendation:
    """A prioritized, quantified optimization recommendation."""

    id: str
    type: RecommendationType
    priority: Priority
    title: str
    description: str
    rationale: str = ""
    expected_impact: List[ExpectedImpact] = field(default_factory=list)
    suggested_changes: List[SuggestedChange] = field(default_factory=list)
    estimated_effort: Effort = "medium"
    auto_applicable: bool = False
    confidence: float = 0.5
    related_templates: List[str] = field(default_factory=list)

    @property
    def priority_rank(self) -> int:
        return PRIORITY_ORDER[self.priority]

    def validate(self) -> None:
        """Raise ValidationError on an unknown priority or out-of-range confidence."""
        if self.priority not in PRIORITY_ORDER:
            raise ValidationError(f"Unknown priority: {self.priority}", field="priority")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValidationError(
                f"Confidence {self.confidence} is outside [0, 1]", field="confidence"
            )
        if not self.id:
            raise ValidationError("Recommendation id must not be empty", field="id")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "priority": self.priority,
            "title": self.title,
            "description": self.description,
            "rationale": self.rationale,
            "expected_impact": [i.to_dict() for i in self.expected_impact],
            "suggested_changes": [c.to_dict() for c in self.suggested_changes],
            "estimated_effort": self.estimated_effort,
            "auto_applicable": self.auto_applicable,
            "confidence": self.confidence,
            "related_templates": list(self.related_templates),
        }


# =============================================================================
# Strategies & Patterns
# =============================================================================


@dataclass
class OptimizationCondition:
    """``metric <operator> value`` evaluated against a report summary."""

    metric: str
    operator: ComparisonOperator
    value: float

    def evaluate(self, summary: PerformanceSummary) -> bool:
        """False when the metric has no value in the summary."""
        actual = summary.get_metric(self.metric)
        if actual is None:
            return False
        return self.operator.compare(actual, self.value)

    def to_dict(self) -> Dict[str, Any]:
        return {"metric": self.metric, "operator": self.operator.value, "value": self.value}


@dataclass
class SuccessMetric:
    metric: str
    target_value: float


@dataclass
class OptimizationStrategy:
    """A reusable bundle of recommendations gated by conditions."""

    id: str
    name: str
    description: str = ""
    conditions: List[OptimizationCondition] = field(default_factory=list)
    recommendations: List[OptimizationRecommendation] = field(default_factory=list)
    success_metrics: List[SuccessMetric] = field(default_factory=list)

    def applies_to(self, summary: PerformanceSummary) -> bool:
        return all(condition.evaluate(summary) for condition in self.conditions)


@dataclass
class PatternExample:
    bad: str
    good: str


@dataclass
class PromptPattern:
    """A detectable weakness in prompt text.

    ``pattern`` is either a plain substring or a compiled regular expression.
    """

    name: str
    description: str
    pattern: Union[str, Pattern[str]]
    issues: List[str] = field(default_factory=list)
    improvements: List[str] = field(default_factory=list)
    examples: List[PatternExample] = field(default_factory=list)

    def matches(self, text: str) -> bool:
        if isinstance(self.pattern, str):
            return self.pattern in text
        return self.pattern.search(text) is not None


# =============================================================================
# Results
# =============================================================================


@dataclass
class AutomationFailure:
    recommendation_id: str
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {"recommendation_id": self.recommendation_id, "error": self.error}


@dataclass
class AutomationOutcome:
    """Which auto-applicable recommendations were applied, failed or skipped."""

    applied: List[str] = field(default_factory=list)
    failed: List[AutomationFailure] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "applied": list(self.applied),
            "failed": [f.to_dict() for f in self.failed],
            "skipped": list(self.skipped),
        }


@dataclass
class ProjectedImprovement:
    metric: str
    current_value: float
    projected_value: float
    cumulative_improvement: float
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric": self.metric,
            "current_value": self.current_value,
            "projected_value": self.projected_value,
            "cumulative_improvement": self.cumulative_improvement,
            "confidence": self.confidence,
        }


@dataclass
class OptimizationResult:
    """Outcome of one ``analyze_template`` call."""

    template_id: str
    recommendations: List[OptimizationRecommendation] = field(default_factory=list)
    automation: AutomationOutcome = field(default_factory=AutomationOutcome)
    projected_improvements: List[ProjectedImprovement] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)

    def get_projection(self, metric: str) -> Optional[ProjectedImprovement]:
        for projection in self.projected_improvements:
            if projection.metric == metric:
                return projection
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "template_id": self.template_id,
            "recommendations": [r.to_dict() for r in self.recommendations],
            "automation": self.automation.to_dict(),
            "projected_improvements": [p.to_dict() for p in self.projected_improvements],
            "timestamp": self.timestamp.isoformat(),
        }
