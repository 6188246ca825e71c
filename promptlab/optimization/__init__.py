"""
Recommendation synthesis for prompt templates.
"""

from promptlab.optimization.schemas import (
    PRIORITY_ORDER,
    AutomationFailure,
    AutomationOutcome,
    ComparisonOperator,
    ExpectedImpact,
    OptimizationCondition,
    OptimizationRecommendation,
    OptimizationResult,
    OptimizationStrategy,
    PatternExample,
    ProjectedImprovement,
    PromptPattern,
    PromptTemplate,
    RecommendationType,
    SuccessMetric,
    SuggestedChange,
    extract_variables,
)
from promptlab.optimization.patterns import default_patterns
from promptlab.optimization.strategies import default_strategies
from promptlab.optimization.engine import (
    AutomationHandler,
    OptimizationEngine,
    combine_improvements,
    estimate_cacheability,
)

__all__ = [
    "PRIORITY_ORDER",
    "AutomationFailure",
    "AutomationHandler",
    "AutomationOutcome",
    "ComparisonOperator",
    "ExpectedImpact",
    "OptimizationCondition",
    "OptimizationEngine",
    "OptimizationRecommendation",
    "OptimizationResult",
    "OptimizationStrategy",
    "PatternExample",
    "ProjectedImprovement",
    "PromptPattern",
    "PromptTemplate",
    "RecommendationType",
    "SuccessMetric",
    "SuggestedChange",
    "combine_improvements",
    "default_patterns",
    "default_strategies",
    "estimate_cacheability",
    "extract_variables",
]
