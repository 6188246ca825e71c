"""
Built-in optimization strategies.
"""

from typing import List

from promptlab.optimization.schemas import (
    ComparisonOperator,
    ExpectedImpact,
    OptimizationCondition,
    OptimizationRecommendation,
    OptimizationStrategy,
    RecommendationType,
    SuccessMetric,
    SuggestedChange,
)


def default_strategies() -> List[OptimizationStrategy]:
    """Strategies registered on every new optimization engine."""
    return [
        OptimizationStrategy(
            id="high-cost-optimization",
            name="High Cost Optimization",
            description="Optimizations for templates with excessive costs",
            conditions=[
                OptimizationCondition("avg_cost", ComparisonOperator.GT, 0.10),
                OptimizationCondition("total_executions", ComparisonOperator.GT, 100),
            ],
            recommendations=[
                OptimizationRecommendation(
                    id="strategy-high-cost-model-tier",
                    type=RecommendationType.MODEL_CHANGE,
                    priority="medium",
                    title="Review model tier for a high-cost template",
                    description="Cost per execution is high at significant volume.",
                    rationale="Average cost above $0.10 across more than 100 executions.",
                    expected_impact=[
                        ExpectedImpact(
                            metric="avg_cost",
                            current_value=0.10,
                            expected_value=0.05,
                            improvement_percent=50,
                        )
                    ],
                    suggested_changes=[
                        SuggestedChange(
                            type="model_switch",
                            description="Evaluate a smaller model in an A/B experiment",
                        )
                    ],
                    estimated_effort="medium",
                    auto_applicable=False,
                    confidence=0.65,
                )
            ],
            success_metrics=[SuccessMetric("avg_cost", 0.05)],
        ),
        OptimizationStrategy(
            id="quality-improvement",
            name="Quality Improvement",
            description="Optimizations for templates with low quality scores",
            conditions=[
                OptimizationCondition("quality_score", ComparisonOperator.LT, 0.7),
            ],
            recommendations=[
                OptimizationRecommendation(
                    id="strategy-quality-structure",
                    type=RecommendationType.PROMPT_REFINEMENT,
                    priority="medium",
                    title="Add examples and an explicit output format",
                    description="Low quality scores call for a more structured prompt.",
                    rationale="Quality score below 0.7.",
                    expected_impact=[
                        ExpectedImpact(
                            metric="quality_score",
                            current_value=0.7,
                            expected_value=0.85,
                            improvement_percent=21,
                        )
                    ],
                    suggested_changes=[
                        SuggestedChange(
                            type="template_modification",
                            description="Describe the expected output format and add 1-2 examples",
                        )
                    ],
                    estimated_effort="low",
                    auto_applicable=False,
                    confidence=0.7,
                )
            ],
            success_metrics=[SuccessMetric("quality_score", 0.85)],
        ),
    ]
