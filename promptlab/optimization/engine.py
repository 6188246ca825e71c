"""
Optimization engine for prompt templates.

Synthesizes prioritized, quantified recommendations from:
- Static analysis of the template text (patterns, size, best practices)
- Performance reports (latency, reliability, anomaly clusters)
- Cost profile (token usage, cacheability, model tier)
- Registered strategies whose conditions hold
- Completed analysis of running A/B experiments

Recommendations are ranked, projected into per-metric improvements and,
when enabled, dispatched to automation handlers.
"""

import copy
import threading
import uuid
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Tuple

from promptlab.config import OptimizationConfig
from promptlab.errors import AutomationError, PromptLabError, ValidationError
from promptlab.events import (
    ComponentType,
    EventBus,
    EventType,
    OptimizationAnalyzedPayload,
    OptimizationAppliedPayload,
    PatternRegisteredPayload,
    StrategyRegisteredPayload,
)
from promptlab.experiments.manager import ExperimentManager
from promptlab.experiments.schemas import ResultStatus
from promptlab.locks import KeyedLocks
from promptlab.logging import get_component_logger
from promptlab.optimization.patterns import default_patterns
from promptlab.optimization.schemas import (
    AutomationFailure,
    AutomationOutcome,
    ExpectedImpact,
    OptimizationRecommendation,
    OptimizationResult,
    OptimizationStrategy,
    ProjectedImprovement,
    PromptPattern,
    PromptTemplate,
    RecommendationType,
    SuggestedChange,
)
from promptlab.optimization.strategies import default_strategies
from promptlab.telemetry.analytics import PerformanceAnalytics
from promptlab.telemetry.schemas import PerformanceReport, PerformanceSummary

log = get_component_logger("optimization")

AutomationHandler = Callable[
    [OptimizationRecommendation, PromptTemplate], Optional[Dict[str, Any]]
]

CACHEABLE_CATEGORIES = ("faq", "documentation", "translation", "summary")


def new_recommendation_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def combine_improvements(percentages: Sequence[float]) -> float:
    """
    Combine percentage improvements on one metric with diminishing returns.

    Each improvement applies only to what is left: ``c = c + (1 - c) * p``.
    Two 50% improvements combine to 75%. Each percentage is clamped to
    [0, 100] so the combined value never shrinks as improvements are added.
    """
    combined = 0.0
    for pct in percentages:
        combined = combined + (1.0 - combined) * min(max(pct, 0.0), 100.0) / 100.0
    return combined * 100.0


def estimate_cacheability(template: PromptTemplate) -> float:
    """Heuristic fraction of requests that could be served from a cache."""
    score = 0.0
    variables = template.variables or []
    if not variables:
        score += 0.5
    elif len(variables) <= 2:
        score += 0.3
    if template.category.lower() in CACHEABLE_CATEGORIES:
        score += 0.3
    if len(template.template) < 500:
        score += 0.2
    return min(score, 0.8)


# =============================================================================
# Default Automation Handlers
# =============================================================================


def _collect_parameters(recommendation: OptimizationRecommendation) -> Dict[str, Any]:
    parameters: Dict[str, Any] = {}
    for change in recommendation.suggested_changes:
        parameters.update(change.parameters)
    return parameters


def apply_parameter_tuning(
    recommendation: OptimizationRecommendation, template: PromptTemplate
) -> Dict[str, Any]:
    parameters = _collect_parameters(recommendation)
    if not parameters:
        raise AutomationError(
            f"No parameters to adjust for {template.id}", recommendation.id
        )
    return {"action": "parameter_adjustment", "parameters": parameters}


def apply_model_change(
    recommendation: OptimizationRecommendation, template: PromptTemplate
) -> Dict[str, Any]:
    return {
        "action": "model_switch",
        "changes": [c.description for c in recommendation.suggested_changes],
    }


def apply_fallback_strategy(
    recommendation: OptimizationRecommendation, template: PromptTemplate
) -> Dict[str, Any]:
    parameters = _collect_parameters(recommendation)
    if not parameters:
        raise AutomationError(f"No fallback configured for {template.id}", recommendation.id)
    return {"action": "add_fallback", "parameters": parameters}


DEFAULT_HANDLERS: Dict[RecommendationType, AutomationHandler] = {
    RecommendationType.PARAMETER_TUNING: apply_parameter_tuning,
    RecommendationType.MODEL_CHANGE: apply_model_change,
    RecommendationType.FALLBACK_STRATEGY: apply_fallback_strategy,
}


class OptimizationEngine:
    """
    Recommendation synthesis over analytics and experiments.

    Example:
        >>> engine = OptimizationEngine(analytics, experiments)
        >>> result = engine.analyze_template(PromptTemplate(
        ...     id="summarize", name="Summarize", template="Summarize {text}"))
        >>> result.recommendations[0].priority
    """

    def __init__(
        self,
        analytics: PerformanceAnalytics,
        experiments: Optional[ExperimentManager] = None,
        config: Optional[OptimizationConfig] = None,
        event_bus: Optional[EventBus] = None,
        clock: Callable[[], datetime] = datetime.now,
        load_defaults: bool = True,
    ):
        """
        Initialize the engine.

        Args:
            analytics: Source of performance reports and metric directionality
            experiments: Source of A/B results (promotion is skipped when None)
            config: Optimization configuration (defaults used when None)
            event_bus: Bus to publish on (defaults to the analytics bus)
            clock: Source of "now" for anomaly windows and result timestamps
            load_defaults: Register the built-in patterns and strategies
        """
        self.analytics = analytics
        self.experiments = experiments
        self.config = config or OptimizationConfig()
        self.event_bus = event_bus or analytics.event_bus
        self.metrics = analytics.metrics
        self._clock = clock

        self._lock = threading.RLock()
        self._strategies: Dict[str, OptimizationStrategy] = {}
        self._patterns: Dict[str, PromptPattern] = {}
        self._handlers: Dict[RecommendationType, AutomationHandler] = dict(DEFAULT_HANDLERS)
        self._history: Dict[str, Deque[OptimizationResult]] = {}
        self._history_locks = KeyedLocks()
        self._destroyed = False

        if load_defaults:
            for strategy in default_strategies():
                self._strategies[strategy.id] = strategy
            for pattern in default_patterns():
                self._patterns[pattern.name] = pattern

        log.info(
            f"OptimizationEngine initialized with {len(self._strategies)} strategies "
            f"and {len(self._patterns)} patterns (auto_apply={self.config.auto_apply})"
        )

    # =========================================================================
    # Analysis
    # =========================================================================

    def analyze_template(
        self, template: PromptTemplate, report: Optional[PerformanceReport] = None
    ) -> OptimizationResult:
        """
        Analyze a template and produce ranked recommendations.

        Args:
            template: Template descriptor to analyze
            report: Performance report to use (generated from analytics when None)

        Returns:
            OptimizationResult, also appended to the template's history
        """
        self._ensure_active()
        if report is None:
            report = self.analytics.generate_report(template.id)

        recommendations: List[OptimizationRecommendation] = []
        if self.config.enable_static_analysis:
            recommendations.extend(self._analyze_static(template, report.summary))
        if self.config.enable_performance_analysis:
            recommendations.extend(self._analyze_performance(template, report))
        if self.config.enable_cost_analysis:
            recommendations.extend(self._analyze_cost(template, report.summary))
        recommendations.extend(self._apply_strategies(template, report.summary))
        recommendations.extend(self._promote_experiment_winners(template))

        recommendations = self.rank(recommendations)

        automation = AutomationOutcome()
        if self.config.auto_apply:
            automation = self._apply_automations(template, recommendations)

        result = OptimizationResult(
            template_id=template.id,
            recommendations=recommendations,
            automation=automation,
            projected_improvements=self.calculate_projected_improvements(
                report, recommendations
            ),
            timestamp=self._clock(),
        )

        with self._history_locks.hold(template.id):
            history = self._history.setdefault(
                template.id, deque(maxlen=self.config.history_limit)
            )
            history.append(result)

        log.info(
            f"Analyzed {template.id}: {len(recommendations)} recommendations, "
            f"{len(automation.applied)} applied, {len(automation.failed)} failed"
        )
        self.event_bus.emit(
            EventType.OPTIMIZATION_ANALYZED,
            ComponentType.OPTIMIZATION,
            OptimizationAnalyzedPayload(template_id=template.id, result=result),
        )
        return result

    @staticmethod
    def rank(
        recommendations: Sequence[OptimizationRecommendation],
    ) -> List[OptimizationRecommendation]:
        """Order by priority (critical first), then by descending confidence."""
        return sorted(recommendations, key=lambda r: (-r.priority_rank, -r.confidence))

    def _analyze_static(
        self, template: PromptTemplate, summary: PerformanceSummary
    ) -> List[OptimizationRecommendation]:
        text = template.template
        recommendations = []

        with self._lock:
            patterns = list(self._patterns.values())

        for pattern in patterns:
            if not pattern.matches(text):
                continue
            example = pattern.examples[0] if pattern.examples else None
            recommendations.append(
                OptimizationRecommendation(
                    id=new_recommendation_id(f"pattern-{pattern.name}"),
                    type=RecommendationType.PROMPT_REFINEMENT,
                    priority="medium",
                    title=f"Fix {pattern.name.replace('-', ' ')}",
                    description=pattern.description,
                    rationale=f"Issues: {', '.join(pattern.issues)}",
                    expected_impact=[ExpectedImpact("quality_score", 0.7, 0.85, 21)],
                    suggested_changes=[
                        SuggestedChange(
                            type="template_modification",
                            description="; ".join(pattern.improvements),
                            before=example.bad if example else None,
                            after=example.good if example else None,
                        )
                    ],
                    estimated_effort="low",
                    auto_applicable=False,
                    confidence=0.8,
                    related_templates=[template.id],
                )
            )

        estimated_tokens = template.estimated_tokens
        if estimated_tokens > self.config.max_prompt_tokens:
            recommendations.append(
                OptimizationRecommendation(
                    id=new_recommendation_id("length"),
                    type=RecommendationType.PROMPT_REFINEMENT,
                    priority="high",
                    title="Reduce prompt length",
                    description=(
                        f"Prompt is approximately {estimated_tokens:.0f} tokens, "
                        f"above the {self.config.max_prompt_tokens} token limit"
                    ),
                    rationale="Longer prompts increase costs and response times",
                    expected_impact=[
                        ExpectedImpact(
                            "avg_cost", summary.avg_cost, summary.avg_cost * 0.4, 60
                        ),
                        ExpectedImpact(
                            "avg_response_time",
                            summary.avg_response_time,
                            summary.avg_response_time * 0.5,
                            50,
                        ),
                    ],
                    suggested_changes=[
                        SuggestedChange(
                            type="template_modification",
                            description="Remove redundant instructions and examples",
                        ),
                        SuggestedChange(
                            type="template_modification",
                            description="Use more concise language",
                        ),
                    ],
                    estimated_effort="medium",
                    auto_applicable=False,
                    confidence=0.9,
                    related_templates=[template.id],
                )
            )

        lowered = text.lower()
        if "step by step" not in lowered and "step-by-step" not in lowered:
            recommendations.append(
                self._best_practice(
                    template,
                    "step-by-step",
                    "Add step-by-step reasoning",
                    "Asking for step-by-step reasoning improves complex answers",
                    "Add 'Think through this step by step' to the instructions",
                )
            )
        if "example" not in lowered:
            recommendations.append(
                self._best_practice(
                    template,
                    "examples",
                    "Add examples",
                    "Examples clarify the expected output format",
                    "Add 1-2 examples of the desired output",
                )
            )
        if not template.variables:
            recommendations.append(
                self._best_practice(
                    template,
                    "variables",
                    "Parameterize the prompt",
                    "A prompt without variables cannot be reused across inputs",
                    "Introduce {variables} for the parts that change per request",
                )
            )
        return recommendations

    @staticmethod
    def _best_practice(
        template: PromptTemplate, key: str, title: str, description: str, change: str
    ) -> OptimizationRecommendation:
        return OptimizationRecommendation(
            id=new_recommendation_id(f"best-practice-{key}"),
            type=RecommendationType.PROMPT_REFINEMENT,
            priority="low",
            title=title,
            description=description,
            rationale="Missing prompt engineering best practice",
            expected_impact=[ExpectedImpact("quality_score", 0.7, 0.75, 7)],
            suggested_changes=[
                SuggestedChange(type="template_modification", description=change)
            ],
            estimated_effort="low",
            auto_applicable=False,
            confidence=0.6,
            related_templates=[template.id],
        )

    def _analyze_performance(
        self, template: PromptTemplate, report: PerformanceReport
    ) -> List[OptimizationRecommendation]:
        summary = report.summary
        if summary.total_executions == 0:
            return []

        recommendations = []
        if summary.avg_response_time > self.config.target_response_time_ms:
            recommendations.append(
                OptimizationRecommendation(
                    id=new_recommendation_id("latency"),
                    type=RecommendationType.MODEL_CHANGE,
                    priority="high",
                    title="Switch to a faster model",
                    description=(
                        f"Average response time {summary.avg_response_time:.0f}ms "
                        f"exceeds the {self.config.target_response_time_ms:.0f}ms target"
                    ),
                    rationale="Faster models can significantly reduce latency",
                    expected_impact=[
                        ExpectedImpact(
                            "avg_response_time", summary.avg_response_time, 1500, 50
                        )
                    ],
                    suggested_changes=[
                        SuggestedChange(
                            type="model_switch",
                            description="Use a faster model tier for this template",
                        )
                    ],
                    estimated_effort="low",
                    auto_applicable=True,
                    confidence=0.85,
                    related_templates=[template.id],
                )
            )

        if summary.success_rate < self.config.target_success_rate:
            rate = summary.success_rate
            improvement = min(100, round((0.98 - rate) / rate * 100)) if rate > 0 else 100
            recommendations.append(
                OptimizationRecommendation(
                    id=new_recommendation_id("reliability"),
                    type=RecommendationType.FALLBACK_STRATEGY,
                    priority="critical",
                    title="Implement fallback strategy",
                    description=(
                        f"Success rate {rate:.1%} is below the "
                        f"{self.config.target_success_rate:.0%} target"
                    ),
                    rationale="Fallback strategies improve reliability",
                    expected_impact=[ExpectedImpact("success_rate", rate, 0.98, improvement)],
                    suggested_changes=[
                        SuggestedChange(
                            type="add_fallback",
                            description="Retry with exponential backoff",
                            parameters={
                                "maxRetries": 3,
                                "backoffMultiplier": 2,
                                "initialDelay": 1000,
                            },
                        ),
                        SuggestedChange(
                            type="add_fallback",
                            description="Fall back to an alternative provider",
                            parameters={"fallbackProvider": "secondary"},
                        ),
                    ],
                    estimated_effort="medium",
                    auto_applicable=True,
                    confidence=0.9,
                    related_templates=[template.id],
                )
            )

        since = self._clock() - timedelta(hours=self.config.anomaly_window_hours)
        high_severity = report.recent_anomalies(since, severity="high")
        if len(high_severity) > self.config.high_severity_anomaly_threshold:
            recommendations.append(
                OptimizationRecommendation(
                    id=new_recommendation_id("stability"),
                    type=RecommendationType.PARAMETER_TUNING,
                    priority="high",
                    title="Stabilize model parameters",
                    description=(
                        f"{len(high_severity)} high-severity anomalies in the last "
                        f"{self.config.anomaly_window_hours:g} hours"
                    ),
                    rationale="Lower temperature produces more consistent outputs",
                    expected_impact=[ExpectedImpact("stability", 0.7, 0.95, 35)],
                    suggested_changes=[
                        SuggestedChange(
                            type="parameter_adjustment",
                            description="Reduce temperature for more consistent outputs",
                            before="0.8",
                            after="0.3",
                            parameters={"temperature": 0.3},
                        )
                    ],
                    estimated_effort="low",
                    auto_applicable=True,
                    confidence=0.75,
                    related_templates=[template.id],
                )
            )
        return recommendations

    def _analyze_cost(
        self, template: PromptTemplate, summary: PerformanceSummary
    ) -> List[OptimizationRecommendation]:
        recommendations = []

        if summary.avg_token_usage > self.config.high_token_usage:
            recommendations.append(
                OptimizationRecommendation(
                    id=new_recommendation_id("tokens"),
                    type=RecommendationType.PROMPT_REFINEMENT,
                    priority="medium",
                    title="Reduce token usage",
                    description=(
                        f"Average token usage {summary.avg_token_usage:.0f} is above "
                        f"{self.config.high_token_usage:.0f}"
                    ),
                    rationale="Token usage drives execution cost",
                    expected_impact=[
                        ExpectedImpact(
                            "avg_cost", summary.avg_cost, summary.avg_cost * 0.6, 40
                        )
                    ],
                    suggested_changes=[
                        SuggestedChange(
                            type="template_modification",
                            description="Ask for a maximum response length",
                        )
                    ],
                    estimated_effort="low",
                    auto_applicable=False,
                    confidence=0.8,
                    related_templates=[template.id],
                )
            )

        if summary.total_executions > self.config.caching_min_executions:
            cacheable = estimate_cacheability(template)
            if cacheable > self.config.cacheable_threshold:
                recommendations.append(
                    OptimizationRecommendation(
                        id=new_recommendation_id("caching"),
                        type=RecommendationType.CACHING,
                        priority="high",
                        title="Cache responses",
                        description=(
                            f"About {cacheable:.0%} of {summary.total_executions} "
                            f"executions could be served from a cache"
                        ),
                        rationale="Repeated requests can be answered without a model call",
                        expected_impact=[
                            ExpectedImpact(
                                "avg_cost",
                                summary.avg_cost,
                                summary.avg_cost * (1 - cacheable * 0.9),
                                cacheable * 90,
                            ),
                            ExpectedImpact(
                                "avg_response_time",
                                summary.avg_response_time,
                                summary.avg_response_time * (1 - cacheable * 0.95),
                                cacheable * 95,
                            ),
                        ],
                        suggested_changes=[
                            SuggestedChange(
                                type="add_cache",
                                description="Cache responses keyed by rendered prompt",
                                parameters={"cacheable_fraction": cacheable},
                            )
                        ],
                        estimated_effort="high",
                        auto_applicable=False,
                        confidence=0.7,
                        related_templates=[template.id],
                    )
                )

        if (
            summary.quality_score is not None
            and summary.quality_score > self.config.high_quality_score
        ):
            recommendations.append(
                OptimizationRecommendation(
                    id=new_recommendation_id("downgrade"),
                    type=RecommendationType.MODEL_CHANGE,
                    priority="low",
                    title="Try a cheaper model",
                    description=(
                        f"Quality score {summary.quality_score:.2f} leaves room to "
                        f"trade quality for cost"
                    ),
                    rationale="A smaller model may keep quality acceptable at lower cost",
                    expected_impact=[
                        ExpectedImpact(
                            "avg_cost", summary.avg_cost, summary.avg_cost * 0.3, 70
                        )
                    ],
                    suggested_changes=[
                        SuggestedChange(
                            type="model_switch",
                            description="Evaluate a cheaper model in an A/B experiment",
                        )
                    ],
                    estimated_effort="medium",
                    auto_applicable=False,
                    confidence=0.6,
                    related_templates=[template.id],
                )
            )
        return recommendations

    def _apply_strategies(
        self, template: PromptTemplate, summary: PerformanceSummary
    ) -> List[OptimizationRecommendation]:
        with self._lock:
            strategies = list(self._strategies.values())

        recommendations = []
        for strategy in strategies:
            if not strategy.applies_to(summary):
                continue
            log.debug(f"Strategy {strategy.id} applies to {template.id}")
            for recommendation in strategy.recommendations:
                contributed = copy.deepcopy(recommendation)
                if template.id not in contributed.related_templates:
                    contributed.related_templates.append(template.id)
                recommendations.append(contributed)
        return recommendations

    def _promote_experiment_winners(
        self, template: PromptTemplate
    ) -> List[OptimizationRecommendation]:
        if self.experiments is None:
            return []

        recommendations = []
        for experiment in self.experiments.get_active_tests_for_template(template.id):
            result = self.experiments.analyze_test_results(experiment.id)
            if result.status is not ResultStatus.WINNER_FOUND or not result.winner_id:
                continue
            winner = experiment.get_variant(result.winner_id)
            if winner is None or winner.is_control:
                continue

            metric = experiment.target_metric
            control_stats = result.variant_statistics[experiment.control.id]
            winner_stats = result.variant_statistics[winner.id]
            sign = 1.0 if metric.higher_is_better else -1.0
            improvement = sign * (winner_stats.improvement or 0.0)

            recommendations.append(
                OptimizationRecommendation(
                    id=f"ab-test-winner-{experiment.id}",
                    type=RecommendationType.PROMPT_REFINEMENT,
                    priority="high",
                    title=f"Promote winning variant '{winner.name}'",
                    description=(
                        f"Experiment '{experiment.name}' found a winner improving "
                        f"{metric.value} by {improvement:.1f}%"
                    ),
                    rationale=result.recommended_action,
                    expected_impact=[
                        ExpectedImpact(
                            metric.summary_metric,
                            control_stats.mean,
                            winner_stats.mean,
                            improvement,
                        )
                    ],
                    suggested_changes=[
                        SuggestedChange(
                            type="template_modification",
                            description=(
                                f"Replace {experiment.control.template_id} with "
                                f"{winner.template_id}@{winner.template_version}"
                            ),
                            before=experiment.control.template_id,
                            after=winner.template_id,
                        )
                    ],
                    estimated_effort="low",
                    auto_applicable=True,
                    confidence=min(1.0, max(0.0, result.statistical_significance)),
                    related_templates=sorted(experiment.template_ids),
                )
            )
        return recommendations

    # =========================================================================
    # Projection
    # =========================================================================

    def calculate_projected_improvements(
        self,
        report: PerformanceReport,
        recommendations: Sequence[OptimizationRecommendation],
    ) -> List[ProjectedImprovement]:
        """
        Project per-metric values if every recommendation were applied.

        Improvements on the same metric combine with diminishing returns.
        Confidence is the lowest confidence among the recommendations
        touching the metric, scaled by ``projection_conservatism``.
        """
        grouped: Dict[str, List[Tuple[ExpectedImpact, float]]] = {}
        for recommendation in recommendations:
            for impact in recommendation.expected_impact:
                grouped.setdefault(impact.metric, []).append(
                    (impact, recommendation.confidence)
                )

        projections = []
        for metric, impacts in grouped.items():
            cumulative = combine_improvements([i.improvement_percent for i, _ in impacts])
            current = report.summary.get_metric(metric)
            if current is None:
                current = impacts[0][0].current_value
            higher_is_better = (
                self.metrics.higher_is_better(metric) if self.metrics.has(metric) else True
            )
            factor = cumulative / 100.0
            projected = current * (1 + factor) if higher_is_better else current * (1 - factor)
            projections.append(
                ProjectedImprovement(
                    metric=metric,
                    current_value=current,
                    projected_value=projected,
                    cumulative_improvement=cumulative,
                    confidence=min(c for _, c in impacts) * self.config.projection_conservatism,
                )
            )
        return projections

    # =========================================================================
    # Automation
    # =========================================================================

    def _apply_automations(
        self, template: PromptTemplate, recommendations: Sequence[OptimizationRecommendation]
    ) -> AutomationOutcome:
        outcome = AutomationOutcome()
        for recommendation in recommendations:
            if not recommendation.auto_applicable:
                continue
            with self._lock:
                handler = self._handlers.get(recommendation.type)
            if handler is None:
                outcome.skipped.append(recommendation.id)
                continue

            try:
                details = handler(recommendation, template) or {}
            except Exception as e:
                log.error(f"Automation failed for {recommendation.id}: {e}")
                outcome.failed.append(AutomationFailure(recommendation.id, str(e)))
                continue

            outcome.applied.append(recommendation.id)
            log.info(f"Applied {recommendation.type.value} {recommendation.id} to {template.id}")
            self.event_bus.emit(
                EventType.OPTIMIZATION_APPLIED,
                ComponentType.OPTIMIZATION,
                OptimizationAppliedPayload(
                    template_id=template.id,
                    recommendation_id=recommendation.id,
                    recommendation_type=recommendation.type.value,
                    details=details,
                ),
            )
        return outcome

    def register_automation_handler(
        self, recommendation_type: RecommendationType, handler: AutomationHandler
    ) -> None:
        """Install the handler that applies a recommendation type."""
        with self._lock:
            self._handlers[recommendation_type] = handler
        log.info(f"Registered automation handler for {recommendation_type.value}")

    # =========================================================================
    # Registries
    # =========================================================================

    def register_optimization_strategy(self, strategy: OptimizationStrategy) -> None:
        """
        Register a strategy, replacing one with the same id.

        Raises:
            ValidationError: On an empty id, a condition on an unknown metric
                or an invalid attached recommendation
        """
        self._ensure_active()
        if not strategy.id:
            raise ValidationError("Strategy id must not be empty", field="id")
        for condition in strategy.conditions:
            if not self.metrics.has(condition.metric):
                raise ValidationError(
                    f"Strategy {strategy.id} references unknown metric: {condition.metric}",
                    field="conditions",
                )
        for recommendation in strategy.recommendations:
            recommendation.validate()

        with self._lock:
            self._strategies[strategy.id] = strategy
        log.info(f"Registered optimization strategy: {strategy.id}")
        self.event_bus.emit(
            EventType.STRATEGY_REGISTERED,
            ComponentType.OPTIMIZATION,
            StrategyRegisteredPayload(strategy_id=strategy.id, name=strategy.name),
        )

    def register_prompt_pattern(self, pattern: PromptPattern) -> None:
        """Register a pattern, replacing one with the same name."""
        self._ensure_active()
        if not pattern.name:
            raise ValidationError("Pattern name must not be empty", field="name")
        with self._lock:
            self._patterns[pattern.name] = pattern
        log.info(f"Registered prompt pattern: {pattern.name}")
        self.event_bus.emit(
            EventType.PATTERN_REGISTERED,
            ComponentType.OPTIMIZATION,
            PatternRegisteredPayload(name=pattern.name),
        )

    def get_strategies(self) -> List[OptimizationStrategy]:
        with self._lock:
            return list(self._strategies.values())

    def get_patterns(self) -> List[PromptPattern]:
        with self._lock:
            return list(self._patterns.values())

    def get_optimization_history(self, template_id: str) -> List[OptimizationResult]:
        """Results for a template, oldest first."""
        with self._history_locks.hold(template_id):
            return list(self._history.get(template_id, []))

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def _ensure_active(self) -> None:
        if self._destroyed:
            raise PromptLabError("OptimizationEngine has been destroyed")

    def destroy(self) -> None:
        """Release registries and history."""
        if self._destroyed:
            return
        self._destroyed = True
        with self._lock:
            self._strategies.clear()
            self._patterns.clear()
            self._handlers.clear()
        self._history.clear()
        self._history_locks.clear()
        log.info("OptimizationEngine destroyed")
