"""
Unit tests for the optimization engine.

Reports are built directly so each analysis rule is driven by exact
summary values.
"""

import dataclasses
from datetime import datetime, timedelta

import pytest
from hypothesis import given, strategies as st

from promptlab.config import OptimizationConfig
from promptlab.errors import AutomationError, PromptLabError, ValidationError
from promptlab.events import EventBus, EventType
from promptlab.experiments import ExperimentDefinition, ExperimentManager, Variant
from promptlab.metrics import TargetMetric
from promptlab.optimization import (
    ComparisonOperator,
    ExpectedImpact,
    OptimizationCondition,
    OptimizationEngine,
    OptimizationRecommendation,
    OptimizationStrategy,
    PromptPattern,
    PromptTemplate,
    RecommendationType,
    SuggestedChange,
    combine_improvements,
    estimate_cacheability,
)
from promptlab.telemetry import (
    AnomalyRecord,
    ExecutionRecord,
    PerformanceAnalytics,
    PerformanceReport,
    PerformanceSummary,
    TokenUsage,
)

NOW = datetime(2026, 3, 1, 12, 0)

CLEAN_TEXT = (
    "Summarize the following text step by step. For example, list the key "
    "points first. Text: {text}"
)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_template(text: str = CLEAN_TEXT, template_id: str = "summarize", **kwargs):
    return PromptTemplate(id=template_id, name="Summarize", template=text, **kwargs)


def make_report(template_id: str = "summarize", anomalies=None, **summary_fields):
    """Report with a healthy summary unless fields are overridden."""
    fields = dict(
        total_executions=50,
        success_rate=0.99,
        error_rate=0.01,
        avg_response_time=800.0,
        p95_response_time=1200.0,
        avg_token_usage=300.0,
        avg_cost=0.01,
        total_cost=0.5,
        quality_score=0.8,
    )
    fields.update(summary_fields)
    return PerformanceReport(
        template_id=template_id,
        period_start=NOW - timedelta(days=7),
        period_end=NOW,
        summary=PerformanceSummary(template_id=template_id, **fields),
        anomalies=list(anomalies or []),
        generated_at=NOW,
    )


def make_anomaly(hours_ago: float, severity: str = "high") -> AnomalyRecord:
    return AnomalyRecord(
        timestamp=NOW - timedelta(hours=hours_ago),
        template_id="summarize",
        metric="response_time",
        expected_value=1000.0,
        actual_value=9000.0,
        deviation=40.0,
        severity=severity,
    )


def make_recommendation(
    rec_id: str,
    priority: str = "medium",
    confidence: float = 0.5,
    rec_type: RecommendationType = RecommendationType.PROMPT_REFINEMENT,
    auto_applicable: bool = False,
    impacts=None,
    parameters=None,
) -> OptimizationRecommendation:
    return OptimizationRecommendation(
        id=rec_id,
        type=rec_type,
        priority=priority,
        title=rec_id,
        description=rec_id,
        expected_impact=list(impacts or []),
        suggested_changes=[
            SuggestedChange(
                type="parameter_adjustment",
                description="adjust",
                parameters=dict(parameters or {}),
            )
        ],
        auto_applicable=auto_applicable,
        confidence=confidence,
    )


def id_prefixes(result):
    return sorted(r.id.rsplit("-", 1)[0] for r in result.recommendations)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def analytics(bus, clock):
    instance = PerformanceAnalytics(event_bus=bus, clock=clock)
    yield instance
    instance.destroy()


@pytest.fixture
def engine(analytics, clock):
    instance = OptimizationEngine(analytics, clock=clock)
    yield instance
    instance.destroy()


# =============================================================================
# Helpers
# =============================================================================


class TestHelpers:
    """Tests for module-level helpers."""

    def test_diminishing_returns(self):
        """Test that improvements compound on what is left."""
        assert combine_improvements([50, 50]) == pytest.approx(75.0)
        assert combine_improvements([40, 50]) == pytest.approx(70.0)
        assert combine_improvements([]) == 0.0
        assert combine_improvements([100, 30]) == pytest.approx(100.0)

    def test_improvements_clamped(self):
        """Test that out-of-range percentages are clamped to [0, 100]."""
        assert combine_improvements([227]) == pytest.approx(100.0)
        assert combine_improvements([227, 20]) == pytest.approx(100.0)
        assert combine_improvements([-10, 50]) == pytest.approx(50.0)

    @given(
        st.lists(st.floats(min_value=-500, max_value=500), max_size=5),
        st.floats(min_value=-500, max_value=500),
    )
    def test_adding_improvement_never_shrinks(self, percentages, extra):
        """Test that one more improvement never lowers the combined value."""
        before = combine_improvements(percentages)
        after = combine_improvements(percentages + [extra])
        assert 0.0 <= before <= after + 1e-9
        assert after <= 100.0 + 1e-9

    def test_cacheability(self):
        """Test the cacheability heuristic and its cap."""
        static_faq = make_template("What are your opening hours?", category="faq")
        assert estimate_cacheability(static_faq) == pytest.approx(0.8)

        two_vars = make_template("Translate {text} into {language}", category="general")
        assert estimate_cacheability(two_vars) == pytest.approx(0.5)

        many_vars = make_template("{a} {b} {c} " + "x" * 600)
        assert estimate_cacheability(many_vars) == 0.0

    def test_rank(self):
        """Test priority first, then descending confidence."""
        recs = [
            make_recommendation("high-low-conf", "high", 0.7),
            make_recommendation("low", "low", 0.99),
            make_recommendation("critical", "critical", 0.6),
            make_recommendation("high-high-conf", "high", 0.95),
            make_recommendation("medium", "medium", 0.5),
        ]

        ranked = OptimizationEngine.rank(recs)

        assert [r.id for r in ranked] == [
            "critical",
            "high-high-conf",
            "high-low-conf",
            "medium",
            "low",
        ]


# =============================================================================
# Static Analysis
# =============================================================================


class TestStaticAnalysis:
    """Tests for template text analysis."""

    def test_clean_template_healthy_report(self, engine):
        """Test that a clean template with healthy metrics yields nothing."""
        result = engine.analyze_template(make_template(), report=make_report())

        assert result.recommendations == []
        assert result.projected_improvements == []

    def test_patterns_and_best_practices(self, engine):
        template = make_template("Please write a summary. Don't use jargon.")

        result = engine.analyze_template(template, report=make_report())

        assert id_prefixes(result) == sorted(
            [
                "pattern-vague-instructions",
                "pattern-negative-instructions",
                "best-practice-step-by-step",
                "best-practice-examples",
                "best-practice-variables",
            ]
        )
        assert [r.priority for r in result.recommendations] == [
            "medium",
            "medium",
            "low",
            "low",
            "low",
        ]
        pattern_rec = result.recommendations[0]
        assert pattern_rec.type is RecommendationType.PROMPT_REFINEMENT
        assert pattern_rec.confidence == 0.8
        assert pattern_rec.related_templates == ["summarize"]

    def test_missing_context(self, engine):
        template = make_template("Write a haiku about {topic} step by step, for example about rain.")

        result = engine.analyze_template(template, report=make_report())

        assert id_prefixes(result) == ["pattern-missing-context"]

    def test_long_prompt(self, engine):
        """Test that a prompt over the token limit is flagged."""
        template = make_template(CLEAN_TEXT + " " + "x" * 8000)

        result = engine.analyze_template(template, report=make_report(avg_cost=0.01))

        length = [r for r in result.recommendations if r.id.startswith("length-")]
        assert len(length) == 1
        assert length[0].priority == "high"
        cost_impact = length[0].expected_impact[0]
        assert cost_impact.metric == "avg_cost"
        assert cost_impact.expected_value == pytest.approx(0.004)
        assert cost_impact.improvement_percent == 60

    def test_static_analysis_disabled(self, analytics):
        engine = OptimizationEngine(
            analytics, config=OptimizationConfig(enable_static_analysis=False)
        )
        result = engine.analyze_template(
            make_template("Please write something."), report=make_report()
        )
        assert result.recommendations == []
        engine.destroy()


# =============================================================================
# Performance & Cost Analysis
# =============================================================================


class TestPerformanceAnalysis:
    """Tests for recommendations derived from performance reports."""

    def test_slow_and_unreliable(self, engine, bus):
        report = make_report(avg_response_time=4000.0, success_rate=0.9, error_rate=0.1)

        result = engine.analyze_template(make_template(), report=report)

        first, second = result.recommendations
        assert first.type is RecommendationType.FALLBACK_STRATEGY
        assert first.priority == "critical"
        assert first.expected_impact[0].improvement_percent == 9
        assert second.type is RecommendationType.MODEL_CHANGE
        assert second.expected_impact[0].expected_value == 1500

        assert sorted(result.automation.applied) == sorted([first.id, second.id])
        applied = bus.get_history(EventType.OPTIMIZATION_APPLIED)
        assert {e.payload.recommendation_type for e in applied} == {
            "fallback_strategy",
            "model_change",
        }
        fallback = [e for e in applied if e.payload.recommendation_id == first.id][0]
        assert fallback.payload.details["parameters"]["maxRetries"] == 3
        assert fallback.payload.details["parameters"]["fallbackProvider"] == "secondary"

    def test_zero_success_rate(self, engine):
        report = make_report(success_rate=0.0, error_rate=1.0)

        result = engine.analyze_template(make_template(), report=report)

        assert result.recommendations[0].expected_impact[0].improvement_percent == 100

    def test_low_success_rate_impact_capped(self, engine):
        """Test that the reliability impact never exceeds 100%."""
        report = make_report(success_rate=0.3, error_rate=0.7)

        result = engine.analyze_template(make_template(), report=report)

        (reliability,) = [
            r for r in result.recommendations if r.type is RecommendationType.FALLBACK_STRATEGY
        ]
        assert reliability.expected_impact[0].improvement_percent == 100
        projection = {p.metric: p for p in result.projected_improvements}["success_rate"]
        assert projection.cumulative_improvement == pytest.approx(100.0)

    def test_no_executions_skips_performance(self, engine):
        report = make_report(total_executions=0, success_rate=0.0, avg_response_time=0.0)
        assert engine.analyze_template(make_template(), report=report).recommendations == []

    @pytest.mark.parametrize(
        "anomalies,expected",
        [
            ([make_anomaly(1)] * 4, True),
            ([make_anomaly(1)] * 3, False),
            ([make_anomaly(30)] * 4, False),
            ([make_anomaly(1, severity="medium")] * 6, False),
        ],
    )
    def test_anomaly_cluster(self, engine, anomalies, expected):
        """Test that more than three recent high anomalies suggest tuning."""
        result = engine.analyze_template(
            make_template(), report=make_report(anomalies=anomalies)
        )

        tuning = [
            r for r in result.recommendations if r.type is RecommendationType.PARAMETER_TUNING
        ]
        assert bool(tuning) is expected
        if expected:
            assert tuning[0].suggested_changes[0].parameters == {"temperature": 0.3}
            assert tuning[0].id in result.automation.applied


class TestCostAnalysis:
    """Tests for cost-saving recommendations."""

    def test_high_token_usage(self, engine):
        result = engine.analyze_template(
            make_template(), report=make_report(avg_token_usage=1500.0)
        )
        assert id_prefixes(result) == ["tokens"]
        assert result.recommendations[0].expected_impact[0].improvement_percent == 40

    def test_caching(self, engine):
        """Test that a cacheable high-volume template gets a caching advice."""
        template = make_template(
            "What are your opening hours? Answer step by step with an example.",
            category="faq",
        )

        result = engine.analyze_template(template, report=make_report(total_executions=2000))

        caching = [r for r in result.recommendations if r.type is RecommendationType.CACHING]
        assert len(caching) == 1
        cost, latency = caching[0].expected_impact
        assert cost.improvement_percent == pytest.approx(72.0)
        assert latency.improvement_percent == pytest.approx(76.0)
        assert caching[0].estimated_effort == "high"

    def test_no_caching_below_volume(self, engine):
        template = make_template("Static FAQ step by step example", category="faq")
        result = engine.analyze_template(template, report=make_report(total_executions=999))
        assert not any(r.type is RecommendationType.CACHING for r in result.recommendations)

    def test_high_quality_suggests_cheaper_model(self, engine):
        result = engine.analyze_template(
            make_template(), report=make_report(quality_score=0.95)
        )
        assert id_prefixes(result) == ["downgrade"]
        assert result.recommendations[0].priority == "low"
        assert not result.recommendations[0].auto_applicable


# =============================================================================
# Strategies & Projections
# =============================================================================


class TestStrategies:
    """Tests for strategy evaluation."""

    def test_default_strategies(self, engine):
        assert {s.id for s in engine.get_strategies()} == {
            "high-cost-optimization",
            "quality-improvement",
        }

    def test_high_cost_strategy(self, engine):
        result = engine.analyze_template(
            make_template(), report=make_report(avg_cost=0.2, total_executions=150)
        )

        ids = [r.id for r in result.recommendations]
        assert "strategy-high-cost-model-tier" in ids
        contributed = result.recommendations[ids.index("strategy-high-cost-model-tier")]
        assert "summarize" in contributed.related_templates

        stored = [s for s in engine.get_strategies() if s.id == "high-cost-optimization"][0]
        assert "summarize" not in stored.recommendations[0].related_templates

    def test_quality_strategy(self, engine):
        result = engine.analyze_template(make_template(), report=make_report(quality_score=0.6))
        assert [r.id for r in result.recommendations] == ["strategy-quality-structure"]

    def test_condition_without_value(self):
        condition = OptimizationCondition("quality_score", ComparisonOperator.LT, 0.7)
        summary = make_report(quality_score=None).summary
        assert not condition.evaluate(summary)


class TestProjections:
    """Tests for projected improvements."""

    def test_combined_projection(self, engine):
        """Test that improvements on one metric compound."""
        result = engine.analyze_template(
            make_template(),
            report=make_report(avg_cost=0.2, total_executions=150, avg_token_usage=1500.0),
        )

        projection = result.get_projection("avg_cost")
        assert projection.current_value == pytest.approx(0.2)
        assert projection.cumulative_improvement == pytest.approx(70.0)
        assert projection.projected_value == pytest.approx(0.06)
        assert projection.confidence == pytest.approx(0.65 * 0.8)

    def test_higher_is_better_projection(self, engine):
        recs = [
            make_recommendation(
                "r1", confidence=0.9, impacts=[ExpectedImpact("success_rate", 0.9, 0.99, 10)]
            )
        ]

        (projection,) = engine.calculate_projected_improvements(
            make_report(success_rate=0.9), recs
        )

        assert projection.projected_value == pytest.approx(0.99)
        assert projection.confidence == pytest.approx(0.72)

    def test_metric_missing_from_summary(self, engine):
        """Test that the impact's own current value is used."""
        recs = [
            make_recommendation(
                "r1", confidence=0.75, impacts=[ExpectedImpact("stability", 0.7, 0.95, 35)]
            )
        ]

        (projection,) = engine.calculate_projected_improvements(make_report(), recs)

        assert projection.current_value == 0.7
        assert projection.projected_value == pytest.approx(0.945)


# =============================================================================
# Automation
# =============================================================================


class TestAutomation:
    """Tests for automation dispatch."""

    @pytest.fixture
    def always_strategy(self):
        return OptimizationStrategy(
            id="always",
            name="Always applies",
            recommendations=[
                make_recommendation(
                    "tune",
                    priority="high",
                    rec_type=RecommendationType.PARAMETER_TUNING,
                    auto_applicable=True,
                    parameters={"temperature": 0.2},
                ),
                make_recommendation(
                    "cache", rec_type=RecommendationType.CACHING, auto_applicable=True
                ),
                make_recommendation(
                    "switch",
                    priority="low",
                    rec_type=RecommendationType.MODEL_CHANGE,
                    auto_applicable=True,
                ),
                make_recommendation("manual", rec_type=RecommendationType.MODEL_CHANGE),
            ],
        )

    def test_applied_failed_skipped(self, engine, bus, always_strategy):
        def failing_handler(recommendation, template):
            raise RuntimeError("provider config is read-only")

        engine.register_automation_handler(RecommendationType.PARAMETER_TUNING, failing_handler)
        engine.register_optimization_strategy(always_strategy)

        result = engine.analyze_template(make_template(), report=make_report())

        assert result.automation.applied == ["switch"]
        assert [(f.recommendation_id, f.error) for f in result.automation.failed] == [
            ("tune", "provider config is read-only")
        ]
        assert result.automation.skipped == ["cache"]
        assert [e.payload.recommendation_id for e in bus.get_history(EventType.OPTIMIZATION_APPLIED)] == [
            "switch"
        ]

    def test_default_tuning_needs_parameters(self, engine, always_strategy):
        always_strategy.recommendations[0].suggested_changes = []
        engine.register_optimization_strategy(always_strategy)

        result = engine.analyze_template(make_template(), report=make_report())

        assert [f.recommendation_id for f in result.automation.failed] == ["tune"]

    def test_custom_handler_details(self, engine, bus, always_strategy):
        engine.register_automation_handler(
            RecommendationType.CACHING, lambda rec, template: {"cache": template.id}
        )
        engine.register_optimization_strategy(always_strategy)

        result = engine.analyze_template(make_template(), report=make_report())

        assert "cache" in result.automation.applied
        details = [
            e.payload.details
            for e in bus.get_history(EventType.OPTIMIZATION_APPLIED)
            if e.payload.recommendation_id == "cache"
        ]
        assert details == [{"cache": "summarize"}]

    def test_auto_apply_disabled(self, analytics, bus, always_strategy):
        engine = OptimizationEngine(analytics, config=OptimizationConfig(auto_apply=False))
        engine.register_optimization_strategy(always_strategy)

        result = engine.analyze_template(make_template(), report=make_report())

        assert len(result.recommendations) == 4
        assert result.automation.applied == []
        assert result.automation.skipped == []
        assert bus.get_history(EventType.OPTIMIZATION_APPLIED) == []
        engine.destroy()

    def test_handler_error_type(self, engine):
        """Test that the default handler raises AutomationError."""
        from promptlab.optimization.engine import apply_parameter_tuning

        rec = make_recommendation("tune", rec_type=RecommendationType.PARAMETER_TUNING)
        rec.suggested_changes = []
        with pytest.raises(AutomationError) as exc_info:
            apply_parameter_tuning(rec, make_template())
        assert exc_info.value.recommendation_id == "tune"


# =============================================================================
# Registries & History
# =============================================================================


class TestRegistries:
    """Tests for strategy and pattern registration."""

    def test_register_strategy(self, engine, bus):
        strategy = OptimizationStrategy(
            id="slow-and-expensive",
            name="Slow and expensive",
            conditions=[
                OptimizationCondition("avg_response_time", ComparisonOperator.GTE, 2000),
            ],
        )

        engine.register_optimization_strategy(strategy)
        engine.register_optimization_strategy(strategy)

        assert len(engine.get_strategies()) == 3
        events = bus.get_history(EventType.STRATEGY_REGISTERED)
        assert [e.payload.strategy_id for e in events] == ["slow-and-expensive"] * 2

    @pytest.mark.parametrize(
        "strategy",
        [
            OptimizationStrategy(id="", name="No id"),
            OptimizationStrategy(
                id="bad-metric",
                name="Bad metric",
                conditions=[OptimizationCondition("p42_latency", ComparisonOperator.GT, 1)],
            ),
            OptimizationStrategy(
                id="bad-confidence",
                name="Bad confidence",
                recommendations=[make_recommendation("r", confidence=1.5)],
            ),
            OptimizationStrategy(
                id="bad-priority",
                name="Bad priority",
                recommendations=[make_recommendation("r", priority="urgent")],
            ),
        ],
    )
    def test_invalid_strategy(self, engine, bus, strategy):
        with pytest.raises(ValidationError):
            engine.register_optimization_strategy(strategy)
        assert len(engine.get_strategies()) == 2
        assert bus.get_history(EventType.STRATEGY_REGISTERED) == []

    def test_custom_metric_condition(self, engine, analytics):
        analytics.register_custom_metric(
            "long_answers",
            lambda records: float(sum(1 for r in records if r.token_usage.completion > 500)),
            unit="count",
            higher_is_better=False,
        )
        strategy = OptimizationStrategy(
            id="long",
            name="Long answers",
            conditions=[OptimizationCondition("long_answers", ComparisonOperator.GT, 0)],
        )
        engine.register_optimization_strategy(strategy)
        assert "long" in {s.id for s in engine.get_strategies()}

    def test_register_pattern(self, engine, bus):
        engine.register_prompt_pattern(
            PromptPattern(
                name="todo-marker",
                description="Template still contains a TODO marker",
                pattern="TODO",
                issues=["Unfinished instructions"],
                improvements=["Finish the instructions"],
            )
        )

        result = engine.analyze_template(
            make_template(CLEAN_TEXT + " TODO: tone"), report=make_report()
        )

        assert id_prefixes(result) == ["pattern-todo-marker"]
        assert [e.payload.name for e in bus.get_history(EventType.PATTERN_REGISTERED)] == [
            "todo-marker"
        ]
        assert len(engine.get_patterns()) == 4

    def test_register_pattern_without_name(self, engine):
        with pytest.raises(ValidationError):
            engine.register_prompt_pattern(PromptPattern(name="", description="", pattern="x"))

    def test_without_defaults(self, analytics):
        engine = OptimizationEngine(analytics, load_defaults=False)
        assert engine.get_strategies() == []
        assert engine.get_patterns() == []
        engine.destroy()


class TestHistory:
    """Tests for the per-template optimization history."""

    def test_bounded_history(self, engine, clock):
        """Test that only the most recent results are kept."""
        first_time = clock.now
        for _ in range(105):
            engine.analyze_template(make_template(), report=make_report())
            clock.advance(minutes=1)

        history = engine.get_optimization_history("summarize")

        assert len(history) == 100
        assert history[0].timestamp == first_time + timedelta(minutes=5)
        assert history[-1].timestamp == first_time + timedelta(minutes=104)
        assert engine.get_optimization_history("other") == []

    def test_history_is_a_copy(self, engine):
        engine.analyze_template(make_template(), report=make_report())
        engine.get_optimization_history("summarize").clear()
        assert len(engine.get_optimization_history("summarize")) == 1

    def test_analyzed_event(self, engine, bus):
        result = engine.analyze_template(make_template(), report=make_report())

        (event,) = bus.get_history(EventType.OPTIMIZATION_ANALYZED)
        assert event.payload.template_id == "summarize"
        assert event.payload.result is result


# =============================================================================
# Analytics & Experiment Integration
# =============================================================================


class TestSources:
    """Tests for reports generated from analytics and experiment promotion."""

    def test_generates_report_from_analytics(self, engine, analytics, clock):
        for i in range(5):
            analytics.record_execution(
                ExecutionRecord(
                    template_id="summarize",
                    template_version="1.0.0",
                    success=True,
                    response_time_ms=5000.0,
                    token_usage=TokenUsage(prompt=100, completion=100, total=200),
                    cost=0.01,
                    provider="openai",
                    timestamp=clock.now - timedelta(minutes=10 - i),
                )
            )

        result = engine.analyze_template(make_template())

        assert [r.type for r in result.recommendations] == [RecommendationType.MODEL_CHANGE]

    def test_promotes_experiment_winner(self, analytics, bus, clock):
        experiments = ExperimentManager(event_bus=bus, clock=clock)
        engine = OptimizationEngine(analytics, experiments, clock=clock)
        try:
            experiment = experiments.create_test(
                ExperimentDefinition(
                    name="Summary v2",
                    variants=[
                        Variant(id="control", name="Current", template_id="summarize",
                                weight=50, is_control=True),
                        Variant(id="v2", name="Version 2", template_id="summarize-v2",
                                weight=50),
                    ],
                    target_metric=TargetMetric.SUCCESS_RATE,
                    minimum_sample_size=10,
                    minimum_duration_hours=0.0,
                    enable_auto_optimization=False,
                )
            )
            experiments.start_test(experiment.id)
            for i in range(10):
                record = ExecutionRecord(
                    template_id="summarize",
                    template_version="1.0.0",
                    success=i < 5,
                    response_time_ms=900.0,
                    token_usage=TokenUsage(prompt=100, completion=100, total=200),
                    cost=0.01,
                    provider="openai",
                )
                experiments.record_execution(experiment.id, "control", record)
                experiments.record_execution(
                    experiment.id, "v2", dataclasses.replace(record, success=True)
                )

            result = engine.analyze_template(make_template(), report=make_report())

            (promotion,) = result.recommendations
            assert promotion.id == f"ab-test-winner-{experiment.id}"
            assert promotion.priority == "high"
            impact = promotion.expected_impact[0]
            assert impact.metric == "success_rate"
            assert impact.current_value == pytest.approx(0.5)
            assert impact.expected_value == pytest.approx(1.0)
            assert impact.improvement_percent == pytest.approx(100.0)
            assert promotion.confidence == pytest.approx(0.997, abs=1e-3)
            assert promotion.related_templates == ["summarize", "summarize-v2"]
            assert result.automation.skipped == [promotion.id]
        finally:
            engine.destroy()
            experiments.destroy()


class TestDestroy:
    """Tests for teardown."""

    def test_destroy(self, analytics):
        engine = OptimizationEngine(analytics)
        engine.destroy()
        engine.destroy()

        with pytest.raises(PromptLabError):
            engine.analyze_template(make_template(), report=make_report())
        with pytest.raises(PromptLabError):
            engine.register_prompt_pattern(PromptPattern(name="x", description="", pattern="x"))
