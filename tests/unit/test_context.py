"""
Unit tests for PromptLabContext wiring.
"""

import pytest

from promptlab.config import Config, ExperimentsConfig
from promptlab.context import PromptLabContext, store_from_config
from promptlab.errors import NotFoundError
from promptlab.events import EventType
from promptlab.experiments import (
    ExperimentDefinition,
    ExperimentStatus,
    JsonFileExperimentStore,
    SqlAlchemyExperimentStore,
    Variant,
)
from promptlab.optimization import PromptTemplate
from promptlab.telemetry import ExecutionRecord, TokenUsage


def make_definition():
    return ExperimentDefinition(
        name="Greeting",
        variants=[
            Variant(id="control", name="Formal", template_id="greet", weight=50, is_control=True),
            Variant(id="casual", name="Casual", template_id="greet-casual", weight=50),
        ],
        minimum_sample_size=10,
        enable_auto_optimization=False,
    )


def make_record(template_id="greet", metadata=None):
    return ExecutionRecord(
        template_id=template_id,
        template_version="1.0.0",
        success=True,
        response_time_ms=400.0,
        token_usage=TokenUsage(prompt=20, completion=30, total=50),
        cost=0.001,
        provider="anthropic",
        metadata=dict(metadata or {}),
    )


def test_store_from_config(tmp_path):
    """Test store selection, database first."""
    assert store_from_config(Config()) is None

    json_store = store_from_config(
        Config(experiments=ExperimentsConfig(storage_dir=str(tmp_path / "exp")))
    )
    assert isinstance(json_store, JsonFileExperimentStore)

    sql_store = store_from_config(
        Config(
            experiments=ExperimentsConfig(
                storage_dir=str(tmp_path / "exp"),
                database_url=f"sqlite:///{tmp_path / 'exp.db'}",
            )
        )
    )
    assert isinstance(sql_store, SqlAlchemyExperimentStore)
    sql_store.close()


def test_tagged_record_reaches_experiment():
    """Test that tagged records go to analytics and the experiment."""
    with PromptLabContext() as ctx:
        experiment = ctx.experiments.create_test(make_definition())
        ctx.experiments.start_test(experiment.id)

        ctx.record_execution(
            make_record(metadata={"experiment_id": experiment.id, "variant_id": "casual"})
        )
        ctx.record_execution(make_record())

        assert len(ctx.analytics.get_executions("greet")) == 2
        (stored,) = ctx.experiments.get_executions(experiment.id)
        assert stored.variant_id == "casual"


def test_unknown_tags_record_nothing():
    """Test that a record tagged with an unknown experiment or variant is rejected."""
    with PromptLabContext() as ctx:
        experiment = ctx.experiments.create_test(make_definition())
        ctx.experiments.start_test(experiment.id)

        with pytest.raises(NotFoundError):
            ctx.record_execution(
                make_record(metadata={"experiment_id": "missing", "variant_id": "casual"})
            )
        with pytest.raises(NotFoundError):
            ctx.record_execution(
                make_record(metadata={"experiment_id": experiment.id, "variant_id": "missing"})
            )

        assert ctx.analytics.get_executions("greet") == []
        assert ctx.experiments.get_executions(experiment.id) == []


def test_components_share_bus():
    with PromptLabContext() as ctx:
        seen = []
        ctx.event_bus.subscribe_all(lambda event: seen.append(event.event_type))

        ctx.record_execution(make_record())
        ctx.experiments.create_test(make_definition())
        ctx.optimizer.analyze_template(
            PromptTemplate(id="greet", name="Greet", template="Say hello to {name}")
        )

        assert EventType.EXECUTION_RECORDED in seen
        assert EventType.EXPERIMENT_CREATED in seen
        assert EventType.OPTIMIZATION_ANALYZED in seen


def test_contexts_are_isolated():
    with PromptLabContext() as first, PromptLabContext() as second:
        first.record_execution(make_record())
        assert second.analytics.get_executions("greet") == []
        assert first.metrics is not second.metrics


def test_persistence_through_config(tmp_path):
    config = Config(experiments=ExperimentsConfig(storage_dir=str(tmp_path)))
    with PromptLabContext(config) as ctx:
        experiment = ctx.experiments.create_test(make_definition())
        ctx.experiments.start_test(experiment.id)

    with PromptLabContext(config) as ctx:
        assert ctx.experiments.get_test(experiment.id).status is ExperimentStatus.RUNNING


def test_destroy_is_idempotent():
    ctx = PromptLabContext()
    ctx.destroy()
    ctx.destroy()
    assert ctx.analytics.is_destroyed
