"""
Explicitly constructed engine context.

A PromptLabContext owns every piece of engine state: the event bus, the
metric registry, analytics, the experiment manager and the optimization
engine. Nothing is global; two contexts never share state.
"""

import random
from datetime import datetime
from typing import Callable, List, Optional

from promptlab.config import Config
from promptlab.events import EventBus
from promptlab.experiments import (
    ExperimentManager,
    ExperimentStore,
    JsonFileExperimentStore,
    SqlAlchemyExperimentStore,
)
from promptlab.logging import get_component_logger
from promptlab.metrics import MetricRegistry
from promptlab.optimization import OptimizationEngine
from promptlab.telemetry import AnomalyRecord, ExecutionRecord, PerformanceAnalytics

log = get_component_logger("system")


def store_from_config(config: Config) -> Optional[ExperimentStore]:
    """Experiment store selected by configuration (database wins over directory)."""
    if config.experiments.database_url:
        return SqlAlchemyExperimentStore(config.experiments.database_url)
    if config.experiments.storage_dir:
        return JsonFileExperimentStore(config.experiments.storage_dir)
    return None


class PromptLabContext:
    """
    Owner of all engine components.

    Example:
        >>> with PromptLabContext(Config()) as ctx:
        ...     ctx.record_execution(record)
        ...     report = ctx.analytics.generate_report("summarize")
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        store: Optional[ExperimentStore] = None,
        clock: Callable[[], datetime] = datetime.now,
        rng: Optional[random.Random] = None,
    ):
        self.config = config or Config()
        self.event_bus = EventBus()
        self.metrics = MetricRegistry()
        self.analytics = PerformanceAnalytics(
            config=self.config.analytics,
            event_bus=self.event_bus,
            metrics=self.metrics,
            clock=clock,
        )
        self.experiments = ExperimentManager(
            config=self.config.experiments,
            event_bus=self.event_bus,
            store=store if store is not None else store_from_config(self.config),
            clock=clock,
            rng=rng,
        )
        self.optimizer = OptimizationEngine(
            self.analytics,
            self.experiments,
            config=self.config.optimization,
            event_bus=self.event_bus,
            clock=clock,
        )
        self._destroyed = False
        log.info("PromptLabContext ready")

    def record_execution(self, record: ExecutionRecord) -> List[AnomalyRecord]:
        """
        Record an execution with analytics and, when the record is tagged
        with ``experiment_id`` and ``variant_id``, with its experiment.

        Raises:
            NotFoundError: If the tags name an unknown experiment or variant;
                nothing is recorded in that case
        """
        tagged = bool(record.experiment_id and record.variant_id)
        if tagged:
            self.experiments.validate_assignment(record.experiment_id, record.variant_id)
        anomalies = self.analytics.record_execution(record)
        if tagged:
            self.experiments.record_execution(record.experiment_id, record.variant_id, record)
        return anomalies

    def destroy(self) -> None:
        if self._destroyed:
            return
        self._destroyed = True
        self.optimizer.destroy()
        self.experiments.destroy()
        self.analytics.destroy()
        store = self.experiments.store
        if isinstance(store, SqlAlchemyExperimentStore):
            store.close()
        self.event_bus.clear()
        log.info("PromptLabContext destroyed")

    def __enter__(self) -> "PromptLabContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.destroy()
