"""
A/B experiment manager.

Runs experiments over prompt template variants:
- Validated creation (one control, weights summing to 100)
- Lifecycle draft -> running <-> paused -> completed
- Memoized variant assignment (weighted random, deterministic hash, round robin)
- Per-variant statistics with confidence intervals and winner detection
- Auto-optimization and multi-armed bandit reallocation while running

State is kept in memory and serialized per experiment id. The optional
store is written outside the experiment lock from a snapshot; store
failures never roll back in-memory state.
"""

import copy
import dataclasses
import random
import threading
import uuid
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from promptlab.config import ExperimentsConfig
from promptlab.errors import NotFoundError, PromptLabError, ValidationError
from promptlab.events import (
    ComponentType,
    EventBus,
    EventType,
    ExperimentAutoOptimizedPayload,
    ExperimentCompletedPayload,
    ExperimentExecutionRecordedPayload,
    ExperimentLifecyclePayload,
    StorageErrorPayload,
    TrafficAdjustedPayload,
    VariantAssignedPayload,
)
from promptlab.experiments.allocation import (
    bandit_weights,
    deterministic_hash,
    round_robin,
    weighted_random,
)
from promptlab.experiments.monitor import ExperimentMonitor
from promptlab.experiments.schemas import (
    AllocationMethod,
    Experiment,
    ExperimentDefinition,
    ExperimentResult,
    ExperimentStatus,
    ResultStatus,
    Variant,
    VariantStatistics,
    validate_transition,
)
from promptlab.experiments.stats import (
    confidence_interval,
    improvement_pct,
    intervals_overlap,
    mean_and_std,
    significance_from_z,
    two_sample_z,
    z_score,
)
from promptlab.experiments.storage import ExperimentStore
from promptlab.locks import KeyedLocks
from promptlab.logging import get_component_logger
from promptlab.metrics import TargetMetric
from promptlab.telemetry.schemas import ExecutionRecord

log = get_component_logger("experiments")

WEIGHT_TOLERANCE = 0.01


class ExperimentManager:
    """
    Create, run and analyze A/B experiments.

    Example:
        >>> manager = ExperimentManager()
        >>> experiment = manager.create_test(ExperimentDefinition(
        ...     name="Shorter summary prompt",
        ...     variants=[
        ...         Variant(id="control", name="Current", template_id="summarize",
        ...                 weight=50, is_control=True),
        ...         Variant(id="short", name="Short", template_id="summarize-short",
        ...                 weight=50),
        ...     ],
        ...     target_metric=TargetMetric.SUCCESS_RATE,
        ... ))
        >>> manager.start_test(experiment.id)
        >>> variant = manager.assign_variant(experiment.id, "user-42")
    """

    def __init__(
        self,
        config: Optional[ExperimentsConfig] = None,
        event_bus: Optional[EventBus] = None,
        store: Optional[ExperimentStore] = None,
        clock: Callable[[], datetime] = datetime.now,
        rng: Optional[random.Random] = None,
        load_persisted: bool = True,
    ):
        """
        Initialize the manager.

        Args:
            config: Experiment configuration (defaults used when None)
            event_bus: Bus to publish notifications on
            store: Optional persistence adapter
            clock: Source of "now" for start/end times and duration checks
            rng: Random source for weighted random allocation
            load_persisted: Load experiments from the store on startup
        """
        self.config = config or ExperimentsConfig()
        self._owns_bus = event_bus is None
        self.event_bus = event_bus or EventBus()
        self.store = store
        self._clock = clock
        self._rng = rng or random.Random()
        self._rng_lock = threading.Lock()

        self._experiments: Dict[str, Experiment] = {}
        self._executions: Dict[str, List[ExecutionRecord]] = {}
        self._assignments: Dict[str, Dict[str, str]] = {}
        self._assignment_counts: Dict[str, Dict[str, int]] = {}
        self._monitors: Dict[str, ExperimentMonitor] = {}
        self._locks = KeyedLocks()
        self._destroyed = False

        if store is not None and load_persisted:
            self.load_from_store()

        log.info(
            f"ExperimentManager initialized "
            f"(allocation={self.config.allocation_method}, "
            f"bandit={self.config.enable_bandit})"
        )

    # =========================================================================
    # Creation & Lifecycle
    # =========================================================================

    def create_test(self, definition: ExperimentDefinition) -> Experiment:
        """
        Create an experiment in draft status.

        Raises:
            ValidationError: On invalid variants, weights, metric or
                confidence level; nothing is stored in that case
        """
        self._ensure_active()
        experiment = self._build_experiment(definition)

        with self._locks.hold(experiment.id):
            self._experiments[experiment.id] = experiment
            self._executions[experiment.id] = []
            self._assignments[experiment.id] = {}
            self._assignment_counts[experiment.id] = {v.id: 0 for v in experiment.variants}
            snapshot = experiment.snapshot()

        log.info(
            f"Created experiment {experiment.id} '{experiment.name}' with "
            f"{len(experiment.variants)} variants on {experiment.target_metric.value}"
        )
        self._persist(snapshot)
        self._emit_lifecycle(EventType.EXPERIMENT_CREATED, snapshot)
        return snapshot

    def _build_experiment(self, definition: ExperimentDefinition) -> Experiment:
        if not definition.name or not definition.name.strip():
            raise ValidationError("Experiment name must not be empty", field="name")

        variants = definition.variants or []
        if len(variants) < 2:
            raise ValidationError("An experiment needs at least two variants", field="variants")

        ids = [v.id for v in variants]
        if len(set(ids)) != len(ids):
            raise ValidationError("Variant ids must be unique", field="variants")

        controls = [v for v in variants if v.is_control]
        if len(controls) != 1:
            raise ValidationError(
                f"Exactly one control variant is required, got {len(controls)}",
                field="variants",
            )

        for variant in variants:
            if not 0 <= variant.weight <= 100:
                raise ValidationError(
                    f"Variant {variant.id} weight {variant.weight} is outside 0-100",
                    field="weight",
                )
        total = sum(v.weight for v in variants)
        if abs(total - 100.0) > WEIGHT_TOLERANCE:
            raise ValidationError(
                f"Variant weights must sum to 100, got {total}", field="weight"
            )

        target_metric = TargetMetric.parse(definition.target_metric)

        confidence_level = (
            definition.confidence_level
            if definition.confidence_level is not None
            else self.config.default_confidence_level
        )
        z_score(confidence_level)

        minimum_sample_size = (
            definition.minimum_sample_size
            if definition.minimum_sample_size is not None
            else self.config.default_minimum_sample_size
        )
        if minimum_sample_size <= 0:
            raise ValidationError(
                "Minimum sample size must be positive", field="minimum_sample_size"
            )

        minimum_duration = (
            definition.minimum_duration_hours
            if definition.minimum_duration_hours is not None
            else self.config.minimum_test_duration_hours
        )
        if minimum_duration < 0:
            raise ValidationError(
                "Minimum duration must not be negative", field="minimum_duration_hours"
            )

        allocation = definition.allocation_method or AllocationMethod(
            self.config.allocation_method
        )

        now = self._clock()
        return Experiment(
            id=str(uuid.uuid4()),
            name=definition.name,
            description=definition.description,
            variants=copy.deepcopy(list(variants)),
            target_metric=target_metric,
            minimum_sample_size=minimum_sample_size,
            confidence_level=confidence_level,
            allocation_method=allocation,
            minimum_duration_hours=minimum_duration,
            enable_auto_optimization=(
                definition.enable_auto_optimization
                if definition.enable_auto_optimization is not None
                else self.config.enable_auto_optimization
            ),
            enable_bandit=(
                definition.enable_bandit
                if definition.enable_bandit is not None
                else self.config.enable_bandit
            ),
            status=ExperimentStatus.DRAFT,
            created_by=definition.created_by,
            created_at=now,
            updated_at=now,
            metadata=dict(definition.metadata),
        )

    def start_test(self, test_id: str) -> Experiment:
        """Move a draft or paused experiment to running and start its monitor."""
        self._ensure_active()
        with self._locks.hold(test_id):
            experiment = self._require(test_id)
            validate_transition(test_id, experiment.status, ExperimentStatus.RUNNING)
            now = self._clock()
            if experiment.start_date is None:
                experiment.start_date = now
            experiment.status = ExperimentStatus.RUNNING
            experiment.updated_at = now
            self._start_monitor_locked(experiment)
            snapshot = experiment.snapshot()

        log.info(f"Started experiment {test_id}")
        self._persist(snapshot)
        self._emit_lifecycle(EventType.EXPERIMENT_STARTED, snapshot)
        return snapshot

    def pause_test(self, test_id: str) -> Experiment:
        """Pause a running experiment and cancel its monitor."""
        self._ensure_active()
        with self._locks.hold(test_id):
            experiment = self._require(test_id)
            validate_transition(test_id, experiment.status, ExperimentStatus.PAUSED)
            experiment.status = ExperimentStatus.PAUSED
            experiment.updated_at = self._clock()
            monitor = self._monitors.pop(test_id, None)
            snapshot = experiment.snapshot()

        if monitor is not None:
            monitor.cancel()
        log.info(f"Paused experiment {test_id}")
        self._persist(snapshot)
        self._emit_lifecycle(EventType.EXPERIMENT_PAUSED, snapshot)
        return snapshot

    def complete_test(self, test_id: str) -> ExperimentResult:
        """
        Complete an experiment with a final analysis.

        Completing an already completed experiment returns the stored result
        without side effects.
        """
        self._ensure_active()
        with self._locks.hold(test_id):
            experiment = self._require(test_id)
            if experiment.status is ExperimentStatus.COMPLETED and experiment.result:
                return copy.deepcopy(experiment.result)
            validate_transition(test_id, experiment.status, ExperimentStatus.COMPLETED)
            result = self._analyze_locked(experiment)
            monitor, snapshot = self._complete_locked(experiment, result)

        self._finish_completion(monitor, snapshot, result)
        return copy.deepcopy(result)

    def _complete_locked(
        self, experiment: Experiment, result: ExperimentResult
    ) -> Tuple[Optional[ExperimentMonitor], Experiment]:
        now = self._clock()
        experiment.result = result
        experiment.status = ExperimentStatus.COMPLETED
        experiment.end_date = now
        experiment.updated_at = now
        return self._monitors.pop(experiment.id, None), experiment.snapshot()

    def _finish_completion(
        self,
        monitor: Optional[ExperimentMonitor],
        snapshot: Experiment,
        result: ExperimentResult,
    ) -> None:
        if monitor is not None:
            monitor.cancel()
        log.info(
            f"Completed experiment {snapshot.id}: {result.status.value}"
            + (f", winner={result.winner_id}" if result.winner_id else "")
        )
        self._persist(snapshot)
        self.event_bus.emit(
            EventType.EXPERIMENT_COMPLETED,
            ComponentType.EXPERIMENTS,
            ExperimentCompletedPayload(experiment_id=snapshot.id, result=copy.deepcopy(result)),
        )

    def delete_test(self, test_id: str) -> bool:
        """Remove an experiment from memory and from the store."""
        with self._locks.hold(test_id):
            experiment = self._experiments.pop(test_id, None)
            self._executions.pop(test_id, None)
            self._assignments.pop(test_id, None)
            self._assignment_counts.pop(test_id, None)
            monitor = self._monitors.pop(test_id, None)

        if monitor is not None:
            monitor.cancel()
        if experiment is None:
            return False
        if self.store is not None:
            try:
                self.store.delete(test_id)
            except Exception as e:
                self._report_storage_error("delete", test_id, e)
        self._locks.discard(test_id)
        log.info(f"Deleted experiment {test_id}")
        return True

    # =========================================================================
    # Assignment & Recording
    # =========================================================================

    def assign_variant(self, test_id: str, subject_id: str) -> Optional[Variant]:
        """
        Assign a subject to a variant.

        Returns None unless the experiment is running. A subject keeps its
        first assignment for the lifetime of the experiment.
        """
        experiment = self._experiments.get(test_id)
        if experiment is None:
            return None

        with self._locks.hold(test_id):
            if experiment.status is not ExperimentStatus.RUNNING:
                return None
            memo = self._assignments.setdefault(test_id, {})
            existing = memo.get(subject_id)
            if existing is not None:
                variant = experiment.get_variant(existing)
                return copy.deepcopy(variant) if variant else None

            variant = self._allocate(experiment, subject_id)
            memo[subject_id] = variant.id
            counts = self._assignment_counts.setdefault(test_id, {})
            counts[variant.id] = counts.get(variant.id, 0) + 1
            chosen = copy.deepcopy(variant)

        self.event_bus.emit(
            EventType.VARIANT_ASSIGNED,
            ComponentType.EXPERIMENTS,
            VariantAssignedPayload(
                experiment_id=test_id, subject_id=subject_id, variant_id=chosen.id
            ),
        )
        return chosen

    def _allocate(self, experiment: Experiment, subject_id: str) -> Variant:
        method = experiment.allocation_method
        if method is AllocationMethod.DETERMINISTIC_HASH:
            return deterministic_hash(experiment.variants, subject_id, experiment.id)
        if method is AllocationMethod.ROUND_ROBIN:
            return round_robin(
                experiment.variants, self._assignment_counts.get(experiment.id, {})
            )
        with self._rng_lock:
            return weighted_random(experiment.variants, self._rng)

    def get_assignment(self, test_id: str, subject_id: str) -> Optional[str]:
        """Variant id a subject was assigned to, if any."""
        with self._locks.hold(test_id):
            return self._assignments.get(test_id, {}).get(subject_id)

    def record_execution(
        self, test_id: str, variant_id: str, execution: ExecutionRecord
    ) -> ExecutionRecord:
        """
        Record an execution for a variant.

        The stored record carries ``experiment_id`` and ``variant_id`` in its
        metadata. While running, the winner/bandit check runs immediately.

        Raises:
            NotFoundError: If the test or variant is unknown
        """
        self._ensure_active()
        with self._locks.hold(test_id):
            experiment = self._require(test_id)
            self._require_variant(experiment, variant_id)
            tagged = dataclasses.replace(
                execution,
                metadata={
                    **execution.metadata,
                    "experiment_id": test_id,
                    "variant_id": variant_id,
                },
            )
            self._executions.setdefault(test_id, []).append(tagged)
            should_check = experiment.status is ExperimentStatus.RUNNING and (
                experiment.enable_auto_optimization or experiment.enable_bandit
            )

        self.event_bus.emit(
            EventType.EXPERIMENT_EXECUTION_RECORDED,
            ComponentType.EXPERIMENTS,
            ExperimentExecutionRecordedPayload(
                experiment_id=test_id, variant_id=variant_id, record=tagged
            ),
        )

        if should_check:
            self.check_experiment(test_id)
        return tagged

    def validate_assignment(self, test_id: str, variant_id: str) -> None:
        """
        Check that an experiment exists and has the variant.

        Raises:
            NotFoundError: If the test or variant is unknown
        """
        with self._locks.hold(test_id):
            self._require_variant(self._require(test_id), variant_id)

    def get_executions(self, test_id: str) -> List[ExecutionRecord]:
        with self._locks.hold(test_id):
            return list(self._executions.get(test_id, []))

    # =========================================================================
    # Analysis
    # =========================================================================

    def analyze_test_results(self, test_id: str) -> ExperimentResult:
        """
        Analyze an experiment's executions.

        Raises:
            NotFoundError: If the test is unknown
        """
        with self._locks.hold(test_id):
            experiment = self._require(test_id)
            return self._analyze_locked(experiment)

    def _analyze_locked(self, experiment: Experiment) -> ExperimentResult:
        metric = experiment.target_metric
        now = self._clock()

        grouped: Dict[str, List[float]] = {v.id: [] for v in experiment.variants}
        for record in self._executions.get(experiment.id, []):
            values = grouped.get(record.variant_id or "")
            if values is None:
                continue
            value = metric.extract(record)
            if value is not None:
                values.append(value)

        stats: Dict[str, VariantStatistics] = {}
        for variant in experiment.variants:
            values = grouped[variant.id]
            mean, std_dev = mean_and_std(values)
            stats[variant.id] = VariantStatistics(
                variant_id=variant.id,
                sample_size=len(values),
                mean=mean,
                std_dev=std_dev,
                confidence_interval=confidence_interval(
                    mean, std_dev, len(values), experiment.confidence_level
                ),
                meets_minimum=len(values) >= experiment.minimum_sample_size,
            )

        control_stats = stats[experiment.control.id]
        sign = 1.0 if metric.higher_is_better else -1.0

        # Under-sampled variants are skipped; the rest compete against the control
        ranked: List[Tuple[float, VariantStatistics]] = []
        if control_stats.meets_minimum:
            for variant in experiment.variants:
                variant_stats = stats[variant.id]
                if variant.is_control or not variant_stats.meets_minimum:
                    continue
                variant_stats.improvement = improvement_pct(
                    control_stats.mean, variant_stats.mean
                )
                if variant_stats.improvement is not None:
                    ranked.append((sign * variant_stats.improvement, variant_stats))
        ranked.sort(key=lambda item: item[0], reverse=True)

        qualifying = [
            s
            for effective, s in ranked
            if effective > 0
            and not intervals_overlap(control_stats.confidence_interval, s.confidence_interval)
        ]
        best = qualifying[0] if qualifying else (ranked[0][1] if ranked else None)

        significance = 0.0
        if best is not None:
            significance = significance_from_z(
                two_sample_z(
                    control_stats.mean,
                    control_stats.std_dev,
                    control_stats.sample_size,
                    best.mean,
                    best.std_dev,
                    best.sample_size,
                )
            )

        duration_met = experiment.start_date is not None and (
            now - experiment.start_date
            >= timedelta(hours=experiment.minimum_duration_hours)
        )

        if qualifying and duration_met:
            winner = qualifying[0]
            variant = experiment.get_variant(winner.variant_id)
            return ExperimentResult(
                experiment_id=experiment.id,
                status=ResultStatus.WINNER_FOUND,
                variant_statistics=stats,
                winner_id=winner.variant_id,
                statistical_significance=significance,
                recommended_action=(
                    f"Promote variant '{variant.name if variant else winner.variant_id}' "
                    f"({winner.improvement:+.1f}% {metric.value})"
                ),
                analyzed_at=now,
            )

        missing = [
            f"{vid} ({s.sample_size}/{experiment.minimum_sample_size})"
            for vid, s in stats.items()
            if not s.meets_minimum
        ]
        if missing:
            return ExperimentResult(
                experiment_id=experiment.id,
                status=ResultStatus.INSUFFICIENT_DATA,
                variant_statistics=stats,
                statistical_significance=significance,
                recommended_action=f"Collect more data for: {', '.join(missing)}",
                analyzed_at=now,
            )

        if qualifying:
            action = (
                f"Keep running until the minimum duration of "
                f"{experiment.minimum_duration_hours:g}h has elapsed"
            )
        else:
            action = "No variant is significantly better than the control; keep the control"
        return ExperimentResult(
            experiment_id=experiment.id,
            status=ResultStatus.NO_WINNER,
            variant_statistics=stats,
            statistical_significance=significance,
            recommended_action=action,
            analyzed_at=now,
        )

    # =========================================================================
    # Auto-optimization & Bandit
    # =========================================================================

    def check_experiment(self, test_id: str) -> Optional[ExperimentResult]:
        """
        Winner/bandit check for a running experiment.

        A clear winner (significance at or above the auto-optimization
        threshold) completes the experiment. Otherwise, in bandit mode,
        traffic is reallocated. Does nothing unless the experiment is running.
        """
        monitor: Optional[ExperimentMonitor] = None
        completed: Optional[Experiment] = None
        adjusted: Optional[Experiment] = None

        with self._locks.hold(test_id):
            experiment = self._experiments.get(test_id)
            if experiment is None or experiment.status is not ExperimentStatus.RUNNING:
                return None
            result = self._analyze_locked(experiment)

            if (
                experiment.enable_auto_optimization
                and result.status is ResultStatus.WINNER_FOUND
                and result.statistical_significance >= self.config.auto_optimization_threshold
            ):
                monitor, completed = self._complete_locked(experiment, result)
            elif experiment.enable_bandit and result.status is not ResultStatus.WINNER_FOUND:
                if self._reallocate_locked(experiment, result):
                    adjusted = experiment.snapshot()

        if completed is not None:
            log.info(
                f"Auto-optimized experiment {test_id}: winner {result.winner_id} "
                f"(significance {result.statistical_significance:.3f})"
            )
            self._finish_completion(monitor, completed, result)
            self.event_bus.emit(
                EventType.EXPERIMENT_AUTO_OPTIMIZED,
                ComponentType.EXPERIMENTS,
                ExperimentAutoOptimizedPayload(
                    experiment_id=test_id,
                    winner_id=result.winner_id or "",
                    significance=result.statistical_significance,
                ),
            )
        elif adjusted is not None:
            log.info(f"Traffic adjusted for {test_id}: {adjusted.weights}")
            self._persist(adjusted)
            self.event_bus.emit(
                EventType.TRAFFIC_ADJUSTED,
                ComponentType.EXPERIMENTS,
                TrafficAdjustedPayload(experiment_id=test_id, weights=adjusted.weights),
            )
        return result

    def _reallocate_locked(self, experiment: Experiment, result: ExperimentResult) -> bool:
        weights = bandit_weights(
            experiment.variants,
            result.variant_statistics,
            higher_is_better=experiment.target_metric.higher_is_better,
            min_observations=self.config.bandit_min_observations,
            min_weight=self.config.bandit_min_weight,
            max_weight=self.config.bandit_max_weight,
        )
        if all(abs(v.weight - weights[v.id]) < 1e-9 for v in experiment.variants):
            return False
        for variant in experiment.variants:
            variant.weight = weights[variant.id]
        experiment.updated_at = self._clock()
        return True

    def _start_monitor_locked(self, experiment: Experiment) -> None:
        if not (experiment.enable_auto_optimization or experiment.enable_bandit):
            return
        if experiment.id in self._monitors:
            return
        monitor = ExperimentMonitor(
            experiment.id, self.config.monitor_interval_seconds, self._monitor_tick
        )
        self._monitors[experiment.id] = monitor
        monitor.start()

    def _monitor_tick(self, test_id: str) -> None:
        self.check_experiment(test_id)

    def is_monitored(self, test_id: str) -> bool:
        monitor = self._monitors.get(test_id)
        return monitor is not None and not monitor.is_cancelled

    # =========================================================================
    # Queries
    # =========================================================================

    def get_test(self, test_id: str) -> Optional[Experiment]:
        with self._locks.hold(test_id):
            experiment = self._experiments.get(test_id)
            return experiment.snapshot() if experiment else None

    def list_tests(self, status: Optional[ExperimentStatus] = None) -> List[Experiment]:
        snapshots = []
        for test_id in list(self._experiments):
            snapshot = self.get_test(test_id)
            if snapshot is not None and (status is None or snapshot.status is status):
                snapshots.append(snapshot)
        return sorted(snapshots, key=lambda e: e.created_at)

    def get_active_tests_for_template(self, template_id: str) -> List[Experiment]:
        """Running experiments with a variant on ``template_id``."""
        return [
            e
            for e in self.list_tests(ExperimentStatus.RUNNING)
            if e.references_template(template_id)
        ]

    # =========================================================================
    # Persistence
    # =========================================================================

    def load_from_store(self) -> int:
        """
        Load persisted experiments.

        Load failures degrade to no persisted state. Running experiments
        resume monitoring.

        Returns:
            Number of experiments loaded
        """
        if self.store is None:
            return 0
        try:
            experiments = self.store.list()
        except Exception as e:
            self._report_storage_error("load", None, e)
            return 0

        for experiment in experiments:
            with self._locks.hold(experiment.id):
                self._experiments[experiment.id] = experiment
                self._executions.setdefault(experiment.id, [])
                self._assignments.setdefault(experiment.id, {})
                self._assignment_counts.setdefault(
                    experiment.id, {v.id: 0 for v in experiment.variants}
                )
                if experiment.status is ExperimentStatus.RUNNING:
                    self._start_monitor_locked(experiment)

        log.info(f"Loaded {len(experiments)} experiments from store")
        return len(experiments)

    def _persist(self, snapshot: Experiment) -> None:
        if self.store is None:
            return
        try:
            self.store.save(snapshot)
        except Exception as e:
            self._report_storage_error("save", snapshot.id, e)

    def _report_storage_error(
        self, operation: str, key: Optional[str], error: Exception
    ) -> None:
        log.error(f"Experiment store {operation} failed for {key or 'all'}: {error}")
        self.event_bus.emit(
            EventType.STORAGE_ERROR,
            ComponentType.EXPERIMENTS,
            StorageErrorPayload(operation=operation, key=key, error=str(error)),
        )

    # =========================================================================
    # Helpers & Lifecycle
    # =========================================================================

    def _require(self, test_id: str) -> Experiment:
        experiment = self._experiments.get(test_id)
        if experiment is None:
            raise NotFoundError(f"Experiment {test_id} not found", "experiment", test_id)
        return experiment

    def _require_variant(self, experiment: Experiment, variant_id: str) -> Variant:
        variant = experiment.get_variant(variant_id)
        if variant is None:
            raise NotFoundError(
                f"Variant {variant_id} not found in experiment {experiment.id}",
                "variant",
                variant_id,
            )
        return variant

    def _emit_lifecycle(self, event_type: EventType, experiment: Experiment) -> None:
        self.event_bus.emit(
            event_type,
            ComponentType.EXPERIMENTS,
            ExperimentLifecyclePayload(
                experiment_id=experiment.id,
                name=experiment.name,
                status=experiment.status.value,
            ),
        )

    def _ensure_active(self) -> None:
        if self._destroyed:
            raise PromptLabError("ExperimentManager has been destroyed")

    def destroy(self) -> None:
        """Cancel every monitor and release in-memory state."""
        if self._destroyed:
            return
        self._destroyed = True
        monitors = list(self._monitors.values())
        self._monitors.clear()
        for monitor in monitors:
            monitor.cancel()

        self._experiments.clear()
        self._executions.clear()
        self._assignments.clear()
        self._assignment_counts.clear()
        self._locks.clear()
        if self._owns_bus:
            self.event_bus.clear()
        log.info("ExperimentManager destroyed")
