"""
Performance analytics for prompt templates.

Buffers execution records per template and derives:
- Exact summaries (means, success ratio, latency percentiles, provider mix)
- Time-bucketed trend points and fitted trends
- Anomalies against a rolling baseline of prior executions
- Threshold-based recommendations and a previous-period comparison

Mutations are serialized per template id; different templates are
independent.
"""

import math
import statistics
import threading
from collections import deque
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, List, Optional, Sequence, Tuple, Union

from promptlab.config import AnalyticsConfig
from promptlab.errors import PromptLabError, ValidationError
from promptlab.events import (
    AnomaliesDetectedPayload,
    ComponentType,
    EventBus,
    EventType,
    ExecutionRecordedPayload,
    MetricRegisteredPayload,
)
from promptlab.locks import KeyedLocks
from promptlab.logging import get_component_logger
from promptlab.metrics import (
    MetricCalculator,
    MetricDefinition,
    MetricRegistry,
    TargetMetric,
    latency_stability,
    percentile,
)
from promptlab.telemetry.schemas import (
    AnomalyRecord,
    ExecutionRecord,
    MetricPoint,
    PerformanceComparison,
    PerformanceRecommendation,
    PerformanceReport,
    PerformanceSummary,
    PerformanceTrend,
    Severity,
    TrendPoint,
    to_local_naive,
)

log = get_component_logger("analytics")

INTERVALS: Dict[str, timedelta] = {
    "minute": timedelta(minutes=1),
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
}

ANOMALY_METRICS: Tuple[TargetMetric, ...] = (
    TargetMetric.RESPONSE_TIME,
    TargetMetric.TOKEN_USAGE,
    TargetMetric.COST,
    TargetMetric.QUALITY_SCORE,
)

POSSIBLE_CAUSES: Dict[TargetMetric, List[str]] = {
    TargetMetric.RESPONSE_TIME: [
        "Provider API slowdown",
        "Increased prompt complexity",
        "Network latency",
    ],
    TargetMetric.TOKEN_USAGE: [
        "Longer input prompts",
        "More verbose responses",
        "Changed model behavior",
    ],
    TargetMetric.COST: [
        "Increased token usage",
        "Using more expensive model",
        "Provider pricing changes",
    ],
    TargetMetric.QUALITY_SCORE: [
        "Prompt degradation",
        "Model performance issues",
        "Changed evaluation criteria",
    ],
}

TREND_METRICS: Tuple[str, ...] = (
    "avg_response_time",
    "success_rate",
    "avg_token_usage",
    "avg_cost",
    "quality_score",
)

# Fitted change (percent) below which a trend counts as stable
STABLE_CHANGE_PCT = 5.0

ANOMALY_HISTORY_LIMIT = 1000


def resolve_interval(interval: Union[str, timedelta]) -> timedelta:
    """Turn an interval name or timedelta into a positive timedelta."""
    if isinstance(interval, timedelta):
        if interval <= timedelta(0):
            raise ValidationError("Interval must be positive", field="interval")
        return interval
    step = INTERVALS.get(interval)
    if step is None:
        raise ValidationError(f"Unknown interval: {interval}", field="interval")
    return step


def bucket_start(timestamp: datetime, step: timedelta) -> datetime:
    """Floor a timestamp to the start of its bucket."""
    anchor = datetime(1970, 1, 1, tzinfo=timestamp.tzinfo)
    return anchor + ((timestamp - anchor) // step) * step


def baseline_stats(values: Sequence[float]) -> Tuple[float, float]:
    """Mean and population standard deviation of a baseline."""
    low, high = min(values), max(values)
    if low == high:
        return float(low), 0.0
    mean = math.fsum(values) / len(values)
    variance = math.fsum((v - mean) ** 2 for v in values) / len(values)
    return mean, math.sqrt(variance)


def classify_severity(deviation: float, threshold: float) -> Severity:
    """Severity tier from how many multiples of the threshold are exceeded."""
    ratio = deviation / threshold
    if ratio >= 4:
        return "high"
    if ratio >= 2:
        return "medium"
    return "low"


class PerformanceAnalytics:
    """
    Execution telemetry store and performance analytics.

    Example:
        >>> analytics = PerformanceAnalytics()
        >>> analytics.record_execution(record)
        >>> report = analytics.generate_report("summarize")
        >>> report.summary.success_rate
    """

    def __init__(
        self,
        config: Optional[AnalyticsConfig] = None,
        event_bus: Optional[EventBus] = None,
        metrics: Optional[MetricRegistry] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize analytics.

        Args:
            config: Analytics configuration (defaults used when None)
            event_bus: Bus to publish notifications on; a private one is
                created when None
            metrics: Metric registry shared with the optimization engine
            clock: Source of "now", used for retention and default windows
        """
        self.config = config or AnalyticsConfig()
        self._owns_bus = event_bus is None
        self.event_bus = event_bus or EventBus()
        self.metrics = metrics or MetricRegistry()
        self._clock = clock

        self._executions: Dict[str, List[ExecutionRecord]] = {}
        self._anomalies: Dict[str, Deque[AnomalyRecord]] = {}
        self._locks = KeyedLocks()

        self._stop_event = threading.Event()
        self._aggregation_thread: Optional[threading.Thread] = None
        self._destroyed = False

        if self.config.aggregation_interval_seconds:
            self._start_aggregation(self.config.aggregation_interval_seconds)

        log.info(
            f"PerformanceAnalytics initialized "
            f"(retention={self.config.retention_days}d, "
            f"threshold={self.config.anomaly_threshold_std_dev}σ)"
        )

    # =========================================================================
    # Recording
    # =========================================================================

    def record_execution(self, record: ExecutionRecord) -> List[AnomalyRecord]:
        """
        Append an execution to its template buffer.

        When real-time analysis is enabled the record is checked against the
        template's baseline before it joins the buffer.

        Returns:
            Anomalies detected for this record (empty when none or disabled)
        """
        self._ensure_active()
        template_id = record.template_id

        with self._locks.hold(template_id):
            buffer = self._executions.setdefault(template_id, [])
            anomalies: List[AnomalyRecord] = []
            if self.config.enable_real_time_analysis:
                anomalies = self._detect(buffer, record)
            buffer[:] = self._retained([*buffer, record])
            if anomalies:
                history = self._anomalies.setdefault(
                    template_id, deque(maxlen=ANOMALY_HISTORY_LIMIT)
                )
                history.extend(anomalies)

        self.event_bus.emit(
            EventType.EXECUTION_RECORDED,
            ComponentType.ANALYTICS,
            ExecutionRecordedPayload(template_id=template_id, record=record),
        )

        if anomalies:
            log.warning(
                f"{len(anomalies)} anomalies for {template_id}: "
                + ", ".join(f"{a.metric}={a.severity}" for a in anomalies)
            )
            self.event_bus.emit(
                EventType.ANOMALIES_DETECTED,
                ComponentType.ANALYTICS,
                AnomaliesDetectedPayload(template_id=template_id, anomalies=anomalies),
            )

        return anomalies

    def get_executions(self, template_id: str) -> List[ExecutionRecord]:
        """Copy of the buffered executions of a template, oldest first."""
        with self._locks.hold(template_id):
            return list(self._executions.get(template_id, []))

    def get_anomaly_history(
        self, template_id: str, limit: Optional[int] = None
    ) -> List[AnomalyRecord]:
        """Anomalies detected in real time for a template, oldest first."""
        with self._locks.hold(template_id):
            anomalies = list(self._anomalies.get(template_id, []))
        if limit is not None:
            anomalies = anomalies[-limit:]
        return anomalies

    def get_template_ids(self) -> List[str]:
        return sorted(self._executions)

    # =========================================================================
    # Anomaly Detection
    # =========================================================================

    def detect_anomalies(
        self, template_id: str, candidate: ExecutionRecord
    ) -> List[AnomalyRecord]:
        """
        Check a candidate execution against the template's baseline.

        Only executions recorded before the candidate form the baseline; a
        candidate already in the buffer never counts towards its own
        baseline.
        """
        with self._locks.hold(template_id):
            buffer = list(self._executions.get(template_id, []))

        prior = buffer
        for index, record in enumerate(buffer):
            if record.execution_id == candidate.execution_id:
                prior = buffer[:index]
                break
        return self._detect(prior, candidate)

    def _detect(
        self, prior: Sequence[ExecutionRecord], candidate: ExecutionRecord
    ) -> List[AnomalyRecord]:
        if not self.config.enable_anomaly_detection:
            return []
        if len(prior) < self.config.min_baseline_executions:
            return []

        baseline = prior[-self.config.baseline_window :]
        return self._compare_to_baseline(
            candidate,
            {metric: [metric.extract(r) for r in baseline] for metric in ANOMALY_METRICS},
        )

    def _detect_in_window(
        self, buffer: Sequence[ExecutionRecord], start: datetime, end: datetime
    ) -> List[AnomalyRecord]:
        """Anomalies of buffered records inside a window, each against its own prior."""
        if not self.config.enable_anomaly_detection:
            return []

        series = {metric: [metric.extract(r) for r in buffer] for metric in ANOMALY_METRICS}
        window = self.config.baseline_window
        anomalies: List[AnomalyRecord] = []
        for index, record in enumerate(buffer):
            if index < self.config.min_baseline_executions:
                continue
            if not start <= record.timestamp <= end:
                continue
            first = max(0, index - window)
            anomalies.extend(
                self._compare_to_baseline(
                    record, {metric: values[first:index] for metric, values in series.items()}
                )
            )
        return anomalies

    def _compare_to_baseline(
        self,
        candidate: ExecutionRecord,
        baselines: Dict[TargetMetric, Sequence[Optional[float]]],
    ) -> List[AnomalyRecord]:
        threshold = self.config.anomaly_threshold_std_dev
        anomalies: List[AnomalyRecord] = []

        for metric in ANOMALY_METRICS:
            actual = metric.extract(candidate)
            if actual is None:
                continue

            values = [v for v in baselines[metric] if v is not None]
            if len(values) < self.config.min_baseline_executions:
                continue

            mean, std_dev = baseline_stats(values)
            if std_dev == 0:
                if actual == mean:
                    continue
                deviation = math.inf
            else:
                deviation = abs(actual - mean) / std_dev

            if deviation > threshold:
                anomalies.append(
                    AnomalyRecord(
                        timestamp=candidate.timestamp,
                        template_id=candidate.template_id,
                        metric=metric.value,
                        expected_value=mean,
                        actual_value=actual,
                        deviation=deviation,
                        severity=classify_severity(deviation, threshold),
                        possible_causes=list(POSSIBLE_CAUSES[metric]),
                        execution_id=candidate.execution_id,
                    )
                )

        return anomalies

    # =========================================================================
    # Reports
    # =========================================================================

    def generate_report(
        self,
        template_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> PerformanceReport:
        """
        Build a performance report for a template.

        Args:
            template_id: Template to report on
            start: Window start (defaults to ``report_window_days`` before end)
            end: Window end (defaults to now)

        Returns:
            PerformanceReport; an unknown template yields an empty summary
        """
        end = to_local_naive(end) if end else self._clock()
        start = (
            to_local_naive(start)
            if start
            else end - timedelta(days=self.config.report_window_days)
        )
        if start > end:
            raise ValidationError("Report start must not be after end", field="start")

        with self._locks.hold(template_id):
            buffer = list(self._executions.get(template_id, []))

        window = [r for r in buffer if start <= r.timestamp <= end]
        summary = self.summarize(template_id, window)
        trend_points = self._build_trend_points(window)
        trends = self._analyze_trends(trend_points)

        anomalies = self._detect_in_window(buffer, start, end)

        previous_start = start - (end - start)
        previous = [r for r in buffer if previous_start <= r.timestamp < start]
        comparisons = self._compare(summary, self.summarize(template_id, previous))

        recommendations = self._generate_recommendations(summary, trends, anomalies, end)

        log.debug(
            f"Report for {template_id}: {summary.total_executions} executions, "
            f"{len(anomalies)} anomalies, {len(recommendations)} recommendations"
        )

        return PerformanceReport(
            template_id=template_id,
            period_start=start,
            period_end=end,
            summary=summary,
            trend_points=trend_points,
            trends=trends,
            anomalies=anomalies,
            recommendations=recommendations,
            comparisons=comparisons,
            generated_at=self._clock(),
        )

    def summarize(
        self, template_id: str, records: Sequence[ExecutionRecord]
    ) -> PerformanceSummary:
        """Exact summary of a set of executions."""
        if not records:
            return PerformanceSummary(template_id=template_id)

        total = len(records)
        successes = sum(1 for r in records if r.success)
        latencies = sorted(r.response_time_ms for r in records)
        scores = [r.quality_score for r in records if r.quality_score is not None]

        provider_breakdown: Dict[str, int] = {}
        for record in records:
            provider_breakdown[record.provider] = provider_breakdown.get(record.provider, 0) + 1

        return PerformanceSummary(
            template_id=template_id,
            total_executions=total,
            success_rate=successes / total,
            error_rate=(total - successes) / total,
            avg_response_time=statistics.mean(latencies),
            p50_response_time=percentile(latencies, 50),
            p95_response_time=percentile(latencies, 95),
            p99_response_time=percentile(latencies, 99),
            avg_token_usage=statistics.mean(r.token_usage.total for r in records),
            avg_cost=statistics.mean(r.cost for r in records),
            total_cost=sum(r.cost for r in records),
            quality_score=statistics.mean(scores) if scores else None,
            stability=latency_stability(records),
            last_executed=max(r.timestamp for r in records),
            provider_breakdown=provider_breakdown,
            custom_metrics=self._compute_custom_metrics(records),
        )

    def _compute_custom_metrics(self, records: Sequence[ExecutionRecord]) -> Dict[str, float]:
        values: Dict[str, float] = {}
        for definition in self.metrics.custom():
            try:
                value = definition.compute(records)
            except Exception as e:
                log.error(f"Custom metric '{definition.name}' failed: {e}")
                continue
            if value is not None:
                values[definition.name] = float(value)
        return values

    def _build_trend_points(self, records: Sequence[ExecutionRecord]) -> List[TrendPoint]:
        step = resolve_interval(self.config.trend_interval)
        buckets: Dict[datetime, List[ExecutionRecord]] = {}
        for record in records:
            buckets.setdefault(bucket_start(record.timestamp, step), []).append(record)

        points = []
        for timestamp in sorted(buckets):
            bucket = buckets[timestamp]
            scores = [r.quality_score for r in bucket if r.quality_score is not None]
            points.append(
                TrendPoint(
                    timestamp=timestamp,
                    executions=len(bucket),
                    success_rate=sum(1 for r in bucket if r.success) / len(bucket),
                    avg_response_time=statistics.mean(r.response_time_ms for r in bucket),
                    avg_token_usage=statistics.mean(r.token_usage.total for r in bucket),
                    avg_cost=statistics.mean(r.cost for r in bucket),
                    quality_score=statistics.mean(scores) if scores else None,
                )
            )
        return points

    def _analyze_trends(self, points: Sequence[TrendPoint]) -> List[PerformanceTrend]:
        """Fit a linear trend per metric; needs at least three buckets."""
        if len(points) < 3:
            return []

        trends = []
        for metric in TREND_METRICS:
            values = [getattr(p, metric) for p in points]
            if any(v is None for v in values):
                continue
            trend = self._fit_trend(metric, values)
            if trend is not None:
                trends.append(trend)
        return trends

    def _fit_trend(self, metric: str, values: Sequence[float]) -> Optional[PerformanceTrend]:
        n = len(values)
        x_values = list(range(n))
        mean_x = statistics.mean(x_values)
        mean_y = statistics.mean(values)

        numerator = sum((x - mean_x) * (y - mean_y) for x, y in zip(x_values, values))
        denominator = sum((x - mean_x) ** 2 for x in x_values)
        if denominator == 0:
            return None

        slope = numerator / denominator
        intercept = mean_y - slope * mean_x

        ss_total = sum((y - mean_y) ** 2 for y in values)
        ss_residual = sum((y - (intercept + slope * x)) ** 2 for x, y in zip(x_values, values))
        r_squared = 1.0 - ss_residual / ss_total if ss_total > 0 else 0.0

        first = intercept
        last = intercept + slope * (n - 1)
        change_pct = (last - first) / abs(first) * 100 if first != 0 else 0.0

        if abs(change_pct) < STABLE_CHANGE_PCT:
            direction = "stable"
        elif (change_pct > 0) == self.metrics.higher_is_better(metric):
            direction = "improving"
        else:
            direction = "declining"

        forecast = None
        if r_squared >= self.config.trend_forecast_min_r2:
            forecast = intercept + slope * n

        return PerformanceTrend(
            metric=metric,
            direction=direction,
            change_pct=change_pct,
            confidence=max(0.0, r_squared),
            slope=slope,
            forecast=forecast,
        )

    def _compare(
        self, current: PerformanceSummary, previous: PerformanceSummary
    ) -> List[PerformanceComparison]:
        if current.total_executions == 0 or previous.total_executions == 0:
            return []

        comparisons = []
        for metric in TREND_METRICS:
            now_value = current.get_metric(metric)
            then_value = previous.get_metric(metric)
            if now_value is None or then_value is None:
                continue
            change_pct = (now_value - then_value) / abs(then_value) * 100 if then_value else 0.0
            if self.metrics.higher_is_better(metric):
                improved = change_pct > 0
            else:
                improved = change_pct < 0
            comparisons.append(
                PerformanceComparison(
                    metric=metric,
                    previous=then_value,
                    current=now_value,
                    change_pct=change_pct,
                    is_improvement=improved,
                )
            )
        return comparisons

    def _generate_recommendations(
        self,
        summary: PerformanceSummary,
        trends: Sequence[PerformanceTrend],
        anomalies: Sequence[AnomalyRecord],
        end: datetime,
    ) -> List[PerformanceRecommendation]:
        """Threshold-based recommendations for a report."""
        recommendations: List[PerformanceRecommendation] = []
        if summary.total_executions == 0:
            return recommendations

        if summary.avg_response_time > self.config.target_response_time_ms:
            recommendations.append(
                PerformanceRecommendation(
                    type="optimization",
                    priority="high",
                    title="Reduce response latency",
                    description=(
                        f"Average response time {summary.avg_response_time:.0f}ms exceeds "
                        f"the {self.config.target_response_time_ms:.0f}ms target"
                    ),
                    impact="Faster responses and better user experience",
                    action="Shorten the prompt, use a faster model or enable streaming",
                    metrics=["avg_response_time"],
                )
            )

        if summary.success_rate < self.config.target_success_rate:
            critical = summary.success_rate < self.config.critical_success_rate
            recommendations.append(
                PerformanceRecommendation(
                    type="warning",
                    priority="critical" if critical else "high",
                    title="Improve reliability",
                    description=(
                        f"Success rate {summary.success_rate:.1%} is below the "
                        f"{self.config.target_success_rate:.0%} target"
                    ),
                    impact="Fewer failed executions and retries",
                    action="Add retry with backoff and a fallback provider",
                    metrics=["success_rate"],
                )
            )

        recent = [a for a in anomalies if a.timestamp >= end - timedelta(hours=24)]
        if len(recent) > self.config.anomaly_cluster_threshold:
            recommendations.append(
                PerformanceRecommendation(
                    type="warning",
                    priority="medium",
                    title="Investigate performance anomalies",
                    description=f"{len(recent)} anomalies detected in the last 24 hours",
                    impact="More predictable performance",
                    action="Review recent prompt, model and provider changes",
                    metrics=sorted({a.metric for a in recent}),
                )
            )

        if (
            summary.quality_score is not None
            and summary.quality_score < self.config.min_quality_score
        ):
            recommendations.append(
                PerformanceRecommendation(
                    type="insight",
                    priority="medium",
                    title="Improve output quality",
                    description=f"Quality score {summary.quality_score:.2f} is low",
                    impact="Higher quality responses",
                    action="Refine instructions and add examples to the prompt",
                    metrics=["quality_score"],
                )
            )

        for trend in trends:
            if trend.metric == "avg_cost" and trend.change_pct > self.config.cost_trend_threshold_pct:
                recommendations.append(
                    PerformanceRecommendation(
                        type="warning",
                        priority="medium",
                        title="Rising cost trend",
                        description=f"Average cost increased {trend.change_pct:.1f}% over the window",
                        impact="Controlled spend",
                        action="Review token usage and model selection",
                        metrics=["avg_cost"],
                    )
                )

        return recommendations

    # =========================================================================
    # Metrics
    # =========================================================================

    def register_custom_metric(
        self,
        name: str,
        calculator: MetricCalculator,
        unit: str,
        higher_is_better: bool,
        description: str = "",
    ) -> MetricDefinition:
        """
        Register a named aggregate over execution records.

        The metric appears in report summaries and can be used in
        optimization strategy conditions.

        Raises:
            ValidationError: If the name collides with an existing metric
        """
        definition = self.metrics.register(
            MetricDefinition(
                name=name,
                unit=unit,
                higher_is_better=higher_is_better,
                calculator=calculator,
                description=description,
            )
        )
        log.info(f"Registered custom metric: {name} ({unit})")
        self.event_bus.emit(
            EventType.METRIC_REGISTERED,
            ComponentType.ANALYTICS,
            MetricRegisteredPayload(name=name, unit=unit, higher_is_better=higher_is_better),
        )
        return definition

    def get_metric_history(
        self,
        template_id: str,
        metric: str,
        interval: Union[str, timedelta] = "hour",
        limit: int = 30,
    ) -> List[MetricPoint]:
        """
        Metric values per time bucket, oldest first.

        Returns:
            At most ``limit`` most recent points; empty for unknown templates

        Raises:
            ValidationError: If the metric or interval is unknown
        """
        definition = self.metrics.get(metric)
        step = resolve_interval(interval)
        if limit <= 0:
            return []

        with self._locks.hold(template_id):
            records = list(self._executions.get(template_id, []))

        buckets: Dict[datetime, List[ExecutionRecord]] = {}
        for record in records:
            buckets.setdefault(bucket_start(record.timestamp, step), []).append(record)

        points = []
        for timestamp in sorted(buckets):
            value = definition.compute(buckets[timestamp])
            if value is not None:
                points.append(MetricPoint(timestamp=timestamp, value=float(value)))
        return points[-limit:]

    # =========================================================================
    # Retention & Lifecycle
    # =========================================================================

    def prune(self) -> int:
        """Apply retention to every buffer. Returns records removed."""
        removed = 0
        for template_id in list(self._executions):
            with self._locks.hold(template_id):
                buffer = self._executions.get(template_id)
                if buffer is not None:
                    removed += self._prune_locked(template_id, buffer)
        if removed:
            log.debug(f"Pruned {removed} expired execution records")
        return removed

    def _retained(self, records: Sequence[ExecutionRecord]) -> List[ExecutionRecord]:
        """Records within retention, capped at the newest ``max_buffer_size``."""
        cutoff = self._clock() - timedelta(days=self.config.retention_days)
        kept = [r for r in records if r.timestamp >= cutoff]
        overflow = len(kept) - self.config.max_buffer_size
        if overflow > 0:
            kept = kept[overflow:]
        return kept

    def _prune_locked(self, template_id: str, buffer: List[ExecutionRecord]) -> int:
        before = len(buffer)
        kept = self._retained(buffer)
        if len(kept) != before:
            buffer[:] = kept
        return before - len(kept)

    def _start_aggregation(self, interval: float) -> None:
        def _loop() -> None:
            while not self._stop_event.wait(interval):
                self.prune()

        self._aggregation_thread = threading.Thread(
            target=_loop, daemon=True, name="promptlab-analytics-aggregation"
        )
        self._aggregation_thread.start()

    def _ensure_active(self) -> None:
        if self._destroyed:
            raise PromptLabError("PerformanceAnalytics has been destroyed")

    def destroy(self) -> None:
        """Stop background work, release buffers and detach subscribers."""
        if self._destroyed:
            return
        self._destroyed = True
        self._stop_event.set()
        thread = self._aggregation_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5.0)
        self._aggregation_thread = None

        self._executions.clear()
        self._anomalies.clear()
        self._locks.clear()
        if self._owns_bus:
            self.event_bus.clear()
        log.info("PerformanceAnalytics destroyed")

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed
