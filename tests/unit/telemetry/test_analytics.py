"""
Unit tests for performance analytics.

Covers recording, retention, anomaly detection against the prior baseline,
report generation, custom metrics and metric history.
"""

import dataclasses
import threading
from datetime import datetime, timedelta, timezone

import pytest

from promptlab.config import AnalyticsConfig
from promptlab.errors import PromptLabError, ValidationError
from promptlab.events import EventBus, EventType
from promptlab.telemetry import (
    ExecutionRecord,
    PerformanceAnalytics,
    TokenUsage,
    classify_severity,
    percentile,
)

NOW = datetime(2026, 3, 1, 12, 0, 0)
SEVERITY_RANK = {"low": 0, "medium": 1, "high": 2}


def make_record(
    latency: float = 1000.0,
    success: bool = True,
    minutes_ago: float = 1.0,
    template_id: str = "summarize",
    tokens: int = 200,
    cost: float = 0.01,
    quality=None,
) -> ExecutionRecord:
    return ExecutionRecord(
        template_id=template_id,
        template_version="1.0.0",
        success=success,
        response_time_ms=latency,
        token_usage=TokenUsage(prompt=tokens // 2, completion=tokens // 2, total=tokens),
        cost=cost,
        provider="openai",
        timestamp=NOW - timedelta(minutes=minutes_ago),
        quality_score=quality,
        error=None if success else "timeout",
    )


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def analytics(bus):
    """Create analytics with a fixed clock."""
    instance = PerformanceAnalytics(AnalyticsConfig(), event_bus=bus, clock=lambda: NOW)
    yield instance
    instance.destroy()


def seed_baseline(analytics, count: int = 20):
    """Latencies cycling through 900..1100 ms, oldest first."""
    for i in range(count):
        analytics.record_execution(
            make_record(latency=1000 + (i % 5 - 2) * 50, minutes_ago=count - i + 10)
        )


# =============================================================================
# Helpers
# =============================================================================


class TestHelpers:
    """Tests for module-level helpers."""

    def test_percentile(self):
        """Test interpolated percentiles."""
        values = [100.0, 200.0, 300.0, 400.0]
        assert percentile(values, 50) == 250.0
        assert percentile(values, 100) == 400.0
        assert percentile([], 95) == 0.0
        assert percentile([7.0], 99) == 7.0

    def test_classify_severity(self):
        """Test severity tiers by deviation / threshold ratio."""
        assert classify_severity(2.5, 2.0) == "low"
        assert classify_severity(4.0, 2.0) == "medium"
        assert classify_severity(8.0, 2.0) == "high"
        assert classify_severity(float("inf"), 2.0) == "high"


# =============================================================================
# Recording
# =============================================================================


class TestRecording:
    """Tests for record_execution and retention."""

    def test_record_execution(self, analytics, bus):
        """Test that a recorded execution is buffered and announced."""
        record = make_record()
        anomalies = analytics.record_execution(record)

        assert anomalies == []
        assert analytics.get_executions("summarize") == [record]
        assert analytics.get_template_ids() == ["summarize"]
        events = bus.get_history(EventType.EXECUTION_RECORDED)
        assert len(events) == 1
        assert events[0].payload.record is record

    def test_retention_prunes_old_records(self, analytics):
        """Test that records older than the retention window are dropped."""
        analytics.record_execution(make_record(minutes_ago=60 * 24 * 40))
        analytics.record_execution(make_record())

        assert len(analytics.get_executions("summarize")) == 1

    def test_buffer_size_limit(self, bus):
        """Test that the oldest records are dropped past the buffer size."""
        analytics = PerformanceAnalytics(
            AnalyticsConfig(max_buffer_size=5), event_bus=bus, clock=lambda: NOW
        )
        for i in range(8):
            analytics.record_execution(make_record(latency=float(i), minutes_ago=10 - i))

        latencies = [r.response_time_ms for r in analytics.get_executions("summarize")]
        assert latencies == [3.0, 4.0, 5.0, 6.0, 7.0]
        analytics.destroy()

    def test_templates_are_independent(self, analytics):
        """Test that buffers are kept per template."""
        analytics.record_execution(make_record(template_id="a"))
        analytics.record_execution(make_record(template_id="b"))

        assert len(analytics.get_executions("a")) == 1
        assert analytics.get_executions("missing") == []

    def test_aware_timestamp_then_naive(self, analytics):
        """Test that an offset timestamp is stored as naive local time."""
        moment = NOW - timedelta(minutes=30)
        aware = dataclasses.replace(make_record(), timestamp=moment.astimezone(timezone.utc))

        analytics.record_execution(aware)
        analytics.record_execution(make_record())

        records = analytics.get_executions("summarize")
        assert len(records) == 2
        assert records[0].timestamp == moment
        assert records[0].timestamp.tzinfo is None

    def test_aware_report_bounds(self, analytics):
        """Test that reports accept offset-aware window bounds."""
        analytics.record_execution(make_record(minutes_ago=5))

        report = analytics.generate_report(
            "summarize",
            start=(NOW - timedelta(hours=1)).astimezone(timezone.utc),
            end=NOW.astimezone(timezone.utc),
        )

        assert report.summary.total_executions == 1
        assert report.period_end == NOW

    def test_timestamp_from_dict_with_offset(self):
        """Test that deserialized offset timestamps become naive."""
        record = ExecutionRecord.from_dict(
            {
                "template_id": "summarize",
                "timestamp": "2026-03-01T12:00:00+02:00",
                "success": True,
                "response_time_ms": 800,
            }
        )
        assert record.timestamp.tzinfo is None
        assert record.timestamp == (
            datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc).astimezone().replace(tzinfo=None)
        )

    def test_timestamp_must_be_datetime(self):
        """Test that a non-datetime timestamp is rejected at construction."""
        with pytest.raises(ValidationError):
            dataclasses.replace(make_record(), timestamp="2026-03-01")

    def test_concurrent_recording(self, analytics):
        """Test that parallel writers lose no records and summaries stay exact."""

        def writer(offset: int) -> None:
            for i in range(200):
                analytics.record_execution(
                    make_record(
                        latency=float(1000 + offset + i % 2),
                        success=i % 4 != 0,
                        template_id="shared",
                    )
                )
                analytics.record_execution(make_record(template_id=f"own-{offset}"))

        threads = [threading.Thread(target=writer, args=(n * 10,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(analytics.get_executions("shared")) == 800
        for n in range(4):
            assert len(analytics.get_executions(f"own-{n * 10}")) == 200

        summary = analytics.generate_report("shared").summary
        assert summary.total_executions == 800
        assert summary.success_rate == 0.75
        assert summary.avg_response_time == pytest.approx(1015.5)


# =============================================================================
# Anomaly Detection
# =============================================================================


class TestAnomalyDetection:
    """Tests for anomaly detection."""

    def test_below_minimum_baseline_no_anomalies(self, analytics):
        """Test that fewer than the minimum baseline yields no anomalies."""
        for i in range(5):
            analytics.record_execution(make_record(minutes_ago=20 - i))

        for value in (0.0, 1000.0, 1_000_000.0):
            assert analytics.detect_anomalies("summarize", make_record(latency=value)) == []
        assert analytics.record_execution(make_record(latency=1_000_000.0)) == []

    def test_latency_spike_detected(self, analytics, bus):
        """Test that a latency spike is flagged and announced."""
        seed_baseline(analytics)

        anomalies = analytics.record_execution(make_record(latency=10_000))

        assert [a.metric for a in anomalies] == ["response_time"]
        anomaly = anomalies[0]
        assert anomaly.expected_value == pytest.approx(1000.0)
        assert anomaly.severity == "high"
        assert "Provider API slowdown" in anomaly.possible_causes
        assert len(bus.get_history(EventType.ANOMALIES_DETECTED)) == 1
        assert analytics.get_anomaly_history("summarize") == anomalies

    def test_severity_monotonic(self, analytics):
        """Test that a larger deviation never has a lower severity."""
        seed_baseline(analytics)

        big = analytics.detect_anomalies("summarize", make_record(latency=10_000))
        small = analytics.detect_anomalies("summarize", make_record(latency=2_000))

        assert big and small
        assert SEVERITY_RANK[big[0].severity] >= SEVERITY_RANK[small[0].severity]

    def test_normal_value_not_flagged(self, analytics):
        """Test that a value inside the baseline spread is not flagged."""
        seed_baseline(analytics)
        assert analytics.detect_anomalies("summarize", make_record(latency=1050)) == []

    def test_zero_variance_baseline(self, analytics):
        """Test that any change against a constant baseline is high severity."""
        for i in range(12):
            analytics.record_execution(make_record(cost=0.01, minutes_ago=30 - i))

        anomalies = analytics.detect_anomalies("summarize", make_record(cost=0.02))

        assert len(anomalies) == 1
        assert anomalies[0].metric == "cost"
        assert anomalies[0].deviation == float("inf")
        assert anomalies[0].severity == "high"

    def test_candidate_never_in_own_baseline(self, analytics):
        """Test that a buffered candidate is checked against prior records only."""
        for i in range(10):
            analytics.record_execution(make_record(minutes_ago=30 - i))
        spike = make_record(latency=50_000)
        analytics.record_execution(spike)
        analytics.record_execution(make_record())

        anomalies = analytics.detect_anomalies("summarize", spike)

        assert anomalies and anomalies[0].expected_value == 1000.0

    def test_detection_disabled(self, bus):
        """Test that disabling detection yields no anomalies."""
        analytics = PerformanceAnalytics(
            AnalyticsConfig(enable_anomaly_detection=False), event_bus=bus, clock=lambda: NOW
        )
        seed_baseline(analytics)
        assert analytics.record_execution(make_record(latency=10_000)) == []
        analytics.destroy()


# =============================================================================
# Reports
# =============================================================================


class TestReports:
    """Tests for report generation."""

    def test_exact_summary(self, analytics):
        """Test that the summary is computed exactly from the window."""
        for i, (latency, success) in enumerate(
            [(800, True), (1200, True), (2000, False), (900, True)]
        ):
            analytics.record_execution(make_record(latency=latency, success=success, minutes_ago=10 - i))

        report = analytics.generate_report("summarize")

        assert report.summary.total_executions == 4
        assert report.summary.avg_response_time == 1225
        assert report.summary.success_rate == 0.75
        assert report.summary.error_rate == 0.25
        assert report.summary.provider_breakdown == {"openai": 4}
        assert report.summary.last_executed == NOW - timedelta(minutes=7)

    def test_unknown_template_empty_report(self, analytics):
        """Test that an unknown template yields an empty summary."""
        report = analytics.generate_report("missing")

        assert report.summary.total_executions == 0
        assert report.recommendations == []
        assert report.trend_points == []

    def test_window_bounds(self, analytics):
        """Test that records outside the window are excluded."""
        analytics.record_execution(make_record(minutes_ago=60 * 24 * 10))
        analytics.record_execution(make_record(minutes_ago=5))

        report = analytics.generate_report("summarize")

        assert report.summary.total_executions == 1
        assert report.period_end == NOW
        assert report.period_start == NOW - timedelta(days=7)

    def test_start_after_end_rejected(self, analytics):
        """Test that an inverted window raises ValidationError."""
        with pytest.raises(ValidationError):
            analytics.generate_report("summarize", start=NOW, end=NOW - timedelta(hours=1))

    def test_trend_detection(self, analytics):
        """Test that rising latency over three buckets is a declining trend."""
        for hour, latency in ((3, 1000.0), (2, 2000.0), (1, 3000.0)):
            for i in range(3):
                analytics.record_execution(
                    make_record(latency=latency, minutes_ago=hour * 60 - i - 1)
                )

        report = analytics.generate_report("summarize")
        trends = {t.metric: t for t in report.trends}

        assert len(report.trend_points) == 3
        assert trends["avg_response_time"].direction == "declining"
        assert trends["avg_response_time"].forecast == pytest.approx(4000.0)
        assert trends["success_rate"].direction == "stable"

    def test_latency_and_reliability_recommendations(self, analytics):
        """Test threshold-based recommendations."""
        for i in range(10):
            analytics.record_execution(
                make_record(latency=5000, success=i < 7, minutes_ago=20 - i)
            )

        report = analytics.generate_report("summarize")
        by_title = {r.title: r for r in report.recommendations}

        assert by_title["Reduce response latency"].priority == "high"
        assert by_title["Reduce response latency"].metrics == ["avg_response_time"]
        assert by_title["Improve reliability"].priority == "critical"

    def test_previous_period_comparison(self, analytics):
        """Test comparison with the preceding window."""
        analytics.record_execution(make_record(latency=2000, minutes_ago=60 * 24 * 8))
        analytics.record_execution(make_record(latency=1000, minutes_ago=5))

        report = analytics.generate_report("summarize")
        comparisons = {c.metric: c for c in report.comparisons}

        assert comparisons["avg_response_time"].change_pct == pytest.approx(-50.0)
        assert comparisons["avg_response_time"].is_improvement is True

    def test_report_anomalies_match_real_time(self, bus):
        """Test that a report re-detects exactly what recording flagged."""
        analytics = PerformanceAnalytics(
            AnalyticsConfig(baseline_window=20), event_bus=bus, clock=lambda: NOW
        )
        flagged = []
        for i in range(120):
            latency = 10_000 if i in (30, 55, 90) else 1000 + (i % 5 - 2) * 50
            flagged.extend(
                analytics.record_execution(make_record(latency=latency, minutes_ago=200 - i))
            )

        report = analytics.generate_report("summarize")

        def key(anomaly):
            return (anomaly.execution_id, anomaly.metric, anomaly.deviation)

        assert flagged
        assert [key(a) for a in report.anomalies] == [key(a) for a in flagged]
        analytics.destroy()

    def test_report_rendering(self, analytics):
        """Test dictionary and markdown output."""
        analytics.record_execution(make_record())
        report = analytics.generate_report("summarize")

        data = report.to_dict()
        assert data["template_id"] == "summarize"
        assert "summarize" in report.to_markdown()


# =============================================================================
# Metrics
# =============================================================================


class TestCustomMetrics:
    """Tests for custom metrics and metric history."""

    def test_register_custom_metric(self, analytics, bus):
        """Test that a custom metric appears in the summary."""
        analytics.register_custom_metric(
            "long_answers",
            lambda records: sum(1 for r in records if r.token_usage.total > 500) / len(records),
            unit="ratio",
            higher_is_better=False,
        )
        analytics.record_execution(make_record(tokens=1000))
        analytics.record_execution(make_record(tokens=100))

        report = analytics.generate_report("summarize")

        assert report.summary.custom_metrics == {"long_answers": 0.5}
        assert report.summary.get_metric("long_answers") == 0.5
        assert len(bus.get_history(EventType.METRIC_REGISTERED)) == 1

    def test_builtin_name_collision(self, analytics):
        """Test that built-in names cannot be reused."""
        with pytest.raises(ValidationError):
            analytics.register_custom_metric("avg_cost", len, unit="usd", higher_is_better=False)

    def test_failing_custom_metric_is_skipped(self, analytics):
        """Test that a failing calculator does not break reports."""
        analytics.register_custom_metric(
            "broken", lambda records: 1 / 0, unit="n", higher_is_better=True
        )
        analytics.record_execution(make_record())

        assert analytics.generate_report("summarize").summary.custom_metrics == {}

    def test_metric_history(self, analytics):
        """Test bucketed metric history, oldest first."""
        for hour, latency in ((3, 1000.0), (2, 2000.0), (1, 3000.0)):
            analytics.record_execution(make_record(latency=latency, minutes_ago=hour * 60 - 1))

        history = analytics.get_metric_history("summarize", "avg_response_time", "hour")

        assert [p.value for p in history] == [1000.0, 2000.0, 3000.0]
        assert history[0].timestamp < history[-1].timestamp
        limited = analytics.get_metric_history("summarize", "avg_response_time", "hour", limit=2)
        assert [p.value for p in limited] == [2000.0, 3000.0]

    def test_metric_history_edge_cases(self, analytics):
        """Test unknown templates, metrics and intervals."""
        assert analytics.get_metric_history("missing", "avg_cost") == []
        with pytest.raises(ValidationError):
            analytics.get_metric_history("summarize", "latency")
        with pytest.raises(ValidationError):
            analytics.get_metric_history("summarize", "avg_cost", "fortnight")


# =============================================================================
# Lifecycle
# =============================================================================


class TestLifecycle:
    """Tests for prune and destroy."""

    def test_prune(self, bus):
        """Test explicit pruning after the clock moves on."""
        now = {"value": NOW}
        analytics = PerformanceAnalytics(
            AnalyticsConfig(retention_days=1), event_bus=bus, clock=lambda: now["value"]
        )
        analytics.record_execution(make_record())
        now["value"] = NOW + timedelta(days=2)

        assert analytics.prune() == 1
        assert analytics.get_executions("summarize") == []
        analytics.destroy()

    def test_destroy(self):
        """Test that destroy releases state and is idempotent."""
        analytics = PerformanceAnalytics(
            AnalyticsConfig(aggregation_interval_seconds=0.05), clock=lambda: NOW
        )
        analytics.event_bus.subscribe(EventType.EXECUTION_RECORDED, lambda e: None)
        analytics.record_execution(make_record())

        analytics.destroy()
        analytics.destroy()

        assert analytics.is_destroyed
        assert analytics.event_bus.get_subscription_count() == 0
        with pytest.raises(PromptLabError):
            analytics.record_execution(make_record())
