"""
Execution telemetry and performance analytics.
"""

from promptlab.telemetry.schemas import (
    AnomalyRecord,
    ExecutionRecord,
    MetricPoint,
    PerformanceComparison,
    PerformanceRecommendation,
    PerformanceReport,
    PerformanceSummary,
    PerformanceTrend,
    TokenUsage,
    TrendPoint,
)
from promptlab.telemetry.analytics import (
    PerformanceAnalytics,
    classify_severity,
    percentile,
    resolve_interval,
)

__all__ = [
    "AnomalyRecord",
    "ExecutionRecord",
    "MetricPoint",
    "PerformanceAnalytics",
    "PerformanceComparison",
    "PerformanceRecommendation",
    "PerformanceReport",
    "PerformanceSummary",
    "PerformanceTrend",
    "TokenUsage",
    "TrendPoint",
    "classify_severity",
    "percentile",
    "resolve_interval",
]
