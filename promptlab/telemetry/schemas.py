"""
Data schemas for execution telemetry and performance reports.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from promptlab.errors import ValidationError

Severity = Literal["low", "medium", "high"]
Priority = Literal["low", "medium", "high", "critical"]
TrendDirection = Literal["improving", "declining", "stable"]


def to_local_naive(timestamp: datetime) -> datetime:
    """Aware datetimes become naive local time, comparable with ``datetime.now()``."""
    if timestamp.tzinfo is None:
        return timestamp
    return timestamp.astimezone().replace(tzinfo=None)


@dataclass(frozen=True)
class TokenUsage:
    """Token usage breakdown of a single execution."""

    prompt: int = 0
    completion: int = 0
    total: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"prompt": self.prompt, "completion": self.completion, "total": self.total}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenUsage":
        prompt = int(data.get("prompt", 0))
        completion = int(data.get("completion", 0))
        return cls(
            prompt=prompt,
            completion=completion,
            total=int(data.get("total", prompt + completion)),
        )


@dataclass(frozen=True)
class ExecutionRecord:
    """Outcome of one prompt execution. Immutable once created."""

    template_id: str
    template_version: str
    success: bool
    response_time_ms: float
    token_usage: TokenUsage
    cost: float
    provider: str
    timestamp: datetime = field(default_factory=datetime.now)
    quality_score: Optional[float] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    execution_id: str = field(default_factory=lambda: f"exec_{uuid.uuid4().hex[:12]}")

    def __post_init__(self) -> None:
        if not isinstance(self.timestamp, datetime):
            raise ValidationError(
                f"Execution timestamp must be a datetime, got {type(self.timestamp).__name__}",
                field="timestamp",
            )
        object.__setattr__(self, "timestamp", to_local_naive(self.timestamp))

    @property
    def experiment_id(self) -> Optional[str]:
        return self.metadata.get("experiment_id")

    @property
    def variant_id(self) -> Optional[str]:
        return self.metadata.get("variant_id")

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "execution_id": self.execution_id,
            "template_id": self.template_id,
            "template_version": self.template_version,
            "timestamp": self.timestamp.isoformat(),
            "success": self.success,
            "response_time_ms": self.response_time_ms,
            "token_usage": self.token_usage.to_dict(),
            "cost": self.cost,
            "provider": self.provider,
            "quality_score": self.quality_score,
            "error": self.error,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionRecord":
        """Deserialize from dictionary."""
        return cls(
            execution_id=data.get("execution_id") or f"exec_{uuid.uuid4().hex[:12]}",
            template_id=data["template_id"],
            template_version=data.get("template_version", "1.0.0"),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            success=bool(data["success"]),
            response_time_ms=float(data["response_time_ms"]),
            token_usage=TokenUsage.from_dict(data.get("token_usage", {})),
            cost=float(data.get("cost", 0.0)),
            provider=data.get("provider", "unknown"),
            quality_score=data.get("quality_score"),
            error=data.get("error"),
            metadata=dict(data.get("metadata", {})),
        )


@dataclass
class PerformanceSummary:
    """Exact aggregates over the executions of a report window."""

    template_id: str
    total_executions: int = 0
    success_rate: float = 0.0
    error_rate: float = 0.0
    avg_response_time: float = 0.0
    p50_response_time: float = 0.0
    p95_response_time: float = 0.0
    p99_response_time: float = 0.0
    avg_token_usage: float = 0.0
    avg_cost: float = 0.0
    total_cost: float = 0.0
    quality_score: Optional[float] = None
    stability: Optional[float] = None
    last_executed: Optional[datetime] = None
    provider_breakdown: Dict[str, int] = field(default_factory=dict)
    custom_metrics: Dict[str, float] = field(default_factory=dict)

    def metric_values(self) -> Dict[str, Optional[float]]:
        """Metric name to value, including registered custom metrics."""
        values: Dict[str, Optional[float]] = {
            "total_executions": float(self.total_executions),
            "success_rate": self.success_rate,
            "error_rate": self.error_rate,
            "avg_response_time": self.avg_response_time,
            "p95_response_time": self.p95_response_time,
            "avg_token_usage": self.avg_token_usage,
            "avg_cost": self.avg_cost,
            "total_cost": self.total_cost,
            "quality_score": self.quality_score,
            "stability": self.stability,
        }
        values.update(self.custom_metrics)
        return values

    def get_metric(self, name: str) -> Optional[float]:
        return self.metric_values().get(name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "template_id": self.template_id,
            "total_executions": self.total_executions,
            "success_rate": self.success_rate,
            "error_rate": self.error_rate,
            "avg_response_time": self.avg_response_time,
            "p50_response_time": self.p50_response_time,
            "p95_response_time": self.p95_response_time,
            "p99_response_time": self.p99_response_time,
            "avg_token_usage": self.avg_token_usage,
            "avg_cost": self.avg_cost,
            "total_cost": self.total_cost,
            "quality_score": self.quality_score,
            "stability": self.stability,
            "last_executed": self.last_executed.isoformat() if self.last_executed else None,
            "provider_breakdown": dict(self.provider_breakdown),
            "custom_metrics": dict(self.custom_metrics),
        }


@dataclass
class TrendPoint:
    """Aggregates for one time bucket."""

    timestamp: datetime
    executions: int
    success_rate: float
    avg_response_time: float
    avg_token_usage: float
    avg_cost: float
    quality_score: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "executions": self.executions,
            "success_rate": self.success_rate,
            "avg_response_time": self.avg_response_time,
            "avg_token_usage": self.avg_token_usage,
            "avg_cost": self.avg_cost,
            "quality_score": self.quality_score,
        }


@dataclass
class PerformanceTrend:
    """Fitted trend of one metric across trend points.

    Attributes:
        metric: Summary metric name
        direction: improving / declining / stable, judged with directionality
        change_pct: Fitted change from first to last bucket (percent)
        confidence: r-squared of the linear fit
        forecast: Value predicted for the next bucket when the fit is good
    """

    metric: str
    direction: TrendDirection
    change_pct: float
    confidence: float
    slope: float
    forecast: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric": self.metric,
            "direction": self.direction,
            "change_pct": self.change_pct,
            "confidence": self.confidence,
            "slope": self.slope,
            "forecast": self.forecast,
        }


@dataclass
class AnomalyRecord:
    """An execution metric outside the template's recent baseline."""

    timestamp: datetime
    template_id: str
    metric: str
    expected_value: float
    actual_value: float
    deviation: float
    severity: Severity
    possible_causes: List[str] = field(default_factory=list)
    execution_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "template_id": self.template_id,
            "metric": self.metric,
            "expected_value": self.expected_value,
            "actual_value": self.actual_value,
            "deviation": self.deviation,
            "severity": self.severity,
            "possible_causes": list(self.possible_causes),
            "execution_id": self.execution_id,
        }


@dataclass
class PerformanceRecommendation:
    """Threshold-based advice attached to a performance report."""

    type: Literal["optimization", "warning", "insight"]
    priority: Priority
    title: str
    description: str
    impact: str
    action: str
    metrics: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "priority": self.priority,
            "title": self.title,
            "description": self.description,
            "impact": self.impact,
            "action": self.action,
            "metrics": list(self.metrics),
        }


@dataclass
class PerformanceComparison:
    """Change of a summary metric against the previous period."""

    metric: str
    previous: float
    current: float
    change_pct: float
    is_improvement: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric": self.metric,
            "previous": self.previous,
            "current": self.current,
            "change_pct": self.change_pct,
            "is_improvement": self.is_improvement,
        }


@dataclass
class MetricPoint:
    """One value of a metric history."""

    timestamp: datetime
    value: float

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp.isoformat(), "value": self.value}


@dataclass
class PerformanceReport:
    """Performance report for one template over a time window."""

    template_id: str
    period_start: datetime
    period_end: datetime
    summary: PerformanceSummary
    trend_points: List[TrendPoint] = field(default_factory=list)
    trends: List[PerformanceTrend] = field(default_factory=list)
    anomalies: List[AnomalyRecord] = field(default_factory=list)
    recommendations: List[PerformanceRecommendation] = field(default_factory=list)
    comparisons: List[PerformanceComparison] = field(default_factory=list)
    generated_at: datetime = field(default_factory=datetime.now)

    def recent_anomalies(
        self, since: datetime, severity: Optional[Severity] = None
    ) -> List[AnomalyRecord]:
        """Anomalies at or after ``since``, optionally of one severity."""
        return [
            a
            for a in self.anomalies
            if a.timestamp >= since and (severity is None or a.severity == severity)
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "template_id": self.template_id,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "summary": self.summary.to_dict(),
            "trend_points": [p.to_dict() for p in self.trend_points],
            "trends": [t.to_dict() for t in self.trends],
            "anomalies": [a.to_dict() for a in self.anomalies],
            "recommendations": [r.to_dict() for r in self.recommendations],
            "comparisons": [c.to_dict() for c in self.comparisons],
            "generated_at": self.generated_at.isoformat(),
        }

    def to_markdown(self) -> str:
        """Generate markdown report."""
        s = self.summary
        lines = [
            f"# Performance Report: {self.template_id}",
            f"Period: {self.period_start.strftime('%Y-%m-%d %H:%M')} - "
            f"{self.period_end.strftime('%Y-%m-%d %H:%M')}",
            "",
            "## Summary",
            f"- Executions: {s.total_executions}",
            f"- Success Rate: {s.success_rate:.1%}",
            f"- Avg Response Time: {s.avg_response_time:.0f}ms "
            f"(p95 {s.p95_response_time:.0f}ms)",
            f"- Avg Token Usage: {s.avg_token_usage:.0f}",
            f"- Avg Cost: ${s.avg_cost:.4f}",
        ]
        if s.quality_score is not None:
            lines.append(f"- Quality Score: {s.quality_score:.2f}")
        lines.append("")

        if self.trends:
            lines.append("## Trends")
            for trend in self.trends:
                arrow = {"improving": "↑", "stable": "→", "declining": "↓"}[trend.direction]
                lines.append(
                    f"- {trend.metric}: {arrow} {trend.direction} ({trend.change_pct:+.1f}%)"
                )
            lines.append("")

        if self.anomalies:
            lines.append(f"## Anomalies ({len(self.anomalies)})")
            for anomaly in self.anomalies[-10:]:
                lines.append(
                    f"- [{anomaly.severity.upper()}] {anomaly.metric}: "
                    f"{anomaly.actual_value:.2f} (expected {anomaly.expected_value:.2f})"
                )
            lines.append("")

        if self.recommendations:
            lines.append("## Recommendations")
            for rec in self.recommendations:
                lines.append(f"- **[{rec.priority.upper()}] {rec.title}**: {rec.action}")
            lines.append("")

        return "\n".join(lines)
