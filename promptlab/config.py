"""
Configuration management for promptlab.

This module provides centralized configuration for all engine components:
- Performance analytics thresholds and retention
- Experiment defaults, allocation and bandit behaviour
- Optimization engine thresholds
- Logging settings
"""

import os
from typing import Literal, Optional, cast

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load environment variables from .env file
load_dotenv()

AllocationName = Literal["weighted_random", "deterministic_hash", "round_robin"]
TrendInterval = Literal["minute", "hour", "day"]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_optional(name: str) -> Optional[str]:
    raw = os.getenv(name)
    return raw if raw else None


class AnalyticsConfig(BaseModel):
    """Configuration for execution telemetry and performance analytics."""

    retention_days: int = Field(
        default=30, ge=1, description="Days an execution record is kept in the buffer"
    )
    max_buffer_size: int = Field(
        default=10000, gt=0, description="Maximum execution records kept per template"
    )
    enable_real_time_analysis: bool = Field(
        default=True,
        description="Run anomaly detection on every recorded execution",
    )
    enable_anomaly_detection: bool = Field(
        default=True, description="Enable anomaly detection entirely"
    )
    anomaly_threshold_std_dev: float = Field(
        default=2.0, gt=0.0, description="Deviation (in std devs) flagged as anomalous"
    )
    min_baseline_executions: int = Field(
        default=10,
        ge=2,
        description="Prior executions required before anomalies are reported",
    )
    baseline_window: int = Field(
        default=100, ge=2, description="Most recent prior executions used as baseline"
    )
    trend_interval: TrendInterval = Field(
        default="hour", description="Bucket size for report trend points"
    )
    report_window_days: int = Field(
        default=7, ge=1, description="Default report window when no start is given"
    )
    target_response_time_ms: float = Field(
        default=3000.0, gt=0.0, description="Latency above which reports recommend action"
    )
    target_success_rate: float = Field(
        default=0.95, ge=0.0, le=1.0, description="Success rate reports aim for"
    )
    critical_success_rate: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Success rate below which reliability is critical",
    )
    min_quality_score: float = Field(
        default=0.7, ge=0.0, le=1.0, description="Quality score below which reports warn"
    )
    anomaly_cluster_threshold: int = Field(
        default=5, ge=0, description="Anomalies in 24h above which reports warn"
    )
    cost_trend_threshold_pct: float = Field(
        default=20.0, ge=0.0, description="Rising cost trend (%) that triggers a warning"
    )
    trend_forecast_min_r2: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Minimum r-squared before a trend forecast is produced",
    )
    aggregation_interval_seconds: Optional[float] = Field(
        default=None,
        gt=0.0,
        description="Interval of the background pruning task (None disables it)",
    )


class ExperimentsConfig(BaseModel):
    """Configuration for the A/B experiment manager."""

    allocation_method: AllocationName = Field(
        default="weighted_random", description="Traffic allocation policy"
    )
    default_confidence_level: float = Field(
        default=0.95, description="Confidence level used when none is given"
    )
    default_minimum_sample_size: int = Field(
        default=100, gt=0, description="Minimum sample size used when none is given"
    )
    minimum_test_duration_hours: float = Field(
        default=24.0, ge=0.0, description="Minimum runtime before a winner is declared"
    )
    enable_auto_optimization: bool = Field(
        default=True, description="Complete experiments automatically on a clear winner"
    )
    auto_optimization_threshold: float = Field(
        default=0.95,
        ge=0.0,
        le=1.0,
        description="Significance required to auto-complete an experiment",
    )
    enable_bandit: bool = Field(
        default=False, description="Reallocate traffic adaptively while running"
    )
    bandit_min_observations: int = Field(
        default=10, ge=0, description="Observations a variant needs to be scored"
    )
    bandit_min_weight: float = Field(
        default=5.0, ge=0.0, le=100.0, description="Lower clamp for bandit weights"
    )
    bandit_max_weight: float = Field(
        default=95.0, ge=0.0, le=100.0, description="Upper clamp for bandit weights"
    )
    monitor_interval_seconds: float = Field(
        default=3600.0, gt=0.0, description="Interval of the per-experiment monitor"
    )
    storage_dir: Optional[str] = Field(
        default=None, description="Directory for the JSON experiment store"
    )
    database_url: Optional[str] = Field(
        default=None, description="SQLAlchemy URL for the database experiment store"
    )


class OptimizationConfig(BaseModel):
    """Configuration for the optimization engine."""

    enable_static_analysis: bool = Field(
        default=True, description="Scan template text for known issues"
    )
    enable_performance_analysis: bool = Field(
        default=True, description="Derive recommendations from performance reports"
    )
    enable_cost_analysis: bool = Field(
        default=True, description="Derive cost-saving recommendations"
    )
    auto_apply: bool = Field(
        default=True, description="Dispatch auto-applicable recommendations to handlers"
    )
    max_prompt_tokens: int = Field(
        default=2000, gt=0, description="Estimated token count flagged as excessive"
    )
    target_response_time_ms: float = Field(
        default=3000.0, gt=0.0, description="Latency above which a model change is advised"
    )
    target_success_rate: float = Field(
        default=0.95, ge=0.0, le=1.0, description="Success rate below which fallbacks are advised"
    )
    high_severity_anomaly_threshold: int = Field(
        default=3, ge=0, description="High-severity anomalies tolerated in the window"
    )
    anomaly_window_hours: float = Field(
        default=24.0, gt=0.0, description="Window for counting recent anomalies"
    )
    high_token_usage: float = Field(
        default=1000.0, gt=0.0, description="Average token usage considered high"
    )
    caching_min_executions: int = Field(
        default=1000, ge=0, description="Execution volume above which caching is considered"
    )
    cacheable_threshold: float = Field(
        default=0.2, ge=0.0, le=1.0, description="Cacheable fraction required for caching"
    )
    high_quality_score: float = Field(
        default=0.9, ge=0.0, le=1.0, description="Quality above which a cheaper model is advised"
    )
    projection_conservatism: float = Field(
        default=0.8, ge=0.0, le=1.0, description="Factor applied to projection confidence"
    )
    history_limit: int = Field(
        default=100, gt=0, description="Optimization results kept per template"
    )


class LogConfig(BaseModel):
    """Configuration for logging system."""

    level: Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    rotation: str = Field(default="100 MB", description="Log file rotation size")
    retention: str = Field(default="1 month", description="Log file retention period")
    log_dir: str = Field(default="logs", description="Directory for log files")
    enable_file_logging: bool = Field(
        default=False, description="Whether to enable file logging"
    )
    enable_console_logging: bool = Field(
        default=True, description="Whether to enable console logging"
    )


class Config(BaseModel):
    """Main configuration object for promptlab."""

    analytics: AnalyticsConfig = Field(default_factory=AnalyticsConfig)
    experiments: ExperimentsConfig = Field(default_factory=ExperimentsConfig)
    optimization: OptimizationConfig = Field(default_factory=OptimizationConfig)
    logging: LogConfig = Field(default_factory=LogConfig)

    @classmethod
    def from_env(cls) -> "Config":
        """Create configuration from environment variables."""
        return cls(
            analytics=AnalyticsConfig(
                retention_days=int(os.getenv("PROMPTLAB_RETENTION_DAYS", "30")),
                enable_real_time_analysis=_env_bool(
                    "PROMPTLAB_REAL_TIME_ANALYSIS", True
                ),
                anomaly_threshold_std_dev=float(
                    os.getenv("PROMPTLAB_ANOMALY_THRESHOLD", "2.0")
                ),
                min_baseline_executions=int(
                    os.getenv("PROMPTLAB_MIN_BASELINE_EXECUTIONS", "10")
                ),
                target_response_time_ms=float(
                    os.getenv("PROMPTLAB_TARGET_RESPONSE_TIME_MS", "3000")
                ),
                target_success_rate=float(
                    os.getenv("PROMPTLAB_TARGET_SUCCESS_RATE", "0.95")
                ),
            ),
            experiments=ExperimentsConfig(
                allocation_method=cast(
                    AllocationName,
                    os.getenv("PROMPTLAB_ALLOCATION_METHOD", "weighted_random"),
                ),
                minimum_test_duration_hours=float(
                    os.getenv("PROMPTLAB_MIN_TEST_DURATION_HOURS", "24")
                ),
                enable_auto_optimization=_env_bool("PROMPTLAB_AUTO_OPTIMIZATION", True),
                enable_bandit=_env_bool("PROMPTLAB_BANDIT", False),
                monitor_interval_seconds=float(
                    os.getenv("PROMPTLAB_MONITOR_INTERVAL_SECONDS", "3600")
                ),
                storage_dir=_env_optional("PROMPTLAB_STORAGE_DIR"),
                database_url=_env_optional("PROMPTLAB_DATABASE_URL"),
            ),
            optimization=OptimizationConfig(
                auto_apply=_env_bool("PROMPTLAB_AUTO_APPLY", True),
                max_prompt_tokens=int(os.getenv("PROMPTLAB_MAX_PROMPT_TOKENS", "2000")),
            ),
            logging=LogConfig(
                level=cast(
                    Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                    os.getenv("LOG_LEVEL", "INFO"),
                ),
                log_dir=os.getenv("PROMPTLAB_LOG_DIR", "logs"),
                enable_file_logging=_env_bool("PROMPTLAB_FILE_LOGGING", False),
            ),
        )


# Global configuration instance
# This can be imported throughout the codebase
config = Config.from_env()
