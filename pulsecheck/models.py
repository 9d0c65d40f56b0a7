"""
Health Check Models

Data models for configurations, runs, aggregated buckets, retention and
threshold settings.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Annotated, Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from pulsecheck.aggregation.incremental import AverageState, MinMaxState
from pulsecheck.assertions import Assertion
from pulsecheck.versioning import VersionedRecord


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class HealthStatus(str, Enum):
    """Outcome of a run or verdict of an evaluation."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.DEGRADED: 1,
    HealthStatus.UNHEALTHY: 2,
}


class BucketSize(str, Enum):
    """Granularity of an aggregated bucket."""

    HOURLY = "hourly"
    DAILY = "daily"

    @property
    def duration(self) -> timedelta:
        return timedelta(hours=1) if self == BucketSize.HOURLY else timedelta(days=1)


# Configuration


class CollectorConfigEntry(BaseModel):
    """One collector instance attached to a health check configuration."""

    id: str = Field(default_factory=_new_id, description="Instance id, unique per configuration")
    collector_id: str = Field(..., description="Fully qualified id: plugin_id.collector_id")
    config: VersionedRecord
    assertions: list[Assertion] = Field(default_factory=list)


class HealthCheckConfiguration(BaseModel):
    """A reusable health check definition."""

    id: str = Field(default_factory=_new_id)
    name: str
    strategy_id: str = Field(..., description="Immutable after creation")
    config: VersionedRecord
    interval_seconds: int = Field(default=60, ge=1)
    collectors: list[CollectorConfigEntry] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


# Runs


class HealthCheckRun(BaseModel):
    """Immutable outcome of one health check execution."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    configuration_id: str
    system_id: str
    status: HealthStatus
    latency_ms: float | None = None
    message: str | None = None
    result: dict[str, Any] = Field(default_factory=dict)
    result_version: int | None = Field(
        default=None, description="Strategy result schema version the result was written with"
    )
    timestamp: datetime = Field(default_factory=_utcnow)
    aggregated: bool = Field(
        default=False, description="True once folded into an hourly bucket"
    )


class AggregatedBucket(BaseModel):
    """Pre-aggregated statistics for one time interval."""

    configuration_id: str
    system_id: str
    bucket_start: datetime
    bucket_size: BucketSize = BucketSize.HOURLY

    run_count: int = 0
    healthy_count: int = 0
    degraded_count: int = 0
    unhealthy_count: int = 0

    latency: AverageState = Field(default_factory=AverageState)
    latency_range: MinMaxState = Field(default_factory=MinMaxState)
    latency_samples: list[float] = Field(default_factory=list)
    p95_latency_ms: float | None = None

    aggregated_result: dict[str, Any] = Field(default_factory=dict)
    aggregated_result_version: int | None = None
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def key(self) -> tuple[str, str, datetime, BucketSize]:
        return (self.configuration_id, self.system_id, self.bucket_start, self.bucket_size)

    @property
    def bucket_end(self) -> datetime:
        return self.bucket_start + self.bucket_size.duration

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success_rate(self) -> float:
        """Healthy runs as a percentage (0-100)."""
        if self.run_count == 0:
            return 0.0
        return round(self.healthy_count / self.run_count * 100, 2)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def avg_latency_ms(self) -> float | None:
        return self.latency.avg if self.latency.count else None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def min_latency_ms(self) -> float | None:
        return self.latency_range.min

    @computed_field  # type: ignore[prop-decorator]
    @property
    def max_latency_ms(self) -> float | None:
        return self.latency_range.max


# Retention


class RetentionConfig(BaseModel):
    """How long each data tier is kept."""

    raw_retention_days: int = Field(default=7, ge=1, le=30)
    hourly_retention_days: int = Field(default=30, ge=7, le=90)
    daily_retention_days: int = Field(default=365, ge=30, le=1095)

    @model_validator(mode="after")
    def _check_ordering(self) -> "RetentionConfig":
        if self.raw_retention_days >= self.hourly_retention_days:
            raise ValueError("raw_retention_days must be less than hourly_retention_days")
        if self.hourly_retention_days >= self.daily_retention_days:
            raise ValueError("hourly_retention_days must be less than daily_retention_days")
        return self


# Thresholds


class SuccessThreshold(BaseModel):
    min_success_count: int = Field(default=1, ge=1)


class FailureThreshold(BaseModel):
    min_failure_count: int = Field(..., ge=1)


class ConsecutiveThresholds(BaseModel):
    """Verdict from the streak of identical outcomes at the head of history."""

    mode: Literal["consecutive"] = "consecutive"
    healthy: SuccessThreshold = Field(default_factory=SuccessThreshold)
    degraded: FailureThreshold = Field(default_factory=lambda: FailureThreshold(min_failure_count=2))
    unhealthy: FailureThreshold = Field(default_factory=lambda: FailureThreshold(min_failure_count=5))


class WindowThresholds(BaseModel):
    """Verdict from the number of failures in a sliding window."""

    mode: Literal["window"] = "window"
    window_size: int = Field(default=10, ge=3, le=100)
    degraded: FailureThreshold = Field(default_factory=lambda: FailureThreshold(min_failure_count=3))
    unhealthy: FailureThreshold = Field(default_factory=lambda: FailureThreshold(min_failure_count=7))


StateThresholds = Annotated[
    ConsecutiveThresholds | WindowThresholds, Field(discriminator="mode")
]

DEFAULT_STATE_THRESHOLDS = ConsecutiveThresholds()


class SystemAssociation(BaseModel):
    """Links a monitored system to a health check configuration."""

    system_id: str
    configuration_id: str
    enabled: bool = True
    state_thresholds: VersionedRecord | None = None
    retention_config: RetentionConfig | None = None
    last_status: HealthStatus | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.system_id, self.configuration_id)


# Evaluation output


class CheckStatus(BaseModel):
    """Verdict for one (system, configuration) pair."""

    configuration_id: str
    configuration_name: str | None = None
    status: HealthStatus | None = None
    run_count: int = 0
    last_run_at: datetime | None = None


class SystemHealthStatus(BaseModel):
    """Overall verdict for a system across all of its checks."""

    system_id: str
    status: HealthStatus | None = None
    evaluated_at: datetime = Field(default_factory=_utcnow)
    check_statuses: list[CheckStatus] = Field(default_factory=list)
