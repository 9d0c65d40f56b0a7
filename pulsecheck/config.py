"""Engine configuration."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Settings for the pulsecheck engine."""

    # Retention defaults, overridable per association
    raw_retention_days: int = 7
    hourly_retention_days: int = 30
    daily_retention_days: int = 365

    # Compaction never touches data newer than now - margin
    compaction_safety_margin_minutes: int = 15

    # Evaluation
    max_window_runs: int = 100

    # Execution
    default_timeout_ms: int = 30000
    max_concurrent_checks: int = 20

    # Aggregation
    latency_sample_cap: int = 500

    # Storage
    store_path: str | None = None

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False

    class Config:
        env_prefix = "PULSECHECK_"


@lru_cache
def get_settings() -> Settings:
    """Get the process-wide settings instance."""
    return Settings()
