"""Strategy contracts, plugin registry and the health check executor."""

from pulsecheck.engine.base import (
    BaseStrategyConfig,
    CollectorResult,
    CollectorStrategy,
    ConnectedClient,
    HealthCheckStrategy,
    RunForAggregation,
    TransportClient,
    run_with_timeout,
)
from pulsecheck.engine.registry import HealthCheckRegistry, get_registry, reset_registry

__all__ = [
    "BaseStrategyConfig",
    "CollectorResult",
    "CollectorStrategy",
    "ConnectedClient",
    "HealthCheckRegistry",
    "HealthCheckStrategy",
    "RunForAggregation",
    "TransportClient",
    "get_registry",
    "reset_registry",
    "run_with_timeout",
]
