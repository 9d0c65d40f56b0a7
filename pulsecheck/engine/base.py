"""
Health Check Strategy Contracts

Defines the contract every health check plugin implements. A strategy owns a
transport (DNS resolver, process runner, HTTP client) and hands a connected
client to one or more collectors, which perform the actual probes.
"""

import asyncio
import inspect
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

import structlog
from pydantic import BaseModel, Field

from pulsecheck.aggregation.fields import VersionedAggregated
from pulsecheck.errors import ProbeTimeoutError
from pulsecheck.models import HealthStatus
from pulsecheck.versioning import Versioned

logger = structlog.get_logger(__name__)

T = TypeVar("T")
RequestT = TypeVar("RequestT")
ResultT = TypeVar("ResultT")


class BaseStrategyConfig(BaseModel):
    """Settings shared by every strategy config."""

    timeout: int = Field(
        default=30000, ge=100, description="Per-operation timeout in milliseconds"
    )
    latency_degraded_ms: int | None = Field(
        default=None,
        ge=1,
        description="Mark the run degraded when it takes longer than this",
    )


class TransportClient(ABC, Generic[RequestT, ResultT]):
    """A connected transport that executes probe requests."""

    @abstractmethod
    async def exec(self, request: RequestT) -> ResultT:
        """Execute one request against the target."""
        ...


CloseCallable = Callable[[], Awaitable[None] | None]


class ConnectedClient(Generic[T]):
    """
    A transport client paired with the procedure that releases it.

    Use as an async context manager; the close procedure runs exactly once
    regardless of how the block exits.

    Usage:
        async with await strategy.create_client(config) as client:
            result = await client.exec(request)
    """

    def __init__(self, client: T, close: CloseCallable | None = None) -> None:
        self.client = client
        self._close = close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._close is None:
            return
        outcome = self._close()
        if inspect.isawaitable(outcome):
            await outcome

    async def __aenter__(self) -> T:
        return self.client

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.aclose()


async def run_with_timeout(awaitable: Awaitable[T], timeout_ms: int, what: str = "operation") -> T:
    """
    Race an operation against its deadline.

    Raises:
        ProbeTimeoutError: If the deadline passes first. The operation is cancelled.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_ms / 1000)
    except asyncio.TimeoutError as e:
        raise ProbeTimeoutError(what, timeout_ms) from e


def elapsed_ms(start: float) -> float:
    """Milliseconds elapsed since a ``time.perf_counter()`` reading."""
    return round((time.perf_counter() - start) * 1000, 2)


@dataclass
class RunForAggregation:
    """The parts of a run a ``merge_result`` implementation sees."""

    status: HealthStatus
    latency_ms: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class CollectorResult:
    """Output of one collector execution."""

    result: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


@dataclass
class CollectorOutput:
    """A collector result tied to the instance that produced it."""

    instance_id: str
    collector_id: str
    result: dict[str, Any]
    error: str | None = None
    timed_out: bool = False
    assertion_failed: str | None = None


class HealthCheckStrategy(ABC):
    """
    Abstract base for health check strategies.

    All strategies must define:
    - id: Unique identifier (e.g., "dns")
    - display_name: Human readable name
    - config / result / aggregated_result: versioned schemas

    And implement:
    - create_client(): Open a connected transport for a validated config
    - merge_result(): Fold one run into the strategy-level aggregate
    """

    id: str
    display_name: str
    description: str = ""

    config: Versioned[Any]
    result: Versioned[Any]
    aggregated_result: VersionedAggregated

    def __init__(self) -> None:
        """Validate strategy attributes."""
        if not getattr(self, "id", None):
            raise ValueError(f"{self.__class__.__name__} must define 'id'")
        if not getattr(self, "display_name", None):
            raise ValueError(f"{self.__class__.__name__} must define 'display_name'")

    @abstractmethod
    async def create_client(self, config: Any) -> ConnectedClient[Any]:
        """
        Open a transport client.

        Args:
            config: Parsed strategy config

        Returns:
            ConnectedClient wrapping the transport

        Raises:
            Exception: Any failure to connect; the executor records it as
                an unhealthy run
        """
        ...

    @abstractmethod
    def merge_result(
        self, existing: dict[str, Any] | None, run: RunForAggregation
    ) -> dict[str, Any]:
        """Fold a run's strategy-level metadata into an aggregate."""
        ...

    def build_result(self, outputs: list[CollectorOutput]) -> dict[str, Any]:
        """
        Summarize collector outputs into strategy-level run metadata.

        The default reports the first collector error, if any.
        """
        errors = [o.error for o in outputs if o.error]
        return {"error": errors[0]} if errors else {}

    def get_info(self) -> dict[str, Any]:
        """Get strategy information as a dictionary."""
        return {
            "id": self.id,
            "display_name": self.display_name,
            "description": self.description,
            "config_version": self.config.version,
            "result_version": self.result.version,
            "aggregated_result_version": self.aggregated_result.version,
        }


class CollectorStrategy(ABC):
    """
    Abstract base for collectors.

    A collector runs one kind of probe through a strategy's transport client.
    Its id is qualified by the owning plugin: ``plugin_id.id``.
    """

    plugin_id: str
    id: str
    display_name: str
    description: str = ""
    supported_strategies: list[str] = []
    allow_multiple: bool = False

    config: Versioned[Any]
    result: Versioned[Any]
    aggregated_result: VersionedAggregated

    def __init__(self) -> None:
        """Validate collector attributes."""
        if not getattr(self, "plugin_id", None) or not getattr(self, "id", None):
            raise ValueError(f"{self.__class__.__name__} must define 'plugin_id' and 'id'")
        if not self.supported_strategies:
            self.supported_strategies = [self.plugin_id]

    @property
    def qualified_id(self) -> str:
        return f"{self.plugin_id}.{self.id}"

    def supports(self, strategy_id: str) -> bool:
        return strategy_id in self.supported_strategies

    @abstractmethod
    async def execute(self, config: Any, client: Any, strategy_id: str) -> CollectorResult:
        """
        Run the probe.

        Args:
            config: Parsed collector config
            client: The strategy's transport client
            strategy_id: Id of the strategy that opened the client

        Returns:
            CollectorResult with result fields and an optional error
        """
        ...

    @abstractmethod
    def merge_result(
        self, existing: dict[str, Any] | None, run: RunForAggregation
    ) -> dict[str, Any]:
        """Fold one run's collector result into an aggregate."""
        ...

    def get_info(self) -> dict[str, Any]:
        return {
            "id": self.qualified_id,
            "display_name": self.display_name,
            "description": self.description,
            "supported_strategies": list(self.supported_strategies),
            "allow_multiple": self.allow_multiple,
        }
