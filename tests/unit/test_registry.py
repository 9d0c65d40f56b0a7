"""
Tests for the health check registry.
"""

from typing import Any

import pytest
from pydantic import BaseModel

from pulsecheck.aggregation.fields import VersionedAggregated, aggregated_counter
from pulsecheck.engine.base import (
    CollectorResult,
    CollectorStrategy,
    ConnectedClient,
    HealthCheckStrategy,
    RunForAggregation,
)
from pulsecheck.engine.registry import HealthCheckRegistry, get_registry, reset_registry
from pulsecheck.errors import RegistryError, UnknownCollectorError, UnknownStrategyError
from pulsecheck.versioning import Versioned


class EmptyModel(BaseModel):
    pass


class PingStrategy(HealthCheckStrategy):
    id = "ping"
    display_name = "Ping"

    config = Versioned(version=1, schema=EmptyModel)
    result = Versioned(version=1, schema=EmptyModel)
    aggregated_result = VersionedAggregated(version=1, fields={"count": aggregated_counter("Count")})

    async def create_client(self, config: Any) -> ConnectedClient[Any]:
        return ConnectedClient(object())

    def merge_result(self, existing: dict[str, Any] | None, run: RunForAggregation) -> dict[str, Any]:
        return {}


class EchoCollector(CollectorStrategy):
    plugin_id = "ping"
    id = "echo"
    display_name = "Echo"
    supported_strategies = ["ping", "dns"]

    config = Versioned(version=1, schema=EmptyModel)
    result = Versioned(version=1, schema=EmptyModel)
    aggregated_result = VersionedAggregated(version=1, fields={"count": aggregated_counter("Count")})

    async def execute(self, config: Any, client: Any, strategy_id: str) -> CollectorResult:
        return CollectorResult()

    def merge_result(self, existing: dict[str, Any] | None, run: RunForAggregation) -> dict[str, Any]:
        return {}


class TestHealthCheckRegistry:
    """Tests for HealthCheckRegistry."""

    def test_empty_registry(self) -> None:
        """Test an empty registry has no plugins."""
        registry = HealthCheckRegistry()
        assert len(registry) == 0
        assert registry.list_strategies() == []
        assert registry.list_collectors() == []

    def test_builtin_plugins(self, registry: HealthCheckRegistry) -> None:
        """Test the fixture registry carries the bundled plugins."""
        assert registry.list_strategy_ids() == ["dns", "http", "script"]
        assert registry.list_collector_ids() == [
            "dns.lookup",
            "http.request",
            "script.execute",
            "script.inline-script",
        ]

    def test_get_unknown_strategy(self, registry: HealthCheckRegistry) -> None:
        """Test unknown strategies raise."""
        with pytest.raises(UnknownStrategyError):
            registry.get_strategy("nonexistent")

    def test_get_unknown_collector(self, registry: HealthCheckRegistry) -> None:
        """Test unknown collectors raise."""
        with pytest.raises(UnknownCollectorError):
            registry.get_collector("dns.nonexistent")

    def test_register(self) -> None:
        """Test manual registration of a strategy and collector."""
        registry = HealthCheckRegistry()
        registry.register(PingStrategy())
        registry.register(EchoCollector())

        assert registry.has_strategy("ping")
        assert registry.has_collector("ping.echo")
        assert registry.get_collector("ping.echo").qualified_id == "ping.echo"
        assert len(registry) == 2

    def test_register_rejects_other_objects(self) -> None:
        """Test only strategies and collectors can be registered."""
        with pytest.raises(RegistryError):
            HealthCheckRegistry().register(object())  # type: ignore[arg-type]

    def test_collectors_for_strategy(self, registry: HealthCheckRegistry) -> None:
        """Test collectors are matched to the strategies they support."""
        registry.register(EchoCollector())

        dns_collectors = [c.qualified_id for c in registry.collectors_for_strategy("dns")]
        assert dns_collectors == ["dns.lookup", "ping.echo"]
        assert [c.qualified_id for c in registry.collectors_for_strategy("http")] == ["http.request"]

    def test_supports_defaults_to_plugin(self, registry: HealthCheckRegistry) -> None:
        """Test a collector supports its own plugin by default."""
        lookup = registry.get_collector("dns.lookup")
        assert lookup.supports("dns") is True
        assert lookup.supports("script") is False

    def test_strategy_requires_id(self) -> None:
        """Test strategies without an id are rejected."""

        class Nameless(PingStrategy):
            id = ""

        with pytest.raises(ValueError):
            Nameless()

    def test_get_info(self, registry: HealthCheckRegistry) -> None:
        """Test get_info reports ids and schema versions."""
        info = registry.get_strategy("dns").get_info()
        assert info["id"] == "dns"
        assert info["config_version"] == 2

        collector_info = registry.get_collector("script.inline-script").get_info()
        assert collector_info["supported_strategies"] == ["script"]
        assert collector_info["allow_multiple"] is True


class TestGlobalRegistry:
    """Tests for the process-wide registry."""

    def test_get_registry_singleton(self) -> None:
        """Test get_registry returns the same instance until reset."""
        reset_registry()
        first = get_registry()
        assert get_registry() is first
        assert first.has_strategy("dns")

        reset_registry()
        assert get_registry() is not first
        reset_registry()
