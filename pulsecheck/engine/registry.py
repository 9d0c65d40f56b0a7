"""
Health Check Registry

Handles discovery and lookup of strategies and collectors.
Plugins are discovered via Python entry_points so third-party probes can be
pip-installed and become available automatically.
"""

import importlib.metadata
from typing import Any

import structlog

from pulsecheck.engine.base import CollectorStrategy, HealthCheckStrategy
from pulsecheck.errors import RegistryError, UnknownCollectorError, UnknownStrategyError

logger = structlog.get_logger(__name__)

# Entry point groups
STRATEGY_ENTRY_POINT = "pulsecheck.strategies"
COLLECTOR_ENTRY_POINT = "pulsecheck.collectors"


class HealthCheckRegistry:
    """
    Registry of health check strategies and collectors.

    Usage:
        registry = HealthCheckRegistry()
        registry.discover()

        strategy = registry.get_strategy("dns")
        collector = registry.get_collector("dns.lookup")
        collectors = registry.collectors_for_strategy("dns")
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._strategies: dict[str, HealthCheckStrategy] = {}
        self._collectors: dict[str, CollectorStrategy] = {}
        self._strategy_classes: dict[str, type[HealthCheckStrategy]] = {}
        self._collector_classes: dict[str, type[CollectorStrategy]] = {}
        self._discovered = False

    def discover(self) -> int:
        """
        Discover strategies and collectors from entry_points.

        Returns:
            Number of plugin classes discovered
        """
        if self._discovered:
            return len(self._strategy_classes) + len(self._collector_classes)

        discovered_count = 0
        groups = (
            (STRATEGY_ENTRY_POINT, HealthCheckStrategy, self._strategy_classes),
            (COLLECTOR_ENTRY_POINT, CollectorStrategy, self._collector_classes),
        )
        for group, base, target in groups:
            for ep in importlib.metadata.entry_points(group=group):
                try:
                    plugin_class = ep.load()
                except Exception as e:
                    logger.warning(
                        "Failed to load plugin from entry_point",
                        group=group,
                        plugin=ep.name,
                        error=str(e),
                    )
                    continue
                if not (isinstance(plugin_class, type) and issubclass(plugin_class, base)):
                    logger.warning(
                        "Entry point does not reference a plugin class",
                        group=group,
                        plugin=ep.name,
                    )
                    continue
                target[ep.name] = plugin_class
                discovered_count += 1
                logger.debug("Discovered plugin via entry_point", group=group, plugin=ep.name)

        self._discovered = True
        logger.info("Plugin discovery complete", count=discovered_count)
        return discovered_count

    def register(self, plugin: HealthCheckStrategy | CollectorStrategy) -> None:
        """
        Manually register a strategy or collector instance.

        Args:
            plugin: The instance to register
        """
        if isinstance(plugin, HealthCheckStrategy):
            if plugin.id in self._strategies:
                logger.warning("Overwriting existing strategy", strategy=plugin.id)
            self._strategies[plugin.id] = plugin
            logger.debug("Registered strategy", strategy=plugin.id)
        elif isinstance(plugin, CollectorStrategy):
            if plugin.qualified_id in self._collectors:
                logger.warning("Overwriting existing collector", collector=plugin.qualified_id)
            self._collectors[plugin.qualified_id] = plugin
            logger.debug("Registered collector", collector=plugin.qualified_id)
        else:
            raise RegistryError(f"Cannot register {type(plugin).__name__}")

    def _instantiate(self, name: str, plugin_class: type) -> Any:
        try:
            return plugin_class()
        except Exception as e:
            raise RegistryError(f"Failed to instantiate plugin {name}: {e}") from e

    def get_strategy(self, strategy_id: str) -> HealthCheckStrategy:
        """
        Get a strategy by id.

        Raises:
            UnknownStrategyError: If the strategy is not registered
        """
        if strategy_id in self._strategies:
            return self._strategies[strategy_id]
        if strategy_id in self._strategy_classes:
            strategy = self._instantiate(strategy_id, self._strategy_classes[strategy_id])
            self._strategies[strategy_id] = strategy
            return strategy
        raise UnknownStrategyError(f"Strategy '{strategy_id}' not found")

    def get_collector(self, collector_id: str) -> CollectorStrategy:
        """
        Get a collector by fully qualified id (``plugin_id.collector_id``).

        Raises:
            UnknownCollectorError: If the collector is not registered
        """
        if collector_id in self._collectors:
            return self._collectors[collector_id]
        if collector_id in self._collector_classes:
            collector = self._instantiate(collector_id, self._collector_classes[collector_id])
            self._collectors[collector.qualified_id] = collector
            return collector
        raise UnknownCollectorError(f"Collector '{collector_id}' not found")

    def has_strategy(self, strategy_id: str) -> bool:
        return strategy_id in self._strategies or strategy_id in self._strategy_classes

    def has_collector(self, collector_id: str) -> bool:
        return collector_id in self._collectors or collector_id in self._collector_classes

    def __len__(self) -> int:
        return len(self.list_strategy_ids()) + len(self.list_collector_ids())

    def list_strategy_ids(self) -> list[str]:
        return sorted(set(self._strategies) | set(self._strategy_classes))

    def list_collector_ids(self) -> list[str]:
        return sorted(set(self._collectors) | set(self._collector_classes))

    def list_strategies(self) -> list[HealthCheckStrategy]:
        """List all strategies, skipping any that fail to load."""
        strategies = []
        for strategy_id in self.list_strategy_ids():
            try:
                strategies.append(self.get_strategy(strategy_id))
            except RegistryError as e:
                logger.warning("Failed to load strategy for listing", strategy=strategy_id, error=str(e))
        return strategies

    def list_collectors(self) -> list[CollectorStrategy]:
        """List all collectors, skipping any that fail to load."""
        collectors = []
        for collector_id in self.list_collector_ids():
            try:
                collectors.append(self.get_collector(collector_id))
            except RegistryError as e:
                logger.warning("Failed to load collector for listing", collector=collector_id, error=str(e))
        return collectors

    def collectors_for_strategy(self, strategy_id: str) -> list[CollectorStrategy]:
        """Get all collectors that can run on a strategy's client."""
        return [c for c in self.list_collectors() if c.supports(strategy_id)]


# Global registry instance
_registry: HealthCheckRegistry | None = None


def get_registry() -> HealthCheckRegistry:
    """
    Get the global registry instance.

    Creates the registry on first call, discovers entry_point plugins and
    registers any built-in plugin that discovery did not find.
    """
    global _registry
    if _registry is None:
        from pulsecheck.plugins import register_builtin_plugins

        _registry = HealthCheckRegistry()
        _registry.discover()
        register_builtin_plugins(_registry)
    return _registry


def reset_registry() -> None:
    """Reset the global registry (useful for testing)."""
    global _registry
    _registry = None
