"""Built-in health check plugins."""

from pulsecheck.engine.registry import HealthCheckRegistry


def register_builtin_plugins(registry: HealthCheckRegistry) -> None:
    """Register the bundled strategies and collectors that are not already known."""
    from pulsecheck.plugins.dns import DNSHealthCheckStrategy, LookupCollector
    from pulsecheck.plugins.http import HTTPHealthCheckStrategy, RequestCollector
    from pulsecheck.plugins.script import (
        ExecuteCollector,
        InlineScriptCollector,
        ScriptHealthCheckStrategy,
    )

    for strategy_class in (DNSHealthCheckStrategy, ScriptHealthCheckStrategy, HTTPHealthCheckStrategy):
        if not registry.has_strategy(strategy_class.id):
            registry.register(strategy_class())

    for collector_class in (LookupCollector, ExecuteCollector, InlineScriptCollector, RequestCollector):
        if not registry.has_collector(f"{collector_class.plugin_id}.{collector_class.id}"):
            registry.register(collector_class())
