"""
Health Check Executor

Runs one health check for one system: opens the strategy's client, runs
every configured collector against it under the strategy timeout, checks
assertions, classifies the run, persists it and folds it into its hourly
bucket.
"""

import asyncio
import time
from collections.abc import Iterable
from typing import Any

import structlog

from pulsecheck.aggregation.buckets import (
    COLLECTOR_ID_KEY,
    COLLECTORS_KEY,
    RESULT_VERSION_KEY,
    BucketAggregator,
)
from pulsecheck.assertions import evaluate_assertions
from pulsecheck.config import get_settings
from pulsecheck.engine.base import (
    CollectorOutput,
    CollectorStrategy,
    HealthCheckStrategy,
    elapsed_ms,
    run_with_timeout,
)
from pulsecheck.engine.registry import HealthCheckRegistry
from pulsecheck.errors import (
    ClientConnectionError,
    ConfigurationError,
    ProbeTimeoutError,
    PulsecheckError,
)
from pulsecheck.models import (
    CollectorConfigEntry,
    HealthCheckConfiguration,
    HealthCheckRun,
    HealthStatus,
)
from pulsecheck.storage.base import HealthCheckStore

logger = structlog.get_logger(__name__)


class PreparedCollector:
    """A collector entry resolved against the registry with its config parsed."""

    def __init__(self, entry: CollectorConfigEntry, collector: CollectorStrategy, config: Any) -> None:
        self.entry = entry
        self.collector = collector
        self.config = config


class HealthCheckExecutor:
    """
    Executes health checks and records their outcome.

    Probe failures (connection errors, timeouts, collector errors and failed
    assertions) are captured in the run. Unknown strategies or collectors and
    invalid stored configs are raised to the caller.

    Usage:
        executor = HealthCheckExecutor(store, registry)
        run = await executor.run_check("config-id", "system-id")
    """

    def __init__(
        self,
        store: HealthCheckStore,
        registry: HealthCheckRegistry,
        aggregator: BucketAggregator | None = None,
        max_concurrency: int | None = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._aggregator = aggregator or BucketAggregator(store, registry)
        self._max_concurrency = max_concurrency or get_settings().max_concurrent_checks

    @property
    def aggregator(self) -> BucketAggregator:
        return self._aggregator

    def _prepare(
        self, configuration: HealthCheckConfiguration
    ) -> tuple[HealthCheckStrategy, Any, list[PreparedCollector]]:
        strategy = self._registry.get_strategy(configuration.strategy_id)
        strategy_config = strategy.config.parse(configuration.config)

        prepared = []
        for entry in configuration.collectors:
            collector = self._registry.get_collector(entry.collector_id)
            if not collector.supports(strategy.id):
                raise ConfigurationError(
                    f"Collector '{entry.collector_id}' does not support strategy '{strategy.id}'"
                )
            prepared.append(PreparedCollector(entry, collector, collector.config.parse(entry.config)))
        return strategy, strategy_config, prepared

    async def _run_collector(
        self,
        strategy: HealthCheckStrategy,
        client: Any,
        prepared: PreparedCollector,
        timeout_ms: int,
    ) -> CollectorOutput:
        collector = prepared.collector
        output = CollectorOutput(
            instance_id=prepared.entry.id,
            collector_id=collector.qualified_id,
            result={},
        )
        try:
            collected = await run_with_timeout(
                collector.execute(prepared.config, client, strategy.id),
                timeout_ms,
                f"Collector {collector.qualified_id}",
            )
        except ProbeTimeoutError as e:
            output.result = {"timed_out": True}
            output.timed_out = True
            output.error = str(e)
            return output
        except Exception as e:
            logger.warning(
                "Collector failed",
                collector=collector.qualified_id,
                instance=prepared.entry.id,
                error=str(e),
            )
            output.error = f"{type(e).__name__}: {e}"
            return output

        output.result = collected.result
        output.error = collected.error
        output.timed_out = bool(collected.result.get("timed_out"))

        failed = evaluate_assertions(prepared.entry.assertions, collected.result)
        if failed is not None:
            output.assertion_failed = failed.message
        return output

    def _classify(
        self,
        outputs: list[CollectorOutput],
        latency_ms: float,
        latency_degraded_ms: int | None,
    ) -> tuple[HealthStatus, str | None]:
        for output in outputs:
            if output.assertion_failed:
                return HealthStatus.UNHEALTHY, f"Assertion failed: {output.assertion_failed}"
        for output in outputs:
            if output.error:
                return HealthStatus.UNHEALTHY, output.error
        if latency_degraded_ms is not None and latency_ms > latency_degraded_ms:
            return (
                HealthStatus.DEGRADED,
                f"Latency {latency_ms:.0f}ms exceeds {latency_degraded_ms}ms",
            )
        return HealthStatus.HEALTHY, None

    def _build_metadata(
        self,
        strategy: HealthCheckStrategy,
        outputs: list[CollectorOutput],
        prepared: list[PreparedCollector],
    ) -> dict[str, Any]:
        metadata = strategy.build_result(outputs)
        collectors: dict[str, Any] = {}
        for output, item in zip(outputs, prepared):
            data: dict[str, Any] = {
                COLLECTOR_ID_KEY: output.collector_id,
                RESULT_VERSION_KEY: item.collector.result.version,
                **item.collector.result.strip_ephemeral(output.result),
            }
            if output.error:
                data["_error"] = output.error
            if output.assertion_failed:
                data["_assertion_failed"] = output.assertion_failed
            collectors[output.instance_id] = data
        if collectors:
            metadata[COLLECTORS_KEY] = collectors
        return metadata

    async def execute(
        self, configuration: HealthCheckConfiguration, system_id: str
    ) -> HealthCheckRun:
        """
        Execute a configuration without persisting the run.

        Raises:
            UnknownStrategyError: Strategy not registered
            UnknownCollectorError: Collector not registered
            SchemaError: Stored config cannot be migrated or validated
        """
        strategy, strategy_config, prepared = self._prepare(configuration)
        timeout_ms = strategy_config.timeout
        start = time.perf_counter()

        try:
            connected = await run_with_timeout(
                strategy.create_client(strategy_config), timeout_ms, "Connection"
            )
        except ProbeTimeoutError as e:
            return self._failed_run(
                configuration, strategy, system_id, str(e), elapsed_ms(start), timed_out=True
            )
        except Exception as e:
            if isinstance(e, ClientConnectionError):
                message = str(e)
            else:
                message = f"Connection failed: {type(e).__name__}: {e}"
            logger.info(
                "Failed to create client",
                strategy=strategy.id,
                configuration_id=configuration.id,
                error=message,
            )
            return self._failed_run(configuration, strategy, system_id, message, elapsed_ms(start))

        async with connected as client:
            outputs = [
                await self._run_collector(strategy, client, item, timeout_ms) for item in prepared
            ]

        latency = elapsed_ms(start)
        status, message = self._classify(outputs, latency, strategy_config.latency_degraded_ms)
        return HealthCheckRun(
            configuration_id=configuration.id,
            system_id=system_id,
            status=status,
            latency_ms=latency,
            message=message,
            result=self._build_metadata(strategy, outputs, prepared),
            result_version=strategy.result.version,
        )

    def _failed_run(
        self,
        configuration: HealthCheckConfiguration,
        strategy: HealthCheckStrategy,
        system_id: str,
        message: str,
        latency_ms: float,
        timed_out: bool = False,
    ) -> HealthCheckRun:
        result: dict[str, Any] = {"error": message}
        if timed_out:
            result["timed_out"] = True
        return HealthCheckRun(
            configuration_id=configuration.id,
            system_id=system_id,
            status=HealthStatus.UNHEALTHY,
            latency_ms=latency_ms,
            message=message,
            result=result,
            result_version=strategy.result.version,
        )

    async def run_check(self, configuration_id: str, system_id: str) -> HealthCheckRun:
        """
        Execute, persist and aggregate one health check.

        Args:
            configuration_id: Configuration to run
            system_id: Monitored system

        Returns:
            The persisted run

        Raises:
            ConfigurationError: Unknown configuration
            RegistryError, SchemaError: See ``execute``
        """
        configuration = await self._store.get_configuration(configuration_id)
        if configuration is None:
            raise ConfigurationError(f"Configuration '{configuration_id}' not found")

        run = await self.execute(configuration, system_id)
        await self._store.save_run(run)
        logger.info(
            "Health check completed",
            configuration_id=configuration_id,
            system_id=system_id,
            status=run.status.value,
            latency_ms=run.latency_ms,
        )

        try:
            strategy = self._registry.get_strategy(configuration.strategy_id)
            await self._aggregator.fold_run(run, strategy)
        except Exception as e:
            # Left unaggregated; retention folds it before deleting
            logger.error(
                "Failed to aggregate run",
                run_id=run.id,
                configuration_id=configuration_id,
                error=str(e),
            )
            return run

        return run.model_copy(update={"aggregated": True})

    async def run_checks(
        self, pairs: Iterable[tuple[str, str]]
    ) -> list[HealthCheckRun | PulsecheckError]:
        """
        Run many (configuration_id, system_id) pairs concurrently.

        Errors are logged and returned in place of the run so one bad
        configuration does not abort the batch.
        """
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _run(configuration_id: str, system_id: str) -> HealthCheckRun | PulsecheckError:
            async with semaphore:
                try:
                    return await self.run_check(configuration_id, system_id)
                except PulsecheckError as e:
                    logger.error(
                        "Health check could not run",
                        configuration_id=configuration_id,
                        system_id=system_id,
                        error=str(e),
                    )
                    return e

        return await asyncio.gather(*(_run(c, s) for c, s in pairs))
