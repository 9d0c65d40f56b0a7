"""
Health Check Service

The surface consumed by API and UI layers: configuration management,
system health evaluation, aggregated history and schema documents.
"""

from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Literal

import structlog

from pulsecheck.aggregation.buckets import BucketAggregator, bucket_start
from pulsecheck.assertions import Assertion
from pulsecheck.config import Settings, get_settings
from pulsecheck.engine.executor import HealthCheckExecutor
from pulsecheck.engine.registry import HealthCheckRegistry, get_registry
from pulsecheck.errors import ConfigurationError, SchemaError
from pulsecheck.evaluator import (
    STATE_THRESHOLDS,
    ThresholdSettings,
    evaluate_health_status,
    required_history,
    worst_status,
)
from pulsecheck.models import (
    AggregatedBucket,
    BucketSize,
    CheckStatus,
    CollectorConfigEntry,
    ConsecutiveThresholds,
    HealthCheckConfiguration,
    HealthCheckRun,
    RetentionConfig,
    SystemAssociation,
    SystemHealthStatus,
    WindowThresholds,
)
from pulsecheck.retention import RetentionJob
from pulsecheck.storage.base import HealthCheckStore

logger = structlog.get_logger(__name__)

AUTO_HOURLY_RANGE = timedelta(days=3)


class HealthCheckService:
    """
    Service layer over the store, registry and executor.

    Usage:
        service = HealthCheckService(store)
        configuration = await service.create_configuration(
            name="example.com A record",
            strategy_id="dns",
            config={"timeout": 5000},
            collectors=[{"collector_id": "dns.lookup", "config": {"hostname": "example.com"}}],
        )
        await service.associate_system("web-1", configuration.id)
        run = await service.run_check(configuration.id, "web-1")
        status = await service.evaluate_system_status("web-1")
        report = await service.retention_job().run()
    """

    def __init__(
        self,
        store: HealthCheckStore,
        registry: HealthCheckRegistry | None = None,
        executor: HealthCheckExecutor | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._store = store
        self._registry = registry or get_registry()
        self._settings = settings or get_settings()
        self._executor = executor or HealthCheckExecutor(store, self._registry)

    @property
    def executor(self) -> HealthCheckExecutor:
        return self._executor

    @property
    def aggregator(self) -> BucketAggregator:
        return self._executor.aggregator

    def retention_job(self) -> RetentionJob:
        """Retention job that folds runs under the executor's bucket locks."""
        return RetentionJob(self._store, self.aggregator, settings=self._settings)

    # Configurations

    def _build_collectors(
        self, strategy_id: str, collectors: list[dict[str, Any]]
    ) -> list[CollectorConfigEntry]:
        entries = []
        seen: set[str] = set()
        for item in collectors:
            collector_id = item.get("collector_id", "")
            collector = self._registry.get_collector(collector_id)
            if not collector.supports(strategy_id):
                raise ConfigurationError(
                    f"Collector '{collector_id}' does not support strategy '{strategy_id}'"
                )
            if collector_id in seen and not collector.allow_multiple:
                raise ConfigurationError(
                    f"Collector '{collector_id}' may only be added once per configuration"
                )
            seen.add(collector_id)

            entry_kwargs: dict[str, Any] = {
                "collector_id": collector_id,
                "config": collector.config.create(item.get("config", {})),
                "assertions": [Assertion.model_validate(a) for a in item.get("assertions", [])],
            }
            if item.get("id"):
                entry_kwargs["id"] = item["id"]
            entries.append(CollectorConfigEntry(**entry_kwargs))

        instance_ids = [e.id for e in entries]
        if len(instance_ids) != len(set(instance_ids)):
            raise ConfigurationError("Collector instance ids must be unique")
        return entries

    async def create_configuration(
        self,
        name: str,
        strategy_id: str,
        config: dict[str, Any],
        collectors: list[dict[str, Any]] | None = None,
        interval_seconds: int = 60,
    ) -> HealthCheckConfiguration:
        """
        Validate and store a new configuration.

        Raises:
            UnknownStrategyError / UnknownCollectorError: Unregistered ids
            SchemaError: Config does not match the current schema
            ConfigurationError: Collector combination is not allowed
        """
        strategy = self._registry.get_strategy(strategy_id)
        configuration = HealthCheckConfiguration(
            name=name,
            strategy_id=strategy_id,
            config=strategy.config.create(config),
            interval_seconds=interval_seconds,
            collectors=self._build_collectors(strategy_id, collectors or []),
        )
        await self._store.save_configuration(configuration)
        logger.info("Created configuration", configuration_id=configuration.id, strategy=strategy_id)
        return configuration

    async def update_configuration(
        self,
        configuration_id: str,
        name: str | None = None,
        config: dict[str, Any] | None = None,
        collectors: list[dict[str, Any]] | None = None,
        interval_seconds: int | None = None,
        strategy_id: str | None = None,
    ) -> HealthCheckConfiguration:
        """Update a configuration. The strategy cannot be changed."""
        configuration = await self.get_configuration(configuration_id)
        if strategy_id is not None and strategy_id != configuration.strategy_id:
            raise ConfigurationError("strategy_id cannot be changed after creation")

        strategy = self._registry.get_strategy(configuration.strategy_id)
        update: dict[str, Any] = {"updated_at": datetime.now(timezone.utc)}
        if name is not None:
            update["name"] = name
        if config is not None:
            update["config"] = strategy.config.create(config)
        if collectors is not None:
            update["collectors"] = self._build_collectors(configuration.strategy_id, collectors)
        if interval_seconds is not None:
            update["interval_seconds"] = interval_seconds

        updated = configuration.model_copy(update=update)
        await self._store.save_configuration(updated)
        return updated

    async def get_configuration(self, configuration_id: str) -> HealthCheckConfiguration:
        """
        Load a configuration, migrating stored configs to current schema versions.

        Raises:
            ConfigurationError: Configuration not found
            SchemaError: A stored config cannot be migrated or validated
        """
        configuration = await self._store.get_configuration(configuration_id)
        if configuration is None:
            raise ConfigurationError(f"Configuration '{configuration_id}' not found")

        strategy = self._registry.get_strategy(configuration.strategy_id)
        migrated = strategy.config.needs_migration(configuration.config)
        collectors = []
        for entry in configuration.collectors:
            collector = self._registry.get_collector(entry.collector_id)
            migrated = migrated or collector.config.needs_migration(entry.config)
            collectors.append(
                entry.model_copy(update={"config": collector.config.parse_record(entry.config)})
            )

        configuration = configuration.model_copy(
            update={
                "config": strategy.config.parse_record(configuration.config),
                "collectors": collectors,
            }
        )
        if migrated:
            logger.info("Migrated stored configuration", configuration_id=configuration_id)
            await self._store.save_configuration(configuration)
        return configuration

    async def delete_configuration(self, configuration_id: str) -> bool:
        return await self._store.delete_configuration(configuration_id)

    # Associations

    async def associate_system(
        self,
        system_id: str,
        configuration_id: str,
        thresholds: ConsecutiveThresholds | WindowThresholds | None = None,
        retention: RetentionConfig | None = None,
        enabled: bool = True,
    ) -> SystemAssociation:
        """Attach a configuration to a system."""
        await self.get_configuration(configuration_id)
        existing = await self._store.get_association(system_id, configuration_id)
        association = SystemAssociation(
            system_id=system_id,
            configuration_id=configuration_id,
            enabled=enabled,
            state_thresholds=(
                STATE_THRESHOLDS.create(ThresholdSettings(thresholds)) if thresholds else None
            ),
            retention_config=retention,
            last_status=existing.last_status if existing else None,
        )
        await self._store.save_association(association)
        return association

    def get_thresholds(
        self, association: SystemAssociation
    ) -> ConsecutiveThresholds | WindowThresholds | None:
        """Parse an association's stored thresholds (None means defaults)."""
        if association.state_thresholds is None:
            return None
        return STATE_THRESHOLDS.parse(association.state_thresholds).root

    # Execution

    async def run_check(self, configuration_id: str, system_id: str) -> HealthCheckRun:
        return await self._executor.run_check(configuration_id, system_id)

    # Evaluation

    async def evaluate_check_status(self, association: SystemAssociation) -> CheckStatus:
        """Evaluate the verdict of one association from its recent runs."""
        thresholds = self.get_thresholds(association)
        limit = required_history(thresholds, self._settings.max_window_runs)
        runs = await self._store.load_recent_runs(
            association.configuration_id, association.system_id, limit
        )
        status = evaluate_health_status(runs, thresholds, previous=association.last_status)

        if status is not None and status != association.last_status:
            logger.info(
                "Health status changed",
                system_id=association.system_id,
                configuration_id=association.configuration_id,
                previous=association.last_status.value if association.last_status else None,
                status=status.value,
            )
            await self._store.save_association(association.model_copy(update={"last_status": status}))

        configuration = await self._store.get_configuration(association.configuration_id)
        return CheckStatus(
            configuration_id=association.configuration_id,
            configuration_name=configuration.name if configuration else None,
            status=status,
            run_count=len(runs),
            last_run_at=runs[0].timestamp if runs else None,
        )

    async def evaluate_system_status(self, system_id: str) -> SystemHealthStatus:
        """
        Evaluate a system's overall verdict: the worst verdict of its enabled checks.

        A system with no runs at all has no verdict (status None).
        """
        check_statuses = []
        for association in await self._store.list_associations(system_id, enabled_only=True):
            try:
                check_statuses.append(await self.evaluate_check_status(association))
            except SchemaError as e:
                logger.error(
                    "Cannot evaluate check",
                    system_id=system_id,
                    configuration_id=association.configuration_id,
                    error=str(e),
                )
                raise

        return SystemHealthStatus(
            system_id=system_id,
            status=worst_status(c.status for c in check_statuses),
            check_statuses=check_statuses,
        )

    # History

    @staticmethod
    def resolve_bucket_size(
        start: datetime, end: datetime, bucket_size: BucketSize | Literal["auto"]
    ) -> BucketSize:
        if bucket_size == "auto":
            return BucketSize.HOURLY if end - start < AUTO_HOURLY_RANGE else BucketSize.DAILY
        return BucketSize(bucket_size)

    async def get_aggregated_history(
        self,
        system_id: str,
        configuration_id: str,
        start: datetime,
        end: datetime,
        bucket_size: BucketSize | Literal["auto"] = "auto",
    ) -> list[AggregatedBucket]:
        """
        Aggregated buckets covering ``[start, end)``.

        Finer data wins where tiers overlap: runs not yet folded are merged
        into their hourly bucket on the fly, and daily buckets only fill in
        days that no longer have hourly data.
        """
        size = self.resolve_bucket_size(start, end, bucket_size)
        configuration = await self._store.get_configuration(configuration_id)
        strategy_id = configuration.strategy_id if configuration else None

        hourly = await self._hourly_view(configuration_id, system_id, start, end, strategy_id)
        daily = await self._store.list_buckets(
            configuration_id,
            system_id,
            BucketSize.DAILY,
            start=bucket_start(start, BucketSize.DAILY),
            end=end,
        )

        if size == BucketSize.HOURLY:
            hourly_days = {bucket_start(b.bucket_start, BucketSize.DAILY) for b in hourly}
            merged = hourly + [b for b in daily if b.bucket_start not in hourly_days]
            return sorted(merged, key=lambda b: b.bucket_start)

        by_day: dict[datetime, list[AggregatedBucket]] = defaultdict(list)
        for bucket in daily:
            by_day[bucket.bucket_start].append(bucket)
        for bucket in hourly:
            by_day[bucket_start(bucket.bucket_start, BucketSize.DAILY)].append(bucket)
        return [
            self.aggregator.combine(buckets, day, BucketSize.DAILY, strategy_id)
            for day, buckets in sorted(by_day.items())
        ]

    async def _hourly_view(
        self,
        configuration_id: str,
        system_id: str,
        start: datetime,
        end: datetime,
        strategy_id: str | None,
    ) -> list[AggregatedBucket]:
        first_hour = bucket_start(start, BucketSize.HOURLY)
        buckets = {
            b.bucket_start: b
            for b in await self._store.list_buckets(
                configuration_id, system_id, BucketSize.HOURLY, start=first_hour, end=end
            )
        }

        runs = await self._store.load_runs_between(configuration_id, system_id, first_hour, end)
        pending = [r for r in runs if not r.aggregated]
        if pending:
            strategy = self.aggregator.resolve_strategy(strategy_id)
            for run in pending:
                hour = bucket_start(run.timestamp, BucketSize.HOURLY)
                buckets[hour] = self.aggregator.apply_run(buckets.get(hour), run, strategy)

        return [buckets[hour] for hour in sorted(buckets)]

    # Schemas

    def get_strategy_schemas(self) -> list[dict[str, Any]]:
        """JSON-Schema documents for every strategy, with collector aggregates nested."""
        documents = []
        for strategy in self._registry.list_strategies():
            aggregated = strategy.aggregated_result.json_schema()
            collectors = {
                c.qualified_id: c.aggregated_result.json_schema()
                for c in self._registry.collectors_for_strategy(strategy.id)
            }
            if collectors:
                aggregated.setdefault("properties", {})["collectors"] = {
                    "type": "object",
                    "x-collectors": collectors,
                }
            documents.append(
                {
                    **strategy.get_info(),
                    "config_schema": strategy.config.json_schema(),
                    "result_schema": strategy.result.json_schema(),
                    "aggregated_result_schema": aggregated,
                }
            )
        return documents

    def get_collector_schemas(self, strategy_id: str | None = None) -> list[dict[str, Any]]:
        """JSON-Schema documents for collectors (optionally for one strategy)."""
        collectors = (
            self._registry.collectors_for_strategy(strategy_id)
            if strategy_id
            else self._registry.list_collectors()
        )
        return [
            {
                **c.get_info(),
                "config_schema": c.config.json_schema(),
                "result_schema": c.result.json_schema(),
                "aggregated_result_schema": c.aggregated_result.json_schema(),
            }
            for c in collectors
        ]
