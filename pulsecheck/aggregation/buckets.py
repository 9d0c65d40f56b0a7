"""
Bucket Aggregation

Folds runs into hourly buckets as they complete and combines buckets into
coarser ones during rollup and history queries. All writes to one bucket
are serialized through a per-bucket lock.
"""

from __future__ import annotations

import asyncio
import math
from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

import structlog

from pulsecheck.aggregation.incremental import (
    merge_average,
    merge_average_states,
    merge_min_max,
    merge_min_max_states,
)
from pulsecheck.config import get_settings
from pulsecheck.engine.base import CollectorStrategy, HealthCheckStrategy, RunForAggregation
from pulsecheck.engine.registry import HealthCheckRegistry
from pulsecheck.errors import RegistryError
from pulsecheck.models import AggregatedBucket, BucketSize, HealthCheckRun, HealthStatus
from pulsecheck.storage.base import BucketKey, HealthCheckStore

logger = structlog.get_logger(__name__)

COLLECTORS_KEY = "collectors"
COLLECTOR_ID_KEY = "_collector_id"
RESULT_VERSION_KEY = "_result_version"
AGGREGATED_VERSION_KEY = "_aggregated_version"


def bucket_start(timestamp: datetime, size: BucketSize) -> datetime:
    """Truncate a timestamp to the start of its hour or day (UTC)."""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    timestamp = timestamp.astimezone(timezone.utc)
    if size == BucketSize.HOURLY:
        return timestamp.replace(minute=0, second=0, microsecond=0)
    return timestamp.replace(hour=0, minute=0, second=0, microsecond=0)


def calculate_percentile(values: Iterable[float], percentile: float) -> float | None:
    """Nearest-rank percentile; None for an empty input."""
    ordered = sorted(values)
    if not ordered:
        return None
    index = max(0, math.ceil(percentile / 100 * len(ordered)) - 1)
    return ordered[min(index, len(ordered) - 1)]


def add_latency_sample(samples: list[float], value: float, cap: int) -> list[float]:
    """
    Append a sample, halving the list (every other sample) when it exceeds ``cap``.
    """
    updated = [*samples, value]
    if len(updated) > cap:
        updated = updated[::2]
    return updated


def _split_result(result: dict[str, Any] | None) -> tuple[dict[str, Any], dict[str, Any]]:
    """Separate strategy-level fields from the per-collector map."""
    result = dict(result or {})
    collectors = result.pop(COLLECTORS_KEY, None) or {}
    return result, collectors


def _strip_internal(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if not k.startswith("_")}


class BucketAggregator:
    """
    Maintains aggregated buckets for a store.

    Usage:
        aggregator = BucketAggregator(store, registry)
        bucket = await aggregator.fold_run(run, strategy)
    """

    def __init__(
        self,
        store: HealthCheckStore,
        registry: HealthCheckRegistry,
        sample_cap: int | None = None,
    ) -> None:
        self._store = store
        self._registry = registry
        self._sample_cap = sample_cap or get_settings().latency_sample_cap
        self._locks: dict[BucketKey, asyncio.Lock] = defaultdict(asyncio.Lock)

    def lock(self, key: BucketKey) -> asyncio.Lock:
        """The lock serializing writes to one bucket."""
        return self._locks[key]

    def resolve_strategy(self, strategy_id: str | None) -> HealthCheckStrategy | None:
        """Look up a strategy, returning None when it is not registered."""
        if strategy_id is None:
            return None
        try:
            return self._registry.get_strategy(strategy_id)
        except RegistryError as e:
            logger.warning("Strategy unavailable for aggregation", strategy=strategy_id, error=str(e))
            return None

    # Folding runs

    def apply_run(
        self,
        bucket: AggregatedBucket | None,
        run: HealthCheckRun,
        strategy: HealthCheckStrategy | None,
    ) -> AggregatedBucket:
        """Fold one run into an hourly bucket and return the updated copy."""
        if bucket is None:
            bucket = AggregatedBucket(
                configuration_id=run.configuration_id,
                system_id=run.system_id,
                bucket_start=bucket_start(run.timestamp, BucketSize.HOURLY),
                bucket_size=BucketSize.HOURLY,
            )

        samples = bucket.latency_samples
        if run.latency_ms is not None:
            samples = add_latency_sample(samples, run.latency_ms, self._sample_cap)

        aggregated_result, aggregated_version = self._merge_run_result(bucket, run, strategy)
        return bucket.model_copy(
            update={
                "run_count": bucket.run_count + 1,
                "healthy_count": bucket.healthy_count + (run.status == HealthStatus.HEALTHY),
                "degraded_count": bucket.degraded_count + (run.status == HealthStatus.DEGRADED),
                "unhealthy_count": bucket.unhealthy_count + (run.status == HealthStatus.UNHEALTHY),
                "latency": merge_average(bucket.latency, run.latency_ms),
                "latency_range": merge_min_max(bucket.latency_range, run.latency_ms),
                "latency_samples": samples,
                "p95_latency_ms": calculate_percentile(samples, 95),
                "aggregated_result": aggregated_result,
                "aggregated_result_version": aggregated_version,
                "updated_at": datetime.now(timezone.utc),
            }
        )

    @staticmethod
    def _collector_aggregate(
        collector: CollectorStrategy, data: dict[str, Any] | None
    ) -> dict[str, Any] | None:
        """A stored collector aggregate migrated to the collector's current schema."""
        if not data:
            return None
        return collector.aggregated_result.upgrade(
            _strip_internal(data), data.get(AGGREGATED_VERSION_KEY)
        )

    def _merge_run_result(
        self,
        bucket: AggregatedBucket,
        run: HealthCheckRun,
        strategy: HealthCheckStrategy | None,
    ) -> tuple[dict[str, Any], int | None]:
        existing_fields, existing_collectors = _split_result(bucket.aggregated_result)
        run_fields, run_collectors = _split_result(run.result)

        merged: dict[str, Any] = dict(existing_fields)
        version = bucket.aggregated_result_version
        if strategy is not None:
            existing_fields = strategy.aggregated_result.upgrade(existing_fields, version)
            merged = strategy.merge_result(
                existing_fields or None,
                RunForAggregation(
                    status=run.status,
                    latency_ms=run.latency_ms,
                    metadata=strategy.result.upgrade(run_fields, run.result_version),
                ),
            )
            version = strategy.aggregated_result.version

        collectors = dict(existing_collectors)
        for instance_id, data in run_collectors.items():
            collector_id = data.get(COLLECTOR_ID_KEY)
            if not collector_id or not self._registry.has_collector(collector_id):
                continue
            collector = self._registry.get_collector(collector_id)
            aggregated = collector.merge_result(
                self._collector_aggregate(collector, collectors.get(instance_id)),
                RunForAggregation(
                    status=run.status,
                    latency_ms=run.latency_ms,
                    metadata=collector.result.upgrade(
                        _strip_internal(data), data.get(RESULT_VERSION_KEY)
                    ),
                ),
            )
            collectors[instance_id] = {
                COLLECTOR_ID_KEY: collector_id,
                AGGREGATED_VERSION_KEY: collector.aggregated_result.version,
                **aggregated,
            }

        if collectors:
            merged[COLLECTORS_KEY] = collectors
        return merged, version

    async def fold_run(
        self, run: HealthCheckRun, strategy: HealthCheckStrategy | None
    ) -> AggregatedBucket:
        """
        Fold a persisted run into its hourly bucket and mark it aggregated.

        The bucket and the run's aggregated flag are committed in one store
        call, so a failure leaves the run pending for the retention job.

        Args:
            run: The run, already saved to the store
            strategy: Strategy that produced the run (None folds core stats only)

        Returns:
            The updated bucket
        """
        key: BucketKey = (
            run.configuration_id,
            run.system_id,
            bucket_start(run.timestamp, BucketSize.HOURLY),
            BucketSize.HOURLY,
        )
        async with self.lock(key):
            existing = await self._store.get_bucket(key)
            bucket = self.apply_run(existing, run, strategy)
            await self._store.commit_fold(bucket, [run.id])
        return bucket

    # Combining buckets

    def combine(
        self,
        buckets: list[AggregatedBucket],
        start: datetime,
        size: BucketSize,
        strategy_id: str | None = None,
    ) -> AggregatedBucket:
        """
        Merge several buckets into one covering ``start`` at ``size``.

        Counts add up, latency means are weighted by their counts, and the
        p95 of the result is the maximum of the source p95s.
        """
        if not buckets:
            raise ValueError("combine() needs at least one bucket")

        first = buckets[0]
        latency = None
        latency_range = None
        p95_values = []
        for bucket in buckets:
            latency = merge_average_states(latency, bucket.latency)
            latency_range = merge_min_max_states(latency_range, bucket.latency_range)
            if bucket.p95_latency_ms is not None:
                p95_values.append(bucket.p95_latency_ms)

        samples: list[float] = []
        if size == BucketSize.HOURLY:
            for bucket in buckets:
                for sample in bucket.latency_samples:
                    samples = add_latency_sample(samples, sample, self._sample_cap)

        aggregated_result, aggregated_version = self.merge_aggregated_results(buckets, strategy_id)
        return AggregatedBucket(
            configuration_id=first.configuration_id,
            system_id=first.system_id,
            bucket_start=start,
            bucket_size=size,
            run_count=sum(b.run_count for b in buckets),
            healthy_count=sum(b.healthy_count for b in buckets),
            degraded_count=sum(b.degraded_count for b in buckets),
            unhealthy_count=sum(b.unhealthy_count for b in buckets),
            latency=latency,
            latency_range=latency_range,
            latency_samples=samples,
            p95_latency_ms=max(p95_values) if p95_values else None,
            aggregated_result=aggregated_result,
            aggregated_result_version=aggregated_version,
        )

    def merge_aggregated_results(
        self,
        buckets: list[AggregatedBucket],
        strategy_id: str | None,
    ) -> tuple[dict[str, Any], int | None]:
        """
        Merge the aggregated results of several buckets.

        Older aggregates are migrated to the current schema before their
        states are merged.

        Returns:
            The merged aggregate and the schema version it was written with
        """
        sources = [b for b in buckets if b.aggregated_result]
        if not sources:
            return {}, None

        strategy = self.resolve_strategy(strategy_id)
        merged: dict[str, Any] = {}
        version = sources[0].aggregated_result_version
        collectors: dict[str, dict[str, Any]] = {}

        for bucket in sources:
            fields, result_collectors = _split_result(bucket.aggregated_result)
            if fields:
                if strategy is None:
                    merged = merged or fields
                else:
                    fields = strategy.aggregated_result.upgrade(
                        fields, bucket.aggregated_result_version
                    )
                    merged = strategy.aggregated_result.merge_states(merged or None, fields)
                    version = strategy.aggregated_result.version

            for instance_id, data in result_collectors.items():
                collector_id = data.get(COLLECTOR_ID_KEY)
                if not collector_id or not self._registry.has_collector(collector_id):
                    collectors.setdefault(instance_id, dict(data))
                    continue
                collector = self._registry.get_collector(collector_id)
                current = self._collector_aggregate(collector, data) or {}
                previous = self._collector_aggregate(collector, collectors.get(instance_id))
                if previous is not None:
                    current = collector.aggregated_result.merge_states(previous, current)
                collectors[instance_id] = {
                    COLLECTOR_ID_KEY: collector_id,
                    AGGREGATED_VERSION_KEY: collector.aggregated_result.version,
                    **current,
                }

        if collectors:
            merged[COLLECTORS_KEY] = collectors
        return merged, version
