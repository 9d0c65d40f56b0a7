"""
Retention Job

Compacts stored data for every (system, configuration) association:

1. Raw runs older than the raw horizon are folded into hourly buckets
   (when not already folded) and deleted.
2. Hourly buckets older than the hourly horizon are merged into daily buckets.
3. Daily buckets older than the daily horizon are deleted.

Each step commits a bucket and deletes its sources in one store call, so a
pass can be interrupted at any point and re-run safely.
"""

from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import structlog

from pulsecheck.aggregation.buckets import BucketAggregator, bucket_start
from pulsecheck.config import Settings, get_settings
from pulsecheck.engine.base import HealthCheckStrategy
from pulsecheck.models import BucketSize, HealthCheckRun, RetentionConfig, SystemAssociation
from pulsecheck.storage.base import BucketKey, HealthCheckStore

logger = structlog.get_logger(__name__)


@dataclass
class RetentionReport:
    """Counters for one retention pass."""

    associations: int = 0
    failed_associations: int = 0
    failed_buckets: int = 0
    runs_folded: int = 0
    runs_deleted: int = 0
    hourly_rolled_up: int = 0
    daily_written: int = 0
    daily_deleted: int = 0


@dataclass
class Cutoffs:
    raw: datetime
    hourly: datetime
    daily: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RetentionJob:
    """
    Runs retention and rollup over all associations.

    The aggregator must be the one the executor folds runs with, so both
    take the same per-bucket locks.

    Usage:
        job = service.retention_job()
        report = await job.run()
    """

    def __init__(
        self,
        store: HealthCheckStore,
        aggregator: BucketAggregator,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._aggregator = aggregator
        self._settings = settings or get_settings()
        self._clock = clock

    @property
    def aggregator(self) -> BucketAggregator:
        return self._aggregator

    def default_retention(self) -> RetentionConfig:
        return RetentionConfig(
            raw_retention_days=self._settings.raw_retention_days,
            hourly_retention_days=self._settings.hourly_retention_days,
            daily_retention_days=self._settings.daily_retention_days,
        )

    def cutoffs(self, retention: RetentionConfig, now: datetime) -> Cutoffs:
        """
        Compute the horizon of each tier.

        The raw cutoff is rounded down to the hour and the hourly cutoff to the
        day; neither is ever later than ``now`` minus the safety margin.
        """
        margin = now - timedelta(minutes=self._settings.compaction_safety_margin_minutes)
        raw = min(
            bucket_start(now - timedelta(days=retention.raw_retention_days), BucketSize.HOURLY),
            bucket_start(margin, BucketSize.HOURLY),
        )
        hourly = min(
            bucket_start(now - timedelta(days=retention.hourly_retention_days), BucketSize.DAILY),
            bucket_start(margin, BucketSize.DAILY),
        )
        daily = bucket_start(now - timedelta(days=retention.daily_retention_days), BucketSize.DAILY)
        return Cutoffs(raw=raw, hourly=hourly, daily=daily)

    async def run(self) -> RetentionReport:
        """Run one retention pass over every association."""
        report = RetentionReport()
        now = self._clock()
        logger.info("Starting retention job")

        for association in await self._store.list_associations():
            report.associations += 1
            try:
                await self.process(association, now, report)
            except Exception as e:
                report.failed_associations += 1
                logger.error(
                    "Retention failed for association",
                    system_id=association.system_id,
                    configuration_id=association.configuration_id,
                    error=str(e),
                )

        logger.info("Completed retention job", **report.__dict__)
        return report

    async def process(
        self, association: SystemAssociation, now: datetime, report: RetentionReport
    ) -> None:
        """Apply all three retention steps to one association."""
        configuration = await self._store.get_configuration(association.configuration_id)
        strategy_id = configuration.strategy_id if configuration else None
        strategy = self._aggregator.resolve_strategy(strategy_id)
        retention = association.retention_config or self.default_retention()
        cutoffs = self.cutoffs(retention, now)

        await self._compact_raw_runs(association, strategy, cutoffs.raw, report)
        await self._rollup_hourly(association, strategy_id, cutoffs.hourly, report)
        report.daily_deleted += await self._store.delete_buckets_before(
            association.configuration_id,
            association.system_id,
            BucketSize.DAILY,
            cutoffs.daily,
        )

    async def _compact_raw_runs(
        self,
        association: SystemAssociation,
        strategy: HealthCheckStrategy | None,
        cutoff: datetime,
        report: RetentionReport,
    ) -> None:
        runs = await self._store.load_runs_between(
            association.configuration_id, association.system_id, end=cutoff
        )
        by_hour: dict[datetime, list[HealthCheckRun]] = defaultdict(list)
        for run in runs:
            by_hour[bucket_start(run.timestamp, BucketSize.HOURLY)].append(run)

        for hour, hour_runs in sorted(by_hour.items()):
            key: BucketKey = (
                association.configuration_id,
                association.system_id,
                hour,
                BucketSize.HOURLY,
            )
            pending = [r for r in hour_runs if not r.aggregated]
            run_ids = [r.id for r in hour_runs]
            try:
                async with self._aggregator.lock(key):
                    if not pending:
                        report.runs_deleted += await self._store.delete_runs(run_ids)
                        continue
                    bucket = await self._store.get_bucket(key)
                    for run in pending:
                        bucket = self._aggregator.apply_run(bucket, run, strategy)
                    await self._store.commit_rollup(bucket, run_ids=run_ids)
                report.runs_folded += len(pending)
                report.runs_deleted += len(run_ids)
            except Exception as e:
                report.failed_buckets += 1
                logger.error(
                    "Failed to compact raw runs",
                    configuration_id=association.configuration_id,
                    system_id=association.system_id,
                    hour=hour.isoformat(),
                    error=str(e),
                )

    async def _rollup_hourly(
        self,
        association: SystemAssociation,
        strategy_id: str | None,
        cutoff: datetime,
        report: RetentionReport,
    ) -> None:
        hourly = await self._store.list_buckets(
            association.configuration_id, association.system_id, BucketSize.HOURLY, end=cutoff
        )
        by_day = defaultdict(list)
        for bucket in hourly:
            by_day[bucket_start(bucket.bucket_start, BucketSize.DAILY)].append(bucket)

        for day, day_buckets in sorted(by_day.items()):
            key: BucketKey = (
                association.configuration_id,
                association.system_id,
                day,
                BucketSize.DAILY,
            )
            try:
                async with self._aggregator.lock(key):
                    existing = await self._store.get_bucket(key)
                    sources = ([existing] if existing else []) + day_buckets
                    daily = self._aggregator.combine(sources, day, BucketSize.DAILY, strategy_id)
                    await self._store.commit_rollup(
                        daily, bucket_keys=[b.key for b in day_buckets]
                    )
                report.hourly_rolled_up += len(day_buckets)
                report.daily_written += 1
            except Exception as e:
                report.failed_buckets += 1
                logger.error(
                    "Failed to roll up hourly buckets",
                    configuration_id=association.configuration_id,
                    system_id=association.system_id,
                    day=day.isoformat(),
                    error=str(e),
                )
