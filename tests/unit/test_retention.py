"""
Tests for the retention job.
"""

from datetime import datetime, timedelta, timezone

import pytest

from pulsecheck.aggregation.buckets import BucketAggregator
from pulsecheck.config import Settings
from pulsecheck.engine.registry import HealthCheckRegistry
from pulsecheck.models import (
    AggregatedBucket,
    BucketSize,
    HealthCheckConfiguration,
    HealthCheckRun,
    HealthStatus,
    RetentionConfig,
    SystemAssociation,
)
from pulsecheck.retention import RetentionJob
from pulsecheck.storage.memory import InMemoryStore
from pulsecheck.versioning import VersionedRecord

NOW = datetime(2024, 3, 20, 12, 0, tzinfo=timezone.utc)


def _run(at: datetime, status: HealthStatus = HealthStatus.HEALTHY, latency: float = 50.0) -> HealthCheckRun:
    return HealthCheckRun(
        configuration_id="cfg",
        system_id="sys",
        status=status,
        latency_ms=latency,
        timestamp=at,
    )


async def _seed(store: InMemoryStore, retention: RetentionConfig | None = None) -> None:
    await store.save_configuration(
        HealthCheckConfiguration(
            id="cfg",
            name="dns check",
            strategy_id="dns",
            config=VersionedRecord(version=2, data={"timeout": 5000}),
        )
    )
    await store.save_association(
        SystemAssociation(system_id="sys", configuration_id="cfg", retention_config=retention)
    )


def _job(store: InMemoryStore, registry: HealthCheckRegistry) -> RetentionJob:
    return RetentionJob(
        store,
        BucketAggregator(store, registry),
        settings=Settings(),
        clock=lambda: NOW,
    )


class FailingRollupStore(InMemoryStore):
    """Store whose rollup commits always fail."""

    async def commit_rollup(self, bucket, run_ids=(), bucket_keys=()) -> None:
        raise RuntimeError("disk full")


class FlakyFoldStore(InMemoryStore):
    """Store whose first fold commit fails."""

    def __init__(self) -> None:
        super().__init__()
        self.fold_failures = 1

    async def commit_fold(self, bucket, run_ids) -> None:
        if self.fold_failures:
            self.fold_failures -= 1
            raise RuntimeError("connection reset")
        await super().commit_fold(bucket, run_ids)


class TestCutoffs:
    """Tests for horizon computation."""

    def test_default_cutoffs(self, registry: HealthCheckRegistry, store: InMemoryStore) -> None:
        """Test each horizon is rounded to its bucket size."""
        job = _job(store, registry)
        cutoffs = job.cutoffs(job.default_retention(), NOW)

        assert cutoffs.raw == datetime(2024, 3, 13, 12, tzinfo=timezone.utc)
        assert cutoffs.hourly == datetime(2024, 2, 19, tzinfo=timezone.utc)
        assert cutoffs.daily == datetime(2023, 3, 21, tzinfo=timezone.utc)

    def test_safety_margin(self, registry: HealthCheckRegistry, store: InMemoryStore) -> None:
        """Test cutoffs never reach into the current hour."""
        job = _job(store, registry)
        now = datetime(2024, 3, 20, 12, 5, tzinfo=timezone.utc)
        cutoffs = job.cutoffs(job.default_retention(), now)

        assert cutoffs.raw <= now - timedelta(minutes=15)


class TestRawCompaction:
    """Tests for folding and deleting raw runs."""

    @pytest.mark.asyncio
    async def test_old_runs_folded_and_deleted(
        self, registry: HealthCheckRegistry, store: InMemoryStore
    ) -> None:
        """Test unaggregated runs past the raw horizon end up in their hourly bucket."""
        await _seed(store)
        old = datetime(2024, 3, 10, 9, 15, tzinfo=timezone.utc)
        await store.save_run(_run(old))
        await store.save_run(_run(old + timedelta(minutes=30), HealthStatus.UNHEALTHY))
        await store.save_run(_run(NOW - timedelta(hours=1)))

        report = await _job(store, registry).run()

        assert report.associations == 1
        assert report.runs_folded == 2
        assert report.runs_deleted == 2
        remaining = await store.load_runs_between("cfg", "sys")
        assert [r.timestamp for r in remaining] == [NOW - timedelta(hours=1)]

        bucket = await store.get_bucket(
            ("cfg", "sys", datetime(2024, 3, 10, 9, tzinfo=timezone.utc), BucketSize.HOURLY)
        )
        assert bucket is not None
        assert bucket.run_count == 2
        assert bucket.unhealthy_count == 1

    @pytest.mark.asyncio
    async def test_aggregated_runs_not_counted_twice(
        self, registry: HealthCheckRegistry, store: InMemoryStore
    ) -> None:
        """Test runs already folded are deleted without folding them again."""
        await _seed(store)
        aggregator = BucketAggregator(store, registry)
        old = datetime(2024, 3, 10, 9, 15, tzinfo=timezone.utc)
        for minute in (0, 10, 20):
            run = _run(old + timedelta(minutes=minute))
            await store.save_run(run)
            await aggregator.fold_run(run, None)

        report = await _job(store, registry).run()

        assert report.runs_folded == 0
        assert report.runs_deleted == 3
        bucket = await store.get_bucket(
            ("cfg", "sys", datetime(2024, 3, 10, 9, tzinfo=timezone.utc), BucketSize.HOURLY)
        )
        assert bucket.run_count == 3

    @pytest.mark.asyncio
    async def test_failed_commit_keeps_runs(self, registry: HealthCheckRegistry) -> None:
        """Test a failed rollup leaves the raw runs for the next pass."""
        store = FailingRollupStore()
        await _seed(store)
        await store.save_run(_run(datetime(2024, 3, 10, 9, 15, tzinfo=timezone.utc)))

        report = await _job(store, registry).run()

        assert report.failed_buckets == 1
        assert len(await store.load_runs_between("cfg", "sys")) == 1

    @pytest.mark.asyncio
    async def test_failed_fold_counted_once(self, registry: HealthCheckRegistry) -> None:
        """Test a run whose fold commit failed is folded exactly once by retention."""
        store = FlakyFoldStore()
        await _seed(store)
        aggregator = BucketAggregator(store, registry)
        hour = datetime(2024, 3, 10, 9, tzinfo=timezone.utc)
        run = _run(hour + timedelta(minutes=15))
        await store.save_run(run)

        with pytest.raises(RuntimeError):
            await aggregator.fold_run(run, None)

        key = ("cfg", "sys", hour, BucketSize.HOURLY)
        assert await store.get_bucket(key) is None
        assert (await store.load_runs_between("cfg", "sys"))[0].aggregated is False

        report = await RetentionJob(
            store, aggregator, settings=Settings(), clock=lambda: NOW
        ).run()

        assert report.runs_folded == 1
        bucket = await store.get_bucket(key)
        assert bucket.run_count == 1
        assert await store.load_runs_between("cfg", "sys") == []


class TestHourlyRollup:
    """Tests for rolling hourly buckets into daily ones."""

    @pytest.mark.asyncio
    async def test_rollup(self, registry: HealthCheckRegistry, store: InMemoryStore) -> None:
        """Test hourly buckets past the horizon merge into one daily bucket."""
        await _seed(store)
        aggregator = BucketAggregator(store, registry)
        day = datetime(2024, 2, 10, tzinfo=timezone.utc)
        for hour, latency in ((5, 10.0), (6, 30.0)):
            bucket = aggregator.apply_run(None, _run(day + timedelta(hours=hour), latency=latency), None)
            await store.upsert_bucket(bucket)

        report = await _job(store, registry).run()

        assert report.hourly_rolled_up == 2
        assert report.daily_written == 1
        assert await store.list_buckets("cfg", "sys", BucketSize.HOURLY, end=day + timedelta(days=1)) == []

        daily = await store.get_bucket(("cfg", "sys", day, BucketSize.DAILY))
        assert daily is not None
        assert daily.run_count == 2
        assert daily.avg_latency_ms == pytest.approx(20.0)
        assert daily.p95_latency_ms == 30.0

    @pytest.mark.asyncio
    async def test_rollup_merges_existing_daily(
        self, registry: HealthCheckRegistry, store: InMemoryStore
    ) -> None:
        """Test late hourly buckets merge into an existing daily bucket."""
        await _seed(store)
        aggregator = BucketAggregator(store, registry)
        day = datetime(2024, 2, 10, tzinfo=timezone.utc)
        await store.upsert_bucket(
            AggregatedBucket(
                configuration_id="cfg",
                system_id="sys",
                bucket_start=day,
                bucket_size=BucketSize.DAILY,
                run_count=4,
                healthy_count=4,
            )
        )
        await store.upsert_bucket(aggregator.apply_run(None, _run(day + timedelta(hours=23)), None))

        await _job(store, registry).run()

        daily = await store.get_bucket(("cfg", "sys", day, BucketSize.DAILY))
        assert daily.run_count == 5
        assert daily.healthy_count == 5


class TestDailyExpiry:
    """Tests for deleting expired daily buckets."""

    @pytest.mark.asyncio
    async def test_expired_daily_deleted(self, registry: HealthCheckRegistry, store: InMemoryStore) -> None:
        """Test daily buckets past the daily horizon are removed."""
        await _seed(store)
        expired = datetime(2023, 1, 1, tzinfo=timezone.utc)
        kept = datetime(2023, 6, 1, tzinfo=timezone.utc)
        for start in (expired, kept):
            await store.upsert_bucket(
                AggregatedBucket(
                    configuration_id="cfg",
                    system_id="sys",
                    bucket_start=start,
                    bucket_size=BucketSize.DAILY,
                    run_count=1,
                )
            )

        report = await _job(store, registry).run()

        assert report.daily_deleted == 1
        remaining = await store.list_buckets("cfg", "sys", BucketSize.DAILY)
        assert [b.bucket_start for b in remaining] == [kept]

    @pytest.mark.asyncio
    async def test_custom_retention(self, registry: HealthCheckRegistry, store: InMemoryStore) -> None:
        """Test per-association retention overrides the defaults."""
        await _seed(
            store,
            RetentionConfig(raw_retention_days=1, hourly_retention_days=7, daily_retention_days=30),
        )
        await store.save_run(_run(NOW - timedelta(days=3)))
        await store.upsert_bucket(
            AggregatedBucket(
                configuration_id="cfg",
                system_id="sys",
                bucket_start=datetime(2024, 1, 1, tzinfo=timezone.utc),
                bucket_size=BucketSize.DAILY,
            )
        )

        report = await _job(store, registry).run()

        assert report.runs_folded == 1
        assert report.daily_deleted == 1


class TestIdempotency:
    """Tests for re-running retention."""

    @pytest.mark.asyncio
    async def test_second_pass_is_noop(self, registry: HealthCheckRegistry, store: InMemoryStore) -> None:
        """Test running twice leaves the same state as running once."""
        await _seed(store)
        aggregator = BucketAggregator(store, registry)
        await store.save_run(_run(datetime(2024, 3, 10, 9, 15, tzinfo=timezone.utc)))
        await store.upsert_bucket(
            aggregator.apply_run(None, _run(datetime(2024, 2, 10, 5, tzinfo=timezone.utc)), None)
        )

        job = _job(store, registry)
        await job.run()
        hourly = await store.list_buckets("cfg", "sys", BucketSize.HOURLY)
        daily = await store.list_buckets("cfg", "sys", BucketSize.DAILY)

        report = await job.run()

        assert report.runs_folded == 0
        assert report.runs_deleted == 0
        assert report.daily_written == 0
        assert [b.run_count for b in await store.list_buckets("cfg", "sys", BucketSize.HOURLY)] == [
            b.run_count for b in hourly
        ]
        assert [b.run_count for b in await store.list_buckets("cfg", "sys", BucketSize.DAILY)] == [
            b.run_count for b in daily
        ]
