"""
Health Check Store

Persistence contract used by the executor, the retention job and the
service. Implementations must make ``commit_fold`` and ``commit_rollup``
atomic: the target bucket is written and its source runs marked (or its
sources removed) together, or not at all.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime

from pulsecheck.models import (
    AggregatedBucket,
    BucketSize,
    HealthCheckConfiguration,
    HealthCheckRun,
    SystemAssociation,
)

BucketKey = tuple[str, str, datetime, BucketSize]


class HealthCheckStore(ABC):
    """Abstract store for health check data."""

    # Configurations

    @abstractmethod
    async def save_configuration(self, configuration: HealthCheckConfiguration) -> None: ...

    @abstractmethod
    async def get_configuration(self, configuration_id: str) -> HealthCheckConfiguration | None: ...

    @abstractmethod
    async def list_configurations(self) -> list[HealthCheckConfiguration]: ...

    @abstractmethod
    async def delete_configuration(self, configuration_id: str) -> bool: ...

    # Associations

    @abstractmethod
    async def save_association(self, association: SystemAssociation) -> None: ...

    @abstractmethod
    async def get_association(
        self, system_id: str, configuration_id: str
    ) -> SystemAssociation | None: ...

    @abstractmethod
    async def list_associations(
        self, system_id: str | None = None, enabled_only: bool = False
    ) -> list[SystemAssociation]: ...

    # Runs

    @abstractmethod
    async def save_run(self, run: HealthCheckRun) -> None: ...

    @abstractmethod
    async def load_recent_runs(
        self, configuration_id: str, system_id: str, limit: int
    ) -> list[HealthCheckRun]:
        """Most recent runs, newest first."""
        ...

    @abstractmethod
    async def load_runs_between(
        self,
        configuration_id: str,
        system_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[HealthCheckRun]:
        """Runs with ``start <= timestamp < end``, oldest first."""
        ...

    @abstractmethod
    async def delete_runs(self, run_ids: Iterable[str]) -> int: ...

    @abstractmethod
    async def delete_runs_before(
        self, configuration_id: str, system_id: str, cutoff: datetime
    ) -> int: ...

    # Buckets

    @abstractmethod
    async def get_bucket(self, key: BucketKey) -> AggregatedBucket | None: ...

    @abstractmethod
    async def upsert_bucket(self, bucket: AggregatedBucket) -> None: ...

    @abstractmethod
    async def list_buckets(
        self,
        configuration_id: str,
        system_id: str,
        bucket_size: BucketSize,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[AggregatedBucket]:
        """Buckets with ``start <= bucket_start < end``, oldest first."""
        ...

    @abstractmethod
    async def delete_buckets_before(
        self,
        configuration_id: str,
        system_id: str,
        bucket_size: BucketSize,
        cutoff: datetime,
    ) -> int: ...

    @abstractmethod
    async def commit_rollup(
        self,
        bucket: AggregatedBucket,
        run_ids: Iterable[str] = (),
        bucket_keys: Iterable[BucketKey] = (),
    ) -> None:
        """Atomically upsert ``bucket`` and delete the given source runs and buckets."""
        ...

    @abstractmethod
    async def commit_fold(self, bucket: AggregatedBucket, run_ids: Iterable[str]) -> None:
        """Atomically upsert ``bucket`` and mark the given runs as aggregated."""
        ...
