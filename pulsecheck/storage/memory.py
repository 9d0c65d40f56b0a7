"""
In-Memory Store

Keeps runs and buckets in memory. Configurations and associations can
optionally be persisted to a JSON file.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path

import structlog

from pulsecheck.models import (
    AggregatedBucket,
    BucketSize,
    HealthCheckConfiguration,
    HealthCheckRun,
    SystemAssociation,
)
from pulsecheck.storage.base import BucketKey, HealthCheckStore

logger = structlog.get_logger(__name__)


class InMemoryStore(HealthCheckStore):
    """
    Stores configurations, associations, runs and buckets.

    Provides in-memory storage with optional file-based persistence of
    configurations and associations.
    """

    def __init__(self, persist_path: Path | str | None = None) -> None:
        """
        Initialize the store.

        Args:
            persist_path: Path to persist configurations (None for memory-only)
        """
        self._persist_path = Path(persist_path) if persist_path else None

        self._configurations: dict[str, HealthCheckConfiguration] = {}
        self._associations: dict[tuple[str, str], SystemAssociation] = {}
        self._runs: dict[tuple[str, str], list[HealthCheckRun]] = {}  # (config, system) -> runs
        self._buckets: dict[BucketKey, AggregatedBucket] = {}
        self._lock = asyncio.Lock()

        if self._persist_path and self._persist_path.exists():
            self._load_from_file()

    def _load_from_file(self) -> None:
        """Load configurations and associations from the persistence file."""
        if not self._persist_path:
            return

        try:
            with open(self._persist_path, "r") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Failed to load store from file", path=str(self._persist_path), error=str(e))
            return

        for item in data.get("configurations", []):
            configuration = HealthCheckConfiguration.model_validate(item)
            self._configurations[configuration.id] = configuration
        for item in data.get("associations", []):
            association = SystemAssociation.model_validate(item)
            self._associations[association.key] = association

        logger.info(
            "Loaded store from file",
            configurations=len(self._configurations),
            associations=len(self._associations),
        )

    def _save_to_file(self) -> None:
        """Save configurations and associations to the persistence file."""
        if not self._persist_path:
            return

        try:
            self._persist_path.parent.mkdir(parents=True, exist_ok=True)
            data = {
                "configurations": [
                    c.model_dump(mode="json") for c in self._configurations.values()
                ],
                "associations": [a.model_dump(mode="json") for a in self._associations.values()],
                "saved_at": datetime.now(timezone.utc).isoformat(),
            }
            with open(self._persist_path, "w") as f:
                json.dump(data, f, indent=2, default=str)
        except OSError as e:
            logger.error("Failed to save store to file", path=str(self._persist_path), error=str(e))

    # Configuration operations

    async def save_configuration(self, configuration: HealthCheckConfiguration) -> None:
        async with self._lock:
            self._configurations[configuration.id] = configuration
            self._save_to_file()

    async def get_configuration(self, configuration_id: str) -> HealthCheckConfiguration | None:
        return self._configurations.get(configuration_id)

    async def list_configurations(self) -> list[HealthCheckConfiguration]:
        return sorted(self._configurations.values(), key=lambda c: c.created_at)

    async def delete_configuration(self, configuration_id: str) -> bool:
        """Delete a configuration with its associations, runs and buckets."""
        async with self._lock:
            if configuration_id not in self._configurations:
                return False
            del self._configurations[configuration_id]
            self._associations = {
                k: v for k, v in self._associations.items() if v.configuration_id != configuration_id
            }
            self._runs = {k: v for k, v in self._runs.items() if k[0] != configuration_id}
            self._buckets = {k: v for k, v in self._buckets.items() if k[0] != configuration_id}
            self._save_to_file()
            return True

    # Association operations

    async def save_association(self, association: SystemAssociation) -> None:
        async with self._lock:
            self._associations[association.key] = association
            self._save_to_file()

    async def get_association(
        self, system_id: str, configuration_id: str
    ) -> SystemAssociation | None:
        return self._associations.get((system_id, configuration_id))

    async def list_associations(
        self, system_id: str | None = None, enabled_only: bool = False
    ) -> list[SystemAssociation]:
        associations = list(self._associations.values())
        if system_id:
            associations = [a for a in associations if a.system_id == system_id]
        if enabled_only:
            associations = [a for a in associations if a.enabled]
        return associations

    # Run operations

    async def save_run(self, run: HealthCheckRun) -> None:
        async with self._lock:
            runs = self._runs.setdefault((run.configuration_id, run.system_id), [])
            runs.append(run)
            runs.sort(key=lambda r: r.timestamp)

    async def load_recent_runs(
        self, configuration_id: str, system_id: str, limit: int
    ) -> list[HealthCheckRun]:
        runs = self._runs.get((configuration_id, system_id), [])
        return list(reversed(runs[-limit:])) if limit > 0 else []

    async def load_runs_between(
        self,
        configuration_id: str,
        system_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[HealthCheckRun]:
        return [
            r
            for r in self._runs.get((configuration_id, system_id), [])
            if (start is None or r.timestamp >= start) and (end is None or r.timestamp < end)
        ]

    async def delete_runs(self, run_ids: Iterable[str]) -> int:
        ids = set(run_ids)
        removed = 0
        async with self._lock:
            for pair, runs in self._runs.items():
                kept = [r for r in runs if r.id not in ids]
                removed += len(runs) - len(kept)
                self._runs[pair] = kept
        return removed

    async def delete_runs_before(
        self, configuration_id: str, system_id: str, cutoff: datetime
    ) -> int:
        async with self._lock:
            runs = self._runs.get((configuration_id, system_id), [])
            kept = [r for r in runs if r.timestamp >= cutoff]
            self._runs[(configuration_id, system_id)] = kept
            return len(runs) - len(kept)

    # Bucket operations

    async def get_bucket(self, key: BucketKey) -> AggregatedBucket | None:
        return self._buckets.get(key)

    async def upsert_bucket(self, bucket: AggregatedBucket) -> None:
        async with self._lock:
            self._buckets[bucket.key] = bucket

    async def list_buckets(
        self,
        configuration_id: str,
        system_id: str,
        bucket_size: BucketSize,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[AggregatedBucket]:
        buckets = [
            b
            for (cfg, sys, bucket_start, size), b in self._buckets.items()
            if cfg == configuration_id
            and sys == system_id
            and size == bucket_size
            and (start is None or bucket_start >= start)
            and (end is None or bucket_start < end)
        ]
        return sorted(buckets, key=lambda b: b.bucket_start)

    async def delete_buckets_before(
        self,
        configuration_id: str,
        system_id: str,
        bucket_size: BucketSize,
        cutoff: datetime,
    ) -> int:
        async with self._lock:
            expired = [
                key
                for key in self._buckets
                if key[0] == configuration_id
                and key[1] == system_id
                and key[3] == bucket_size
                and key[2] < cutoff
            ]
            for key in expired:
                del self._buckets[key]
            return len(expired)

    async def commit_rollup(
        self,
        bucket: AggregatedBucket,
        run_ids: Iterable[str] = (),
        bucket_keys: Iterable[BucketKey] = (),
    ) -> None:
        ids = set(run_ids)
        keys = set(bucket_keys)
        async with self._lock:
            self._buckets[bucket.key] = bucket
            for key in keys:
                if key != bucket.key:
                    self._buckets.pop(key, None)
            if ids:
                for pair, runs in self._runs.items():
                    self._runs[pair] = [r for r in runs if r.id not in ids]

    async def commit_fold(self, bucket: AggregatedBucket, run_ids: Iterable[str]) -> None:
        ids = set(run_ids)
        async with self._lock:
            self._buckets[bucket.key] = bucket
            for pair, runs in self._runs.items():
                self._runs[pair] = [
                    r.model_copy(update={"aggregated": True}) if r.id in ids else r for r in runs
                ]
