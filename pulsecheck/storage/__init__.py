"""Persistence for configurations, runs and aggregated buckets."""

from pulsecheck.storage.base import BucketKey, HealthCheckStore
from pulsecheck.storage.memory import InMemoryStore

__all__ = ["BucketKey", "HealthCheckStore", "InMemoryStore"]
