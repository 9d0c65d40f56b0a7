"""
Aggregated Result Fields

Declarations for the fields of an aggregated result. Each field knows the
state type it stores and how to merge two of those states, so buckets can be
combined during rollup without going back to the raw runs.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, create_model

from pulsecheck.aggregation.incremental import (
    AverageState,
    CounterState,
    MinMaxState,
    RateState,
    merge_average_states,
    merge_counter_states,
    merge_min_max_states,
    merge_rate_states,
)
from pulsecheck.versioning import Migration, Versioned


class AggregationKind(str, Enum):
    """Merge primitive backing an aggregated field."""

    AVERAGE = "average"
    RATE = "rate"
    COUNTER = "counter"
    MIN_MAX = "min_max"


_STATE_TYPES: dict[AggregationKind, type[BaseModel]] = {
    AggregationKind.AVERAGE: AverageState,
    AggregationKind.RATE: RateState,
    AggregationKind.COUNTER: CounterState,
    AggregationKind.MIN_MAX: MinMaxState,
}

_STATE_MERGES: dict[AggregationKind, Callable[[Any, Any], BaseModel]] = {
    AggregationKind.AVERAGE: merge_average_states,
    AggregationKind.RATE: merge_rate_states,
    AggregationKind.COUNTER: merge_counter_states,
    AggregationKind.MIN_MAX: merge_min_max_states,
}

_DEFAULT_CHARTS: dict[AggregationKind, str] = {
    AggregationKind.AVERAGE: "line",
    AggregationKind.RATE: "gauge",
    AggregationKind.COUNTER: "counter",
    AggregationKind.MIN_MAX: "range",
}


@dataclass(frozen=True)
class AggregatedField:
    """A single aggregated field declaration."""

    kind: AggregationKind
    label: str
    unit: str | None = None
    chart: str | None = None

    @property
    def state_type(self) -> type[BaseModel]:
        return _STATE_TYPES[self.kind]

    def merge(self, a: BaseModel | None, b: BaseModel | None) -> BaseModel:
        return _STATE_MERGES[self.kind](a, b)

    def json_schema_extra(self) -> dict[str, Any]:
        extra = {
            "x-chart-type": self.chart or _DEFAULT_CHARTS[self.kind],
            "x-chart-label": self.label,
            "x-aggregation": self.kind.value,
        }
        if self.unit:
            extra["x-chart-unit"] = self.unit
        return extra


def aggregated_average(label: str, unit: str | None = None) -> AggregatedField:
    return AggregatedField(AggregationKind.AVERAGE, label, unit)


def aggregated_rate(label: str, unit: str | None = "%") -> AggregatedField:
    return AggregatedField(AggregationKind.RATE, label, unit)


def aggregated_counter(label: str, unit: str | None = None) -> AggregatedField:
    return AggregatedField(AggregationKind.COUNTER, label, unit)


def aggregated_min_max(label: str, unit: str | None = None) -> AggregatedField:
    return AggregatedField(AggregationKind.MIN_MAX, label, unit)


class VersionedAggregated(Versioned[BaseModel]):
    """
    Versioned schema for an aggregated result built from field declarations.

    Usage:
        aggregated = VersionedAggregated(
            version=1,
            fields={
                "avg_resolution_time_ms": aggregated_average("Avg Resolution Time", "ms"),
                "success_rate": aggregated_rate("Success Rate"),
            },
        )
        merged = aggregated.merge_states(bucket_a, bucket_b)
    """

    def __init__(
        self,
        version: int,
        fields: dict[str, AggregatedField],
        migrations: Iterable[Migration] = (),
        name: str = "AggregatedResult",
    ) -> None:
        self.fields = fields
        definitions: dict[str, Any] = {
            field_name: (
                field.state_type | None,
                Field(
                    default=None,
                    description=field.label,
                    json_schema_extra=field.json_schema_extra(),
                ),
            )
            for field_name, field in fields.items()
        }
        schema = create_model(name, **definitions)
        super().__init__(version, schema, migrations)

    def load(self, data: dict[str, Any] | None) -> BaseModel:
        """Validate a stored aggregate (None loads an empty one)."""
        return self.validate(data or {})

    def dump(self, model: BaseModel) -> dict[str, Any]:
        return model.model_dump(mode="json", exclude_none=True)

    def merge_states(
        self,
        a: dict[str, Any] | None,
        b: dict[str, Any] | None,
    ) -> dict[str, Any]:
        """
        Merge two aggregated results field by field.

        Args:
            a: First aggregate (may be None)
            b: Second aggregate (may be None)

        Returns:
            Merged aggregate as a plain dict
        """
        left = self.load(a)
        right = self.load(b)
        merged: dict[str, Any] = {}
        for field_name, field in self.fields.items():
            x = getattr(left, field_name)
            y = getattr(right, field_name)
            if x is None and y is None:
                continue
            merged[field_name] = field.merge(x, y).model_dump(mode="json")
        return merged
