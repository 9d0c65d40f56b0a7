"""Streaming aggregation of health check runs into time buckets."""

from pulsecheck.aggregation.incremental import (
    AverageState,
    CounterState,
    MinMaxState,
    RateState,
    merge_average,
    merge_average_states,
    merge_counter,
    merge_counter_states,
    merge_min_max,
    merge_min_max_states,
    merge_rate,
    merge_rate_states,
)

__all__ = [
    "AverageState",
    "CounterState",
    "MinMaxState",
    "RateState",
    "merge_average",
    "merge_average_states",
    "merge_counter",
    "merge_counter_states",
    "merge_min_max",
    "merge_min_max_states",
    "merge_rate",
    "merge_rate_states",
]
