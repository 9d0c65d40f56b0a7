"""
Incremental Aggregation

Merge primitives that fold one observation at a time into a small state.
Every merge is O(1) and the states themselves can be merged again when
buckets are combined during rollup.
"""

from pydantic import BaseModel, Field, computed_field


class AverageState(BaseModel):
    """Streaming mean."""

    avg: float = 0.0
    count: int = Field(default=0, ge=0)


class RateState(BaseModel):
    """Success ratio."""

    success_count: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)

    @property
    def percentage(self) -> float:
        """Exact success percentage (0-100)."""
        if self.total == 0:
            return 0.0
        return self.success_count / self.total * 100

    @computed_field  # type: ignore[prop-decorator]
    @property
    def rate(self) -> float:
        """Success percentage rounded for display."""
        return round(self.percentage, 2)


class CounterState(BaseModel):
    """Event counter."""

    count: int = Field(default=0, ge=0)


class MinMaxState(BaseModel):
    """Running minimum and maximum."""

    min: float | None = None
    max: float | None = None


def merge_average(
    existing: AverageState | None,
    value: float | None,
    weight: int = 1,
) -> AverageState:
    """
    Fold a value into a streaming mean.

    Args:
        existing: Current state (None starts a new one)
        value: New observation; None leaves the state unchanged
        weight: Number of observations ``value`` stands for

    Returns:
        The updated state
    """
    state = existing or AverageState()
    if value is None or weight <= 0:
        return state
    count = state.count + weight
    avg = state.avg + (value - state.avg) * weight / count
    return AverageState(avg=avg, count=count)


def merge_average_states(a: AverageState | None, b: AverageState | None) -> AverageState:
    """Combine two means weighted by their counts."""
    if a is None or a.count == 0:
        return b or AverageState()
    if b is None or b.count == 0:
        return a
    return merge_average(a, b.avg, weight=b.count)


def merge_rate(existing: RateState | None, is_success: bool | None) -> RateState:
    """Fold one success/failure outcome into a rate; None is skipped."""
    state = existing or RateState()
    if is_success is None:
        return state
    return RateState(
        success_count=state.success_count + (1 if is_success else 0),
        total=state.total + 1,
    )


def merge_rate_states(a: RateState | None, b: RateState | None) -> RateState:
    a = a or RateState()
    b = b or RateState()
    return RateState(success_count=a.success_count + b.success_count, total=a.total + b.total)


def merge_counter(existing: CounterState | None, is_match: bool | int) -> CounterState:
    """
    Increment a counter.

    Booleans count one per True; integers add themselves.
    """
    state = existing or CounterState()
    if isinstance(is_match, bool):
        return CounterState(count=state.count + (1 if is_match else 0))
    return CounterState(count=state.count + max(0, is_match))


def merge_counter_states(a: CounterState | None, b: CounterState | None) -> CounterState:
    return CounterState(count=(a.count if a else 0) + (b.count if b else 0))


def merge_min_max(existing: MinMaxState | None, value: float | None) -> MinMaxState:
    """Fold a value into a min/max range; None is skipped."""
    state = existing or MinMaxState()
    if value is None:
        return state
    return MinMaxState(
        min=value if state.min is None else min(state.min, value),
        max=value if state.max is None else max(state.max, value),
    )


def merge_min_max_states(a: MinMaxState | None, b: MinMaxState | None) -> MinMaxState:
    state = a or MinMaxState()
    if b is None:
        return state
    return merge_min_max(merge_min_max(state, b.min), b.max)
