"""
State Evaluator

Turns a run history into a health verdict using one of two threshold
policies:

- consecutive: look at the streak of identical outcomes at the head of the
  history. Good for stable systems.
- window: count failures among the last N runs. Good for flickering systems
  where failures are intermittent.

Degraded and unhealthy runs both count as failures.
"""

from collections.abc import Iterable, Sequence
from typing import Protocol

from pydantic import RootModel

from pulsecheck.models import (
    DEFAULT_STATE_THRESHOLDS,
    ConsecutiveThresholds,
    HealthStatus,
    StateThresholds,
    WindowThresholds,
)
from pulsecheck.versioning import Versioned


class ThresholdSettings(RootModel[StateThresholds]):
    """Stored form of an association's state thresholds."""

    pass


STATE_THRESHOLDS = Versioned(version=1, schema=ThresholdSettings)


class RunLike(Protocol):
    status: HealthStatus


def evaluate_health_status(
    runs: Sequence[RunLike],
    thresholds: ConsecutiveThresholds | WindowThresholds | None = None,
    previous: HealthStatus | None = None,
) -> HealthStatus | None:
    """
    Evaluate a verdict from recent runs.

    Args:
        runs: Recent runs, newest first
        thresholds: Threshold policy (defaults to consecutive)
        previous: Last verdict, kept in consecutive mode while no threshold
            is crossed

    Returns:
        The verdict, or None when there are no runs
    """
    if not runs:
        return None

    thresholds = thresholds or DEFAULT_STATE_THRESHOLDS
    if isinstance(thresholds, WindowThresholds):
        return _evaluate_window(runs, thresholds)
    return _evaluate_consecutive(runs, thresholds, previous)


def _evaluate_consecutive(
    runs: Sequence[RunLike],
    thresholds: ConsecutiveThresholds,
    previous: HealthStatus | None,
) -> HealthStatus:
    failures = 0
    successes = 0
    for run in runs:
        if run.status == HealthStatus.HEALTHY:
            if failures:
                break
            successes += 1
        else:
            if successes:
                break
            failures += 1

    # Most severe first
    if failures >= thresholds.unhealthy.min_failure_count:
        return HealthStatus.UNHEALTHY
    if failures >= thresholds.degraded.min_failure_count:
        return HealthStatus.DEGRADED
    if successes >= thresholds.healthy.min_success_count:
        return HealthStatus.HEALTHY

    # Not enough evidence to move
    if previous is not None:
        return previous
    return runs[0].status


def _evaluate_window(runs: Sequence[RunLike], thresholds: WindowThresholds) -> HealthStatus:
    window = runs[: thresholds.window_size]
    failures = sum(1 for run in window if run.status != HealthStatus.HEALTHY)

    if failures >= thresholds.unhealthy.min_failure_count:
        return HealthStatus.UNHEALTHY
    if failures >= thresholds.degraded.min_failure_count:
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


def required_history(thresholds: ConsecutiveThresholds | WindowThresholds | None, cap: int = 100) -> int:
    """Number of recent runs needed to evaluate ``thresholds``."""
    thresholds = thresholds or DEFAULT_STATE_THRESHOLDS
    if isinstance(thresholds, WindowThresholds):
        needed = thresholds.window_size
    else:
        needed = max(
            thresholds.healthy.min_success_count,
            thresholds.degraded.min_failure_count,
            thresholds.unhealthy.min_failure_count,
        )
    return min(needed, cap)


def worst_status(statuses: Iterable[HealthStatus | None]) -> HealthStatus | None:
    """The most severe verdict, ignoring checks without one."""
    known = [s for s in statuses if s is not None]
    if not known:
        return None
    return max(known, key=lambda s: s.severity)
