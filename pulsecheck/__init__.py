"""pulsecheck - health-check execution and time-series aggregation engine."""

__version__ = "0.1.0"
