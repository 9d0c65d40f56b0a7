"""DNS health check plugin."""

from pulsecheck.plugins.dns.lookup import LookupCollector, LookupConfig, LookupResult
from pulsecheck.plugins.dns.strategy import (
    DNSConfig,
    DNSHealthCheckStrategy,
    DNSLookupRequest,
    DNSLookupResponse,
    DNSTransportClient,
)

__all__ = [
    "DNSConfig",
    "DNSHealthCheckStrategy",
    "DNSLookupRequest",
    "DNSLookupResponse",
    "DNSTransportClient",
    "LookupCollector",
    "LookupConfig",
    "LookupResult",
]
