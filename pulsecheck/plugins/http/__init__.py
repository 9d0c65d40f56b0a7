"""HTTP health check plugin."""

from pulsecheck.plugins.http.request import RequestCollector, RequestConfig, RequestResult
from pulsecheck.plugins.http.strategy import (
    HTTPConfig,
    HTTPHealthCheckStrategy,
    HTTPRequest,
    HTTPResponse,
    HTTPTransportClient,
)

__all__ = [
    "HTTPConfig",
    "HTTPHealthCheckStrategy",
    "HTTPRequest",
    "HTTPResponse",
    "HTTPTransportClient",
    "RequestCollector",
    "RequestConfig",
    "RequestResult",
]
