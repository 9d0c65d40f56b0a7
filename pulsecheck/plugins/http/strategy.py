"""
HTTP Health Check Strategy

Performs HTTP requests with httpx. One ``AsyncClient`` is opened per run
and shared by every request collector of the configuration.
"""

from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, Field

from pulsecheck.aggregation import merge_average, merge_counter, merge_rate
from pulsecheck.aggregation.fields import (
    VersionedAggregated,
    aggregated_average,
    aggregated_counter,
    aggregated_rate,
)
from pulsecheck.engine.base import (
    BaseStrategyConfig,
    CollectorOutput,
    ConnectedClient,
    HealthCheckStrategy,
    RunForAggregation,
    TransportClient,
)
from pulsecheck.versioning import Versioned, result_field

logger = structlog.get_logger(__name__)


class HTTPConfig(BaseStrategyConfig):
    follow_redirects: bool = Field(default=True, description="Follow 3xx redirects")
    verify_tls: bool = Field(default=True, description="Verify TLS certificates")


class HTTPResult(BaseModel):
    """Strategy-level run metadata."""

    status_code: int | None = result_field(None, label="Status Code", chart="counter")
    response_time_ms: float = result_field(0.0, label="Response Time", chart="line", unit="ms")
    success: bool = result_field(False, label="Success", chart="boolean")
    error: str | None = result_field(None, label="Error", chart="status")


@dataclass
class HTTPRequest:
    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    body: str | None = None
    timeout: int = 30000


@dataclass
class HTTPResponse:
    status_code: int | None = None
    status_text: str = ""
    body: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    timed_out: bool = False
    error: str | None = None


class HTTPTransportClient(TransportClient[HTTPRequest, HTTPResponse]):
    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def exec(self, request: HTTPRequest) -> HTTPResponse:
        try:
            response = await self._client.request(
                request.method,
                request.url,
                headers=request.headers,
                content=request.body,
                timeout=request.timeout / 1000,
            )
        except httpx.TimeoutException as e:
            return HTTPResponse(timed_out=True, error=f"Request timed out after {request.timeout}ms: {e}")
        except httpx.HTTPError as e:
            logger.debug("HTTP request failed", url=request.url, error=str(e))
            return HTTPResponse(error=f"{type(e).__name__}: {e}")

        return HTTPResponse(
            status_code=response.status_code,
            status_text=response.reason_phrase,
            body=response.text,
            headers=dict(response.headers),
        )


class HTTPHealthCheckStrategy(HealthCheckStrategy):
    """Performs HTTP requests to check endpoint health."""

    id = "http"
    display_name = "HTTP Health Check"
    description = "Performs HTTP requests to check endpoint health"

    config = Versioned(version=1, schema=HTTPConfig)
    result = Versioned(version=1, schema=HTTPResult)
    aggregated_result = VersionedAggregated(
        version=1,
        name="HTTPAggregatedResult",
        fields={
            "avg_response_time_ms": aggregated_average("Avg Response Time", "ms"),
            "success_rate": aggregated_rate("Success Rate"),
            "error_count": aggregated_counter("Errors"),
        },
    )

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        super().__init__()
        self._transport = transport

    async def create_client(self, config: HTTPConfig) -> ConnectedClient[HTTPTransportClient]:
        client = httpx.AsyncClient(
            timeout=config.timeout / 1000,
            follow_redirects=config.follow_redirects,
            verify=config.verify_tls,
            transport=self._transport,
        )
        return ConnectedClient(HTTPTransportClient(client), close=client.aclose)

    def build_result(self, outputs: list[CollectorOutput]) -> dict[str, Any]:
        status_codes = [o.result.get("status_code") for o in outputs if o.result.get("status_code")]
        result = HTTPResult(
            status_code=status_codes[0] if status_codes else None,
            response_time_ms=max((o.result.get("response_time_ms", 0.0) for o in outputs), default=0.0),
            success=bool(outputs) and all(o.result.get("success") for o in outputs),
            error=super().build_result(outputs).get("error"),
        )
        return result.model_dump(mode="json", exclude_none=True)

    def merge_result(
        self, existing: dict[str, Any] | None, run: RunForAggregation
    ) -> dict[str, Any]:
        state = self.aggregated_result.load(existing)
        metadata = run.metadata
        merged = self.aggregated_result.schema(
            avg_response_time_ms=merge_average(
                state.avg_response_time_ms, metadata.get("response_time_ms")
            ),
            success_rate=merge_rate(state.success_rate, bool(metadata.get("success", False))),
            error_count=merge_counter(state.error_count, metadata.get("error") is not None),
        )
        return self.aggregated_result.dump(merged)
