"""HTTP request collector."""

import time
from typing import Any, Literal

from pydantic import BaseModel, Field

from pulsecheck.aggregation import merge_average, merge_rate
from pulsecheck.aggregation.fields import VersionedAggregated, aggregated_average, aggregated_rate
from pulsecheck.engine.base import CollectorResult, CollectorStrategy, RunForAggregation, elapsed_ms
from pulsecheck.plugins.http.strategy import HTTPRequest, HTTPTransportClient
from pulsecheck.versioning import Versioned, result_field


class Header(BaseModel):
    name: str = Field(..., min_length=1)
    value: str


class RequestConfig(BaseModel):
    url: str = Field(..., min_length=1, description="The full URL of the endpoint to check")
    method: Literal["GET", "POST", "PUT", "DELETE", "HEAD"] = Field(default="GET")
    headers: list[Header] = Field(default_factory=list)
    body: str | None = Field(default=None, description="Request payload")
    timeout: int = Field(default=30000, ge=100, description="Timeout in milliseconds")


class RequestResult(BaseModel):
    status_code: int | None = result_field(None, label="Status Code", chart="counter")
    status_text: str = result_field("", label="Status", chart="text")
    response_time_ms: float = result_field(0.0, label="Response Time", chart="line", unit="ms")
    body: str | None = result_field(None, label="Response Body", ephemeral=True)
    body_length: int = result_field(0, label="Body Length", chart="counter", unit="bytes")
    success: bool = result_field(False, label="Success", chart="boolean")
    timed_out: bool = result_field(False, label="Timed Out", chart="boolean")


class RequestCollector(CollectorStrategy):
    """
    Sends one HTTP request.

    The response body is available to assertions (``field="body"`` with a
    JSON path) but is not persisted with the run.
    """

    plugin_id = "http"
    id = "request"
    display_name = "HTTP Request"
    description = "Send an HTTP request and check the response"
    allow_multiple = True

    config = Versioned(version=1, schema=RequestConfig)
    result = Versioned(version=1, schema=RequestResult)
    aggregated_result = VersionedAggregated(
        version=1,
        name="RequestAggregatedResult",
        fields={
            "avg_response_time_ms": aggregated_average("Avg Response Time", "ms"),
            "success_rate": aggregated_rate("Success Rate"),
        },
    )

    async def execute(
        self, config: RequestConfig, client: HTTPTransportClient, strategy_id: str
    ) -> CollectorResult:
        start = time.perf_counter()
        response = await client.exec(
            HTTPRequest(
                url=config.url,
                method=config.method,
                headers={h.name: h.value for h in config.headers},
                body=config.body,
                timeout=config.timeout,
            )
        )
        status = response.status_code
        success = status is not None and 200 <= status < 300
        result = RequestResult(
            status_code=status,
            status_text=response.status_text,
            response_time_ms=elapsed_ms(start),
            body=response.body if status is not None else None,
            body_length=len(response.body.encode("utf-8")),
            success=success,
            timed_out=response.timed_out,
        )

        error = response.error
        if error is None and not success:
            error = f"HTTP {status} {response.status_text}".strip()
        return CollectorResult(result=result.model_dump(mode="json"), error=error)

    def merge_result(
        self, existing: dict[str, Any] | None, run: RunForAggregation
    ) -> dict[str, Any]:
        state = self.aggregated_result.load(existing)
        metadata = run.metadata
        merged = self.aggregated_result.schema(
            avg_response_time_ms=merge_average(
                state.avg_response_time_ms, metadata.get("response_time_ms")
            ),
            success_rate=merge_rate(state.success_rate, metadata.get("success")),
        )
        return self.aggregated_result.dump(merged)
