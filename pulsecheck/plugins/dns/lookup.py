"""DNS lookup collector."""

import time
from typing import Any

from pydantic import BaseModel, Field

from pulsecheck.aggregation import merge_average, merge_rate
from pulsecheck.aggregation.fields import VersionedAggregated, aggregated_average, aggregated_rate
from pulsecheck.engine.base import CollectorResult, CollectorStrategy, RunForAggregation, elapsed_ms
from pulsecheck.plugins.dns.strategy import DNSLookupRequest, DNSTransportClient, RecordType
from pulsecheck.versioning import Versioned, result_field


class LookupConfig(BaseModel):
    hostname: str = Field(..., min_length=1, description="Hostname to resolve")
    record_type: RecordType = Field(default="A", description="DNS record type")
    nameserver: str | None = Field(default=None, description="Custom nameserver (optional)")


class LookupResult(BaseModel):
    values: list[str] = result_field(default_factory=list, label="Resolved Values", chart="text")
    record_count: int = result_field(0, label="Record Count", chart="counter")
    resolution_time_ms: float = result_field(0.0, label="Resolution Time", chart="line", unit="ms")
    timed_out: bool = result_field(False, label="Timed Out", chart="boolean")


class LookupCollector(CollectorStrategy):
    """Resolves DNS records and reports what came back."""

    plugin_id = "dns"
    id = "lookup"
    display_name = "DNS Lookup"
    description = "Resolve DNS records and check the results"
    allow_multiple = True

    config = Versioned(version=1, schema=LookupConfig)
    result = Versioned(version=1, schema=LookupResult)
    aggregated_result = VersionedAggregated(
        version=1,
        name="LookupAggregatedResult",
        fields={
            "avg_resolution_time_ms": aggregated_average("Avg Resolution Time", "ms"),
            "success_rate": aggregated_rate("Success Rate"),
        },
    )

    async def execute(
        self, config: LookupConfig, client: DNSTransportClient, strategy_id: str
    ) -> CollectorResult:
        start = time.perf_counter()
        response = await client.exec(
            DNSLookupRequest(
                hostname=config.hostname,
                record_type=config.record_type,
                nameserver=config.nameserver,
            )
        )
        result = LookupResult(
            values=response.values,
            record_count=len(response.values),
            resolution_time_ms=elapsed_ms(start),
            timed_out=response.timed_out,
        )
        return CollectorResult(result=result.model_dump(mode="json"), error=response.error)

    def merge_result(
        self, existing: dict[str, Any] | None, run: RunForAggregation
    ) -> dict[str, Any]:
        state = self.aggregated_result.load(existing)
        metadata = run.metadata
        merged = self.aggregated_result.schema(
            avg_resolution_time_ms=merge_average(
                state.avg_resolution_time_ms, metadata.get("resolution_time_ms")
            ),
            success_rate=merge_rate(state.success_rate, (metadata.get("record_count") or 0) > 0),
        )
        return self.aggregated_result.dump(merged)
