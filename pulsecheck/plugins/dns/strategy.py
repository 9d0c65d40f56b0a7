"""
DNS Health Check Strategy

Resolves DNS records through dnspython. The strategy owns the resolver
configuration (nameserver, timeout); record lookups are performed by the
lookup collector.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

import dns.asyncresolver
import dns.exception
import dns.rdatatype
import structlog
from pydantic import BaseModel, Field

from pulsecheck.aggregation import merge_average, merge_counter
from pulsecheck.aggregation.fields import (
    VersionedAggregated,
    aggregated_average,
    aggregated_counter,
)
from pulsecheck.engine.base import (
    BaseStrategyConfig,
    CollectorOutput,
    ConnectedClient,
    HealthCheckStrategy,
    RunForAggregation,
    TransportClient,
    run_with_timeout,
)
from pulsecheck.errors import ProbeTimeoutError
from pulsecheck.versioning import Migration, Versioned, result_field

logger = structlog.get_logger(__name__)

RecordType = Literal["A", "AAAA", "CNAME", "MX", "TXT", "NS"]


class DNSConfig(BaseStrategyConfig):
    """Resolver configuration."""

    nameserver: str | None = Field(default=None, description="Custom nameserver (optional)")


def _drop_lookup_fields(data: dict[str, Any]) -> dict[str, Any]:
    return {"nameserver": data.get("nameserver"), "timeout": data.get("timeout", 30000)}


class DNSResult(BaseModel):
    """Strategy-level run metadata."""

    resolved_values: list[str] = result_field(
        default_factory=list, label="Resolved Values", chart="text"
    )
    record_count: int = result_field(0, label="Record Count", chart="counter")
    resolution_time_ms: float = result_field(
        0.0, label="Resolution Time", chart="line", unit="ms"
    )
    error: str | None = result_field(None, label="Error", chart="status")


class Resolver(Protocol):
    """The subset of ``dns.asyncresolver.Resolver`` the client relies on."""

    nameservers: Any

    async def resolve(self, qname: str, rdtype: Any) -> Any: ...


ResolverFactory = Callable[[], Resolver]


def default_resolver_factory() -> Resolver:
    return dns.asyncresolver.Resolver()


@dataclass
class DNSLookupRequest:
    hostname: str
    record_type: RecordType = "A"
    nameserver: str | None = None


@dataclass
class DNSLookupResponse:
    values: list[str] = field(default_factory=list)
    error: str | None = None
    timed_out: bool = False


def format_rdata(record_type: str, rdata: Any) -> str:
    """Render one answer record as text."""
    if record_type in ("A", "AAAA"):
        return str(rdata.address)
    if record_type in ("CNAME", "NS"):
        return str(rdata.target).rstrip(".")
    if record_type == "MX":
        return f"{rdata.preference} {str(rdata.exchange).rstrip('.')}"
    if record_type == "TXT":
        return b"".join(rdata.strings).decode("utf-8", errors="replace")
    return str(rdata)


class DNSTransportClient(TransportClient[DNSLookupRequest, DNSLookupResponse]):
    """Executes lookups against a configured resolver."""

    def __init__(
        self,
        resolver_factory: ResolverFactory,
        timeout_ms: int,
        nameserver: str | None = None,
    ) -> None:
        self._factory = resolver_factory
        self._timeout_ms = timeout_ms
        self._resolver = self._make_resolver(nameserver)

    def _make_resolver(self, nameserver: str | None) -> Resolver:
        resolver = self._factory()
        if nameserver:
            resolver.nameservers = [nameserver]
        if hasattr(resolver, "lifetime"):
            resolver.lifetime = self._timeout_ms / 1000
        return resolver

    async def _resolve(self, resolver: Resolver, request: DNSLookupRequest) -> list[str]:
        answers = await resolver.resolve(
            request.hostname, dns.rdatatype.from_text(request.record_type)
        )
        return [format_rdata(request.record_type, rdata) for rdata in answers]

    async def exec(self, request: DNSLookupRequest) -> DNSLookupResponse:
        resolver = (
            self._make_resolver(request.nameserver) if request.nameserver else self._resolver
        )
        try:
            values = await run_with_timeout(
                self._resolve(resolver, request), self._timeout_ms, "DNS resolution"
            )
            return DNSLookupResponse(values=values)
        except ProbeTimeoutError as e:
            return DNSLookupResponse(error=str(e), timed_out=True)
        except dns.exception.DNSException as e:
            logger.debug(
                "DNS lookup failed",
                hostname=request.hostname,
                record_type=request.record_type,
                error=str(e),
            )
            return DNSLookupResponse(error=f"{type(e).__name__}: {e}")


class DNSHealthCheckStrategy(HealthCheckStrategy):
    """DNS record resolution with response validation."""

    id = "dns"
    display_name = "DNS Health Check"
    description = "DNS record resolution with response validation"

    config = Versioned(
        version=2,
        schema=DNSConfig,
        migrations=[
            Migration(
                from_version=1,
                to_version=2,
                description="Remove hostname/record_type (moved to lookup collector)",
                migrate=_drop_lookup_fields,
            )
        ],
    )
    result = Versioned(
        version=2,
        schema=DNSResult,
        migrations=[
            Migration(1, 2, "Collector based client (no result changes)", lambda data: data)
        ],
    )
    aggregated_result = VersionedAggregated(
        version=1,
        name="DNSAggregatedResult",
        fields={
            "avg_resolution_time_ms": aggregated_average("Avg Resolution Time", "ms"),
            "failure_count": aggregated_counter("Failures"),
            "error_count": aggregated_counter("Errors"),
        },
    )

    def __init__(self, resolver_factory: ResolverFactory = default_resolver_factory) -> None:
        super().__init__()
        self._resolver_factory = resolver_factory

    async def create_client(self, config: DNSConfig) -> ConnectedClient[DNSTransportClient]:
        client = DNSTransportClient(self._resolver_factory, config.timeout, config.nameserver)
        # Resolvers hold no connections
        return ConnectedClient(client, close=None)

    def build_result(self, outputs: list[CollectorOutput]) -> dict[str, Any]:
        values: list[str] = []
        resolution_time = 0.0
        for output in outputs:
            values.extend(output.result.get("values", []))
            resolution_time = max(resolution_time, output.result.get("resolution_time_ms", 0.0))
        result = DNSResult(
            resolved_values=values,
            record_count=len(values),
            resolution_time_ms=resolution_time,
            error=super().build_result(outputs).get("error"),
        )
        return result.model_dump(mode="json", exclude_none=True)

    def merge_result(
        self, existing: dict[str, Any] | None, run: RunForAggregation
    ) -> dict[str, Any]:
        state = self.aggregated_result.load(existing)
        metadata = run.metadata
        merged = self.aggregated_result.schema(
            avg_resolution_time_ms=merge_average(
                state.avg_resolution_time_ms, metadata.get("resolution_time_ms")
            ),
            failure_count=merge_counter(state.failure_count, metadata.get("record_count") == 0),
            error_count=merge_counter(state.error_count, metadata.get("error") is not None),
        )
        return self.aggregated_result.dump(merged)

