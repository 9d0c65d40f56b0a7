"""
Tests for the HTTP health check plugin.
"""

import json
from typing import Any

import httpx
import pytest

from pulsecheck.aggregation.buckets import COLLECTORS_KEY
from pulsecheck.assertions import Assertion, AssertionOperator
from pulsecheck.engine.base import RunForAggregation
from pulsecheck.engine.executor import HealthCheckExecutor
from pulsecheck.engine.registry import HealthCheckRegistry
from pulsecheck.models import CollectorConfigEntry, HealthCheckConfiguration, HealthStatus
from pulsecheck.plugins.http import (
    HTTPConfig,
    HTTPHealthCheckStrategy,
    HTTPRequest,
    RequestCollector,
    RequestConfig,
)
from pulsecheck.storage.memory import InMemoryStore
from pulsecheck.versioning import VersionedRecord

HEALTH_URL = "https://api.example.com/health"


def _configuration(
    request: dict[str, Any] | None = None, assertions: list[Assertion] | None = None
) -> HealthCheckConfiguration:
    return HealthCheckConfiguration(
        id="cfg",
        name="api health",
        strategy_id="http",
        config=VersionedRecord(version=1, data={"timeout": 2000}),
        collectors=[
            CollectorConfigEntry(
                id="req-1",
                collector_id="http.request",
                config=VersionedRecord(version=1, data=request or {"url": HEALTH_URL}),
                assertions=assertions or [],
            )
        ],
    )


@pytest.fixture
def requests_seen() -> list[httpx.Request]:
    return []


@pytest.fixture
def use_handler(registry: HealthCheckRegistry, requests_seen: list[httpx.Request]):
    """Register an HTTP strategy backed by a mock transport."""

    def _install(status: int = 200, body: Any = None, error: Exception | None = None) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            requests_seen.append(request)
            if error is not None:
                raise error
            content = json.dumps(body) if body is not None else ""
            return httpx.Response(status, content=content)

        registry.register(HTTPHealthCheckStrategy(transport=httpx.MockTransport(handler)))

    return _install


class TestHTTPStrategy:
    """Tests for HTTPHealthCheckStrategy."""

    def test_attributes(self) -> None:
        """Test strategy identity and config defaults."""
        strategy = HTTPHealthCheckStrategy()
        assert strategy.id == "http"
        config = strategy.config.validate({})
        assert config.follow_redirects is True
        assert config.verify_tls is True

    @pytest.mark.asyncio
    async def test_client_closed_after_use(self) -> None:
        """Test the shared client is closed when the run ends."""
        transport = httpx.MockTransport(lambda request: httpx.Response(204))
        connected = await HTTPHealthCheckStrategy(transport=transport).create_client(HTTPConfig())

        async with connected as client:
            response = await client.exec(HTTPRequest(url=HEALTH_URL))

        assert response.status_code == 204
        assert connected.closed is True

    def test_merge_result(self) -> None:
        """Test strategy metadata folds into the aggregate."""
        strategy = HTTPHealthCheckStrategy()
        aggregate = strategy.merge_result(
            None,
            RunForAggregation(
                status=HealthStatus.HEALTHY,
                metadata={"success": True, "response_time_ms": 40.0},
            ),
        )
        aggregate = strategy.merge_result(
            aggregate,
            RunForAggregation(
                status=HealthStatus.UNHEALTHY,
                metadata={"success": False, "response_time_ms": 60.0, "error": "HTTP 503"},
            ),
        )

        assert aggregate["avg_response_time_ms"]["avg"] == pytest.approx(50.0)
        assert aggregate["success_rate"]["success_count"] == 1
        assert aggregate["error_count"]["count"] == 1


class TestRequestCollector:
    """Tests for RequestCollector through the executor."""

    @pytest.mark.asyncio
    async def test_ok_response(
        self, registry: HealthCheckRegistry, store: InMemoryStore, use_handler, requests_seen
    ) -> None:
        """Test a 2xx response is healthy and headers are sent."""
        use_handler(200, {"status": "ok"})
        await store.save_configuration(
            _configuration(
                {"url": HEALTH_URL, "method": "POST", "headers": [{"name": "X-Token", "value": "abc"}]}
            )
        )

        run = await HealthCheckExecutor(store, registry).run_check("cfg", "api")

        assert run.status == HealthStatus.HEALTHY
        assert run.result["status_code"] == 200
        assert run.result["success"] is True
        assert requests_seen[0].method == "POST"
        assert requests_seen[0].headers["x-token"] == "abc"

    @pytest.mark.asyncio
    async def test_server_error(
        self, registry: HealthCheckRegistry, store: InMemoryStore, use_handler
    ) -> None:
        """Test a non-2xx status is unhealthy with the status in the message."""
        use_handler(500)
        await store.save_configuration(_configuration())

        run = await HealthCheckExecutor(store, registry).run_check("cfg", "api")

        assert run.status == HealthStatus.UNHEALTHY
        assert run.message == "HTTP 500 Internal Server Error"
        assert run.result[COLLECTORS_KEY]["req-1"]["status_code"] == 500

    @pytest.mark.asyncio
    async def test_body_assertion(
        self, registry: HealthCheckRegistry, store: InMemoryStore, use_handler
    ) -> None:
        """Test assertions can reach into the JSON body."""
        use_handler(200, {"status": "degraded", "checks": [{"name": "db"}]})
        assertion = Assertion(field="body", path="$.status", operator=AssertionOperator.EQUALS, value="ok")
        await store.save_configuration(_configuration(assertions=[assertion]))

        run = await HealthCheckExecutor(store, registry).run_check("cfg", "api")

        assert run.status == HealthStatus.UNHEALTHY
        assert run.message == 'Assertion failed: body $.status: expected equals "ok", got "degraded"'

    @pytest.mark.asyncio
    async def test_body_not_persisted(
        self, registry: HealthCheckRegistry, store: InMemoryStore, use_handler
    ) -> None:
        """Test the response body is dropped from the stored run."""
        use_handler(200, {"status": "ok"})
        await store.save_configuration(_configuration())

        await HealthCheckExecutor(store, registry).run_check("cfg", "api")

        stored = (await store.load_recent_runs("cfg", "api", 1))[0]
        collector = stored.result[COLLECTORS_KEY]["req-1"]
        assert "body" not in collector
        assert collector["body_length"] == len('{"status": "ok"}')

    @pytest.mark.asyncio
    async def test_timeout(
        self, registry: HealthCheckRegistry, store: InMemoryStore, use_handler
    ) -> None:
        """Test transport timeouts are reported as timed out."""
        use_handler(error=httpx.ReadTimeout("read timed out"))
        await store.save_configuration(_configuration())

        run = await HealthCheckExecutor(store, registry).run_check("cfg", "api")

        assert run.status == HealthStatus.UNHEALTHY
        assert run.message.startswith("Request timed out after 30000ms")
        assert run.result[COLLECTORS_KEY]["req-1"]["timed_out"] is True

    @pytest.mark.asyncio
    async def test_connection_error(
        self, registry: HealthCheckRegistry, store: InMemoryStore, use_handler
    ) -> None:
        """Test connection errors become unhealthy runs."""
        use_handler(error=httpx.ConnectError("connection refused"))
        await store.save_configuration(_configuration())

        run = await HealthCheckExecutor(store, registry).run_check("cfg", "api")

        assert run.status == HealthStatus.UNHEALTHY
        assert run.message == "ConnectError: connection refused"

    def test_config_validation(self) -> None:
        """Test request configs reject unknown methods."""
        with pytest.raises(ValueError):
            RequestConfig(url=HEALTH_URL, method="TRACE")

    def test_allows_multiple(self) -> None:
        """Test several requests may be attached to one configuration."""
        assert RequestCollector().allow_multiple is True
