"""Command execution collector."""

import time
from typing import Any

from pydantic import BaseModel, Field

from pulsecheck.aggregation import merge_average, merge_rate
from pulsecheck.aggregation.fields import VersionedAggregated, aggregated_average, aggregated_rate
from pulsecheck.engine.base import CollectorResult, CollectorStrategy, RunForAggregation, elapsed_ms
from pulsecheck.plugins.script.strategy import ScriptRequest, ScriptTransportClient
from pulsecheck.versioning import Versioned, result_field


class ExecuteConfig(BaseModel):
    command: str = Field(..., min_length=1, description="Command or path to script")
    args: list[str] = Field(default_factory=list, description="Command arguments")
    cwd: str | None = Field(default=None, description="Working directory")
    env: dict[str, str] | None = Field(default=None, description="Extra environment variables")
    timeout: int = Field(default=30000, ge=100, description="Timeout in milliseconds")


class ExecuteResult(BaseModel):
    exit_code: int = result_field(-1, label="Exit Code", chart="counter")
    stdout: str = result_field("", label="Standard Output", chart="text")
    stderr: str = result_field("", label="Standard Error", chart="text")
    execution_time_ms: float = result_field(0.0, label="Execution Time", chart="line", unit="ms")
    success: bool = result_field(False, label="Success", chart="boolean")
    timed_out: bool = result_field(False, label="Timed Out", chart="boolean")


class ExecuteCollector(CollectorStrategy):
    """Runs a command and checks its exit code and output."""

    plugin_id = "script"
    id = "execute"
    display_name = "Execute Script"
    description = "Execute a command or script and check the result"
    allow_multiple = True

    config = Versioned(version=1, schema=ExecuteConfig)
    result = Versioned(version=1, schema=ExecuteResult)
    aggregated_result = VersionedAggregated(
        version=1,
        name="ExecuteAggregatedResult",
        fields={
            "avg_execution_time_ms": aggregated_average("Avg Execution Time", "ms"),
            "success_rate": aggregated_rate("Success Rate"),
        },
    )

    async def execute(
        self, config: ExecuteConfig, client: ScriptTransportClient, strategy_id: str
    ) -> CollectorResult:
        start = time.perf_counter()
        response = await client.exec(
            ScriptRequest(
                command=config.command,
                args=config.args,
                cwd=config.cwd,
                env=config.env,
                timeout=config.timeout,
            )
        )
        success = response.exit_code == 0 and not response.timed_out and response.error is None
        result = ExecuteResult(
            exit_code=response.exit_code,
            stdout=response.stdout,
            stderr=response.stderr,
            execution_time_ms=elapsed_ms(start),
            success=success,
            timed_out=response.timed_out,
        )

        error = response.error
        if error is None and response.timed_out:
            error = f"Script timed out after {config.timeout}ms"
        elif error is None and not success:
            error = f"Exit code: {response.exit_code}"
        return CollectorResult(result=result.model_dump(mode="json"), error=error)

    def merge_result(
        self, existing: dict[str, Any] | None, run: RunForAggregation
    ) -> dict[str, Any]:
        state = self.aggregated_result.load(existing)
        metadata = run.metadata
        merged = self.aggregated_result.schema(
            avg_execution_time_ms=merge_average(
                state.avg_execution_time_ms, metadata.get("execution_time_ms")
            ),
            success_rate=merge_rate(state.success_rate, metadata.get("success")),
        )
        return self.aggregated_result.dump(merged)
