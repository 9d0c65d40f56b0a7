"""
Inline Script Collector

Runs a short script through an interpreter (``sh -c`` by default). The
script reports its outcome on stdout, either as plain text or as a JSON
object ``{"success": bool, "message": str, "value": number}``.
"""

import json
import time
from typing import Any

from pydantic import BaseModel, Field

from pulsecheck.aggregation import merge_average, merge_rate
from pulsecheck.aggregation.fields import VersionedAggregated, aggregated_average, aggregated_rate
from pulsecheck.engine.base import CollectorResult, CollectorStrategy, RunForAggregation, elapsed_ms
from pulsecheck.plugins.script.strategy import ScriptRequest, ScriptResponse, ScriptTransportClient
from pulsecheck.versioning import Versioned, result_field


class InlineScriptConfig(BaseModel):
    script: str = Field(..., min_length=1, description="Script source")
    interpreter: str = Field(default="sh", description="Interpreter invoked as '<interpreter> -c <script>'")
    timeout: int = Field(default=10000, ge=1000, le=60000, description="Timeout in milliseconds")


class InlineScriptResult(BaseModel):
    success: bool = result_field(False, label="Success", chart="boolean")
    message: str | None = result_field(None, label="Message", chart="text")
    value: float | None = result_field(None, label="Value", chart="line")
    execution_time_ms: float = result_field(0.0, label="Execution Time", chart="line", unit="ms")
    timed_out: bool = result_field(False, label="Timed Out", chart="boolean")


def interpret_output(response: ScriptResponse) -> tuple[bool, str | None, float | None]:
    """
    Turn process output into ``(success, message, value)``.

    A JSON object on stdout is taken at its word; a bare number becomes the
    value; anything else is the message. A non-zero exit always fails.
    """
    stdout = response.stdout.strip()
    success = response.exit_code == 0
    message: str | None = stdout or None
    value: float | None = None

    if stdout:
        try:
            parsed = json.loads(stdout)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            success = success and bool(parsed.get("success", True))
            raw_message = parsed.get("message")
            message = None if raw_message is None else str(raw_message)
            raw_value = parsed.get("value")
            value = float(raw_value) if isinstance(raw_value, (int, float)) else None
        elif isinstance(parsed, bool):
            success = success and parsed
            message = None
        elif isinstance(parsed, (int, float)):
            value = float(parsed)
            message = None

    if response.exit_code != 0 and not message:
        message = response.stderr or None
    return success, message, value


class InlineScriptCollector(CollectorStrategy):
    """Runs an inline script and reads its verdict."""

    plugin_id = "script"
    id = "inline-script"
    display_name = "Inline Script"
    description = "Run an inline script that reports success, message and value"
    allow_multiple = True

    config = Versioned(version=1, schema=InlineScriptConfig)
    result = Versioned(version=1, schema=InlineScriptResult)
    aggregated_result = VersionedAggregated(
        version=1,
        name="InlineScriptAggregatedResult",
        fields={
            "avg_execution_time_ms": aggregated_average("Avg Execution Time", "ms"),
            "success_rate": aggregated_rate("Success Rate"),
        },
    )

    async def execute(
        self, config: InlineScriptConfig, client: ScriptTransportClient, strategy_id: str
    ) -> CollectorResult:
        start = time.perf_counter()
        response = await client.exec(
            ScriptRequest(
                command=config.interpreter,
                args=["-c", config.script],
                timeout=config.timeout,
            )
        )

        if response.timed_out:
            result = InlineScriptResult(
                success=False,
                message=f"Script timed out after {config.timeout}ms",
                execution_time_ms=elapsed_ms(start),
                timed_out=True,
            )
            return CollectorResult(result=result.model_dump(mode="json"), error=result.message)
        if response.error:
            result = InlineScriptResult(
                success=False, message=response.error, execution_time_ms=elapsed_ms(start)
            )
            return CollectorResult(result=result.model_dump(mode="json"), error=response.error)

        success, message, value = interpret_output(response)
        result = InlineScriptResult(
            success=success,
            message=message,
            value=value,
            execution_time_ms=elapsed_ms(start),
        )
        error = None if success else (message or "Check failed")
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
