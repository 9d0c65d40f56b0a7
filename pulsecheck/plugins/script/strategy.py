"""
Script Health Check Strategy

Runs local commands as health probes. Processes are spawned with asyncio
and killed when they outlive their timeout.
"""

import asyncio
import os
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog
from pydantic import BaseModel

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
from pulsecheck.versioning import Migration, Versioned, result_field

logger = structlog.get_logger(__name__)


class ScriptConfig(BaseStrategyConfig):
    """Global defaults only; what to run is configured per collector."""

    pass


def _drop_command_fields(data: dict[str, Any]) -> dict[str, Any]:
    return {"timeout": data.get("timeout", 30000)}


class ScriptResult(BaseModel):
    """Strategy-level run metadata."""

    executed: bool = result_field(False, label="Executed", chart="boolean")
    execution_time_ms: float = result_field(0.0, label="Execution Time", chart="line", unit="ms")
    exit_code: int | None = result_field(None, label="Exit Code", chart="counter")
    success: bool = result_field(False, label="Success", chart="boolean")
    timed_out: bool = result_field(False, label="Timed Out", chart="boolean")
    error: str | None = result_field(None, label="Error", chart="status")


@dataclass
class ScriptExecution:
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False


class ScriptExecutor(Protocol):
    async def execute(
        self,
        command: str,
        args: list[str],
        cwd: str | None,
        env: dict[str, str] | None,
        timeout_ms: int,
    ) -> ScriptExecution: ...


class SubprocessExecutor:
    """Runs commands with ``asyncio.create_subprocess_exec``."""

    async def execute(
        self,
        command: str,
        args: list[str],
        cwd: str | None,
        env: dict[str, str] | None,
        timeout_ms: int,
    ) -> ScriptExecution:
        proc = await asyncio.create_subprocess_exec(
            command,
            *args,
            cwd=cwd,
            env={**os.environ, **(env or {})},
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            await self._kill(proc)
            logger.info("Script timed out", command=command, timeout_ms=timeout_ms)
            return ScriptExecution(
                exit_code=-1, stderr="Script execution timed out", timed_out=True
            )
        except asyncio.CancelledError:
            await self._kill(proc)
            raise

        return ScriptExecution(
            exit_code=proc.returncode if proc.returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace").strip(),
            stderr=stderr.decode("utf-8", errors="replace").strip(),
        )

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()


@dataclass
class ScriptRequest:
    command: str
    args: list[str] = field(default_factory=list)
    cwd: str | None = None
    env: dict[str, str] | None = None
    timeout: int = 30000


@dataclass
class ScriptResponse:
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    error: str | None = None


class ScriptTransportClient(TransportClient[ScriptRequest, ScriptResponse]):
    def __init__(self, executor: ScriptExecutor) -> None:
        self._executor = executor

    async def exec(self, request: ScriptRequest) -> ScriptResponse:
        try:
            execution = await self._executor.execute(
                request.command, request.args, request.cwd, request.env, request.timeout
            )
        except OSError as e:
            return ScriptResponse(exit_code=-1, error=f"{type(e).__name__}: {e}")
        return ScriptResponse(
            exit_code=execution.exit_code,
            stdout=execution.stdout,
            stderr=execution.stderr,
            timed_out=execution.timed_out,
        )


class ScriptHealthCheckStrategy(HealthCheckStrategy):
    """Execute local scripts or commands for health checking."""

    id = "script"
    display_name = "Script Health Check"
    description = "Execute local scripts or commands for health checking"

    config = Versioned(
        version=2,
        schema=ScriptConfig,
        migrations=[
            Migration(
                from_version=1,
                to_version=2,
                description="Remove command/args/cwd/env (moved to execute collector)",
                migrate=_drop_command_fields,
            )
        ],
    )
    result = Versioned(
        version=2,
        schema=ScriptResult,
        migrations=[
            Migration(1, 2, "Collector based client (no result changes)", lambda data: data)
        ],
    )
    aggregated_result = VersionedAggregated(
        version=1,
        name="ScriptAggregatedResult",
        fields={
            "avg_execution_time_ms": aggregated_average("Avg Execution Time", "ms"),
            "success_rate": aggregated_rate("Success Rate"),
            "error_count": aggregated_counter("Errors"),
            "timeout_count": aggregated_counter("Timeouts"),
        },
    )

    def __init__(self, executor: ScriptExecutor | None = None) -> None:
        super().__init__()
        self._executor = executor or SubprocessExecutor()

    async def create_client(self, config: ScriptConfig) -> ConnectedClient[ScriptTransportClient]:
        # Every request spawns its own process; nothing to release
        return ConnectedClient(ScriptTransportClient(self._executor))

    def build_result(self, outputs: list[CollectorOutput]) -> dict[str, Any]:
        exit_codes = [o.result["exit_code"] for o in outputs if "exit_code" in o.result]
        result = ScriptResult(
            executed=bool(outputs),
            execution_time_ms=sum(o.result.get("execution_time_ms", 0.0) for o in outputs),
            exit_code=exit_codes[0] if exit_codes else None,
            success=bool(outputs) and all(o.result.get("success") for o in outputs),
            timed_out=any(o.timed_out for o in outputs),
            error=super().build_result(outputs).get("error"),
        )
        return result.model_dump(mode="json", exclude_none=True)

    def merge_result(
        self, existing: dict[str, Any] | None, run: RunForAggregation
    ) -> dict[str, Any]:
        state = self.aggregated_result.load(existing)
        metadata = run.metadata
        merged = self.aggregated_result.schema(
            avg_execution_time_ms=merge_average(
                state.avg_execution_time_ms, metadata.get("execution_time_ms")
            ),
            success_rate=merge_rate(state.success_rate, bool(metadata.get("success", False))),
            error_count=merge_counter(state.error_count, metadata.get("error") is not None),
            timeout_count=merge_counter(state.timeout_count, metadata.get("timed_out") is True),
        )
        return self.aggregated_result.dump(merged)
