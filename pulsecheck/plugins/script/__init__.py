"""Script health check plugin."""

from pulsecheck.plugins.script.execute import ExecuteCollector, ExecuteConfig, ExecuteResult
from pulsecheck.plugins.script.inline import InlineScriptCollector, InlineScriptConfig
from pulsecheck.plugins.script.strategy import (
    ScriptConfig,
    ScriptExecution,
    ScriptExecutor,
    ScriptHealthCheckStrategy,
    ScriptTransportClient,
    SubprocessExecutor,
)

__all__ = [
    "ExecuteCollector",
    "ExecuteConfig",
    "ExecuteResult",
    "InlineScriptCollector",
    "InlineScriptConfig",
    "ScriptConfig",
    "ScriptExecution",
    "ScriptExecutor",
    "ScriptHealthCheckStrategy",
    "ScriptTransportClient",
    "SubprocessExecutor",
]
