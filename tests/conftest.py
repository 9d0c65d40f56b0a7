"""
Pytest configuration and shared fixtures.
"""

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from pulsecheck.engine.registry import HealthCheckRegistry, reset_registry
from pulsecheck.plugins import register_builtin_plugins
from pulsecheck.plugins.dns import DNSHealthCheckStrategy
from pulsecheck.plugins.script import ScriptHealthCheckStrategy
from pulsecheck.plugins.script.strategy import ScriptExecution
from pulsecheck.storage.memory import InMemoryStore


class FakeRdata:
    """Stands in for a dnspython A/AAAA rdata."""

    def __init__(self, address: str) -> None:
        self.address = address


class FakeResolver:
    """Async resolver returning canned answers."""

    def __init__(
        self,
        answers: dict[str, list[str]] | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.answers = answers or {}
        self.error = error
        self.delay = delay
        self.nameservers = ["127.0.0.53"]
        self.queries: list[tuple[str, Any]] = []

    async def resolve(self, qname: str, rdtype: Any) -> list[FakeRdata]:
        self.queries.append((qname, rdtype))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return [FakeRdata(a) for a in self.answers.get(qname, [])]


class FakeScriptExecutor:
    """Script executor returning a canned execution."""

    def __init__(self, execution: ScriptExecution) -> None:
        self.execution = execution
        self.calls: list[tuple[str, list[str]]] = []

    async def execute(
        self,
        command: str,
        args: list[str],
        cwd: str | None,
        env: dict[str, str] | None,
        timeout_ms: int,
    ) -> ScriptExecution:
        self.calls.append((command, args))
        return self.execution


@pytest.fixture
def registry() -> HealthCheckRegistry:
    """Fresh registry with the built-in plugins."""
    reset_registry()
    reg = HealthCheckRegistry()
    register_builtin_plugins(reg)
    return reg


@pytest.fixture
def store() -> InMemoryStore:
    """Empty in-memory store."""
    return InMemoryStore()


@pytest.fixture
def fake_resolver() -> FakeResolver:
    return FakeResolver(answers={"example.com": ["93.184.216.34", "93.184.216.35"]})


@pytest.fixture
def dns_registry(registry: HealthCheckRegistry, fake_resolver: FakeResolver) -> HealthCheckRegistry:
    """Registry whose DNS strategy resolves through ``fake_resolver``."""
    registry.register(DNSHealthCheckStrategy(resolver_factory=lambda: fake_resolver))
    return registry


@pytest.fixture
def use_script_executor(registry: HealthCheckRegistry) -> Callable[[ScriptExecution], FakeScriptExecutor]:
    """Swap the script strategy's executor for one returning a canned execution."""

    def _install(execution: ScriptExecution) -> FakeScriptExecutor:
        executor = FakeScriptExecutor(execution)
        registry.register(ScriptHealthCheckStrategy(executor=executor))
        return executor

    return _install
