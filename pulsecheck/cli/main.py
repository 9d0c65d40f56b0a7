"""
Pulsecheck CLI Main Entry Point

Lists registered strategies and collectors, prints their schemas, runs
one-off DNS and script checks and re-runs configurations saved to
PULSECHECK_STORE_PATH.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Annotated, Any

import structlog
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from pulsecheck import __version__
from pulsecheck.config import get_settings
from pulsecheck.engine.registry import get_registry
from pulsecheck.errors import ConfigurationError, PulsecheckError, RegistryError
from pulsecheck.models import HealthCheckRun, HealthStatus
from pulsecheck.service import HealthCheckService
from pulsecheck.storage.memory import InMemoryStore


def configure_logging(verbose: bool = False, json_logs: bool = False) -> None:
    """Configure structlog for console (or JSON) output."""
    level = logging.DEBUG if verbose else getattr(logging, get_settings().log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(message)s")

    renderer: Any = (
        structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer(colors=True)
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger(__name__)
console = Console()

app = typer.Typer(
    name="pulsecheck",
    help="Pulsecheck - health check execution and aggregation engine",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

STATUS_STYLES = {
    HealthStatus.HEALTHY: "green",
    HealthStatus.DEGRADED: "yellow",
    HealthStatus.UNHEALTHY: "red",
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(
            Panel(
                Text.from_markup(
                    f"[bold cyan]Pulsecheck[/bold cyan] v{__version__}\n"
                    "[dim]Health check execution and aggregation engine[/dim]"
                ),
                title="Version",
                border_style="cyan",
            )
        )
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable verbose output.",
        ),
    ] = False,
    json_logs: Annotated[
        bool,
        typer.Option(
            "--json-logs",
            help="Emit logs as JSON lines.",
        ),
    ] = False,
) -> None:
    """
    Pulsecheck - run health checks and inspect their plugins.
    """
    configure_logging(verbose=verbose, json_logs=json_logs or get_settings().json_logs)


@app.command()
def strategies() -> None:
    """
    List registered strategies and their collectors.

    Example: pulsecheck strategies
    """
    registry = get_registry()

    table = Table(
        title=f"Strategies ({len(registry.list_strategy_ids())} total)",
        show_header=True,
        header_style="bold cyan",
    )
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="white")
    table.add_column("Config", style="magenta")
    table.add_column("Collectors", style="green")

    for strategy in registry.list_strategies():
        collectors = registry.collectors_for_strategy(strategy.id)
        table.add_row(
            strategy.id,
            strategy.display_name,
            f"v{strategy.config.version}",
            ", ".join(c.qualified_id for c in collectors) or "-",
        )

    console.print(table)


@app.command()
def schema(
    strategy_id: Annotated[str, typer.Argument(help="Strategy id, e.g. dns")],
    collector: Annotated[
        str | None,
        typer.Option("--collector", "-c", help="Show a collector's schemas instead"),
    ] = None,
) -> None:
    """
    Print JSON schemas for a strategy or one of its collectors.

    Example:
        pulsecheck schema dns
        pulsecheck schema dns --collector dns.lookup
    """
    service = HealthCheckService(InMemoryStore(), registry=get_registry())

    if collector:
        documents = [d for d in service.get_collector_schemas(strategy_id) if d["id"] == collector]
    else:
        documents = [d for d in service.get_strategy_schemas() if d["id"] == strategy_id]

    if not documents:
        console.print(f"[red]Not found:[/red] {collector or strategy_id}")
        raise typer.Exit(1)

    console.print_json(json.dumps(documents[0], default=str))


def _print_run(run: HealthCheckRun) -> None:
    style = STATUS_STYLES[run.status]
    summary = (
        f"[bold {style}]{run.status.value.upper()}[/bold {style}]\n"
        f"[bold cyan]Latency:[/bold cyan] {run.latency_ms}ms\n"
    )
    if run.message:
        summary += f"[bold cyan]Message:[/bold cyan] {run.message}\n"
    console.print(Panel(Text.from_markup(summary), title="Health Check", border_style=style))
    console.print_json(json.dumps(run.result, default=str))


def _persistent_store() -> InMemoryStore:
    store_path = get_settings().store_path
    if not store_path:
        raise ConfigurationError("PULSECHECK_STORE_PATH is not set")
    return InMemoryStore(store_path)


async def _run_once(
    name: str,
    strategy_id: str,
    config: dict[str, Any],
    collectors: list[dict[str, Any]],
    save: bool,
) -> HealthCheckRun:
    store = _persistent_store() if save else InMemoryStore()
    service = HealthCheckService(store, registry=get_registry())
    configuration = await service.create_configuration(
        name=name,
        strategy_id=strategy_id,
        config=config,
        collectors=collectors,
    )
    if save:
        console.print(f"[bold cyan]Saved configuration:[/bold cyan] {configuration.id}")
    return await service.run_check(configuration.id, "cli")


def _report(run_factory: Callable[[], Awaitable[HealthCheckRun]]) -> None:
    try:
        run = asyncio.run(run_factory())
    except PulsecheckError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(2)

    _print_run(run)
    if run.status != HealthStatus.HEALTHY:
        raise typer.Exit(1)


@app.command()
def dns(
    hostname: Annotated[str, typer.Argument(help="Hostname to resolve")],
    record_type: Annotated[
        str,
        typer.Option("--type", "-t", help="Record type: A, AAAA, CNAME, MX, TXT, NS"),
    ] = "A",
    nameserver: Annotated[
        str | None,
        typer.Option("--nameserver", "-n", help="Nameserver to query"),
    ] = None,
    timeout: Annotated[int, typer.Option("--timeout", help="Timeout in milliseconds")] = 5000,
    save: Annotated[
        bool,
        typer.Option("--save", help="Store the configuration in PULSECHECK_STORE_PATH for 'pulsecheck run'"),
    ] = False,
) -> None:
    """
    Run a one-off DNS check.

    Example: pulsecheck dns example.com --type MX
    """
    lookup: dict[str, Any] = {"hostname": hostname, "record_type": record_type.upper()}
    if nameserver:
        lookup["nameserver"] = nameserver
    _report(
        lambda: _run_once(
            f"{hostname} {lookup['record_type']}",
            "dns",
            {"timeout": timeout},
            [{"collector_id": "dns.lookup", "config": lookup}],
            save,
        )
    )


@app.command()
def script(
    command: Annotated[str, typer.Argument(help="Executable to run")],
    args: Annotated[list[str] | None, typer.Argument(help="Arguments")] = None,
    timeout: Annotated[
        int | None,
        typer.Option("--timeout", help="Timeout in milliseconds"),
    ] = None,
    save: Annotated[
        bool,
        typer.Option("--save", help="Store the configuration in PULSECHECK_STORE_PATH for 'pulsecheck run'"),
    ] = False,
) -> None:
    """
    Run a one-off script check. Exit code 0 is healthy.

    Example: pulsecheck script /usr/bin/true
    """
    timeout = timeout or get_settings().default_timeout_ms
    _report(
        lambda: _run_once(
            command,
            "script",
            {"timeout": timeout},
            [
                {
                    "collector_id": "script.execute",
                    "config": {"command": command, "args": args or [], "timeout": timeout},
                }
            ],
            save,
        )
    )


@app.command()
def run(
    configuration_id: Annotated[str, typer.Argument(help="Stored configuration id")],
    system_id: Annotated[str, typer.Option("--system", "-s", help="System the run is recorded for")] = "cli",
) -> None:
    """
    Run a configuration stored in PULSECHECK_STORE_PATH.

    Example: pulsecheck run 3f2a... --system web-1
    """

    async def _run() -> HealthCheckRun:
        service = HealthCheckService(_persistent_store(), registry=get_registry())
        return await service.run_check(configuration_id, system_id)

    _report(_run)


@app.command()
def configs() -> None:
    """List configurations stored in PULSECHECK_STORE_PATH."""
    try:
        configurations = asyncio.run(_persistent_store().list_configurations())
    except PulsecheckError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(2)

    table = Table(
        title=f"Configurations ({len(configurations)} total)",
        show_header=True,
        header_style="bold cyan",
    )
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="white")
    table.add_column("Strategy", style="magenta")
    table.add_column("Collectors", style="green")

    for configuration in configurations:
        table.add_row(
            configuration.id,
            configuration.name,
            configuration.strategy_id,
            ", ".join(c.collector_id for c in configuration.collectors) or "-",
        )

    console.print(table)


@app.command()
def info() -> None:
    """Show information about Pulsecheck."""
    settings = get_settings()
    try:
        registry = get_registry()
        plugin_count = f"{len(registry.list_strategy_ids())} strategies, {len(registry.list_collector_ids())} collectors"
    except RegistryError as e:
        plugin_count = f"unavailable ({e})"

    table = Table(title="Pulsecheck Information", show_header=False, border_style="cyan")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Version", __version__)
    table.add_row("Plugins Loaded", plugin_count)
    table.add_row(
        "Retention (raw/hourly/daily)",
        f"{settings.raw_retention_days}d / {settings.hourly_retention_days}d / {settings.daily_retention_days}d",
    )
    table.add_row("Max Concurrent Checks", str(settings.max_concurrent_checks))
    table.add_row("Default Timeout", f"{settings.default_timeout_ms}ms")
    table.add_row("Store", settings.store_path or "memory")

    console.print(table)


if __name__ == "__main__":
    app()
