"""Tandem CLI entry point."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from tandem_lb.errors import ProcessLifecycleError, ValidationFatal

app = typer.Typer(
    name="tandem",
    help="Tandem — zero-downtime HAProxy rotation",
    no_args_is_help=True,
)
console = Console()

logger = logging.getLogger("tandem_lb")

ConfigOption = typer.Option(None, "--config", "-c", help="Path to .tandem.yaml")


class InstanceRole(str, Enum):
    master = "master"
    slave = "slave"


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
        force=True,
    )


def _load(path: Path | None):
    from tandem_lb.config.loader import load_config

    try:
        return load_config(path=path)
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(1)


def _fatal(exc: ValidationFatal) -> typer.Exit:
    logger.error("Refusing to generate configuration: %s", exc)
    console.print(f"[red bold]{escape(str(exc))}[/red bold]")
    return typer.Exit(exc.exit_code)


async def _run_rotation(config) -> None:
    from tandem_lb.events.emitter import create_emitter
    from tandem_lb.events.log import EventLog
    from tandem_lb.orchestrator.history import ReloadHistory
    from tandem_lb.orchestrator.reload import ReloadOrchestrator
    from tandem_lb.watcher import ChangeWatcher

    event_log = EventLog(config.event_log_size)
    history = ReloadHistory(config.history_max_records)
    orchestrator = ReloadOrchestrator(config, emitter=create_emitter(config, event_log), history=history)
    queue: asyncio.Queue = asyncio.Queue()

    await orchestrator.start()
    watcher = ChangeWatcher(
        config.paths.services_dir,
        config.paths.hosts_file,
        queue,
        debounce_seconds=config.watch.debounce_seconds,
    )
    watcher.start()

    tasks = [asyncio.create_task(orchestrator.run(queue), name="reload-worker")]
    if config.api.enabled:
        import uvicorn

        from tandem_lb.api.app import create_app

        api = create_app(config, orchestrator, queue, history, event_log)
        server = uvicorn.Server(
            uvicorn.Config(api, host=config.api.host, port=config.api.port, log_config=None)
        )
        tasks.append(asyncio.create_task(server.serve(), name="status-api"))

    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            task.result()
        # Only the status API returns normally, after it caught a signal.
        logger.info("Status API stopped; stopping proxy instances")
        await orchestrator.shutdown()
    except asyncio.CancelledError:
        logger.info("Interrupted; stopping proxy instances")
        await orchestrator.shutdown()
        raise
    finally:
        watcher.stop()
        for task in tasks:
            task.cancel()


@app.command()
def run(
    config_path: Path | None = ConfigOption,
    debug: bool = typer.Option(False, "--debug", help="Run the proxy engine in debug mode"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Start master, slave and dispatcher, then reload on every change."""
    _setup_logging(verbose)
    config = _load(config_path)
    if debug:
        config = config.model_copy(update={"engine": config.engine.model_copy(update={"debug": True})})

    try:
        asyncio.run(_run_rotation(config))
    except ValidationFatal as exc:
        raise _fatal(exc)
    except ProcessLifecycleError as exc:
        console.print(f"[red]Startup failed: {escape(str(exc))}[/red]")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        console.print("Stopped.")


@app.command("compile")
def compile_instance(
    config_path: Path | None = ConfigOption,
    role: InstanceRole = typer.Option(InstanceRole.master, "--role", help="Which instance port to use"),
    port: int | None = typer.Option(None, "--port", help="Override the listen port"),
) -> None:
    """Print the instance configuration that a reload would write."""
    from tandem_lb.compiler.headers import DEFAULT_INSTANCE_HEADER, read_header
    from tandem_lb.compiler.instance import compile_instance_config
    from tandem_lb.registry.builder import RegistryBuilder
    from tandem_lb.registry.loader import load_definitions
    from tandem_lb.registry.reachability import load_host_table

    config = _load(config_path)
    table = load_host_table(config.paths.hosts_file)
    try:
        build = RegistryBuilder().build(load_definitions(config.paths.services_dir), table.is_reachable)
    except ValidationFatal as exc:
        raise _fatal(exc)

    if port is None:
        port = config.instances.master_port if role is InstanceRole.master else config.instances.slave_port
    header = read_header(config.paths.instance_header, DEFAULT_INSTANCE_HEADER)
    typer.echo(compile_instance_config(build.registry, port, header, config.instances.bind_address), nl=False)


@app.command()
def dispatcher(config_path: Path | None = ConfigOption) -> None:
    """Print the dispatcher configuration."""
    from tandem_lb.compiler.dispatcher import compile_dispatcher_config
    from tandem_lb.compiler.headers import DEFAULT_DISPATCHER_HEADER, read_header

    config = _load(config_path)
    header = read_header(config.paths.dispatcher_header, DEFAULT_DISPATCHER_HEADER)
    typer.echo(
        compile_dispatcher_config(config.dispatcher, config.instances, config.paths.certificate, header),
        nl=False,
    )


@app.command()
def services(config_path: Path | None = ConfigOption) -> None:
    """Show every defined service and which backends are reachable."""
    from tandem_lb.registry.builder import list_definitions
    from tandem_lb.registry.loader import load_definitions
    from tandem_lb.registry.models import DefinitionError
    from tandem_lb.registry.reachability import load_host_table

    config = _load(config_path)
    results = load_definitions(config.paths.services_dir)
    table = load_host_table(config.paths.hosts_file)

    out = Table(title="Tandem Services")
    out.add_column("Service", style="bold")
    out.add_column("Domain")
    out.add_column("Backends")
    out.add_column("Status")
    out.add_column("Source", style="dim")

    for source, svc in list_definitions(results):
        backends = []
        for b in svc.backends:
            style = "green" if table.is_reachable(b.host) else "red"
            backends.append(f"[{style}]{b.address}[/{style}]")
        live = any(table.is_reachable(b.host) for b in svc.backends)
        label = "[green]live[/green]" if live else "[red]failed[/red]"
        if svc.is_default:
            label += " [cyan](default)[/cyan]"
        out.add_row(svc.name, svc.domain_name, ", ".join(backends) or "—", label, Path(source).name)

    console.print(out)
    for result in results:
        if isinstance(result, DefinitionError):
            name = Path(result.source).name
            console.print(f"[yellow]! {name}: {result.kind} error: {escape(result.message)}[/yellow]")


config_app = typer.Typer(name="config", help="Configuration commands")
app.add_typer(config_app)


@config_app.command("validate")
def config_validate(config_path: Path | None = ConfigOption) -> None:
    """Validate configuration and the service definitions it points at."""
    import yaml

    from tandem_lb.config.loader import load_config
    from tandem_lb.registry.builder import RegistryBuilder
    from tandem_lb.registry.loader import load_definitions
    from tandem_lb.registry.models import DefinitionError

    try:
        config = load_config(path=config_path)
        console.print("[green]✓[/green] YAML parses correctly")
        console.print("[green]✓[/green] Pydantic validation passes")
    except FileNotFoundError as exc:
        console.print(f"[red]✗ {exc}[/red]")
        raise typer.Exit(1)
    except yaml.YAMLError as exc:
        console.print(f"[red]✗ YAML parsing failed: {exc}[/red]")
        raise typer.Exit(1)
    except ValueError as exc:
        console.print("[green]✓[/green] YAML parses correctly")
        console.print(f"[red]✗ Pydantic validation failed: {escape(str(exc))}[/red]")
        raise typer.Exit(1)

    errors: list[str] = []
    warnings: list[str] = []

    if config.instances.master_port == config.instances.slave_port:
        errors.append(f"Master and slave share port {config.instances.master_port}")
    if not Path(config.paths.services_dir).is_dir():
        errors.append(f"Services directory '{config.paths.services_dir}' does not exist")
    if config.dispatcher.force_https and not Path(config.paths.certificate).exists():
        warnings.append(f"force_https is set but no certificate exists at {config.paths.certificate}")

    results = load_definitions(config.paths.services_dir)
    for result in results:
        if isinstance(result, DefinitionError):
            warnings.append(f"{Path(result.source).name}: {result.kind} error, file will be skipped")
    try:
        # Reachability is irrelevant here; treat every backend as live.
        build = RegistryBuilder().build(results, lambda host: True)
    except ValidationFatal as exc:
        errors.append(str(exc))
    else:
        console.print(f"[green]✓[/green] {len(build.registry)} service definition(s) are consistent")

    for w in warnings:
        console.print(f"[yellow]! {w}[/yellow]")
    if not errors:
        console.print("\n[green bold]Configuration is valid.[/green bold]")
    else:
        for err in errors:
            console.print(f"[red]✗ {escape(err)}[/red]")
        console.print(f"\n[red bold]{len(errors)} validation error(s) found.[/red bold]")
        raise typer.Exit(1)


@config_app.command("show")
def config_show(config_path: Path | None = ConfigOption) -> None:
    """Print resolved configuration."""
    config = _load(config_path)

    console.print(f"[bold]{config.tandem.name}[/bold] v{config.tandem.version}\n")

    console.print("[bold]Paths:[/bold]")
    for key, value in config.paths.model_dump().items():
        console.print(f"  {key}: {value if value is not None else '(built-in)'}")

    console.print("\n[bold]Instances:[/bold]")
    console.print(f"  master: {config.instances.bind_address}:{config.instances.master_port}")
    console.print(f"  slave: {config.instances.bind_address}:{config.instances.slave_port}")

    d = config.dispatcher
    console.print("\n[bold]Dispatcher:[/bold]")
    console.print(f"  http: {d.bind_address}:{d.http_port}")
    console.print(f"  https: {d.bind_address}:{d.https_port} (force: {d.force_https})")
    if d.https_exclusions:
        console.print(f"  exclusions: {', '.join(d.https_exclusions)}")

    e = config.engine
    console.print("\n[bold]Engine:[/bold]")
    console.print(f"  binary: {e.binary}{' (debug)' if e.debug else ''}")
    console.print(f"  settle: {e.settle_seconds}s, stop timeout: {e.stop_timeout_seconds}s")
    console.print(f"  debounce: {config.watch.debounce_seconds}s")


def main() -> None:
    app()
