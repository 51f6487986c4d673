"""Main CLI entry point for hostdeck.

This module defines the Typer application and its commands. Every command
that talks to an agent catches :class:`~hostlink.errors.AgentError` and
prints the message instead of a traceback.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.live import Live
from rich.markup import escape
from rich.table import Table

from hostlink.cache import LiveStateCache
from hostlink.client import RemoteAgentClient
from hostlink.config import ConfigManager
from hostlink.discovery import DiscoveryStatus, detect_local_address, scan_for_agents
from hostlink.errors import AgentError, ConfigError
from hostlink.live import HostStatus, LiveOptions, LiveStateAggregator
from hostlink.models import HostConfig
from hostlink.probes import describe_probe_failure
from termview.render import strip_ansi, to_rich_text
from termview.session import SessionTerminal

from . import __version__
from .logging import configure_logging

if TYPE_CHECKING:
    from collections.abc import Coroutine

    from hostlink.live import HostLiveState
    from hostlink.probes import ProbeOutcome

app = typer.Typer(
    name="hostdeck",
    help="Remote operations companion for tmux, Docker and ports on agent hosts.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

STATUS_STYLES: dict[HostStatus, str] = {
    HostStatus.ONLINE: "[green]● online[/green]",
    HostStatus.OFFLINE: "[red]● offline[/red]",
    HostStatus.CHECKING: "[yellow]● checking[/yellow]",
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold blue]hostdeck[/bold blue] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    log_level: Annotated[
        str,
        typer.Option(
            "--log-level",
            "-l",
            help="Log level: debug, info, warning or error.",
        ),
    ] = "warning",
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="Configuration file. Defaults to the XDG config directory.",
        ),
    ] = None,
) -> None:
    """Hostdeck: attach to agent hosts and keep an eye on them."""
    configure_logging(log_level)
    ctx.obj = config


def _get_config_manager(ctx: typer.Context) -> ConfigManager:
    return ConfigManager(ctx.obj)


def _fail(message: str) -> typer.Exit:
    console.print(f"[red]Error: {escape(message)}[/red]")
    return typer.Exit(1)


def _run(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run an agent command, turning agent and config errors into messages."""
    try:
        return asyncio.run(coro)
    except (AgentError, ConfigError) as e:
        raise _fail(str(e)) from None


def _resolve_host(ctx: typer.Context, target: str, token: str | None = None) -> HostConfig:
    """A configured host by id or name, or an ad-hoc host for a URL."""
    if target.startswith(("http://", "https://")):
        try:
            return HostConfig(id=target, base_url=target, auth_token=token)
        except ValidationError as e:
            raise _fail(f"Invalid URL: {target}") from e
    try:
        host = _get_config_manager(ctx).get_host(target)
    except ConfigError as e:
        raise _fail(str(e)) from None
    if token:
        host = host.model_copy(update={"auth_token": token})
    return host


HostArgument = Annotated[str, typer.Argument(help="Host id or name, or an agent URL.")]
TokenOption = Annotated[
    str | None,
    typer.Option("--token", "-t", help="Bearer token for an ad-hoc URL.", envvar="HOSTDECK_TOKEN"),
]


# =============================================================================
# Host configuration
# =============================================================================


@app.command()
def hosts(ctx: typer.Context) -> None:
    """List configured hosts."""
    manager = _get_config_manager(ctx)
    try:
        config = manager.load()
    except ConfigError as e:
        raise _fail(str(e)) from None

    if not config.hosts:
        console.print("[dim]No hosts configured.[/dim]")
        console.print(f"Add one with [bold]hostdeck add-host[/bold] ({manager.config_path})")
        return

    table = Table(title="Hosts", show_header=True)
    table.add_column("Id", style="cyan")
    table.add_column("Name")
    table.add_column("URL")
    table.add_column("Token", justify="center")

    for host in config.hosts:
        token = "[green]✓[/green]" if host.auth_token else "[dim]-[/dim]"
        table.add_row(host.id, host.name, host.base_url, token)

    console.print(table)


@app.command("add-host")
def add_host(
    ctx: typer.Context,
    host_id: Annotated[str, typer.Argument(help="Unique host id.")],
    base_url: Annotated[str, typer.Argument(help="Agent URL, e.g. http://10.0.0.5:4020")],
    name: Annotated[str, typer.Option("--name", "-n", help="Display name.")] = "",
    token: Annotated[
        str | None, typer.Option("--token", "-t", help="Bearer token of the agent.")
    ] = None,
    timeout: Annotated[
        float, typer.Option("--timeout", help="Default request timeout in seconds.")
    ] = 6.0,
    replace: Annotated[
        bool, typer.Option("--replace", "-r", help="Overwrite a host with the same id.")
    ] = False,
) -> None:
    """Add an agent host to the configuration."""
    try:
        host = HostConfig(
            id=host_id, name=name, base_url=base_url, auth_token=token, timeout=timeout
        )
    except ValidationError as e:
        raise _fail(f"Invalid host: {e.errors()[0]['msg']}") from None

    try:
        _get_config_manager(ctx).add_host(host, replace=replace)
    except ConfigError as e:
        raise _fail(str(e)) from None
    console.print(f"[green]Added host: {host.id}[/green]")


@app.command("remove-host")
def remove_host(
    ctx: typer.Context,
    host_id: Annotated[str, typer.Argument(help="Host id to remove.")],
) -> None:
    """Remove an agent host from the configuration."""
    try:
        removed = _get_config_manager(ctx).remove_host(host_id)
    except ConfigError as e:
        raise _fail(str(e)) from None
    if not removed:
        raise _fail(f"Unknown host: {host_id}")
    console.print(f"[yellow]Removed host: {host_id}[/yellow]")


# =============================================================================
# Probes and discovery
# =============================================================================


def _print_outcome(host: HostConfig, outcome: ProbeOutcome, detail: str) -> None:
    if outcome.ok:
        console.print(f"[green]✓[/green] {host.label}: {detail}")
        return
    message = describe_probe_failure(outcome, host.base_url)
    console.print(f"[red]✗[/red] {host.label}: {message}")
    raise typer.Exit(1)


@app.command()
def probe(
    ctx: typer.Context,
    target: HostArgument,
    token: TokenOption = None,
    timeout: Annotated[
        float | None, typer.Option("--timeout", help="Probe timeout in seconds.")
    ] = None,
) -> None:
    """Check that an agent answers ``/health``."""
    host = _resolve_host(ctx, target, token)

    async def _probe() -> ProbeOutcome:
        async with RemoteAgentClient(host) as client:
            return await client.probe_health(timeout=timeout)

    outcome = _run(_probe())
    detail = ""
    if outcome.ok:
        detail = f"agent on {outcome.payload.host}"
        if outcome.payload.tmux_version:
            detail += f" (tmux {outcome.payload.tmux_version})"
    _print_outcome(host, outcome, detail)


@app.command()
def ping(
    ctx: typer.Context,
    target: HostArgument,
    token: TokenOption = None,
) -> None:
    """Measure the round trip to an agent's ``/ping``."""
    host = _resolve_host(ctx, target, token)

    async def _ping() -> tuple[ProbeOutcome, float]:
        loop = asyncio.get_running_loop()
        async with RemoteAgentClient(host) as client:
            started = loop.time()
            outcome = await client.probe_ping()
            return outcome, (loop.time() - started) * 1000

    outcome, elapsed_ms = _run(_ping())
    _print_outcome(host, outcome, f"pong in {elapsed_ms:.0f} ms")


@app.command()
def scan(
    ctx: typer.Context,
    address: Annotated[
        str | None, typer.Option("--address", "-a", help="Local IPv4 address to scan from.")
    ] = None,
    netmask: Annotated[
        str | None, typer.Option("--netmask", "-m", help="Netmask or prefix length.")
    ] = None,
    port: Annotated[int, typer.Option("--port", "-p", help="Agent port.")] = 4020,
    timeout: Annotated[float, typer.Option("--timeout", help="Per-probe timeout.")] = 1.2,
    concurrency: Annotated[int, typer.Option("--concurrency", help="Probes in flight.")] = 30,
) -> None:
    """Look for agents on the local network."""
    local = address or detect_local_address()
    if local is None:
        raise _fail("Unable to detect the local address; pass --address.")
    try:
        known = _get_config_manager(ctx).load().hosts
    except ConfigError as e:
        raise _fail(str(e)) from None

    console.print(f"[bold]Scanning from {local}...[/bold]")
    result = _run(
        scan_for_agents(
            local, netmask, port=port, timeout=timeout, concurrency=concurrency, known=known
        )
    )
    if result.error:
        console.print(f"[yellow]{result.error}[/yellow]")
        return
    if not result.results:
        console.print("[dim]No agents found.[/dim]")
        return

    table = Table(title="Discovered Agents", show_header=True)
    table.add_column("Address", style="cyan")
    table.add_column("Host")
    table.add_column("URL")
    table.add_column("Status")
    for agent in result.results:
        status = (
            "[green]ok[/green]"
            if agent.status is DiscoveryStatus.OK
            else "[yellow]token required[/yellow]"
        )
        table.add_row(agent.ip, agent.label, agent.base_url, status)
    console.print(table)


# =============================================================================
# Sessions
# =============================================================================


@app.command()
def sessions(
    ctx: typer.Context,
    target: HostArgument,
    token: TokenOption = None,
    preview: Annotated[
        int, typer.Option("--preview", "-p", help="Show the last N lines of each pane.")
    ] = 0,
) -> None:
    """List tmux sessions on a host."""
    host = _resolve_host(ctx, target, token)

    async def _list() -> list[Any]:
        async with RemoteAgentClient(host) as client:
            return await client.get_sessions(preview=preview > 0, lines=preview or None)

    found = _run(_list())
    if not found:
        console.print(f"[dim]No sessions on {host.label}.[/dim]")
        return

    table = Table(title=f"Sessions on {host.label}", show_header=True)
    table.add_column("Name", style="cyan")
    table.add_column("Windows", justify="right")
    table.add_column("Attached", justify="center")
    table.add_column("Title")
    for session in found:
        attached = "[green]✓[/green]" if session.attached else ""
        table.add_row(session.name, str(session.windows), attached, session.title or "")
    console.print(table)

    if preview:
        for session in found:
            console.print()
            console.print(f"[bold cyan]{session.name}[/bold cyan]")
            for line in (session.preview or [])[-preview:]:
                console.print(to_rich_text(line))


@app.command()
def capture(
    ctx: typer.Context,
    target: HostArgument,
    session: Annotated[str, typer.Argument(help="tmux session name.")],
    token: TokenOption = None,
    lines: Annotated[int, typer.Option("--lines", "-n", help="Lines to capture.")] = 24,
) -> None:
    """Show a tmux pane rendered through the terminal grid."""
    host = _resolve_host(ctx, target, token)
    try:
        config = _get_config_manager(ctx).get_config()
    except ConfigError as e:
        raise _fail(str(e)) from None

    async def _capture() -> SessionTerminal:
        async with RemoteAgentClient(host) as client:
            terminal = SessionTerminal(client, session, config=config.terminal)
            try:
                await terminal.load(lines)
            finally:
                await terminal.aclose()
            return terminal

    terminal = _run(_capture())
    for row in range(terminal.grid.lines):
        console.print(to_rich_text(terminal.grid.line_segments(row)))


@app.command()
def resize(
    ctx: typer.Context,
    target: HostArgument,
    session: Annotated[str, typer.Argument(help="tmux session name.")],
    cols: Annotated[int, typer.Argument(min=1, help="Columns.")],
    rows: Annotated[int, typer.Argument(min=1, help="Rows.")],
    token: TokenOption = None,
) -> None:
    """Resize a tmux session to a fixed grid."""
    host = _resolve_host(ctx, target, token)

    async def _resize() -> None:
        async with RemoteAgentClient(host) as client:
            await client.resize_session(session, cols, rows)

    _run(_resize())
    console.print(f"[green]Resized {session} to {cols}x{rows}[/green]")


# =============================================================================
# Docker and ports
# =============================================================================


@app.command()
def docker(
    ctx: typer.Context,
    target: HostArgument,
    action: Annotated[
        str | None,
        typer.Argument(help="start, stop, restart, pause, unpause or kill."),
    ] = None,
    container: Annotated[str | None, typer.Argument(help="Container id or name.")] = None,
    token: TokenOption = None,
) -> None:
    """List containers, or run an action on one."""
    host = _resolve_host(ctx, target, token)

    if action is not None:
        if container is None:
            raise _fail("A container is required with an action.")

        async def _act() -> bool:
            async with RemoteAgentClient(host) as client:
                return await client.docker_container_action(container, action)

        try:
            ok = _run(_act())
        except ValueError as e:
            raise _fail(str(e)) from None
        if not ok:
            raise _fail(f"{action} {container} was not acknowledged")
        console.print(f"[green]{action} {container}: done[/green]")
        return

    async def _inventory() -> Any:
        async with RemoteAgentClient(host) as client:
            return await client.get_docker()

    snapshot = _run(_inventory())
    if not snapshot.available:
        raise _fail(snapshot.error or "Docker is not available")

    table = Table(title=f"Containers on {host.label}", show_header=True)
    table.add_column("Name", style="cyan")
    table.add_column("Image")
    table.add_column("State")
    table.add_column("Status")
    table.add_column("CPU", justify="right")
    for item in snapshot.containers:
        state = "[green]running[/green]" if item.is_running else f"[dim]{item.state or ''}[/dim]"
        cpu = f"{item.cpu_percent:.1f}%" if item.cpu_percent is not None else ""
        table.add_row(item.name or item.id[:12], item.image, state, item.status or "", cpu)
    console.print(table)


@app.command()
def ports(
    ctx: typer.Context,
    target: HostArgument,
    token: TokenOption = None,
) -> None:
    """List listening ports on a host."""
    host = _resolve_host(ctx, target, token)

    async def _ports() -> list[Any]:
        async with RemoteAgentClient(host) as client:
            return await client.get_ports()

    found = _run(_ports())
    if not found:
        console.print(f"[dim]No listening ports on {host.label}.[/dim]")
        return

    table = Table(title=f"Ports on {host.label}", show_header=True)
    table.add_column("Port", justify="right", style="cyan")
    table.add_column("PID", justify="right")
    table.add_column("Process")
    table.add_column("Address")
    for item in found:
        pid = str(item.pid) if item.pid is not None else ""
        table.add_row(str(item.port), pid, item.process or item.command or "", item.address or "")
    console.print(table)


@app.command("kill-ports")
def kill_ports(
    ctx: typer.Context,
    target: HostArgument,
    pids: Annotated[list[int], typer.Argument(help="Process ids to kill.")],
    token: TokenOption = None,
) -> None:
    """Kill the processes behind listening ports."""
    host = _resolve_host(ctx, target, token)

    async def _kill() -> Any:
        async with RemoteAgentClient(host) as client:
            return await client.kill_ports(pids)

    result = _run(_kill())
    if result.killed:
        console.print(f"[green]Killed: {', '.join(str(pid) for pid in result.killed)}[/green]")
    for failure in result.failed:
        console.print(f"[red]Failed {failure.pid}: {escape(failure.error)}[/red]")
    if result.failed:
        raise typer.Exit(1)


# =============================================================================
# Live view
# =============================================================================


def _age(when: datetime | None) -> str:
    if when is None:
        return ""
    seconds = (datetime.now(UTC) - when).total_seconds()
    if seconds < 60:
        return f"{max(seconds, 0):.0f}s ago"
    return f"{seconds / 60:.0f}m ago"


def build_live_table(aggregator: LiveStateAggregator) -> Table:
    """Render the aggregator's state map as a table."""
    table = Table(title="Live", show_header=True)
    table.add_column("Host", style="cyan")
    table.add_column("Status")
    table.add_column("Sessions", justify="right")
    table.add_column("Containers", justify="right")
    table.add_column("Load", justify="right")
    table.add_column("Updated", justify="right")
    table.add_column("Error")

    states: dict[str, HostLiveState] = dict(aggregator.states)
    for host in aggregator.hosts:
        state = states.get(host.id)
        if state is None:
            continue
        sessions_count = str(len(state.sessions)) if state.sessions is not None else ""
        containers = ""
        if state.docker is not None:
            containers = f"{len(state.docker.running)}/{len(state.docker.containers)}"
        load = ""
        if state.host_info is not None and state.host_info.load:
            load = f"{state.host_info.load[0]:.2f}"
        table.add_row(
            host.label,
            STATUS_STYLES[state.status],
            sessions_count,
            containers,
            load,
            _age(state.last_update),
            f"[red]{escape(state.error)}[/red]" if state.error else "",
        )

    counts = aggregator.status_counts()
    table.caption = (
        f"{counts[HostStatus.ONLINE]} online, {counts[HostStatus.OFFLINE]} offline, "
        f"{counts[HostStatus.CHECKING]} checking | "
        f"{aggregator.total_sessions()} sessions, "
        f"{len(aggregator.running_containers())} running containers"
    )
    return table


@app.command()
def watch(
    ctx: typer.Context,
    targets: Annotated[
        list[str] | None, typer.Argument(help="Hosts to watch. Defaults to all configured.")
    ] = None,
    sessions_: Annotated[
        bool, typer.Option("--sessions/--no-sessions", help="Track tmux sessions.")
    ] = True,
    host_metrics: Annotated[
        bool, typer.Option("--host/--no-host", help="Track host metrics.")
    ] = True,
    docker_: Annotated[bool, typer.Option("--docker/--no-docker", help="Track Docker.")] = False,
    once: Annotated[
        bool, typer.Option("--once", help="Poll every host once, print and exit.")
    ] = False,
) -> None:
    """Show a live table of every host."""
    manager = _get_config_manager(ctx)
    try:
        config = manager.load()
    except ConfigError as e:
        raise _fail(str(e)) from None

    watched = (
        [_resolve_host(ctx, target) for target in targets] if targets else list(config.hosts)
    )
    if not watched:
        console.print("[dim]No hosts configured.[/dim]")
        return
    options = LiveOptions(sessions=sessions_, host=host_metrics, docker=docker_)

    async def _watch() -> None:
        aggregator = LiveStateAggregator(
            watched,
            options,
            config=config.live,
            client_factory=RemoteAgentClient,
            cache=LiveStateCache(max_size=config.live.cache_size),
        )
        aggregator.enable()
        try:
            if once:
                await aggregator.refresh()
                await aggregator.drain()
                console.print(build_live_table(aggregator))
                return
            with Live(build_live_table(aggregator), console=console) as live:
                aggregator.subscribe(lambda *_: live.update(build_live_table(aggregator)))
                while True:
                    await asyncio.sleep(1.0)
                    live.update(build_live_table(aggregator))
        finally:
            await aggregator.aclose()

    try:
        _run(_watch())
    except KeyboardInterrupt:
        console.print("[dim]Stopped.[/dim]")


# =============================================================================
# Rendering
# =============================================================================


@app.command()
def cat(
    path: Annotated[Path, typer.Argument(help="File with ANSI-coloured text.", exists=True)],
    strip: Annotated[bool, typer.Option("--strip", help="Print without any styling.")] = False,
) -> None:
    """Render a file containing ANSI colour codes."""
    text = path.read_text(encoding="utf-8", errors="replace")
    for line in text.splitlines():
        if strip:
            console.print(strip_ansi(line), markup=False, highlight=False)
        else:
            console.print(to_rich_text(line), highlight=False)


if __name__ == "__main__":
    app()
