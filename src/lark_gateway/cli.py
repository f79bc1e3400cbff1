"""CLI entry points for the Lark gateway.

Commands:
    lark-gateway run       — Listen on every enabled channel and print inbound messages
    lark-gateway check     — Health-check every enabled channel
    lark-gateway send      — Send one text message through a channel
    lark-gateway channels  — List, enable, or disable channels
    lark-gateway config    — Show the config file path or a config value
"""

from __future__ import annotations

import asyncio
import logging

import typer
from rich.console import Console
from rich.table import Table

import lark_gateway
from lark_gateway.config import ConfigManager, GatewayConfig
from lark_gateway.errors import GatewayError
from lark_gateway.gateway.channels import ALL_CHANNELS
from lark_gateway.gateway.models import GatewayMessage, OutboundMessage
from lark_gateway.runtime import GatewayRuntime

console = Console()
app = typer.Typer(
    name="lark-gateway",
    help="Send and receive chat messages through Lark and Feishu bots.",
    no_args_is_help=True,
)
config_app = typer.Typer(help="Inspect configuration.")
app.add_typer(config_app, name="config")

channels_app = typer.Typer(help="List, enable, or disable channels.")
app.add_typer(channels_app, name="channels")

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False, level_name: str = "info") -> None:
    """Configure root logging for CLI output."""
    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_config(config_manager: ConfigManager | None = None) -> GatewayConfig:
    try:
        return (config_manager or ConfigManager()).load()
    except GatewayError as exc:
        console.print(f"[red]{exc.message}[/red]")
        raise typer.Exit(1) from None


def _load_runtime() -> GatewayRuntime:
    try:
        return GatewayRuntime(_load_config())
    except GatewayError as exc:
        console.print(f"[red]{exc.message}[/red]")
        raise typer.Exit(1) from None


@app.command()
def version() -> None:
    """Print the installed version."""
    console.print(lark_gateway.__version__)


# ------------------------------------------------------------------
# lark-gateway run
# ------------------------------------------------------------------


@app.command()
def run(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Listen on every enabled channel and print inbound messages."""
    runtime = _load_runtime()
    _setup_logging(verbose, runtime.config.gateway.log_level)

    if not runtime.channels:
        console.print("[yellow]No channels enabled. Use 'lark-gateway channels enable'.[/yellow]")
        raise typer.Exit(1)

    async def print_message(channel: str, message: GatewayMessage) -> None:
        console.print(f"[cyan]{channel}[/cyan] [bold]{message.sender_name}[/bold] ({message.reply_target}): {message.text}")

    try:
        asyncio.run(runtime.run(print_message))
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped.[/dim]")

    if runtime.failed:
        for name, exc in runtime.failed.items():
            console.print(f"[red]{name}: {exc}[/red]")
        raise typer.Exit(1)


# ------------------------------------------------------------------
# lark-gateway check
# ------------------------------------------------------------------


@app.command()
def check() -> None:
    """Health-check every enabled channel."""
    runtime = _load_runtime()
    if not runtime.channels:
        console.print("[yellow]No channels enabled.[/yellow]")
        raise typer.Exit(1)

    async def collect_health() -> dict[str, bool]:
        try:
            return await runtime.health()
        finally:
            await runtime.stop()

    results = asyncio.run(collect_health())

    table = Table(title="Channel Health", border_style="cyan")
    table.add_column("Channel", style="bold")
    table.add_column("Status")
    for name, ok in results.items():
        table.add_row(name, "[green]OK[/green]" if ok else "[red]FAILED[/red]")

    console.print()
    console.print(table)
    console.print()

    if not all(results.values()):
        raise typer.Exit(1)


# ------------------------------------------------------------------
# lark-gateway send
# ------------------------------------------------------------------


@app.command()
def send(
    channel: str = typer.Argument(help="Channel name (lark or feishu)"),
    recipient: str = typer.Argument(help="Target chat_id"),
    text: str = typer.Argument(help="Message text"),
) -> None:
    """Send one text message through a channel."""
    runtime = _load_runtime()
    if channel not in runtime.channels:
        console.print(f"[red]Channel not enabled: {channel}[/red]")
        raise typer.Exit(1)

    async def deliver() -> None:
        try:
            await runtime.send(channel, OutboundMessage(recipient=recipient, text=text))
        finally:
            await runtime.stop()

    try:
        asyncio.run(deliver())
    except GatewayError as exc:
        console.print(f"[red]Send failed: {exc.message}[/red]")
        raise typer.Exit(1) from None
    console.print(f"[green]Sent to {recipient} via {channel}.[/green]")


# ------------------------------------------------------------------
# lark-gateway config
# ------------------------------------------------------------------


@config_app.command("path")
def config_path() -> None:
    """Print the location of the config file."""
    console.print(str(ConfigManager().get_config_path()))


@config_app.command("get")
def config_get(
    key: str = typer.Argument(help="Config key in dot notation (e.g., 'channels.feishu.port')"),
) -> None:
    """Print a config value."""
    config = _load_config()
    data = config.model_dump(mode="json")

    value: object = data
    for part in key.split("."):
        if isinstance(value, dict) and part in value:
            value = value[part]
        else:
            console.print(f"[red]Key not found: {key}[/red]")
            raise typer.Exit(1)

    # Mask secrets
    if "secret" in key.lower() and isinstance(value, str) and value:
        masked = value[:4] + "..." + value[-4:] if len(value) > 8 else "****"
        console.print(masked)
    else:
        console.print(str(value))


# ------------------------------------------------------------------
# lark-gateway channels
# ------------------------------------------------------------------


@channels_app.command("list")
def channels_list() -> None:
    """Show configured channels and their status."""
    config = _load_config()

    table = Table(title="Channels", border_style="cyan")
    table.add_column("Channel", style="bold")
    table.add_column("Status")
    table.add_column("Receive mode")
    table.add_column("Allowed users", style="dim")

    for name in ALL_CHANNELS:
        section = getattr(config.channels, name)
        status = "[green]Enabled[/green]" if section.enabled else "[dim]Disabled[/dim]"
        table.add_row(name, status, str(section.receive_mode), ", ".join(section.allowed_users) or "-")

    console.print()
    console.print(table)
    console.print()


def _set_enabled(name: str, enabled: bool) -> None:
    if name not in ALL_CHANNELS:
        console.print(f"[red]Unknown channel: {name}[/red]")
        console.print(f"[dim]Available: {', '.join(ALL_CHANNELS)}[/dim]")
        raise typer.Exit(1)

    config_manager = ConfigManager()
    config = _load_config(config_manager)
    getattr(config.channels, name).enabled = enabled
    config_manager.save(config)


@channels_app.command("enable")
def channels_enable(
    name: str = typer.Argument(help="Channel name to enable"),
) -> None:
    """Enable a channel."""
    _set_enabled(name, True)
    console.print(f"[green]Channel '{name}' enabled.[/green]")


@channels_app.command("disable")
def channels_disable(
    name: str = typer.Argument(help="Channel name to disable"),
) -> None:
    """Disable a channel."""
    _set_enabled(name, False)
    console.print(f"[yellow]Channel '{name}' disabled.[/yellow]")
