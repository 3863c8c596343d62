"""HAProxy configuration commands."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from dbproxy.config import get_config, get_engine
from dbproxy.guard import guarded

app = typer.Typer(no_args_is_help=True)
console = Console()


@app.command()
def regenerate() -> None:
    """Rebuild the config from the store, validate it and reload HAProxy."""
    engine = get_engine()

    with guarded("proxy.regenerate"):
        engine.regenerate_all()
        console.print(f"[green]Deployed {len(engine.get_backends())} backend(s).[/green]")


@app.command()
def render(
    raw: bool = typer.Option(False, "--raw", help="Print plain text without highlighting"),
) -> None:
    """Print the config that would be deployed, without applying it."""
    with guarded("proxy.render"):
        text = get_engine().render()

    if raw:
        typer.echo(text, nl=False)
    else:
        console.print(Syntax(text, "ini", line_numbers=False))


@app.command()
def status() -> None:
    """Show whether HAProxy is running and per-backend health."""
    cfg = get_config()
    proxy = get_engine().proxy

    if not proxy.is_available():
        console.print(f"[red]HAProxy service {cfg.haproxy_service} is not active.[/red]")
        raise typer.Exit(1)
    console.print(f"[green]HAProxy service {cfg.haproxy_service} is active.[/green]")

    try:
        rows = proxy.stats()
    except OSError as exc:
        console.print(f"[yellow]Stats unavailable via {cfg.haproxy_admin_socket}: {exc}[/yellow]")
        return

    table = Table(title="HAProxy Servers")
    table.add_column("Proxy", style="cyan")
    table.add_column("Server")
    table.add_column("Status")
    table.add_column("Sessions", justify="right")

    for row in rows:
        if row.get("svname") in ("FRONTEND", "BACKEND"):
            continue
        state = row.get("status", "")
        style = "green" if state.startswith("UP") else "red"
        table.add_row(row.get("pxname", ""), row.get("svname", ""), f"[{style}]{state}[/{style}]", row.get("scur", ""))

    console.print(table)
