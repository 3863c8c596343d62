"""Certificate sync and status commands."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from dbproxy.config import get_engine
from dbproxy.guard import guarded
from dbproxy.services.certificates import cert_status, read_expiry

app = typer.Typer(no_args_is_help=True)
console = Console()

_STATUS_STYLE = {
    "valid": "green",
    "warning": "yellow",
    "critical": "red",
    "expired": "bold red",
    "unknown": "dim",
}


@app.command()
def sync() -> None:
    """Pull CA-issued certificates from Traefik and deploy changed ones."""
    engine = get_engine()

    with guarded("cert.sync"):
        stats = engine.trigger_manual_certificate_sync()

    if stats is None:
        console.print("[yellow]A certificate sync is already running (or the pass failed, see log).[/yellow]")
        raise typer.Exit(1)

    console.print(
        f"Processed {stats.domains_processed} domain(s): {stats.updated_domains} updated, "
        f"{stats.failures} failed, {stats.restarted} container(s) restarted"
    )
    if stats.updated_domains:
        label = "[green]reloaded[/green]" if stats.reloaded else "[red]reload failed[/red]"
        console.print(f"HAProxy {label}")
    if stats.failures or stats.restart_failures or (stats.updated_domains and not stats.reloaded):
        raise typer.Exit(1)


@app.command()
def status() -> None:
    """Show certificate bundle and expiry for every backend."""
    engine = get_engine()
    certs = engine.certificates

    table = Table(title="Backend Certificates")
    table.add_column("Instance", style="cyan")
    table.add_column("Domain", style="green")
    table.add_column("TLS bundle")
    table.add_column("Expires", style="yellow")
    table.add_column("Status")

    for entry in engine.get_backends():
        expiry = read_expiry(certs.cert_path(entry.instance_name))
        state = cert_status(expiry)
        style = _STATUS_STYLE[state]
        table.add_row(
            entry.instance_name,
            entry.domain,
            "yes" if certs.has_bundle(entry.instance_name) else "no",
            expiry.strftime("%Y-%m-%d") if expiry else "-",
            f"[{style}]{state}[/{style}]",
        )

    console.print(table)


@app.command()
def prune() -> None:
    """Delete certificate bundles of instances that are no longer routed."""
    engine = get_engine()

    with guarded("cert.prune"):
        removed = engine.prune_certificates()

    for name in removed:
        console.print(f"[yellow]Removed[/yellow] {name}")
    console.print(f"{len(removed)} orphaned bundle(s) removed")
