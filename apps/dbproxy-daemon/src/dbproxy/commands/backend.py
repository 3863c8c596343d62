"""Backend registry commands."""

from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from dbproxy_common import ProtocolFamily

from dbproxy.config import get_engine
from dbproxy.guard import guarded

app = typer.Typer(no_args_is_help=True)
console = Console()

_STATUS_STYLE = {"valid": "green", "invalid": "red", "missing": "yellow"}


@app.command()
def add(
    instance: str = typer.Argument(..., help="Instance (container) name"),
    domain: str = typer.Option(..., help="Public domain clients connect with"),
    port: int = typer.Option(..., help="Host loopback port the container publishes"),
    family: ProtocolFamily = typer.Option(ProtocolFamily.POSTGRES, help="Database protocol family"),
    sync: bool = typer.Option(False, "--sync", help="Run a certificate sync pass right away"),
) -> None:
    """Register a backend and deploy the new routing."""
    engine = get_engine()

    with guarded("backend.add", target=instance, domain=domain, port=port, family=family.value):
        entry = engine.add_backend(instance, domain, port, family)
        console.print(f"[green]Backend added:[/green] {entry.routing}")
        if entry.external_port:
            console.print(
                f"[yellow]Non-TLS clients must use dedicated port {entry.external_port} "
                f"until every {family.label} backend has a certificate.[/yellow]"
            )

        if sync:
            stats = engine.trigger_manual_certificate_sync()
            if stats is None:
                console.print("Certificate sync already running, skipped.")
            else:
                console.print(f"Certificate sync: {stats.updated_domains} updated, {stats.failures} failed")


@app.command()
def remove(
    instance: str = typer.Argument(..., help="Instance name"),
    family: Optional[ProtocolFamily] = typer.Option(None, help="Only remove if the backend has this family"),
    purge_certs: bool = typer.Option(False, "--purge-certs", help="Delete the instance's certificate bundle"),
) -> None:
    """Remove a backend and redeploy."""
    engine = get_engine()

    with guarded("backend.remove", target=instance):
        if not engine.remove_backend(instance, family, purge_certificates=purge_certs):
            console.print(f"[yellow]No backend named {instance}.[/yellow]")
            raise typer.Exit(1)
        console.print(f"[green]Backend removed:[/green] {instance}")


@app.command(name="list")
def list_backends() -> None:
    """List registered backends."""
    entries = get_engine().get_backends()

    table = Table(title="Backends")
    table.add_column("Instance", style="cyan")
    table.add_column("Family")
    table.add_column("Domain", style="green")
    table.add_column("Public port", justify="right")
    table.add_column("Internal port", justify="right")

    for entry in entries:
        table.add_row(
            entry.instance_name,
            entry.family.label,
            entry.domain,
            str(entry.public_port),
            str(entry.internal_port),
        )

    console.print(table)
    if not entries:
        console.print("[dim]No backends registered.[/dim]")


@app.command()
def show(
    name: str = typer.Argument(..., help="Instance name or domain"),
) -> None:
    """Show one backend, looked up by instance name or domain."""
    engine = get_engine()
    with guarded("backend.show", name):
        entry = engine.require_backend(name)

    console.print(f"[bold]{entry.instance_name}[/bold] ({entry.family.label})")
    console.print(f"  Domain:       {entry.domain}")
    console.print(f"  Routing:      {entry.routing}")
    console.print(f"  Backend name: {entry.backend_name}")
    if entry.external_port:
        console.print(f"  Fallback:     dedicated port {entry.external_port}")


@app.command()
def port(
    instance: str = typer.Argument(..., help="Instance name or domain"),
) -> None:
    """Print the public port clients should use for an instance."""
    engine = get_engine()
    with guarded("backend.port", instance):
        entry = engine.require_backend(instance)

    dedicated = engine.get_backend_port(entry.instance_name)
    typer.echo(str(dedicated or entry.family.standard_port))


@app.command()
def reconcile() -> None:
    """Correct stored ports that drifted from the live containers."""
    engine = get_engine()

    with guarded("backend.reconcile"):
        report = engine.reconcile_ports()

    for fix in report.fixes:
        console.print(f"[green]Fixed[/green] {fix.instance_name}: {fix.old_port} -> {fix.new_port}")
    for name in report.missing:
        console.print(f"[yellow]Unresolved[/yellow] {name}: no container or port binding")
    console.print(f"{report.fixed_count} fixed, {report.error_count} error(s)")
    if report.error_count:
        raise typer.Exit(1)


@app.command()
def check() -> None:
    """Compare every mapping with its live container (read-only)."""
    with guarded("backend.check"):
        results = get_engine().check_mappings()

    table = Table(title="Port Mappings")
    table.add_column("Instance", style="cyan")
    table.add_column("Expected", justify="right")
    table.add_column("Actual", justify="right")
    table.add_column("Status")
    table.add_column("Routing")

    for result in results:
        style = _STATUS_STYLE[result.status]
        table.add_row(
            result.instance_name,
            str(result.expected_port),
            str(result.actual_port) if result.actual_port is not None else "-",
            f"[{style}]{result.status}[/{style}]",
            result.routing,
        )

    console.print(table)
    if any(r.status != "valid" for r in results):
        raise typer.Exit(1)
