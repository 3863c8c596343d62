"""Root Typer application for the dbproxy CLI."""

from __future__ import annotations

import typer

from dbproxy.commands import backend, cert, daemon, proxy
from dbproxy.config import get_config
from dbproxy.logconfig import configure_logging

app = typer.Typer(
    name="dbproxy",
    help="Domain-based routing of database traffic through HAProxy.",
    no_args_is_help=True,
)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    configure_logging("DEBUG" if verbose else get_config().log_level)


app.add_typer(backend.app, name="backend", help="Register, inspect and remove database backends.")
app.add_typer(proxy.app, name="proxy", help="Generate and deploy the HAProxy configuration.")
app.add_typer(cert.app, name="cert", help="Certificate sync from Traefik's ACME store.")
app.command(name="run")(daemon.run)

if __name__ == "__main__":
    app()
