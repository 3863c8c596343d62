"""Command wrapper: timing, outcome logging and error-to-exit-code translation."""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Generator

import typer
from rich.console import Console

from dbproxy.errors import DbProxyError

log = logging.getLogger("dbproxy.cli")
err_console = Console(stderr=True)


@contextmanager
def guarded(action: str, target: str = "", **params: Any) -> Generator[None, None, None]:
    """Log the command's outcome; DbProxyError becomes a red message and its exit code."""
    start = time.monotonic()
    try:
        yield
    except DbProxyError as exc:
        duration_ms = int((time.monotonic() - start) * 1000)
        log.debug("%s %s failed after %dms params=%s: %s", action, target, duration_ms, params, exc)
        err_console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(exc.exit_code) from exc
    duration_ms = int((time.monotonic() - start) * 1000)
    log.debug("%s %s succeeded in %dms params=%s", action, target, duration_ms, params)
