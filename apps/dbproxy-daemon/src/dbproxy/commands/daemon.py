"""Long-running daemon: keeps the certificate scheduler alive until signalled."""

from __future__ import annotations

import logging
import signal
import threading

import typer

from dbproxy.config import get_config, get_engine
from dbproxy.errors import DbProxyError
from dbproxy.guard import guarded

log = logging.getLogger(__name__)


def run(
    regenerate: bool = typer.Option(True, help="Deploy the config from the store at startup"),
) -> None:
    """Run the routing daemon (certificate sync scheduler) in the foreground."""
    cfg = get_config()
    engine = get_engine()
    stopping = threading.Event()

    def _on_signal(signum: int, _frame: object) -> None:
        log.info("Received %s, shutting down", signal.Signals(signum).name)
        stopping.set()

    signal.signal(signal.SIGTERM, _on_signal)
    signal.signal(signal.SIGINT, _on_signal)

    with guarded("daemon.run"):
        log.info("Starting dbproxy daemon (state=%s, backends=%d)", cfg.state_dir, len(engine.get_backends()))
        try:
            report = engine.reconcile_ports()
            if regenerate and not report.needs_regeneration:
                engine.regenerate_all()
        except DbProxyError as exc:
            log.error("Startup deploy failed, continuing with the live config: %s", exc)

        engine.start()
        try:
            stopping.wait()
        finally:
            engine.stop()
            log.info("dbproxy daemon stopped")
