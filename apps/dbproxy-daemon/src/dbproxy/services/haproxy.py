"""HAProxy syntax check, reload/restart and stats via subprocess and the admin socket."""

from __future__ import annotations

import csv
import io
import logging
import shutil
import socket
import subprocess
from pathlib import Path

from dbproxy_common.constants import (
    COMMAND_TIMEOUT,
    HAPROXY_ADMIN_SOCKET,
    HAPROXY_BINARY,
    HAPROXY_SERVICE,
)

from dbproxy.errors import DbProxyError, ProxyConfigInvalid, ProxyReloadFailed

log = logging.getLogger(__name__)


class CommandFailed(DbProxyError):
    """External command exited non-zero, timed out or could not be started."""


def _run(cmd: list[str], *, timeout: float) -> subprocess.CompletedProcess[str]:
    try:
        result = subprocess.run(
            cmd,
            check=False,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as exc:
        raise CommandFailed(f"Command timed out after {timeout}s: {' '.join(cmd)}") from exc
    except OSError as exc:
        raise CommandFailed(f"Command failed to start: {' '.join(cmd)}: {exc}") from exc
    if result.returncode != 0:
        output = (result.stderr or result.stdout).strip()
        raise CommandFailed(f"Command failed ({result.returncode}): {' '.join(cmd)}\n{output}")
    return result


def parse_stats(raw: str) -> list[dict[str, str]]:
    """Parse ``show stat`` CSV output into one dict per proxy/server row."""
    lines = raw.strip().splitlines()
    if len(lines) < 2:
        return []
    header = lines[0].lstrip("# ")
    reader = csv.DictReader(io.StringIO("\n".join([header, *lines[1:]])))
    return [{k: v for k, v in row.items() if k} for row in reader]


class HAProxyProcess:
    """Proxy process collaborator for a systemd-managed HAProxy."""

    def __init__(
        self,
        *,
        binary: str = HAPROXY_BINARY,
        service: str = HAPROXY_SERVICE,
        prefix: list[str] | None = None,
        timeout: float = COMMAND_TIMEOUT,
        admin_socket: Path = HAPROXY_ADMIN_SOCKET,
    ):
        self.binary = binary
        self.service = service
        self.prefix = list(prefix or [])
        self.timeout = timeout
        self.admin_socket = admin_socket

    def _cmd(self, *args: str) -> list[str]:
        return [*self.prefix, *args]

    def check_syntax(self, path: Path) -> None:
        """Run ``haproxy -c``. Raises ProxyConfigInvalid with the checker's output."""
        try:
            _run(self._cmd(self.binary, "-c", "-f", str(path)), timeout=self.timeout)
        except CommandFailed as exc:
            raise ProxyConfigInvalid(f"HAProxy config check failed:\n{exc}") from exc

    def reload(self) -> None:
        try:
            _run(self._cmd("systemctl", "reload", self.service), timeout=self.timeout)
        except CommandFailed as exc:
            raise ProxyReloadFailed(str(exc)) from exc

    def restart(self) -> None:
        try:
            _run(self._cmd("systemctl", "restart", self.service), timeout=self.timeout)
        except CommandFailed as exc:
            raise ProxyReloadFailed(str(exc)) from exc

    def is_available(self) -> bool:
        """HAProxy is installed and its service is active."""
        if shutil.which(self.binary) is None:
            return False
        try:
            _run(["systemctl", "is-active", "--quiet", self.service], timeout=self.timeout)
        except CommandFailed:
            return False
        return True

    def stats(self) -> list[dict[str, str]]:
        """Query ``show stat`` on the admin socket."""
        chunks: list[bytes] = []
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
            sock.settimeout(self.timeout)
            sock.connect(str(self.admin_socket))
            sock.sendall(b"show stat\n")
            while True:
                chunk = sock.recv(65536)
                if not chunk:
                    break
                chunks.append(chunk)
        return parse_stats(b"".join(chunks).decode("utf-8", errors="replace"))
