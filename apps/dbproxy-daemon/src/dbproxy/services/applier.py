"""Deploy a compiled HAProxy configuration: stage, validate, install, reload."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Protocol

from dbproxy.errors import ProxyReloadFailed
from dbproxy.services.files import atomic_write, atomic_write_text

log = logging.getLogger(__name__)


class ProxyProcess(Protocol):
    def check_syntax(self, path: Path) -> None: ...

    def reload(self) -> None: ...

    def restart(self) -> None: ...


class ProxyApplier:
    """Each step gates the next; the live file only ever holds validated content."""

    def __init__(
        self,
        proxy: ProxyProcess,
        live_path: Path,
        staging_path: Path,
        *,
        file_mode: int = 0o644,
        owner: str | None = None,
        group: str | None = None,
    ):
        self.proxy = proxy
        self.live_path = live_path
        self.staging_path = staging_path
        self.file_mode = file_mode
        self.owner = owner
        self.group = group

    def apply(self, config_text: str, *, force: bool = False) -> bool:
        """Deploy ``config_text``; returns False when the live config was already identical.

        Raises ProxyConfigInvalid (live file untouched) or ProxyReloadFailed.
        """
        atomic_write_text(self.staging_path, config_text, mode=self.file_mode)
        self.proxy.check_syntax(self.staging_path)

        if not force and self._live_matches(config_text):
            log.debug("Live config %s already up to date, skipping reload", self.live_path)
            return False

        self._install()
        self.reload()
        log.info("Deployed HAProxy config to %s", self.live_path)
        return True

    def reload(self) -> None:
        """Graceful reload, falling back to a restart."""
        try:
            self.proxy.reload()
            return
        except ProxyReloadFailed as exc:
            log.warning("HAProxy reload failed, attempting restart: %s", exc)
            reload_error = exc
        try:
            self.proxy.restart()
        except ProxyReloadFailed as exc:
            raise ProxyReloadFailed(
                f"Failed to reload/restart HAProxy; live routing is stale.\n"
                f"reload: {reload_error}\nrestart: {exc}"
            ) from exc
        log.info("HAProxy restarted after failed reload")

    def _live_matches(self, config_text: str) -> bool:
        try:
            return self.live_path.read_text() == config_text
        except FileNotFoundError:
            return False

    def _install(self) -> None:
        atomic_write(self.live_path, self.staging_path.read_bytes(), mode=self.file_mode)
        if self.owner or self.group:
            try:
                shutil.chown(self.live_path, user=self.owner, group=self.group)
            except (OSError, LookupError) as exc:
                log.warning("Could not change ownership of %s: %s", self.live_path, exc)
