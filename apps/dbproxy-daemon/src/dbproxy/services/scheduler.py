"""Certificate sync pass and the background scheduler that drives it."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Iterable, Protocol

from dbproxy_common import BackendEntry, CertificateMaterial, SyncStats

from dbproxy.errors import CertificateSourceError, ContainerRestartError, DbProxyError
from dbproxy.services.certificates import CertificateStore

log = logging.getLogger(__name__)


class Clock(Protocol):
    def monotonic(self) -> float: ...


class SystemClock:
    def monotonic(self) -> float:
        return time.monotonic()


class CertificateSource(Protocol):
    def get_certificate(self, instance_name: str, domain: str) -> CertificateMaterial: ...


class Restarter(Protocol):
    def restart_container(self, instance_name: str) -> None: ...


class CertificateSynchronizer:
    """One sync pass over the known backends.

    ``on_updated`` runs once at the end of a pass that wrote at least one
    certificate; the engine uses it to regenerate and reload HAProxy.
    ``is_current`` is asked right before writing, so a backend removed while
    the pass was fetching gets neither a bundle nor a restart.
    """

    def __init__(
        self,
        source: CertificateSource,
        store: CertificateStore,
        *,
        runtime: Restarter | None = None,
        on_updated: Callable[[], None] | None = None,
        is_current: Callable[[BackendEntry], bool] | None = None,
    ):
        self.source = source
        self.store = store
        self.runtime = runtime
        self.on_updated = on_updated
        self.is_current = is_current

    def sync(self, entries: Iterable[BackendEntry]) -> SyncStats:
        stats = SyncStats()
        seen: set[str] = set()

        for entry in entries:
            domain = entry.domain
            if not domain or domain.lower() in seen:
                continue
            seen.add(domain.lower())
            stats.domains_processed += 1

            try:
                material = self.source.get_certificate(entry.instance_name, domain)
            except CertificateSourceError as exc:
                stats.failures += 1
                log.error("Failed to fetch certificate for %s (instance=%s): %s", domain, entry.instance_name, exc)
                continue
            if not (material.issued_externally and material.changed):
                continue
            if self.is_current is not None and not self.is_current(entry):
                log.info("Skipping certificate for %s: backend %s was removed during sync", domain, entry.instance_name)
                continue

            try:
                self.store.write(entry.instance_name, material)
            except OSError as exc:
                stats.failures += 1
                log.error("Failed to write certificate for %s (instance=%s): %s", domain, entry.instance_name, exc)
                continue
            stats.updated_domains += 1
            log.info("Updated CA-issued certificate for %s (instance=%s)", domain, entry.instance_name)
            self._restart(entry, stats)

        if stats.updated_domains and self.on_updated is not None:
            try:
                self.on_updated()
                stats.reloaded = True
            except DbProxyError as exc:
                log.error("Failed to reload HAProxy after %d certificate update(s): %s", stats.updated_domains, exc)
        return stats

    def _restart(self, entry: BackendEntry, stats: SyncStats) -> None:
        if self.runtime is None:
            log.warning("No container runtime, skipping restart of %s after certificate update", entry.instance_name)
            return
        try:
            self.runtime.restart_container(entry.instance_name)
        except ContainerRestartError as exc:
            stats.restart_failures += 1
            log.error("Failed to restart %s after certificate update: %s", entry.instance_name, exc)
            return
        stats.restarted += 1


class CertificateSyncScheduler:
    """Periodic + debounced-immediate certificate sync with a non-blocking guard.

    A request that arrives while a pass is running returns ``None`` instead of
    queueing. ``tick()`` fires whatever is due according to ``clock``; in
    production a daemon thread calls it every ``poll_interval`` seconds.
    """

    def __init__(
        self,
        sync: Callable[[str], SyncStats],
        *,
        interval: float,
        warmup: float,
        debounce: float,
        clock: Clock | None = None,
        poll_interval: float = 1.0,
    ):
        self._sync = sync
        self.interval = interval
        self.warmup = warmup
        self.debounce = debounce
        self.clock = clock or SystemClock()
        self.poll_interval = poll_interval

        self._guard = threading.Lock()
        self._timers = threading.Lock()
        self._next_periodic: float | None = None
        self._immediate_due: float | None = None
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def started(self) -> bool:
        return self._next_periodic is not None

    @property
    def is_syncing(self) -> bool:
        return self._guard.locked()

    def start(self, *, background: bool = True) -> None:
        if self.started:
            log.warning("Certificate sync scheduler already running")
            return
        with self._timers:
            self._next_periodic = self.clock.monotonic() + self.warmup
        self._stopped.clear()
        if background:
            self._thread = threading.Thread(target=self._loop, name="cert-sync", daemon=True)
            self._thread.start()
        log.info(
            "Certificate sync scheduler started (interval=%.0fs, warmup=%.0fs)", self.interval, self.warmup
        )

    def stop(self) -> None:
        self._stopped.set()
        if self._thread is not None:
            self._thread.join(timeout=self.poll_interval * 5)
            self._thread = None
        with self._timers:
            self._next_periodic = None
            self._immediate_due = None

    def schedule_immediate(self) -> None:
        """Arm (or re-arm) the debounce timer; bursts collapse into one pass."""
        if not self.started:
            return
        with self._timers:
            self._immediate_due = self.clock.monotonic() + self.debounce
        log.debug("Scheduled immediate certificate sync in %.1fs", self.debounce)

    def tick(self) -> SyncStats | None:
        """Run one pass if a timer is due."""
        now = self.clock.monotonic()
        trigger = None
        with self._timers:
            if self._immediate_due is not None and now >= self._immediate_due:
                trigger = "immediate"
                self._immediate_due = None
            if self._next_periodic is not None and now >= self._next_periodic:
                trigger = trigger or "scheduled"
                self._next_periodic = now + self.interval
        if trigger is None:
            return None
        return self.run(trigger)

    def run(self, trigger: str) -> SyncStats | None:
        """Execute one guarded pass; ``None`` if another pass is in flight or it failed."""
        if not self._guard.acquire(blocking=False):
            log.debug("Certificate sync (%s) skipped: another sync is in progress", trigger)
            return None
        try:
            stats = self._sync(trigger)
        except Exception:
            log.exception("Certificate sync (%s) failed", trigger)
            return None
        finally:
            self._guard.release()

        if stats.noteworthy:
            log.info("Certificate sync (%s) completed: %s", trigger, stats.model_dump())
        else:
            log.debug("Certificate sync (%s) completed with no changes", trigger)
        return stats

    def _loop(self) -> None:
        while not self._stopped.wait(self.poll_interval):
            self.tick()
