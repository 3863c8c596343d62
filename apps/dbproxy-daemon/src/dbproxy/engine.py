"""Routing engine: the one object the CLI and the daemon talk to.

It owns the backend store and every collaborator around it. Store mutations,
config regeneration and deployment run under a single re-entrant lock; the
certificate scheduler runs on its own thread and enters the same lock only
through ``regenerate_all``.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from pydantic import ValidationError

from dbproxy_common import (
    BackendEntry,
    DbProxyConfig,
    MappingCheck,
    ProtocolFamily,
    ReconcileReport,
    SyncStats,
)

from dbproxy.errors import (
    BackendNotFoundError,
    ConflictError,
    ContainerRuntimeError,
    InvalidBackendError,
    ProxyConfigInvalid,
)
from dbproxy.services.acme import TraefikAcmeSource
from dbproxy.services.applier import ProxyApplier, ProxyProcess
from dbproxy.services.certificates import CertificateStore
from dbproxy.services.compiler import compile_config, plan_fallback_ports
from dbproxy.services.docker import DockerRuntime
from dbproxy.services.haproxy import HAProxyProcess
from dbproxy.services.oracle import ContainerRuntime, RuntimePortOracle
from dbproxy.services.reconciler import PortReconciler
from dbproxy.services.scheduler import (
    CertificateSource,
    CertificateSynchronizer,
    CertificateSyncScheduler,
    Clock,
)
from dbproxy.services.store import BackendStore
from dbproxy.services.validator import validate

log = logging.getLogger(__name__)


class RoutingEngine:
    def __init__(
        self,
        cfg: DbProxyConfig,
        *,
        store: BackendStore | None = None,
        runtime: ContainerRuntime | None = None,
        certificate_source: CertificateSource | None = None,
        proxy: ProxyProcess | None = None,
        clock: Clock | None = None,
    ):
        self.cfg = cfg
        self._lock = threading.RLock()

        self.store = store or BackendStore(cfg.backends_file, recovery_config=cfg.live_config_path)
        self.runtime = runtime or DockerRuntime(
            timeout=cfg.docker_timeout, restart_timeout=cfg.container_restart_timeout
        )
        self.oracle = RuntimePortOracle(self.runtime)
        self.reconciler = PortReconciler(self.oracle)

        self.certificates = CertificateStore(cfg.cert_dir)
        self.certificate_source = certificate_source or TraefikAcmeSource(
            cfg.acme_store_path, self.certificates
        )
        self.synchronizer = CertificateSynchronizer(
            self.certificate_source,
            self.certificates,
            runtime=self.runtime,
            on_updated=self.regenerate_all,
            is_current=self._is_current,
        )
        self.scheduler = CertificateSyncScheduler(
            self.sync_certificates,
            interval=cfg.cert_sync_interval_seconds,
            warmup=cfg.cert_sync_warmup_seconds,
            debounce=cfg.cert_sync_debounce_seconds,
            clock=clock,
        )

        self.proxy = proxy or HAProxyProcess(
            binary=cfg.haproxy_binary,
            service=cfg.haproxy_service,
            prefix=cfg.command_prefix,
            timeout=cfg.command_timeout,
            admin_socket=cfg.haproxy_admin_socket,
        )
        self.applier = ProxyApplier(
            self.proxy,
            cfg.live_config_path,
            cfg.staging_config_path,
            owner=cfg.haproxy_user,
            group=cfg.haproxy_group,
        )

    @classmethod
    def from_config(cls, cfg: DbProxyConfig) -> RoutingEngine:
        return cls(cfg)

    # -- mutations -----------------------------------------------------------

    def add_backend(
        self,
        instance_name: str,
        domain: str,
        declared_port: int,
        family: ProtocolFamily = ProtocolFamily.POSTGRES,
    ) -> BackendEntry:
        """Register (or update) an instance and deploy the new routing.

        The live container port, when it can be resolved, overrides
        ``declared_port``. Conflicts raise before anything is written.
        """
        try:
            candidate = BackendEntry(
                instance_name=instance_name,
                domain=domain,
                internal_port=declared_port,
                family=family,
            )
        except ValidationError as exc:
            raise InvalidBackendError(f"Invalid backend {instance_name!r}:\n{exc}", exit_code=2) from exc
        port = self._live_port(instance_name, family, declared_port)
        candidate = candidate.model_copy(update={"internal_port": port})

        with self._lock:
            snapshot = self.store.all()
            # validate against live ports, not the possibly stale stored ones
            report = self._reconcile_quietly()
            try:
                validate(candidate, self.store.all())
            except ConflictError:
                if report.fixed_count:
                    self.store.replace_all(snapshot)
                raise

            previous = self.store.get(instance_name)
            if previous is not None and previous.family == family:
                candidate = candidate.model_copy(update={"external_port": previous.external_port})
            self.store.upsert(candidate)
            log.info(
                "Registered backend %s: %s (family=%s)",
                instance_name, candidate.routing, family.value,
            )

            try:
                self.regenerate_all()
            except ProxyConfigInvalid:
                log.error("Rolling back backend %s: generated config was rejected", instance_name)
                self.store.replace_all(snapshot)
                raise

        self.scheduler.schedule_immediate()
        return self.store.get(instance_name) or candidate

    def remove_backend(
        self,
        instance_name: str,
        family: ProtocolFamily | None = None,
        *,
        purge_certificates: bool = False,
    ) -> bool:
        """Drop an instance from routing; False when there was nothing to remove."""
        with self._lock:
            entry = self.store.get(instance_name)
            if entry is None or (family is not None and entry.family != family):
                log.warning("No backend %s to remove", instance_name)
                return False

            snapshot = self.store.all()
            self.store.remove(instance_name)
            try:
                self.regenerate_all()
            except ProxyConfigInvalid:
                log.error("Rolling back removal of %s: generated config was rejected", instance_name)
                self.store.replace_all(snapshot)
                raise
            log.info("Removed backend %s (domain=%s)", instance_name, entry.domain)

        if purge_certificates:
            self.certificates.remove(instance_name)
        return True

    def regenerate_all(self) -> bool:
        """Re-plan fallback ports, compile the current snapshot and deploy it (forced)."""
        with self._lock:
            config_text = self._compile(persist=True)
            return self.applier.apply(config_text, force=True)

    def render(self) -> str:
        """Compile the current snapshot without touching the live proxy."""
        with self._lock:
            return self._compile(persist=False)

    # -- queries -------------------------------------------------------------

    def get_backends(self) -> list[BackendEntry]:
        return self.store.all()

    def get_backend(self, instance_name: str) -> BackendEntry | None:
        return self.store.get(instance_name)

    def find_by_domain(self, domain: str) -> BackendEntry | None:
        domain = domain.lower()
        for entry in self.store.all():
            if entry.domain.lower() == domain:
                return entry
        return None

    def require_backend(self, name: str) -> BackendEntry:
        """Look up by instance name, then by domain."""
        entry = self.store.get(name) or self.find_by_domain(name)
        if entry is None:
            raise BackendNotFoundError(f"No backend found for {name}")
        return entry

    def get_backend_port(self, instance_name: str) -> int | None:
        """Dedicated fallback port of an instance, or None when it uses the standard port."""
        entry = self.store.get(instance_name)
        if entry is None:
            return None
        return entry.external_port

    # -- reconciliation ------------------------------------------------------

    def reconcile_ports(self) -> ReconcileReport:
        with self._lock:
            report = self.reconciler.reconcile(self.store)
            if report.needs_regeneration:
                log.info("Corrected %d port mapping(s), regenerating proxy config", report.fixed_count)
                self.regenerate_all()
        if report.error_count:
            log.warning("Port reconciliation finished with %d unresolved backend(s)", report.error_count)
        return report

    def check_mappings(self) -> list[MappingCheck]:
        return self.reconciler.check(self.store)

    # -- certificates --------------------------------------------------------

    def sync_certificates(self, trigger: str = "manual") -> SyncStats:
        log.debug("Starting certificate sync (%s)", trigger)
        return self.synchronizer.sync(self.store.all())

    def prune_certificates(self) -> list[str]:
        """Delete bundles left behind by instances that are no longer routed."""
        with self._lock:
            orphans = [name for name in self.certificates.instances() if name not in self.store]
            for name in orphans:
                self.certificates.remove(name)
                log.info("Pruned certificates of unrouted instance %s", name)
        return orphans

    def trigger_manual_certificate_sync(self) -> SyncStats | None:
        """Run a pass now; None when another pass is already running."""
        return self.scheduler.run("manual")

    def start(self, *, background: bool = True) -> None:
        if not self.cfg.cert_auto_sync:
            log.info("Certificate auto-sync disabled by configuration")
            return
        self.scheduler.start(background=background)

    def stop(self) -> None:
        self.scheduler.stop()

    # -- internals -----------------------------------------------------------

    def _tls_bundles(self, entries: list[BackendEntry]) -> dict[str, Path]:
        return {
            e.instance_name: self.certificates.bundle_path(e.instance_name)
            for e in entries
            if self.certificates.has_bundle(e.instance_name)
        }

    def _compile(self, *, persist: bool) -> str:
        entries = self.store.all()
        tls_bundles = self._tls_bundles(entries)
        planned = plan_fallback_ports(
            entries,
            tls_bundles,
            enabled=self.cfg.fallback_ports,
            reserved=(self.cfg.stats_port,),
        )
        if persist:
            for before, after in zip(entries, planned):
                if before.external_port != after.external_port:
                    log.info(
                        "Fallback port for %s: %s -> %s",
                        after.instance_name, before.external_port, after.external_port,
                    )
                    self.store.upsert(after)
        return compile_config(
            planned,
            tls_bundles=tls_bundles,
            stats_port=self.cfg.stats_port,
            proxy_user=self.cfg.haproxy_user,
            proxy_group=self.cfg.haproxy_group,
        )

    def _live_port(self, instance_name: str, family: ProtocolFamily, declared_port: int) -> int:
        try:
            actual = self.oracle.resolve_actual_port(instance_name, family)
        except ContainerRuntimeError as exc:
            log.warning("Could not resolve live port for %s, using declared %d: %s", instance_name, declared_port, exc)
            return declared_port
        if actual is None:
            return declared_port
        if actual != declared_port:
            log.warning(
                "Declared port %d for %s differs from live container port %d, using live port",
                declared_port, instance_name, actual,
            )
        return actual

    def _reconcile_quietly(self) -> ReconcileReport:
        report = self.reconciler.reconcile(self.store)
        if report.fixed_count:
            log.info("Reconciliation corrected %d other port mapping(s)", report.fixed_count)
        return report

    def _is_current(self, entry: BackendEntry) -> bool:
        current = self.store.get(entry.instance_name)
        return current is not None and current.domain == entry.domain
